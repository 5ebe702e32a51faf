"""Core exception hierarchy for shipline.

All shipline exceptions inherit from ShiplineError so callers can catch the
whole family at once. Stage-level errors (action failures, timeouts) never
escape the stage executor; they are converted into FAILED stage executions.
Only configuration problems detected before the first stage propagate out of
a run.
"""

from __future__ import annotations

# ============================================================================
# Base Exception
# ============================================================================


class ShiplineError(Exception):
    """Base exception for all shipline errors.

    Catch this to handle all shipline-specific errors.
    """

    pass


# ============================================================================
# Configuration & Definition Errors
# ============================================================================


class ConfigurationError(ShiplineError):
    """Raised when configuration is invalid or missing.

    Examples
    --------
    Example usage::

        raise ConfigurationError("shipline.yaml", "expected 'kind: Config'")
    """

    def __init__(self, component: str, reason: str) -> None:
        """Initialize configuration error.

        Args
        ----
            component: Name of the component with invalid configuration
            reason: Explanation of what's wrong
        """
        super().__init__(f"Configuration error in '{component}': {reason}")
        self.component = component
        self.reason = reason


class PipelineDefinitionError(ShiplineError):
    """Raised when a pipeline definition is invalid.

    This covers structural problems (duplicate stage names, bad manifests)
    and references that cannot be satisfied at definition time, such as a
    stage argument referencing an undeclared parameter.

    Examples
    --------
    Example usage::

        raise PipelineDefinitionError("push", "references undeclared parameter 'tag'")
    """

    def __init__(self, subject: str, reason: str) -> None:
        super().__init__(f"Invalid pipeline definition at '{subject}': {reason}")
        self.subject = subject
        self.reason = reason


class ResolveError(ShiplineError):
    """Raised when a module path cannot be resolved."""

    def __init__(self, kind: str, reason: str) -> None:
        self.kind = kind
        self.reason = reason
        super().__init__(f"Cannot resolve '{kind}': {reason}")


# ============================================================================
# Run-level Errors
# ============================================================================


class ParameterResolutionError(ShiplineError):
    """Base exception for run parameter problems."""


class MissingParameterError(ParameterResolutionError):
    """Raised when required run parameters were not supplied.

    Always raised before any stage starts.
    """

    def __init__(self, missing: list[str]) -> None:
        self.missing = sorted(missing)
        super().__init__(f"Missing required parameter(s): {', '.join(self.missing)}")


class CredentialResolutionError(ShiplineError):
    """Raised when a credential scope cannot be acquired.

    An unresolvable credential is a configuration defect, so the owning stage
    fails HARD regardless of its declared policy.
    """

    def __init__(self, scope: str, reason: str) -> None:
        self.scope = scope
        self.reason = reason
        super().__init__(f"Cannot acquire credential scope '{scope}': {reason}")


class RunCancelledError(ShiplineError):
    """Raised inside a stage when its run was aborted by an external signal."""


# ============================================================================
# Stage Errors
# ============================================================================


class StageActionError(ShiplineError):
    """Raised when a stage action fails in an unexpected way."""

    def __init__(self, stage_name: str, original_error: BaseException) -> None:
        self.stage_name = stage_name
        self.original_error = original_error
        super().__init__(f"Stage '{stage_name}' failed: {original_error}")


class StageTimeoutError(StageActionError):
    """Raised when a stage exceeds its expected duration bound."""

    def __init__(self, stage_name: str, timeout: float, original_error: TimeoutError) -> None:
        self.timeout = timeout
        super().__init__(stage_name, original_error)

    def __str__(self) -> str:
        return f"Stage '{self.stage_name}' exceeded its timeout of {self.timeout:g}s"


# ============================================================================
# Driver Errors
# ============================================================================


class HttpClientError(ShiplineError):
    """Raised when an HTTP request fails with a non-2xx status code.

    Attributes
    ----------
    status_code : int
        The HTTP status code.
    body : Any
        The response body.
    """

    def __init__(self, status_code: int, body: object, message: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"HTTP {status_code}")


__all__ = [
    # Base
    "ShiplineError",
    # Configuration & definition
    "ConfigurationError",
    "PipelineDefinitionError",
    "ResolveError",
    # Run-level
    "ParameterResolutionError",
    "MissingParameterError",
    "CredentialResolutionError",
    "RunCancelledError",
    # Stage
    "StageActionError",
    "StageTimeoutError",
    # Drivers
    "HttpClientError",
]
