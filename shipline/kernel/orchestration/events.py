"""Run and stage lifecycle events."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from shipline.kernel.logging import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class Event:
    """Base class for all events - provides timestamp."""

    timestamp: datetime = field(default_factory=datetime.now, init=False)

    def log_message(self) -> str:
        """Get a formatted log message for this event.

        Override in subclasses to provide custom formatting.

        Returns
        -------
        str
            A formatted string suitable for logging
        """
        return f"{self.__class__.__name__} at {self.timestamp.isoformat()}"


# Run events
@dataclass(slots=True)
class RunStarted(Event):
    """A pipeline run has started."""

    run_id: str
    pipeline_name: str
    total_stages: int

    def log_message(self) -> str:
        return (
            f"🎬 Run '{self.run_id}' of pipeline '{self.pipeline_name}' "
            f"started with {self.total_stages} stages"
        )


@dataclass(slots=True)
class RunCompleted(Event):
    """A pipeline run has finished, whatever its outcome."""

    run_id: str
    pipeline_name: str
    outcome: str
    duration_ms: float
    cancelled: bool = False

    def log_message(self) -> str:
        icon = {"SUCCESS": "🎉", "FAILED_NONBLOCKING": "⚠️"}.get(self.outcome, "💥")
        note = " (cancelled)" if self.cancelled else ""
        return (
            f"{icon} Run '{self.run_id}' finished {self.outcome}{note} "
            f"in {self.duration_ms / 1000:.2f}s"
        )


# Stage events
@dataclass(slots=True)
class StageStarted(Event):
    """A stage has started."""

    name: str
    ordinal: int
    policy: str

    def log_message(self) -> str:
        return f"🚀 Stage '{self.name}' started (#{self.ordinal}, policy {self.policy})"


@dataclass(slots=True)
class StageCompleted(Event):
    """A stage has succeeded."""

    name: str
    duration_ms: float
    artifacts: int = 0

    def log_message(self) -> str:
        return (
            f"✅ Stage '{self.name}' succeeded in {self.duration_ms / 1000:.2f}s "
            f"({self.artifacts} artifacts)"
        )


@dataclass(slots=True)
class StageFailed(Event):
    """A stage has failed. ``policy`` is the policy that was applied."""

    name: str
    policy: str
    error: str
    exit_status: int | None = None

    def log_message(self) -> str:
        status = f" (exit status {self.exit_status})" if self.exit_status is not None else ""
        return f"❌ Stage '{self.name}' failed [{self.policy}]{status}: {self.error}"


@dataclass(slots=True)
class StageSkipped(Event):
    """A stage was never started."""

    name: str
    reason: str

    def log_message(self) -> str:
        return f"⏭️ Stage '{self.name}' skipped: {self.reason}"


@dataclass(slots=True)
class QualityGateResolved(Event):
    """A quality gate wait ended."""

    name: str
    verdict: str
    waited_ms: float

    def log_message(self) -> str:
        return (
            f"🚦 Quality gate '{self.name}' resolved {self.verdict} "
            f"after {self.waited_ms / 1000:.2f}s"
        )


@dataclass(slots=True)
class ArchiveCompleted(Event):
    """The post-run archiving phase finished."""

    run_id: str
    artifacts: int
    errors: int
    location: str

    def log_message(self) -> str:
        return (
            f"📦 Archived {self.artifacts} artifacts for run '{self.run_id}' "
            f"to {self.location} ({self.errors} errors)"
        )


Observer = Callable[[Event], object]


class EventBus:
    """Logs events and forwards them to observers.

    Observer failures are logged and never reach the run.
    """

    def __init__(self, observers: list[Observer] | None = None) -> None:
        self._observers: list[Observer] = list(observers or [])

    def subscribe(self, observer: Observer) -> None:
        self._observers.append(observer)

    def __call__(self, event: Event) -> None:
        if isinstance(event, StageFailed | RunCompleted) and _is_failure(event):
            logger.warning(event.log_message())
        else:
            logger.info(event.log_message())
        for observer in self._observers:
            try:
                observer(event)
            except Exception as e:
                logger.warning(
                    "Observer {} failed on {}: {}",
                    getattr(observer, "__name__", type(observer).__name__),
                    type(event).__name__,
                    e,
                )


def _is_failure(event: Event) -> bool:
    if isinstance(event, RunCompleted):
        return event.outcome != "SUCCESS"
    return True
