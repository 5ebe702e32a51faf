"""Quality gate verdicts from a SonarQube-compatible HTTP API."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from shipline.drivers.http_client import HttpClientDriver
from shipline.kernel.domain.stage import GateVerdict
from shipline.kernel.exceptions import ConfigurationError
from shipline.kernel.logging import get_logger
from shipline.kernel.ports.verdict import VerdictSource

logger = get_logger(__name__)

STATUS_PATH = "api/qualitygates/project_status"
CANCEL_PATH = "api/ce/cancel"

_VERDICTS = {"OK": GateVerdict.PASSED, "ERROR": GateVerdict.FAILED}


class HttpVerdictSource(VerdictSource):
    """Polls ``api/qualitygates/project_status`` for a gate status.

    ``OK`` maps to PASSED, ``ERROR`` to FAILED; anything else (``NONE``,
    ``WARN``, an analysis still in the queue) is treated as pending.

    The API token is never written in the manifest. ``token_env`` names a
    variable of the stage environment, which is where credential scope
    bindings arrive.

    Parameters
    ----------
    base_url : str
        Server URL, e.g. ``https://sonar.example.com``.
    project_key : str | None
        Project whose gate status is polled.
    analysis_id : str | None
        Specific analysis to poll instead of the project's latest.
    task_id : str | None
        Background task id; cancelled through ``api/ce/cancel`` when the
        wait is abandoned.
    token_env : str | None
        Stage environment variable holding the API token.
    environment : Mapping[str, str] | None
        The stage environment (set by the quality gate action).
    request_timeout : float
        Per-request timeout in seconds.

    Examples
    --------
    Manifest usage::

        action:
          kind: quality_gate
          timeout: 300
          source:
            kind: http
            config:
              base_url: https://sonar.example.com
              project_key: backend
              token_env: SONAR_TOKEN
    """

    def __init__(
        self,
        base_url: str,
        project_key: str | None = None,
        analysis_id: str | None = None,
        task_id: str | None = None,
        token_env: str | None = None,
        environment: Mapping[str, str] | None = None,
        request_timeout: float = 10.0,
    ) -> None:
        if not project_key and not analysis_id:
            raise ConfigurationError("http verdict source", "project_key or analysis_id required")
        token = None
        if token_env:
            token = (environment or {}).get(token_env)
            if not token:
                raise ConfigurationError(
                    "http verdict source", f"token variable '{token_env}' is not set"
                )
        self.project_key = project_key
        self.analysis_id = analysis_id
        self.task_id = task_id
        self.client = HttpClientDriver(base_url, timeout=request_timeout, token=token)

    def _params(self) -> dict[str, Any]:
        if self.analysis_id:
            return {"analysisId": self.analysis_id}
        return {"projectKey": self.project_key}

    async def apoll(self) -> GateVerdict | None:
        result = await self.client.aget(STATUS_PATH, params=self._params())
        body = result["body"]
        status = body.get("projectStatus", {}).get("status") if isinstance(body, dict) else None
        verdict = _VERDICTS.get(str(status))
        logger.debug("Gate status {} → {}", status, verdict or "pending")
        return verdict

    async def acancel(self) -> None:
        """Cancel the pending background task, if one is known."""
        if not self.task_id:
            return
        await self.client.apost(CANCEL_PATH, data={"id": self.task_id})
        logger.info("Cancelled pending analysis task {}", self.task_id)

    async def aclose(self) -> None:
        await self.client.aclose()
