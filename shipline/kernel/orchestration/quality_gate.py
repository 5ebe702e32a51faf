"""Bounded wait for an external quality gate verdict.

The wait produces one of three explicit outcomes (PASSED, FAILED, TIMED_OUT).
It never raises for a negative verdict or a timeout; the stage executor
decides what those mean for the run. Quality gate stages are always SOFT, so
neither outcome can abort later stages.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from shipline.kernel.domain.stage import GateVerdict
from shipline.kernel.logging import get_logger
from shipline.kernel.utils.timer import Timer

if TYPE_CHECKING:
    from shipline.kernel.ports.verdict import VerdictSource

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 5.0


class QualityGateEvaluator:
    """Polls a :class:`VerdictSource` until it reports or the wait runs out.

    Parameters
    ----------
    source : VerdictSource
        The external analysis system.
    poll_interval : float
        Seconds between polls.
    name : str
        Label used in log lines (usually the stage name).
    """

    def __init__(
        self,
        source: VerdictSource,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        name: str = "quality-gate",
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.source = source
        self.poll_interval = poll_interval
        self.name = name

    async def wait_for_verdict(self, timeout: float) -> GateVerdict:
        """Wait at most ``timeout`` seconds for a verdict.

        Returns
        -------
        GateVerdict
            PASSED or FAILED as reported, TIMED_OUT if no verdict arrived in
            time. On timeout the source's pending request is cancelled.

        Raises
        ------
        asyncio.CancelledError
            If the wait itself is cancelled. The pending request is cancelled
            first.
        Exception
            Whatever the source raises while polling. The pending request is
            cancelled first.
        """
        timer = Timer()
        logger.info("Waiting up to {:g}s for quality gate '{}'", timeout, self.name)
        try:
            async with asyncio.timeout(timeout):
                verdict = await self._poll_until_verdict()
        except TimeoutError:
            logger.warning(
                "Quality gate '{}' timed out after {} without a verdict",
                self.name,
                timer.duration_str,
            )
            await self._cancel_request()
            return GateVerdict.TIMED_OUT
        except asyncio.CancelledError:
            logger.warning("Quality gate '{}' wait was cancelled", self.name)
            await self._cancel_request()
            raise
        except Exception as e:
            logger.error("Quality gate '{}' polling failed: {}", self.name, e)
            await self._cancel_request()
            raise

        if verdict is GateVerdict.PASSED:
            logger.info("Quality gate '{}' PASSED after {}", self.name, timer.duration_str)
        else:
            logger.warning("Quality gate '{}' FAILED after {}", self.name, timer.duration_str)
        return verdict

    async def _poll_until_verdict(self) -> GateVerdict:
        while True:
            verdict = await self.source.apoll()
            if verdict is not None:
                if verdict is GateVerdict.TIMED_OUT:
                    raise ValueError("verdict sources report PASSED or FAILED only")
                return verdict
            logger.debug("Quality gate '{}' still pending", self.name)
            await asyncio.sleep(self.poll_interval)

    async def _cancel_request(self) -> None:
        cancel = getattr(self.source, "acancel", None)
        if cancel is None:
            return
        try:
            await asyncio.shield(cancel())
        except Exception as e:
            logger.warning("Failed to cancel pending quality gate request '{}': {}", self.name, e)
