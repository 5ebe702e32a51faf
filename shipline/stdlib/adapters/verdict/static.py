"""Fixed and delayed verdict sources for dry runs and tests."""

from __future__ import annotations

import time

from shipline.kernel.domain.stage import GateVerdict
from shipline.kernel.ports.verdict import VerdictSource


def _as_verdict(value: str | GateVerdict) -> GateVerdict:
    verdict = GateVerdict(str(value).upper())
    if verdict is GateVerdict.TIMED_OUT:
        raise ValueError("a verdict source can only report PASSED or FAILED")
    return verdict


class StaticVerdictSource(VerdictSource):
    """Reports the same verdict on the first poll."""

    def __init__(self, verdict: str | GateVerdict = GateVerdict.PASSED) -> None:
        self.verdict = _as_verdict(verdict)
        self.polls = 0
        self.cancelled = False

    async def apoll(self) -> GateVerdict | None:
        self.polls += 1
        return self.verdict

    async def acancel(self) -> None:
        self.cancelled = True


class DelayedVerdictSource(VerdictSource):
    """Stays pending for ``delay`` seconds after the first poll, then reports.

    Parameters
    ----------
    verdict : str | GateVerdict
        Verdict reported once the delay has elapsed.
    delay : float
        Seconds between the first poll and the verdict.
    """

    def __init__(self, verdict: str | GateVerdict = GateVerdict.PASSED, delay: float = 1.0) -> None:
        self.verdict = _as_verdict(verdict)
        self.delay = delay
        self.polls = 0
        self.cancelled = False
        self._first_poll: float | None = None

    async def apoll(self) -> GateVerdict | None:
        now = time.monotonic()
        if self._first_poll is None:
            self._first_poll = now
        self.polls += 1
        if now - self._first_poll >= self.delay:
            return self.verdict
        return None

    async def acancel(self) -> None:
        self.cancelled = True
