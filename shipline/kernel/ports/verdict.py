"""Port interface for external quality gate verdicts."""

from abc import abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from shipline.kernel.domain.stage import GateVerdict


@runtime_checkable
class VerdictSource(Protocol):
    """An external analysis system that eventually reports a gate verdict.

    The quality gate evaluator polls :meth:`apoll` until it returns a verdict
    or the wait times out, in which case :meth:`acancel` is called so the
    external request is left in a consistent state.
    """

    @abstractmethod
    async def apoll(self) -> "GateVerdict | None":
        """Return PASSED or FAILED once known, or None while still pending."""
        ...

    async def acancel(self) -> None:
        """Abandon the pending verdict request (optional)."""
        return None
