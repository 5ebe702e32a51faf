"""In-process Python callables as stage actions."""

from __future__ import annotations

import asyncio
import contextvars
import inspect
from collections.abc import Callable
from typing import Any

from shipline.kernel.logging import get_logger
from shipline.kernel.ports.action import ActionInvocation, ActionResult, StageAction
from shipline.kernel.resolver import resolve_function

logger = get_logger(__name__)


class PythonAction(StageAction):
    """Calls ``target(invocation)``.

    The callable may be sync or async. It may return an
    :class:`ActionResult`, an ``int`` exit status, a ``bool`` (True means
    success) or None (success). Sync callables run in the default executor.

    Parameters
    ----------
    target : str | Callable[..., Any]
        ``module.attr`` path or the callable itself.
    """

    def __init__(self, target: str | Callable[..., Any]) -> None:
        self.target = target
        self._func = resolve_function(target) if isinstance(target, str) else target

    async def aexecute(self, invocation: ActionInvocation) -> ActionResult:
        if inspect.iscoroutinefunction(self._func):
            value = await self._func(invocation)
        else:
            # Copy context so the run id reaches log lines from the worker thread
            ctx = contextvars.copy_context()

            def _run_sync() -> Any:
                return self._func(invocation)

            value = await asyncio.get_running_loop().run_in_executor(None, ctx.run, _run_sync)
        return _to_result(value)


def _to_result(value: Any) -> ActionResult:
    if isinstance(value, ActionResult):
        return value
    if value is None or value is True:
        return ActionResult(exit_status=0)
    if value is False:
        return ActionResult(exit_status=1)
    if isinstance(value, int):
        return ActionResult(exit_status=value)
    raise TypeError(f"python action returned unsupported {type(value).__name__}")
