"""Port interfaces between the engine and its external collaborators."""

from shipline.kernel.ports.action import ActionInvocation, ActionResult, StageAction
from shipline.kernel.ports.secret import SecretStore
from shipline.kernel.ports.verdict import VerdictSource

__all__ = [
    "ActionInvocation",
    "ActionResult",
    "SecretStore",
    "StageAction",
    "VerdictSource",
]
