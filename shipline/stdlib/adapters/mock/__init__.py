"""Mock implementations for testing purposes."""

from .mock_action import MockAction, RecordedInvocation

__all__ = [
    "MockAction",
    "RecordedInvocation",
]
