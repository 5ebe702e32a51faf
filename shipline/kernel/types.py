"""Shared value types."""

from __future__ import annotations


class Secret:
    """Minimal secret wrapper to avoid accidental str() in logs.

    Secret stores return values wrapped in this class. The raw value is only
    reachable through an explicit ``get()``.

    Examples
    --------
    >>> secret = Secret("s3cr3t")
    >>> print(secret)
    <SECRET>
    >>> secret.get()
    's3cr3t'
    """

    __slots__ = ("__value",)

    def __init__(self, value: str) -> None:
        self.__value = value  # Double underscore for name mangling

    def get(self) -> str:
        """Return the wrapped secret value."""
        return self.__value

    def __repr__(self) -> str:
        return "<SECRET>"

    def __str__(self) -> str:
        return "<SECRET>"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Secret):
            return self.__value == other.__value
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.__value)
