"""Masking of secret values in text written to logs and artifacts."""

from collections.abc import Iterable

MASK = "****"


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every occurrence of each secret value in ``text`` with ``****``.

    Longer values are replaced first so a secret that contains another one is
    masked completely.

    Examples
    --------
    >>> redact("login -p hunter2", {"hunter2"})
    'login -p ****'
    """
    for value in sorted((s for s in secrets if s), key=len, reverse=True):
        text = text.replace(value, MASK)
    return text
