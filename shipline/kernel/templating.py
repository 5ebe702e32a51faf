"""``${name}`` placeholder handling for stage arguments and identifiers.

Placeholders are replaced verbatim with run parameter values (or values
exported by earlier stages). ``$${name}`` is an escape that renders as the
literal text ``${name}``, which lets shell snippets keep their own variable
syntax.

Examples
--------
>>> render("backend:${tag}", {"tag": "v1.2.0"})
'backend:v1.2.0'
>>> render("echo $${HOME}", {})
'echo ${HOME}'
>>> sorted(find_references("${image}-${tag}"))
['image', 'tag']
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

PLACEHOLDER_PATTERN = re.compile(r"\$(\$?)\{([A-Za-z_][A-Za-z0-9_.-]*)\}")


class UnresolvedReferenceError(KeyError):
    """Raised when a placeholder has no value at render time."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"unresolved reference '${{{self.name}}}'"


def find_references(text: str) -> set[str]:
    """Return the placeholder names referenced by ``text`` (escapes excluded)."""
    return {name for escape, name in PLACEHOLDER_PATTERN.findall(text) if not escape}


def render(text: str, values: Mapping[str, str]) -> str:
    """Substitute every ``${name}`` in ``text`` with ``values[name]``.

    Raises
    ------
    UnresolvedReferenceError
        If a referenced name has no value.
    """

    def replacer(match: re.Match[str]) -> str:
        escape, name = match.group(1), match.group(2)
        if escape:
            return f"${{{name}}}"
        try:
            return values[name]
        except KeyError:
            raise UnresolvedReferenceError(name) from None

    return PLACEHOLDER_PATTERN.sub(replacer, text)


def iter_strings(data: Any) -> Iterator[str]:
    """Yield every string leaf of a nested dict/list structure."""
    if isinstance(data, str):
        yield data
    elif isinstance(data, Mapping):
        for value in data.values():
            yield from iter_strings(value)
    elif isinstance(data, Iterable):
        for item in data:
            yield from iter_strings(item)


def render_structure(data: Any, values: Mapping[str, str]) -> Any:
    """Render every string leaf of a nested dict/list structure."""
    if isinstance(data, str):
        return render(data, values)
    if isinstance(data, Mapping):
        return {key: render_structure(value, values) for key, value in data.items()}
    if isinstance(data, list | tuple):
        return [render_structure(item, values) for item in data]
    return data
