"""Run parameter resolution.

Parameters are validated exactly once, at run start, before any stage is
started. Values are opaque strings: no case-folding, no defaults, no
trimming.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from types import MappingProxyType
from typing import TYPE_CHECKING

from shipline.kernel.exceptions import MissingParameterError, ParameterResolutionError
from shipline.kernel.logging import get_logger

if TYPE_CHECKING:
    from shipline.kernel.domain.pipeline import ParameterSpec

logger = get_logger(__name__)


class ParameterBinding(Mapping[str, str]):
    """Read-only mapping of parameter name to value for one run.

    Examples
    --------
    >>> binding = ParameterBinding({"tag": "v1.2.0"})
    >>> binding["tag"]
    'v1.2.0'
    >>> binding["tag"] = "v2"  # doctest: +IGNORE_EXCEPTION_DETAIL
    Traceback (most recent call last):
    TypeError: 'ParameterBinding' object does not support item assignment
    """

    __slots__ = ("_values",)

    def __init__(self, values: Mapping[str, str]) -> None:
        self._values = MappingProxyType(dict(values))

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"ParameterBinding({dict(self._values)!r})"


class ParameterResolver:
    """Validate supplied run parameters against the declared ones."""

    def resolve(
        self,
        declared: Sequence[ParameterSpec],
        supplied: Mapping[str, str],
    ) -> ParameterBinding:
        """Bind supplied values to declared parameters.

        Parameters
        ----------
        declared : Sequence[ParameterSpec]
            Parameters declared by the pipeline.
        supplied : Mapping[str, str]
            Values given at invocation time.

        Returns
        -------
        ParameterBinding
            Immutable binding of every declared parameter that was supplied.

        Raises
        ------
        MissingParameterError
            If any required parameter is absent.
        ParameterResolutionError
            If a supplied value is not a string.
        """
        missing = [p.name for p in declared if p.required and p.name not in supplied]
        if missing:
            logger.error("Run rejected, missing required parameter(s): {}", ", ".join(missing))
            raise MissingParameterError(missing)

        declared_names = {p.name for p in declared}
        values: dict[str, str] = {}
        for name, value in supplied.items():
            if name not in declared_names:
                logger.warning("Ignoring undeclared parameter '{}'", name)
                continue
            if not isinstance(value, str):
                raise ParameterResolutionError(
                    f"Parameter '{name}' must be a string, got {type(value).__name__}"
                )
            values[name] = value

        logger.debug("Resolved parameters: {}", sorted(values))
        return ParameterBinding(values)
