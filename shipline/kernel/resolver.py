"""Module path resolver for pluggable components.

Verdict sources and python actions are referenced from pipeline manifests by
their full module path, or by a short built-in alias.

Examples
--------
>>> from shipline.kernel.resolver import resolve
>>> source_cls = resolve("http")  # doctest: +SKIP
>>> source_cls = resolve("shipline.stdlib.adapters.verdict.HttpVerdictSource")  # doctest: +SKIP
"""

from __future__ import annotations

import importlib
from collections.abc import Callable
from typing import Any

from shipline.kernel.exceptions import ResolveError

# Short names usable as ``source.kind`` in quality gate specs
_builtin_aliases: dict[str, str] = {
    "http": "shipline.stdlib.adapters.verdict.HttpVerdictSource",
    "sonarqube": "shipline.stdlib.adapters.verdict.HttpVerdictSource",
    "static": "shipline.stdlib.adapters.verdict.StaticVerdictSource",
    "delayed": "shipline.stdlib.adapters.verdict.DelayedVerdictSource",
}

# User-registered aliases (take precedence over built-ins)
_user_aliases: dict[str, str] = {}


def register_alias(alias: str, full_path: str) -> None:
    """Register a short name for a component path.

    Parameters
    ----------
    alias : str
        Short name to use in manifests (e.g., "vault_gate")
    full_path : str
        Full module path (e.g., "myapp.gates.VaultGate")
    """
    if not alias:
        raise ResolveError("alias", "Alias cannot be empty")
    if not full_path:
        raise ResolveError("full_path", "Full path cannot be empty")
    _user_aliases[alias] = full_path


def clear_aliases() -> None:
    """Clear all user-registered aliases.

    This is primarily useful for testing.
    """
    _user_aliases.clear()


def _import_attribute(kind: str) -> Any:
    kind = _user_aliases.get(kind, kind)
    kind = _builtin_aliases.get(kind, kind)

    if "." not in kind:
        raise ResolveError(
            kind,
            "Must be a full module path (e.g., 'myapp.gates.VaultGate') or a registered alias",
        )

    module_path, attr_name = kind.rsplit(".", 1)
    try:
        module = importlib.import_module(module_path)
    except ModuleNotFoundError as e:
        raise ResolveError(kind, f"Module '{module_path}' not found: {e}") from e
    except ImportError as e:
        raise ResolveError(kind, f"Failed to import '{module_path}': {e}") from e

    try:
        return getattr(module, attr_name)
    except AttributeError as e:
        available = [name for name in dir(module) if not name.startswith("_")]
        raise ResolveError(
            kind,
            f"'{attr_name}' not found in '{module_path}'. Available: {', '.join(available[:10])}",
        ) from e


def resolve(kind: str) -> type[Any]:
    """Resolve a kind string to a Python class.

    Raises
    ------
    ResolveError
        If the module or class cannot be found, or the attribute is not a class
    """
    cls = _import_attribute(kind)
    if not isinstance(cls, type):
        raise ResolveError(kind, f"'{kind}' is not a class (got {type(cls).__name__})")
    return cls


def resolve_function(path: str) -> Callable[..., Any]:
    """Resolve ``module.attr`` to a callable (function or class).

    Raises
    ------
    ResolveError
        If the module or attribute cannot be found, or it is not callable
    """
    func = _import_attribute(path)
    if not callable(func):
        raise ResolveError(path, f"'{path}' is not callable (got {type(func).__name__})")
    return func
