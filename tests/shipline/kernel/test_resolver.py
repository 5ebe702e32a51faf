"""Tests for module path resolution of pluggable components."""

import pytest

from shipline.kernel.exceptions import ResolveError
from shipline.kernel.resolver import clear_aliases, register_alias, resolve, resolve_function
from shipline.stdlib.adapters.verdict import HttpVerdictSource, StaticVerdictSource


@pytest.fixture(autouse=True)
def _reset_aliases():
    yield
    clear_aliases()


class TestResolve:
    def test_builtin_aliases(self) -> None:
        assert resolve("http") is HttpVerdictSource
        assert resolve("sonarqube") is HttpVerdictSource
        assert resolve("static") is StaticVerdictSource

    def test_full_path(self) -> None:
        assert resolve("shipline.stdlib.adapters.verdict.StaticVerdictSource") is (
            StaticVerdictSource
        )

    def test_user_alias(self) -> None:
        register_alias("fixed", "shipline.stdlib.adapters.verdict.StaticVerdictSource")
        assert resolve("fixed") is StaticVerdictSource

    def test_short_name_without_alias(self) -> None:
        with pytest.raises(ResolveError, match="full module path"):
            resolve("vault")

    def test_missing_module(self) -> None:
        with pytest.raises(ResolveError, match="not found"):
            resolve("nonexistent_pkg_xyz.Gate")

    def test_missing_attribute(self) -> None:
        with pytest.raises(ResolveError, match="'Nope' not found"):
            resolve("shipline.stdlib.adapters.verdict.Nope")

    def test_not_a_class(self) -> None:
        with pytest.raises(ResolveError, match="not a class"):
            resolve("shipline.kernel.templating.render")

    def test_empty_alias_rejected(self) -> None:
        with pytest.raises(ResolveError):
            register_alias("", "a.b")


class TestResolveFunction:
    def test_function(self) -> None:
        from shipline.kernel.templating import render

        assert resolve_function("shipline.kernel.templating.render") is render

    def test_not_callable(self) -> None:
        with pytest.raises(ResolveError, match="not callable"):
            resolve_function("shipline.kernel.templating.PLACEHOLDER_PATTERN")
