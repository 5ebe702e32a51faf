"""Tests for credential scope acquisition and release."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from shipline.kernel.domain.pipeline import CredentialSpec
from shipline.kernel.exceptions import CredentialResolutionError
from shipline.kernel.orchestration.context import RunContext
from shipline.kernel.orchestration.credentials import CredentialScopeManager
from shipline.kernel.orchestration.parameters import ParameterBinding
from shipline.kernel.ports.secret import SecretStore
from shipline.stdlib.adapters.secret import EnvSecretStore, StaticSecretStore

REGISTRY = CredentialSpec(bindings={"REGISTRY_USER": "registry/user", "REGISTRY_PASSWORD": "pw"})
STORE = {"registry/user": "ci-bot", "pw": "hunter2"}


class BrokenStore(SecretStore):
    async def aget_secret(self, key: str):
        raise ConnectionError(f"vault down while reading {key}=hunter2")


def _context(tmp_path: Path) -> RunContext:
    return RunContext(run_id="r1", workspace=tmp_path, parameters=ParameterBinding({}))


class TestAcquireRelease:
    @pytest.mark.asyncio
    async def test_acquire_exposes_environment(self) -> None:
        manager = CredentialScopeManager(StaticSecretStore(STORE), {"registry": REGISTRY})
        scope = await manager.acquire("registry", "push")

        assert scope.owner == "push"
        assert scope.environment() == {"REGISTRY_USER": "ci-bot", "REGISTRY_PASSWORD": "hunter2"}
        assert scope.secret_values == frozenset({"ci-bot", "hunter2"})
        assert manager.active_scopes == [scope]
        assert "hunter2" not in repr(scope)

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self) -> None:
        manager = CredentialScopeManager(StaticSecretStore(STORE), {"registry": REGISTRY})
        scope = await manager.acquire("registry", "push")

        await manager.release(scope)
        await manager.release(scope)

        assert scope.released
        assert manager.released_count == 1
        assert manager.active_scopes == []
        with pytest.raises(RuntimeError, match="released"):
            scope.environment()

    @pytest.mark.asyncio
    async def test_each_acquisition_is_a_new_scope(self) -> None:
        manager = CredentialScopeManager(StaticSecretStore(STORE), {"registry": REGISTRY})
        first = await manager.acquire("registry", "push")
        second = await manager.acquire("registry", "deploy")
        assert first.scope_id != second.scope_id
        assert manager.acquired_count == 2

    @pytest.mark.asyncio
    async def test_unknown_reference(self) -> None:
        manager = CredentialScopeManager(StaticSecretStore(STORE), {})
        with pytest.raises(CredentialResolutionError, match="unknown credential reference"):
            await manager.acquire("registry", "push")

    @pytest.mark.asyncio
    async def test_missing_secret(self) -> None:
        manager = CredentialScopeManager(StaticSecretStore({}), {"registry": REGISTRY})
        with pytest.raises(CredentialResolutionError, match="not found"):
            await manager.acquire("registry", "push")
        assert manager.acquired_count == 0

    @pytest.mark.asyncio
    async def test_backend_error_does_not_leak_message(self) -> None:
        manager = CredentialScopeManager(BrokenStore(), {"registry": REGISTRY})
        with pytest.raises(CredentialResolutionError) as exc_info:
            await manager.acquire("registry", "push")
        assert "ConnectionError" in str(exc_info.value)
        assert "hunter2" not in str(exc_info.value)


class TestLoginLogout:
    @pytest.mark.asyncio
    async def test_login_and_logout_receive_bindings(self, tmp_path: Path) -> None:
        spec = CredentialSpec(
            bindings={"REGISTRY_PASSWORD": "pw"},
            login=("docker", "login", "-u", "ci"),
            logout=("docker", "logout"),
        )
        runner = AsyncMock(return_value=0)
        manager = CredentialScopeManager(StaticSecretStore(STORE), {"registry": spec}, runner)

        scope = await manager.acquire("registry", "push", workspace=tmp_path)
        login_call = runner.await_args
        assert login_call.args[0] == ("docker", "login", "-u", "ci")
        assert login_call.kwargs["env"] == {"REGISTRY_PASSWORD": "hunter2"}
        assert "hunter2" in login_call.kwargs["redactions"]
        assert login_call.kwargs["cwd"] == tmp_path

        await manager.release(scope)
        assert runner.await_count == 2
        assert runner.await_args.args[0] == ("docker", "logout")

    @pytest.mark.asyncio
    async def test_failed_login_releases_scope(self) -> None:
        spec = CredentialSpec(bindings={"REGISTRY_PASSWORD": "pw"}, login=("docker", "login"))
        runner = AsyncMock(return_value=1)
        manager = CredentialScopeManager(StaticSecretStore(STORE), {"registry": spec}, runner)

        with pytest.raises(CredentialResolutionError, match="login exited with status 1"):
            await manager.acquire("registry", "push")
        assert manager.acquired_count == 1
        assert manager.released_count == 1
        assert manager.active_scopes == []

    @pytest.mark.asyncio
    async def test_login_exception_releases_scope(self) -> None:
        spec = CredentialSpec(bindings={"REGISTRY_PASSWORD": "pw"}, login=("docker", "login"))
        runner = AsyncMock(side_effect=OSError("spawn failed"))
        manager = CredentialScopeManager(StaticSecretStore(STORE), {"registry": spec}, runner)

        with pytest.raises(CredentialResolutionError, match="login failed"):
            await manager.acquire("registry", "push")
        assert manager.released_count == 1

    @pytest.mark.asyncio
    async def test_login_without_runner(self) -> None:
        spec = CredentialSpec(bindings={"REGISTRY_PASSWORD": "pw"}, login=("docker", "login"))
        manager = CredentialScopeManager(StaticSecretStore(STORE), {"registry": spec})

        with pytest.raises(CredentialResolutionError, match="no session runner"):
            await manager.acquire("registry", "push")
        assert manager.released_count == 1

    @pytest.mark.asyncio
    async def test_failed_logout_still_releases(self) -> None:
        spec = CredentialSpec(bindings={"REGISTRY_PASSWORD": "pw"}, logout=("docker", "logout"))
        runner = AsyncMock(side_effect=RuntimeError("daemon gone"))
        manager = CredentialScopeManager(StaticSecretStore(STORE), {"registry": spec}, runner)

        scope = await manager.acquire("registry", "push")
        await manager.release(scope)

        assert scope.released
        assert manager.released_count == 1


class TestScoped:
    @pytest.mark.asyncio
    async def test_released_on_normal_exit(self, tmp_path: Path) -> None:
        manager = CredentialScopeManager(StaticSecretStore(STORE), {"registry": REGISTRY})
        context = _context(tmp_path)

        async with manager.scoped(["registry"], "push", context) as scopes:
            assert [s.name for s in scopes] == ["registry"]
            assert "registry" in context.active_scopes

        assert context.active_scopes == {}
        assert scopes[0].released
        assert manager.released_count == 1

    @pytest.mark.asyncio
    async def test_released_exactly_once_when_block_raises(self, tmp_path: Path) -> None:
        manager = CredentialScopeManager(StaticSecretStore(STORE), {"registry": REGISTRY})
        context = _context(tmp_path)

        with pytest.raises(RuntimeError, match="action blew up"):
            async with manager.scoped(["registry"], "push", context) as scopes:
                raise RuntimeError("action blew up")

        assert scopes[0].released
        assert manager.acquired_count == manager.released_count == 1
        assert context.active_scopes == {}

    @pytest.mark.asyncio
    async def test_partial_acquisition_released(self, tmp_path: Path) -> None:
        credentials = {
            "registry": REGISTRY,
            "sonar": CredentialSpec(bindings={"SONAR_TOKEN": "sonar/token"}),
        }
        manager = CredentialScopeManager(StaticSecretStore(STORE), credentials)
        context = _context(tmp_path)

        with pytest.raises(CredentialResolutionError, match="sonar"):
            async with manager.scoped(["registry", "sonar"], "push", context):
                pytest.fail("block must not run")

        assert manager.acquired_count == 1
        assert manager.released_count == 1
        assert manager.active_scopes == []

    @pytest.mark.asyncio
    async def test_no_scopes(self, tmp_path: Path) -> None:
        manager = CredentialScopeManager(StaticSecretStore(STORE), {})
        async with manager.scoped([], "build", _context(tmp_path)) as scopes:
            assert scopes == []
        assert manager.acquired_count == 0


class TestShielding:
    def test_shielded_variables_include_store_variables(self) -> None:
        credentials = {
            "registry": CredentialSpec(bindings={"DOCKER_PASSWORD": "registry/password"}),
            "sonar": CredentialSpec(bindings={"SONAR_TOKEN": "sonar/token"}),
        }
        manager = CredentialScopeManager(EnvSecretStore(prefix="CI_"), credentials)
        assert manager.shielded_variables == {
            "DOCKER_PASSWORD",
            "CI_REGISTRY_PASSWORD",
            "SONAR_TOKEN",
            "CI_SONAR_TOKEN",
        }

    def test_masked_values_cover_unacquired_environment_secrets(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("REGISTRY_PASSWORD", "s3cr3t-value")
        spec = CredentialSpec(bindings={"REGISTRY_PASSWORD": "registry/password"})
        manager = CredentialScopeManager(EnvSecretStore(), {"registry": spec})
        assert manager.masked_values() == {"s3cr3t-value"}

    @pytest.mark.asyncio
    async def test_masked_values_remember_released_scopes(self) -> None:
        manager = CredentialScopeManager(StaticSecretStore(STORE), {"registry": REGISTRY})
        await manager.release(await manager.acquire("registry", "push"))
        assert {"ci-bot", "hunter2"} <= manager.masked_values()

    @pytest.mark.asyncio
    async def test_session_commands_do_not_inherit_shielded_variables(self) -> None:
        spec = CredentialSpec(bindings={"REGISTRY_PASSWORD": "pw"}, login=("docker", "login"))
        runner = AsyncMock(return_value=0)
        manager = CredentialScopeManager(StaticSecretStore(STORE), {"registry": spec}, runner)

        await manager.acquire("registry", "push")
        assert runner.await_args.kwargs["unset_env"] == {"REGISTRY_PASSWORD"}
