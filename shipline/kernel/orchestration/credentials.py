"""Credential scope management.

A credential scope turns a named reference (``registry``, ``sonar``) into
environment bindings that only the owning stage's process sees. Scopes are
acquired right before a stage's action runs and released as soon as the stage
ends, on every exit path, exactly once.

Secret values stay wrapped in :class:`~shipline.kernel.types.Secret` until
they are placed into the stage environment; they never reach ``os.environ``,
command-line arguments or the logger.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from shipline.kernel.exceptions import CredentialResolutionError
from shipline.kernel.logging import get_logger

if TYPE_CHECKING:
    from shipline.kernel.domain.pipeline import CredentialSpec
    from shipline.kernel.orchestration.context import RunContext
    from shipline.kernel.ports.secret import SecretStore
    from shipline.kernel.types import Secret

logger = get_logger(__name__)

# Runs a login/logout command: (args, env=..., cwd=..., log_path=..., redactions=...) -> exit status
SessionRunner = Callable[..., Awaitable[int]]


@dataclass(slots=True, eq=False)
class CredentialScope:
    """Ephemeral credential bindings owned by one stage execution.

    Attributes
    ----------
    scope_id : str
        Unique id of this acquisition.
    name : str
        Credential reference the scope was acquired for.
    owner : str
        Name of the stage that owns the scope.
    bindings : dict[str, Secret]
        Environment variable name → secret value.
    acquired_at : datetime
        When the scope was acquired.
    released : bool
        Set once the scope has been released.
    """

    scope_id: str
    name: str
    owner: str
    bindings: dict[str, Secret]
    acquired_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    released: bool = False

    def environment(self) -> dict[str, str]:
        """Unwrap the bindings for the owning stage's process environment."""
        if self.released:
            raise RuntimeError(f"Credential scope '{self.name}' ({self.scope_id}) was released")
        return {env_var: secret.get() for env_var, secret in self.bindings.items()}

    @property
    def secret_values(self) -> frozenset[str]:
        """Raw values that must be masked in logs and artifacts."""
        return frozenset(secret.get() for secret in self.bindings.values())


class CredentialScopeManager:
    """Acquires and releases credential scopes for stage executions.

    Parameters
    ----------
    store : SecretStore
        Backend resolving secret keys to values.
    credentials : Mapping[str, CredentialSpec]
        Declared credential references of the pipeline.
    session_runner : SessionRunner | None
        Runs ``login``/``logout`` commands. Required only when a declared
        reference has such commands.

    Attributes
    ----------
    shielded_variables : frozenset[str]
        Binding names of every declared reference plus the engine variables
        the store reads their secrets from. No child process inherits them
        from the engine.
    """

    def __init__(
        self,
        store: SecretStore,
        credentials: Mapping[str, CredentialSpec],
        session_runner: SessionRunner | None = None,
    ) -> None:
        self._store = store
        self._credentials = dict(credentials)
        self._session_runner = session_runner
        self._active: dict[str, CredentialScope] = {}
        self._seen_values: set[str] = set()
        self.acquired_count = 0
        self.released_count = 0
        self.shielded_variables = self._shielded_variables()

    def _shielded_variables(self) -> frozenset[str]:
        names: set[str] = set()
        for spec in self._credentials.values():
            names.update(spec.bindings)
            for key in spec.bindings.values():
                if variable := self._store.variable_name(key):
                    names.add(variable)
        return frozenset(names)

    def masked_values(self) -> frozenset[str]:
        """Every credential value of the run that logs must not contain.

        Covers values acquired so far and the current values of the shielded
        engine variables, whichever stage owns them.
        """
        ambient = {os.environ[name] for name in self.shielded_variables if os.environ.get(name)}
        return frozenset(self._seen_values | ambient)

    @property
    def active_scopes(self) -> list[CredentialScope]:
        """Scopes acquired and not yet released."""
        return list(self._active.values())

    async def acquire(
        self,
        name: str,
        owner: str,
        *,
        workspace: Path | None = None,
        log_path: Path | None = None,
    ) -> CredentialScope:
        """Resolve a credential reference into a scope owned by ``owner``.

        Raises
        ------
        CredentialResolutionError
            If the reference is unknown, the backend fails or the login
            command does not succeed.
        """
        spec = self._credentials.get(name)
        if spec is None:
            raise CredentialResolutionError(name, "unknown credential reference")

        bindings: dict[str, Secret] = {}
        for env_var, key in spec.bindings.items():
            try:
                bindings[env_var] = await self._store.aget_secret(key)
            except KeyError:
                raise CredentialResolutionError(name, f"secret '{key}' not found") from None
            except Exception as e:
                # Backend messages may quote the value, keep only the type
                raise CredentialResolutionError(
                    name, f"secret backend unavailable ({type(e).__name__})"
                ) from None

        scope = CredentialScope(
            scope_id=uuid.uuid4().hex[:12],
            name=name,
            owner=owner,
            bindings=bindings,
        )
        self._seen_values |= scope.secret_values
        self._active[scope.scope_id] = scope
        self.acquired_count += 1
        logger.info(
            "🔐 Acquired credential scope '{}' ({}) for stage '{}' [{}]",
            name,
            scope.scope_id,
            owner,
            ", ".join(sorted(bindings)),
        )

        if spec.login:
            try:
                status = await self._run_session_command(spec.login, scope, workspace, log_path)
            except CredentialResolutionError:
                await self.release(scope)
                raise
            except Exception as e:
                await self.release(scope)
                raise CredentialResolutionError(name, f"login failed: {e}") from e
            except BaseException:
                await self.release(scope)
                raise
            if status != 0:
                await self.release(scope)
                raise CredentialResolutionError(name, f"login exited with status {status}")
        return scope

    async def release(self, scope: CredentialScope) -> None:
        """Release a scope. Repeated calls for the same scope are no-ops."""
        if scope.released:
            logger.debug("Credential scope '{}' ({}) already released", scope.name, scope.scope_id)
            return

        spec = self._credentials.get(scope.name)
        try:
            if spec is not None and spec.logout:
                try:
                    status = await self._run_session_command(spec.logout, scope, None, None)
                    if status != 0:
                        logger.warning(
                            "Logout for credential scope '{}' exited with status {}",
                            scope.name,
                            status,
                        )
                except Exception as e:
                    logger.warning("Logout for credential scope '{}' failed: {}", scope.name, e)
        finally:
            scope.released = True
            scope.bindings.clear()
            self._active.pop(scope.scope_id, None)
            self.released_count += 1
            logger.info(
                "🔓 Released credential scope '{}' ({}) of stage '{}'",
                scope.name,
                scope.scope_id,
                scope.owner,
            )

    @asynccontextmanager
    async def scoped(
        self, names: Sequence[str], owner: str, context: RunContext
    ) -> AsyncIterator[list[CredentialScope]]:
        """Hold every scope in ``names`` for the duration of the block.

        Scopes acquired before a failing acquisition are released too.
        """
        async with AsyncExitStack() as stack:
            scopes: list[CredentialScope] = []
            try:
                for name in names:
                    scope = await self.acquire(
                        name,
                        owner,
                        workspace=context.workspace,
                        log_path=context.log_path(owner),
                    )
                    stack.push_async_callback(self.release, scope)
                    context.active_scopes[name] = scope
                    scopes.append(scope)
                yield scopes
            finally:
                for name in names:
                    context.active_scopes.pop(name, None)

    async def _run_session_command(
        self,
        args: Sequence[str],
        scope: CredentialScope,
        workspace: Path | None,
        log_path: Path | None,
    ) -> int:
        if self._session_runner is None:
            raise CredentialResolutionError(
                scope.name, "login/logout commands declared but no session runner configured"
            )
        kwargs: dict[str, Any] = {
            "env": scope.environment(),
            "cwd": workspace,
            "log_path": log_path,
            "redactions": scope.secret_values | self.masked_values(),
            "unset_env": self.shielded_variables,
        }
        return await self._session_runner(tuple(args), **kwargs)
