"""Port interface for secret stores (vaults, CI credential stores, env vars)."""

from abc import abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from shipline.kernel.types import Secret


@runtime_checkable
class SecretStore(Protocol):
    """Port interface for resolving named secret references.

    Secrets are returned as :class:`~shipline.kernel.types.Secret` objects so
    they cannot leak through ``str()`` or log formatting.
    """

    @abstractmethod
    async def aget_secret(self, key: str) -> "Secret":
        """Retrieve a single secret by key.

        Args
        ----
            key: Secret identifier (e.g., "registry/password")

        Returns
        -------
        Secret
            Wrapper around the secret value. Use ``.get()`` to unwrap.

        Raises
        ------
        KeyError
            If the secret does not exist
        ValueError
            If the secret value is empty or invalid
        """
        ...

    def variable_name(self, key: str) -> "str | None":
        """Process environment variable ``key`` is read from, if any.

        Such variables are kept out of every child process environment so
        only the stage owning the credential sees the value.
        """
        return None
