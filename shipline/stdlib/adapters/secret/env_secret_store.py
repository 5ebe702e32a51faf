"""Secret stores backed by the environment of the engine process or by memory."""

import os
import re
from collections.abc import Mapping

from shipline.kernel.logging import get_logger
from shipline.kernel.ports.secret import SecretStore
from shipline.kernel.types import Secret

logger = get_logger(__name__)

_NON_ENV_CHARS = re.compile(r"[^A-Za-z0-9_]")


class EnvSecretStore(SecretStore):
    """Secret store that reads secret keys from environment variables.

    This is how CI credential stores usually hand secrets to a job. Keys are
    mapped to variable names by upper-casing them and replacing every
    character that is not allowed in a variable name with ``_``, then adding
    the prefix.

    The engine reads these variables once per acquisition; they are exposed to
    stages only through the stage environment built from a credential scope.

    Examples
    --------
    Basic usage::

        store = EnvSecretStore(prefix="CI_SECRET_")
        password = await store.aget_secret("registry/password")
        # looks up CI_SECRET_REGISTRY_PASSWORD
        print(password)  # <SECRET>
    """

    prefix: str
    allow_empty: bool

    def __init__(self, prefix: str = "", allow_empty: bool = False) -> None:
        """Initialize the environment secret store.

        Args
        ----
            prefix: Prefix for environment variable names (e.g., "CI_SECRET_").
            allow_empty: Allow empty secret values. Default: False.
        """
        self.prefix = prefix
        self.allow_empty = allow_empty

    def variable_name(self, key: str) -> str:
        """Environment variable that holds ``key``."""
        return f"{self.prefix}{_NON_ENV_CHARS.sub('_', key).upper()}"

    async def aget_secret(self, key: str) -> Secret:
        """Retrieve a secret from the environment.

        Raises
        ------
        KeyError
            If the variable is not set
        ValueError
            If the value is empty (unless allow_empty=True)
        """
        env_var_name = self.variable_name(key)
        value = os.environ.get(env_var_name)

        if value is None:
            raise KeyError(f"Secret '{key}' not found (looked for: {env_var_name})")
        if value == "" and not self.allow_empty:
            raise ValueError(f"Secret '{key}' is empty")

        logger.debug("Resolved secret '{}' from ${}", key, env_var_name)
        return Secret(value)


class StaticSecretStore(SecretStore):
    """In-memory secret store for dry runs and tests.

    Examples
    --------
    >>> import asyncio
    >>> store = StaticSecretStore({"registry/password": "hunter2"})
    >>> asyncio.run(store.aget_secret("registry/password")).get()
    'hunter2'
    """

    def __init__(self, secrets: Mapping[str, str] | None = None) -> None:
        self._secrets = {key: Secret(value) for key, value in (secrets or {}).items()}
        self.requested: list[str] = []

    async def aget_secret(self, key: str) -> Secret:
        self.requested.append(key)
        try:
            return self._secrets[key]
        except KeyError:
            raise KeyError(f"Secret '{key}' not found") from None
