"""Secret store adapters."""

from shipline.stdlib.adapters.secret.env_secret_store import EnvSecretStore, StaticSecretStore

__all__ = ["EnvSecretStore", "StaticSecretStore"]
