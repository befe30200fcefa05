from abc import ABC, abstractmethod
from os import environ
from typing import Mapping, Optional
import logging

from .exceptions import MissingSecretError
from .utils import secret_name


class CredentialStore(ABC):

    """
    Where bearer credentials and per-school connection strings are
    kept. Secrets are addressed as ``{prefix}--{FunctionalName}``;
    global secrets share the prefix given at construction and school
    secrets use the school's own prefix.

    Global secret names: `ClientId`, `ClientSecret`, `AccessToken`,
    `SessionDbConnectionString`. School secret names:
    `ConnectionString`.
    """

    def __init__(self, global_prefix: str):
        self.global_prefix = global_prefix
        self.logger = logging.getLogger(__name__)

    @abstractmethod
    def lookup(self, full_name: str) -> Optional[str]:
        """Returns the value of a secret, or None if it is absent."""
        pass

    def get_global_secret(self, name: str,
                          required: bool = True) -> Optional[str]:
        return self._get(secret_name(self.global_prefix, name), required)

    def get_tenant_secret(self, prefix: str, name: str,
                          required: bool = True) -> Optional[str]:
        return self._get(secret_name(prefix, name), required)

    def _get(self, full_name: str, required: bool) -> Optional[str]:
        value = self.lookup(full_name)
        if not value:
            if required:
                raise MissingSecretError(full_name)
            self.logger.debug(f'Optional secret "{full_name}" not set.')
            return None
        return value


class EnvironmentCredentialStore(CredentialStore):

    """
    Reads secrets from environment variables. ``RosterSync--ClientId``
    is read from `ROSTERSYNC__CLIENTID`.
    """

    def __init__(self, global_prefix: str, env: Mapping = None):
        super().__init__(global_prefix)
        self.env = environ if env is None else env

    @staticmethod
    def env_var_name(full_name: str) -> str:
        return full_name.replace('--', '__').replace('-', '_').upper()

    def lookup(self, full_name: str) -> Optional[str]:
        return self.env.get(self.env_var_name(full_name))


class DictCredentialStore(CredentialStore):
    """Secrets held in memory, keyed by their full name."""

    def __init__(self, global_prefix: str, secrets: Mapping[str, str]):
        super().__init__(global_prefix)
        self.secrets = dict(secrets)

    def lookup(self, full_name: str) -> Optional[str]:
        return self.secrets.get(full_name)
