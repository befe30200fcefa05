"""
Pulls school roster data (students, teachers, terms, sections and
school administrators) from a multi-tenant SIS API and keeps one
database per school in step with it.

The entry point is :class:`RosterSynchronizer`; `main.py` at the root
of the repository shows how to assemble one from the environment.
"""
from . import exceptions
from .config import ApiConfig, AuthConfig, SyncConfig
from .credential_store import (CredentialStore, DictCredentialStore,
                               EnvironmentCredentialStore)
from .roster_synchronizer import (RosterSynchronizer, SyncProgress,
                                  SyncResult, SyncSummary)
from .sis_client import SisApiClient
from .sis_session import SisSession, TokenManager
from .sync_schedule import SyncScheduleService
