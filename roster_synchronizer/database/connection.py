from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterator
import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .catalog import CatalogBase, School
from .school import SchoolBase
from ..credential_store import CredentialStore
from ..exceptions import SchoolDatabaseError, SyncError
from ..utils import sanitize_message

logger = logging.getLogger(__name__)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """
    Yields a session that is rolled back if the block raises and
    closed either way. Commits are left to the caller.
    """
    session = factory()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


class CatalogDatabase(object):

    """The central catalog database shared by every sync worker."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.session_factory = sessionmaker(bind=engine,
                                            expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str, **engine_options) -> 'CatalogDatabase':
        engine_options.setdefault('pool_pre_ping', True)
        return cls(create_engine(url, **engine_options))

    @classmethod
    def from_credentials(cls, credentials: CredentialStore,
                         **engine_options) -> 'CatalogDatabase':
        url = credentials.get_global_secret('SessionDbConnectionString')
        try:
            return cls.from_url(url, **engine_options)
        except (ArgumentError, SQLAlchemyError) as e:
            raise SyncError('Could not open the catalog database: '
                            + sanitize_message(str(e))) from e

    def create_schema(self):
        CatalogBase.metadata.create_all(self.engine)

    def session(self):
        return session_scope(self.session_factory)


class SchoolDatabaseFactory(object):

    """
    Opens per-school databases. Each school's connection string is read
    from the credential store as ``{school.database_ref}--ConnectionString``
    and one engine is kept per connection string.
    """

    def __init__(self, credentials: CredentialStore, **engine_options):
        self.credentials = credentials
        self.engine_options = engine_options
        self.engine_options.setdefault('pool_pre_ping', True)
        self._engines = {}  # type: Dict[str, Engine]
        self._lock = Lock()

    def connection_string(self, school: School) -> str:
        if not school.database_ref:
            raise SchoolDatabaseError(school.id, 'no database reference is '
                                                 'configured')
        return self.credentials.get_tenant_secret(school.database_ref,
                                                  'ConnectionString')

    def get_engine(self, school: School) -> Engine:
        conn = self.connection_string(school)
        with self._lock:
            engine = self._engines.get(conn)
            if engine is None:
                try:
                    engine = create_engine(conn, **self.engine_options)
                except (ArgumentError, SQLAlchemyError) as e:
                    msg = sanitize_message(str(e))
                    logger.error(f'Could not create engine for school '
                                 f'{school.id}: {msg}')
                    raise SchoolDatabaseError(school.id, msg) from e
                self._engines[conn] = engine
        return engine

    def session_factory(self, school: School) -> sessionmaker:
        return sessionmaker(bind=self.get_engine(school),
                            expire_on_commit=False)

    def session(self, school: School):
        return session_scope(self.session_factory(school))

    def create_schema(self, school: School):
        try:
            SchoolBase.metadata.create_all(self.get_engine(school))
        except SQLAlchemyError as e:
            raise SchoolDatabaseError(school.id,
                                      sanitize_message(str(e))) from e

    def dispose_all(self):
        with self._lock:
            for engine in self._engines.values():
                engine.dispose()
            self._engines.clear()
