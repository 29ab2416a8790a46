"""
Broker - Configuration Store.

============================================================
RESPONSIBILITY
============================================================
Default persistent configuration subsystem for a broker node.

- Opens (or creates) the SQLite config database
- Ensures the persistent queue directory exists
- Records the node identity and queue location
- Warns when the node identity differs from the stored one

Requirements:
- SQLAlchemy ORM with SQLite
- Explicit transaction management
- Hard failures on persistence errors

============================================================
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from ipaddress import IPv4Address
from pathlib import Path
from typing import Dict, Generator, Optional

from sqlalchemy import Column, DateTime, String, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from core.constants import DEFAULT_CONFIG_STORE_PATH, DEFAULT_QUEUE_STORAGE_PATH
from core.exceptions import ConfigStoreError

from .base import ConfigStore


logger = logging.getLogger(__name__)

# =============================================================
# DECLARATIVE BASE
# =============================================================

Base = declarative_base()

NODE_IDENTITY_KEY = "nodeid"
QUEUE_PATH_KEY = "queue_path"


def utc_now():
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


class NodeSetting(Base):
    """
    Key/value settings for this broker node.

    Source: bootstrap
    Update Frequency: Every start
    """
    __tablename__ = "node_settings"

    key = Column(String(64), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)


# =============================================================
# SQLITE CONFIG STORE
# =============================================================

class SqliteConfigStore(ConfigStore):
    """Config store backed by a SQLite database file."""

    def __init__(
        self,
        default_config_path: Path = Path(DEFAULT_CONFIG_STORE_PATH),
        default_queue_path: Path = Path(DEFAULT_QUEUE_STORAGE_PATH),
        echo: bool = False,
    ):
        self._default_config_path = Path(default_config_path)
        self._default_queue_path = Path(default_queue_path)
        self._echo = echo

        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._config_path: Optional[Path] = None
        self._queue_path: Optional[Path] = None
        self._node_identity: Optional[IPv4Address] = None

    @property
    def engine(self) -> Optional[Engine]:
        return self._engine

    @property
    def config_path(self) -> Optional[Path]:
        return self._config_path

    @property
    def queue_path(self) -> Optional[Path]:
        return self._queue_path

    @property
    def node_identity(self) -> Optional[IPv4Address]:
        return self._node_identity

    def initialize(
        self,
        node_identity: IPv4Address,
        config_path: Optional[Path],
        queue_path: Optional[Path],
    ) -> None:
        config_path = Path(config_path) if config_path else self._default_config_path
        queue_path = Path(queue_path) if queue_path else self._default_queue_path

        logger.info(
            f"Initializing config store | nodeid={node_identity} | "
            f"configdb={config_path} | queues={queue_path}"
        )

        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            queue_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigStoreError(
                f"Cannot prepare storage directories: {e.strerror or e}",
                path=str(e.filename or config_path),
                cause=e,
            ) from e

        self._engine = self._create_engine(config_path)
        self._session_factory = sessionmaker(
            bind=self._engine,
            autoflush=False,
            expire_on_commit=False,
        )

        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise ConfigStoreError(
                f"Cannot create config schema in {config_path}: {e}",
                path=str(config_path),
                cause=e,
            ) from e

        with self.transaction_scope() as session:
            previous = session.get(NodeSetting, NODE_IDENTITY_KEY)
            if previous is not None and previous.value != str(node_identity):
                logger.warning(
                    f"Node identity changed since last start: {previous.value} -> {node_identity}"
                )
            self._put(session, NODE_IDENTITY_KEY, str(node_identity))
            self._put(session, QUEUE_PATH_KEY, str(queue_path))

        self._config_path = config_path
        self._queue_path = queue_path
        self._node_identity = node_identity

    def _create_engine(self, config_path: Path) -> Engine:
        engine = create_engine(f"sqlite:///{config_path}", echo=self._echo, future=True)

        @event.listens_for(engine, "connect")
        def on_connect(dbapi_conn, connection_record):
            logger.debug(f"Config store connection opened: {config_path}")

        return engine

    @staticmethod
    def _put(session: Session, key: str, value: str) -> None:
        setting = session.get(NodeSetting, key)
        if setting is None:
            session.add(NodeSetting(key=key, value=value))
        else:
            setting.value = value

    @contextmanager
    def transaction_scope(self) -> Generator[Session, None, None]:
        """
        Context manager for explicit transaction boundaries.

        Commits only if no exception occurs.
        Rolls back on ANY exception.
        """
        if self._session_factory is None:
            raise ConfigStoreError("Config store is not initialized")

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Config store transaction failed, rolling back: {e}")
            session.rollback()
            raise ConfigStoreError(f"Config store transaction failed: {e}", cause=e) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def settings(self) -> Dict[str, str]:
        """Read all stored node settings."""
        with self.transaction_scope() as session:
            return {row.key: row.value for row in session.query(NodeSetting).all()}

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None


__all__ = ["SqliteConfigStore", "NodeSetting", "NODE_IDENTITY_KEY", "QUEUE_PATH_KEY"]
