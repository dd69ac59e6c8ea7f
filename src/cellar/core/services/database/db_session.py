"""Database engine and session factory used across the application."""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from loguru import logger
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from src.cellar.entities.registry import SchemaRegistry
from src.cellar.runtime.config.config_data import DatabaseConfig


class DbSessionService:
    """Owns the engine. Create one at startup and :meth:`dispose` it on shutdown."""

    def __init__(self, db_config: DatabaseConfig, environment: str = "development"):
        self._config = db_config
        self._engine = create_engine(
            db_config.connection_string, **self._engine_kwargs(db_config, environment)
        )
        logger.bind(
            url=make_url(db_config.url).render_as_string(hide_password=True),
            environment=environment,
        ).info("Database engine initialized")

    @staticmethod
    def _engine_kwargs(db_config: DatabaseConfig, environment: str) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"echo": db_config.echo, "pool_pre_ping": True}

        if db_config.is_sqlite:
            if environment == "production":
                logger.warning(
                    "SQLite is not recommended for production use. "
                    "Consider PostgreSQL for concurrent writers."
                )
            kwargs["connect_args"] = {"check_same_thread": False, "timeout": 20}
            database = make_url(db_config.url).database
            if not database or database == ":memory:":
                # One shared connection, otherwise each session sees an empty database
                kwargs["poolclass"] = StaticPool
            else:
                Path(database).parent.mkdir(parents=True, exist_ok=True)
            return kwargs

        kwargs.update(
            pool_size=db_config.pool_size,
            max_overflow=db_config.max_overflow,
            pool_timeout=db_config.pool_timeout,
            pool_recycle=db_config.pool_recycle,
        )
        if "postgresql" in db_config.url:
            kwargs["connect_args"] = {
                "application_name": f"cellar_{environment}",
                "connect_timeout": 30,
            }
        return kwargs

    @property
    def engine(self):
        return self._engine

    def create_all(self, registry: SchemaRegistry) -> None:
        """Create every registered table that does not exist yet."""
        tables = registry.tables()
        SQLModel.metadata.create_all(self._engine, tables=[t.__table__ for t in tables])
        logger.info("Ensured {} table(s)", len(tables))

    def get_session(self) -> Session:
        """Return a new SQLModel session bound to the shared engine."""
        return Session(self._engine, expire_on_commit=False, autoflush=True)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Commit on success, roll back on error, always close."""
        db = self.get_session()
        try:
            yield db
            db.commit()
        except Exception as e:
            db.rollback()
            logger.bind(error_type=type(e).__name__).error("Database transaction failed")
            raise
        finally:
            db.close()

    def health_check(self) -> bool:
        try:
            with self._engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.bind(error_type=type(e).__name__, alert=True).error(
                "Database health check failed: {}", e
            )
            return False

    def dispose(self) -> None:
        self._engine.dispose()
        logger.info("Database engine disposed")
