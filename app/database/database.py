from typing import Optional

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from app.core.config import settings, Settings
import logging

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    """
    Owns the engine and session factory for one application instance.

    Nothing is opened at import time: the app factory builds a Database,
    the lifespan calls connect() and shutdown(). Tests pass an engine
    directly (sqlite).
    """

    def __init__(self, url: Optional[str] = None, engine: Optional[Engine] = None,
                 app_settings: Optional[Settings] = None):
        self.settings = app_settings or settings
        self.url = url or self.settings.database_url
        self.engine: Optional[Engine] = engine
        self.SessionLocal: Optional[sessionmaker] = None
        if engine is not None:
            self._bind(engine)

    def _engine_kwargs(self) -> dict:
        kwargs = {"pool_pre_ping": True, "echo": False}
        if not self.url.startswith("sqlite"):
            kwargs.update(
                pool_size=self.settings.DB_POOL_SIZE,
                max_overflow=self.settings.DB_MAX_OVERFLOW,
            )
        return kwargs

    def _bind(self, engine: Engine):
        self.engine = engine
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def connect(self) -> Engine:
        """Create the engine once; further calls are no-ops."""
        if self.engine is None:
            self._bind(create_engine(self.url, **self._engine_kwargs()))
            logger.info(f"Database engine created for {self.engine.url.render_as_string(hide_password=True)}")
        return self.engine

    def shutdown(self):
        if self.engine is not None:
            self.engine.dispose()
            logger.info("Database engine disposed")
        self.engine = None
        self.SessionLocal = None

    def session(self) -> Session:
        if self.SessionLocal is None:
            self.connect()
        return self.SessionLocal()

    @property
    def is_postgres(self) -> bool:
        return self.connect().dialect.name == "postgresql"

    def create_all(self):
        Base.metadata.create_all(bind=self.connect())

    def drop_all(self):
        Base.metadata.drop_all(bind=self.connect())


def get_db(request: Request):
    """Request-scoped session from the Database held on app.state."""
    db = request.app.state.database.session()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database error: {e}")
        db.rollback()
        raise
    finally:
        db.close()
