import importlib.util
import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool
from urllib.parse import urlparse
from app.core.config import get_settings


class Base(DeclarativeBase):
    pass


settings = get_settings()
logger = logging.getLogger(__name__)


def _resolve_database_url(database_url: str) -> str:
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    if not database_url.startswith("postgresql://"):
        return database_url
    has_psycopg2 = importlib.util.find_spec("psycopg2") is not None
    has_psycopg3 = importlib.util.find_spec("psycopg") is not None
    if not has_psycopg2 and has_psycopg3:
        return database_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return database_url


def _build_connect_args(database_url: str) -> dict:
    parsed = urlparse(database_url)
    if parsed.scheme.startswith("sqlite"):
        # Reconciler runs on worker threads.
        return {"check_same_thread": False}
    if not parsed.scheme.startswith("postgresql"):
        return {}

    connect_args = {
        "keepalives": 1,
        "keepalives_idle": 30,
        "keepalives_interval": 10,
        "keepalives_count": 5,
    }
    local_hosts = {"localhost", "127.0.0.1", "db"}
    if parsed.hostname not in local_hosts:
        connect_args["sslmode"] = "require"
    return connect_args


def _is_memory_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite") and (database_url.rstrip("/") in ("sqlite:", "sqlite:/") or ":memory:" in database_url)


def build_engine(database_url: str):
    pool_kwargs = {}
    if database_url.startswith("postgresql"):
        configured_pool_size = int(settings.db_pool_size)
        configured_max_overflow = int(settings.db_max_overflow)
        configured_pool_timeout = int(settings.db_pool_timeout)

        # Reconciler threads hold connections while the request pool keeps serving.
        pool_size = max(5, configured_pool_size)
        max_overflow = max(5, configured_max_overflow)
        pool_timeout = max(8, configured_pool_timeout)

        if (
            pool_size != configured_pool_size
            or max_overflow != configured_max_overflow
            or pool_timeout != configured_pool_timeout
        ):
            logger.warning(
                "Adjusted DB pool settings for stability: pool_size %s->%s, max_overflow %s->%s, pool_timeout %s->%s",
                configured_pool_size,
                pool_size,
                configured_max_overflow,
                max_overflow,
                configured_pool_timeout,
                pool_timeout,
            )

        pool_kwargs = {
            "pool_pre_ping": settings.db_pool_pre_ping,
            "pool_recycle": settings.db_pool_recycle,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_timeout": pool_timeout,
            "pool_use_lifo": True,
        }
    elif _is_memory_sqlite(database_url):
        pool_kwargs = {"poolclass": StaticPool}

    return create_engine(
        database_url,
        **pool_kwargs,
        connect_args=_build_connect_args(database_url),
    )


database_url = _resolve_database_url(str(settings.database_url))
engine = build_engine(database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
