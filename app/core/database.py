"""
Engine, session factory and schema revision check for the alert database
"""
import logging
from pathlib import Path
from typing import Optional
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from alembic.config import Config
from alembic.script import ScriptDirectory

from app.core.config import settings

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # One shared connection so in-memory databases survive across sessions and threads.
        return create_engine(url, poolclass=StaticPool, connect_args={"check_same_thread": False})
    # REST handlers and the scheduler's store worker draw from the same pool.
    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_recycle=settings.DB_POOL_RECYCLE_SECONDS,
        pool_pre_ping=True,
    )


engine = _build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def alembic_head(project_root: Path = PROJECT_ROOT) -> str:
    """Return the single head revision of the migrations shipped with the service."""
    alembic_ini = project_root / "alembic.ini"
    alembic_dir = project_root / "alembic"
    if not alembic_ini.exists() or not alembic_dir.exists():
        raise RuntimeError(f"No alembic.ini or alembic/ directory under {project_root}")

    alembic_cfg = Config(str(alembic_ini))
    alembic_cfg.set_main_option("script_location", str(alembic_dir))
    heads = ScriptDirectory.from_config(alembic_cfg).get_heads()
    if len(heads) != 1:
        raise RuntimeError(f"Alert migrations must have exactly one head, found {heads}")
    return heads[0]


def applied_revision(bind: Engine) -> Optional[str]:
    """Revision recorded in alembic_version, or None for an unmigrated database."""
    try:
        with bind.connect() as conn:
            row = conn.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).fetchone()
    except SQLAlchemyError:
        return None
    return row[0] if row else None


async def init_db(bind: Optional[Engine] = None):
    """Refuse to start unless the alert tables are migrated to the shipped head."""
    expected = alembic_head()
    current = applied_revision(bind if bind is not None else engine)
    if current != expected:
        raise RuntimeError(
            f"Alert database is at revision {current}, expected {expected}. "
            "Apply migrations with `alembic upgrade head` first."
        )
    logger.info(f"Alert database schema at revision {expected}")
