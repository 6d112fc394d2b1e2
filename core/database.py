from typing import Generator
import logging

from sqlmodel import SQLModel, create_engine, Session

from core.config import settings

logger = logging.getLogger(__name__)

# ============================================================
# ✅ Create SQLModel engine
# ============================================================
DATABASE_URL = settings.DATABASE_URL

if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
    )
    logger.warning("⚠️ Using SQLite database: fine for local dev, not for production.")
else:
    # pool_pre_ping avoids stale connections on managed PostgreSQL
    engine = create_engine(DATABASE_URL, echo=False, pool_pre_ping=True)


# ============================================================
# ✅ Create tables (called at startup)
# ============================================================
def create_db_and_tables(bind=None) -> None:
    """Create all tables declared in models.models."""
    import models.models  # noqa: F401  (registers tables on the metadata)

    try:
        SQLModel.metadata.create_all(bind or engine)
        logger.info("✅ All database tables created successfully.")
    except Exception as e:
        logger.error(f"❌ Failed to create tables: {e}")
        raise


# ============================================================
# ✅ Dependency: FastAPI session generator
# ============================================================
def get_session() -> Generator[Session, None, None]:
    """Yield a Session that closes when the request completes."""
    with Session(engine) as session:
        yield session
