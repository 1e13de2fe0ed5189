"""SQLModel database engine and session management."""

import logging

from sqlalchemy import inspect
from sqlmodel import SQLModel, create_engine, Session

from strategy_service.config import settings

logger = logging.getLogger(__name__)

# SQLite needs check_same_thread=False; PostgreSQL does not
connect_args = {}
if settings.database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(
    settings.database_url,
    echo=False,
    connect_args=connect_args,
)


def _run_migrations():
    """Run lightweight schema migrations for columns added after first release."""
    from sqlalchemy import text

    inspector = inspect(engine)

    if "trade_history" not in inspector.get_table_names():
        return

    columns = {col["name"] for col in inspector.get_columns("trade_history")}
    if "error_message" not in columns:
        logger.info("Migrating: adding trade_history.error_message")
        with engine.connect() as conn:
            conn.execute(text("ALTER TABLE trade_history ADD COLUMN error_message TEXT"))
            conn.commit()


def create_db_and_tables():
    """Create all tables. Called on startup."""
    import strategy_service.models  # noqa: F401  registers table metadata

    SQLModel.metadata.create_all(engine)
    _run_migrations()


def get_session() -> Session:
    """Dependency that yields a database session."""
    with Session(engine) as session:
        yield session
