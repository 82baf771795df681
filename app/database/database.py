from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from app.core.config import settings
from app.core.query_metrics import query_metrics_service, install_query_metrics
import logging

logger = logging.getLogger(__name__)

engine_options = {"pool_pre_ping": True, "echo": settings.DEBUG}
if not settings.database_url.startswith("sqlite"):
    engine_options.update(pool_size=10, max_overflow=20)

sync_engine = create_engine(settings.database_url, **engine_options)
install_query_metrics(sync_engine, query_metrics_service)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=sync_engine)

Base = declarative_base()

def get_db():
    """Yield a database session for the duration of one request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def set_transaction_timeout(db: Session, timeout_ms: int) -> None:
    """
    Raise the statement timeout for the current transaction only.

    PostgreSQL resets SET LOCAL on commit/rollback. Other dialects have no
    equivalent, so callers also enforce a wall-clock deadline. A non-positive
    value leaves the server setting alone (0 would disable the timeout) and
    only the wall-clock deadline applies.
    """
    if timeout_ms <= 0 or db.get_bind().dialect.name != "postgresql":
        return
    db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))
    logger.debug(f"statement_timeout set to {timeout_ms}ms for current transaction")
