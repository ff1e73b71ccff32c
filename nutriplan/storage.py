import logging
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from nutriplan.models import db

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the relational store cannot complete a read or write."""
    pass


@contextmanager
def storage_errors(action: str):
    """Translate SQLAlchemy failures into StorageError.

    The session is rolled back so the caller can keep using it (the meal plan
    generator carries on after a failed cleanup, for instance).
    """
    try:
        yield
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.warning("Storage operation failed", extra={"action": action, "error": str(e)})
        raise StorageError(f"Failed to {action}: {e}") from e
