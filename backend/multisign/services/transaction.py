import logging
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from multisign.errors import ConflictError, SigningError, StorageError

logger = logging.getLogger(__name__)


@contextmanager
def atomic(db: Session, operation: str):
    """Commit everything staged in the block, or nothing.

    Domain errors pass through untouched; database failures are translated so
    callers only ever see the signing error taxonomy.
    """
    try:
        yield
        db.commit()
    except SigningError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        logger.warning("%s violated a constraint: %s", operation, exc.orig)
        raise ConflictError(f"{operation} conflicts with stored state", details={"reason": str(exc.orig)}) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("%s failed in the store: %s", operation, exc)
        raise StorageError(f"{operation} could not be written", details={"reason": str(exc)}) from exc
