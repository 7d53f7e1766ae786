"""Transaction utilities for explicit transaction boundaries.

Context managers here give commit/rollback semantics and translate
driver-level failures into the dispatch exception hierarchy.
"""

from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ridedispatch.core.exceptions import PersistenceError, StoreTimeoutError


@contextmanager
def transaction(session: Session) -> Generator[Session]:
    """Context manager for explicit transaction boundaries.

    Commits on successful completion, rolls back on any exception.

    Example:
        with transaction(session):
            session.execute(update(Ride).where(...).values(status="accepted"))
        # Automatic commit if no exception, rollback otherwise
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


@contextmanager
def translate_errors(operation: str) -> Iterator[None]:
    """Map SQLAlchemy failures to StoreTimeoutError / PersistenceError."""
    try:
        yield
    except OperationalError as e:
        if "locked" in str(e.orig).lower() or "busy" in str(e.orig).lower():
            raise StoreTimeoutError(
                f"{operation} timed out waiting for the database",
                details={"operation": operation},
            ) from e
        raise PersistenceError(
            f"{operation} failed: {e.orig}", details={"operation": operation}
        ) from e
    except SQLAlchemyError as e:
        raise PersistenceError(f"{operation} failed: {e}", details={"operation": operation}) from e
