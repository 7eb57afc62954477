"""Atomic unit of work around a SQLAlchemy session.

Everything done inside ``with unit_of_work(db) as uow:`` commits together or
not at all. Side effects registered with ``uow.after_commit`` run only once
the commit succeeded, and their failures are logged, never raised: a failed
notification must not undo a committed state change.
"""
import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Tuple

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class UnitOfWork:
    """Collects post-commit hooks for one atomic unit"""

    def __init__(self, db: Session):
        self.db = db
        self._after_commit: List[Tuple[Callable[..., Any], tuple, dict]] = []

    def after_commit(self, callback: Callable[..., Any], *args, **kwargs) -> None:
        self._after_commit.append((callback, args, kwargs))

    def run_after_commit(self) -> None:
        hooks, self._after_commit = self._after_commit, []
        for callback, args, kwargs in hooks:
            try:
                callback(*args, **kwargs)
            except Exception as e:
                logger.error(f"Post-commit hook {getattr(callback, '__name__', callback)} failed: {e}", exc_info=True)

    def discard(self) -> None:
        self._after_commit = []


@contextmanager
def unit_of_work(db: Session) -> Iterator[UnitOfWork]:
    """Commit on success, roll back on any exception, then run post-commit hooks"""
    uow = UnitOfWork(db)
    try:
        yield uow
        db.commit()
    except Exception:
        db.rollback()
        uow.discard()
        raise
    uow.run_after_commit()
