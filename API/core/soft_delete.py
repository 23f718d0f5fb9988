"""
Soft delete read-path exclusion.

Rows carrying a deleted_at tombstone are hidden via SQLAlchemy events:
1. Auto-filter: every ORM SELECT gets WHERE deleted_at IS NULL for
   SoftDeleteMixin models (including relationship and lazy loads)
2. Bypass: audit reads wrap the query in include_deleted()
"""

from contextlib import contextmanager
from contextvars import ContextVar

from sqlalchemy import event
from sqlalchemy.orm import Session, with_loader_criteria

from database.base import SoftDeleteMixin, utc_now


_include_deleted: ContextVar[bool] = ContextVar('include_deleted', default=False)
_registered = False


@contextmanager
def include_deleted():
    """Show tombstoned rows for queries run inside this block."""
    token = _include_deleted.set(True)
    try:
        yield
    finally:
        _include_deleted.reset(token)


def soft_delete(instance) -> None:
    """Set the tombstone. Does NOT commit, caller must flush/commit."""
    if instance.deleted_at is None:
        instance.deleted_at = utc_now()


def _exclude_deleted(orm_execute_state):
    if not orm_execute_state.is_select:
        return
    if _include_deleted.get():
        return
    if orm_execute_state.execution_options.get("include_deleted", False):
        return

    # with_loader_criteria on the mixin applies to every mapped subclass
    orm_execute_state.statement = orm_execute_state.statement.options(
        with_loader_criteria(
            SoftDeleteMixin,
            lambda cls: cls.deleted_at.is_(None),
            include_aliases=True,
        )
    )


def setup_soft_delete_events():
    """
    Register the exclusion filter on all sessions.
    Safe to call more than once (app startup and tests).
    """
    global _registered
    if _registered:
        return
    event.listen(Session, "do_orm_execute", _exclude_deleted)
    _registered = True
