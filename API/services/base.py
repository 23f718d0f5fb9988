"""
Base service class with unit-of-work and event buffering.
All billing services inherit from BillingServiceBase.

Usage:
    class PlanCatalogService(BillingServiceBase):
        def create_plan(self, ...):
            with self._atomic():
                plan = self.plans.add(Plan(...))
                self._emit(...)
            return plan

The unit of work lives on the session (session.info), so services sharing
a session share one transaction: nested _atomic() blocks join the
outermost one, which commits once and then publishes the buffered events.
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import BillingError, ConflictError, InternalError
from core.money import money_str
from .notifier import Notifier, LogNotifier

logger = logging.getLogger(__name__)

_DEPTH_KEY = "billing_uow_depth"
_EVENTS_KEY = "billing_pending_events"


def serialize(value: Any) -> Any:
    """JSON-safe copy of model dicts: Decimal -> "49.00", datetime -> ISO."""
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    if isinstance(value, Decimal):
        return money_str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "to_dict"):
        return serialize(value.to_dict())
    return value


class BillingServiceBase:
    """Session, notifier and transaction handling shared by all services."""

    def __init__(self, db: Session, notifier: Optional[Notifier] = None):
        self.db = db
        self.notifier = notifier or LogNotifier()

    # ==================== UNIT OF WORK ====================

    @contextmanager
    def _atomic(self):
        """
        Run a block as one transaction.

        Outermost block: commit on success, then publish buffered events.
        On any error: rollback, drop buffered events, re-raise. Storage
        errors surface as ConflictError (unique violations) or InternalError.
        """
        info = self.db.info
        depth = info.get(_DEPTH_KEY, 0)
        info[_DEPTH_KEY] = depth + 1
        if depth == 0:
            info[_EVENTS_KEY] = []
        try:
            yield
            if depth == 0:
                self.db.commit()
        except BillingError:
            if depth == 0:
                self._rollback()
            raise
        except IntegrityError as e:
            if depth == 0:
                self._rollback()
                logger.warning(f"Integrity error, transaction rolled back: {e.orig}")
                raise ConflictError(
                    "Conflicting record, retry the operation",
                    context={"detail": str(e.orig)},
                ) from e
            raise
        except SQLAlchemyError as e:
            if depth == 0:
                self._rollback()
                logger.error(f"Database error, transaction rolled back: {e}")
                raise InternalError("Storage failure") from e
            raise
        except Exception:
            if depth == 0:
                self._rollback()
            raise
        finally:
            info[_DEPTH_KEY] = depth

        if depth == 0:
            self._publish_pending()

    def _rollback(self):
        self.db.rollback()
        self.db.info[_EVENTS_KEY] = []

    # ==================== EVENTS ====================

    def _emit(self, event_type, tenant_id: int, payload: Dict[str, Any]):
        """Buffer an event until the surrounding transaction commits."""
        event_name = getattr(event_type, "value", event_type)
        event = (event_name, tenant_id, serialize(payload))
        if self.db.info.get(_DEPTH_KEY, 0) == 0:
            self._deliver(*event)
            return
        self.db.info.setdefault(_EVENTS_KEY, []).append(event)

    def _publish_pending(self):
        events = self.db.info.get(_EVENTS_KEY) or []
        self.db.info[_EVENTS_KEY] = []
        for event in events:
            self._deliver(*event)

    def _deliver(self, event_type: str, tenant_id: int, payload: Dict[str, Any]):
        try:
            self.notifier.publish(event_type, tenant_id, payload)
        except Exception as e:
            logger.error(f"[tenant {tenant_id}] Failed to publish {event_type}: {e}")
