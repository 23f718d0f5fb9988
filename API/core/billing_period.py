"""
Billing period arithmetic.

Calendar cycles use dateutil's relativedelta, so a month added to
Jan 31 lands on the last day of February. Periods of a subscription are
always computed from its anchor (period N = anchor + N cycles), never by
chaining period ends, so month-end clamping does not accumulate.

Usage:
    from core.billing_period import BillingCycle, period_end, period_bounds

    end = period_end(start, BillingCycle.monthly)
    start, end = period_bounds(anchor, "quarterly", 3)
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Tuple, Union

from dateutil.relativedelta import relativedelta

from .exceptions import BadRequestError


class BillingCycle(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    quarterly = "quarterly"
    semiannually = "semiannually"
    annually = "annually"

    @classmethod
    def parse(cls, value: Union[str, "BillingCycle"]) -> "BillingCycle":
        """Canonical cycle for a stored or submitted value ('yearly' -> annually)."""
        if isinstance(value, cls):
            return value
        normalized = (value or "").strip().lower()
        normalized = _ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            raise BadRequestError(
                f"Unknown billing cycle: {value!r}",
                context={"billing_cycle": value, "allowed": [c.value for c in cls]},
            )


_ALIASES = {"yearly": "annually"}

# Cycle length as (unit, amount)
_CYCLE_STEPS = {
    BillingCycle.daily: ("days", 1),
    BillingCycle.weekly: ("days", 7),
    BillingCycle.monthly: ("months", 1),
    BillingCycle.quarterly: ("months", 3),
    BillingCycle.semiannually: ("months", 6),
    BillingCycle.annually: ("years", 1),
}


def _shift(origin: datetime, cycle: BillingCycle, count: int) -> datetime:
    unit, amount = _CYCLE_STEPS[cycle]
    if unit == "days":
        return origin + timedelta(days=amount * count)
    return origin + relativedelta(**{unit: amount * count})


def _require_aware(value: datetime, name: str):
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise BadRequestError(
            f"{name} must be timezone-aware",
            context={name: value.isoformat()},
        )


def period_end(
    start: datetime,
    cycle: Union[str, BillingCycle],
    periods: int = 1,
) -> datetime:
    """End of `periods` cycles starting at `start`. Always later than start."""
    _require_aware(start, "start")
    if periods < 1:
        raise BadRequestError("periods must be at least 1", context={"periods": periods})
    return _shift(start, BillingCycle.parse(cycle), periods)


def period_bounds(
    anchor: datetime,
    cycle: Union[str, BillingCycle],
    index: int,
) -> Tuple[datetime, datetime]:
    """[start, end) of the index-th period counted from the anchor."""
    _require_aware(anchor, "anchor")
    if index < 0:
        raise BadRequestError("period index must not be negative", context={"index": index})
    cycle = BillingCycle.parse(cycle)
    return _shift(anchor, cycle, index), _shift(anchor, cycle, index + 1)
