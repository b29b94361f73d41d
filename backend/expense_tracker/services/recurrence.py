"""Recurring charge scheduling and materialization.

A recurring charge is a template (amount, category, frequency) with a
``next_due_date``. Once that date arrives the charge is *materialized*: an
expense transaction dated at the due date is posted and the due date moves one
period forward. The two writes are committed together by the repository, which
only applies them while the stored due date still equals the one that was read,
so a retried or overlapping run cannot post the same occurrence twice.
"""

from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass, field
from datetime import date, timedelta
from threading import Lock
from typing import TYPE_CHECKING, Any, Iterable
from uuid import UUID, uuid4

from ..logging_config import get_logger

if TYPE_CHECKING:
    from ..persistence import RecurringChargeRepository

FREQUENCIES = ("weekly", "monthly", "yearly")
AUTO_SUFFIX = "(Auto)"

logger = get_logger("recurrence")
_batch_lock = Lock()


class RecurrenceError(Exception):
    pass


class UnknownFrequencyError(RecurrenceError):
    def __init__(self, frequency: Any) -> None:
        super().__init__(f"unknown frequency: {frequency!r}")
        self.frequency = frequency


class BatchAlreadyRunningError(RecurrenceError):
    pass


@dataclass
class BatchFailure:
    charge_id: UUID
    error: str


@dataclass
class BatchResult:
    processed: int = 0
    skipped: int = 0
    failures: list[BatchFailure] = field(default_factory=list)


def add_months(base: date, months: int, day_anchor: int | None = None) -> date:
    total_month = (base.month - 1) + months
    year = base.year + total_month // 12
    month = (total_month % 12) + 1
    target_day = day_anchor or base.day
    target_day = min(target_day, monthrange(year, month)[1])
    return base.replace(year=year, month=month, day=target_day)


def is_known_frequency(frequency: Any) -> bool:
    return frequency in FREQUENCIES


def advance(current: date, frequency: str, day_anchor: int | None = None) -> date:
    """Return the occurrence one period after ``current``.

    Month and year steps clamp to the last day of a shorter target month
    (Jan 31 -> Feb 28, Feb 29 -> Feb 28 of a common year). ``day_anchor`` is the
    day-of-month the schedule was set up on; passing it lets a clamped date
    climb back (Feb 28 -> Mar 31) instead of drifting to the 28th for good.

    An unrecognised frequency returns ``current`` unchanged; callers should
    check :func:`is_known_frequency` and treat that as bad data.
    """
    if frequency == "weekly":
        return current + timedelta(days=7)
    if frequency == "monthly":
        return add_months(current, 1, day_anchor)
    if frequency == "yearly":
        return add_months(current, 12, day_anchor)
    return current


def schedule_anchor(charge: dict[str, Any]) -> int | None:
    """Day-of-month to restore when the current due date was clamped."""
    start: date | None = charge.get("start_date")
    due: date = charge["next_due_date"]
    if start is None or charge.get("frequency") not in {"monthly", "yearly"}:
        return None
    last_day = monthrange(due.year, due.month)[1]
    if due.day < start.day and due.day == last_day:
        return start.day
    return None


def select_due(charges: Iterable[dict[str, Any]], as_of: date) -> list[dict[str, Any]]:
    return [c for c in charges if c.get("is_active") and c["next_due_date"] <= as_of]


def auto_description(description: str | None) -> str:
    text = (description or "").strip()
    return f"{text} {AUTO_SUFFIX}" if text else AUTO_SUFFIX


def materialize(charge: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Build the transaction for the charge's current due date and the advanced charge.

    Pure: nothing is written. The transaction is dated at the due date, not at
    the processing date, so a late run still books history correctly.
    """
    frequency = charge.get("frequency")
    if not is_known_frequency(frequency):
        raise UnknownFrequencyError(frequency)
    due = charge["next_due_date"]
    transaction = {
        "id": uuid4(),
        "user_id": charge["user_id"],
        "direction": "expense",
        "amount": charge["amount"],
        "category": charge["category"],
        "description": auto_description(charge.get("description")),
        "date": due,
        "recurring_charge_id": charge["id"],
    }
    updated = {**charge, "next_due_date": advance(due, frequency, schedule_anchor(charge))}
    return transaction, updated


def run_batch(repository: RecurringChargeRepository, as_of: date, user_id: UUID | None = None) -> BatchResult:
    """Materialize every active charge due on or before ``as_of``.

    Each charge is its own unit of work: an error on one is logged and recorded
    in ``failures`` and the loop moves on. Only a failure to load the due
    charges escapes. Raises :class:`BatchAlreadyRunningError` if another batch
    is in progress in this process.
    """
    if not _batch_lock.acquire(blocking=False):
        raise BatchAlreadyRunningError("recurring batch already running")
    try:
        return _run_batch(repository, as_of, user_id)
    finally:
        _batch_lock.release()


def _run_batch(repository: RecurringChargeRepository, as_of: date, user_id: UUID | None) -> BatchResult:
    due = select_due(repository.list_due_recurring_charges(as_of, user_id), as_of)
    logger.info("Recurring batch started", extra={"as_of": as_of.isoformat(), "due": len(due)})
    result = BatchResult()
    for charge in due:
        charge_id = charge["id"]
        try:
            transaction, updated = materialize(charge)
            applied = repository.apply_materialization(
                transaction,
                charge_id,
                expected_next_due=charge["next_due_date"],
                new_next_due=updated["next_due_date"],
            )
        except Exception as exc:
            logger.exception("Recurring charge failed", extra={"charge_id": str(charge_id)})
            result.failures.append(BatchFailure(charge_id=charge_id, error=str(exc) or exc.__class__.__name__))
            continue
        if not applied:
            logger.info("Recurring charge already advanced", extra={"charge_id": str(charge_id)})
            result.skipped += 1
            continue
        logger.info(
            "Recurring charge posted",
            extra={
                "charge_id": str(charge_id),
                "due_date": charge["next_due_date"].isoformat(),
                "next_due_date": updated["next_due_date"].isoformat(),
            },
        )
        result.processed += 1
    logger.info(
        "Recurring batch finished",
        extra={"processed": result.processed, "skipped": result.skipped, "failed": len(result.failures)},
    )
    return result
