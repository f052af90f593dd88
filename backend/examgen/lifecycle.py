"""Time-driven test status transitions.

`next_status` is the only place the transition rule lives. The lazy
reconciler below and the background sweeper in `scheduler` both call it.
"""
from __future__ import annotations
import enum
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from .models import TestRecord

logger = logging.getLogger(__name__)


class LifecycleStatus(str, enum.Enum):
	GENERATED = "generated"
	ASSIGNED = "assigned"
	ACTIVE = "active"
	STOPPED = "stopped"
	COMPLETED = "completed"


SCHEDULED_STATUSES = (LifecycleStatus.ASSIGNED.value, LifecycleStatus.ACTIVE.value)
_TERMINAL_STATUSES = (LifecycleStatus.STOPPED.value, LifecycleStatus.COMPLETED.value)


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


def get_now() -> datetime:
	"""Request dependency for the current time; overridden in tests."""
	return utcnow()


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
	# SQLite hands back naive datetimes; everything is stored in UTC
	if value is None:
		return None
	if value.tzinfo is None:
		return value.replace(tzinfo=timezone.utc)
	return value.astimezone(timezone.utc)


def next_status(status: str, start: Optional[datetime], end: Optional[datetime], now: datetime) -> str:
	if status not in SCHEDULED_STATUSES or start is None or end is None:
		return status
	start, end, now = as_utc(start), as_utc(end), as_utc(now)
	if start <= now <= end and status != LifecycleStatus.ACTIVE.value:
		return LifecycleStatus.ACTIVE.value
	if now > end and status not in _TERMINAL_STATUSES:
		return LifecycleStatus.STOPPED.value
	return status


def apply_transition(db: Session, test: TestRecord, now: datetime) -> Optional[str]:
	"""Persist the computed status if it differs from the stored one.

	The UPDATE only touches `status` and only matches while the row still holds
	the status we read, so a concurrent writer is never overwritten. Returns the
	new status when this call changed it.
	"""
	target = next_status(test.status, test.start_time, test.end_time, now)
	if target == test.status:
		return None
	previous = test.status
	res = db.execute(
		update(TestRecord)
		.where(TestRecord.id == test.id, TestRecord.status == previous)
		.values(status=target)
		.execution_options(synchronize_session=False)
	)
	db.commit()
	if res.rowcount:
		logger.info("Test %s auto-set from %s to %s", test.test_name, previous, target)
	else:
		db.refresh(test)
		return None
	set_committed_value(test, "status", target)
	return target


def reconcile_for_reader(db: Session, test: TestRecord, reader_id: int, now: datetime) -> TestRecord:
	"""Self-heal a stale status before a non-owner sees the test."""
	if test.owner_id != reader_id:
		apply_transition(db, test, now)
	return test
