import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from examgen.lifecycle import LifecycleStatus, apply_transition, next_status, reconcile_for_reader
from examgen.models import TestRecord, User
from examgen.scheduler import StatusSweeper, sweep_scheduled_tests

T0 = datetime(2025, 4, 15, 4, 30, tzinfo=timezone.utc)
T1 = T0 + timedelta(hours=2)
EPS = timedelta(minutes=1)
STATUSES = [s.value for s in LifecycleStatus]


def test_assigned_becomes_active_inside_window():
	assert next_status("assigned", T0, T1, T0 + EPS) == "active"


def test_window_bounds_are_inclusive():
	assert next_status("assigned", T0, T1, T0) == "active"
	assert next_status("assigned", T0, T1, T1) == "active"


def test_active_becomes_stopped_after_end():
	assert next_status("active", T0, T1, T1 + EPS) == "stopped"


def test_assigned_skips_straight_to_stopped_when_window_missed():
	assert next_status("assigned", T0, T1, T1 + EPS) == "stopped"


def test_before_window_is_unchanged():
	assert next_status("assigned", T0, T1, T0 - EPS) == "assigned"


@pytest.mark.parametrize("status", ["generated", "stopped", "completed"])
def test_unscheduled_statuses_never_move(status):
	for now in (T0 - EPS, T0 + EPS, T1 + EPS):
		assert next_status(status, T0, T1, now) == status


@pytest.mark.parametrize("start,end", [(None, T1), (T0, None), (None, None)])
def test_missing_window_never_moves(start, end):
	assert next_status("assigned", start, end, T0 + EPS) == "assigned"
	assert next_status("active", start, end, T1 + EPS) == "active"


@pytest.mark.parametrize("status", STATUSES)
@pytest.mark.parametrize("offset", [-EPS, timedelta(0), EPS, T1 - T0, T1 - T0 + EPS])
def test_transition_is_idempotent(status, offset):
	now = T0 + offset
	once = next_status(status, T0, T1, now)
	assert next_status(once, T0, T1, now) == once


def test_naive_datetimes_are_read_as_utc():
	naive_start = T0.replace(tzinfo=None)
	naive_end = T1.replace(tzinfo=None)
	assert next_status("assigned", naive_start, naive_end, T0 + EPS) == "active"


# ---- persistence ----

def _seed(session_factory, status="assigned", start=T0, end=T1):
	db = session_factory()
	owner = User(name="Owner", email="owner@example.com", password_hash="x", role="teacher")
	db.add(owner)
	db.flush()
	test = TestRecord(owner_id=owner.id, test_name="Quiz 1", pdf_name="bio.pdf", status=status, start_time=start, end_time=end)
	db.add(test)
	db.commit()
	ids = owner.id, test.id
	db.close()
	return ids


def _status(session_factory, test_id):
	db = session_factory()
	try:
		return db.get(TestRecord, test_id).status
	finally:
		db.close()


def test_lazy_reconciler_updates_for_non_owner(session_factory):
	owner_id, test_id = _seed(session_factory)
	db = session_factory()
	test = db.get(TestRecord, test_id)
	reconcile_for_reader(db, test, owner_id + 100, T0 + EPS)
	assert test.status == "active"
	db.close()
	assert _status(session_factory, test_id) == "active"


def test_lazy_reconciler_ignores_owner_reads(session_factory):
	owner_id, test_id = _seed(session_factory)
	db = session_factory()
	reconcile_for_reader(db, db.get(TestRecord, test_id), owner_id, T0 + EPS)
	db.close()
	assert _status(session_factory, test_id) == "assigned"


def test_apply_transition_reports_no_change(session_factory):
	_, test_id = _seed(session_factory)
	db = session_factory()
	assert apply_transition(db, db.get(TestRecord, test_id), T0 - EPS) is None
	db.close()


def test_stale_read_does_not_overwrite_a_newer_status(session_factory):
	_, test_id = _seed(session_factory)
	stale = session_factory()
	test = stale.get(TestRecord, test_id)
	# the owner stops the test after our read
	other = session_factory()
	other.get(TestRecord, test_id).status = "stopped"
	other.commit()
	other.close()
	assert apply_transition(stale, test, T0 + EPS) is None
	assert test.status == "stopped"
	stale.close()
	assert _status(session_factory, test_id) == "stopped"


def test_sweep_moves_only_scheduled_tests(session_factory):
	_seed(session_factory)
	db = session_factory()
	owner_id = db.query(User).first().id
	db.add(TestRecord(owner_id=owner_id, test_name="Draft", status="generated", start_time=T0, end_time=T1))
	db.add(TestRecord(owner_id=owner_id, test_name="Open", status="active", start_time=T0, end_time=T1))
	db.commit()
	assert sweep_scheduled_tests(db, T1 + EPS) == 2
	statuses = {t.test_name: t.status for t in db.query(TestRecord).all()}
	db.close()
	assert statuses == {"Quiz 1": "stopped", "Draft": "generated", "Open": "stopped"}


def test_reconciler_and_sweeper_agree(session_factory):
	owner_id, test_id = _seed(session_factory)
	now = T0 + EPS
	reader = session_factory()
	sweeper_db = session_factory()
	reader_view = reader.get(TestRecord, test_id)
	sweeper_view = sweeper_db.get(TestRecord, test_id)
	# both read "assigned" before either writes
	reconcile_for_reader(reader, reader_view, owner_id + 1, now)
	apply_transition(sweeper_db, sweeper_view, now)
	reader.close()
	sweeper_db.close()
	assert _status(session_factory, test_id) == "active"
	db = session_factory()
	assert sweep_scheduled_tests(db, now) == 0
	db.close()
	assert _status(session_factory, test_id) == "active"


def test_sweeper_run_once_uses_injected_clock(session_factory):
	_, test_id = _seed(session_factory)
	sweeper = StatusSweeper(session_factory, interval=60, clock=lambda: T0 + EPS)
	assert asyncio.run(sweeper.run_once()) == 1
	assert _status(session_factory, test_id) == "active"


def test_sweeper_survives_storage_failure(session_factory):
	_, test_id = _seed(session_factory)
	calls = {"n": 0}

	def flaky_factory():
		calls["n"] += 1
		if calls["n"] == 1:
			raise RuntimeError("database unavailable")
		return session_factory()

	sweeper = StatusSweeper(flaky_factory, interval=60, clock=lambda: T1 + EPS)

	async def two_cycles():
		return await sweeper.run_once(), await sweeper.run_once()

	assert asyncio.run(two_cycles()) == (0, 1)
	assert _status(session_factory, test_id) == "stopped"


def test_sweeper_skips_overlapping_cycle(session_factory):
	_seed(session_factory)
	sweeper = StatusSweeper(session_factory, interval=60, clock=lambda: T0 + EPS)

	async def overlapping():
		async with sweeper._lock:
			return await sweeper.run_once()

	assert asyncio.run(overlapping()) == 0
	assert sweeper.cycles == 0


def test_sweeper_loop_starts_and_stops(session_factory):
	_, test_id = _seed(session_factory)
	sweeper = StatusSweeper(session_factory, interval=0.01, clock=lambda: T0 + EPS)

	async def run_briefly():
		sweeper.start()
		assert sweeper.running
		await asyncio.sleep(0.1)
		await sweeper.stop()

	asyncio.run(run_briefly())
	assert not sweeper.running
	assert sweeper.cycles >= 1
	assert _status(session_factory, test_id) == "active"
