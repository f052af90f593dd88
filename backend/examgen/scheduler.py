from __future__ import annotations
import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session, sessionmaker

from .lifecycle import SCHEDULED_STATUSES, apply_transition, utcnow
from .models import TestRecord

logger = logging.getLogger(__name__)


def sweep_scheduled_tests(db: Session, now: datetime) -> int:
	"""Apply the time-based transition to every assigned or active test."""
	tests = db.query(TestRecord).filter(TestRecord.status.in_(SCHEDULED_STATUSES)).all()
	changed = 0
	for test in tests:
		if apply_transition(db, test, now) is not None:
			changed += 1
	return changed


class StatusSweeper:
	"""Periodic status sweep with explicit start/stop.

	Cycles never overlap: the loop awaits each sweep before sleeping, and a
	manual `run_once` while a sweep is in flight is skipped.
	"""

	def __init__(
		self,
		session_factory: sessionmaker,
		*,
		interval: float = 60.0,
		clock: Callable[[], datetime] = utcnow,
	) -> None:
		self._session_factory = session_factory
		self.interval = interval
		self._clock = clock
		self._lock = asyncio.Lock()
		self._stopping = asyncio.Event()
		self._task: Optional[asyncio.Task] = None
		self.cycles = 0

	def _sweep(self, now: datetime) -> int:
		db = self._session_factory()
		try:
			return sweep_scheduled_tests(db, now)
		finally:
			db.close()

	async def run_once(self) -> int:
		if self._lock.locked():
			logger.warning("Status sweep still running, skipping this cycle")
			return 0
		async with self._lock:
			self.cycles += 1
			try:
				changed = await asyncio.to_thread(self._sweep, self._clock())
			except Exception:
				logger.exception("Status sweep failed")
				return 0
			if changed:
				logger.info("Status sweep updated %d tests", changed)
			return changed

	async def _loop(self) -> None:
		while not self._stopping.is_set():
			await self.run_once()
			try:
				await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
			except asyncio.TimeoutError:
				pass

	@property
	def running(self) -> bool:
		return self._task is not None and not self._task.done()

	def start(self) -> None:
		if self.running:
			return
		self._stopping.clear()
		self._task = asyncio.create_task(self._loop())
		logger.info("Status sweeper started (every %ss)", self.interval)

	async def stop(self) -> None:
		self._stopping.set()
		if self._task is not None:
			await self._task
			self._task = None
		logger.info("Status sweeper stopped")
