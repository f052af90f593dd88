from __future__ import annotations
import logging
from datetime import datetime
from typing import List, Literal, Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .. import store
from ..db import get_db
from ..lifecycle import LifecycleStatus, as_utc, get_now, reconcile_for_reader
from ..settings import settings
from .auth import Caller, get_current_user, require_teacher

router = APIRouter(prefix="/api", tags=["tests"])
logger = logging.getLogger(__name__)


class ScheduleRequest(BaseModel):
	test_name: str
	student_ids: List[int] = Field(min_length=1)
	start_time: datetime
	end_time: datetime
	duration: int = Field(gt=0)


class ManageRequest(BaseModel):
	test_name: str
	action: Literal["start", "stop", "reassign"]
	student_ids: Optional[List[int]] = None
	start_time: Optional[datetime] = None
	end_time: Optional[datetime] = None


class DeleteRequest(BaseModel):
	test_name: str


def _to_utc(value: datetime) -> datetime:
	# Naive timestamps are wall-clock times in the configured schedule zone
	if value.tzinfo is None:
		value = value.replace(tzinfo=ZoneInfo(settings.schedule_timezone))
	return as_utc(value)


def _validate_window(start: Optional[datetime], end: Optional[datetime]) -> tuple[datetime, datetime]:
	if start is None or end is None:
		raise HTTPException(status_code=400, detail="Missing fields for reassign")
	start_utc, end_utc = _to_utc(start), _to_utc(end)
	if start_utc >= end_utc:
		raise HTTPException(status_code=400, detail="Start time must be before end time")
	return start_utc, end_utc


def _validate_students(db: Session, student_ids: Optional[List[int]]) -> List[int]:
	if not student_ids:
		raise HTTPException(status_code=400, detail="Missing fields for reassign")
	wanted = set(student_ids)
	found = set(store.existing_student_ids(db, wanted))
	if found != wanted:
		raise HTTPException(status_code=400, detail="Some student IDs are invalid")
	return sorted(found)


def _schedule(db: Session, test_id: int, student_ids: List[int], start: datetime, end: datetime, **extra) -> None:
	store.set_assignees(db, test_id, student_ids)
	store.update_test_fields(
		db, test_id, start_time=start, end_time=end, status=LifecycleStatus.ASSIGNED.value, **extra
	)
	db.commit()


@router.post("/assign-test")
async def assign_test(req: ScheduleRequest, caller: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	require_teacher(caller, "assign tests")
	start, end = _validate_window(req.start_time, req.end_time)
	test = store.find_owned_test(db, caller.id, req.test_name)
	if test is None:
		raise HTTPException(status_code=404, detail="Test not found")
	students = _validate_students(db, req.student_ids)
	_schedule(db, test.id, students, start, end, duration=req.duration)
	logger.info("Test %s assigned to %d students", req.test_name, len(students))
	return {"success": True, "message": f"Test {req.test_name} assigned successfully"}


@router.post("/manage-test")
async def manage_test(req: ManageRequest, caller: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	require_teacher(caller, "manage tests")
	test = store.find_owned_test(db, caller.id, req.test_name)
	if test is None:
		raise HTTPException(status_code=404, detail="Test not found")
	if req.action == "start":
		store.update_test_fields(db, test.id, status=LifecycleStatus.ACTIVE.value)
		db.commit()
		logger.info("Test %s started", req.test_name)
		return {"message": "Test started"}
	if req.action == "stop":
		store.update_test_fields(db, test.id, status=LifecycleStatus.STOPPED.value)
		db.commit()
		logger.info("Test %s stopped", req.test_name)
		return {"message": "Test stopped"}
	start, end = _validate_window(req.start_time, req.end_time)
	students = _validate_students(db, req.student_ids)
	_schedule(db, test.id, students, start, end)
	logger.info("Test %s reassigned", req.test_name)
	return {"message": "Test reassigned"}


@router.delete("/delete-test")
async def delete_test(req: DeleteRequest, caller: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	require_teacher(caller, "delete tests")
	test = store.find_owned_test(db, caller.id, req.test_name)
	if test is None or test.status != LifecycleStatus.GENERATED.value:
		raise HTTPException(status_code=404, detail="Test not found or not in generated state")
	store.delete_test(db, test.id)
	db.commit()
	logger.info("Test %s deleted by user %s", req.test_name, caller.id)
	return {"success": True, "message": "Test deleted successfully"}


@router.get("/user-tests")
async def user_tests(
	pdf_name: Optional[str] = None,
	test_name: Optional[str] = None,
	caller: Caller = Depends(get_current_user),
	db: Session = Depends(get_db),
	now: datetime = Depends(get_now),
):
	if caller.is_teacher:
		tests = store.list_tests(db, owner_id=caller.id, pdf_name=pdf_name, test_name=test_name)
	else:
		tests = store.list_tests(db, assignee_id=caller.id, pdf_name=pdf_name, test_name=test_name)
	payload = []
	for test in tests:
		reconcile_for_reader(db, test, caller.id, now)
		payload.append(store.serialize_test(db, test, viewer_id=caller.id))
	logger.info("Retrieved %d tests for user %s", len(payload), caller.id)
	return payload
