from __future__ import annotations
import csv
import io
import logging
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .. import store
from ..db import get_db
from ..lifecycle import LifecycleStatus, as_utc, get_now, reconcile_for_reader
from .auth import Caller, get_current_user, require_teacher

router = APIRouter(prefix="/api", tags=["results"])
logger = logging.getLogger(__name__)

CSV_COLUMNS = (
	("student_id", "Student ID"),
	("score", "Score"),
	("totalQuestions", "Total Questions"),
	("timeSpent", "Time Spent"),
)


class SaveResultRequest(BaseModel):
	test_name: str
	result: Dict[str, Any]


def _window_open(test, now: datetime) -> bool:
	start, end = as_utc(test.start_time), as_utc(test.end_time)
	if start is not None and now < start:
		return False
	return end is None or now <= end


@router.post("/save-test-result")
async def save_test_result(
	req: SaveResultRequest,
	caller: Caller = Depends(get_current_user),
	db: Session = Depends(get_db),
	now: datetime = Depends(get_now),
):
	if caller.role != "student":
		raise HTTPException(status_code=403, detail="Only students can submit results")
	if not req.result:
		raise HTTPException(status_code=400, detail="Missing test_name or result")
	test = store.find_assigned_test(db, caller.id, req.test_name)
	if test is None:
		raise HTTPException(status_code=404, detail="Test not found or not assigned")
	reconcile_for_reader(db, test, caller.id, now)
	if test.status != LifecycleStatus.ACTIVE.value or not _window_open(test, as_utc(now)):
		raise HTTPException(status_code=403, detail="Test not active or time expired")
	store.save_result(db, test.id, caller.id, req.result)
	db.commit()
	logger.info("Result saved for test %s by student %s", req.test_name, caller.id)
	return {"message": "Test result saved"}


@router.get("/student-results")
async def student_results(test_name: str, caller: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	require_teacher(caller, "view results")
	test = store.find_owned_test(db, caller.id, test_name)
	if test is None:
		raise HTTPException(status_code=404, detail="Test not found")
	logger.info("Retrieved results for test %s", test_name)
	return {"test_name": test_name, "results": store.load_results(db, test.id)}


def results_to_csv(results: Dict[str, Any]) -> str:
	buffer = io.StringIO()
	writer = csv.writer(buffer, lineterminator="\n")
	writer.writerow([title for _, title in CSV_COLUMNS])
	for student_id, result in results.items():
		result = result if isinstance(result, dict) else {}
		row = [student_id] + [result.get(key, "") for key, _ in CSV_COLUMNS[1:]]
		writer.writerow(row)
	return buffer.getvalue()


@router.get("/export-results")
async def export_results(test_name: str, caller: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	require_teacher(caller, "export results")
	test = store.find_owned_test(db, caller.id, test_name)
	if test is None:
		raise HTTPException(status_code=404, detail="Test not found")
	body = results_to_csv(store.load_results(db, test.id))
	logger.info("Exported results for test %s as CSV", test_name)
	return Response(
		content=body,
		media_type="text/csv",
		headers={"Content-Disposition": f'attachment; filename="{test_name}_results.csv"'},
	)
