"""Field-scoped reads and writes for tests and their child rows.

Nothing here rewrites a whole test: each helper touches only the columns or
child rows it names, so an owner edit, a result submission and a status
reconciliation can land on the same test without clobbering each other.
"""
from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from .lifecycle import as_utc
from .mcq import MCQCandidate
from .models import Assignment, MCQRow, SubmittedResult, TestRecord, User


def find_owned_test(db: Session, owner_id: int, test_name: str) -> Optional[TestRecord]:
	return db.query(TestRecord).filter(TestRecord.owner_id == owner_id, TestRecord.test_name == test_name).first()


def find_assigned_test(db: Session, student_id: int, test_name: str) -> Optional[TestRecord]:
	return (
		db.query(TestRecord)
		.join(Assignment, Assignment.test_id == TestRecord.id)
		.filter(Assignment.student_id == student_id, TestRecord.test_name == test_name)
		.order_by(TestRecord.created_at.desc())
		.first()
	)


def list_tests(
	db: Session,
	*,
	owner_id: Optional[int] = None,
	assignee_id: Optional[int] = None,
	pdf_name: Optional[str] = None,
	test_name: Optional[str] = None,
) -> List[TestRecord]:
	query = db.query(TestRecord)
	if owner_id is not None:
		query = query.filter(TestRecord.owner_id == owner_id)
	if assignee_id is not None:
		query = query.join(Assignment, Assignment.test_id == TestRecord.id).filter(Assignment.student_id == assignee_id)
	if pdf_name:
		query = query.filter(TestRecord.pdf_name == pdf_name)
	if test_name:
		query = query.filter(TestRecord.test_name == test_name)
	return query.order_by(TestRecord.created_at.desc()).all()


def update_test_fields(db: Session, test_id: int, **values: Any) -> None:
	db.execute(update(TestRecord).where(TestRecord.id == test_id).values(**values))


def touch_draft(db: Session, test_id: int, created_at: datetime) -> bool:
	"""Restamp a test only while it is still a draft; False once it has moved on."""
	result = db.execute(
		update(TestRecord)
		.where(TestRecord.id == test_id, TestRecord.status == "generated")
		.values(created_at=created_at)
	)
	return result.rowcount == 1


def delete_test(db: Session, test_id: int) -> None:
	for model in (MCQRow, Assignment, SubmittedResult):
		db.execute(delete(model).where(model.test_id == test_id))
	db.execute(delete(TestRecord).where(TestRecord.id == test_id))


# ---- MCQs ----

def load_mcqs(db: Session, test_id: int) -> List[MCQRow]:
	return list(db.scalars(select(MCQRow).where(MCQRow.test_id == test_id).order_by(MCQRow.position)))


def count_mcqs(db: Session, test_id: int) -> int:
	return db.query(MCQRow).filter(MCQRow.test_id == test_id).count()


def mcq_to_dict(row: MCQRow) -> Dict[str, Any]:
	return {
		"question": row.question,
		"options": list(row.options),
		"correct_answer": row.correct_answer,
		"type": row.type,
		"difficulty": row.difficulty,
		"relevance_score": row.relevance_score,
	}


def _mcq_values(candidate: MCQCandidate) -> Dict[str, Any]:
	data = candidate.as_dict()
	return {k: data[k] for k in ("question", "options", "correct_answer", "type", "difficulty", "relevance_score")}


def replace_mcqs(db: Session, test_id: int, candidates: Sequence[MCQCandidate]) -> None:
	db.execute(delete(MCQRow).where(MCQRow.test_id == test_id))
	for position, candidate in enumerate(candidates):
		db.add(MCQRow(test_id=test_id, position=position, **_mcq_values(candidate)))


def set_mcq(db: Session, test_id: int, position: int, candidate: MCQCandidate) -> bool:
	res = db.execute(
		update(MCQRow)
		.where(MCQRow.test_id == test_id, MCQRow.position == position)
		.values(**_mcq_values(candidate))
	)
	return bool(res.rowcount)


def delete_mcq(db: Session, test_id: int, position: int) -> bool:
	res = db.execute(delete(MCQRow).where(MCQRow.test_id == test_id, MCQRow.position == position))
	if not res.rowcount:
		return False
	db.execute(
		update(MCQRow)
		.where(MCQRow.test_id == test_id, MCQRow.position > position)
		.values(position=MCQRow.position - 1)
	)
	return True


# ---- Assignments ----

def assigned_ids(db: Session, test_id: int) -> List[int]:
	return list(db.scalars(select(Assignment.student_id).where(Assignment.test_id == test_id).order_by(Assignment.student_id)))


def set_assignees(db: Session, test_id: int, student_ids: Iterable[int]) -> None:
	db.execute(delete(Assignment).where(Assignment.test_id == test_id))
	for student_id in sorted(set(student_ids)):
		db.add(Assignment(test_id=test_id, student_id=student_id))


def unassign_everywhere(db: Session, student_id: int) -> int:
	res = db.execute(delete(Assignment).where(Assignment.student_id == student_id))
	return res.rowcount or 0


def existing_student_ids(db: Session, ids: Iterable[int]) -> List[int]:
	ids = list(ids)
	if not ids:
		return []
	return list(db.scalars(select(User.id).where(User.id.in_(ids), User.role == "student")))


# ---- Results ----

def save_result(db: Session, test_id: int, student_id: int, result: Any) -> None:
	db.merge(SubmittedResult(test_id=test_id, student_id=student_id, result=result))


def load_results(db: Session, test_id: int, student_id: Optional[int] = None) -> Dict[str, Any]:
	query = select(SubmittedResult).where(SubmittedResult.test_id == test_id)
	if student_id is not None:
		query = query.where(SubmittedResult.student_id == student_id)
	return {str(row.student_id): row.result for row in db.scalars(query)}


def _iso(value: Optional[datetime]) -> Optional[str]:
	value = as_utc(value)
	return value.isoformat() if value else None


def serialize_test(db: Session, test: TestRecord, *, viewer_id: int) -> Dict[str, Any]:
	# Assignees only ever see their own result entry
	result_owner = None if test.owner_id == viewer_id else viewer_id
	return {
		"id": test.id,
		"user_id": test.owner_id,
		"test_name": test.test_name,
		"pdf_name": test.pdf_name,
		"mcqs": [mcq_to_dict(row) for row in load_mcqs(db, test.id)],
		"created_at": _iso(test.created_at),
		"status": test.status,
		"assigned_to": assigned_ids(db, test.id),
		"start_time": _iso(test.start_time),
		"end_time": _iso(test.end_time),
		"duration": test.duration,
		"result": load_results(db, test.id, student_id=result_owner),
	}
