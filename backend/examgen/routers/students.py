from __future__ import annotations
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import store
from ..db import get_db
from ..models import User
from .auth import Caller, get_current_user, hash_password, require_teacher

router = APIRouter(prefix="/api/students", tags=["students"])
logger = logging.getLogger(__name__)


class UpdateStudentRequest(BaseModel):
	student_id: int
	name: str
	email: str
	password: Optional[str] = None


@router.get("")
async def list_students(caller: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	require_teacher(caller, "view students")
	students = db.query(User).filter(User.role == "student").order_by(User.id).all()
	logger.info("Retrieved %d students", len(students))
	return [{"_id": str(s.id), "name": s.name, "email": s.email} for s in students]


@router.put("/update")
async def update_student(req: UpdateStudentRequest, caller: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	require_teacher(caller, "update students")
	if not req.name.strip() or not req.email.strip():
		raise HTTPException(status_code=400, detail="Missing required fields")
	values = {"name": req.name.strip(), "email": req.email.strip().lower()}
	if req.password:
		values["password_hash"] = hash_password(req.password)
	res = db.execute(update(User).where(User.id == req.student_id, User.role == "student").values(**values))
	if not res.rowcount:
		db.rollback()
		raise HTTPException(status_code=404, detail="Student not found")
	try:
		db.commit()
	except IntegrityError:
		db.rollback()
		raise HTTPException(status_code=409, detail="Email already registered")
	logger.info("Student %s updated by teacher %s", req.student_id, caller.id)
	return {"message": "Student updated successfully"}


@router.delete("/delete")
async def delete_student(student_id: int, caller: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	require_teacher(caller, "delete students")
	student = db.query(User).filter(User.id == student_id, User.role == "student").first()
	if student is None:
		raise HTTPException(status_code=404, detail="Student not found")
	pulled = store.unassign_everywhere(db, student_id)
	db.delete(student)
	db.commit()
	logger.info("Student %s deleted by teacher %s (removed from %d tests)", student_id, caller.id, pulled)
	return {"message": "Student deleted successfully"}
