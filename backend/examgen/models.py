from __future__ import annotations
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Integer, Float, Text, JSON, ForeignKey, UniqueConstraint
from .db import Base


def _now() -> datetime:
	return datetime.now(timezone.utc)


class User(Base):
	__tablename__ = "users"
	id = Column(Integer, primary_key=True, autoincrement=True)
	name = Column(String(128), nullable=False)
	email = Column(String(256), nullable=False, unique=True, index=True)
	password_hash = Column(String(256), nullable=False)
	# "teacher" or "student"
	role = Column(String(16), nullable=False, index=True)
	created_at = Column(DateTime(timezone=True), default=_now, nullable=False)


class TestRecord(Base):
	__tablename__ = "tests"
	__table_args__ = (UniqueConstraint("owner_id", "test_name", name="uq_tests_owner_name"),)
	__test__ = False  # keep pytest from collecting the model

	id = Column(Integer, primary_key=True, autoincrement=True)
	owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
	test_name = Column(String(256), nullable=False)
	pdf_name = Column(String(512), nullable=True)
	created_at = Column(DateTime(timezone=True), default=_now, nullable=False)
	status = Column(String(16), nullable=False, default="generated", index=True)
	start_time = Column(DateTime(timezone=True), nullable=True)
	end_time = Column(DateTime(timezone=True), nullable=True)
	# Minutes allowed per attempt
	duration = Column(Integer, nullable=True)


class MCQRow(Base):
	__tablename__ = "test_mcqs"
	id = Column(Integer, primary_key=True, autoincrement=True)
	test_id = Column(Integer, ForeignKey("tests.id", ondelete="CASCADE"), nullable=False, index=True)
	# Zero-based order within the test
	position = Column(Integer, nullable=False, index=True)
	question = Column(Text, nullable=False)
	options = Column(JSON, nullable=False)
	correct_answer = Column(Text, nullable=False)
	type = Column(String(16), nullable=False)
	difficulty = Column(String(16), nullable=False)
	relevance_score = Column(Float, nullable=False)


class Assignment(Base):
	__tablename__ = "test_assignments"
	test_id = Column(Integer, ForeignKey("tests.id", ondelete="CASCADE"), primary_key=True)
	student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True)


class SubmittedResult(Base):
	__tablename__ = "test_results"
	test_id = Column(Integer, ForeignKey("tests.id", ondelete="CASCADE"), primary_key=True)
	student_id = Column(Integer, primary_key=True)
	result = Column(JSON, nullable=False)
	submitted_at = Column(DateTime(timezone=True), default=_now, nullable=False)
