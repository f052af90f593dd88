from __future__ import annotations
import asyncio
import json
import logging
import os
import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Union
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import store
from ..db import get_db
from ..errors import ExtractionError, GenerationFailure, QuotaError
from ..groq_client import GroqClient
from ..lifecycle import LifecycleStatus, get_now
from ..mcq import CandidateClient, check_candidate
from ..models import TestRecord
from ..sampler import RetryPolicy, generate_mcqs_from_text, validate_min_relevance, validate_quota
from ..settings import settings
from ..text import extract_text_from_pdf
from .auth import Caller, get_current_user

router = APIRouter(prefix="/api", tags=["mcq"])
logger = logging.getLogger(__name__)

DEFAULT_DISTRIBUTION = {"easy": 0, "medium": 5, "hard": 0}
BUSY_TEST_DETAIL = "A test with this name is already assigned or running"


class GenerateRequest(BaseModel):
	pdf_path: Optional[str] = None
	pdf_name: Optional[str] = None
	test_name: Optional[str] = None
	# Either a JSON string or an object, e.g. {"easy": 1, "medium": 3, "hard": 1}
	difficulty: Optional[Union[str, Dict[str, Any]]] = None
	min_relevance: Optional[Any] = None


class UpdateMCQRequest(BaseModel):
	test_name: str
	mcq_index: int = Field(ge=0)
	updated_mcq: Dict[str, Any]


class RegenerateRequest(BaseModel):
	test_name: str
	mcq_index: int = Field(ge=0)
	text_chunk: str


class CleanupRequest(BaseModel):
	pdf_path: Optional[str] = None


async def get_candidate_client():
	try:
		groq = GroqClient()
	except ValueError:
		raise HTTPException(status_code=500, detail="GROQ_API_KEY not set")
	try:
		yield CandidateClient(groq)
	finally:
		await groq.aclose()


def get_retry_policy() -> RetryPolicy:
	return RetryPolicy(
		max_attempts=settings.max_attempts_per_difficulty,
		max_retries_per_chunk=settings.max_retries_per_chunk,
	)


def _parse_distribution(raw: Optional[Union[str, Dict[str, Any]]]) -> Dict[str, int]:
	try:
		if raw is None or raw == "":
			data = dict(DEFAULT_DISTRIBUTION)
		elif isinstance(raw, str):
			data = json.loads(raw)
		else:
			data = raw
		return validate_quota(data)
	except (json.JSONDecodeError, QuotaError) as err:
		raise HTTPException(status_code=400, detail=f"Invalid difficulty format: {err}")


def _upload_root() -> str:
	return os.path.abspath(settings.upload_dir)


def _is_upload_path(path: Optional[str]) -> bool:
	if not path:
		return False
	root = _upload_root()
	return os.path.commonpath([root, os.path.abspath(path)]) == root and os.path.isfile(path)


def _remove_upload(path: Optional[str]) -> None:
	if _is_upload_path(path):
		os.remove(path)
		logger.info("Removed uploaded PDF: %s", path)


def _default_test_name(now: datetime) -> str:
	local = now.astimezone(ZoneInfo(settings.schedule_timezone))
	return f"Test_{local.strftime('%Y%m%d_%H%M%S')}"


def _owned_test_or_404(db: Session, caller: Caller, test_name: str, index: Optional[int] = None) -> TestRecord:
	test = store.find_owned_test(db, caller.id, test_name)
	if test is None or (index is not None and index >= store.count_mcqs(db, test.id)):
		raise HTTPException(status_code=404, detail="Test or MCQ not found")
	return test


@router.post("/upload-pdf")
async def upload_pdf(pdf: UploadFile = File(...), caller: Caller = Depends(get_current_user)):
	filename = pdf.filename or ""
	if "pdf" not in (pdf.content_type or "") and not filename.lower().endswith(".pdf"):
		raise HTTPException(status_code=400, detail="Invalid file format")
	os.makedirs(_upload_root(), exist_ok=True)
	pdf_path = os.path.join(settings.upload_dir, f"{uuid.uuid4().hex}.pdf")
	content = await pdf.read()
	with open(pdf_path, "wb") as fh:
		fh.write(content)
	logger.info("PDF uploaded by user %s: %s", caller.id, pdf_path)
	return {"success": True, "pdf_path": pdf_path, "pdf_name": filename}


@router.post("/generate-mcqs")
async def generate_mcqs(
	req: GenerateRequest,
	caller: Caller = Depends(get_current_user),
	db: Session = Depends(get_db),
	client: CandidateClient = Depends(get_candidate_client),
	policy: RetryPolicy = Depends(get_retry_policy),
	now: datetime = Depends(get_now),
):
	distribution = _parse_distribution(req.difficulty)
	try:
		min_relevance = validate_min_relevance(
			settings.default_min_relevance if req.min_relevance is None else req.min_relevance
		)
	except QuotaError as err:
		raise HTTPException(status_code=400, detail=str(err))
	if not _is_upload_path(req.pdf_path):
		raise HTTPException(status_code=400, detail="PDF path invalid or missing")
	if not req.pdf_name:
		raise HTTPException(status_code=400, detail="PDF name missing")
	test_name = (req.test_name or "").strip() or _default_test_name(now)
	requested = sum(distribution.values())

	existing = store.find_owned_test(db, caller.id, test_name)
	if existing is not None and existing.status != LifecycleStatus.GENERATED.value:
		raise HTTPException(status_code=409, detail=BUSY_TEST_DETAIL)
	# No transaction stays open while the PDF is read and the model is called
	db.rollback()

	try:
		text = await asyncio.to_thread(extract_text_from_pdf, req.pdf_path)
	except ExtractionError:
		_remove_upload(req.pdf_path)
		raise HTTPException(status_code=400, detail="Could not read text from the PDF")

	try:
		result = await generate_mcqs_from_text(
			text,
			distribution,
			min_relevance,
			client,
			chunk_size=settings.chunk_size,
			policy=policy,
			deadline_seconds=settings.generation_deadline(),
		)
	except Exception:
		_remove_upload(req.pdf_path)
		logger.exception("Generate MCQs failed for test %s", test_name)
		raise
	if not result.ok:
		return JSONResponse(
			status_code=400,
			content={
				"success": False,
				"error": result.error,
				"message": "Try adjusting difficulty, relevance threshold, or uploading a different PDF",
			},
		)

	# The test may have been created, assigned or started while generation ran
	existing = store.find_owned_test(db, caller.id, test_name)
	if existing is not None:
		if not store.touch_draft(db, existing.id, now):
			db.rollback()
			_remove_upload(req.pdf_path)
			logger.warning("Test %s left the generated state during generation; discarding MCQs", test_name)
			raise HTTPException(status_code=409, detail=BUSY_TEST_DETAIL)
		store.replace_mcqs(db, existing.id, result.mcqs)
		db.commit()
		logger.info("Updated existing test %s with %d MCQs", test_name, len(result.mcqs))
	else:
		solo = not caller.is_teacher
		test = TestRecord(
			owner_id=caller.id,
			test_name=test_name,
			pdf_name=req.pdf_name,
			created_at=now,
			status=LifecycleStatus.ACTIVE.value if solo else LifecycleStatus.GENERATED.value,
			start_time=now if solo else None,
			end_time=None,
			duration=settings.solo_test_duration_minutes if solo else None,
		)
		try:
			db.add(test)
			db.flush()
			store.replace_mcqs(db, test.id, result.mcqs)
			if solo:
				store.set_assignees(db, test.id, [caller.id])
			db.commit()
		except IntegrityError:
			db.rollback()
			_remove_upload(req.pdf_path)
			logger.warning("Test %s was created by a concurrent request; discarding MCQs", test_name)
			raise HTTPException(status_code=409, detail="A test with this name was created while generating; try again")
		logger.info("Created new test %s with %d MCQs", test_name, len(result.mcqs))

	return {
		"success": True,
		"mcqs": [c.as_dict() for c in result.mcqs],
		"test_name": test_name,
		"pdf_name": req.pdf_name,
		"warning": result.warning,
	}


@router.get("/review-mcqs")
async def review_mcqs(
	test_name: str,
	page: int = Query(default=1, ge=1),
	limit: int = Query(default=10, ge=1, le=100),
	caller: Caller = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	test = _owned_test_or_404(db, caller, test_name)
	mcqs = store.load_mcqs(db, test.id)
	total = len(mcqs)
	start = (page - 1) * limit
	page_items = [store.mcq_to_dict(row) for row in mcqs[start : start + limit]]
	logger.info("Retrieved %d MCQs for test %s, page %d", len(page_items), test_name, page)
	return {
		"test_name": test_name,
		"pdf_name": test.pdf_name,
		"mcqs": page_items,
		"total": total,
		"page": page,
		"pages": -(-total // limit),
	}


@router.put("/update-mcq")
async def update_mcq(req: UpdateMCQRequest, caller: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	test = _owned_test_or_404(db, caller, req.test_name, req.mcq_index)
	check = check_candidate(req.updated_mcq)
	if not check.ok:
		raise HTTPException(status_code=400, detail=f"Invalid MCQ format: {check.reason}")
	store.set_mcq(db, test.id, req.mcq_index, check.candidate)
	db.commit()
	logger.info("Updated MCQ at index %d for test %s", req.mcq_index, req.test_name)
	return {"message": "MCQ updated successfully"}


@router.delete("/delete-mcq")
async def delete_mcq(
	test_name: str,
	mcq_index: int = Query(ge=0),
	caller: Caller = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	test = _owned_test_or_404(db, caller, test_name, mcq_index)
	store.delete_mcq(db, test.id, mcq_index)
	db.commit()
	logger.info("Deleted MCQ at index %d from test %s", mcq_index, test_name)
	return {"message": "MCQ deleted successfully"}


@router.post("/regenerate-mcq")
async def regenerate_mcq(
	req: RegenerateRequest,
	caller: Caller = Depends(get_current_user),
	db: Session = Depends(get_db),
	client: CandidateClient = Depends(get_candidate_client),
):
	test = _owned_test_or_404(db, caller, req.test_name, req.mcq_index)
	original = [row for row in store.load_mcqs(db, test.id) if row.position == req.mcq_index]
	outcome = await client.generate(req.text_chunk, original[0].difficulty, 1)
	if isinstance(outcome, GenerationFailure):
		raise HTTPException(status_code=500, detail=outcome.reason)
	new_mcq = outcome[0]
	store.set_mcq(db, test.id, req.mcq_index, new_mcq)
	db.commit()
	logger.info("Regenerated MCQ at index %d for test %s", req.mcq_index, req.test_name)
	return {"message": "MCQ regenerated successfully", "new_mcq": new_mcq.as_dict()}


@router.post("/cleanup-pdf")
async def cleanup_pdf(req: CleanupRequest, caller: Caller = Depends(get_current_user)):
	if _is_upload_path(req.pdf_path):
		_remove_upload(req.pdf_path)
		logger.info("Cleaned up PDF: %s for user: %s", req.pdf_path, caller.id)
	return {"success": True}
