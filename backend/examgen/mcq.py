"""MCQ candidate schema, structural validation and the single-call generator client."""
from __future__ import annotations
import json
import logging
from typing import Any, List, Optional, Protocol, Sequence, Tuple, Union

import httpx
from pydantic import BaseModel, ConfigDict

from .errors import GenerationFailure

logger = logging.getLogger(__name__)

DIFFICULTIES: Tuple[str, ...] = ("easy", "medium", "hard")
REQUIRED_FIELDS: Tuple[str, ...] = ("question", "options", "correct_answer", "type", "difficulty", "relevance_score")

DIFFICULTY_INSTRUCTIONS = {
	"easy": (
		"Generate straightforward questions testing basic recall or understanding of key terms or concepts. "
		"Use clear, simple language and include obviously incorrect distractors."
	),
	"medium": (
		"Generate questions requiring analysis or application of concepts. "
		"Include plausible distractors that reflect common misconceptions."
	),
	"hard": (
		"Generate complex questions demanding deep understanding, synthesis of multiple concepts, or problem-solving. "
		"Use highly plausible distractors requiring careful consideration."
	),
}


class MCQCandidate(BaseModel):
	model_config = ConfigDict(frozen=True)

	question: str
	options: Tuple[str, str, str, str]
	correct_answer: str
	type: str
	difficulty: str
	relevance_score: float

	def as_dict(self) -> dict:
		data = self.model_dump()
		data["options"] = list(self.options)
		return data


class CandidateCheck(BaseModel):
	"""Outcome of checking one raw candidate: either `candidate` or a `reason`."""

	candidate: Optional[MCQCandidate] = None
	reason: Optional[str] = None

	@property
	def ok(self) -> bool:
		return self.candidate is not None


def _is_number(value: Any) -> bool:
	return isinstance(value, (int, float)) and not isinstance(value, bool)


def check_candidate(raw: Any) -> CandidateCheck:
	if not isinstance(raw, dict):
		return CandidateCheck(reason="not an object")
	missing = [f for f in REQUIRED_FIELDS if f not in raw]
	if missing:
		return CandidateCheck(reason=f"missing fields: {', '.join(missing)}")
	options = raw["options"]
	if not isinstance(options, list) or len(options) != 4:
		return CandidateCheck(reason="options must be a list of exactly 4 entries")
	score = raw["relevance_score"]
	if not _is_number(score) or not 0 <= score <= 1:
		return CandidateCheck(reason=f"relevance_score out of range: {score!r}")
	for field in ("question", "correct_answer", "type", "difficulty"):
		if not isinstance(raw[field], str):
			return CandidateCheck(reason=f"{field} must be a string")
	if not all(isinstance(o, str) for o in options):
		return CandidateCheck(reason="options must all be strings")
	return CandidateCheck(
		candidate=MCQCandidate(
			question=raw["question"].strip(),
			options=tuple(options),
			correct_answer=raw["correct_answer"],
			type=raw["type"].strip().lower(),
			difficulty=raw["difficulty"].strip().lower(),
			relevance_score=float(score),
		)
	)


def validate_candidates(raw_candidates: Sequence[Any]) -> List[MCQCandidate]:
	valid: List[MCQCandidate] = []
	for raw in raw_candidates:
		result = check_candidate(raw)
		if result.ok:
			valid.append(result.candidate)
		else:
			logger.warning("Invalid MCQ format (%s): %.100s", result.reason, json.dumps(raw, default=str))
	return valid


def extract_json_array(raw_output: str) -> Optional[Any]:
	"""Parse the text between the first '[' and the last ']' of a model reply.

	Returns None when there are no delimiters or the slice is not valid JSON.
	"""
	raw_output = raw_output.strip()
	start = raw_output.find("[")
	end = raw_output.rfind("]")
	if start == -1 or end == -1 or end < start:
		logger.warning("No JSON array delimiters found in response")
		return None
	try:
		return json.loads(raw_output[start : end + 1])
	except json.JSONDecodeError as err:
		logger.error("JSON parsing failed: %s", err)
		return None


def build_prompt(text: str, difficulty: str, count: int) -> str:
	instruction = DIFFICULTY_INSTRUCTIONS.get(difficulty, DIFFICULTY_INSTRUCTIONS["medium"])
	return (
		f"Generate {count} multiple-choice questions from the provided text. {instruction} "
		"Ensure questions are relevant to the subject and suitable for an examination. "
		"Determine the type ('theory' or 'numerical') based on content: use 'numerical' for questions involving "
		"calculations or mathematical concepts, and 'theory' otherwise. "
		f"Set the 'difficulty' field to '{difficulty}'. "
		"Each question should be a JSON object with: question (string), options (array of 4 strings), "
		"correct_answer (string), type (string: theory/numerical), difficulty (string), "
		"relevance_score (float between 0 and 1, where 1 is highly relevant). Return a JSON array only.\n\n"
		f"Text:\n{text}"
	)


class TextGenerator(Protocol):
	async def generate(self, prompt: str) -> str: ...


GenerationOutcome = Union[List[MCQCandidate], GenerationFailure]


class CandidateClient:
	"""Turns one chunk into validated candidates with exactly one generator call."""

	def __init__(self, generator: TextGenerator) -> None:
		self.generator = generator

	async def generate(self, chunk_text: str, difficulty: str, count: int) -> GenerationOutcome:
		prompt = build_prompt(chunk_text, difficulty, count)
		try:
			raw_output = await self.generator.generate(prompt)
		except (httpx.HTTPError, RuntimeError) as err:
			logger.error("MCQ generation failed: %s", err)
			return GenerationFailure(str(err) or err.__class__.__name__)
		if not raw_output:
			logger.warning("No valid response from generator")
			return GenerationFailure("No valid response from AI model")
		logger.info("Raw generator response: %.100s...", raw_output)
		parsed = extract_json_array(raw_output)
		if not isinstance(parsed, list):
			logger.warning("Response is not a JSON array")
			return GenerationFailure("Response is not a JSON array")
		valid = validate_candidates(parsed)
		if not valid:
			logger.warning("No valid MCQs after validation")
			return GenerationFailure("No valid MCQs generated")
		return valid
