"""Quota-driven sampling of MCQ candidates across randomly chosen text chunks.

Each difficulty bucket is filled independently: chunks are drawn without
replacement, each drawn chunk gets a bounded number of generator calls, and
the bucket stops when its quota is met, the chunks run out, or the attempt
cap is reached. Falling short is reported, never raised.
"""
from __future__ import annotations
import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

from .errors import GenerationFailure, QuotaError
from .mcq import DIFFICULTIES, GenerationOutcome, MCQCandidate
from .text import split_text_into_chunks

logger = logging.getLogger(__name__)

MAX_BATCH_PER_CHUNK = 2
MAX_TOTAL_QUESTIONS = 20
NO_CHUNKS_ERROR = "No text chunks available"
NO_MCQS_ERROR = "No MCQs generated due to relevance filtering or text content"


class CandidateSource(Protocol):
	def generate(self, chunk_text: str, difficulty: str, count: int) -> Awaitable[GenerationOutcome]: ...


@dataclass(frozen=True)
class RetryPolicy:
	max_attempts: int = 100
	max_retries_per_chunk: int = 3


@dataclass
class ChunkOutcome:
	accepted: List[MCQCandidate]
	# True when every call for the chunk was spent without a usable batch
	exhausted: bool
	calls: int = 0
	timed_out: bool = False


@dataclass
class GenerationResult:
	mcqs: List[MCQCandidate]
	requested: int
	fulfilled: Dict[str, int] = field(default_factory=dict)
	error: Optional[str] = None
	timed_out: bool = False

	@property
	def ok(self) -> bool:
		return self.error is None

	@property
	def shortfall(self) -> int:
		return max(0, self.requested - len(self.mcqs))

	@property
	def warning(self) -> Optional[str]:
		if self.error is None and self.shortfall:
			return (
				f"Only {len(self.mcqs)} questions generated. "
				"Try lowering relevance threshold or adjusting difficulty."
			)
		return None


class _Deadline:
	def __init__(self, seconds: Optional[float]) -> None:
		loop = asyncio.get_running_loop()
		self._clock = loop.time
		self._expires = None if seconds is None else self._clock() + seconds

	def remaining(self) -> Optional[float]:
		if self._expires is None:
			return None
		return max(0.0, self._expires - self._clock())

	@property
	def expired(self) -> bool:
		remaining = self.remaining()
		return remaining is not None and remaining <= 0


def validate_quota(quota: Mapping[str, Any]) -> Dict[str, int]:
	if not isinstance(quota, Mapping):
		raise QuotaError("Difficulty must be an object of counts")
	unknown = set(quota) - set(DIFFICULTIES)
	if unknown:
		raise QuotaError(f"Unknown difficulty: {', '.join(sorted(unknown))}")
	if not all(k in quota for k in DIFFICULTIES):
		raise QuotaError("Difficulty must include easy, medium, and hard")
	counts: Dict[str, int] = {}
	for key in DIFFICULTIES:
		value = quota[key]
		if isinstance(value, bool) or not isinstance(value, int) or value < 0:
			raise QuotaError("Difficulty values must be non-negative integers")
		counts[key] = value
	total = sum(counts.values())
	if total < 1 or total > MAX_TOTAL_QUESTIONS:
		raise QuotaError(f"Total number of questions must be 1-{MAX_TOTAL_QUESTIONS}")
	return counts


def validate_min_relevance(value: Any) -> float:
	try:
		relevance = float(value)
	except (TypeError, ValueError):
		raise QuotaError("min_relevance must be a number")
	if not 0 <= relevance <= 1:
		raise QuotaError("min_relevance must be between 0 and 1")
	return relevance


async def attempt_chunk(
	call: Callable[[], Awaitable[GenerationOutcome]],
	*,
	remaining: int,
	min_relevance: float,
	max_retries: int,
	deadline: Optional[_Deadline] = None,
) -> ChunkOutcome:
	"""Spend up to `max_retries` generator calls on one chunk.

	Failed calls and all-irrelevant batches are retried; the last allowed
	successful call is accepted even when nothing passes the threshold.
	"""
	calls = 0
	retries = 0
	while retries < max_retries:
		if deadline is not None and deadline.expired:
			return ChunkOutcome(accepted=[], exhausted=True, calls=calls, timed_out=True)
		calls += 1
		try:
			timeout = deadline.remaining() if deadline is not None else None
			outcome = await asyncio.wait_for(call(), timeout=timeout)
		except asyncio.TimeoutError:
			logger.warning("Generator call exceeded the generation deadline")
			return ChunkOutcome(accepted=[], exhausted=True, calls=calls, timed_out=True)
		if isinstance(outcome, GenerationFailure):
			logger.warning("Generator call failed: %s", outcome.reason)
			retries += 1
			continue
		relevant = [c for c in outcome if c.relevance_score >= min_relevance]
		if not relevant and retries < max_retries - 1:
			retries += 1
			logger.info("No relevant MCQs in batch, retrying (%d/%d)", retries, max_retries)
			continue
		return ChunkOutcome(accepted=relevant[:remaining], exhausted=False, calls=calls)
	return ChunkOutcome(accepted=[], exhausted=True, calls=calls)


async def _fill_bucket(
	chunks: Sequence[str],
	difficulty: str,
	requested: int,
	source: CandidateSource,
	min_relevance: float,
	policy: RetryPolicy,
	rng: random.Random,
	deadline: _Deadline,
) -> tuple[List[MCQCandidate], bool]:
	collected: List[MCQCandidate] = []
	attempted: set[int] = set()
	attempts = 0
	timed_out = False
	while len(collected) < requested and attempts < policy.max_attempts and len(attempted) < len(chunks):
		if deadline.expired:
			timed_out = True
			break
		chunk_idx = rng.choice([i for i in range(len(chunks)) if i not in attempted])
		attempted.add(chunk_idx)
		remaining = requested - len(collected)
		batch_size = min(MAX_BATCH_PER_CHUNK, remaining)
		outcome = await attempt_chunk(
			lambda: source.generate(chunks[chunk_idx], difficulty, batch_size),
			remaining=remaining,
			min_relevance=min_relevance,
			max_retries=policy.max_retries_per_chunk,
			deadline=deadline,
		)
		attempts += 1
		if outcome.accepted:
			collected.extend(outcome.accepted)
			logger.info(
				"Generated %d relevant %s MCQs from chunk %d, total collected: %d/%d",
				len(outcome.accepted), difficulty, chunk_idx, len(collected), requested,
			)
		elif outcome.exhausted:
			logger.warning("Skipping chunk %d for %s after %d calls", chunk_idx, difficulty, outcome.calls)
		if outcome.timed_out:
			timed_out = True
			break
	if len(collected) < requested:
		logger.warning("Only collected %d/%d %s MCQs after %d attempts", len(collected), requested, difficulty, attempts)
	return collected, timed_out


async def sample_quota(
	chunks: Sequence[str],
	quota: Mapping[str, int],
	min_relevance: float,
	source: CandidateSource,
	*,
	policy: RetryPolicy = RetryPolicy(),
	rng: Optional[random.Random] = None,
	deadline_seconds: Optional[float] = None,
) -> GenerationResult:
	requested = sum(quota.values())
	if not chunks:
		logger.warning("No text chunks available")
		return GenerationResult(mcqs=[], requested=requested, error=NO_CHUNKS_ERROR)
	rng = rng or random.Random()
	deadline = _Deadline(deadline_seconds)
	accumulated: List[MCQCandidate] = []
	fulfilled: Dict[str, int] = {}
	timed_out = False
	for difficulty, count in quota.items():
		if count == 0:
			continue
		if timed_out:
			fulfilled[difficulty] = 0
			continue
		bucket, timed_out = await _fill_bucket(
			chunks, difficulty, count, source, min_relevance, policy, rng, deadline,
		)
		fulfilled[difficulty] = len(bucket)
		accumulated.extend(bucket)
	if timed_out:
		logger.warning("Generation deadline reached, returning %d partial MCQs", len(accumulated))
	mcqs = sorted(accumulated, key=lambda c: c.relevance_score, reverse=True)[:requested]
	logger.info("Final MCQs generated: %d/%d", len(mcqs), requested)
	if not mcqs:
		logger.warning("No MCQs generated after all attempts")
		return GenerationResult(mcqs=[], requested=requested, fulfilled=fulfilled, error=NO_MCQS_ERROR, timed_out=timed_out)
	return GenerationResult(mcqs=mcqs, requested=requested, fulfilled=fulfilled, timed_out=timed_out)


async def generate_mcqs_from_text(
	text: str,
	quota: Mapping[str, int],
	min_relevance: float,
	source: CandidateSource,
	*,
	chunk_size: int,
	policy: RetryPolicy = RetryPolicy(),
	rng: Optional[random.Random] = None,
	deadline_seconds: Optional[float] = None,
) -> GenerationResult:
	chunks = split_text_into_chunks(text, chunk_size)
	return await sample_quota(
		chunks, quota, min_relevance, source, policy=policy, rng=rng, deadline_seconds=deadline_seconds,
	)
