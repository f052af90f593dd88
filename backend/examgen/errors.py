from __future__ import annotations


class GenerationFailure(Exception):
	"""A single generator round-trip that produced no usable candidates.

	Returned as a value by the candidate client rather than raised, so the
	sampler can count it against its retry budget.
	"""

	def __init__(self, reason: str) -> None:
		super().__init__(reason)
		self.reason = reason


class ExtractionError(Exception):
	pass


class QuotaError(ValueError):
	pass
