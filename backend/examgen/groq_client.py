from __future__ import annotations
import httpx
from typing import Any, Dict, Optional
from .settings import settings

SYSTEM_PROMPT = "You are an AI expert in question generation."


class GroqClient:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		timeout: Optional[float] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.api_key = api_key or settings.groq_api_key
		if not self.api_key:
			raise ValueError("GROQ_API_KEY is not configured")
		self.model = model or settings.groq_model
		self.base_url = base_url or settings.groq_base_url
		self._headers = {
			"Authorization": f"Bearer {self.api_key}",
			"Content-Type": "application/json",
		}
		self._client = httpx.AsyncClient(
			timeout=timeout if timeout is not None else settings.groq_timeout_seconds,
			transport=transport,
		)

	async def generate(self, prompt: str, *, system: str = SYSTEM_PROMPT) -> str:
		"""One chat-completions round-trip; returns the assistant text.

		Raises httpx errors on transport/status failures and RuntimeError when the
		payload has no message content. Callers own any retry policy.
		"""
		payload: Dict[str, Any] = {
			"model": self.model,
			"messages": [
				{"role": "system", "content": system},
				{"role": "user", "content": prompt},
			],
			"temperature": settings.groq_temperature,
			"max_tokens": settings.groq_max_tokens,
			"top_p": 1,
		}
		r = await self._client.post(self.base_url, headers=self._headers, json=payload)
		r.raise_for_status()
		try:
			data = r.json()
			content = data["choices"][0]["message"]["content"]
		except (ValueError, KeyError, IndexError, TypeError):
			raise RuntimeError(f"Unexpected Groq response: {r.text[:200]}")
		if not content:
			raise RuntimeError("No valid response from AI model")
		return content

	async def aclose(self) -> None:
		await self._client.aclose()
