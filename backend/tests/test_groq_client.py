import asyncio
import json

import httpx
import pytest

from examgen.groq_client import GroqClient


def _client(handler):
	return GroqClient(api_key="test-key", base_url="https://groq.test/v1/chat", model="tiny", transport=httpx.MockTransport(handler))


def _call(client, prompt="hello"):
	async def go():
		try:
			return await client.generate(prompt)
		finally:
			await client.aclose()
	return asyncio.run(go())


def test_posts_chat_completion_and_returns_content():
	seen = []

	def handler(request):
		seen.append(request)
		return httpx.Response(200, json={"choices": [{"message": {"content": "[1, 2]"}}]})

	assert _call(_client(handler), "make questions") == "[1, 2]"
	assert len(seen) == 1
	payload = json.loads(seen[0].content)
	assert seen[0].headers["Authorization"] == "Bearer test-key"
	assert payload["model"] == "tiny"
	assert payload["messages"][-1] == {"role": "user", "content": "make questions"}


def test_http_errors_are_raised_without_retrying():
	calls = []

	def handler(request):
		calls.append(request)
		return httpx.Response(503, text="overloaded")

	with pytest.raises(httpx.HTTPStatusError):
		_call(_client(handler))
	assert len(calls) == 1


def test_missing_content_is_an_error():
	def handler(request):
		return httpx.Response(200, json={"choices": []})

	with pytest.raises(RuntimeError):
		_call(_client(handler))


def test_requires_an_api_key(monkeypatch):
	from examgen.settings import settings

	monkeypatch.setattr(settings, "groq_api_key", None)
	with pytest.raises(ValueError):
		GroqClient()
