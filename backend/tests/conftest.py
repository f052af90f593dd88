import json
import re
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from examgen.db import Base, create_session_factory
from examgen.lifecycle import get_now
from examgen.main import create_app
from examgen.mcq import CandidateClient, MCQCandidate
from examgen.routers import mcq as mcq_router
from examgen.settings import settings

FIXED_NOW = datetime(2025, 4, 15, 5, 0, tzinfo=timezone.utc)


def make_candidate(score, difficulty="medium", question=None):
	return MCQCandidate(
		question=question or f"{difficulty} question at {score}",
		options=("A", "B", "C", "D"),
		correct_answer="A",
		type="theory",
		difficulty=difficulty,
		relevance_score=score,
	)


def raw_candidate(**overrides):
	data = {
		"question": "What is the powerhouse of the cell?",
		"options": ["Nucleus", "Mitochondria", "Ribosome", "Golgi body"],
		"correct_answer": "Mitochondria",
		"type": "theory",
		"difficulty": "easy",
		"relevance_score": 0.8,
	}
	data.update(overrides)
	return data


class ScriptedGenerator:
	"""Text generator double that answers every prompt with a candidate array."""

	def __init__(self, score=0.8, prose=True):
		self.score = score
		self.prose = prose
		self.prompts = []

	async def generate(self, prompt):
		self.prompts.append(prompt)
		count = int(re.search(r"Generate (\d+) multiple-choice", prompt).group(1))
		difficulty = re.search(r"Set the 'difficulty' field to '(\w+)'", prompt).group(1)
		items = [
			raw_candidate(question=f"{difficulty} question {len(self.prompts)}-{i}", difficulty=difficulty, relevance_score=self.score)
			for i in range(count)
		]
		body = json.dumps(items)
		return f"Here are your questions:\n{body}\nGood luck!" if self.prose else body


@pytest.fixture
def session_factory():
	engine, factory = create_session_factory("sqlite://")
	Base.metadata.create_all(bind=engine)
	yield factory
	engine.dispose()


@pytest.fixture
def generator():
	return ScriptedGenerator()


@pytest.fixture
def clock():
	return {"now": FIXED_NOW}


@pytest.fixture
def app(tmp_path, monkeypatch, generator, clock):
	monkeypatch.setattr(settings, "upload_dir", str(tmp_path / "uploads"))
	monkeypatch.setattr(mcq_router, "extract_text_from_pdf", lambda path: "Cells contain mitochondria. " * 400)
	application = create_app("sqlite://", run_sweeper=False)
	application.dependency_overrides[get_now] = lambda: clock["now"]
	application.dependency_overrides[mcq_router.get_candidate_client] = lambda: CandidateClient(generator)
	return application


@pytest.fixture
def client(app):
	with TestClient(app) as c:
		yield c


def signup(client, name, role):
	r = client.post(
		"/api/signup",
		json={"name": name, "email": f"{name.lower()}@example.com", "password": "secret-pass", "role": role},
	)
	assert r.status_code == 201, r.text
	body = r.json()
	return {"Authorization": f"Bearer {body['token']}"}, body["user"]["id"]


@pytest.fixture
def teacher(client):
	return signup(client, "Teacher", "teacher")


@pytest.fixture
def student(client):
	return signup(client, "Student", "student")
