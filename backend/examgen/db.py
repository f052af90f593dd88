from __future__ import annotations
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from fastapi import Request
from .settings import settings


Base = declarative_base()


def resolve_database_url() -> str:
	return settings.database_url or "sqlite:///./examgen.db"


def create_session_factory(url: str) -> tuple[Engine, sessionmaker]:
	connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
	kwargs = {}
	# In-memory SQLite needs a single shared connection to survive across sessions
	if url in ("sqlite://", "sqlite:///:memory:"):
		kwargs["poolclass"] = StaticPool
	engine = create_engine(url, connect_args=connect_args, future=True, pool_pre_ping=True, **kwargs)
	factory = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
	return engine, factory


def get_db(request: Request):
	db = request.app.state.session_factory()
	try:
		yield db
	finally:
		db.close()
