from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .db import Base, create_session_factory, resolve_database_url
from .routers import auth, mcq, results, students, tests
from .scheduler import StatusSweeper
from .settings import settings

logger = logging.getLogger(__name__)


def configure_logging() -> None:
	logging.basicConfig(
		level=settings.log_level.upper(),
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)
	logging.getLogger("httpx").setLevel(logging.WARNING)


def create_app(database_url: str | None = None, *, run_sweeper: bool | None = None) -> FastAPI:
	@asynccontextmanager
	async def lifespan(app: FastAPI):
		configure_logging()
		engine, session_factory = create_session_factory(database_url or resolve_database_url())
		Base.metadata.create_all(bind=engine)
		app.state.session_factory = session_factory
		sweeper = StatusSweeper(session_factory, interval=settings.sweep_interval_seconds)
		app.state.sweeper = sweeper
		enabled = settings.sweeper_enabled if run_sweeper is None else run_sweeper
		if enabled:
			sweeper.start()
		try:
			yield
		finally:
			if sweeper.running:
				await sweeper.stop()
			engine.dispose()
			logger.info("Storage closed")

	app = FastAPI(title="Exam Generator API", lifespan=lifespan)
	app.add_middleware(
		CORSMiddleware,
		allow_origins=["http://localhost:8080", "http://localhost:4040", "http://localhost:3000"],
		allow_credentials=True,
		allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
		allow_headers=["Content-Type", "Authorization"],
		max_age=3600,
	)
	app.include_router(auth.router)
	app.include_router(mcq.router)
	app.include_router(tests.router)
	app.include_router(results.router)
	app.include_router(students.router)

	@app.get("/health")
	def health():
		return {"status": "ok", "groq_configured": bool(settings.groq_api_key)}

	return app


app = create_app()
