from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# Groq (OpenAI-compatible chat completions) generator
	groq_api_key: str | None = Field(default=None, validation_alias="GROQ_API_KEY")
	groq_model: str = Field(default="meta-llama/llama-4-scout-17b-16e-instruct", validation_alias="GROQ_MODEL")
	groq_base_url: str = Field(default="https://api.groq.com/openai/v1/chat/completions", validation_alias="GROQ_BASE_URL")
	groq_timeout_seconds: float = Field(default=30.0, validation_alias="GROQ_TIMEOUT_SECONDS")
	groq_temperature: float = Field(default=0.7, validation_alias="GROQ_TEMPERATURE")
	groq_max_tokens: int = Field(default=2048, validation_alias="GROQ_MAX_TOKENS")

	# Generation engine
	chunk_size: int = Field(default=4000, validation_alias="CHUNK_SIZE")
	max_attempts_per_difficulty: int = Field(default=100, validation_alias="MAX_ATTEMPTS_PER_DIFFICULTY")
	max_retries_per_chunk: int = Field(default=3, validation_alias="MAX_RETRIES_PER_CHUNK")
	default_min_relevance: float = Field(default=0.5, validation_alias="DEFAULT_MIN_RELEVANCE")
	# Unset means timeout x attempts x retries
	generation_deadline_seconds: float | None = Field(default=None, validation_alias="GENERATION_DEADLINE_SECONDS")

	# Test lifecycle
	sweep_interval_seconds: float = Field(default=60.0, validation_alias="SWEEP_INTERVAL_SECONDS")
	sweeper_enabled: bool = Field(default=True, validation_alias="SWEEPER_ENABLED")
	schedule_timezone: str = Field(default="Asia/Kolkata", validation_alias="SCHEDULE_TIMEZONE")
	solo_test_duration_minutes: int = Field(default=30, validation_alias="SOLO_TEST_DURATION_MINUTES")

	upload_dir: str = Field(default="uploads", validation_alias="UPLOAD_DIR")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	def generation_deadline(self) -> float:
		if self.generation_deadline_seconds is not None:
			return self.generation_deadline_seconds
		return self.groq_timeout_seconds * self.max_attempts_per_difficulty * self.max_retries_per_chunk

settings = Settings()
