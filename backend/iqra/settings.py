from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

# Fixed assessment constants; deliberately not environment-tunable
PASSING_SCORE = 85
TOTAL_LEVELS = 12
MIRROR_HISTORY_LIMIT = 500
CONTENT_LANGUAGES = ("ar", "en")


class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	# Vertex configuration
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="Iqra Reading Levels", validation_alias="OPENROUTER_TITLE")

	# Exam generation
	generation_temperature: float = Field(default=0.3, validation_alias="GENERATION_TEMPERATURE")
	# Used when the generator does not suggest a time limit
	default_time_limit_seconds: int = Field(default=300, validation_alias="DEFAULT_TIME_LIMIT_SECONDS")
	timer_tick_seconds: float = Field(default=1.0, validation_alias="TIMER_TICK_SECONDS")

	# Realtime mirror
	mirror_timeout_seconds: float = Field(default=15.0, validation_alias="MIRROR_TIMEOUT_SECONDS")

	# Durable local store
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
