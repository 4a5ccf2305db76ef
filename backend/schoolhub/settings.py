from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=480, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
	# Seed super admin, created at startup when both are set
	seed_super_admin_username: str | None = Field(default=None, validation_alias="SEED_SUPER_ADMIN_USERNAME")
	seed_super_admin_password: str | None = Field(default=None, validation_alias="SEED_SUPER_ADMIN_PASSWORD")
	seed_super_admin_email: str = Field(default="superadmin@school.local", validation_alias="SEED_SUPER_ADMIN_EMAIL")

	# Public URL used in quiz join links and QR codes
	app_base_url: str = Field(default="http://localhost:8000", validation_alias="APP_BASE_URL")

	# Logging
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
	log_dir: str | None = Field(default=None, validation_alias="LOG_DIR")

	# Excel uploads
	max_upload_bytes: int = Field(default=5 * 1024 * 1024, validation_alias="MAX_UPLOAD_BYTES")

	# Gemini (remedial insights). Provider can be "vertex" or "ai_studio"
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash-lite", validation_alias="GEMINI_MODEL")
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="SchoolHub Remedial", validation_alias="OPENROUTER_TITLE")

	# Google Cloud Speech-to-Text, used when a flashcard attempt sends audio instead of a transcript
	speech_enabled: bool = Field(default=False, validation_alias="SPEECH_ENABLED")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
