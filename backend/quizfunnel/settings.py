from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	app_name: str = Field(default="Quiz Funnel API", validation_alias="APP_NAME")
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
	# Used to build absolute share links; falls back to the request origin
	public_base_url: str | None = Field(default=None, validation_alias="PUBLIC_BASE_URL")

	# Primary provider: Cerebras (OpenAI-compatible, fast inference)
	cerebras_api_key: str | None = Field(default=None, validation_alias="CEREBRAS_API_KEY")
	cerebras_model: str = Field(default="llama-4-scout-17b-16e-instruct", validation_alias="CEREBRAS_MODEL")
	cerebras_base_url: str = Field(default="https://api.cerebras.ai/v1", validation_alias="CEREBRAS_BASE_URL")

	# Managed hosting: Claude on AWS Bedrock
	aws_region: str = Field(default="us-east-1", validation_alias="AWS_REGION")
	aws_access_key_id: str | None = Field(default=None, validation_alias="AWS_ACCESS_KEY_ID")
	aws_secret_access_key: str | None = Field(default=None, validation_alias="AWS_SECRET_ACCESS_KEY")
	bedrock_model_id: str = Field(default="us.anthropic.claude-3-7-sonnet-20250219-v1:0", validation_alias="BEDROCK_MODEL_ID")

	# General purpose: OpenAI
	openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
	openai_model: str = Field(default="gpt-4-turbo-preview", validation_alias="OPENAI_MODEL")
	openai_base_url: str = Field(default="https://api.openai.com/v1", validation_alias="OPENAI_BASE_URL")

	# Fallback chain, comma separated provider names tried in order
	ai_provider_order: str = Field(default="cerebras,bedrock,openai", validation_alias="AI_PROVIDER_ORDER")
	ai_failure_threshold: int = Field(default=3, validation_alias="AI_FAILURE_THRESHOLD")
	ai_reset_after_seconds: float = Field(default=300.0, validation_alias="AI_RESET_AFTER_SECONDS")
	ai_retry_delay_seconds: float = Field(default=1.0, validation_alias="AI_RETRY_DELAY_SECONDS")
	ai_attempts_per_provider: int = Field(default=1, validation_alias="AI_ATTEMPTS_PER_PROVIDER")
	ai_backoff_factor: float = Field(default=2.0, validation_alias="AI_BACKOFF_FACTOR")
	ai_timeout_seconds: float = Field(default=30.0, validation_alias="AI_TIMEOUT_SECONDS")
	ai_default_max_tokens: int = Field(default=4096, validation_alias="AI_DEFAULT_MAX_TOKENS")
	# Prompt log; prompts are only written when a file is configured
	ai_prompt_log_file: str | None = Field(default=None, validation_alias="AI_PROMPT_LOG_FILE")
	ai_prompt_log_max_length: int = Field(default=5000, validation_alias="AI_PROMPT_LOG_MAX_LENGTH")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")

	# Relational store (Postgres with JSON columns in production)
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# Legacy document store for quiz saves and share links
	mongodb_uri: str = Field(default="mongodb://localhost:27017", validation_alias="MONGODB_URI")
	mongodb_database: str = Field(default="quizfunnel", validation_alias="MONGODB_DATABASE")

	# Cleanup job
	retention_days: int = Field(default=7, validation_alias="RETENTION_DAYS")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	def provider_order(self) -> list[str]:
		return [p.strip().lower() for p in self.ai_provider_order.split(",") if p.strip()]

settings = Settings()
