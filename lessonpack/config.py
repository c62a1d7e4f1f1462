"""
Configuration settings for the lesson-pack generator.
Loads environment variables and provides application-wide settings.
"""
from dataclasses import dataclass
from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class CaseLabels:
    """Display labels for the two argument-case sections."""

    gov: str
    opp: str


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Generation service (any OpenAI-compatible chat-completions endpoint)
    LLM_BASE_URL: str = "https://api.openai.com/v1"
    LLM_API_KEY: str = Field(
        default="",
        validation_alias=AliasChoices("LLM_API_KEY", "OPENAI_API_KEY"),
    )
    LLM_MODEL_NORMALIZER: str = "gpt-5-mini-2025-08-07"
    LLM_MODEL_STRATEGIST: str = "gpt-5-mini-2025-08-07"
    LLM_MODEL_RESEARCH: str = "gpt-5-mini-2025-08-07"
    LLM_MODEL_SYNTHESIZER: str = "gpt-5-mini-2025-08-07"
    LLM_TIMEOUT: int = 300  # 5 minutes for a full lesson-pack synthesis
    LLM_MAX_ATTEMPTS: int = 3

    # Input Settings
    NOTES_INPUT_DIR: str = "for_processing"
    MAX_TEXT_CHARS: int = 18000
    SUPPORTED_FILE_TYPES: List[str] = [".pdf", ".md", ".markdown", ".txt", ".docx"]

    # Rendering
    # "BP" → Government/Opposition, "AUS" → Affirmative/Negative
    DEBATE_FORMAT: str = "BP"
    APPEND_EXAMPLES_TABLE: bool = True
    PAGE_BREAK_BEFORE_APPENDIX: bool = False  # examples bank starts on a new page

    # Google publishing (service account)
    GOOGLE_CREDENTIALS_JSON: Optional[str] = None
    GOOGLE_CREDENTIALS_JSON_PATH: Optional[str] = None
    GOOGLE_CREDENTIALS_BASE64: Optional[str] = None
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = None
    GOOGLE_EXPORT_FOLDER_ID: Optional[str] = None

    # Google publishing (OAuth user token)
    GOOGLE_OAUTH_CLIENT_ID: Optional[str] = None
    GOOGLE_OAUTH_CLIENT_SECRET: Optional[str] = None
    GOOGLE_OAUTH_REDIRECT_URI: Optional[str] = None
    GOOGLE_OAUTH_TOKEN_PATH: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GOOGLE_OAUTH_TOKEN_PATH", "OAUTH_TOKEN_PATH"),
    )

    # Remote retry policy
    PUBLISH_MAX_RETRIES: int = 4
    PUBLISH_BASE_DELAY: float = 1.0  # seconds, doubled on every attempt

    # Server Configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:3001"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        populate_by_name=True,
    )

    def get_allowed_origins(self) -> List[str]:
        """Parse ALLOWED_ORIGINS string into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    def case_labels(self) -> CaseLabels:
        """Heading labels for the argument-case sections of a rendered pack."""
        if self.DEBATE_FORMAT.strip().upper() == "AUS":
            return CaseLabels(gov="Affirmative Case", opp="Negative Case")
        return CaseLabels(gov="Government Case", opp="Opposition Case")


# Global settings instance
settings = Settings()
