import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"
IDENTITY_CONFIG_MISSING = "Identity provider configuration is missing."


class ConfigurationError(Exception):
    """Raised when configuration required to start the app is absent."""


@dataclass
class Settings:
    database_url: str = "sqlite:///./accounts.db"
    auth_secret_key: Optional[str] = None
    session_ttl_seconds: int = 14 * 24 * 3600
    anthropic_api_key: Optional[str] = None
    anthropic_model: str = "claude-sonnet-4-20250514"
    anthropic_max_tokens: int = 1000
    speech_locale: str = "en-US"
    cors_origins: List[str] = field(default_factory=lambda: DEFAULT_CORS_ORIGINS.split(","))

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./accounts.db"),
            auth_secret_key=os.getenv("AUTH_SECRET_KEY") or None,
            session_ttl_seconds=int(os.getenv("SESSION_TTL_SECONDS", str(14 * 24 * 3600))),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            anthropic_model=os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514"),
            anthropic_max_tokens=int(os.getenv("ANTHROPIC_MAX_TOKENS", "1000")),
            speech_locale=os.getenv("SPEECH_LOCALE", "en-US"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )

    @property
    def ai_enabled(self) -> bool:
        return bool(self.anthropic_api_key)

    def require_identity(self):
        """Raise ConfigurationError if the identity provider cannot be set up."""
        if not self.auth_secret_key:
            raise ConfigurationError(IDENTITY_CONFIG_MISSING)
