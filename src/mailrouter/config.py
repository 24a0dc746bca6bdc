"""Summary: Application configuration for MailRouter.

Importance: Centralizes environment, .env, and config defaults for consistent behavior.
Alternatives: Use a dedicated settings library like Pydantic Settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class AppConfig:
    """Summary: Holds configuration values for routing, storage, and sync.

    Importance: Ensures all services derive settings from a single source of truth.
    Alternatives: Store settings in a shared config file and parse at startup.
    """

    db_path: str
    cache_driver: str
    ai_provider: str
    groq_api_key: str | None
    groq_base_url: str
    openai_api_key: str | None
    openai_model: str
    openai_base_url: str
    routing_strategy: str
    primary_model: str
    model_priority: list[str]
    fallback_delay_seconds: float
    ai_timeout_seconds: int
    chars_per_token: float
    safety_buffer_percentage: int
    max_completion_tokens: int
    email_token_limit: int
    anonymize: bool
    ai_max_workers: int
    ai_batch_limit: int
    lock_ttl_seconds: int
    sync_channels: list[str]
    sync_fetch_limit: int
    mock_fixture_path: str
    eml_directory: str
    gmail_access_token: str | None
    gmail_api_base_url: str
    api_host: str
    api_port: int
    api_key: str
    default_user_name: str
    default_user_email: str
    token_secret: str

    @staticmethod
    def from_env() -> "AppConfig":
        """Summary: Build configuration from defaults, .env, and environment.

        Importance: Keeps all variables defined in config defaults while allowing overrides.
        Alternatives: Parse only environment variables without a defaults file.
        """

        defaults = load_defaults(Path("config") / "defaults.json")
        load_dotenv(Path(".env"))
        return AppConfig(
            db_path=os.getenv("MAILROUTER_DB_PATH", defaults["db_path"]),
            cache_driver=os.getenv("MAILROUTER_CACHE_DRIVER", defaults["cache_driver"]),
            ai_provider=os.getenv("MAILROUTER_AI_PROVIDER", defaults["ai_provider"]),
            groq_api_key=os.getenv("GROQ_API_KEY") or defaults["groq_api_key"] or None,
            groq_base_url=os.getenv("GROQ_BASE_URL", defaults["groq_base_url"]),
            openai_api_key=os.getenv("OPENAI_API_KEY") or defaults["openai_api_key"] or None,
            openai_model=os.getenv("OPENAI_MODEL", defaults["openai_model"]),
            openai_base_url=os.getenv("OPENAI_BASE_URL", defaults["openai_base_url"]),
            routing_strategy=os.getenv(
                "MAILROUTER_ROUTING_STRATEGY", defaults["routing_strategy"]
            ),
            primary_model=os.getenv("MAILROUTER_PRIMARY_MODEL", defaults["primary_model"]),
            model_priority=split_list(
                os.getenv("MAILROUTER_MODEL_PRIORITY", defaults["model_priority"])
            ),
            fallback_delay_seconds=float(
                os.getenv(
                    "MAILROUTER_FALLBACK_DELAY_SECONDS", defaults["fallback_delay_seconds"]
                )
            ),
            ai_timeout_seconds=int(
                os.getenv("MAILROUTER_AI_TIMEOUT_SECONDS", defaults["ai_timeout_seconds"])
            ),
            chars_per_token=float(
                os.getenv("MAILROUTER_CHARS_PER_TOKEN", defaults["chars_per_token"])
            ),
            safety_buffer_percentage=int(
                os.getenv(
                    "MAILROUTER_SAFETY_BUFFER_PERCENTAGE", defaults["safety_buffer_percentage"]
                )
            ),
            max_completion_tokens=int(
                os.getenv("MAILROUTER_MAX_COMPLETION_TOKENS", defaults["max_completion_tokens"])
            ),
            email_token_limit=int(
                os.getenv("MAILROUTER_EMAIL_TOKEN_LIMIT", defaults["email_token_limit"])
            ),
            anonymize=parse_bool(os.getenv("MAILROUTER_ANONYMIZE", defaults["anonymize"])),
            ai_max_workers=int(
                os.getenv("MAILROUTER_AI_MAX_WORKERS", defaults["ai_max_workers"])
            ),
            ai_batch_limit=int(
                os.getenv("MAILROUTER_AI_BATCH_LIMIT", defaults["ai_batch_limit"])
            ),
            lock_ttl_seconds=int(
                os.getenv("MAILROUTER_LOCK_TTL_SECONDS", defaults["lock_ttl_seconds"])
            ),
            sync_channels=split_list(
                os.getenv("MAILROUTER_SYNC_CHANNELS", defaults["sync_channels"])
            ),
            sync_fetch_limit=int(
                os.getenv("MAILROUTER_SYNC_FETCH_LIMIT", defaults["sync_fetch_limit"])
            ),
            mock_fixture_path=os.getenv("MAILROUTER_MOCK_FIXTURE", defaults["mock_fixture_path"]),
            eml_directory=os.getenv("MAILROUTER_EML_DIRECTORY", defaults["eml_directory"]),
            gmail_access_token=os.getenv("GMAIL_ACCESS_TOKEN")
            or defaults["gmail_access_token"]
            or None,
            gmail_api_base_url=os.getenv("GMAIL_API_BASE_URL", defaults["gmail_api_base_url"]),
            api_host=os.getenv("MAILROUTER_API_HOST", defaults["api_host"]),
            api_port=int(os.getenv("MAILROUTER_API_PORT", defaults["api_port"])),
            api_key=os.getenv("MAILROUTER_API_KEY", defaults["api_key"]),
            default_user_name=os.getenv(
                "MAILROUTER_DEFAULT_USER_NAME", defaults["default_user_name"]
            ),
            default_user_email=os.getenv(
                "MAILROUTER_DEFAULT_USER_EMAIL", defaults["default_user_email"]
            ),
            token_secret=os.getenv("MAILROUTER_TOKEN_SECRET", defaults["token_secret"]),
        )


def load_defaults(path: Path) -> dict[str, str]:
    """Summary: Load configuration defaults from JSON.

    Importance: Ensures all variables exist in a single config file.
    Alternatives: Inline defaults in the AppConfig initializer.
    """

    if not path.exists():
        raise FileNotFoundError(f"Defaults file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def load_dotenv(path: Path) -> None:
    """Summary: Load key-value pairs from a .env file into the environment.

    Importance: Keeps secrets out of code while supporting local workflows.
    Alternatives: Use python-dotenv or OS-specific secret stores.
    """

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def split_list(raw: str) -> list[str]:
    """Parse a comma-separated setting into a list of trimmed values."""

    return [item.strip() for item in raw.split(",") if item.strip()]


def parse_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "on"}
