"""Centralised settings for the email QC backend.

All runtime configuration is resolved here in one place.  Values can be
overridden via environment variables or a `.env` file in the project root
(loaded automatically when this module is imported).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (two levels up from this file)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)


def _csv_env(name: str, default: str = "") -> list[str]:
    """Split a comma-separated environment variable into lower-cased entries."""
    raw = os.environ.get(name, default)
    return [entry.strip().lower() for entry in raw.split(",") if entry.strip()]


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Workspace / storage
    # ------------------------------------------------------------------
    workspace_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("QC_WORKSPACE", Path.home() / ".emailqc_data")
        )
    )

    @property
    def db_path(self) -> Path:
        """Absolute path to the SQLite database file."""
        return self.workspace_dir / "qc.db"

    @property
    def schema_path(self) -> Path:
        """Absolute path to the schema SQL file bundled with the package."""
        return Path(__file__).resolve().parent / "db" / "schema.sql"

    # ------------------------------------------------------------------
    # Content-validation model
    # ------------------------------------------------------------------
    llm_provider: str = field(
        default_factory=lambda: os.environ.get("LLM_PROVIDER", "openai")
    )
    openai_api_key: str = field(
        default_factory=lambda: os.environ.get("OPENAI_API_KEY", "").strip()
    )
    openai_chat_model: str = field(
        default_factory=lambda: os.environ.get("OPENAI_CHAT_MODEL", "gpt-4.1")
    )
    ollama_base_url: str = field(
        default_factory=lambda: os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434")
    )
    ollama_chat_model: str = field(
        default_factory=lambda: os.environ.get("OLLAMA_CHAT_MODEL", "ministral-3:8b")
    )
    qc_model_mode: str = field(
        default_factory=lambda: os.environ.get("QC_MODEL_MODE", "").strip().lower()
    )

    # ------------------------------------------------------------------
    # Link verification
    # ------------------------------------------------------------------
    approved_link_domains: list[str] = field(
        default_factory=lambda: _csv_env("APPROVED_LINK_DOMAINS")
    )
    dev_host_patterns: list[str] = field(
        default_factory=lambda: _csv_env("DEV_HOST_PATTERNS", "wwwd,dev,staging")
    )
    link_check_timeout: float = field(
        default_factory=lambda: float(os.environ.get("LINK_CHECK_TIMEOUT", "10.0"))
    )
    link_check_concurrency: int = field(
        default_factory=lambda: int(os.environ.get("LINK_CHECK_CONCURRENCY", "6"))
    )
    link_check_max_redirects: int = field(
        default_factory=lambda: int(os.environ.get("LINK_CHECK_MAX_REDIRECTS", "5"))
    )

    # ------------------------------------------------------------------
    # Preview fetching
    # ------------------------------------------------------------------
    allowed_preview_hosts: list[str] = field(
        default_factory=lambda: _csv_env("ALLOWED_PREVIEW_HOSTS")
    )
    preview_fetch_timeout: float = field(
        default_factory=lambda: float(os.environ.get("PREVIEW_FETCH_TIMEOUT", "15.0"))
    )

    # ------------------------------------------------------------------
    # Submission rate limiting
    # ------------------------------------------------------------------
    rate_limit_window_seconds: float = field(
        default_factory=lambda: float(os.environ.get("RATE_LIMIT_WINDOW_SECONDS", "300"))
    )
    rate_limit_max_requests: int = field(
        default_factory=lambda: int(os.environ.get("RATE_LIMIT_MAX_REQUESTS", "5"))
    )
    rate_limit_max_clients: int = field(
        default_factory=lambda: int(os.environ.get("RATE_LIMIT_MAX_CLIENTS", "10000"))
    )
    # Only honour X-Forwarded-For / X-Real-IP when a reverse proxy sets them.
    trust_proxy_headers: bool = field(
        default_factory=lambda: os.environ.get("TRUST_PROXY_HEADERS", "").strip().lower()
        in ("1", "true", "yes")
    )

    # ------------------------------------------------------------------
    # Background runs
    # ------------------------------------------------------------------
    max_concurrent_runs: int = field(
        default_factory=lambda: int(os.environ.get("QC_MAX_CONCURRENT_RUNS", "2"))
    )
    max_pending_runs: int = field(
        default_factory=lambda: int(os.environ.get("QC_MAX_PENDING_RUNS", "50"))
    )

    log_level: str = field(
        default_factory=lambda: os.environ.get("QC_LOG_LEVEL", "INFO").upper()
    )

    def is_mock_model(self) -> bool:
        """Return ``True`` when the content-validation model should be stubbed.

        Mock mode is forced with ``QC_MODEL_MODE=mock`` and is implied when the
        OpenAI provider is selected without an API key.
        """
        if self.qc_model_mode == "mock":
            return True
        return self.llm_provider == "openai" and not self.openai_api_key

    def ensure_workspace(self) -> None:
        """Create the workspace directory if it does not exist."""
        self.workspace_dir.mkdir(parents=True, exist_ok=True)


# Module-level singleton, import this everywhere:
#   from emailqc.config import settings
settings = Settings()
