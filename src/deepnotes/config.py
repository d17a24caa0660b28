"""Application configuration defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from deepnotes.embedding.encoder import DEFAULT_MODEL
from deepnotes.embedding.gemini import GEMINI_MODEL

DATA_DIR_NAME = ".deepnotes"
DB_FILE_NAME = "index.db"

Provider = Literal["local", "gemini"]
PROVIDERS = ("local", "gemini")


def _get_default_db_path(vault_path: Path) -> Path:
    """The index lives in the vault's private data directory."""
    return vault_path / DATA_DIR_NAME / DB_FILE_NAME


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"Invalid {name} value '{raw}': expected an integer") from e
    if value <= 0:
        raise ValueError(f"Invalid {name} value '{raw}': must be positive")
    return value


@dataclass(slots=True)
class AppConfig:
    vault_path: Path = Path(".")
    db_path: Path | None = None
    provider: Provider = "local"
    model_name: str = DEFAULT_MODEL
    gemini_model: str = GEMINI_MODEL
    gemini_api_key: str | None = None
    top_k: int = 5
    progress_every: int = 10
    watch_interval: float = 5.0
    split_long_paragraphs: bool = False

    def __post_init__(self) -> None:
        self.vault_path = Path(self.vault_path).expanduser()
        if self.provider not in PROVIDERS:
            raise ValueError(f"Unknown embedding provider {self.provider!r}, expected one of {PROVIDERS}")

    def resolve_db_path(self) -> Path:
        if self.db_path is None:
            return _get_default_db_path(self.vault_path.resolve())
        db_path = Path(self.db_path).expanduser()
        if db_path.is_absolute():
            return db_path
        return self.vault_path.resolve() / db_path

    @classmethod
    def from_env(cls, **overrides: object) -> "AppConfig":
        """Load configuration from ``DEEPNOTES_*`` environment variables.

        Keyword overrides that are not None win over the environment.
        """
        db = os.getenv("DEEPNOTES_DB")
        values: dict[str, object] = {
            "vault_path": Path(os.getenv("DEEPNOTES_VAULT", ".")),
            "db_path": Path(db) if db else None,
            "provider": os.getenv("DEEPNOTES_PROVIDER", "local").lower(),
            "model_name": os.getenv("DEEPNOTES_MODEL", DEFAULT_MODEL),
            "gemini_model": os.getenv("DEEPNOTES_GEMINI_MODEL", GEMINI_MODEL),
            "gemini_api_key": os.getenv("GEMINI_API_KEY"),
            "top_k": _env_int("DEEPNOTES_TOP_K", 5),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)  # type: ignore[arg-type]
