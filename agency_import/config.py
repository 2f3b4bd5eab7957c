"""
Configuration module for bulk imports.

Loads settings from environment variables with sensible defaults for the
agency back-office. Never logs or exposes sensitive values like keys.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Tuple


DEFAULT_EXTENSIONS = (".xlsx", ".xls", ".csv")


@dataclass(frozen=True)
class ImportConfig:
    """Immutable configuration for the import engine."""

    # Number of error/warning lines kept on an outcome for display
    max_diagnostics: int = 20

    # Generic word appended to company names on the second resolution pass
    company_suffix: str = "sigorta"

    # Prefix for synthesized claim numbers (HS-<epoch ms>-<random>)
    claim_number_prefix: str = "HS"

    allowed_extensions: Tuple[str, ...] = field(default=DEFAULT_EXTENSIONS)

    def __post_init__(self):
        """Validate configuration on creation."""
        if self.max_diagnostics < 1:
            raise ValueError("IMPORT_MAX_DIAGNOSTICS must be at least 1")
        if not self.company_suffix.strip():
            raise ValueError("IMPORT_COMPANY_SUFFIX cannot be empty")
        if not self.claim_number_prefix.strip():
            raise ValueError("IMPORT_CLAIM_PREFIX cannot be empty")


def _int_from_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def load_config() -> ImportConfig:
    """
    Load import configuration from environment variables.

    Optional environment variables:
        IMPORT_MAX_DIAGNOSTICS: Errors/warnings kept per run (default: 20)
        IMPORT_COMPANY_SUFFIX: Suffix tried when matching companies (default: sigorta)
        IMPORT_CLAIM_PREFIX: Prefix for synthesized claim numbers (default: HS)

    Returns:
        ImportConfig: Validated configuration object

    Raises:
        ValueError: If a variable is present but invalid
    """
    return ImportConfig(
        max_diagnostics=_int_from_env("IMPORT_MAX_DIAGNOSTICS", 20),
        company_suffix=os.environ.get("IMPORT_COMPANY_SUFFIX", "sigorta").strip().lower(),
        claim_number_prefix=os.environ.get("IMPORT_CLAIM_PREFIX", "HS").strip(),
    )


def load_config_from_dotenv(dotenv_path: Optional[Path] = None) -> ImportConfig:
    """
    Load configuration after reading from .env file.

    Args:
        dotenv_path: Path to .env file. Defaults to project root/.env

    Returns:
        ImportConfig: Validated configuration object
    """
    from dotenv import load_dotenv

    if dotenv_path is None:
        dotenv_path = Path(__file__).parent.parent / ".env"

    load_dotenv(dotenv_path)
    return load_config()
