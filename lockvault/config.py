"""
LockVault - Settings

Front-end settings read from the environment (a .env file is loaded by
the CLI via python-dotenv before this runs):

    LOCKVAULT_BACKEND    sqlite | json | memory   (default: sqlite)
    LOCKVAULT_PATH       database file or directory
    LOCKVAULT_LOG_LEVEL  logging level name       (default: WARNING)

Crypto parameters are NOT here; they are fixed constants in crypto.py.
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import ValidationError
from .storage import BACKENDS, VaultStore, open_store

DEFAULT_BACKEND = "sqlite"
DEFAULT_LOG_LEVEL = "WARNING"
DEFAULT_PATHS = {
    "sqlite": os.path.join("~", ".lockvault", "vaults.db"),
    "json": os.path.join("~", ".lockvault") + os.sep,
    "memory": None,
}


@dataclass(frozen=True)
class Settings:
    backend: str = DEFAULT_BACKEND
    path: Optional[str] = DEFAULT_PATHS[DEFAULT_BACKEND]
    log_level: str = DEFAULT_LOG_LEVEL

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level)

    def open_store(self) -> VaultStore:
        return open_store(self.backend, self.path)


def load_settings(environ: Mapping[str, str] = os.environ) -> Settings:
    """
    Build Settings from environment variables.

    Raises:
        ValidationError: Unknown backend or log level
    """
    backend = environ.get("LOCKVAULT_BACKEND", DEFAULT_BACKEND).strip().lower()
    if backend not in BACKENDS:
        raise ValidationError(f"Unknown LOCKVAULT_BACKEND: {backend!r}")

    path = environ.get("LOCKVAULT_PATH") or DEFAULT_PATHS[backend]

    log_level = environ.get("LOCKVAULT_LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ValidationError(f"Unknown LOCKVAULT_LOG_LEVEL: {log_level!r}")

    return Settings(backend=backend, path=path, log_level=log_level)
