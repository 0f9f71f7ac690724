"""On-disk persistence of the monitor configuration."""

from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path

from pydantic import ValidationError

from .state import PersistedConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"
CREDENTIALS_FILENAME = ".credentials"


class ConfigStore:
    """Reads and writes ``config.json`` and the app-password file in one directory.

    The password is base64-encoded, which only keeps it from being read at a
    glance. It is not encryption.
    """

    def __init__(self, config_dir: Path) -> None:
        self.config_dir = Path(config_dir)

    @property
    def config_path(self) -> Path:
        return self.config_dir / CONFIG_FILENAME

    @property
    def credentials_path(self) -> Path:
        return self.config_dir / CREDENTIALS_FILENAME

    def load(self) -> PersistedConfig | None:
        if not self.config_path.exists():
            return None
        try:
            return PersistedConfig.model_validate_json(
                self.config_path.read_text(encoding="utf-8")
            )
        except (OSError, ValidationError) as e:
            logger.warning("Ignoring unreadable config %s: %s", self.config_path, e)
            return None

    def save(self, config: PersistedConfig) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_path.write_text(config.model_dump_json(indent=2), encoding="utf-8")

    def load_password(self) -> str | None:
        if not self.credentials_path.exists():
            return None
        try:
            encoded = self.credentials_path.read_text(encoding="utf-8").strip()
            return base64.b64decode(encoded, validate=True).decode("utf-8")
        except (OSError, binascii.Error, UnicodeDecodeError) as e:
            logger.warning("Ignoring unreadable credentials file: %s", e)
            return None

    def save_password(self, password: str) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        encoded = base64.b64encode(password.encode("utf-8")).decode("ascii")
        self.credentials_path.write_text(encoded, encoding="utf-8")
