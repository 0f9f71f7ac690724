"""cdMenu configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

DEFAULT_API_URL = "https://api.bitbucket.org/2.0"
DEFAULT_WEB_URL = "https://bitbucket.org"

MIN_POLLING_INTERVAL = 30
DEFAULT_POLLING_INTERVAL = 60


@dataclass
class BitbucketConfig:
    """Connection settings for the Bitbucket Cloud API, loaded from environment variables."""

    username: str = ""
    app_password: str = ""
    api_url: str = DEFAULT_API_URL
    web_url: str = DEFAULT_WEB_URL
    timeout: int = 30

    @classmethod
    def from_env(cls) -> BitbucketConfig:
        username = os.getenv("BITBUCKET_USERNAME", "")
        app_password = (
            os.getenv("BITBUCKET_APP_PASSWORD")
            or os.getenv("BITBUCKET_API_TOKEN")
            or os.getenv("BITBUCKET_TOKEN", "")
        )
        api_url = os.getenv("BITBUCKET_API_URL", DEFAULT_API_URL).rstrip("/")
        web_url = os.getenv("BITBUCKET_WEB_URL", DEFAULT_WEB_URL).rstrip("/")
        timeout = int(os.getenv("BITBUCKET_TIMEOUT", "30"))

        return cls(
            username=username,
            app_password=app_password,
            api_url=api_url,
            web_url=web_url,
            timeout=timeout,
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.app_password)

    def with_credentials(self, username: str, app_password: str) -> BitbucketConfig:
        return replace(self, username=username, app_password=app_password)

    def validate(self) -> None:
        if not self.username:
            msg = "BITBUCKET_USERNAME environment variable is required"
            raise ValueError(msg)
        if not self.app_password:
            msg = (
                "Bitbucket app password is required. Set one of: BITBUCKET_APP_PASSWORD, "
                "BITBUCKET_API_TOKEN, or BITBUCKET_TOKEN"
            )
            raise ValueError(msg)


def _default_config_dir() -> Path:
    base = os.getenv("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "cdmenu"


@dataclass
class MonitorConfig:
    """Settings for the polling loop and the on-disk config location."""

    config_dir: Path = field(default_factory=_default_config_dir)
    initial_delay: float = 2.0

    @classmethod
    def from_env(cls) -> MonitorConfig:
        config_dir = os.getenv("CDMENU_CONFIG_DIR")
        initial_delay = float(os.getenv("CDMENU_INITIAL_DELAY", "2"))
        return cls(
            config_dir=Path(config_dir).expanduser() if config_dir else _default_config_dir(),
            initial_delay=initial_delay,
        )
