import logging
import os
from dataclasses import dataclass, field
from typing import Union

from photoflow.constants import Constants

TRUTHY_VALUES = ("1", "true", "yes", "on")


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Settings:
    incoming_dir: str = "uploads/incoming"
    claimed_dir: str = "uploads/processing"
    original_dir: str = "uploads/original"
    derivative_dir: str = "uploads/medium"
    failed_dir: str = "uploads/failed"

    poll_interval: float = Constants.POLL_INTERVAL_SECONDS
    allowed_extensions: list[str] = field(
        default_factory=lambda: list(Constants.ALLOWED_INPUT_FILE_EXTENSIONS)
    )
    thumbnail_sizes: list[int] = field(
        default_factory=lambda: list(Constants.THUMBNAIL_SIZES)
    )
    thumbnail_quality: int = Constants.THUMBNAIL_QUALITY
    processing_timeout: Union[float, None] = Constants.PROCESSING_TIMEOUT_SECONDS
    max_workers: int = Constants.MAX_WORKERS
    enable_inotify: bool = False

    connection_string: str = "sqlite:///uploads/.photoflow.db"
    loglevel: Union[int, str] = logging.INFO

    def __post_init__(self):
        self.allowed_extensions = [
            ext.lower() if ext.startswith(".") else f".{ext.lower()}"
            for ext in self.allowed_extensions
        ]

        if self.poll_interval <= 0:
            raise ValueError(f"Poll interval must be positive, got {self.poll_interval}")
        if self.max_workers < 1:
            raise ValueError(f"Need at least one worker, got {self.max_workers}")
        if not self.allowed_extensions:
            raise ValueError("At least one allowed extension is required")
        if not self.thumbnail_sizes or any(size <= 0 for size in self.thumbnail_sizes):
            raise ValueError(f"Invalid thumbnail sizes {self.thumbnail_sizes}")
        if not 1 <= self.thumbnail_quality <= 100:
            raise ValueError(f"Invalid thumbnail quality {self.thumbnail_quality}")
        if self.processing_timeout is not None and self.processing_timeout <= 0:
            self.processing_timeout = None

    @property
    def directories(self) -> list[str]:
        return [
            self.incoming_dir,
            self.claimed_dir,
            self.original_dir,
            self.derivative_dir,
            self.failed_dir,
        ]

    @classmethod
    def from_env(cls, prefix: str = Constants.ENV_PREFIX) -> "Settings":
        defaults = cls()

        def env(name: str, default):
            return os.getenv(f"{prefix}_{name}", default)

        uploads_dir = env("UPLOADS_DIR", "uploads").rstrip("/")
        db_file = env("DB_FILE", f"{uploads_dir}/.photoflow.db")

        return cls(
            incoming_dir=env("INCOMING_DIR", f"{uploads_dir}/incoming"),
            claimed_dir=env("CLAIMED_DIR", f"{uploads_dir}/processing"),
            original_dir=env("ORIGINAL_DIR", f"{uploads_dir}/original"),
            derivative_dir=env("DERIVATIVE_DIR", f"{uploads_dir}/medium"),
            failed_dir=env("FAILED_DIR", f"{uploads_dir}/failed"),
            poll_interval=float(env("POLL_INTERVAL", defaults.poll_interval)),
            allowed_extensions=_split_list(
                env("ALLOWED_EXTENSIONS", ",".join(defaults.allowed_extensions))
            ),
            thumbnail_sizes=[
                int(size)
                for size in _split_list(
                    env("THUMBNAIL_SIZES", ",".join(map(str, defaults.thumbnail_sizes)))
                )
            ],
            thumbnail_quality=int(env("THUMBNAIL_QUALITY", defaults.thumbnail_quality)),
            processing_timeout=float(
                env("PROCESSING_TIMEOUT", defaults.processing_timeout or 0)
            ),
            max_workers=int(env("MAX_WORKERS", defaults.max_workers)),
            enable_inotify=str(env("ENABLE_INOTIFY", "false")).lower() in TRUTHY_VALUES,
            connection_string=env("CONNECTION_STRING", f"sqlite:///{db_file}"),
            loglevel=env("LOG_LEVEL", logging.INFO),
        )
