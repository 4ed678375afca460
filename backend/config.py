"""
Service configuration.

Defaults below; every field can be overridden from the environment
through ServiceConfig.from_env().
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Mapping, Optional
import os


DEFAULT_TONE = "professional"
DEFAULT_MODEL = "gemini-2.5-flash-lite"


@dataclass(frozen=True)
class ServiceConfig:
    """Unified configuration for the timeline server."""
    root_dir: str = "."
    heartbeat_seconds: float = 15.0
    default_tone: str = DEFAULT_TONE
    default_model: str = DEFAULT_MODEL
    source_url: Optional[str] = None
    source_api_key: Optional[str] = None
    source_poll_seconds: float = 5.0
    provider: str = "gemini"
    gemini_api_key: Optional[str] = None
    log_level: str = "INFO"

    @property
    def data_dir(self) -> str:
        return os.path.join(self.root_dir, ".ink")

    @property
    def stacks_dir(self) -> str:
        return os.path.join(self.data_dir, "stacks")

    @property
    def tones_file(self) -> str:
        return os.path.join(self.data_dir, "tones.json")

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> ServiceConfig:
        env = os.environ if environ is None else environ
        return ServiceConfig(
            root_dir=env.get("INK_ROOT", os.getcwd()),
            heartbeat_seconds=float(env.get("INK_HEARTBEAT_SECONDS", "15")),
            default_tone=env.get("INK_DEFAULT_TONE", DEFAULT_TONE),
            default_model=env.get("INK_DEFAULT_MODEL", DEFAULT_MODEL),
            source_url=env.get("INK_SOURCE_URL") or None,
            source_api_key=env.get("INK_SOURCE_API_KEY") or None,
            source_poll_seconds=float(env.get("INK_SOURCE_POLL_SECONDS", "5")),
            provider=env.get("INK_PROVIDER", "gemini"),
            gemini_api_key=env.get("GEMINI_API_KEY") or None,
            log_level=env.get("INK_LOG_LEVEL", "INFO"),
        )
