"""Configuration management using Pydantic Settings."""

from dataclasses import dataclass
from typing import Annotated, Any, Dict, Optional

import orjson
from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode

CLIENT_NAME = "sentrel-client"
CLIENT_VERSION = "0.1.0"
CLIENT_ID = f"{CLIENT_NAME}/{CLIENT_VERSION}"

MIB = 1024 * 1024

LOG_LEVEL_NAMES = ("trace", "debug", "info", "notice", "warning", "error", "critical")


def normalize_level(value: Any) -> str:
    """
    Lower-case a log level name and check it is known.

    Raises:
        ValueError: If the name is not a known log level
    """
    level = str(value).strip().lower()
    if level == "warn":
        level = "warning"
    if level not in LOG_LEVEL_NAMES:
        raise ValueError(f"Unknown log level: {value!r}")
    return level


@dataclass(frozen=True)
class SizeLimits:
    """
    Size ceilings applied while building envelopes.

    max_attachment_size is soft: larger attachments are sent empty.
    Every other ceiling fails the send.
    """

    max_attachment_size: int = 20 * MIB
    max_envelope_compressed_size: int = 20 * MIB
    max_envelope_uncompressed_size: int = 100 * MIB
    max_all_attachments_size: int = 100 * MIB
    max_each_attachment_size: int = 100 * MIB
    max_event_and_transaction_size: int = 1 * MIB


class ClientSettings(BaseSettings):
    """Client settings loaded from SENTREL_* environment variables."""

    # Collector
    dsn: Optional[str] = None
    http_timeout: float = 10.0
    compress_envelopes: bool = False

    # Event context
    server_name: Optional[str] = None  # None = local hostname
    release: Optional[str] = None
    environment: Optional[str] = None
    tags: Annotated[Dict[str, str], NoDecode] = {}

    # Logging integration
    log_level: str = "INFO"
    send_level: str = "error"
    breadcrumb_level: str = "debug"
    breadcrumb_count: int = 20

    # Size ceilings (bytes)
    max_attachment_size: int = 20 * MIB
    max_envelope_compressed_size: int = 20 * MIB
    max_envelope_uncompressed_size: int = 100 * MIB
    max_all_attachments_size: int = 100 * MIB
    max_each_attachment_size: int = 100 * MIB
    max_event_and_transaction_size: int = 1 * MIB

    @field_validator("tags", mode="before")
    @classmethod
    def parse_tags(cls, v: Any) -> Dict[str, str]:
        """Parse tags from a JSON object, a k=v list or a dict."""
        if v is None or v == "":
            return {}
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        if isinstance(v, str):
            if v.lstrip().startswith("{"):
                return {str(k): str(val) for k, val in orjson.loads(v).items()}
            result = {}
            for pair in v.split(","):
                key, sep, value = pair.partition("=")
                if sep and key.strip():
                    result[key.strip()] = value.strip()
            return result
        return {}

    @field_validator("send_level", "breadcrumb_level", mode="before")
    @classmethod
    def parse_level(cls, v: Any) -> str:
        """Normalize a log level name."""
        return normalize_level(v)

    def size_limits(self) -> SizeLimits:
        """Build the SizeLimits value configured here."""
        return SizeLimits(
            max_attachment_size=self.max_attachment_size,
            max_envelope_compressed_size=self.max_envelope_compressed_size,
            max_envelope_uncompressed_size=self.max_envelope_uncompressed_size,
            max_all_attachments_size=self.max_all_attachments_size,
            max_each_attachment_size=self.max_each_attachment_size,
            max_event_and_transaction_size=self.max_event_and_transaction_size,
        )

    class Config:
        env_prefix = "SENTREL_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
