# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Nostamp Contributors

"""Core configuration - settings for the notary process.

All environment-based configuration flows through this module. Settings are
built once at startup by ``load_settings()`` and handed to each component's
constructor; there is no process-wide settings instance.

Usage:
    from nostamp.core.config import load_settings
    settings = load_settings()

    store = RecordStore(settings.data_path)
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigException

DEFAULT_RELAYS = ",".join(
    [
        "wss://nostr.mom",
        "wss://nostr.wine",
        "wss://public.relaying.io",
        "wss://nostr-pub.wellorder.net",
    ]
)


class NotarySettings(BaseSettings):
    """Configuration settings for the notary.

    The signing key, calendar, and explorer use the bare SECRET_KEY,
    CALENDAR, and ESPLORA variables; everything else uses the NOSTAMP_
    prefix.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ==========================================================================
    # IDENTITY & UPSTREAM SERVICES
    # ==========================================================================

    secret_key: str = Field(
        ...,
        description="secp256k1 secret key (64 hex chars) used to sign completion events",
        validation_alias="SECRET_KEY",
    )
    calendar_url: str = Field(
        default="https://alice.btc.calendar.opentimestamps.org/",
        description="OpenTimestamps calendar server digests are submitted to",
        validation_alias="CALENDAR",
    )
    esplora_url: str = Field(
        default="https://blockstream.info/api",
        description="Esplora block explorer API base URL",
        validation_alias="ESPLORA",
    )

    # ==========================================================================
    # RELAY SETTINGS
    # ==========================================================================

    relays: str = Field(
        default=DEFAULT_RELAYS,
        description="Comma-separated list of relay URLs to subscribe to",
        validation_alias="NOSTAMP_RELAYS",
    )
    topic_tag: str = Field(
        default="prediction",
        description="Value of the 't' tag that marks events to timestamp",
        validation_alias="NOSTAMP_TOPIC",
    )

    # ==========================================================================
    # STORAGE
    # ==========================================================================

    data_dir: str = Field(
        default="data",
        description="Directory holding pending attestation records",
        validation_alias="NOSTAMP_DATA_DIR",
    )

    # ==========================================================================
    # SCHEDULING & TIMEOUTS (seconds)
    # ==========================================================================

    maturation_interval_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Delay between maturation cycles",
        validation_alias="NOSTAMP_MATURATION_INTERVAL",
    )
    maturation_warmup_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Delay before the first maturation cycle",
        validation_alias="NOSTAMP_MATURATION_WARMUP",
    )
    reconnect_interval_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Pause before resubscribing after losing all relays",
        validation_alias="NOSTAMP_RECONNECT_INTERVAL",
    )
    upgrade_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Bound on a single proof upgrade attempt",
        validation_alias="NOSTAMP_UPGRADE_TIMEOUT",
    )
    publish_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Bound on a single completion event publish",
        validation_alias="NOSTAMP_PUBLISH_TIMEOUT",
    )
    chain_tip_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Bound on each block explorer request",
        validation_alias="NOSTAMP_CHAIN_TIP_TIMEOUT",
    )
    stamp_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Bound on a digest submission to the calendar",
        validation_alias="NOSTAMP_STAMP_TIMEOUT",
    )
    resubmit_orphans: bool = Field(
        default=True,
        description="Retry calendar submission for records that never got a proof",
        validation_alias="NOSTAMP_RESUBMIT_ORPHANS",
    )

    # ==========================================================================
    # LOGGING SETTINGS
    # ==========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
        validation_alias="NOSTAMP_LOG_LEVEL",
    )
    log_format: str = Field(
        default="",
        description="Log format: 'json', 'text', or '' (auto-detect)",
        validation_alias="NOSTAMP_LOG_FORMAT",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (optional)",
        validation_alias="NOSTAMP_LOG_FILE",
    )

    @field_validator("secret_key")
    @classmethod
    def _check_secret_key(cls, value: str) -> str:
        value = value.strip().lower()
        if len(value) != 64:
            raise ValueError("secret key must be 64 hex characters")
        try:
            bytes.fromhex(value)
        except ValueError as e:
            raise ValueError("secret key must be hex encoded") from e
        return value

    @field_validator("calendar_url", "esplora_url")
    @classmethod
    def _check_http_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"expected an http(s) URL, got {value!r}")
        return value

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def relay_urls(self) -> list[str]:
        """Relay URLs parsed from the comma-separated setting."""
        return [url.strip() for url in self.relays.split(",") if url.strip()]

    @property
    def data_path(self) -> Path:
        """Data directory as a Path."""
        return Path(self.data_dir)


def load_settings(**overrides) -> NotarySettings:
    """Build the settings for this process.

    Args:
        **overrides: Field values that take precedence over the environment.

    Returns:
        A validated NotarySettings instance.

    Raises:
        ConfigException: If a required variable is missing or a value is invalid.
    """
    try:
        settings = NotarySettings(**overrides)
    except ValidationError as e:
        bad_vars = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        raise ConfigException(
            f"Invalid configuration: {', '.join(bad_vars) or 'unknown setting'}",
            missing_vars=bad_vars,
        ) from e

    if not settings.relay_urls:
        raise ConfigException("No relays configured", missing_vars=["NOSTAMP_RELAYS"])
    return settings
