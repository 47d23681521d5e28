"""Webhook engine configuration loader."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from trailhook.config import get_settings
from trailhook.webhooks.retry import RetryPolicy

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(get_settings().WEBHOOK_CONFIG_PATH)


@dataclass
class WebhookSettings:
    """Delivery engine settings."""

    max_attempts: int = 3
    retry_base_delay_seconds: float = 60.0
    retry_max_delay_seconds: float = 3600.0
    retry_jitter_ratio: float = 0.1
    delivery_timeout_seconds: float = 10.0
    lease_grace_seconds: float = 30.0
    worker_concurrency: int = 4
    poll_interval_seconds: float = 5.0
    batch_size: int = 10
    feed_lookback_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.worker_concurrency < 1:
            raise ValueError("worker_concurrency must be at least 1")
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.feed_lookback_seconds < 0:
            raise ValueError("feed_lookback_seconds must not be negative")
        # Validates the retry fields
        self.retry_policy()

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay_seconds=self.retry_base_delay_seconds,
            max_delay_seconds=self.retry_max_delay_seconds,
            jitter_ratio=self.retry_jitter_ratio,
            timeout_seconds=self.delivery_timeout_seconds,
            lease_grace_seconds=self.lease_grace_seconds,
        )


class WebhookConfigLoader:
    """Loads delivery engine settings from config/webhooks.yaml."""

    _settings: WebhookSettings | None = None

    @classmethod
    def load(cls) -> WebhookSettings:
        """Load settings, falling back to defaults when the file is absent or invalid."""
        if not CONFIG_PATH.exists():
            logger.info(
                "Webhook configuration not found at %s. Using defaults.",
                CONFIG_PATH,
            )
            cls._settings = WebhookSettings()
            return cls._settings

        try:
            with open(CONFIG_PATH) as f:
                raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error("Failed to parse webhook configuration: %s", e)
            cls._settings = WebhookSettings()
            return cls._settings

        settings_data = raw_config.get("settings") or {}
        try:
            cls._settings = cls._parse_settings(settings_data)
        except (TypeError, ValueError) as e:
            logger.warning("Invalid webhook settings, using defaults: %s", e)
            cls._settings = WebhookSettings()
            return cls._settings

        logger.info("Loaded webhook settings from %s", CONFIG_PATH)
        return cls._settings

    @classmethod
    def reload(cls) -> WebhookSettings:
        """Reload configuration (for hot-reload)."""
        return cls.load()

    @classmethod
    def get_settings(cls) -> WebhookSettings:
        """Get current settings, loading if necessary."""
        if cls._settings is None:
            cls.load()
        return cls._settings  # type: ignore

    @classmethod
    def _parse_settings(cls, data: dict[str, Any]) -> WebhookSettings:
        """Build settings from the YAML mapping, ignoring unknown keys."""
        if not isinstance(data, dict):
            raise TypeError("'settings' must be a mapping")

        known = {f.name: f.type for f in fields(WebhookSettings)}
        values: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                logger.warning("Ignoring unknown webhook setting: %s", key)
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise TypeError(f"Setting '{key}' must be a number")
            values[key] = int(value) if known[key] == "int" else float(value)

        return WebhookSettings(**values)
