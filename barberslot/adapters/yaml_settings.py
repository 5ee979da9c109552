"""
Shop settings provider reading and writing the ``shop`` section of the YAML config.
"""

import asyncio
import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from ..config import AppConfig, ShopSettingsConfig
from ..domain.exceptions import InvalidConfigurationError
from ..domain.models import ShopSettings

logger = logging.getLogger(__name__)


class YamlSettingsProvider:
    """
    Re-reads the config file on every call.

    Edits made to the file while the application runs apply to the next
    availability lookup or booking.
    """

    def __init__(self, config_path: Path):
        self.config_path = config_path

    def _load(self, shop_scope: str) -> AppConfig:
        try:
            config = AppConfig.load_from_yaml(self.config_path)
        except (FileNotFoundError, ValueError) as exc:
            raise InvalidConfigurationError(f"Could not load shop settings: {exc}") from exc

        if config.shop_scope != shop_scope:
            raise InvalidConfigurationError(
                f"{self.config_path} configures shop {config.shop_scope!r}, not {shop_scope!r}"
            )
        return config

    def _write(self, shop_scope: str, settings: ShopSettings) -> ShopSettings:
        self._load(shop_scope)

        with open(self.config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        data["shop"] = ShopSettingsConfig.from_domain(settings).model_dump(mode="json")
        try:
            config = AppConfig(**data)
        except ValidationError as exc:
            raise InvalidConfigurationError(f"Rejected shop settings: {exc}") from exc

        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)

        logger.info("Wrote shop settings for %s to %s", shop_scope, self.config_path)
        return config.shop.to_domain()

    async def read_shop_settings(self, shop_scope: str) -> ShopSettings:
        config = await asyncio.to_thread(self._load, shop_scope)
        logger.debug("Loaded shop settings for %s from %s", shop_scope, self.config_path)
        return config.shop.to_domain()

    async def update_shop_settings(self, shop_scope: str, settings: ShopSettings) -> ShopSettings:
        """
        Replace the ``shop`` section of the config file.

        Other sections are kept as they are; the merged document is validated
        before anything is written.
        """
        return await asyncio.to_thread(self._write, shop_scope, settings)
