from __future__ import annotations

import logging

from .db import SETTINGS_KEY, Database
from .errors import NotFound, ValidationError
from .messaging import Broadcast, Message, MessageType
from .models import Settings


class SettingsService:
    """Feature toggles and work categories, announced to observers on every change."""

    def __init__(self, db: Database, broadcast: Broadcast, logger: logging.Logger | None = None) -> None:
        self.db = db
        self.broadcast = broadcast
        self.logger = logger or logging.getLogger(__name__)

    def load(self) -> Settings:
        return Settings.from_dict(self.db.get(SETTINGS_KEY))

    def add_work_type(self, name: str) -> Settings:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Category name must not be empty")

        settings = self.load()
        if name in settings.work_types:
            raise ValidationError(f"Category already exists: {name}")

        return self._save(Settings(features=settings.features, work_types=settings.work_types + (name,)))

    def delete_work_type(self, name: str) -> Settings:
        settings = self.load()
        if name not in settings.work_types:
            raise NotFound(f"No such category: {name}")
        if len(settings.work_types) <= 1:
            raise ValidationError("At least one category must remain")

        remaining = tuple(item for item in settings.work_types if item != name)
        return self._save(Settings(features=settings.features, work_types=remaining))

    def set_feature(self, name: str, enabled: bool) -> Settings:
        if name not in self.load().features:
            raise ValidationError(f"Unknown feature: {name}")

        raw = self.db.update_setting(f"features.{name}", bool(enabled))
        settings = Settings.from_dict(raw)
        self.logger.info("Feature %s set to %s", name, enabled)
        self._announce(settings)
        return settings

    def _save(self, settings: Settings) -> Settings:
        # Keep any keys this service does not manage.
        raw = self.db.get(SETTINGS_KEY)
        merged = dict(raw) if isinstance(raw, dict) else {}
        merged.update(settings.to_dict())
        self.db.set(SETTINGS_KEY, merged)

        self.logger.info("Categories saved: %s", ", ".join(settings.work_types))
        self._announce(settings)
        return settings

    def _announce(self, settings: Settings) -> None:
        self.broadcast.publish(Message(MessageType.SETTINGS_UPDATED, {"settings": settings.to_dict()}))
