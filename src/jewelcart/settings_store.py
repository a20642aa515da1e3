"""Settings singleton storage for jewelcart."""

import logging

from .document_store import DocumentStore
from .models import SETTINGS_ID, Settings, _utc_now

logger = logging.getLogger("jewelcart.settings")


class SettingsStore:
    """Reads the store-wide Settings document, creating it atomically when absent."""

    def __init__(self, store: DocumentStore):
        self._collection = store.settings

    def ensure(self) -> Settings:
        """
        Create the zero-fee Settings document if it does not exist yet.

        The existence check and the insert share one collection lock, so
        concurrent first readers all end up with the same single document.
        Intended to run once at startup; ``load`` falls back to it.
        """
        doc, created = self._collection.insert_if_absent(
            lambda d: d.get("id") == SETTINGS_ID, Settings().to_dict()
        )
        if created:
            logger.info("Created default settings document")
        return Settings.from_dict(doc)

    def load(self) -> Settings:
        doc = self._collection.get(SETTINGS_ID)
        if doc is None:
            return self.ensure()
        return Settings.from_dict(doc)

    def save(self, settings: Settings) -> Settings:
        """Write shipping/branding fields (admin configuration, tests, CLI init)."""
        self.ensure()
        settings.updated_at = _utc_now()
        data = settings.to_dict()
        data.pop("created_at")
        self._collection.update(SETTINGS_ID, data)
        return self.load()
