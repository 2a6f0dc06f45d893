"""Localized message catalog for user-facing status messages."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "en"

_CATALOGS: dict[str, dict[str, str]] = {
    "en": {
        "boot.composer.invalid": "The composer.json is invalid: {exception}",
        "boot.composer.missing_hosting": "Missing hosting configuration.",
    },
    "de": {
        "boot.composer.invalid": "Die composer.json ist ungültig: {exception}",
        "boot.composer.missing_hosting": "Fehlende Hosting-Konfiguration.",
    },
}


class Translator:
    """Resolve message ids for one locale, falling back to English."""

    def __init__(self, locale: str = DEFAULT_LOCALE) -> None:
        normalized = locale.split("_", 1)[0].split("-", 1)[0].lower()
        if normalized not in _CATALOGS:
            logger.debug("Unknown locale %r, falling back to %s", locale, DEFAULT_LOCALE)
            normalized = DEFAULT_LOCALE
        self.locale = normalized

    def trans(self, message_id: str, **params: object) -> str:
        template = _CATALOGS[self.locale].get(message_id) or _CATALOGS[DEFAULT_LOCALE].get(
            message_id,
        )
        if template is None:
            return message_id
        return template.format(**params)
