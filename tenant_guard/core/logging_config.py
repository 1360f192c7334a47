# tenant_guard/core/logging_config.py
import logging

from tenant_guard.core.config import Settings, settings as default_settings


def configure_logging(settings: Settings = None) -> None:
    """Configure le logging racine à partir des paramètres"""
    settings = settings or default_settings
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format=settings.LOG_FORMAT,
    )
