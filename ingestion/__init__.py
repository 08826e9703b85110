"""Evidence ingestion package bootstrap."""

from .celery_app import create_celery_app, get_celery_app  # noqa: F401
from .research_config import ResearchConfig, load_research_config  # noqa: F401
from .settings import Settings, get_settings, reset_settings_cache  # noqa: F401

__all__ = [
    "ResearchConfig",
    "Settings",
    "create_celery_app",
    "get_celery_app",
    "get_settings",
    "load_research_config",
    "reset_settings_cache",
]
