from .loader import AppSettings, RuntimeSettings, Settings, load_settings
from .logging import configure_logging

__all__ = ["AppSettings", "RuntimeSettings", "Settings", "load_settings", "configure_logging"]
