"""
Utility modules for the archiver.
"""

from .config import (
    Config, ConfigError, ConfigManager, default_config, get_config,
    load_config, validate_config,
)
from .logger import setup_logging, get_archive_logger

__all__ = [
    'Config', 'ConfigError', 'ConfigManager', 'default_config', 'get_config',
    'load_config', 'validate_config', 'setup_logging', 'get_archive_logger',
]
