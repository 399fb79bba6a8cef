"""
Configuration management for the archiver.
"""

import yaml
import logging
from pathlib import Path
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field, fields
from urllib.parse import urlparse


DEFAULT_HOST = "http://localhost:3000"
DEFAULT_USER_AGENT = "oasis-archive/1.0 (static mirror)"


class ConfigError(ValueError):
    """Raised when a configuration value is invalid."""
    pass


@dataclass
class PrefixRule:
    """Fixed extension for every reference under a path prefix."""
    prefix: str
    extension: str
    rewrite_to: Optional[str] = None


def _default_prefix_rules() -> List[PrefixRule]:
    html_sections = [
        '/author/', '/thread/', '/hashtag/', '/likes/', '/mentions',
        '/public', '/profile', '/inbox', '/search', '/summaries',
        '/popular', '/latest', '/topics',
    ]
    rules = [PrefixRule('/json/', 'json', rewrite_to='/message/')]
    rules.extend(PrefixRule(prefix, 'html') for prefix in html_sections)
    rules.append(PrefixRule('/image/', 'png'))
    return rules


@dataclass
class OriginConfig:
    """Configuration for talking to the origin server."""
    host: str = DEFAULT_HOST
    user_agent: str = DEFAULT_USER_AGENT
    request_timeout: int = 30
    retry_attempts: int = 3
    backoff_base: float = 0.5
    backoff_max: float = 8.0
    cache_size: int = 1024


@dataclass
class CrawlerConfig:
    """Configuration for crawler behavior."""
    seed_identities: List[str] = field(default_factory=list)
    output_dir: str = "output"
    max_depth: int = 1
    max_concurrent_requests: int = 16
    stats_interval: float = 30.0


@dataclass
class ResolverConfig:
    """Configuration for mapping origin references to local files."""
    default_profile_prefix: str = "/profile"
    profile_prefix: str = "/author/"
    identity_prefixes: List[str] = field(default_factory=lambda: ['/author/', '/likes/'])
    excluded_paths: List[str] = field(default_factory=lambda: ['/theme.css'])
    prefix_rules: List[PrefixRule] = field(default_factory=_default_prefix_rules)
    fallback_route: str = "/404"
    index_name: str = "index"


@dataclass
class TransformConfig:
    """Configuration for HTML rewriting."""
    remove_selectors: List[str] = field(default_factory=lambda: ['body > nav', 'form', '.viewer-only'])
    widget_selector: str = "footer form"
    pagination_params: List[str] = field(default_factory=lambda: ['lt', 'page'])


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: Optional[str] = None
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class Config:
    """Main configuration class."""
    origin: OriginConfig = field(default_factory=OriginConfig)
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    transform: TransformConfig = field(default_factory=TransformConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Config':
        """Build a Config from parsed YAML, filling defaults for missing keys."""
        data = data or {}
        resolver_data = dict(data.get('resolver') or {})
        if 'prefix_rules' in resolver_data:
            resolver_data['prefix_rules'] = [
                PrefixRule(**rule) for rule in resolver_data['prefix_rules'] or []
            ]

        return cls(
            origin=_section(OriginConfig, data.get('origin')),
            crawler=_section(CrawlerConfig, data.get('crawler')),
            resolver=_section(ResolverConfig, resolver_data),
            transform=_section(TransformConfig, data.get('transform')),
            logging=_section(LoggingConfig, data.get('logging')),
        )


def _section(cls, values: Optional[Dict[str, Any]]):
    values = values or {}
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"Unknown {cls.__name__} keys: {', '.join(sorted(unknown))}")
    return cls(**values)


def validate_config(config: Config) -> Config:
    """Validate configuration values."""
    if not config.crawler.seed_identities:
        raise ConfigError("At least one seed identity must be provided")

    if config.crawler.max_depth < 0:
        raise ConfigError("max_depth must be non-negative")

    if config.crawler.max_concurrent_requests < 1:
        raise ConfigError("max_concurrent_requests must be at least 1")

    if config.crawler.stats_interval <= 0:
        raise ConfigError("stats_interval must be positive")

    if config.origin.retry_attempts < 0:
        raise ConfigError("retry_attempts must be non-negative")

    if config.origin.cache_size < 1:
        raise ConfigError("cache_size must be at least 1")

    parsed = urlparse(config.origin.host)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ConfigError(f"Origin host must be an http(s) URL: {config.origin.host!r}")

    if not config.resolver.fallback_route.startswith('/'):
        raise ConfigError("fallback_route must be an origin-relative path")

    logging.getLogger(__name__).debug("Configuration validation passed")
    return config


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r') as file:
            config_data = yaml.safe_load(file)

        if config_data is not None and not isinstance(config_data, dict):
            raise ConfigError(f"Configuration file must contain a mapping: {self.config_path}")

        self._config = Config.from_dict(config_data)
        return self._config

    def set_config(self, config: Config) -> Config:
        self._config = validate_config(config)
        return self._config

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config


# Global config manager instance
config_manager = ConfigManager()


def get_config() -> Config:
    """Get the global configuration instance."""
    return config_manager.config


def load_config(config_path: str = "config.yaml") -> Config:
    """Load configuration from file.

    Validation is deferred so command-line overrides can complete the
    configuration first; call ``validate_config`` afterwards.
    """
    global config_manager
    config_manager = ConfigManager(config_path)
    return config_manager.load_config()


def default_config(**crawler_overrides) -> Config:
    """Build a configuration from defaults with crawler section overrides."""
    config = Config()
    for key, value in crawler_overrides.items():
        if not hasattr(config.crawler, key):
            raise ConfigError(f"Unknown crawler setting: {key}")
        setattr(config.crawler, key, value)
    return config


def set_config(config: Config) -> Config:
    """Validate a configuration and install it as the global instance."""
    return config_manager.set_config(config)
