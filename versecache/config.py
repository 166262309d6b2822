"""Configuration loader with type-safe dataclasses."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

import yaml

from .models import RouteRule, Strategy


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


# Polling interval used by the page to ask for a newer cache manager.
DEFAULT_UPDATE_INTERVAL = 60

# Public-domain commentary excerpts are limited to this many words.
DEFAULT_MAX_EXCERPT_WORDS = 120

# App shell and study data of the current deployment.
DEFAULT_PRECACHE = (
    "/",
    "/index.html",
    "/manifest.webmanifest",
    "https://cdn.tailwindcss.com",
    "/theology/commentary.json",
    "/xrefs/John.json",
    "/xrefs/Psalms.json",
    "/xrefs/John-3-16.json",
)

# Bulk content trees are served stale-while-revalidate; everything else is cache-first.
DEFAULT_ROUTES = (
    RouteRule("/bibles/**", Strategy.STALE_WHILE_REVALIDATE),
    RouteRule("/xrefs/**", Strategy.STALE_WHILE_REVALIDATE),
)

MANIFEST_DISPLAY_MODES = ("fullscreen", "standalone", "minimal-ui", "browser")


@dataclass(frozen=True)
class CacheConfig:
    """Configuration for the versioned cache store."""

    prefix: str = "bible-study-"
    version: str = "v1"  # bump on every deployment that changes cached content
    offline_document: str = "/index.html"  # served to navigations when offline
    cache_cross_origin: bool = False  # opportunistic caching of cross-origin misses

    def __post_init__(self) -> None:
        if not self.prefix:
            raise ConfigError("Cache prefix cannot be empty")
        if not self.version:
            raise ConfigError("Cache version cannot be empty")
        if not self.offline_document.startswith("/"):
            raise ConfigError(f"Offline document must be an absolute path, got '{self.offline_document}'")

    @property
    def name(self) -> str:
        """Name of the cache store for the current version."""
        return f"{self.prefix}{self.version}"


@dataclass(frozen=True)
class AppConfig:
    """Where the web app is served from."""

    origin: str = "http://localhost:8000"

    def __post_init__(self) -> None:
        if not self.origin.startswith(("http://", "https://")):
            raise ConfigError(f"App origin must start with http:// or https://, got '{self.origin}'")
        parsed = urlparse(self.origin)
        if not parsed.netloc:
            raise ConfigError(f"App origin has no host: '{self.origin}'")
        if parsed.path not in ("", "/"):
            raise ConfigError(f"App origin must not contain a path, got '{self.origin}'")


@dataclass(frozen=True)
class UpdateConfig:
    """Configuration for page-side update detection."""

    check_interval: int = DEFAULT_UPDATE_INTERVAL  # seconds between update checks

    def __post_init__(self) -> None:
        if self.check_interval < 1:
            raise ConfigError(f"Update check_interval must be at least 1 second, got {self.check_interval}")


@dataclass(frozen=True)
class NetworkConfig:
    """Configuration for the HTTP fetcher."""

    timeout: int = 10
    user_agent: str = "versecache/0.1"

    def __post_init__(self) -> None:
        if self.timeout < 1:
            raise ConfigError(f"Network timeout must be at least 1 second, got {self.timeout}")
        if not self.user_agent:
            raise ConfigError("User-Agent cannot be empty")


@dataclass(frozen=True)
class IconConfig:
    """A single manifest icon."""

    src: str
    sizes: str
    type: str = "image/png"

    def __post_init__(self) -> None:
        if not self.src:
            raise ConfigError("Icon src cannot be empty")
        if not self.sizes:
            raise ConfigError(f"Icon sizes cannot be empty for '{self.src}'")


def _default_icons() -> list[IconConfig]:
    return [
        IconConfig(src="/icons/icon-192.png", sizes="192x192"),
        IconConfig(src="/icons/icon-512.png", sizes="512x512"),
    ]


@dataclass(frozen=True)
class ManifestConfig:
    """Web App Manifest metadata."""

    name: str = "Bible Study"
    short_name: str = "Bible"
    start_url: str = "/"
    display: str = "standalone"
    background_color: str = "#ffffff"
    theme_color: str = "#1e3a8a"
    icons: list[IconConfig] = field(default_factory=_default_icons)

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigError("Manifest name cannot be empty")
        if not self.short_name:
            raise ConfigError("Manifest short_name cannot be empty")
        if self.display not in MANIFEST_DISPLAY_MODES:
            raise ConfigError(
                f"Invalid manifest display '{self.display}'. Must be one of: {MANIFEST_DISPLAY_MODES}"
            )


def _get_default_storage_path() -> str:
    """Get the default cache database path using XDG-compliant directory."""
    home = Path.home()
    return str(home / ".local" / "share" / "versecache" / "caches.db")


DEFAULT_STORAGE_PATH = _get_default_storage_path()


@dataclass(frozen=True)
class StorageConfig:
    """Configuration for the SQLite cache storage."""

    path: str = DEFAULT_STORAGE_PATH

    def __post_init__(self) -> None:
        if not self.path:
            raise ConfigError("Storage path cannot be empty")


@dataclass(frozen=True)
class ValidatorConfig:
    """Configuration for the content validator."""

    root: str = "."
    max_excerpt_words: int = DEFAULT_MAX_EXCERPT_WORDS

    def __post_init__(self) -> None:
        if self.max_excerpt_words < 1:
            raise ConfigError(f"max_excerpt_words must be at least 1, got {self.max_excerpt_words}")


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    cache: CacheConfig = field(default_factory=CacheConfig)
    app: AppConfig = field(default_factory=AppConfig)
    precache: list[str] = field(default_factory=lambda: list(DEFAULT_PRECACHE))
    routes: list[RouteRule] = field(default_factory=lambda: list(DEFAULT_ROUTES))
    update: UpdateConfig = field(default_factory=UpdateConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    manifest: ManifestConfig = field(default_factory=ManifestConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    validator: ValidatorConfig = field(default_factory=ValidatorConfig)

    def __post_init__(self) -> None:
        for entry in self.precache:
            if not entry.startswith(("/", "http://", "https://")):
                raise ConfigError(f"Precache entry must be an absolute path or URL, got '{entry}'")
        duplicates = {entry for entry in self.precache if self.precache.count(entry) > 1}
        if duplicates:
            raise ConfigError(f"Duplicate precache entries found: {duplicates}")
        for rule in self.routes:
            if not rule.pattern.startswith("/"):
                raise ConfigError(f"Route pattern must start with '/', got '{rule.pattern}'")


def default_config() -> Config:
    """Return the built-in deployment configuration."""
    return Config()


def _parse_strategy(name: object, index: int) -> Strategy:
    """Parse a strategy name like "stale-while-revalidate"."""
    try:
        return Strategy(str(name))
    except ValueError:
        valid = [strategy.value for strategy in Strategy]
        raise ConfigError(f"Route entry {index} has invalid strategy '{name}'. Must be one of: {valid}")


def _parse_route(data: dict, index: int) -> RouteRule:
    """Parse a single route entry."""
    if not isinstance(data, dict):
        raise ConfigError(f"Route entry {index} must be a dictionary")

    pattern = data.get("pattern")
    strategy = data.get("strategy")

    if pattern is None:
        raise ConfigError(f"Route entry {index} is missing 'pattern' field")
    if strategy is None:
        raise ConfigError(f"Route entry {index} is missing 'strategy' field")

    return RouteRule(pattern=str(pattern), strategy=_parse_strategy(strategy, index))


def _parse_cache_config(data: dict | None) -> CacheConfig:
    """Parse cache configuration section."""
    if data is None:
        return CacheConfig()
    if not isinstance(data, dict):
        raise ConfigError("'cache' section must be a dictionary")

    return CacheConfig(
        prefix=str(data.get("prefix", "bible-study-")),
        version=str(data.get("version", "v1")),
        offline_document=str(data.get("offline_document", "/index.html")),
        cache_cross_origin=bool(data.get("cache_cross_origin", False)),
    )


def _parse_app_config(data: dict | None) -> AppConfig:
    """Parse app configuration section."""
    if data is None:
        return AppConfig()
    if not isinstance(data, dict):
        raise ConfigError("'app' section must be a dictionary")

    return AppConfig(origin=str(data.get("origin", "http://localhost:8000")).rstrip("/"))


def _parse_update_config(data: dict | None) -> UpdateConfig:
    """Parse update configuration section."""
    if data is None:
        return UpdateConfig()
    if not isinstance(data, dict):
        raise ConfigError("'update' section must be a dictionary")

    return UpdateConfig(check_interval=int(data.get("check_interval", DEFAULT_UPDATE_INTERVAL)))


def _parse_network_config(data: dict | None) -> NetworkConfig:
    """Parse network configuration section."""
    if data is None:
        return NetworkConfig()
    if not isinstance(data, dict):
        raise ConfigError("'network' section must be a dictionary")

    return NetworkConfig(
        timeout=int(data.get("timeout", 10)),
        user_agent=str(data.get("user_agent", "versecache/0.1")),
    )


def _parse_icon_config(data: dict, index: int) -> IconConfig:
    """Parse a single manifest icon entry."""
    if not isinstance(data, dict):
        raise ConfigError(f"Icon entry {index} must be a dictionary")

    src = data.get("src")
    sizes = data.get("sizes")

    if src is None:
        raise ConfigError(f"Icon entry {index} is missing 'src' field")
    if sizes is None:
        raise ConfigError(f"Icon entry {index} is missing 'sizes' field")

    return IconConfig(src=str(src), sizes=str(sizes), type=str(data.get("type", "image/png")))


def _parse_manifest_config(data: dict | None) -> ManifestConfig:
    """Parse manifest configuration section."""
    if data is None:
        return ManifestConfig()
    if not isinstance(data, dict):
        raise ConfigError("'manifest' section must be a dictionary")

    defaults = ManifestConfig()
    icons_data = data.get("icons")
    if icons_data is None:
        icons = _default_icons()
    elif not isinstance(icons_data, list):
        raise ConfigError("'manifest.icons' must be a list")
    else:
        icons = [_parse_icon_config(icon, i) for i, icon in enumerate(icons_data)]

    return ManifestConfig(
        name=str(data.get("name", defaults.name)),
        short_name=str(data.get("short_name", defaults.short_name)),
        start_url=str(data.get("start_url", defaults.start_url)),
        display=str(data.get("display", defaults.display)),
        background_color=str(data.get("background_color", defaults.background_color)),
        theme_color=str(data.get("theme_color", defaults.theme_color)),
        icons=icons,
    )


def _parse_storage_config(data: dict | None) -> StorageConfig:
    """Parse storage configuration section."""
    if data is None:
        return StorageConfig()
    if not isinstance(data, dict):
        raise ConfigError("'storage' section must be a dictionary")

    return StorageConfig(path=os.path.expanduser(str(data.get("path", DEFAULT_STORAGE_PATH))))


def _parse_validator_config(data: dict | None) -> ValidatorConfig:
    """Parse validator configuration section."""
    if data is None:
        return ValidatorConfig()
    if not isinstance(data, dict):
        raise ConfigError("'validator' section must be a dictionary")

    return ValidatorConfig(
        root=str(data.get("root", ".")),
        max_excerpt_words=int(data.get("max_excerpt_words", DEFAULT_MAX_EXCERPT_WORDS)),
    )


def _apply_env_overrides(config_data: dict) -> dict:
    """Apply environment variable overrides to configuration.

    Supported overrides:
    - VERSECACHE_CACHE_VERSION: Override cache.version
    - VERSECACHE_APP_ORIGIN: Override app.origin
    - VERSECACHE_STORAGE_PATH: Override storage.path
    - VERSECACHE_UPDATE_INTERVAL: Override update.check_interval
    """
    for section in ("cache", "app", "storage", "update"):
        if config_data.get(section) is None:
            config_data[section] = {}

    cache_version = os.environ.get("VERSECACHE_CACHE_VERSION")
    if cache_version is not None:
        config_data["cache"]["version"] = cache_version

    app_origin = os.environ.get("VERSECACHE_APP_ORIGIN")
    if app_origin is not None:
        config_data["app"]["origin"] = app_origin

    storage_path = os.environ.get("VERSECACHE_STORAGE_PATH")
    if storage_path is not None:
        config_data["storage"]["path"] = storage_path

    update_interval = os.environ.get("VERSECACHE_UPDATE_INTERVAL")
    if update_interval is not None:
        try:
            config_data["update"]["check_interval"] = int(update_interval)
        except ValueError:
            raise ConfigError(f"VERSECACHE_UPDATE_INTERVAL must be an integer, got '{update_interval}'")

    return config_data


def load_config(config_path: str) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML configuration: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file: {e}")

    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a YAML dictionary")

    data = _apply_env_overrides(data)

    precache_data = data.get("precache")
    if precache_data is None:
        precache = list(DEFAULT_PRECACHE)
    elif not isinstance(precache_data, list):
        raise ConfigError("'precache' must be a list")
    else:
        precache = [str(entry) for entry in precache_data]

    routes_data = data.get("routes")
    if routes_data is None:
        routes = list(DEFAULT_ROUTES)
    elif not isinstance(routes_data, list):
        raise ConfigError("'routes' must be a list")
    else:
        routes = [_parse_route(route, i) for i, route in enumerate(routes_data)]

    try:
        return Config(
            cache=_parse_cache_config(data.get("cache")),
            app=_parse_app_config(data.get("app")),
            precache=precache,
            routes=routes,
            update=_parse_update_config(data.get("update")),
            network=_parse_network_config(data.get("network")),
            manifest=_parse_manifest_config(data.get("manifest")),
            storage=_parse_storage_config(data.get("storage")),
            validator=_parse_validator_config(data.get("validator")),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}")
