"""Engine configuration for pyissuemap."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pyissuemap.exceptions import ConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class TierThresholds:
    """Minimum zoom level at which each location tier starts.

    Anything below ``continent`` resolves to the ``global`` tier.
    """

    continent: float = 2
    country: float = 4
    state: float = 6

    def __post_init__(self) -> None:
        if not self.continent <= self.country <= self.state:
            raise ConfigError(
                f"zoom thresholds must ascend (continent={self.continent}, "
                f"country={self.country}, state={self.state})"
            )


@dataclasses.dataclass(frozen=True)
class IssueMapConfig:
    """Engine configuration.

    Parameters
    ----------
    backend_url : str
        Base URL of the PostgREST-style backend (``<url>/rest/v1/<table>``).
    api_key : str
        Anonymous/public API key sent as ``apikey`` with every backend call.
    geocoder_url : str
        Base URL of the Mapbox-compatible geocoding API.
    geocoder_token : str
        Geocoder access token.
    request_timeout : float
        Total timeout in seconds for a single HTTP request.
    debounce_ms : int
        Quiescence window before a viewport change triggers resolve + load.
    throttle_ms : int
        Minimum spacing between viewport-driven loads.
    issue_cache_ttl_ms : int
        TTL of cached issue pages (5 minutes).
    location_cache_ttl_ms : int
        TTL of cached reverse-geocoding results (30 minutes).
    page_size : int
        Issues per page.
    cache_capacity : int
        Maximum entries in the shared cache store.
    bounds_cell_size : float
        Grid size in degrees used to round bounds in cache keys.
    geocode_precision : int
        Decimal places of lng/lat in the location cache key.
    thresholds : TierThresholds
        Zoom thresholds for the location tiers.
    realtime_enabled : bool
        Start the MQTT change feed when the engine opens.
    realtime_host : str
        MQTT broker host.
    realtime_port : int
        MQTT broker port.
    realtime_tls : bool
        Use TLS for the broker connection.
    realtime_topic_prefix : str
        Topic prefix under which change events are published.
    realtime_keepalive : int
        MQTT keepalive in seconds.
    realtime_max_reconnect_attempts : int
        Consecutive failed reconnects before the feed gives up.
    """

    backend_url: str = "http://localhost:54321"
    api_key: str = ""
    geocoder_url: str = "https://api.mapbox.com"
    geocoder_token: str = ""
    request_timeout: float = 10.0
    debounce_ms: int = 250
    throttle_ms: int = 1000
    issue_cache_ttl_ms: int = 5 * 60 * 1000
    location_cache_ttl_ms: int = 30 * 60 * 1000
    page_size: int = 10
    cache_capacity: int = 100
    bounds_cell_size: float = 1.0
    geocode_precision: int = 2
    thresholds: TierThresholds = dataclasses.field(default_factory=TierThresholds)
    realtime_enabled: bool = True
    realtime_host: str = "localhost"
    realtime_port: int = 8883
    realtime_tls: bool = True
    realtime_topic_prefix: str = "issuemap/changes"
    realtime_keepalive: int = 60
    realtime_max_reconnect_attempts: int = 5

    def __post_init__(self) -> None:
        for name in ("debounce_ms", "throttle_ms", "issue_cache_ttl_ms", "location_cache_ttl_ms"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0")
        if self.page_size < 1:
            raise ConfigError("page_size must be >= 1")
        if self.cache_capacity < 1:
            raise ConfigError("cache_capacity must be >= 1")
        if self.bounds_cell_size <= 0:
            raise ConfigError("bounds_cell_size must be > 0")

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0

    @property
    def throttle_seconds(self) -> float:
        return self.throttle_ms / 1000.0

    @classmethod
    def from_env(cls, **overrides: Any) -> IssueMapConfig:
        """Create configuration from ``ISSUEMAP_*`` environment variables.

        Explicit keyword arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        IssueMapConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "ISSUEMAP_BACKEND_URL": "backend_url",
            "ISSUEMAP_API_KEY": "api_key",
            "ISSUEMAP_GEOCODER_URL": "geocoder_url",
            "ISSUEMAP_GEOCODER_TOKEN": "geocoder_token",
            "ISSUEMAP_REALTIME_HOST": "realtime_host",
            "ISSUEMAP_REALTIME_TOPIC_PREFIX": "realtime_topic_prefix",
        }
        _ENV_INT_MAP = {
            "ISSUEMAP_DEBOUNCE_MS": "debounce_ms",
            "ISSUEMAP_THROTTLE_MS": "throttle_ms",
            "ISSUEMAP_ISSUE_CACHE_TTL_MS": "issue_cache_ttl_ms",
            "ISSUEMAP_LOCATION_CACHE_TTL_MS": "location_cache_ttl_ms",
            "ISSUEMAP_PAGE_SIZE": "page_size",
            "ISSUEMAP_CACHE_CAPACITY": "cache_capacity",
            "ISSUEMAP_GEOCODE_PRECISION": "geocode_precision",
            "ISSUEMAP_REALTIME_PORT": "realtime_port",
            "ISSUEMAP_REALTIME_KEEPALIVE": "realtime_keepalive",
            "ISSUEMAP_REALTIME_MAX_RECONNECT_ATTEMPTS": "realtime_max_reconnect_attempts",
        }
        _ENV_FLOAT_MAP = {
            "ISSUEMAP_REQUEST_TIMEOUT": "request_timeout",
            "ISSUEMAP_BOUNDS_CELL_SIZE": "bounds_cell_size",
        }

        config_kwargs: dict[str, Any] = {}
        try:
            for env_key, field_name in _ENV_STR_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = val
            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = int(val)
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = float(val)

            # Zoom thresholds may be overridden individually.
            threshold_kwargs: dict[str, float] = {}
            for tier in ("continent", "country", "state"):
                val = env.get(f"ISSUEMAP_ZOOM_{tier.upper()}")
                if val is not None:
                    threshold_kwargs[tier] = float(val)
        except ValueError as exc:
            raise ConfigError(f"Invalid numeric ISSUEMAP_* value: {exc}") from exc

        threshold_overrides = overrides.pop("thresholds", None)
        if isinstance(threshold_overrides, dict):
            threshold_kwargs.update(threshold_overrides)
        elif isinstance(threshold_overrides, TierThresholds):
            threshold_kwargs = dataclasses.asdict(threshold_overrides)
        if threshold_kwargs:
            config_kwargs["thresholds"] = TierThresholds(**threshold_kwargs)

        if "realtime_enabled" not in overrides:
            config_kwargs["realtime_enabled"] = _env_bool(env.get("ISSUEMAP_REALTIME_ENABLED"), True)
        if "realtime_tls" not in overrides:
            config_kwargs["realtime_tls"] = _env_bool(env.get("ISSUEMAP_REALTIME_TLS"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
