"""Client configuration for pyindoormap."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pyindoormap._constants import (
    DEFAULT_EVENT_POLL_INTERVAL,
    DEFAULT_MARKER_COLOR,
    DEFAULT_MEASUREMENT_TOPIC,
)
from pyindoormap.exceptions import IndoorMapConfigError


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
class IndoorMapConfig:
    """Library configuration.

    Parameters
    ----------
    base_url : str
        Platform tenant base URL (e.g. ``"https://example.cumulocity.com"``).
    tenant : str
        Tenant id, prefixed to the username for basic auth when set.
    username : str
        Platform user.
    password : str
        Platform password.
    request_timeout : float
        Total timeout in seconds for a single REST request.
    event_poll_interval : float
        Seconds between two event polls for the same device. Must be > 0.
    mqtt_enabled : bool
        Enable the MQTT push feed for live measurements.
    mqtt_host : str
        MQTT broker host. Defaults to the host of ``base_url`` when empty.
    mqtt_port : int
        MQTT broker port.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_tls : bool
        Use TLS for the MQTT connection.
    measurement_topic : str
        Topic template for per-device measurement streams; ``{device_id}``
        is substituted.
    view_state_path : str or None
        JSON file used to persist zoom/pan per level. ``None`` keeps view
        state in memory only.
    default_marker_color : str
        Marker color when no threshold matches.
    """

    base_url: str = ""
    tenant: str = ""
    username: str = ""
    password: str = ""
    request_timeout: float = 30.0
    event_poll_interval: float = DEFAULT_EVENT_POLL_INTERVAL
    mqtt_enabled: bool = True
    mqtt_host: str = ""
    mqtt_port: int = 8883
    mqtt_keepalive: int = 120
    mqtt_tls: bool = True
    measurement_topic: str = DEFAULT_MEASUREMENT_TOPIC
    view_state_path: str | None = None
    default_marker_color: str = DEFAULT_MARKER_COLOR

    def __post_init__(self) -> None:
        if self.event_poll_interval <= 0:
            raise IndoorMapConfigError(f"event_poll_interval must be > 0, got {self.event_poll_interval}")
        if "{device_id}" not in self.measurement_topic:
            raise IndoorMapConfigError("measurement_topic must contain a '{device_id}' placeholder")

    @property
    def auth_user(self) -> str:
        """Username as sent for basic auth (``tenant/user`` when a tenant is set)."""
        if self.tenant:
            return f"{self.tenant}/{self.username}"
        return self.username

    @classmethod
    def from_env(cls, **overrides: Any) -> IndoorMapConfig:
        """Create configuration from environment variables.

        Reads ``INDOORMAP_*`` variables. Explicit keyword arguments override
        environment values.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "INDOORMAP_BASE_URL": "base_url",
            "INDOORMAP_TENANT": "tenant",
            "INDOORMAP_USERNAME": "username",
            "INDOORMAP_PASSWORD": "password",
            "INDOORMAP_MQTT_HOST": "mqtt_host",
            "INDOORMAP_MEASUREMENT_TOPIC": "measurement_topic",
            "INDOORMAP_VIEW_STATE_PATH": "view_state_path",
            "INDOORMAP_DEFAULT_MARKER_COLOR": "default_marker_color",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        # numeric values, handle separately
        _ENV_NUMERIC_MAP: dict[str, tuple[str, type]] = {
            "INDOORMAP_REQUEST_TIMEOUT": ("request_timeout", float),
            "INDOORMAP_EVENT_POLL_INTERVAL": ("event_poll_interval", float),
            "INDOORMAP_MQTT_PORT": ("mqtt_port", int),
            "INDOORMAP_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
        }
        for env_key, (field_name, cast) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = cast(val)
            except ValueError as exc:
                raise IndoorMapConfigError(f"{env_key} is not a valid {cast.__name__}: {val!r}") from exc

        if "mqtt_enabled" not in overrides:
            config_kwargs["mqtt_enabled"] = _env_bool(env.get("INDOORMAP_MQTT_ENABLED"), True)
        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("INDOORMAP_MQTT_TLS"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
