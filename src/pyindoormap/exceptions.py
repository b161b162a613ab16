"""Custom exception hierarchy for pyindoormap."""

from __future__ import annotations


class IndoorMapError(Exception):
    """Base exception for all pyindoormap errors."""


class IndoorMapConfigError(IndoorMapError):
    """Invalid or missing configuration."""


class TransportError(IndoorMapError):
    """HTTP-level failure (network, unexpected status, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class ApiError(IndoorMapError):
    """The platform answered, but with a payload we cannot use."""

    def __init__(self, message: str, *, endpoint: str = "") -> None:
        self.endpoint = endpoint
        super().__init__(message)


class NotFoundError(ApiError):
    """Requested inventory object or binary does not exist (HTTP 404)."""


class MapLoadError(IndoorMapError):
    """Map configuration or its markers could not be loaded.

    Raised by the level-switch controller during the initial load. The
    controller stays in ``LOADING`` and renders nothing; ``start()`` may be
    retried.
    """


class LevelNotFoundError(IndoorMapError):
    """Requested level index does not exist in the building."""

    def __init__(self, level_index: int, level_count: int) -> None:
        self.level_index = level_index
        self.level_count = level_count
        super().__init__(f"Level {level_index} does not exist (building has {level_count} levels)")


class ImageLoadError(IndoorMapError):
    """Floor-plan image bytes could not be loaded or stored."""


class ControllerStateError(IndoorMapError):
    """Operation not allowed in the controller's current state."""


class MarkerNotFoundError(IndoorMapError):
    """Device has no marker on the active level."""

    def __init__(self, device_id: str) -> None:
        self.device_id = device_id
        super().__init__(f"Device {device_id} has no marker on the active level")
