from __future__ import annotations


class WeatherDataError(RuntimeError):
    """Base class for precipitation data retrieval failures."""


class NetworkError(WeatherDataError):
    """Raised when an HTTP request fails or returns a non-success status."""


class CacheIOError(WeatherDataError):
    """Raised when the response cache cannot be written."""


class MalformedResponseError(WeatherDataError):
    """Raised when a fetched payload cannot be decoded."""


class LocationNotFoundError(WeatherDataError):
    """Raised when geocoding returns no match for a city name."""


class InvalidUrlError(WeatherDataError, ValueError):
    """Raised when a request URL cannot be mapped to a cache path."""


class KeyResolutionError(WeatherDataError):
    """Base class for field names that cannot be split into measure and model."""

    def __init__(self, message: str, field_name: str) -> None:
        super().__init__(message)
        self.field_name = field_name


class UnresolvableFieldKeyError(KeyResolutionError):
    """Raised when no known model is a suffix of a field name."""


class MissingKeySeparatorError(KeyResolutionError):
    """Raised when a model suffix is not preceded by an underscore."""
