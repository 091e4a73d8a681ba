from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import numpy as np

from response_cache import CachedFetcher
from weather_errors import (
    LocationNotFoundError,
    MalformedResponseError,
    MissingKeySeparatorError,
    UnresolvableFieldKeyError,
    WeatherDataError,
)
from weather_models import DEFAULT_MODEL_REGISTRY, SOURCES, ModelRegistry, WeatherDataSource

GEOCODING_URL = "https://geocoding-api.open-meteo.com/v1/search"
FORECAST_HORIZON_DAYS = 16
FETCH_WORKERS = int(os.getenv("PRECIP_FETCH_WORKERS", "3"))
LOGGER = logging.getLogger("power_user_weather.weather_data")


@dataclass(frozen=True)
class MeasureAndModel:
    measure: str
    model: str


@dataclass
class ColumnarDataset:
    """One shared day axis plus a value series per (measure, model).

    Series lengths are taken from the payload as-is and are not checked
    against ``time``; index with a bounds check.
    """

    time: List[str]
    fields: Dict[MeasureAndModel, List[Optional[float]]] = field(default_factory=dict)


class PrecipitationUnit(str, Enum):
    MILLIMETERS = "mm"
    INCHES = "inch"

    @classmethod
    def parse(cls, value: str) -> "PrecipitationUnit":
        for unit in cls:
            if unit.value == value:
                return unit
        raise ValueError(f"Invalid precipitation unit: {value}")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Location:
    name: str
    lat: float
    lon: float

    @classmethod
    def from_coordinates(cls, lat: float, lon: float) -> "Location":
        return cls(name=f"Lat: {lat:.4f}, Lon: {lon:.4f}", lat=lat, lon=lon)


@dataclass(frozen=True)
class SourceWindow:
    source: WeatherDataSource
    start: date
    end: date


@dataclass
class SourceResult:
    source: WeatherDataSource
    dataset: ColumnarDataset


class KeyResolver:
    """Splits ``<measure>_<model>`` field names using a model registry."""

    def __init__(self, registry: ModelRegistry = DEFAULT_MODEL_REGISTRY) -> None:
        self._registry = registry

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    def resolve(self, raw_key: str) -> MeasureAndModel:
        # Registry order is longest first, so the first suffix hit is the most specific model.
        model = next((m for m in self._registry.all_models() if raw_key.endswith(m)), None)
        if model is None:
            raise UnresolvableFieldKeyError(f"No matching model for field: {raw_key}", raw_key)

        suffix = f"_{model}"
        if not raw_key.endswith(suffix):
            raise MissingKeySeparatorError(
                f"Key does not contain expected separator before model {model}: {raw_key}",
                raw_key,
            )
        return MeasureAndModel(measure=raw_key[: -len(suffix)], model=model)


class ColumnarDecoder:
    def __init__(self, resolver: KeyResolver | None = None) -> None:
        self._resolver = resolver if resolver is not None else KeyResolver()

    def decode(self, raw_json: str) -> ColumnarDataset:
        try:
            payload = json.loads(raw_json)
        except ValueError as exc:
            raise MalformedResponseError(f"Failed to parse weather data response: {exc}") from exc
        if not isinstance(payload, dict):
            raise MalformedResponseError("Weather data response is not a JSON object")

        daily = payload.get("daily")
        if not isinstance(daily, dict):
            raise MalformedResponseError("No daily data in response")

        time_axis = daily.get("time")
        if not isinstance(time_axis, list) or not all(isinstance(v, str) for v in time_axis):
            raise MalformedResponseError("Daily data has no list of date strings under 'time'")

        fields: Dict[MeasureAndModel, List[Optional[float]]] = {}
        for key, values in daily.items():
            if key == "time":
                continue
            fields[self._resolver.resolve(key)] = self._parse_series(key, values)

        return ColumnarDataset(time=list(time_axis), fields=fields)

    @staticmethod
    def _parse_series(key: str, values: object) -> List[Optional[float]]:
        if not isinstance(values, list):
            raise MalformedResponseError(f"Daily field '{key}' is not a list")
        series: List[Optional[float]] = []
        for value in values:
            if value is None:
                series.append(None)
            elif isinstance(value, (int, float)) and not isinstance(value, bool):
                series.append(float(value))
            else:
                raise MalformedResponseError(f"Daily field '{key}' holds a non-numeric value: {value!r}")
        return series


def decode_daily_columnar(raw_json: str, resolver: KeyResolver | None = None) -> ColumnarDataset:
    return ColumnarDecoder(resolver).decode(raw_json)


def format_coordinate(value: float) -> str:
    # Plain decimal, shortest round-trip digits; the API does not accept exponents.
    return np.format_float_positional(float(value), trim="-")


def build_daily_url(
    base_url: str,
    location: Location,
    start_date: date,
    end_date: date,
    unit: PrecipitationUnit,
    timezone_name: str,
    models: Sequence[str],
    daily_measures: Sequence[str],
) -> str:
    params = [
        f"latitude={format_coordinate(location.lat)}",
        f"longitude={format_coordinate(location.lon)}",
        f"start_date={start_date.isoformat()}",
        f"end_date={end_date.isoformat()}",
        f"daily={','.join(daily_measures)}",
        f"precipitation_unit={unit.value}",
        f"timezone={quote(timezone_name, safe='/')}",
    ]
    if models:
        params.append(f"models={','.join(models)}")
    return f"{base_url}?{'&'.join(params)}"


def geocoding_url(city: str) -> str:
    return f"{GEOCODING_URL}?name={quote(city, safe='')}&count=1&language=en&format=json"


def geocode_city(city: str, fetcher: CachedFetcher) -> Location:
    body = fetcher.fetch(geocoding_url(city))
    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise MalformedResponseError(f"Failed to parse geocoding response for '{city}': {exc}") from exc

    if not isinstance(payload, dict):
        raise MalformedResponseError(f"Geocoding response for '{city}' is not a JSON object")
    results = payload.get("results")
    if not results:
        raise LocationNotFoundError(f"City '{city}' not found")
    if not isinstance(results, list):
        raise MalformedResponseError(f"Geocoding results for '{city}' are not a list")

    result = results[-1]
    try:
        lat = float(result["latitude"])
        lon = float(result["longitude"])
        name = str(result["name"])
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedResponseError(f"Incomplete geocoding result for '{city}': {result!r}") from exc
    region = result.get("admin1") or result.get("country") or "Unknown"
    return Location(name=f"{name}, {region}", lat=lat, lon=lon)


def plan_sources(
    start: date,
    end: date,
    today: date,
    include_historical: bool = True,
    include_forecast: bool = True,
    include_ensemble: bool = True,
) -> List[SourceWindow]:
    if end < start:
        raise ValueError("End date must be after start date")

    horizon = today + timedelta(days=FORECAST_HORIZON_DAYS)
    is_historical = end < today
    is_forecast = start <= horizon
    is_mixed = start < today <= end

    plan: List[SourceWindow] = []
    if include_historical and (is_historical or is_mixed):
        hist_end = today - timedelta(days=1) if is_mixed else end
        plan.append(SourceWindow(WeatherDataSource.HISTORICAL_ARCHIVE, start, hist_end))

    if include_forecast and is_forecast:
        forecast_start = today if is_mixed else start
        forecast_end = min(end, horizon)
        plan.append(SourceWindow(WeatherDataSource.FORECAST_STANDARD, forecast_start, forecast_end))
        if include_ensemble:
            plan.append(SourceWindow(WeatherDataSource.FORECAST_ENSEMBLE, forecast_start, forecast_end))
    return plan


def aggregate_totals(dataset: ColumnarDataset) -> Dict[MeasureAndModel, float]:
    totals: Dict[MeasureAndModel, float] = {}
    for key, values in dataset.fields.items():
        series = np.array([np.nan if v is None else v for v in values], dtype=np.float64)
        totals[key] = float(np.nansum(series))
    return totals


def group_by_date(dataset: ColumnarDataset) -> Dict[str, List[Tuple[str, str, Optional[float]]]]:
    by_date: Dict[str, List[Tuple[str, str, Optional[float]]]] = {}
    for key, values in dataset.fields.items():
        for i, day in enumerate(dataset.time):
            if i >= len(values):
                break
            by_date.setdefault(day, []).append((key.model, key.measure, values[i]))
    return {day: by_date[day] for day in sorted(by_date)}


class PrecipitationService:
    """Fetches and decodes summable precipitation data for each data source."""

    def __init__(
        self,
        fetcher: CachedFetcher | None = None,
        registry: ModelRegistry = DEFAULT_MODEL_REGISTRY,
        max_workers: int = FETCH_WORKERS,
    ) -> None:
        self.fetcher = fetcher if fetcher is not None else CachedFetcher()
        self._decoder = ColumnarDecoder(KeyResolver(registry))
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers),
            thread_name_prefix="precip-fetch",
        )

    def geocode(self, city: str) -> Location:
        return geocode_city(city, self.fetcher)

    def source_url(
        self,
        source: WeatherDataSource,
        location: Location,
        start: date,
        end: date,
        unit: PrecipitationUnit,
        timezone_name: str,
    ) -> str:
        meta = SOURCES[source]
        return build_daily_url(
            meta.base_url,
            location,
            start,
            end,
            unit,
            timezone_name,
            meta.models,
            meta.daily_measures,
        )

    def fetch_source(
        self,
        source: WeatherDataSource,
        location: Location,
        start: date,
        end: date,
        unit: PrecipitationUnit,
        timezone_name: str,
    ) -> ColumnarDataset:
        url = self.source_url(source, location, start, end, unit, timezone_name)
        body = self.fetcher.fetch(url)
        dataset = self._decoder.decode(body)
        LOGGER.debug("Decoded source=%s days=%d fields=%d", source.value, len(dataset.time), len(dataset.fields))
        return dataset

    def fetch_plan(
        self,
        plan: Sequence[SourceWindow],
        location: Location,
        unit: PrecipitationUnit,
        timezone_name: str,
    ) -> Tuple[List[SourceResult], Dict[WeatherDataSource, str]]:
        futures = [
            (
                window,
                self._executor.submit(
                    self.fetch_source, window.source, location, window.start, window.end, unit, timezone_name
                ),
            )
            for window in plan
        ]

        results: List[SourceResult] = []
        errors: Dict[WeatherDataSource, str] = {}
        for window, future in futures:
            try:
                results.append(SourceResult(source=window.source, dataset=future.result()))
            except WeatherDataError as exc:
                LOGGER.exception("Source fetch failed source=%s", window.source.value)
                errors[window.source] = str(exc)
        return results, errors

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.fetcher.close()
        LOGGER.info("Stopped fetch workers")
