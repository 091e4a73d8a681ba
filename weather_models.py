from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Iterator, Tuple

ARCHIVE_MODELS: Tuple[str, ...] = (
    "best_match",
    "ecmwf_ifs",
    "ecmwf_ifs_analysis_long_window",
    "era5_seamless",
    "era5",
    "era5_land",
    "era5_ensemble",
    "cerra",
)

ARCHIVE_DAILY_SUMMABLE_MEASURES: Tuple[str, ...] = (
    "rain_sum",
    "snowfall_sum",
    "precipitation_sum",
    "precipitation_hours",
)

FORECAST_MODELS: Tuple[str, ...] = (
    "best_match",
    "ecmwf_ifs",
    "ecmwf_ifs025",
    "ecmwf_aifs025_single",
    "cma_grapes_global",
    "bom_access_global",
    "icon_seamless",
    "icon_global",
    "icon_eu",
    "icon_d2",
    "metno_seamless",
    "metno_nordic",
    "dmi_harmonie_arome_europe",
    "dmi_seamless",
    "knmi_harmonie_arome_netherlands",
    "knmi_harmonie_arome_europe",
    "knmi_seamless",
    "gem_hrdps_west",
    "gem_hrdps_continental",
    "gem_regional",
    "gem_global",
    "gem_seamless",
    "ncep_hgefs025_ensemble_mean",
    "ncep_aigfs025",
    "gfs_graphcast025",
    "ncep_nam_conus",
    "ncep_nbm_conus",
    "gfs_hrrr",
    "gfs_global",
    "gfs_seamless",
    "jma_seamless",
    "jma_msm",
    "jma_gsm",
    "meteofrance_seamless",
    "meteofrance_arpege_world",
    "meteofrance_arpege_europe",
    "meteofrance_arome_france",
    "meteofrance_arome_france_hd",
    "ukmo_seamless",
    "ukmo_global_deterministic_10km",
    "ukmo_uk_deterministic_2km",
    "meteoswiss_icon_ch2",
    "meteoswiss_icon_ch1",
    "meteoswiss_icon_seamless",
    "italia_meteo_arpae_icon_2i",
    "kma_gdps",
    "kma_ldps",
    "kma_seamless",
)

FORECAST_DAILY_SUMMABLE_MEASURES: Tuple[str, ...] = (
    "rain_sum",
    "showers_sum",
    "snowfall_sum",
    "precipitation_sum",
    "precipitation_hours",
)

ENSEMBLE_MODELS: Tuple[str, ...] = (
    "icon_seamless_eps",
    "icon_global_eps",
    "icon_eu_eps",
    "icon_d2_eps",
    "meteoswiss_icon_ch1_ensemble",
    "meteoswiss_icon_ch2_ensemble",
    "ncep_aigefs025",
    "ncep_gefs025",
    "ncep_gefs05",
    "ncep_gefs_seamless",
    "bom_access_global_ensemble",
    "gem_global_ensemble",
    "ecmwf_ifs025_ensemble",
    "ecmwf_aifs025_ensemble",
    "ukmo_global_ensemble_20km",
    "ukmo_uk_ensemble_2km",
)

ENSEMBLE_DAILY_SUMMABLE_MEASURES: Tuple[str, ...] = (
    "rain_sum",
    "snowfall_sum",
    "precipitation_sum",
    "precipitation_hours",
)


class WeatherDataSource(str, Enum):
    HISTORICAL_ARCHIVE = "historical_archive"
    FORECAST_STANDARD = "forecast_standard"
    FORECAST_ENSEMBLE = "forecast_ensemble"

    @property
    def display_name(self) -> str:
        return SOURCES[self].display_name

    def __str__(self) -> str:
        return self.display_name


@dataclass(frozen=True)
class SourceMeta:
    source: WeatherDataSource
    display_name: str
    base_url: str
    models: Tuple[str, ...]
    daily_measures: Tuple[str, ...]


SOURCES: Dict[WeatherDataSource, SourceMeta] = {
    WeatherDataSource.HISTORICAL_ARCHIVE: SourceMeta(
        source=WeatherDataSource.HISTORICAL_ARCHIVE,
        display_name="Historical Archive",
        base_url="https://archive-api.open-meteo.com/v1/archive",
        models=ARCHIVE_MODELS,
        daily_measures=ARCHIVE_DAILY_SUMMABLE_MEASURES,
    ),
    WeatherDataSource.FORECAST_STANDARD: SourceMeta(
        source=WeatherDataSource.FORECAST_STANDARD,
        display_name="Standard Forecast",
        base_url="https://api.open-meteo.com/v1/forecast",
        models=FORECAST_MODELS,
        daily_measures=FORECAST_DAILY_SUMMABLE_MEASURES,
    ),
    WeatherDataSource.FORECAST_ENSEMBLE: SourceMeta(
        source=WeatherDataSource.FORECAST_ENSEMBLE,
        display_name="Ensemble Forecast",
        base_url="https://ensemble-api.open-meteo.com/v1/ensemble",
        models=ENSEMBLE_MODELS,
        daily_measures=ENSEMBLE_DAILY_SUMMABLE_MEASURES,
    ),
}


class ModelRegistry:
    """Distinct model identifiers ordered for longest-suffix matching.

    Models are sorted by length descending, ties broken lexicographically, so
    that a more specific identifier (``meteoswiss_icon_seamless``) is always
    tried before a shorter one it ends with (``icon_seamless``).
    """

    def __init__(self, *model_lists: Iterable[str]) -> None:
        distinct = set()
        for models in model_lists:
            distinct.update(models)
        self._models: Tuple[str, ...] = tuple(sorted(distinct, key=lambda m: (-len(m), m)))

    @classmethod
    def from_sources(cls) -> "ModelRegistry":
        return cls(*(meta.models for meta in SOURCES.values()))

    def all_models(self) -> Tuple[str, ...]:
        return self._models

    def __iter__(self) -> Iterator[str]:
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, model: object) -> bool:
        return model in self._models

    def __repr__(self) -> str:
        return f"ModelRegistry({len(self._models)} models)"


DEFAULT_MODEL_REGISTRY = ModelRegistry.from_sources()
