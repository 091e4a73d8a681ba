from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Dict, List

from fastapi import FastAPI, HTTPException, Query

from log_config import configure_logging
from weather_data import (
    Location,
    PrecipitationService,
    PrecipitationUnit,
    SourceResult,
    aggregate_totals,
    plan_sources,
)
from weather_errors import LocationNotFoundError, WeatherDataError
from weather_models import SOURCES

LOGGER = configure_logging()


app = FastAPI(title="Power User Weather")

service = PrecipitationService()


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _parse_iso_date(value: str, name: str) -> date:
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name} date '{value}'. Use YYYY-MM-DD")


def _parse_unit(value: str) -> PrecipitationUnit:
    try:
        return PrecipitationUnit.parse(str(value))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


def _resolve_location(city: str | None, lat: float | None, lon: float | None) -> Location:
    if city:
        if lat is not None or lon is not None:
            raise HTTPException(status_code=400, detail="Use either city or lat/lon, not both")
        try:
            return service.geocode(city)
        except LocationNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        except WeatherDataError as exc:
            LOGGER.warning("Geocoding failed city=%s error=%s", city, exc)
            raise HTTPException(status_code=502, detail=str(exc))
    if lat is None or lon is None:
        raise HTTPException(status_code=400, detail="Must specify either city or both lat and lon")
    return Location.from_coordinates(lat, lon)


def _totals_payload(result: SourceResult) -> Dict[str, object]:
    totals = aggregate_totals(result.dataset)
    rows = [
        {"model": key.model, "measure": key.measure, "total": value}
        for key, value in sorted(totals.items(), key=lambda item: (item[0].model, item[0].measure))
    ]
    return {
        "source": result.source.value,
        "display_name": result.source.display_name,
        "days": list(result.dataset.time),
        "totals": rows,
    }


@app.on_event("shutdown")
def _shutdown() -> None:
    LOGGER.info("App shutdown")
    service.close()


@app.get("/api/sources")
def sources() -> Dict[str, object]:
    return {
        "sources": [
            {
                "source": meta.source.value,
                "display_name": meta.display_name,
                "base_url": meta.base_url,
                "models": list(meta.models),
                "daily_measures": list(meta.daily_measures),
            }
            for meta in SOURCES.values()
        ]
    }


@app.get("/api/precipitation")
def precipitation(
    start: str = Query(...),
    end: str = Query(...),
    city: str | None = Query(None),
    lat: float | None = Query(None, ge=-90, le=90),
    lon: float | None = Query(None, ge=-180, le=180),
    unit: str = Query("mm"),
    timezone_name: str = Query("UTC", alias="timezone"),
    historical: bool = Query(True),
    forecast: bool = Query(True),
    ensemble: bool = Query(True),
) -> Dict[str, object]:
    start_date = _parse_iso_date(start, "start")
    end_date = _parse_iso_date(end, "end")
    precip_unit = _parse_unit(unit)
    try:
        plan = plan_sources(
            start_date,
            end_date,
            _today(),
            include_historical=historical,
            include_forecast=forecast,
            include_ensemble=ensemble,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if not plan:
        raise HTTPException(
            status_code=400,
            detail=f"No enabled data source covers {start_date.isoformat()} to {end_date.isoformat()}",
        )

    location = _resolve_location(city, lat, lon)
    results, errors = service.fetch_plan(plan, location, precip_unit, timezone_name)
    error_rows: List[Dict[str, str]] = [
        {"source": source.value, "error": message} for source, message in errors.items()
    ]
    if not results:
        raise HTTPException(status_code=502, detail={"message": "No data retrieved from any source", "errors": error_rows})

    return {
        "location": {"name": location.name, "lat": location.lat, "lon": location.lon},
        "start": start_date.isoformat(),
        "end": end_date.isoformat(),
        "unit": precip_unit.value,
        "timezone": timezone_name,
        "sources": [_totals_payload(result) for result in results],
        "errors": error_rows,
    }


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}
