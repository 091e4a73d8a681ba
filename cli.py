#!/usr/bin/env python3
from __future__ import annotations

import argparse
from datetime import date, datetime, timezone
import sys
from typing import List, Sequence, TextIO

from log_config import CLI_FORMAT, configure_logging
from report import render_daily_breakdown, render_totals_table, section_header
from weather_data import (
    Location,
    PrecipitationService,
    PrecipitationUnit,
    aggregate_totals,
    plan_sources,
)
from weather_errors import WeatherDataError


def _parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}'. Use YYYY-MM-DD")


def _parse_unit(value: str) -> PrecipitationUnit:
    try:
        return PrecipitationUnit.parse(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="power-user-weather",
        description="Analyze and compare precipitation data from multiple sources",
    )
    parser.add_argument("-c", "--city", help='City name (e.g. "Seattle, WA" or "New York")')
    parser.add_argument("--lat", type=float, help="Latitude (use with --lon)")
    parser.add_argument("--lon", type=float, help="Longitude (use with --lat)")
    parser.add_argument("-s", "--start", type=_parse_date, required=True, help="Start date (YYYY-MM-DD)")
    parser.add_argument("-e", "--end", type=_parse_date, required=True, help="End date (YYYY-MM-DD)")
    parser.add_argument(
        "-u", "--unit", type=_parse_unit, default=PrecipitationUnit.MILLIMETERS, help="Precipitation unit (mm or inch)"
    )
    parser.add_argument("-z", "--timezone", default="UTC", help='Time zone (e.g. "America/New_York", "UTC")')
    parser.add_argument(
        "--historical", action=argparse.BooleanOptionalAction, default=True, help="Fetch historical archive data"
    )
    parser.add_argument("--forecast", action=argparse.BooleanOptionalAction, default=True, help="Fetch forecast data")
    parser.add_argument(
        "--ensemble",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Include ensemble forecast models (confidence bounds)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show detailed daily breakdown")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.city is not None and (args.lat is not None or args.lon is not None):
        parser.error("--city cannot be combined with --lat/--lon")
    if args.city is None and (args.lat is None or args.lon is None):
        parser.error("Must specify either --city or both --lat and --lon")
    if args.end < args.start:
        parser.error("End date must be after start date")
    return args


def run(args: argparse.Namespace, service: PrecipitationService, today: date, out: TextIO) -> int:
    def emit(line: str = "") -> None:
        print(line, file=out)

    if args.city is not None:
        emit(f"Geocoding '{args.city}'...")
        location = service.geocode(args.city)
    else:
        location = Location.from_coordinates(args.lat, args.lon)

    emit(f"Location: {location.name}")
    emit(f"Period: {args.start.isoformat()} to {args.end.isoformat()}")
    emit()

    plan = plan_sources(
        args.start,
        args.end,
        today,
        include_historical=args.historical,
        include_forecast=args.forecast,
        include_ensemble=args.ensemble,
    )
    if not plan:
        emit("No enabled data source covers the requested period")
        return 1
    for window in plan:
        emit(f"Fetching {window.source} ({window.start.isoformat()} to {window.end.isoformat()})...")
    results, errors = service.fetch_plan(plan, location, args.unit, args.timezone)
    for result in results:
        emit(f"  ok {result.source} data retrieved")
    for source, message in errors.items():
        emit(f"  warning {source} error: {message}")

    if not results:
        emit("No data retrieved from any source")
        return 1
    emit()

    for result in results:
        for line in section_header(f"{result.source.display_name.upper()} - PRECIPITATION BY MODEL AND MEASURE"):
            emit(line)
        emit(render_totals_table(aggregate_totals(result.dataset)))
        emit()

    if args.verbose:
        for line in section_header("DETAILED DAILY BREAKDOWN"):
            emit(line)
        for result in results:
            emit(f"Source: {result.source}")
            emit()
            lines: List[str] = render_daily_breakdown(result.dataset, args.unit.value)
            for line in lines:
                emit(line)

    emit("Analysis complete!")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    logger = configure_logging(default_level="WARNING", fmt=CLI_FORMAT)
    args = parse_args(argv)
    service = PrecipitationService()
    try:
        return run(args, service, datetime.now(timezone.utc).date(), sys.stdout)
    except WeatherDataError as exc:
        logger.debug("Run failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        service.close()


if __name__ == "__main__":
    sys.exit(main())
