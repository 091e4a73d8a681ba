import json
import unittest
from datetime import date
from urllib.parse import parse_qs, urlsplit

from weather_data import (
    ColumnarDataset,
    Location,
    MeasureAndModel,
    PrecipitationService,
    PrecipitationUnit,
    SourceWindow,
    aggregate_totals,
    build_daily_url,
    format_coordinate,
    geocode_city,
    geocoding_url,
    group_by_date,
    plan_sources,
)
from weather_errors import LocationNotFoundError, MalformedResponseError, NetworkError
from weather_models import SOURCES, WeatherDataSource

TODAY = date(2026, 2, 13)
LOCATION = Location(name="New York, New York", lat=40.71, lon=-74.01)


def _daily_body(field_name: str, values) -> str:
    return json.dumps({"daily": {"time": [f"2026-02-{13 + i}" for i in range(len(values))], field_name: values}})


class _FakeFetcher:
    def __init__(self, bodies=None, failures=None) -> None:
        self.bodies = bodies or {}
        self.failures = failures or {}
        self.urls = []
        self.closed = False

    def fetch(self, url):
        self.urls.append(url)
        for host, exc in self.failures.items():
            if host in url:
                raise exc
        for host, body in self.bodies.items():
            if host in url:
                return body
        raise AssertionError(f"unexpected url {url}")

    def close(self):
        self.closed = True


class PlanSourcesTests(unittest.TestCase):
    def test_past_range_plans_historical_and_forecast(self):
        plan = plan_sources(date(2026, 2, 1), date(2026, 2, 5), TODAY)
        self.assertEqual(
            plan,
            [
                SourceWindow(WeatherDataSource.HISTORICAL_ARCHIVE, date(2026, 2, 1), date(2026, 2, 5)),
                SourceWindow(WeatherDataSource.FORECAST_STANDARD, date(2026, 2, 1), date(2026, 2, 5)),
                SourceWindow(WeatherDataSource.FORECAST_ENSEMBLE, date(2026, 2, 1), date(2026, 2, 5)),
            ],
        )

    def test_range_spanning_today_splits_windows(self):
        plan = plan_sources(date(2026, 2, 9), date(2026, 2, 16), TODAY)
        self.assertEqual(plan[0], SourceWindow(WeatherDataSource.HISTORICAL_ARCHIVE, date(2026, 2, 9), date(2026, 2, 12)))
        self.assertEqual(plan[1], SourceWindow(WeatherDataSource.FORECAST_STANDARD, TODAY, date(2026, 2, 16)))

    def test_future_range_is_capped_at_forecast_horizon(self):
        plan = plan_sources(date(2026, 2, 20), date(2026, 3, 31), TODAY, include_ensemble=False)
        self.assertEqual(plan, [SourceWindow(WeatherDataSource.FORECAST_STANDARD, date(2026, 2, 20), date(2026, 3, 1))])

    def test_range_beyond_horizon_plans_nothing(self):
        self.assertEqual(plan_sources(date(2026, 4, 1), date(2026, 4, 5), TODAY), [])

    def test_disabled_sources_are_skipped(self):
        plan = plan_sources(date(2026, 2, 9), date(2026, 2, 16), TODAY, include_historical=False, include_forecast=False)
        self.assertEqual(plan, [])

    def test_end_before_start_is_rejected(self):
        with self.assertRaises(ValueError):
            plan_sources(date(2026, 2, 5), date(2026, 2, 1), TODAY)


class UrlTests(unittest.TestCase):
    def test_daily_url_carries_all_query_parameters(self):
        url = build_daily_url(
            "https://api.open-meteo.com/v1/forecast",
            LOCATION,
            date(2026, 2, 9),
            date(2026, 2, 16),
            PrecipitationUnit.INCHES,
            "America/New_York",
            ["best_match", "kma_gdps"],
            ["rain_sum", "snowfall_sum"],
        )
        parts = urlsplit(url)
        self.assertEqual(parts.netloc, "api.open-meteo.com")
        query = parse_qs(parts.query)
        self.assertEqual(query["latitude"], ["40.71"])
        self.assertEqual(query["longitude"], ["-74.01"])
        self.assertEqual(query["start_date"], ["2026-02-09"])
        self.assertEqual(query["end_date"], ["2026-02-16"])
        self.assertEqual(query["daily"], ["rain_sum,snowfall_sum"])
        self.assertEqual(query["precipitation_unit"], ["inch"])
        self.assertEqual(query["timezone"], ["America/New_York"])
        self.assertEqual(query["models"], ["best_match,kma_gdps"])

    def test_models_parameter_omitted_when_empty(self):
        url = build_daily_url(
            "https://archive-api.open-meteo.com/v1/archive",
            LOCATION,
            date(2026, 2, 1),
            date(2026, 2, 2),
            PrecipitationUnit.MILLIMETERS,
            "UTC",
            [],
            ["rain_sum"],
        )
        self.assertNotIn("models=", url)

    def test_coordinates_are_plain_decimals(self):
        self.assertEqual(format_coordinate(1e-05), "0.00001")
        self.assertEqual(format_coordinate(-74.01), "-74.01")
        self.assertEqual(format_coordinate(8.0), "8")
        url = build_daily_url(
            "https://api.open-meteo.com/v1/forecast",
            Location(name="Null Island", lat=1e-05, lon=-2.5e-07),
            date(2026, 2, 9),
            date(2026, 2, 9),
            PrecipitationUnit.MILLIMETERS,
            "UTC",
            [],
            ["rain_sum"],
        )
        self.assertIn("latitude=0.00001&", url)
        self.assertIn("longitude=-0.00000025&", url)
        self.assertNotIn("e-0", url)

    def test_geocoding_url_encodes_city(self):
        url = geocoding_url("Seattle, WA")
        self.assertIn("name=Seattle%2C%20WA", url)
        self.assertIn("count=1", url)

    def test_precipitation_unit_parsing(self):
        self.assertIs(PrecipitationUnit.parse("inch"), PrecipitationUnit.INCHES)
        self.assertEqual(str(PrecipitationUnit.MILLIMETERS), "mm")
        with self.assertRaises(ValueError):
            PrecipitationUnit.parse("cm")


class AggregationTests(unittest.TestCase):
    def setUp(self):
        self.dataset = ColumnarDataset(
            time=["2026-02-14", "2026-02-13"],
            fields={
                MeasureAndModel("rain_sum", "best_match"): [0.5, None],
                MeasureAndModel("snowfall_sum", "kma_gdps"): [None, None],
                MeasureAndModel("rain_sum", "kma_gdps"): [1.0],
            },
        )

    def test_totals_skip_missing_values(self):
        totals = aggregate_totals(self.dataset)
        self.assertAlmostEqual(totals[MeasureAndModel("rain_sum", "best_match")], 0.5)
        self.assertEqual(totals[MeasureAndModel("snowfall_sum", "kma_gdps")], 0.0)
        self.assertAlmostEqual(totals[MeasureAndModel("rain_sum", "kma_gdps")], 1.0)

    def test_group_by_date_is_sorted_and_bounds_checked(self):
        grouped = group_by_date(self.dataset)
        self.assertEqual(list(grouped), ["2026-02-13", "2026-02-14"])
        self.assertEqual(len(grouped["2026-02-14"]), 3)
        self.assertEqual(len(grouped["2026-02-13"]), 2)
        self.assertIn(("best_match", "rain_sum", None), grouped["2026-02-13"])


class GeocodingTests(unittest.TestCase):
    def test_uses_admin1_then_country(self):
        body = json.dumps(
            {"results": [{"name": "Seattle", "latitude": 47.6, "longitude": -122.3, "admin1": "Washington"}]}
        )
        location = geocode_city("Seattle", _FakeFetcher({"geocoding-api": body}))
        self.assertEqual(location, Location(name="Seattle, Washington", lat=47.6, lon=-122.3))

        body = json.dumps({"results": [{"name": "Bern", "latitude": 46.9, "longitude": 7.4, "country": "Switzerland"}]})
        self.assertEqual(geocode_city("Bern", _FakeFetcher({"geocoding-api": body})).name, "Bern, Switzerland")

        body = json.dumps({"results": [{"name": "Nowhere", "latitude": 0.0, "longitude": 0.0}]})
        self.assertEqual(geocode_city("Nowhere", _FakeFetcher({"geocoding-api": body})).name, "Nowhere, Unknown")

    def test_no_results_raises_not_found(self):
        with self.assertRaises(LocationNotFoundError):
            geocode_city("Atlantis", _FakeFetcher({"geocoding-api": json.dumps({"generationtime_ms": 0.1})}))

    def test_invalid_body_is_malformed(self):
        with self.assertRaises(MalformedResponseError):
            geocode_city("Bern", _FakeFetcher({"geocoding-api": "<html>"}))

    def test_unexpected_results_shape_is_malformed(self):
        for body in (
            {"results": {"name": "Bern", "latitude": 46.9, "longitude": 7.4}},
            {"results": ["Bern"]},
            ["Bern"],
        ):
            with self.assertRaises(MalformedResponseError, msg=body):
                geocode_city("Bern", _FakeFetcher({"geocoding-api": json.dumps(body)}))


class PrecipitationServiceTests(unittest.TestCase):
    def test_fetch_source_requests_source_models_and_measures(self):
        fetcher = _FakeFetcher({"archive-api": _daily_body("rain_sum_era5", [1.0, 2.0])})
        service = PrecipitationService(fetcher=fetcher, max_workers=1)
        try:
            dataset = service.fetch_source(
                WeatherDataSource.HISTORICAL_ARCHIVE,
                LOCATION,
                date(2026, 2, 13),
                date(2026, 2, 14),
                PrecipitationUnit.MILLIMETERS,
                "UTC",
            )
        finally:
            service.close()
        self.assertEqual(dataset.fields[MeasureAndModel("rain_sum", "era5")], [1.0, 2.0])
        query = parse_qs(urlsplit(fetcher.urls[0]).query)
        meta = SOURCES[WeatherDataSource.HISTORICAL_ARCHIVE]
        self.assertEqual(query["models"], [",".join(meta.models)])
        self.assertEqual(query["daily"], [",".join(meta.daily_measures)])
        self.assertTrue(fetcher.closed)

    def test_fetch_plan_collects_per_source_failures(self):
        fetcher = _FakeFetcher(
            bodies={
                "archive-api": _daily_body("rain_sum_best_match", [0.0]),
                "ensemble-api": _daily_body("rain_sum_icon_seamless_eps", [0.2]),
            },
            failures={"://api.open-meteo.com": NetworkError("HTTP 500 for forecast")},
        )
        plan = plan_sources(date(2026, 2, 9), date(2026, 2, 16), TODAY)
        service = PrecipitationService(fetcher=fetcher, max_workers=3)
        try:
            with self.assertLogs("power_user_weather.weather_data", level="ERROR"):
                results, errors = service.fetch_plan(plan, LOCATION, PrecipitationUnit.MILLIMETERS, "UTC")
        finally:
            service.close()

        self.assertEqual(
            [r.source for r in results],
            [WeatherDataSource.HISTORICAL_ARCHIVE, WeatherDataSource.FORECAST_ENSEMBLE],
        )
        self.assertEqual(list(errors), [WeatherDataSource.FORECAST_STANDARD])
        self.assertIn("HTTP 500", errors[WeatherDataSource.FORECAST_STANDARD])
        ensemble = results[1].dataset
        self.assertEqual(ensemble.fields[MeasureAndModel("rain_sum", "icon_seamless_eps")], [0.2])

    def test_fetch_plan_reports_undecodable_source(self):
        fetcher = _FakeFetcher({"archive-api": _daily_body("rain_sum_not_a_model", [0.0])})
        plan = [SourceWindow(WeatherDataSource.HISTORICAL_ARCHIVE, date(2026, 2, 1), date(2026, 2, 2))]
        service = PrecipitationService(fetcher=fetcher, max_workers=1)
        try:
            with self.assertLogs("power_user_weather.weather_data", level="ERROR"):
                results, errors = service.fetch_plan(plan, LOCATION, PrecipitationUnit.MILLIMETERS, "UTC")
        finally:
            service.close()
        self.assertEqual(results, [])
        self.assertIn("rain_sum_not_a_model", errors[WeatherDataSource.HISTORICAL_ARCHIVE])


if __name__ == "__main__":
    unittest.main()
