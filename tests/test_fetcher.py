from __future__ import annotations

import asyncio
import math
from dataclasses import replace

import pytest

from conftest import make_points, make_record
from route_forecast.errors import (
    FetchTimeoutError, InvalidParameter, PipelineExhausted, ProviderError, ValidationError
)
from route_forecast.pipeline.fetcher import WeatherFetchOrchestrator, fetch_all
from route_forecast.pipeline.models import RetryPolicy


class _FlakyProvider:
    """Fails the first ``failures`` calls of each kind, then succeeds."""

    def __init__(self, failures: int = 0, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or ProviderError("HTTP 503: upstream down", status_code=503)
        self.batch_calls = 0
        self.point_calls = 0
        self.batch_sizes: list[int] = []

    async def fetch_batch(self, points):
        self.batch_calls += 1
        self.batch_sizes.append(len(points))
        if self.batch_calls <= self.failures:
            raise self.error
        return [make_record(p.timestamp, temperature=p.distance_km) for p in points]

    async def fetch_point(self, point):
        self.point_calls += 1
        if self.point_calls <= self.failures:
            raise self.error
        return make_record(point.timestamp, temperature=point.distance_km)


class _ShortBatchProvider:
    def __init__(self) -> None:
        self.calls = 0

    async def fetch_batch(self, points):
        self.calls += 1
        return [make_record() for _ in points[:-1]]


class _SelectivePointProvider:
    """Point provider that always fails for the given distances."""

    def __init__(self, failing: set[float]) -> None:
        self.failing = failing
        self.calls: dict[float, int] = {}

    async def fetch_point(self, point):
        self.calls[point.distance_km] = self.calls.get(point.distance_km, 0) + 1
        if point.distance_km in self.failing:
            raise ProviderError("HTTP 500", status_code=500)
        return make_record(point.timestamp, temperature=point.distance_km)


class _SlowProvider:
    async def fetch_batch(self, points):
        await asyncio.sleep(1)
        return [make_record() for _ in points]


class _BrokenReporter:
    def report(self, error, context):
        raise RuntimeError("monitoring backend down")


def _policy(**overrides) -> RetryPolicy:
    return replace(RetryPolicy(max_retries=3, base_delay_ms=1000), **overrides)


@pytest.mark.parametrize("failures", [0, 1, 2])
def test_recovers_after_fewer_failures_than_retries(failures: int, sleeper, reporter) -> None:
    provider = _FlakyProvider(failures=failures)
    orchestrator = WeatherFetchOrchestrator(provider, _policy(), reporter=reporter, sleep=sleeper)

    results = asyncio.run(orchestrator.fetch_all(make_points(4)))

    assert all(r is not None for r in results)
    assert [r.temperature_c for r in results] == [0, 1, 2, 3]
    assert provider.batch_calls == failures + 1
    assert len(reporter.reports) == failures


def test_backoff_grows_linearly(sleeper) -> None:
    provider = _FlakyProvider(failures=2)
    orchestrator = WeatherFetchOrchestrator(provider, _policy(base_delay_ms=500), sleep=sleeper)

    asyncio.run(orchestrator.fetch_all(make_points(2)))

    assert sleeper.delays == [0.5, 1.0]


def test_always_failing_provider_exhausts(sleeper, reporter) -> None:
    provider = _FlakyProvider(failures=100)
    orchestrator = WeatherFetchOrchestrator(provider, _policy(), reporter=reporter, sleep=sleeper)

    with pytest.raises(PipelineExhausted) as excinfo:
        asyncio.run(orchestrator.fetch_all(make_points(3)))

    assert excinfo.value.results == [None, None, None]
    assert provider.batch_calls == 3
    assert sleeper.delays == [1.0, 2.0]
    assert len(reporter.reports) == 3


def test_reports_carry_diagnostic_context(sleeper, reporter) -> None:
    provider = _FlakyProvider(failures=1)
    orchestrator = WeatherFetchOrchestrator(provider, _policy(), reporter=reporter, sleep=sleeper)

    asyncio.run(orchestrator.fetch_all(make_points(2)))

    error, context = reporter.reports[0]
    assert isinstance(error, ProviderError)
    assert context["attempt"] == 1
    assert context["max_retries"] == 3
    assert context["mode"] == "batch"
    assert len(context["coordinates"]) == 2
    assert context["coordinates"][0] == (45.0, 7.0)


def test_empty_points_fail_before_any_call() -> None:
    provider = _FlakyProvider()

    with pytest.raises(ValidationError):
        asyncio.run(fetch_all([], provider))

    assert provider.batch_calls == 0
    assert provider.point_calls == 0


@pytest.mark.parametrize("mutate", [
    lambda p: {"lat": p.lat, "lon": p.lon},
    lambda p: replace(p, distance_km=math.nan),
    lambda p: replace(p, distance_km="1"),
    lambda p: replace(p, timestamp=1714550400),
])
def test_structurally_invalid_point_fails_before_any_call(mutate) -> None:
    provider = _FlakyProvider()
    points = make_points(3)
    points[1] = mutate(points[1])

    with pytest.raises(ValidationError):
        asyncio.run(fetch_all(points, provider))

    assert provider.batch_calls == 0


def test_length_mismatch_is_a_validation_failure(sleeper, reporter) -> None:
    provider = _ShortBatchProvider()
    orchestrator = WeatherFetchOrchestrator(provider, _policy(), reporter=reporter, sleep=sleeper)

    with pytest.raises(PipelineExhausted):
        asyncio.run(orchestrator.fetch_all(make_points(3)))

    assert provider.calls == 3
    assert all(isinstance(error, ValidationError) for error, _ in reporter.reports)


def test_point_mode_keeps_alignment_on_partial_failure(sleeper) -> None:
    provider = _SelectivePointProvider(failing={1.0, 3.0})
    orchestrator = WeatherFetchOrchestrator(provider, _policy(), mode="point", sleep=sleeper)

    results = asyncio.run(orchestrator.fetch_all(make_points(5)))

    assert [r.temperature_c if r is not None else None for r in results] == [0, None, 2, None, 4]
    assert provider.calls[1.0] == 3
    assert provider.calls[0.0] == 1


def test_batch_entries_may_be_null() -> None:
    class _PartialBatch:
        async def fetch_batch(self, points):
            return [None, make_record(), None]

    results = asyncio.run(fetch_all(make_points(3), _PartialBatch()))

    assert results[0] is None
    assert results[1] is not None
    assert results[2] is None


def test_batches_are_split_by_batch_size(sleeper) -> None:
    provider = _FlakyProvider()
    orchestrator = WeatherFetchOrchestrator(provider, _policy(), batch_size=2, sleep=sleeper)

    results = asyncio.run(orchestrator.fetch_all(make_points(5)))

    assert sorted(provider.batch_sizes) == [1, 2, 2]
    assert [r.temperature_c for r in results] == [0, 1, 2, 3, 4]


def test_attempt_timeout_is_retried_then_exhausted(sleeper, reporter) -> None:
    orchestrator = WeatherFetchOrchestrator(
        _SlowProvider(), _policy(batch_timeout_s=0.01), reporter=reporter, sleep=sleeper
    )

    with pytest.raises(PipelineExhausted):
        asyncio.run(orchestrator.fetch_all(make_points(2)))

    assert len(reporter.reports) == 3
    assert all(isinstance(error, FetchTimeoutError) for error, _ in reporter.reports)


def test_concurrent_units_keep_input_order_and_worker_bound() -> None:
    state = {"active": 0, "peak": 0}

    class _Provider:
        async def fetch_point(self, point):
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
            # Later points finish first
            await asyncio.sleep(0.001 * (10 - point.distance_km))
            state["active"] -= 1
            return make_record(point.timestamp, temperature=point.distance_km)

    orchestrator = WeatherFetchOrchestrator(_Provider(), mode="point", max_workers=3)

    results = asyncio.run(orchestrator.fetch_all(make_points(10)))

    assert [r.temperature_c for r in results] == list(range(10))
    assert state["peak"] == 3


def test_reporter_failure_does_not_affect_results(sleeper) -> None:
    provider = _FlakyProvider(failures=1)
    orchestrator = WeatherFetchOrchestrator(provider, _policy(), reporter=_BrokenReporter(), sleep=sleeper)

    results = asyncio.run(orchestrator.fetch_all(make_points(2)))

    assert all(r is not None for r in results)


def test_progress_reports_resolved_points(sleeper) -> None:
    updates = []
    orchestrator = WeatherFetchOrchestrator(_FlakyProvider(), _policy(), mode="point", sleep=sleeper)

    asyncio.run(orchestrator.fetch_all(make_points(3), on_progress=lambda done, total: updates.append((done, total))))

    assert updates == [(1, 3), (2, 3), (3, 3)]


def test_unsupported_mode_or_provider() -> None:
    class _PointOnly:
        async def fetch_point(self, point):
            return make_record()

    with pytest.raises(InvalidParameter):
        WeatherFetchOrchestrator(_PointOnly(), mode="batch")
    with pytest.raises(InvalidParameter):
        WeatherFetchOrchestrator(_PointOnly(), mode="stream")
    with pytest.raises(InvalidParameter):
        WeatherFetchOrchestrator(_PointOnly(), mode="point", max_workers=0)


@pytest.mark.parametrize("overrides", [
    {"max_retries": 0},
    {"max_retries": -2},
    {"base_delay_ms": -1},
    {"batch_timeout_s": 0},
    {"point_timeout_s": -5},
])
def test_retry_policy_rejects_unusable_settings(overrides: dict) -> None:
    with pytest.raises(InvalidParameter):
        RetryPolicy(**overrides)


def test_retry_policy_minimum_budget_calls_provider_once(sleeper) -> None:
    provider = _FlakyProvider(failures=1)
    orchestrator = WeatherFetchOrchestrator(provider, _policy(max_retries=1), sleep=sleeper)

    with pytest.raises(PipelineExhausted):
        asyncio.run(orchestrator.fetch_all(make_points(2)))

    assert provider.batch_calls == 1
    assert sleeper.delays == []
