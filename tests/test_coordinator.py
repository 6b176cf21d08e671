from __future__ import annotations

import asyncio

import pytest

from conftest import T0, make_record
from route_forecast.errors import (
    Cancelled, EmptyTrack, InvalidParameter, MalformedTrack, PipelineExhausted, ProviderError
)
from route_forecast.pipeline.coordinator import PipelineCoordinator
from route_forecast.pipeline.models import RetryPolicy, Stage


class _Provider:
    def __init__(self) -> None:
        self.calls = 0

    async def fetch_batch(self, points):
        self.calls += 1
        return [make_record(p.timestamp, temperature=p.distance_km) for p in points]


class _FailingProvider:
    async def fetch_batch(self, points):
        raise ProviderError("HTTP 503", status_code=503)


class _BlockingProvider:
    """Blocks until cancelled, recording that it was entered and cancelled."""

    def __init__(self) -> None:
        self.entered = asyncio.Event()
        self.cancelled = False

    async def fetch_batch(self, points):
        self.entered.set()
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return [make_record() for _ in points]


def _coordinator(provider=None, updates=None) -> PipelineCoordinator:
    return PipelineCoordinator(
        provider,
        policy=RetryPolicy(max_retries=2, base_delay_ms=0),
        progress=updates.append if updates is not None else None,
    )


def test_successful_run_returns_aligned_result(three_point_gpx: str) -> None:
    updates = []
    coordinator = _coordinator(_Provider(), updates)

    result = asyncio.run(coordinator.run(three_point_gpx, 1, T0, 20))

    assert len(result.points) == 4
    assert len(result.weather) == 4
    assert result.available_count == 4
    assert [w.temperature_c for w in result.weather] == [p.distance_km for p in result.points]

    stages = [u.stage for u in updates]
    assert stages == [Stage.PARSING, Stage.SAMPLING, Stage.FETCHING, Stage.FETCHING, Stage.DONE]
    assert (updates[3].processed, updates[3].total) == (4, 4)
    assert updates[-1].processed == 4


def test_result_serializes_to_payload(three_point_gpx: str) -> None:
    result = asyncio.run(_coordinator(_Provider()).run(three_point_gpx, 1, T0, 20))

    payload = result.to_dict()

    assert payload["points"][0] == {"lat": 0, "lon": 0, "timestamp": int(T0.timestamp()), "distance": 0}
    assert payload["weather"][0]["temperature_c"] == 0
    assert len(payload["weather"]) == len(payload["points"])


@pytest.mark.parametrize("raw, interval, error, stage", [
    ("not a track", 1, MalformedTrack, "parsing"),
    ('{"points": []}', 1, EmptyTrack, "parsing"),
    ('[{"lat": 1, "lon": 1}]', 0, InvalidParameter, "sampling"),
])
def test_failure_carries_its_stage(raw: str, interval: float, error, stage: str) -> None:
    updates = []
    provider = _Provider()

    with pytest.raises(error) as excinfo:
        asyncio.run(_coordinator(provider, updates).run(raw, interval, T0, 20))

    assert excinfo.value.stage == stage
    assert excinfo.value.describe().startswith(f"{stage} failed:")
    assert updates[-1].stage == Stage.FAILED
    assert provider.calls == 0


def test_exhausted_fetch_fails_in_fetching_stage(three_point_gpx: str) -> None:
    with pytest.raises(PipelineExhausted) as excinfo:
        asyncio.run(_coordinator(_FailingProvider()).run(three_point_gpx, 1, T0, 20))

    assert excinfo.value.stage == "fetching"
    assert excinfo.value.results == [None] * 4


def test_partial_weather_is_still_a_result(three_point_gpx: str) -> None:
    class _HalfProvider:
        async def fetch_batch(self, points):
            return [make_record() if i % 2 == 0 else None for i in range(len(points))]

    result = asyncio.run(_coordinator(_HalfProvider()).run(three_point_gpx, 1, T0, 20))

    assert result.available_count == 2
    assert result.weather[1] is None


def test_cancel_event_stops_inflight_fetch(three_point_gpx: str) -> None:
    provider = _BlockingProvider()
    coordinator = _coordinator(provider)

    async def scenario():
        cancel_event = asyncio.Event()
        task = asyncio.ensure_future(coordinator.run(three_point_gpx, 1, T0, 20, cancel_event=cancel_event))
        await provider.entered.wait()
        cancel_event.set()
        return await task

    with pytest.raises(Cancelled, match="cancelled"):
        asyncio.run(scenario())

    assert provider.cancelled


def test_overall_timeout_cancels_run(three_point_gpx: str) -> None:
    provider = _BlockingProvider()

    with pytest.raises(Cancelled, match="timed out"):
        asyncio.run(_coordinator(provider).run(three_point_gpx, 1, T0, 20, timeout=0.05))

    assert provider.cancelled


def test_new_run_supersedes_active_run_for_same_route(three_point_gpx: str) -> None:
    blocking = _BlockingProvider()
    coordinator = _coordinator()

    async def scenario():
        first = asyncio.ensure_future(
            coordinator.run(three_point_gpx, 1, T0, 20, blocking, route_id="alps")
        )
        await blocking.entered.wait()
        second = await coordinator.run(three_point_gpx, 1, T0, 20, _Provider(), route_id="alps")
        with pytest.raises(Cancelled):
            await first
        return second

    result = asyncio.run(scenario())

    assert result.available_count == 4
    assert blocking.cancelled
    assert coordinator.cancel("alps") is False


def test_other_routes_are_not_superseded(three_point_gpx: str) -> None:
    blocking = _BlockingProvider()
    coordinator = _coordinator()

    async def scenario():
        first = asyncio.ensure_future(
            coordinator.run(three_point_gpx, 1, T0, 20, blocking, route_id="alps")
        )
        await blocking.entered.wait()
        await coordinator.run(three_point_gpx, 1, T0, 20, _Provider(), route_id="dolomites")
        assert not first.done()
        assert coordinator.cancel("alps") is True
        with pytest.raises(Cancelled):
            await first

    asyncio.run(scenario())


def test_run_without_provider() -> None:
    with pytest.raises(ValueError):
        asyncio.run(PipelineCoordinator().run("[]", 1, T0, 20))
