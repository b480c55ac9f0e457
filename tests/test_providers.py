import asyncio
import os
import sys

import pytest

from geotrack.core.errors import LocationUnavailable
from geotrack.schemas.location import LocationRequest, Priority
from geotrack.services.providers import (
    GpxReplayProvider,
    SimulatedLocationProvider,
    TermuxLocationProvider,
    build_provider,
    load_gpx_points,
)
from geotrack.utils.geo import haversine_m

GPX = """<?xml version="1.0" encoding="UTF-8"?>
<gpx version="1.1" creator="tests" xmlns="http://www.topografix.com/GPX/1/1">
  <trk><trkseg>
    <trkpt lat="0.0" lon="0.0"></trkpt>
    <trkpt lat="0.0" lon="0.00001"></trkpt>
    <trkpt lat="0.0" lon="0.001"></trkpt>
  </trkseg></trk>
</gpx>
"""


def _collect(provider, request, count):
    """Subscribe, gather `count` sink calls, then unsubscribe."""
    async def scenario():
        got = asyncio.Queue()
        sub = provider.subscribe(request, got.put_nowait)
        items = [await asyncio.wait_for(got.get(), timeout=2.0) for _ in range(count)]
        provider.unsubscribe(sub)
        await asyncio.gather(sub.task, return_exceptions=True)
        return items, sub
    return asyncio.run(scenario())


def test_simulated_walk_stays_within_step():
    provider = SimulatedLocationProvider(37.7749, -122.4194, step_m=10.0, seed=42)

    async def scenario():
        return [await provider.current_location() for _ in range(5)]

    fixes = asyncio.run(scenario())
    prev = (37.7749, -122.4194)
    for fix in fixes:
        assert haversine_m(prev[0], prev[1], fix.latitude, fix.longitude) <= 10.5
        assert fix.provider == "simulated"
        assert fix.accuracy_m == 5.0
        prev = (fix.latitude, fix.longitude)
    assert asyncio.run(provider.last_known()) == fixes[-1]


def test_simulated_seed_is_reproducible():
    async def walk(seed):
        provider = SimulatedLocationProvider(10.0, 10.0, seed=seed)
        return [(s.latitude, s.longitude) for s in [await provider.current_location() for _ in range(3)]]

    assert asyncio.run(walk(7)) == asyncio.run(walk(7))


def test_subscription_pushes_and_unsubscribe_cancels():
    provider = SimulatedLocationProvider(0.0, 0.0, step_m=50.0, seed=1)
    items, sub = _collect(provider, LocationRequest(interval_ms=1, min_distance_m=0), 3)
    assert len(items) == 3
    assert all(item is not None for item in items)
    assert not sub.active
    assert sub.task.done()
    assert provider.subscriptions == []


def test_min_distance_skips_small_moves():
    provider = GpxReplayProvider(load_gpx_points(GPX))
    items, _ = _collect(provider, LocationRequest(interval_ms=1, min_distance_m=5.0), 2)
    assert [(s.latitude, s.longitude) for s in items] == [(0.0, 0.0), (0.0, 0.001)]


def test_gpx_replay_loops():
    provider = GpxReplayProvider([(1.0, 1.0), (2.0, 2.0)])

    async def scenario():
        return [(await provider.current_location()).latitude for _ in range(3)]

    assert asyncio.run(scenario()) == [1.0, 2.0, 1.0]


def test_gpx_from_file(tmp_path):
    path = tmp_path / "track.gpx"
    path.write_text(GPX, encoding="utf-8")
    provider = GpxReplayProvider.from_file(str(path))
    assert len(provider.points) == 3


def test_gpx_without_points_is_rejected():
    empty = '<?xml version="1.0"?><gpx version="1.1" creator="tests" xmlns="http://www.topografix.com/GPX/1/1"></gpx>'
    with pytest.raises(ValueError):
        load_gpx_points(empty)
    with pytest.raises(ValueError):
        GpxReplayProvider([])


def test_termux_fix_parses_output(monkeypatch):
    provider = TermuxLocationProvider(timeout_s=20)
    calls = []

    async def fake_run(*args):
        calls.append(args)
        return '{"latitude": 37.4219983, "longitude": -122.084, "accuracy": 12.5, "provider": "gps"}'

    monkeypatch.setattr(provider, "_run", fake_run)
    fix = asyncio.run(provider.current_location(Priority.HIGH_ACCURACY))
    assert (fix.latitude, fix.longitude) == (37.4219983, -122.084)
    assert fix.accuracy_m == 12.5
    assert fix.provider == "termux:gps"
    assert calls == [("--provider", "gps", "--request", "once", "--timeout", "20")]


def test_termux_priority_maps_to_network(monkeypatch):
    provider = TermuxLocationProvider()
    calls = []

    async def fake_run(*args):
        calls.append(args)
        return '{"latitude": 1.0, "longitude": 2.0}'

    monkeypatch.setattr(provider, "_run", fake_run)
    asyncio.run(provider.current_location(Priority.BALANCED))
    assert calls[0][1] == "network"


@pytest.mark.parametrize("output", ["", "{}", "not json", '{"latitude": 123.0, "longitude": 0.0}'])
def test_termux_bad_output_is_unavailable(monkeypatch, output):
    provider = TermuxLocationProvider()

    async def fake_run(*args):
        return output

    monkeypatch.setattr(provider, "_run", fake_run)
    with pytest.raises(LocationUnavailable):
        asyncio.run(provider.current_location())


def test_termux_missing_executable():
    provider = TermuxLocationProvider(executable="/nonexistent/termux-location")
    with pytest.raises(LocationUnavailable):
        asyncio.run(provider.current_location())
    assert asyncio.run(provider.last_known()) is None


def test_unavailable_fix_reaches_sink_as_none():
    provider = TermuxLocationProvider(executable="/nonexistent/termux-location")
    items, _ = _collect(provider, LocationRequest(interval_ms=1), 2)
    assert items == [None, None]


def test_build_provider(make_settings, tmp_path):
    assert isinstance(build_provider(make_settings()), SimulatedLocationProvider)
    assert isinstance(build_provider(make_settings(location_provider="termux")), TermuxLocationProvider)

    with pytest.raises(ValueError):
        build_provider(make_settings(location_provider="gpx"))

    path = tmp_path / "track.gpx"
    path.write_text(GPX, encoding="utf-8")
    assert isinstance(build_provider(make_settings(location_provider="gpx", gpx_path=str(path))), GpxReplayProvider)


def test_out_of_range_track_point_is_unavailable():
    """A bad GPX point reaches the sink as None and polling carries on."""
    provider = GpxReplayProvider([(95.0, 0.0), (10.0, 20.0)])
    items, sub = _collect(provider, LocationRequest(interval_ms=1, min_distance_m=0), 2)
    assert items[0] is None
    assert (items[1].latitude, items[1].longitude) == (10.0, 20.0)
    assert sub.task.cancelled()


def test_unexpected_error_does_not_end_polling():
    class FlakyProvider(SimulatedLocationProvider):
        calls = 0

        async def _fix(self, priority):
            self.calls += 1
            if self.calls == 1:
                raise RuntimeError("sensor glitch")
            return await super()._fix(priority)

    provider = FlakyProvider(0.0, 0.0, seed=3)
    items, _ = _collect(provider, LocationRequest(interval_ms=1, min_distance_m=0), 2)
    assert items[0] is None
    assert items[1] is not None


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
def test_unsubscribe_kills_running_termux_location(tmp_path):
    pidfile = tmp_path / "pid"
    stub = tmp_path / "termux-location"
    stub.write_text(f'#!/bin/sh\necho $$ > "{pidfile}"\nexec sleep 30\n', encoding="utf-8")
    stub.chmod(0o755)
    provider = TermuxLocationProvider(executable=str(stub))

    async def scenario():
        sub = provider.subscribe(LocationRequest(interval_ms=1), lambda sample: None)
        for _ in range(500):
            if pidfile.exists() and pidfile.read_text().strip():
                break
            await asyncio.sleep(0.01)
        pid = int(pidfile.read_text())
        provider.unsubscribe(sub)
        await asyncio.gather(sub.task, return_exceptions=True)
        return pid

    pid = asyncio.run(scenario())
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)
