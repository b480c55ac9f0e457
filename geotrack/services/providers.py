# geotrack/services/providers.py
import asyncio
import contextlib
import json
import logging
import random
from typing import Callable, List, Optional, Tuple

import gpxpy
from pydantic import ValidationError

from ..core.config import Settings
from ..core.errors import LocationUnavailable
from ..schemas.location import LocationRequest, LocationSample, Priority
from ..utils.geo import haversine_m, offset_point

log = logging.getLogger(__name__)

Sink = Callable[[Optional[LocationSample]], None]


class Subscription:
    def __init__(self, request: LocationRequest, sink: Sink):
        self.request = request
        self.sink = sink
        self.task: Optional[asyncio.Task] = None
        self.active = True

    def cancel(self) -> None:
        self.active = False
        if self.task is not None and not self.task.done():
            self.task.cancel()


class LocationProvider:
    """
    Base for polling providers. Subclasses implement `_fix()`; the base class runs one
    polling task per subscription that pushes fixes (or None when no fix could be taken)
    into the subscriber's sink.
    """

    name = "base"

    def __init__(self):
        self._last: Optional[LocationSample] = None
        self.subscriptions: List[Subscription] = []

    async def _fix(self, priority: Priority) -> LocationSample:
        raise NotImplementedError

    async def current_location(self, priority: Priority = Priority.HIGH_ACCURACY) -> LocationSample:
        sample = await self._fix(priority)
        self._last = sample
        return sample

    async def last_known(self) -> Optional[LocationSample]:
        return self._last

    def subscribe(self, request: LocationRequest, sink: Sink) -> Subscription:
        sub = Subscription(request, sink)
        sub.task = asyncio.create_task(self._poll(sub), name=f"{self.name}-poll")
        self.subscriptions.append(sub)
        log.info(
            "Subscribed to %s updates every %dms, min distance %sm, priority %s",
            self.name, request.interval_ms, request.min_distance_m, request.priority.value,
        )
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        sub.cancel()
        if sub in self.subscriptions:
            self.subscriptions.remove(sub)
            log.info("Unsubscribed from %s updates", self.name)

    async def _poll(self, sub: Subscription) -> None:
        emitted: Optional[LocationSample] = None
        while sub.active:
            try:
                sample = await self.current_location(sub.request.priority)
            except LocationUnavailable as e:
                log.debug("No fix from %s: %s", self.name, e)
                sub.sink(None)
            except Exception:
                log.exception("Unexpected error polling %s", self.name)
                sub.sink(None)
            else:
                moved = None if emitted is None else haversine_m(
                    emitted.latitude, emitted.longitude, sample.latitude, sample.longitude
                )
                if moved is None or moved >= sub.request.min_distance_m:
                    emitted = sample
                    sub.sink(sample)
                else:
                    log.debug("Skipping fix %.1fm from the previous one", moved)
            await asyncio.sleep(sub.request.interval_s)


# -------- simulated --------
_SIM_ACCURACY_M = {
    Priority.HIGH_ACCURACY: 5.0,
    Priority.BALANCED: 40.0,
    Priority.LOW_POWER: 500.0,
    Priority.PASSIVE: 100.0,
}


class SimulatedLocationProvider(LocationProvider):
    """Random walk of at most `step_m` meters per fix from a start point."""

    name = "simulated"

    def __init__(self, start_lat: float, start_lon: float, step_m: float = 10.0, seed: Optional[int] = None):
        super().__init__()
        self._lat = start_lat
        self._lon = start_lon
        self.step_m = step_m
        self._rnd = random.Random(seed)

    async def _fix(self, priority: Priority) -> LocationSample:
        bearing = self._rnd.uniform(0.0, 360.0)
        distance = self._rnd.uniform(0.0, self.step_m)
        self._lat, self._lon = offset_point(self._lat, self._lon, distance, bearing)
        return LocationSample(
            latitude=round(self._lat, 6),
            longitude=round(self._lon, 6),
            provider=self.name,
            accuracy_m=_SIM_ACCURACY_M[priority],
        )


# -------- termux --------
# termux-location only knows these three sources
_TERMUX_SOURCES = {
    Priority.HIGH_ACCURACY: "gps",
    Priority.BALANCED: "network",
    Priority.LOW_POWER: "network",
    Priority.PASSIVE: "passive",
}


class TermuxLocationProvider(LocationProvider):
    """
    Fixes from an Android phone running Termux with the termux-api add-on
    (`pkg install termux-api`). Each fix runs:
        termux-location --provider gps --request once --timeout 20
    """

    name = "termux"

    def __init__(self, timeout_s: int = 20, executable: str = "termux-location"):
        super().__init__()
        self.timeout_s = timeout_s
        self.executable = executable

    async def _run(self, *args: str) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.executable, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise LocationUnavailable(f"cannot run {self.executable}: {e}") from e

        try:
            out, err = await asyncio.wait_for(proc.communicate(), self.timeout_s + 5)
        except asyncio.TimeoutError as e:
            raise LocationUnavailable(f"{self.executable} timed out") from e
        finally:
            # also reached when unsubscribe cancels the polling task
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()

        if proc.returncode != 0:
            raise LocationUnavailable(
                f"{self.executable} exited with {proc.returncode}: {err.decode(errors='replace').strip()}"
            )
        return out.decode(errors="replace")

    def _parse(self, out: str, source: str) -> LocationSample:
        try:
            j = json.loads(out)
            return LocationSample(
                latitude=float(j["latitude"]),
                longitude=float(j["longitude"]),
                accuracy_m=j.get("accuracy"),
                provider=f"{self.name}:{j.get('provider') or source}",
            )
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            raise LocationUnavailable(f"unreadable termux-location output: {out[:120]!r}") from e

    async def _fix(self, priority: Priority) -> LocationSample:
        source = _TERMUX_SOURCES[priority]
        out = await self._run("--provider", source, "--request", "once", "--timeout", str(self.timeout_s))
        return self._parse(out, source)

    async def last_known(self) -> Optional[LocationSample]:
        if self._last is not None:
            return self._last
        try:
            out = await self._run("--provider", "passive", "--request", "last")
            self._last = self._parse(out, "passive")
        except LocationUnavailable as e:
            log.debug("No last known location: %s", e)
        return self._last


# -------- gpx replay --------
def load_gpx_points(text: str) -> List[Tuple[float, float]]:
    gpx = gpxpy.parse(text)
    points = [
        (p.latitude, p.longitude)
        for track in gpx.tracks
        for segment in track.segments
        for p in segment.points
    ]
    if not points:
        points = [(p.latitude, p.longitude) for route in gpx.routes for p in route.points]
    if not points:
        raise ValueError("No track or route points found in GPX data.")
    return points


class GpxReplayProvider(LocationProvider):
    """Replays the points of a GPX track one per fix, looping at the end."""

    name = "gpx"

    def __init__(self, points: List[Tuple[float, float]]):
        super().__init__()
        if not points:
            raise ValueError("No points to replay.")
        self.points = points
        self._idx = 0

    @classmethod
    def from_file(cls, path: str) -> "GpxReplayProvider":
        with open(path, "r", encoding="utf-8") as handle:
            return cls(load_gpx_points(handle.read()))

    async def _fix(self, priority: Priority) -> LocationSample:
        lat, lon = self.points[self._idx % len(self.points)]
        self._idx += 1
        try:
            return LocationSample(latitude=lat, longitude=lon, provider=self.name)
        except ValidationError as e:
            raise LocationUnavailable(f"track point {lat},{lon} is out of range") from e


def build_provider(settings: Settings) -> LocationProvider:
    if settings.location_provider == "termux":
        return TermuxLocationProvider(timeout_s=settings.termux_timeout_s)
    if settings.location_provider == "gpx":
        if not settings.gpx_path:
            raise ValueError("GPX_PATH is required when LOCATION_PROVIDER=gpx")
        return GpxReplayProvider.from_file(settings.gpx_path)
    return SimulatedLocationProvider(
        settings.sim_start_lat,
        settings.sim_start_lon,
        step_m=settings.sim_step_m,
        seed=settings.sim_seed,
    )
