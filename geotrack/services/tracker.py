# geotrack/services/tracker.py
import asyncio
import contextlib
import logging
from typing import Callable, List, Optional

from ..core.config import Settings
from ..core.errors import NetworkFailure, PermissionDenied
from ..schemas.location import LocationRequest, LocationSample, Priority
from ..schemas.tracking import Capability, TrackingState, TrackingStatus
from ..utils.time import utc_now
from .forwarder import LocationForwarder, build_forwarder
from .permissions import PermissionGate, build_gate
from .providers import LocationProvider, Subscription, build_provider

log = logging.getLogger(__name__)

Listener = Callable[[TrackingState], None]


class LocationTracker:
    """
    Stopped/Tracking state machine on top of a location provider.

    The provider pushes samples into a bounded queue (oldest dropped when full) and a single
    drain task applies them to the state and forwards them, so a slow endpoint never holds
    up acquisition. `state` is the only place results are published; renderers read it or
    register a listener.
    """

    def __init__(
        self,
        provider: LocationProvider,
        gate: PermissionGate,
        request: Optional[LocationRequest] = None,
        forwarder: Optional[LocationForwarder] = None,
        queue_maxsize: int = 16,
    ):
        self.provider = provider
        self.gate = gate
        self.request = request or LocationRequest()
        self.forwarder = forwarder
        self.queue_maxsize = queue_maxsize
        self.state = TrackingState()
        self._listeners: List[Listener] = []
        self._subscription: Optional[Subscription] = None
        self._queue: Optional[asyncio.Queue] = None
        self._drain_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._closed = False

    # -------- state --------
    @property
    def tracking(self) -> bool:
        return self.state.status is TrackingStatus.TRACKING

    def snapshot(self) -> TrackingState:
        return self.state.model_copy()

    def add_listener(self, fn: Listener) -> None:
        self._listeners.append(fn)

    def remove_listener(self, fn: Listener) -> None:
        if fn in self._listeners:
            self._listeners.remove(fn)

    def _update(self, **changes) -> None:
        self.state = self.state.model_copy(update=changes)
        snap = self.snapshot()
        for fn in list(self._listeners):
            try:
                fn(snap)
            except Exception:
                log.exception("State listener %r failed", fn)

    # -------- transitions --------
    async def start(self) -> TrackingState:
        async with self._lock:
            if self.tracking or self._closed:
                return self.snapshot()

        # the prompt can take as long as the user wants, so it is awaited outside the lock
        if not await self.gate.ensure_permission(Capability.FINE_LOCATION):
            err = PermissionDenied(Capability.FINE_LOCATION.value)
            log.warning("Not starting: %s", err.message)
            self._update(message=err.message)
            raise err

        async with self._lock:
            if self.tracking:
                return self.snapshot()
            if self._closed:
                log.info("Permission answered after shutdown, not subscribing")
                return self.snapshot()

            self._queue = asyncio.Queue(maxsize=self.queue_maxsize)
            self._drain_task = asyncio.create_task(self._drain(self._queue), name="tracker-drain")
            self._subscription = self.provider.subscribe(self.request, self._offer)
            self._update(status=TrackingStatus.TRACKING, message=None, started_at=utc_now())
            log.info("Tracking started")
            return self.snapshot()

    async def stop(self) -> TrackingState:
        async with self._lock:
            if not self.tracking:
                return self.snapshot()

            sub, self._subscription = self._subscription, None
            if sub is not None:
                self.provider.unsubscribe(sub)

            self._queue = None
            task, self._drain_task = self._drain_task, None
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

            self._update(status=TrackingStatus.STOPPED, started_at=None)
            log.info("Tracking stopped")
            return self.snapshot()

    async def aclose(self) -> None:
        self._closed = True
        await self.stop()
        if self.forwarder is not None:
            await self.forwarder.aclose()

    async def __aenter__(self) -> "LocationTracker":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    # -------- samples --------
    def _offer(self, sample: Optional[LocationSample]) -> None:
        queue = self._queue
        if sample is None or queue is None:
            return
        if queue.full():
            dropped = queue.get_nowait()
            queue.task_done()
            log.debug("Queue full, dropping sample from %s", dropped.received_at)
        queue.put_nowait(sample)

    async def _drain(self, queue: asyncio.Queue) -> None:
        while True:
            sample = await queue.get()
            try:
                await self._handle(sample, queue)
            except Exception:
                log.exception("Failed to handle sample %s", sample.display_text())
            finally:
                queue.task_done()

    async def _handle(self, sample: LocationSample, queue: asyncio.Queue) -> None:
        if self._queue is not queue:
            return
        self._update(
            last_sample=sample,
            display_text=sample.display_text(),
            samples_received=self.state.samples_received + 1,
        )
        if self.forwarder is None:
            return
        try:
            await self.forwarder.send(sample)
        except NetworkFailure as e:
            # dropped, no retry queue beyond the forwarder's own attempts
            log.warning("Dropping sample: %s", e)
            self._update(forward_failures=self.state.forward_failures + 1)
        except Exception:
            log.exception("Unexpected error forwarding sample, dropping it")
            self._update(forward_failures=self.state.forward_failures + 1)
        else:
            self._update(samples_forwarded=self.state.samples_forwarded + 1)

    async def flush(self) -> None:
        """Wait until every queued sample has been handled."""
        if self._queue is not None:
            await self._queue.join()

    async def last_known(self) -> Optional[LocationSample]:
        return await self.provider.last_known()


def build_tracker(settings: Settings, provider: Optional[LocationProvider] = None) -> LocationTracker:
    request = LocationRequest(
        interval_ms=settings.update_interval_ms,
        min_distance_m=settings.min_distance_m,
        priority=Priority(settings.location_priority),
    )
    return LocationTracker(
        provider or build_provider(settings),
        build_gate(settings),
        request=request,
        forwarder=build_forwarder(settings),
        queue_maxsize=settings.queue_maxsize,
    )
