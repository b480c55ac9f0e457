# geotrack/services/permissions.py
import asyncio
import logging
from typing import Dict, List, Optional, Protocol

from ..core.config import Settings
from ..schemas.tracking import Capability, PermissionStatus

log = logging.getLogger(__name__)


class Prompter(Protocol):
    async def request(self, capability: Capability) -> bool: ...


class StaticPrompter:
    """Answers every prompt with the same decision (headless runs, tests)."""

    def __init__(self, granted: bool):
        self.granted = granted
        self.prompts = 0

    async def request(self, capability: Capability) -> bool:
        self.prompts += 1
        return self.granted


class PendingPrompter:
    """
    Keeps one open prompt per capability until somebody answers it through `resolve()`.

    Concurrent requests for the same capability wait on the same prompt. A prompt left
    unanswered for `timeout_s` seconds is answered as denied.
    """

    def __init__(self, timeout_s: Optional[float] = None):
        self.timeout_s = timeout_s
        self._pending: Dict[Capability, asyncio.Future] = {}

    def pending(self) -> List[Capability]:
        return [cap for cap, fut in self._pending.items() if not fut.done()]

    def resolve(self, capability: Capability, granted: bool) -> bool:
        fut = self._pending.get(Capability(capability))
        if fut is None or fut.done():
            return False
        fut.set_result(granted)
        return True

    async def request(self, capability: Capability) -> bool:
        fut = self._pending.get(capability)
        if fut is None or fut.done():
            fut = asyncio.get_running_loop().create_future()
            self._pending[capability] = fut
            log.info("Waiting for user decision on %s", capability.value)

        try:
            return await asyncio.wait_for(asyncio.shield(fut), self.timeout_s)
        except asyncio.TimeoutError:
            log.warning("No decision on %s after %ss, treating as denied", capability.value, self.timeout_s)
            if not fut.done():
                fut.set_result(False)
            return False
        finally:
            if fut.done() and self._pending.get(capability) is fut:
                del self._pending[capability]


class PermissionGate:
    def __init__(self, prompter: Prompter):
        self.prompter = prompter
        self._grants: Dict[Capability, PermissionStatus] = {}

    def status(self, capability: Capability) -> PermissionStatus:
        return self._grants.get(Capability(capability), PermissionStatus.UNDETERMINED)

    def statuses(self) -> Dict[str, str]:
        return {cap.value: self.status(cap).value for cap in Capability}

    def revoke(self, capability: Capability) -> None:
        self._grants[Capability(capability)] = PermissionStatus.DENIED

    async def ensure_permission(self, capability: Capability) -> bool:
        capability = Capability(capability)
        if self.status(capability) is PermissionStatus.GRANTED:
            return True

        granted = bool(await self.prompter.request(capability))
        self._grants[capability] = PermissionStatus.GRANTED if granted else PermissionStatus.DENIED
        log.info("Permission %s %s", capability.value, "granted" if granted else "denied")
        return granted


def build_gate(settings: Settings) -> PermissionGate:
    if settings.permission_mode == "grant":
        return PermissionGate(StaticPrompter(True))
    if settings.permission_mode == "deny":
        return PermissionGate(StaticPrompter(False))
    return PermissionGate(PendingPrompter(settings.permission_prompt_timeout_s))
