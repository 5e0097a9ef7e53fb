"""
Installation Registry - the one map from installation key to running engine.

Adds and removes for the same key are serialized by a per-key lock, so two
engines never coexist for one installation. Different keys never wait on
each other.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Set, Union

from review_reminder.core.metrics import installations_active
from review_reminder.schemas.installation import Installation
from review_reminder.services.engine import InstallationEngine

logger = logging.getLogger(__name__)

EngineFactory = Callable[[Installation], InstallationEngine]

# GitHub webhook "event.action" names mapped onto the names handled below
EVENT_ALIASES = {
    "organization.member_added": "member.added",
    "organization.member_removed": "member.removed",
}


def _pushed_paths(payload: Dict[str, Any]) -> Optional[Set[str]]:
    commits = payload.get("commits")
    if not commits:
        return None

    paths: Set[str] = set()
    for commit in commits:
        for key in ("added", "modified", "removed"):
            paths.update(commit.get(key) or [])
    return paths


class InstallationRegistry:
    """Creates, routes to and destroys installation engines."""

    def __init__(self, engine_factory: EngineFactory):
        self.engine_factory = engine_factory
        self._engines: Dict[str, InstallationEngine] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._engines)

    def __contains__(self, key: str) -> bool:
        return key.lower() in self._engines

    @property
    def engines(self) -> List[InstallationEngine]:
        return list(self._engines.values())

    @asynccontextmanager
    async def _lock(self, key: str) -> AsyncIterator[None]:
        """Hold the key's lock; it is dropped once nobody holds or awaits it."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    def _update_gauge(self) -> None:
        installations_active.set(len(self._engines))

    @staticmethod
    def _key_of(installation: Union[Installation, str]) -> str:
        if isinstance(installation, Installation):
            return installation.key
        return installation.lower()

    # ==================== Registration ====================

    async def add_installation(self, installation: Installation) -> InstallationEngine:
        """Start an engine for the installation unless one is already running."""
        key = installation.key
        async with self._lock(key):
            existing = self._engines.get(key)
            if existing is not None:
                logger.debug(f'Installation "{key}" already registered')
                return existing

            engine = self.engine_factory(installation)
            try:
                await engine.start()
            except Exception:
                engine.teardown()
                await engine.close()
                raise

            self._engines[key] = engine
            self._update_gauge()
            logger.info(f'Registered installation "{key}" ({installation.target_type.value})')
            return engine

    async def remove_installation(self, installation: Union[Installation, str]) -> bool:
        """Tear down and evict the installation's engine. Unknown keys are a no-op."""
        key = self._key_of(installation)
        async with self._lock(key):
            engine = self._engines.pop(key, None)
            if engine is None:
                return False

            engine.teardown()
            self._update_gauge()

        await engine.close()
        logger.info(f'Removed installation "{key}"')
        return True

    def route(self, key: str) -> Optional[InstallationEngine]:
        return self._engines.get(key.lower())

    async def bootstrap(self, installations: Iterable[Dict[str, Any]]) -> int:
        """Register every installation of the app concurrently."""
        parsed = [Installation.from_payload(payload) for payload in installations]
        results = await asyncio.gather(
            *(self.add_installation(installation) for installation in parsed),
            return_exceptions=True,
        )

        for installation, result in zip(parsed, results):
            if isinstance(result, Exception):
                logger.error(f'Could not start installation "{installation.key}": {result}', exc_info=result)
        return len(self._engines)

    # ==================== Events ====================

    async def handle_event(self, name: str, payload: Dict[str, Any]) -> Any:
        """
        Map an inbound event onto registry and engine operations.

        Supported: installation.created, installation.deleted, member.added,
        member.removed, push. Plain webhook names are combined with the
        payload's action.
        """
        if "." not in name and payload.get("action"):
            name = f"{name}.{payload['action']}"
        name = EVENT_ALIASES.get(name, name)

        if name == "installation.created":
            return await self.add_installation(Installation.from_payload(payload["installation"]))
        if name == "installation.deleted":
            return await self.remove_installation(Installation.from_payload(payload["installation"]))

        if name in ("member.added", "member.removed"):
            owner = (payload.get("organization") or payload["installation"]["account"])["login"]
            engine = self.route(owner)
            if engine is None:
                logger.warning(f'Ignoring {name} for unknown installation "{owner}"')
                return None
            member = payload.get("member") or payload["membership"]["user"]
            if name == "member.added":
                return await engine.on_member_added(member)
            return engine.on_member_removed(member["login"])

        if name.startswith("push"):
            repository = payload["repository"]
            engine = self.route(repository["owner"]["login"])
            if engine is None:
                return False
            return await engine.on_push(repository["name"], _pushed_paths(payload))

        logger.debug(f"Ignoring unhandled event {name}")
        return None

    # ==================== Maintenance ====================

    async def check_local_offset(self) -> int:
        """Rebuild triggers of every engine whose local offset changed; returns how many did.

        Must stay a coroutine: APScheduler runs plain functions in a worker thread.
        """
        return sum(1 for engine in self.engines if engine.users.check_local_offset())

    async def shutdown(self) -> None:
        """Flush pending config writes, then tear every engine down."""
        logger.info(f"Shutting down {len(self._engines)} installation(s)")
        for engine in self.engines:
            try:
                await engine.flush()
            except Exception as e:
                logger.error(f'Flushing config of "{engine.key}" failed: {e}', exc_info=True)

        for key in list(self._engines):
            await self.remove_installation(key)
