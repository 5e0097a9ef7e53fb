"""
Config Store - per-installation settings document with optimistic concurrency.

The document lives in the installation's settings repository and is the
single source of truth for report times, staleness threshold, ignore rules,
default timezone and the cached user records.

Contract:
- load() never fails; unreadable documents fall back to built-in defaults
- every mutation goes into an in-memory document AND a pending-mutation buffer
- writes are debounced: merges within the quiescence window coalesce into one
- a write carries the last-known revision token; a rejected token drops the
  write for this cycle, and the next cycle re-reads the document and replays
  the pending mutations on top of it before writing
"""

import asyncio
import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml
from pydantic import ValidationError

from review_reminder.core.decorators import ExternalErrorHandler
from review_reminder.core.exceptions import (
    ConfigNotLoadedError,
    DocumentNotFoundError,
    RevisionConflictError,
)
from review_reminder.core.metrics import track_config_write
from review_reminder.schemas.document import DocumentLocation
from review_reminder.schemas.installation import Installation
from review_reminder.schemas.report_config import ReportConfig, default_document
from review_reminder.services.interfaces import DocumentStore

logger = logging.getLogger(__name__)

READ_FAILURES = ExternalErrorHandler.TRANSIENT_EXCEPTIONS + (
    yaml.YAMLError,
    ValidationError,
    ValueError,
)


@dataclass
class Mutation:
    """A merge (or deletion) not yet confirmed by a successful write."""

    path: Tuple[str, ...]
    data: Dict[str, Any]
    delete: bool = False


class ConfigStore:
    """Loads, merges and persists one installation's settings document."""

    def __init__(
        self,
        installation: Installation,
        store: DocumentStore,
        repo: str,
        path: str,
        write_delay: float,
        dry_run: bool = False,
        commit_message: str = "meta: Update config",
    ):
        self.installation = installation
        self.store = store
        self.location = DocumentLocation(owner=installation.account_login, repo=repo, path=path)
        self.write_delay = write_delay
        self.dry_run = dry_run
        self.commit_message = commit_message

        self._data: Optional[Dict[str, Any]] = None
        self._original: Optional[Dict[str, Any]] = None
        self._revision: Optional[str] = None
        self._snapshot: Optional[ReportConfig] = None
        self._pending: List[Mutation] = []
        self._conflicted = False
        self._timer: Optional[asyncio.Task] = None
        self._write_lock = asyncio.Lock()

    # ==================== State ====================

    @property
    def loaded(self) -> bool:
        return self._data is not None

    @property
    def revision(self) -> Optional[str]:
        """Revision token of the last successful read or write."""
        return self._revision

    @property
    def dirty(self) -> bool:
        """Whether the in-memory document differs from what was last persisted."""
        return self.loaded and self._data != self._original

    @property
    def write_pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def _require_loaded(self) -> None:
        if self._data is None:
            raise ConfigNotLoadedError(f"Config for {self.location} not loaded")

    def get(self) -> ReportConfig:
        """Immutable, typed snapshot of the current in-memory document."""
        self._require_loaded()
        if self._snapshot is None:
            self._snapshot = ReportConfig.model_validate(copy.deepcopy(self._data))
        return self._snapshot

    def raw(self) -> Dict[str, Any]:
        """Deep copy of the raw document, including keys the model ignores."""
        self._require_loaded()
        return copy.deepcopy(self._data)

    # ==================== Loading ====================

    @staticmethod
    def _parse(content: str) -> Dict[str, Any]:
        raw = yaml.safe_load(content) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Expected a mapping at the document root, got {type(raw).__name__}")

        data = {**default_document(), **raw}
        if isinstance(data.get("users"), dict):
            data["users"] = {str(login).lower(): record for login, record in data["users"].items()}
        # Validate now so a broken document degrades at load time, not at use
        ReportConfig.model_validate(data)
        return data

    async def _read(self) -> Tuple[Dict[str, Any], Optional[str]]:
        stored = await self.store.read_document(self.location)
        return self._parse(stored.content), stored.revision

    def _install(self, data: Dict[str, Any], revision: Optional[str]) -> None:
        """Adopt a freshly read document and replay unpersisted mutations on top."""
        self._revision = revision
        self._original = copy.deepcopy(data)
        self._data = data
        for mutation in self._pending:
            self._apply(mutation)
        self._snapshot = None
        self._conflicted = False

    async def load(self) -> "ConfigStore":
        """Fetch the document; fall back to defaults (without revision) on any read failure."""
        logger.info(f"Loading config from {self.location}")

        try:
            data, revision = await self._read()
        except DocumentNotFoundError:
            logger.warning(f"No config at {self.location}, using defaults")
            data, revision = default_document(), None
        except READ_FAILURES as e:
            logger.error(f"Could not read {self.location}, using defaults: {type(e).__name__}: {e}")
            data, revision = default_document(), None

        self._install(data, revision)
        return self

    async def reload_if_changed(self, repo: str, paths: Optional[Iterable[str]] = None) -> bool:
        """
        Reload after an external change to the backing location.

        Args:
            repo: Repository the change happened in
            paths: Files touched by the change, when known

        Returns:
            True if the reloaded document differs from the previous in-memory state
        """
        self._require_loaded()

        if repo.lower() != self.location.repo.lower():
            return False
        if paths is not None and self.location.path not in set(paths):
            return False

        logger.info(f"Config at {self.location} changed upstream, reloading")
        before = copy.deepcopy(self._data)

        try:
            data, revision = await self._read()
        except READ_FAILURES as e:
            logger.error(f"Could not reload {self.location}, keeping current config: {e}")
            return False

        self._install(data, revision)
        return self._data != before

    # ==================== Mutation ====================

    def _apply(self, mutation: Mutation) -> None:
        if not mutation.path:
            self._data.update(copy.deepcopy(mutation.data))
            return

        parent = self._data
        for key in mutation.path[:-1]:
            if not isinstance(parent.get(key), dict):
                parent[key] = {}
            parent = parent[key]

        leaf = mutation.path[-1]
        if mutation.delete:
            parent.pop(leaf, None)
        else:
            parent[leaf] = {**(parent.get(leaf) or {}), **copy.deepcopy(mutation.data)}

    def _mutate(self, mutation: Mutation) -> "ConfigStore":
        self._require_loaded()
        self._apply(mutation)
        self._pending.append(mutation)
        self._snapshot = None
        return self.save()

    def merge(self, data: Dict[str, Any]) -> "ConfigStore":
        """Shallow-merge top-level keys into the document and schedule a write."""
        self._require_loaded()
        logger.debug(f"Merging keys {{{','.join(data)}}} into config")
        return self._mutate(Mutation(path=(), data=dict(data)))

    def merge_in(self, path: Iterable[str], data: Dict[str, Any]) -> "ConfigStore":
        """Shallow-merge keys into the mapping at `path` and schedule a write."""
        self._require_loaded()
        path = tuple(path)
        if not path:
            return self.merge(data)

        logger.debug(f"Merging keys {{{','.join(data)}}} into config.{'.'.join(path)}")
        return self._mutate(Mutation(path=path, data=dict(data)))

    def merge_user(self, login: str, data: Dict[str, Any]) -> "ConfigStore":
        return self.merge_in(("users", login.lower()), data)

    def remove_user(self, login: str) -> "ConfigStore":
        self._require_loaded()
        login = login.lower()
        if login not in (self._data.get("users") or {}):
            return self

        logger.debug(f"Removing config.users.{login}")
        return self._mutate(Mutation(path=("users", login), data={}, delete=True))

    # ==================== Persistence ====================

    def save(self) -> "ConfigStore":
        """Schedule a debounced write, or skip it entirely in dry run."""
        self._require_loaded()

        if self.dry_run:
            logger.debug("Config write skipped due to dry run")
            return self

        self.schedule_write()
        return self

    def schedule_write(self) -> None:
        """(Re)start the quiescence window; the write happens when it elapses."""
        self._require_loaded()

        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.create_task(self._write_after_window())

    async def _write_after_window(self) -> None:
        try:
            await asyncio.sleep(self.write_delay)
        except asyncio.CancelledError:
            # Superseded by a newer mutation or cancelled on teardown
            return

        # From here on a new mutation must start a fresh window, not cancel this write
        if self._timer is asyncio.current_task():
            self._timer = None

        try:
            await self.write()
        except Exception as e:
            logger.error(f"Debounced write of {self.location} failed: {e}", exc_info=True)

    async def _refresh_after_conflict(self) -> bool:
        try:
            data, revision = await self._read()
        except DocumentNotFoundError:
            data, revision = default_document(), None
        except READ_FAILURES as e:
            logger.error(f"Could not re-read {self.location} after a conflict: {e}")
            return False

        logger.info(f"Re-read {self.location} at revision {revision}, replaying {len(self._pending)} change(s)")
        self._install(data, revision)
        return True

    async def write(self) -> bool:
        """
        Persist the document with the held revision token.

        Only one physical write runs at a time. Returns True if a write
        happened; conflicts and failures are logged and return False.
        """
        self._require_loaded()

        async with self._write_lock:
            if self._conflicted and not await self._refresh_after_conflict():
                track_config_write("failed")
                return False

            if not self.dirty:
                logger.debug("Skipping config write as it is unchanged")
                self._pending.clear()
                track_config_write("skipped")
                return False

            logger.info(f"Persisting config to {self.location}")
            written = copy.deepcopy(self._data)
            persisted = len(self._pending)
            content = yaml.safe_dump(written, sort_keys=True, allow_unicode=True)

            try:
                revision = await self.store.write_document(
                    self.location, content, self._revision, message=self.commit_message
                )
            except RevisionConflictError:
                logger.warning(
                    f"Config at {self.location} changed since revision {self._revision}; "
                    f"dropping this write, it will be retried on the next change"
                )
                self._conflicted = True
                track_config_write("conflict")
                return False
            except ExternalErrorHandler.TRANSIENT_EXCEPTIONS as e:
                logger.error(f"Could not write to {self.location}: {type(e).__name__}: {e}")
                track_config_write("failed")
                return False

            self._revision = revision
            self._original = written
            del self._pending[:persisted]
            track_config_write("written")
            return True

    async def flush(self) -> bool:
        """Write pending changes immediately (used on shutdown)."""
        self._require_loaded()
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

        if self.dry_run:
            return False
        return await self.write()

    def cancel_pending_write(self) -> None:
        """Drop a scheduled write without performing it (installation removed)."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
