"""
Index Reconciliation

Pushes the local record set to the remote search index and keeps the index
settings in sync.

Two strategies are available (``indexing_mode``):

- ``diff``: compare objectIDs, delete what disappeared, upload what is new.
  Unchanged records are never re-uploaded.
- ``atomic``: rebuild everything in ``<index>_tmp`` then move it over the
  live index in one step. Readers never see a half-updated index.

Key Properties
--------------
- Remote failures are caught once, classified, and re-raised as the most
  specific ``IndexingError``; nothing is retried here
- Dry-run mode never calls a remote write operation
- Settings are only written when their fingerprint changed
- No remote state is cached between runs
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from contextlib import asynccontextmanager
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Set

import yaml

from .. import __version__
from ..config import Settings
from ..core.error_handler import identify
from ..core.errors import CredentialError, NoRecordsFoundError, RemoteTransportError
from ..search.client import SearchClient, SearchIndex
from ..utils import canonical_json, chunked, diff_keys

logger = logging.getLogger("sitesearch.indexer")

Record = Dict[str, Any]
SyncStrategy = Callable[[List[Record]], Awaitable[None]]

SETTINGS_METADATA_KEY = "userData"
SETTINGS_ID_KEY = "settingID"
TMP_INDEX_SUFFIX = "_tmp"

# Keys returned by the settings endpoint that cannot be written back
READ_ONLY_SETTINGS = ("version", "primary")


@dataclass(frozen=True)
class ReconciliationPlan:
    """
    What a diff run has to change remotely. Computed once, then discarded.
    """

    to_add: List[Record] = field(default_factory=list)
    to_delete: List[str] = field(default_factory=list)

    @classmethod
    def compute(cls, records: Sequence[Record], remote_ids: Sequence[str]) -> "ReconciliationPlan":
        remote = set(remote_ids)
        local = {record.get("objectID") for record in records} - {None}

        new_ids = local - remote
        to_add: Dict[str, Record] = {}
        for record in records:
            object_id = record.get("objectID")
            # Identical content yields identical ids; upload it once
            if object_id in new_ids and object_id not in to_add:
                to_add[object_id] = record

        return cls(to_add=list(to_add.values()), to_delete=sorted(remote - local))

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_delete


class Indexer:
    """
    Synchronization protocol against one remote index.

    Usage::

        async with Indexer(config) as indexer:
            await indexer.run(records)
    """

    def __init__(
        self,
        config: Settings,
        client: Optional[SearchClient] = None,
    ) -> None:
        """
        Parameters
        ----------
        config : Settings
            Indexer configuration.

        client : Optional[SearchClient]
            Pre-built client. When omitted, ``init()`` creates one from the
            configured credentials and the indexer owns it.
        """
        self.config = config
        self._client = client
        self._owns_client = False

    async def __aenter__(self) -> "Indexer":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            self._owns_client = False

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def init(self) -> None:
        """
        Check credentials and create the remote client.

        Raises
        ------
        CredentialError
            If the application id, index name or API key is missing.
        """
        api_key = self.config.resolved_api_key()
        checks = (
            ("application_id", self.config.application_id),
            ("index_name", self.config.index_name),
            ("api_key", api_key),
        )
        for name, value in checks:
            if not value:
                raise CredentialError(f"Missing {name}", missing=name)

        if self._client is None:
            self._client = SearchClient(self.config.application_id, api_key)
            self._owns_client = True

    @property
    def client(self) -> SearchClient:
        if self._client is None:
            self.init()
        return self._client

    @property
    def index_name(self) -> str:
        return self.config.index_name

    @property
    def tmp_index_name(self) -> str:
        return f"{self.config.index_name}{TMP_INDEX_SUFFIX}"

    def index(self, name: str) -> SearchIndex:
        return self.client.init_index(name)

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run

    @asynccontextmanager
    async def _remote(self, **context: Any) -> AsyncIterator[None]:
        """
        Error boundary around remote calls.

        ``context`` tells the classifier what was being sent (``records``,
        ``settings``) so the diagnostic can point at the culprit.
        """
        try:
            yield
        except RemoteTransportError as exc:
            identified = identify(
                exc,
                {"max_record_size": self.config.max_record_size, **context},
            )
            if identified is exc:
                raise
            raise identified from exc

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def update_records(
        self,
        index_name: str,
        records: Sequence[Record],
    ) -> List[Optional[int]]:
        """
        Upload records in batches of ``indexing_batch_size``.

        At most ``indexing_concurrency`` batches are in flight. Once a batch
        fails no new batch is started; in-flight ones are allowed to finish
        and the first failure is raised.

        Returns
        -------
        List[Optional[int]]
            Remote task ids of the uploaded batches.
        """
        batches = chunked(list(records), self.config.indexing_batch_size)
        if not batches:
            return []

        logger.info(
            "Uploading %d records to %s (%d batches)",
            len(records),
            index_name,
            len(batches),
        )

        if self.dry_run:
            for number, batch in enumerate(batches, start=1):
                logger.info("[dry run] Batch %d/%d: %d records", number, len(batches), len(batch))
            return []

        index = self.index(index_name)

        async def _send(batch: List[Record]) -> Optional[int]:
            async with self._remote(records=batch):
                return await index.upsert_objects(batch)

        return await self._run_batches(batches, _send)

    async def _run_batches(
        self,
        batches: List[List[Record]],
        send: Callable[[List[Record]], Awaitable[Optional[int]]],
    ) -> List[Optional[int]]:
        limit = self.config.indexing_concurrency
        pending: Set[asyncio.Task] = set()
        started: List[asyncio.Task] = []

        for number, batch in enumerate(batches, start=1):
            if len(pending) >= limit:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                if any(task.exception() is not None for task in done):
                    break
            logger.debug("Sending batch %d/%d", number, len(batches))
            task = asyncio.create_task(send(batch))
            started.append(task)
            pending.add(task)

        if pending:
            await asyncio.wait(pending)

        # Read every exception so none is reported as never retrieved
        failures = [task.exception() for task in started if task.exception() is not None]
        if failures:
            for extra in failures[1:]:
                logger.debug("Another batch failed as well: %r", extra)
            raise failures[0]

        return [task.result() for task in started]

    async def delete_records_by_id(self, index_name: str, ids: Sequence[str]) -> Optional[int]:
        """Delete records in one remote call. No-op for an empty list."""
        if not ids:
            return None

        logger.info("Deleting %d records from %s", len(ids), index_name)
        if self.dry_run:
            return None

        async with self._remote():
            return await self.index(index_name).delete_objects(list(ids))

    async def index_exists(self, index_name: str) -> bool:
        async with self._remote():
            return await self.index(index_name).exists()

    async def remote_object_ids(self, index_name: str) -> List[str]:
        """
        Every objectID of the remote index, sorted. A missing index has none.
        """
        logger.debug("Inspecting existing records in index %s", index_name)
        ids: List[str] = []
        async with self._remote():
            async for object_id in self.index(index_name).browse_object_ids():
                ids.append(object_id)
        return sorted(ids)

    @staticmethod
    def local_object_ids(records: Sequence[Record]) -> List[str]:
        return sorted(
            record["objectID"]
            for record in records
            if record.get("objectID") is not None
        )

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def local_setting_id(self) -> str:
        """
        Fingerprint of the locally configured settings.

        The metadata key is excluded, so the fingerprint never depends on a
        previous fingerprint.
        """
        settings = deepcopy(self.config.index_settings)
        settings.pop(SETTINGS_METADATA_KEY, None)
        return hashlib.md5(canonical_json(settings).encode("utf-8")).hexdigest()

    def settings_with_id(self, settings: Dict[str, Any]) -> Dict[str, Any]:
        """Return ``settings`` with the fingerprint and version stored in them."""
        stamped = deepcopy(settings)
        metadata = dict(stamped.get(SETTINGS_METADATA_KEY) or {})
        metadata[SETTINGS_ID_KEY] = self.local_setting_id()
        metadata["pluginVersion"] = __version__
        stamped[SETTINGS_METADATA_KEY] = metadata
        return stamped

    async def remote_settings(self, index_name: str) -> Optional[Dict[str, Any]]:
        """Remote settings of the index, ``None`` when it does not exist."""
        async with self._remote():
            return await self.index(index_name).get_settings()

    async def set_settings(self, index_name: str, settings: Dict[str, Any]) -> Optional[int]:
        if self.dry_run:
            logger.info("[dry run] Skipping settings update of %s", index_name)
            return None

        async with self._remote(settings=settings):
            return await self.index(index_name).set_settings(settings)

    async def update_settings(self, index_name: str) -> Optional[int]:
        """
        Push local settings only when their fingerprint changed.

        The fingerprint of the last pushed settings lives in the index
        settings themselves (``userData.settingID``). When it matches but the
        remote values of keys we manage differ, someone edited them by hand:
        warn instead of silently reverting them.
        """
        local_settings = self.config.index_settings
        if not local_settings:
            logger.debug("Index settings are not managed, leaving them untouched")
            return None

        remote = await self.remote_settings(index_name)
        remote_id = ((remote or {}).get(SETTINGS_METADATA_KEY) or {}).get(SETTINGS_ID_KEY)

        if self.config.force_settings or remote is None or remote_id != self.local_setting_id():
            logger.info("Updating settings of index %s", index_name)
            return await self.set_settings(index_name, self.settings_with_id(local_settings))

        managed = {
            key: value
            for key, value in local_settings.items()
            if key != SETTINGS_METADATA_KEY
        }
        changed = diff_keys(managed, remote)
        if changed:
            self.warn_of_manual_dashboard_editing(changed, index_name)
        else:
            logger.info("Settings of index %s are already up to date", index_name)
        return None

    def warn_of_manual_dashboard_editing(self, changed: Dict[str, Any], index_name: str) -> None:
        rendered = yaml.safe_dump(changed, default_flow_style=False, sort_keys=False)
        logger.warning("Settings of index %s were edited outside of this tool:", index_name)
        for line in rendered.splitlines():
            logger.warning("    %s", line)
        logger.warning(
            "They were left untouched. Copy them into the `settings:` section "
            "of your configuration to keep them, or run with --force-settings "
            "to overwrite them."
        )

    def merged_settings(self, remote: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Remote settings as a base, overridden by the local ones.
        """
        base = {
            key: value
            for key, value in deepcopy(remote or {}).items()
            if key not in READ_ONLY_SETTINGS
        }
        local_settings = self.config.index_settings
        if not local_settings:
            return base

        base.pop(SETTINGS_METADATA_KEY, None)
        base.update(deepcopy(local_settings))
        return self.settings_with_id(base)

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def run_diff_mode(self, records: List[Record]) -> None:
        """
        Delete remote records missing locally, upload local records missing
        remotely, then sync settings.
        """
        index_name = self.index_name
        if await self.index_exists(index_name):
            remote_ids = await self.remote_object_ids(index_name)
        else:
            logger.info("Index %s does not exist yet, every record is new", index_name)
            remote_ids = []
        plan = ReconciliationPlan.compute(records, remote_ids)

        if plan.is_empty:
            logger.info("Nothing to index. Your content is already up to date.")
        else:
            logger.info("Updating records in index %s...", index_name)
            logger.info("Records to delete: %d", len(plan.to_delete))
            logger.info("Records to add:    %d", len(plan.to_add))
            await self.delete_records_by_id(index_name, plan.to_delete)
            await self.update_records(index_name, plan.to_add)

        await self.update_settings(index_name)

    async def run_atomic_mode(self, records: List[Record]) -> None:
        """
        Rebuild the whole index in a temporary index, then swap it in.

        Every write to the temporary index is awaited until published before
        the move, so the move publishes a complete index.
        """
        index_name = self.index_name
        tmp_name = self.tmp_index_name

        remote = await self.remote_settings(index_name)
        settings = self.merged_settings(remote)

        logger.info("Rebuilding index %s through %s", index_name, tmp_name)
        if self.dry_run:
            await self.update_records(tmp_name, records)
            logger.info("[dry run] Skipping settings and move of %s to %s", tmp_name, index_name)
            return

        tmp_index = self.index(tmp_name)

        async with self._remote():
            await tmp_index.wait_task(await tmp_index.delete_index())

        task_ids = await self.update_records(tmp_name, records)

        if settings:
            task_ids.append(await self.set_settings(tmp_name, settings))

        async with self._remote():
            for task_id in task_ids:
                await tmp_index.wait_task(task_id)

            logger.info("Moving %s to %s", tmp_name, index_name)
            task_id = await self.client.move_index(tmp_name, index_name)
            await self.index(index_name).wait_task(task_id)

    def strategy(self, mode: Optional[str] = None) -> SyncStrategy:
        strategies: Dict[str, SyncStrategy] = {
            "diff": self.run_diff_mode,
            "atomic": self.run_atomic_mode,
        }
        return strategies.get(mode or self.config.indexing_mode, self.run_diff_mode)

    async def run(self, records: List[Record]) -> None:
        """
        Push all records and configure the index.

        Raises
        ------
        NoRecordsFoundError
            If ``records`` is empty; indexing zero records is always a
            misconfiguration.
        """
        if not records:
            raise NoRecordsFoundError(
                self.config.resolved_files_to_exclude,
                self.config.nodes_to_index,
            )

        if self._client is None:
            self.init()

        if self.dry_run:
            logger.warning("==== THIS IS A DRY RUN ====")
            logger.warning("  - No records will be pushed to your index")
            logger.warning("  - No settings will be updated on your index")

        await self.strategy()(records)
        logger.info("Indexing complete")
