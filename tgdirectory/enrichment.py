"""Similar-channel discovery and enrichment of missing channel fields."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Set, Tuple

from .config import Settings, configure_logging
from .errors import ChannelNotFoundError, EnrichmentError, StoreError, TransportError
from .models import ENRICHABLE_FIELDS, ChannelRecord, ChatInfo, RawCandidate
from .services.classifier import Classifier, build_classifier, validate_label
from .services.reconcile import reconcile
from .services.util import build_channel_text, chunked, rate_limited_sleep
from .store import ChannelStore
from .telegram import TelegramClient, normalize_usernames

logger = logging.getLogger(__name__)


class ChannelSource(Protocol):
    async def get_chat(self, username: str) -> ChatInfo: ...

    async def get_similar(self, channel_ids: Iterable[int]) -> List[RawCandidate]: ...


@dataclass
class EnrichmentReport:
    """Counters for a single orchestrator run."""

    total: int = 0
    processed: int = 0
    completed: int = 0
    partial: int = 0
    rejected: int = 0
    lookup_failures: int = 0
    classifier_failures: int = 0
    store_failures: int = 0
    started_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None

    def record(self, record: ChannelRecord) -> None:
        self.processed += 1
        if record.is_complete:
            self.completed += 1
        else:
            self.partial += 1

    def finish(self) -> None:
        self.finished_at = time.monotonic()

    def summary(self) -> Dict[str, Any]:
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return {
            "total": self.total,
            "processed": self.processed,
            "completed": self.completed,
            "partial": self.partial,
            "rejected": self.rejected,
            "lookupFailures": self.lookup_failures,
            "classifierFailures": self.classifier_failures,
            "storeFailures": self.store_failures,
            "durationSeconds": round(end - self.started_at, 2),
        }


class EnrichmentOrchestrator:
    """Fills missing description, category and geo on channel records.

    Items are split into chunks. Chunks are handed to a fixed number of
    workers; each worker walks its chunk sequentially with a pause between
    items, so at most ``workers`` items talk to external services at once.
    Every item is written back as soon as it has been processed.
    """

    def __init__(
        self,
        store: ChannelStore,
        source: ChannelSource,
        classifier: Classifier,
        *,
        categories: Sequence[str] = (),
        geos: Sequence[str] = (),
        chunk_size: int = 15,
        workers: int = 3,
        item_delay: float = 1.0,
    ) -> None:
        if chunk_size <= 0 or workers <= 0:
            raise ValueError("chunk_size and workers must be positive")
        self.store = store
        self.source = source
        self.classifier = classifier
        self.categories = list(categories)
        self.geos = list(geos)
        self.chunk_size = chunk_size
        self.workers = workers
        self.item_delay = item_delay

    async def run(
        self,
        items: Sequence[ChannelRecord],
        *,
        looked_up: Iterable[str] = (),
    ) -> Tuple[List[ChannelRecord], EnrichmentReport]:
        report = EnrichmentReport(total=len(items))
        skip_lookup = set(looked_up)
        results: List[ChannelRecord] = []
        if not items:
            report.finish()
            return results, report

        queue: "asyncio.Queue[List[ChannelRecord]]" = asyncio.Queue()
        for chunk in chunked(list(items), self.chunk_size):
            queue.put_nowait(chunk)
        worker_count = min(self.workers, queue.qsize())
        logger.info(
            "Enriching %d channels in %d chunks with %d workers",
            len(items),
            queue.qsize(),
            worker_count,
        )

        async def worker(worker_id: int) -> None:
            while True:
                try:
                    chunk = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    results.extend(
                        await self._process_chunk(worker_id, chunk, report, skip_lookup)
                    )
                finally:
                    queue.task_done()

        await asyncio.gather(*(worker(index) for index in range(worker_count)))
        report.finish()
        logger.info("Enrichment finished: %s", report.summary())
        return results, report

    async def _process_chunk(
        self,
        worker_id: int,
        chunk: List[ChannelRecord],
        report: EnrichmentReport,
        skip_lookup: Set[str],
    ) -> List[ChannelRecord]:
        logger.debug("Worker %d picked up a chunk of %d channels", worker_id, len(chunk))
        processed: List[ChannelRecord] = []
        for index, item in enumerate(chunk):
            if index:
                await rate_limited_sleep(self.item_delay)
            try:
                record = await self.enrich(
                    item, report, lookup=item.username not in skip_lookup
                )
            except Exception as exc:  # Catch-all safety net
                logger.exception("Unexpected error enriching '%s': %s", item.username, exc)
                record = item
                report.record(record)
            processed.append(record)
        return processed

    async def enrich(
        self,
        item: ChannelRecord,
        report: Optional[EnrichmentReport] = None,
        *,
        lookup: bool = True,
        refresh: bool = False,
    ) -> ChannelRecord:
        """Resolve missing fields of ``item`` and write it back.

        With ``refresh`` the chat lookup always runs and replaces the title
        and description with the current profile values.
        """

        report = report if report is not None else EnrichmentReport(total=1)
        record = item.copy()

        if refresh or (lookup and (not record.description or not record.id)):
            await self._resolve_description(record, report, refresh=refresh)

        text = build_channel_text(record.title, record.description)
        for name, candidates in (("category", self.categories), ("geo", self.geos)):
            if getattr(record, name):
                continue
            label = await self._classify(record, name, text, candidates, report)
            if label:
                setattr(record, name, label)

        try:
            record = await self.store.upsert(record)
        except StoreError as exc:
            report.store_failures += 1
            logger.warning("Could not store channel '%s': %s", record.username, exc)

        report.record(record)
        return record

    async def _resolve_description(
        self, record: ChannelRecord, report: EnrichmentReport, *, refresh: bool
    ) -> None:
        try:
            info = await self.source.get_chat(record.username)
        except TransportError as exc:
            report.lookup_failures += 1
            logger.warning("Chat lookup failed for '%s': %s", record.username, exc)
            return
        if not record.id and info.id:
            record.id = info.id
            stored = await self.store.get_by_id(info.id)
            if stored is not None:
                # The channel is already known under its id; keep what it has.
                for name in ENRICHABLE_FIELDS:
                    if not getattr(record, name) and getattr(stored, name):
                        setattr(record, name, getattr(stored, name))
        if info.title and (refresh or not record.title):
            record.title = info.title
        # An empty description means the channel has none, not a failed lookup.
        if info.description and (refresh or not record.description):
            record.description = info.description

    async def _classify(
        self,
        record: ChannelRecord,
        name: str,
        text: str,
        candidates: Sequence[str],
        report: EnrichmentReport,
    ) -> Optional[str]:
        if not self.classifier.enabled or not candidates:
            return None
        if not text:
            logger.debug("No text to classify %s for '%s'", name, record.username)
            return None
        try:
            raw = await self.classifier.classify(text, candidates, kind=name)
            label = validate_label(name, raw, candidates)
        except EnrichmentError as exc:
            report.classifier_failures += 1
            logger.warning("Could not classify %s for '%s': %s", name, record.username, exc)
            return None
        logger.info("Classified %s of '%s' as '%s'", name, record.username, label)
        return label


class EnrichmentManager:
    """Entry points used by the HTTP layer."""

    def __init__(
        self,
        store: ChannelStore,
        source: ChannelSource,
        classifier: Classifier,
        settings: Settings,
    ) -> None:
        self.store = store
        self.source = source
        self.settings = settings
        self.orchestrator = EnrichmentOrchestrator(
            store,
            source,
            classifier,
            categories=settings.categories,
            geos=settings.geos,
            chunk_size=settings.chunk_size,
            workers=settings.workers,
            item_delay=settings.item_delay,
        )
        self.last_report: Optional[EnrichmentReport] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "EnrichmentManager":
        configure_logging(settings.log_level)
        store = ChannelStore.from_url(settings.database_url)
        source = TelegramClient(
            bot_token=settings.bot_token,
            ads_hash=settings.ads_hash,
            stel_ssid=settings.stel_ssid,
            stel_token=settings.stel_token,
            timeout=settings.http_timeout,
        )
        return cls(store, source, build_classifier(settings), settings)

    async def aclose(self) -> None:
        closer = getattr(self.source, "aclose", None)
        if closer is not None:
            await closer()

    async def enrich_similar_channels(self, seed_usernames: Iterable[str]) -> List[ChannelRecord]:
        """Discover channels similar to the seeds and complete their fields.

        Returns the seeds and the discovered channels in no particular order,
        including records that could only be partially completed.
        """

        seeds, looked_up = await self._resolve_seeds(normalize_usernames(seed_usernames))
        seed_ids = [seed.id for seed in seeds if seed.id]

        candidates: List[RawCandidate] = []
        if seed_ids:
            try:
                candidates = await self.source.get_similar(seed_ids)
            except TransportError as exc:
                logger.warning("Similar-channel lookup failed: %s", exc)

        existing_by_id = await self.store.get_many(candidate.id for candidate in candidates)
        existing_by_username: Dict[str, ChannelRecord] = {}
        for candidate in candidates:
            if candidate.id in existing_by_id or not candidate.username:
                continue
            record = await self.store.get_by_username(candidate.username)
            if record is not None:
                existing_by_username[candidate.username] = record

        reconciled = reconcile(
            candidates,
            existing_by_id,
            existing_by_username,
            skip_ids=seed_ids,
            skip_usernames=[seed.username for seed in seeds],
        )
        for record in reconciled.refreshed:
            try:
                await self.store.upsert(record)
            except StoreError as exc:
                logger.warning("Could not refresh channel '%s': %s", record.username, exc)

        done = [seed for seed in seeds if seed.is_complete] + reconciled.done
        work = [seed for seed in seeds if not seed.is_complete] + reconciled.incomplete
        enriched, report = await self.orchestrator.run(work, looked_up=looked_up)
        report.rejected = len(reconciled.rejected)
        self.last_report = report
        return done + enriched

    async def _resolve_seeds(self, usernames: List[str]) -> Tuple[List[ChannelRecord], Set[str]]:
        seeds: List[ChannelRecord] = []
        looked_up: Set[str] = set()
        for username in usernames:
            record = await self.store.get_by_username(username)
            if record is None:
                try:
                    info = await self.source.get_chat(username)
                except TransportError as exc:
                    logger.warning("Skipping seed '%s': %s", username, exc)
                    continue
                looked_up.add(username)
                record = await self.store.get_by_id(info.id)
                if record is None:
                    record = ChannelRecord(id=info.id, username=info.username or username)
                record.username = info.username or username
                looked_up.add(record.username)
                record.title = info.title or record.title
                if info.description and not record.description:
                    record.description = info.description
                try:
                    record = await self.store.upsert(record)
                except StoreError as exc:
                    logger.warning("Could not store seed '%s': %s", username, exc)
            if all(seed.username != record.username for seed in seeds):
                seeds.append(record)
        return seeds, looked_up

    async def refresh_one(self, channel_id: int) -> ChannelRecord:
        record = await self.store.get_by_id(channel_id)
        if record is None:
            raise ChannelNotFoundError(channel_id)
        report = EnrichmentReport(total=1)
        refreshed = await self.orchestrator.enrich(record, report, refresh=True)
        report.finish()
        self.last_report = report
        return refreshed

    async def list_channels(
        self, category: Optional[str] = None, geo: Optional[str] = None
    ) -> List[ChannelRecord]:
        return await self.store.filter(category, geo)

    async def set_category(self, channel_id: int, category: str) -> ChannelRecord:
        return await self._set_label(channel_id, "category", category, self.settings.categories)

    async def set_geo(self, channel_id: int, geo: str) -> ChannelRecord:
        return await self._set_label(channel_id, "geo", geo, self.settings.geos)

    async def _set_label(
        self, channel_id: int, name: str, value: str, candidates: Sequence[str]
    ) -> ChannelRecord:
        label = validate_label(name, value, candidates)
        record = await self.store.get_by_id(channel_id)
        if record is None:
            raise ChannelNotFoundError(channel_id)
        setattr(record, name, label)
        return await self.store.upsert(record)
