import queue
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import tzinfo
from typing import Callable, Dict, Iterator, List, Optional, Set

from .. import config
from ..database.cache import PersistentAssetCache
from ..detection.issues import detect_issues
from ..exceptions import AssetReadError
from ..grouping.engine import DuplicateGroupingEngine, duplicate_issues
from ..library.source import AssetSource
from ..models import (
    AssetMetadata,
    AssetSignature,
    IssueType,
    PhotoIssue,
    ScanOptions,
    ScanResult,
    ScanStatus,
    SignedAsset,
)
from .events import (
    Cancelled,
    CancellationToken,
    Completed,
    DuplicateGroupFound,
    Failed,
    IssueFound,
    Progress,
    ScanPhase,
    ScanUpdate,
    SummaryUpdated,
)
from .hasher import SignatureComputer


@dataclass
class _WorkItem:
    metadata: AssetMetadata
    signature: Optional[AssetSignature] = None  # reused from the cache
    needs_hash: bool = True

    @property
    def asset_id(self) -> str:
        return self.metadata.asset_id


class ScanOrchestrator:
    """
    Runs scan passes over a library.

    `scan()` is one pass as a generator: the consumer pulls updates and the
    pass only advances while being pulled. `start_scan()` runs a pass on its
    own thread and hands back a `ScanSession` to iterate.
    """

    def __init__(self,
                 source: AssetSource,
                 cache: PersistentAssetCache,
                 computer: Optional[SignatureComputer] = None,
                 max_workers: int = config.MAX_HASH_WORKERS,
                 progress_stride: int = config.PROGRESS_STRIDE,
                 progress_interval: float = config.PROGRESS_MIN_INTERVAL,
                 tz: Optional[tzinfo] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.source = source
        self.cache = cache
        self.computer = computer or SignatureComputer()
        self.max_workers = max(1, max_workers)
        self.progress_stride = max(1, progress_stride)
        self.progress_interval = progress_interval
        self.tz = tz
        self.clock = clock

        self._session: Optional["ScanSession"] = None
        self._session_lock = threading.Lock()

    def scan(self, options: Optional[ScanOptions] = None,
             token: Optional[CancellationToken] = None) -> Iterator[ScanUpdate]:
        """One pass in the caller's thread. A background pass still running is cancelled and awaited first."""
        self.shutdown()
        return self._run(options, token)

    def _run(self, options: Optional[ScanOptions],
             token: Optional[CancellationToken]) -> Iterator[ScanUpdate]:
        token = token or CancellationToken()
        scan_pass = _ScanPass(self, options or ScanOptions(), token)
        try:
            yield from scan_pass.run()
        except GeneratorExit:
            # Consumer went away mid-pass
            token.cancel()
            raise
        except Exception as e:
            logging.error(f"Scan failed: {e}", exc_info=True)
            yield Failed(e, str(e))
        finally:
            scan_pass.shutdown()

    def start_scan(self, options: Optional[ScanOptions] = None) -> "ScanSession":
        """Cancels any running pass, then starts a new one on a background thread."""
        with self._session_lock:
            if self._session is not None:
                logging.info("Cancelling previous scan before starting a new one.")
                self._session.close()
            token = CancellationToken()
            session = ScanSession(self._run(options, token), token)
            session.start()
            self._session = session
            return session

    def cancel_scan(self):
        with self._session_lock:
            if self._session is not None:
                self._session.cancel()

    def shutdown(self):
        """Cancels the background pass, if any, and waits for its thread."""
        with self._session_lock:
            if self._session is not None:
                self._session.close()
                self._session = None


class _ScanPass:
    """State of one pass. Only the thread driving the generator touches it."""

    def __init__(self, orchestrator: ScanOrchestrator, options: ScanOptions, token: CancellationToken):
        self.o = orchestrator
        self.options = options
        self.token = token

        self.executor: Optional[ThreadPoolExecutor] = None
        self.items: List[_WorkItem] = []
        self.excluded: Set[str] = set()  # failed rows carried over in incremental mode
        self.total = 0

        self.processed = 0
        self.issues: List[PhotoIssue] = []
        self.counts: Dict[IssueType, int] = {}
        self.signed: List[SignedAsset] = []
        self.failures: Dict[str, str] = {}
        self._last_progress_at: Optional[float] = None

    # --- Phases ---

    def run(self) -> Iterator[ScanUpdate]:
        yield Progress(0, 0, ScanPhase.PREPARING)
        self._prepare()
        logging.info(f"Scan prepared: {self.total} assets, "
                     f"{sum(1 for i in self.items if i.needs_hash)} to hash "
                     f"(incremental={self.options.incremental})")

        if self.token.cancelled:
            yield Cancelled(None)
            return

        yield Progress(0, self.total, ScanPhase.SCANNING)
        yield from self._scan_items()

        if self.token.cancelled and self.processed == 0:
            logging.info("Scan cancelled before any asset was processed.")
            yield Cancelled(None)
            return

        yield Progress(self.processed, self.total, ScanPhase.GROUPING)
        groups = yield from self._group()

        result = ScanResult.build(self.total, self.issues, groups, processed_count=self.processed)
        if self.token.cancelled:
            logging.info(f"Scan cancelled after {self.processed}/{self.total} assets; nothing persisted.")
            yield Cancelled(result)
            return

        self._persist()
        yield Progress(self.total, self.total, ScanPhase.COMPLETED)
        logging.info(f"Scan complete: {result.total_issue_count} issues, "
                     f"{len(result.duplicate_groups)} duplicate groups.")
        yield Completed(result)

    def _prepare(self):
        records = {r.asset_id: r for r in self.o.cache.fetch_records()}

        if self.options.incremental:
            for record in records.values():
                if record.status == ScanStatus.SCANNED:
                    self.items.append(_WorkItem(record.metadata, record.signature, needs_hash=False))
                elif record.status == ScanStatus.PENDING:
                    self.items.append(_WorkItem(record.metadata))
                else:
                    self.items.append(_WorkItem(record.metadata, needs_hash=False))
                    self.excluded.add(record.asset_id)
        else:
            ids = self.o.source.list_all_identifiers()
            for meta in self.o.source.fetch_metadata(ids):
                record = records.get(meta.asset_id)
                if record is not None and record.status == ScanStatus.SCANNED:
                    self.items.append(_WorkItem(meta, record.signature, needs_hash=False))
                else:
                    self.items.append(_WorkItem(meta))

        self.items.sort(key=lambda i: i.asset_id)
        self.total = len(self.items)

    def _scan_items(self) -> Iterator[ScanUpdate]:
        in_flight: Dict[Future, _WorkItem] = {}
        if any(i.needs_hash for i in self.items):
            self.executor = ThreadPoolExecutor(max_workers=self.o.max_workers,
                                               thread_name_prefix="photo-cleaner-hash")

        for item in self.items:
            if self.token.cancelled:
                return

            for issue in detect_issues(item.metadata, self.options.large_file_threshold_bytes):
                yield from self._emit_issue(issue)

            if item.needs_hash:
                # Bounded reads in flight
                while len(in_flight) >= self.o.max_workers:
                    yield from self._drain(in_flight, block=True)
                    if self.token.cancelled:
                        return
                future = self.executor.submit(self.o.computer.compute, self.o.source, item.asset_id)
                in_flight[future] = item
            else:
                if item.signature is not None and item.asset_id not in self.excluded:
                    self.signed.append(SignedAsset(item.metadata, item.signature))
                yield from self._advance()

            yield from self._drain(in_flight, block=False)

        while in_flight:
            if self.token.cancelled:
                return
            yield from self._drain(in_flight, block=True)

    def _drain(self, in_flight: Dict[Future, _WorkItem], block: bool) -> Iterator[ScanUpdate]:
        if not in_flight:
            return
        timeout = config.CANCEL_POLL_INTERVAL if block else 0
        done, _ = wait(list(in_flight), timeout=timeout, return_when=FIRST_COMPLETED)
        # Resolve in submission order so cache writes and logs stay deterministic
        for future in [f for f in in_flight if f in done]:
            item = in_flight.pop(future)
            try:
                signature = future.result()
            except (AssetReadError, OSError) as e:
                logging.warning(f"Could not read {item.asset_id}: {e}")
                self.failures[item.asset_id] = str(e)
            else:
                self.signed.append(SignedAsset(item.metadata, signature))
            yield from self._advance()

    def _advance(self) -> Iterator[ScanUpdate]:
        self.processed += 1
        if self.processed % self.o.progress_stride and self.processed != self.total:
            return
        now = self.o.clock()
        if self._last_progress_at is not None and now - self._last_progress_at < self.o.progress_interval:
            return
        self._last_progress_at = now
        yield Progress(self.processed, self.total, ScanPhase.SCANNING)

    def _emit_issue(self, issue: PhotoIssue) -> Iterator[ScanUpdate]:
        self.issues.append(issue)
        self.counts[issue.issue_type] = self.counts.get(issue.issue_type, 0) + 1
        yield IssueFound(issue)
        yield SummaryUpdated(issue.issue_type, self.counts[issue.issue_type])

    def _group(self):
        engine = DuplicateGroupingEngine(
            mode=self.options.duplicate_mode,
            similarity_threshold=self.options.similarity_threshold,
            tz=self.o.tz,
        )
        groups = engine.group(self.signed)
        byte_counts = {a.asset_id: a.byte_count for a in self.signed}

        for group in groups:
            yield DuplicateGroupFound(group)
        for issue in duplicate_issues(groups, byte_counts):
            yield from self._emit_issue(issue)
        return groups

    def _persist(self):
        by_asset: Dict[str, List[PhotoIssue]] = {}
        for issue in self.issues:
            by_asset.setdefault(issue.asset_id, []).append(issue)

        metadata = [] if self.options.incremental else [i.metadata for i in self.items]
        signatures = {a.asset_id: a.signature for a in self.signed}
        self.o.cache.persist_pass(metadata, signatures, self.failures, by_asset)

        if not self.options.incremental:
            token = self.o.source.current_change_token()
            if token is not None:
                self.o.cache.save_sync_token(token)

    def shutdown(self):
        if self.executor is not None:
            # In-flight reads are abandoned, not awaited
            self.executor.shutdown(wait=False, cancel_futures=True)
            self.executor = None


_DONE = object()


class ScanSession:
    """
    A pass running on a background thread. Iterate it for the updates; the
    queue between the two threads is bounded, so a slow consumer slows the
    pass down instead of buffering without limit.
    """

    def __init__(self, updates: Iterator[ScanUpdate], token: CancellationToken,
                 queue_size: int = config.UPDATE_QUEUE_SIZE):
        self.token = token
        self._updates = updates
        self._queue: "queue.Queue" = queue.Queue(maxsize=queue_size)
        self._abandoned = threading.Event()
        self._thread = threading.Thread(target=self._run, name="photo-cleaner-scan", daemon=True)

    def start(self):
        self._thread.start()

    def _run(self):
        try:
            for update in self._updates:
                if not self._publish(update):
                    break
        finally:
            self._updates.close()
            self._publish(_DONE)

    def _publish(self, item) -> bool:
        while not self._abandoned.is_set():
            try:
                self._queue.put(item, timeout=config.CANCEL_POLL_INTERVAL)
                return True
            except queue.Full:
                continue
        return False

    def __iter__(self) -> Iterator[ScanUpdate]:
        while True:
            try:
                item = self._queue.get(timeout=config.CANCEL_POLL_INTERVAL)
            except queue.Empty:
                # Closed sessions never publish their end marker
                if self._abandoned.is_set() and not self._thread.is_alive():
                    return
                continue
            if item is _DONE:
                return
            yield item

    def cancel(self):
        self.token.cancel()

    def join(self, timeout: Optional[float] = None) -> bool:
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def close(self):
        """Cancels the pass, stops delivering updates and waits for the thread."""
        self.cancel()
        self._abandoned.set()
        self.join()

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
