"""
Scan Coordinator

Producer/consumer pipeline between the traffic source and the analyzer.

Producers (proxy callbacks, manual injection) never block: an item is
deduplicated, wrapped in a ScanUnit and offered to a bounded queue; when
the queue is full the unit is failed on the spot with "queue full". A
fixed pool of consumer threads polls the queue, runs the pre-filter for
hints, calls the analyzer and commits the unit's terminal state.

Cancellation is a CancelToken created per run. It is checked before and
after every dequeue, handed to the analyzer, and re-checked after the
analyzer returns so a late verdict never overwrites a cancelled unit.
"""

import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

import structlog

from ..analyzer.base import AnalysisCancelled, Analyzer
from ..core.cancellation import CancelToken
from ..core.config import MAX_CONSUMER_WORKERS, MIN_CONSUMER_WORKERS, ScanConfig
from .filter_engine import FilterEngine, ScanMatch, build_ui_message
from .models import InvalidTransitionError, ScanStatus, ScanUnit
from .risk import RiskLevel
from .traffic import TrafficItem, should_skip

logger = structlog.get_logger()

QUEUE_FULL_MESSAGE = "queue full"

STATUS_STARTED = "Passive scan started - listening..."
STATUS_STOPPED = "Passive scan stopped"
STATUS_CLEARED = "Results cleared"


@dataclass
class ScanCallbacks:
    """Presentation hooks; any of them may be left unset"""

    on_result_updated: Optional[Callable[[ScanUnit], None]] = None
    on_status_changed: Optional[Callable[[str], None]] = None
    on_progress_changed: Optional[Callable[[int], None]] = None
    on_new_item_queued: Optional[Callable[[ScanUnit], None]] = None
    on_streaming_chunk: Optional[Callable[[str], None]] = None


class ScanCoordinator:
    """
    Bounded queue, consumer pool and run lifecycle

    The dedup set, the result list and the counters are shared between
    producer and consumer threads and only touched under self._lock.
    Callbacks always run outside the lock.
    """

    def __init__(
        self,
        config: ScanConfig,
        analyzer: Analyzer,
        filter_engine: Optional[FilterEngine] = None,
        callbacks: Optional[ScanCallbacks] = None
    ):
        """
        Args:
            config: Pool size, queue capacity, poll interval and filter budget
            analyzer: Slow, authoritative classifier
            filter_engine: Pre-filter for analyzer hints; None disables hints
            callbacks: Presentation hooks
        """
        self.config = config
        self.analyzer = analyzer
        self.filter_engine = filter_engine
        self.callbacks = callbacks or ScanCallbacks()
        self.logger = logger.bind(component="scan_coordinator")

        self.worker_count = config.consumer_workers

        self._lock = threading.Lock()
        self._running = False
        self._cancel_token = CancelToken()
        self._generation = 0
        self._queue: "queue.Queue[ScanUnit]" = queue.Queue(maxsize=config.queue_capacity)
        self._workers: List[threading.Thread] = []

        self._results: List[ScanUnit] = []
        self._by_id: Dict[int, ScanUnit] = {}
        self._seen_keys: Set[str] = set()
        self._next_id = 1
        self._streaming_unit: Optional[ScanUnit] = None

        self.stats = {
            "total": 0,
            "completed": 0,
            "dropped": 0,
            "suppressed": 0,
            "skipped": 0,
        }

    # ========== Configuration ==========

    def set_worker_count(self, count: int) -> int:
        """
        Resize the consumer pool, clamped to the supported range

        Takes effect on the next start().
        """
        self.worker_count = max(MIN_CONSUMER_WORKERS, min(MAX_CONSUMER_WORKERS, count))
        self.logger.info("Consumer worker count set", requested=count, workers=self.worker_count)

        if self.filter_engine and self.filter_engine.workers >= self.worker_count:
            self.logger.warning(
                "Filter pool not smaller than consumer pool",
                filter_workers=self.filter_engine.workers,
                consumer_workers=self.worker_count
            )
        return self.worker_count

    # ========== Lifecycle ==========

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> bool:
        """
        Start a scan run with a fresh cancel token and queue

        Returns:
            False if a run is already active

        Raises:
            RuntimeError: The consumer threads could not be created
        """
        with self._lock:
            if self._running:
                self.logger.info("Passive scan already running")
                return False

            token = CancelToken()
            generation = self._generation + 1
            work_queue: "queue.Queue[ScanUnit]" = queue.Queue(maxsize=self.config.queue_capacity)
            workers = []

            try:
                for index in range(self.worker_count):
                    worker = threading.Thread(
                        target=self._consumer_loop,
                        args=(token, work_queue, generation),
                        name=f"scan-consumer-{index + 1}",
                        daemon=True
                    )
                    worker.start()
                    workers.append(worker)
            except RuntimeError:
                token.cancel()
                self.logger.error("Failed to start consumer threads", started=len(workers))
                raise

            self._cancel_token = token
            self._generation = generation
            self._queue = work_queue
            self._workers = workers
            self._running = True

        filter_workers = self.filter_engine.workers if self.filter_engine else 0
        self.logger.info(
            "Passive scan started",
            consumer_workers=self.worker_count,
            filter_workers=filter_workers,
            thread_ceiling=self.worker_count * filter_workers,
            queue_capacity=self.config.queue_capacity
        )
        self._notify_status(STATUS_STARTED)
        return True

    def stop(self) -> bool:
        """
        Stop the run and leave every unit in a terminal state

        Cancels the token, waits up to the grace period for consumers,
        drains the queue marking drained units CANCELLED, then sweeps the
        results for anything still PENDING or SCANNING.

        Returns:
            False if no run was active
        """
        with self._lock:
            if not self._running:
                return False
            self._running = False
            token = self._cancel_token
            work_queue = self._queue
            workers = self._workers
            self._workers = []

        self.logger.info("Stopping passive scan", workers=len(workers))
        token.cancel()

        deadline = time.monotonic() + self.config.stop_grace_seconds
        for worker in workers:
            worker.join(timeout=max(0.0, deadline - time.monotonic()))

        busy = [worker.name for worker in workers if worker.is_alive()]
        if busy:
            self.logger.warning(
                "Consumers still busy after grace period",
                workers=busy,
                grace_seconds=self.config.stop_grace_seconds
            )

        drained = self._drain(work_queue)
        swept = self._sweep_unfinished()

        with self._lock:
            self._streaming_unit = None

        self.logger.info("Passive scan stopped", drained=drained, swept=swept)
        self._notify_status(STATUS_STOPPED)
        self._notify_progress()
        return True

    def clear(self):
        """Stop any active run and forget every result; ids restart at 1"""
        if self._running:
            self.stop()

        with self._lock:
            self._results.clear()
            self._by_id.clear()
            self._seen_keys.clear()
            self._next_id = 1
            self._generation += 1
            self._streaming_unit = None
            for key in self.stats:
                self.stats[key] = 0

        self.logger.info("Scan results cleared")
        self._notify_status(STATUS_CLEARED)

    def _drain(self, work_queue: "queue.Queue[ScanUnit]") -> int:
        drained = 0
        while True:
            try:
                unit = work_queue.get_nowait()
            except queue.Empty:
                break
            if unit.mark_cancelled():
                drained += 1
                self._notify_result(unit)
        return drained

    def _sweep_unfinished(self) -> int:
        with self._lock:
            units = list(self._results)

        swept = 0
        for unit in units:
            if unit.status in (ScanStatus.PENDING, ScanStatus.SCANNING) and unit.mark_cancelled():
                swept += 1
                self._notify_result(unit)
        return swept

    # ========== Producers ==========

    def on_traffic_observed(self, item: TrafficItem) -> Optional[ScanUnit]:
        """
        Entry point for the traffic source; safe from any thread

        Static assets and binary GET responses are skipped. Ignored while
        no run is active.
        """
        if not self._running:
            return None

        if should_skip(item):
            with self._lock:
                self.stats["skipped"] += 1
            return None

        return self._enqueue(item)

    def add_request(self, item: TrafficItem) -> Optional[ScanUnit]:
        """
        Manually inject one item, bypassing the static resource filter

        Returns:
            The new unit (already ERROR when the queue was full), or None
            when no run is active or the item is a duplicate
        """
        if not self._running:
            self.logger.info("Passive scan not running, request ignored", url=item.url)
            return None

        unit = self._enqueue(item)
        if unit is None:
            self.logger.info("Request already scanned, skipped", url=item.url)
        return unit

    def _enqueue(self, item: TrafficItem) -> Optional[ScanUnit]:
        key = item.dedup_key()

        with self._lock:
            if not self._running:
                return None

            if key in self._seen_keys:
                self.stats["suppressed"] += 1
                return None

            self._seen_keys.add(key)
            unit = ScanUnit(self._next_id, item)
            self._next_id += 1
            self._results.append(unit)
            self._by_id[unit.id] = unit
            self.stats["total"] += 1

            try:
                self._queue.put_nowait(unit)
                queued = True
            except queue.Full:
                queued = False
                self.stats["dropped"] += 1

        if not queued:
            unit.mark_error(QUEUE_FULL_MESSAGE)
            self.logger.warning("Scan queue full, request dropped", url=unit.short_url)
            self._notify_result(unit)
            return unit

        self._notify(self.callbacks.on_new_item_queued, unit)
        self._notify_status()
        return unit

    # ========== Consumers ==========

    def _consumer_loop(self, token: CancelToken, work_queue: "queue.Queue[ScanUnit]", generation: int):
        name = threading.current_thread().name
        processed = 0
        errors = 0
        self.logger.debug("Consumer started", worker=name)

        while not token.is_cancelled:
            try:
                unit = work_queue.get(timeout=self.config.poll_interval_seconds)
            except queue.Empty:
                continue

            try:
                if token.is_cancelled:
                    if unit.mark_cancelled():
                        self._notify_result(unit)
                    continue

                processed += 1
                self._scan_unit(unit, token, generation)
            except Exception as e:
                errors += 1
                self.logger.error("Consumer loop error", worker=name, error=str(e))

        self.logger.debug("Consumer exiting", worker=name, processed=processed, errors=errors)

    def _scan_unit(self, unit: ScanUnit, token: CancelToken, generation: int):
        """Drive one unit from PENDING to a terminal state"""
        try:
            unit.mark_scanning()
        except InvalidTransitionError as e:
            self.logger.debug("Unit no longer pending", unit_id=unit.id, error=str(e))
            return

        self._notify_result(unit)
        with self._lock:
            self._streaming_unit = unit

        started = time.monotonic()
        try:
            hints = self._prefilter(unit)
            text = self.analyzer.analyze(
                unit.traffic,
                token,
                on_chunk=lambda chunk: self._forward_chunk(unit, chunk),
                hints=hints
            )

            if token.is_cancelled:
                self.logger.info("Run cancelled during analysis", url=unit.short_url)
                unit.mark_cancelled()
            else:
                unit.mark_completed(text)
                self.logger.info(
                    "Scan completed",
                    url=unit.short_url,
                    risk=unit.risk_level.value,
                    duration=round(time.monotonic() - started, 2)
                )

        except AnalysisCancelled:
            unit.mark_cancelled()
            self.logger.info("Scan cancelled", url=unit.short_url)

        except Exception as e:
            if token.is_cancelled:
                unit.mark_cancelled()
            else:
                unit.mark_error(str(e) or e.__class__.__name__)
                self.logger.error(
                    "Scan failed",
                    url=unit.short_url,
                    duration=round(time.monotonic() - started, 2),
                    error=str(e)
                )

        finally:
            with self._lock:
                if self._streaming_unit is unit:
                    self._streaming_unit = None
                current = generation == self._generation
                if current:
                    self.stats["completed"] += 1

        # A consumer outliving its run must not touch the counters of a newer one
        if not current:
            self.logger.debug("Late consumer from an earlier run finished", unit_id=unit.id, status=unit.status.value)
            return

        self._notify_result(unit)
        self._notify_status()
        self._notify_progress()

    def _prefilter(self, unit: ScanUnit) -> List[ScanMatch]:
        """Best-effort signature hints; never fails the unit"""
        if self.filter_engine is None:
            return []

        try:
            matches = self.filter_engine.scan_traffic(unit.traffic, self.config.filter_budget_ms)
        except Exception as e:
            self.logger.warning("Pre-filter failed", url=unit.short_url, error=str(e))
            return []

        unit.prefilter_matches = matches
        if matches:
            self.logger.info(
                build_ui_message(matches),
                url=unit.short_url,
                types=sorted({match.rule_type for match in matches})
            )
        return matches

    def _forward_chunk(self, unit: ScanUnit, chunk: str):
        # Only the unit most recently put into SCANNING streams to the UI
        if self._streaming_unit is unit:
            self._notify(self.callbacks.on_streaming_chunk, chunk)

    # ========== Queries ==========

    @property
    def queued(self) -> int:
        return self._queue.qsize()

    @property
    def progress(self) -> int:
        """Percentage of units finished by a consumer"""
        with self._lock:
            total = self.stats["total"]
            completed = self.stats["completed"]
        if total == 0:
            return 0
        return completed * 100 // total

    def status_text(self) -> str:
        with self._lock:
            completed = self.stats["completed"]
            total = self.stats["total"]
        return f"Passive scan running - queued: {self.queued}, completed: {completed}/{total}"

    def get_results(self) -> List[ScanUnit]:
        with self._lock:
            return list(self._results)

    def get_result(self, unit_id: int) -> Optional[ScanUnit]:
        with self._lock:
            return self._by_id.get(unit_id)

    def get_stats_by_risk_level(self) -> Dict[RiskLevel, int]:
        """Risk distribution over COMPLETED units"""
        counts = {level: 0 for level in RiskLevel}
        for unit in self.get_results():
            if unit.status is ScanStatus.COMPLETED:
                counts[unit.risk_level] += 1
        return counts

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            stats = dict(self.stats)
            by_status = {status.value: 0 for status in ScanStatus}
            for unit in self._results:
                by_status[unit.status.value] += 1

        return {
            **stats,
            "queued": self.queued,
            "running": self._running,
            "workers": self.worker_count,
            "progress": self.progress,
            "by_status": by_status,
        }

    # ========== Notifications ==========

    def _notify(self, callback: Optional[Callable], *args):
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            self.logger.error("Callback failed", callback=getattr(callback, "__name__", repr(callback)), error=str(e))

    def _notify_result(self, unit: ScanUnit):
        self._notify(self.callbacks.on_result_updated, unit)

    def _notify_status(self, text: Optional[str] = None):
        self._notify(self.callbacks.on_status_changed, text or self.status_text())

    def _notify_progress(self):
        self._notify(self.callbacks.on_progress_changed, self.progress)
