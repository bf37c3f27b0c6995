# Sync Engine - moves POS receipts to the remote ledger
# One cycle at a time: drain retries, resolve cursor, fetch, filter, transform, deliver

import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .config import SyncSettings
from .cursor import Cursor
from .errors import DeliveryError, SourceUnavailable, ValidationRejected
from .models import DeliveryResult, ReceiptGroup, RetryEntry, SyncStats, group_legs
from .receipt_filter import ReceiptFilter
from .receipt_source import ReceiptSource
from .retry_queue import RetryQueue
from .state_store import StateStore
from .transformer import TransformOptions, transform


logger = logging.getLogger(__name__)

STATUS_IDLE = 'idle'
STATUS_SYNCING = 'syncing'
STATUS_ERROR = 'error'
STATUS_STOPPED = 'stopped'


class SyncEngine:
    """Incremental receipt synchronization with a retry queue and interval scheduler"""

    def __init__(self, source: ReceiptSource, ledger, store: StateStore,
                 settings: Optional[SyncSettings] = None, api_key: str = '',
                 on_stats: Optional[Callable[[SyncStats], None]] = None,
                 on_status: Optional[Callable[[str], None]] = None):
        self.source = source
        self.ledger = ledger
        self.store = store
        self.settings = settings or SyncSettings()
        self.on_stats = on_stats
        self.on_status = on_status

        self.cursor = Cursor(store)
        self.retry_queue = RetryQueue(self.settings.max_attempts)
        self.retry_queue.load_list(store.load_state(RetryQueue.STATE_KEY, []))
        self.receipt_filter = ReceiptFilter(
            ledger,
            store_prefixes=self.settings.store_prefixes,
            cutoff_date=self.settings.cutoff_date,
            tz_offset_minutes=self.settings.tz_offset_minutes,
        )
        self.transform_options = TransformOptions(
            api_key=api_key or '',
            tz_offset_minutes=self.settings.tz_offset_minutes,
            currency=self.settings.currency,
            country_code=self.settings.country_code,
        )
        self.stats = SyncStats(
            total_synced=store.load_state('totalSynced', 0),
            total_failed=store.load_state('totalFailed', 0),
            last_sync_time=store.load_state('lastSyncTime'),
        )

        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        if self.retry_queue:
            logger.info(f"Restored {len(self.retry_queue)} failed receipts from previous run")

    # Scheduler lifecycle

    def start(self):
        if not self.settings.enabled:
            logger.info('Sync service is disabled')
            return
        if self._thread and self._thread.is_alive():
            logger.debug('Sync scheduler already running')
            return

        logger.info(f"Starting sync service - interval: {self.settings.interval_minutes} minutes")
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._scheduler_loop, name='sync-scheduler', daemon=True)
        self._thread.start()
        self._set_status(STATUS_IDLE)

    def stop(self, timeout: float = 30):
        """Stop scheduling. A cycle already running is allowed to finish."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
            logger.info('Sync service stopped')
        self._set_status(STATUS_STOPPED)

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def _scheduler_loop(self):
        if self._stop_event.wait(self.settings.initial_delay_seconds):
            return
        interval = self.settings.interval_minutes * 60
        while not self._stop_event.is_set():
            self.run_cycle()
            if self._stop_event.wait(interval):
                break

    # Triggers

    def force_sync_now(self) -> bool:
        """Run a cycle now. Returns False if one was already running."""
        logger.info('Manual sync triggered')
        return self.run_cycle()

    def run_cycle(self) -> bool:
        if not self._cycle_lock.acquire(blocking=False):
            logger.info('Sync already in progress, skipping...')
            return False

        status = STATUS_IDLE
        try:
            self._set_status(STATUS_SYNCING)
            self._sync_cycle()
        except SourceUnavailable as e:
            logger.error(f"Sync aborted, receipt source unavailable: {e}")
            self.stats.last_error = str(e)
            status = STATUS_ERROR
        except Exception as e:
            logger.exception(f"Sync error: {e}")
            self.stats.last_error = str(e)
            status = STATUS_ERROR
        finally:
            self._finish(status)
        return True

    def force_manual_sync(self, receipt_no: str) -> Dict[str, Any]:
        """Sync one receipt by number, outside the incremental fetch"""
        receipt_no = (receipt_no or '').strip()
        if not receipt_no:
            return {'success': False, 'message': 'Receipt number is required'}
        if not self._cycle_lock.acquire(blocking=False):
            return {'success': False, 'message': 'Sync already in progress'}

        status = STATUS_IDLE
        try:
            self._set_status(STATUS_SYNCING)
            return self._manual_sync(receipt_no)
        except SourceUnavailable as e:
            logger.error(f"Manual sync of {receipt_no} failed, receipt source unavailable: {e}")
            self.stats.last_error = str(e)
            status = STATUS_ERROR
            return {'success': False, 'message': f"Receipt source unavailable: {e}"}
        except Exception as e:
            logger.exception(f"Manual sync of {receipt_no} failed: {e}")
            return {'success': False, 'message': str(e)}
        finally:
            self._finish(status)

    # Cycle internals

    def _sync_cycle(self):
        logger.info('Starting receipt sync...')

        retried = self.retry_queue.drain(self._retry_attempt, self.ledger.receipt_exists)
        if any(retried.values()):
            logger.info(
                f"Retry pass - Success: {retried['succeeded']}, Failed: {retried['failed']}, "
                f"Frozen: {retried['frozen']}, Cleared: {retried['cleared']}"
            )

        watermark = self.cursor.resolve_watermark(self.ledger)
        if watermark is None:
            return

        legs = self.source.fetch_recent(watermark)
        groups = group_legs(legs)
        logger.info(f"Found {len(groups)} receipts to process")
        if not groups:
            self.stats.last_sync_time = datetime.now().isoformat()
            return

        outcome = self.receipt_filter.filter(groups.values())
        for group in outcome.already_synced:
            self.cursor.advance(group.receipt_no, group.date)
            self.retry_queue.remove(group.receipt_no)
        for group, reason in outcome.rejected:
            # A failed existence check may pass next cycle, so it must be fetched again
            if reason != ValidationRejected.DEDUP_CHECK_FAILED:
                self.cursor.skip_past(group.receipt_no, group.date)

        succeeded = failed = 0
        for group in outcome.passed:
            if group.receipt_no in self.retry_queue:
                # Already handled by this cycle's drain, or frozen
                logger.debug(f"Receipt {group.receipt_no} is in the retry queue, not redelivering")
                continue
            try:
                result = self._deliver_group(group)
            except SourceUnavailable:
                raise
            except Exception as e:
                failed += 1
                self._record_failure(group, e)
                continue
            if result.created:
                succeeded += 1

        self.stats.last_sync_time = datetime.now().isoformat()
        logger.info(
            f"Sync completed - Success: {succeeded}, Failed: {failed}, "
            f"Already synced: {len(outcome.already_synced)}, Rejected: {len(outcome.rejected)}"
        )

    def _deliver_group(self, group: ReceiptGroup) -> DeliveryResult:
        """Fetch items, transform and deliver one group. Raises on failure."""
        items = self.source.fetch_items(group.row_id)
        if not items:
            logger.warning(f"No item details found for receipt {group.receipt_no}")
        payload = transform(group, items, self.transform_options)
        result = self.ledger.create_receipt(payload)

        if result.created:
            self.stats.total_synced += 1
            logger.info(f"✓ Synced receipt: {group.receipt_no}")
        else:
            logger.info(f"Receipt {group.receipt_no} already exists on server")
        self.cursor.advance(group.receipt_no, group.date)
        self.retry_queue.remove(group.receipt_no)
        self.store.log_delivery(
            group.receipt_no,
            'created' if result.created else 'already_exists',
            record_id=result.record_id,
            message=result.message,
        )
        return result

    def _retry_attempt(self, entry: RetryEntry):
        self._deliver_group(entry.group)

    def _record_failure(self, group: ReceiptGroup, error: Exception):
        kind = error.kind if isinstance(error, DeliveryError) else 'internal'
        logger.error(f"✗ Failed to sync receipt {group.receipt_no} [{kind}]: {error}")
        self.stats.total_failed += 1
        self.retry_queue.record_failure(group, str(error))
        self.store.log_delivery(group.receipt_no, 'failed', message=f"{kind}: {error}")

    def _manual_sync(self, receipt_no: str) -> Dict[str, Any]:
        logger.info(f"Manual sync requested for {receipt_no}")
        legs = self.source.fetch_single(receipt_no)
        group = group_legs(legs).get(receipt_no)
        if group is None:
            return {'success': False, 'message': f"Receipt {receipt_no} not found in POS database"}

        outcome = self.receipt_filter.filter([group])
        if outcome.rejected:
            return {'success': False, 'message': f"Receipt {receipt_no} rejected: {outcome.reason_for(receipt_no)}"}
        if outcome.already_synced:
            self.cursor.advance(group.receipt_no, group.date)
            self.retry_queue.remove(group.receipt_no)
            return {'success': True, 'message': f"Receipt {receipt_no} is already synced"}

        try:
            result = self._deliver_group(group)
        except DeliveryError as e:
            self.stats.total_failed += 1
            self.store.log_delivery(receipt_no, 'failed', message=f"{e.kind}: {e}")
            logger.error(f"✗ Manual sync failed for {receipt_no} [{e.kind}]: {e}")
            return {'success': False, 'message': f"Delivery failed ({e.kind}): {e}"}

        self.stats.last_sync_time = datetime.now().isoformat()
        if result.created:
            return {'success': True, 'message': f"Receipt {receipt_no} synced"}
        return {'success': True, 'message': f"Receipt {receipt_no} already exists on server"}

    def _finish(self, status: str):
        try:
            self._persist()
        except Exception as e:
            logger.error(f"Could not persist sync state: {e}")
        finally:
            self._cycle_lock.release()
        self._set_status(status)
        self._notify_stats()

    def _persist(self):
        self.store.save_many({
            'totalSynced': self.stats.total_synced,
            'totalFailed': self.stats.total_failed,
            'lastSyncTime': self.stats.last_sync_time,
            RetryQueue.STATE_KEY: self.retry_queue.to_list(),
        })

    # Observers and stats

    def _set_status(self, status: str):
        self.stats.status = status
        if self.on_status:
            try:
                self.on_status(status)
            except Exception as e:
                logger.warning(f"Status observer failed: {e}")

    def _notify_stats(self):
        if self.on_stats:
            try:
                self.on_stats(self.get_stats())
            except Exception as e:
                logger.warning(f"Stats observer failed: {e}")

    def get_stats(self) -> SyncStats:
        """Snapshot of the counters; mutating it does not affect the engine"""
        return replace(
            self.stats,
            queue_size=self.retry_queue.active_count,
            failed_count=len(self.retry_queue),
            is_syncing=self._cycle_lock.locked(),
        )

    def check_health(self) -> Dict[str, bool]:
        return {
            'source': self.source.check_health(),
            'ledger': self.ledger.check_health(),
        }
