"""
Timestamp fixer for incoming messages.

How it works:
    The engine subscribes to the message store. On every change it takes a
    newest-first snapshot of the inbox and compares each id against the last
    id it handled (the frontier). Anything newer gets its timestamp adjusted.

    Adjusted timestamps carry a marker in their last three digits (the
    sub-second part, which nothing displays). The marker is the only durable
    record of "already fixed": the frontier lives in memory and ids can go
    missing when messages are deleted. When the message the frontier pointed
    at is gone or does not carry the marker, the engine keeps walking older
    messages until it finds one that does.
"""

import threading
import time
from typing import Callable, Optional, Sequence

from .config import DEFAULT_MAGIC, OFFSET_AUTOMATIC, OFFSET_PHONE, FixSettings
from .logger import StructuredLogger, get_logger
from .store import MessageRow, MessageStore, StoreError, now_millis

NO_FRONTIER = -1
MILLIS_PER_HOUR = 3600000
CDMA_GRACE_MS = 5000


def is_marked(timestamp: int, magic: int = DEFAULT_MAGIC) -> bool:
    """True if the timestamp carries the fixed-message marker."""
    return timestamp % 1000 == magic


def stamp_marked(timestamp: int, magic: int = DEFAULT_MAGIC) -> int:
    """Replace the sub-second digits of timestamp with the marker."""
    return timestamp - (timestamp % 1000) + magic


def local_raw_offset_ms() -> int:
    """Standard (non-DST) UTC offset of the local zone, east positive."""
    return -time.timezone * 1000


def compute_offset(settings: FixSettings, raw_utc_offset_ms: int) -> int:
    """
    Get the offset to add to a message date based on the user's settings.

    Args:
        settings: Fix policy
        raw_utc_offset_ms: Local zone's standard UTC offset

    Returns:
        Offset in milliseconds
    """
    if settings.offset_method == OFFSET_AUTOMATIC:
        return -raw_utc_offset_ms
    return settings.offset_hours * MILLIS_PER_HOUR


def adjusted_timestamp(
    date: int,
    settings: FixSettings,
    now: int,
    raw_utc_offset_ms: int,
) -> int:
    """
    Compute the corrected date of a message, before marking.

    Args:
        date: Date the store assigned to the message (ms)
        settings: Fix policy
        now: Current wall-clock time (ms)
        raw_utc_offset_ms: Local zone's standard UTC offset

    Returns:
        Corrected date in milliseconds
    """
    if settings.offset_method == OFFSET_PHONE:
        return now

    # in CDMA mode only dates running ahead of the phone clock are shifted
    if settings.cdma and date - now <= CDMA_GRACE_MS:
        return date

    return date + compute_offset(settings, raw_utc_offset_ms)


class FrontierTracker:
    """Holds the id of the newest message the engine has handled."""

    def __init__(self):
        self.last_id = NO_FRONTIER

    def initialize(self, snapshot: Sequence[MessageRow]) -> int:
        """Start from the newest message in the store, or NO_FRONTIER if empty."""
        self.last_id = snapshot[0].id if snapshot else NO_FRONTIER
        return self.last_id

    def advance(self, new_id: int) -> None:
        self.last_id = new_id


class FixupEngine:
    """
    Applies the timestamp fix to every new inbound message exactly once.

    Sweeps never overlap: a notification that arrives while a sweep is
    running is folded into one more sweep after the current one.
    """

    def __init__(
        self,
        store: MessageStore,
        settings: FixSettings,
        tracker: Optional[FrontierTracker] = None,
        logger: Optional[StructuredLogger] = None,
        clock: Callable[[], int] = now_millis,
        raw_utc_offset: Callable[[], int] = local_raw_offset_ms,
    ):
        self.store = store
        self.settings = settings
        self.tracker = tracker or FrontierTracker()
        self.logger = logger or get_logger()
        self.clock = clock
        self.raw_utc_offset = raw_utc_offset

        self._state_lock = threading.Lock()
        self._sweeping = False
        self._pending = False

    @property
    def last_id(self) -> int:
        return self.tracker.last_id

    def on_change(self, self_change: bool) -> None:
        """Store change callback."""
        if self_change:
            self.logger.record_notification(ignored=True)
            return
        self.logger.record_notification()
        self.logger.debug("Message store altered, checking")

        with self._state_lock:
            if self._sweeping:
                self._pending = True
                return
            self._sweeping = True

        try:
            while True:
                self.fixup(self.store.query_inbox())
                with self._state_lock:
                    if not self._pending:
                        self._sweeping = False
                        return
                    self._pending = False
        except BaseException:
            with self._state_lock:
                self._sweeping = False
                self._pending = False
            raise

    def fixup(self, snapshot: Sequence[MessageRow]) -> int:
        """
        Fix every message newer than the frontier in one snapshot.

        Args:
            snapshot: Inbound messages, newest id first

        Returns:
            Number of messages written
        """
        self.logger.record_sweep()
        if not snapshot:
            self.tracker.advance(NO_FRONTIER)
            return 0

        magic = self.settings.magic
        old_last_id = self.tracker.last_id
        self.tracker.advance(snapshot[0].id)

        fixed = 0
        last = len(snapshot) - 1
        i = 0
        exhausted = False

        # loop in case several messages arrived since the last sweep
        while snapshot[i].id > old_last_id:
            if self.transform(snapshot[i]):
                fixed += 1
            if i == last:
                exhausted = True
                break
            i += 1

        # The message at the old frontier may have been deleted, or never
        # marked. Ids cannot tell us where the fixed messages start any more,
        # so keep going until a marked message turns up. New ids are always
        # above every existing one, so nothing older than it is new.
        if not exhausted:
            row = snapshot[i]
            if row.id != old_last_id or not is_marked(row.date, magic):
                self.logger.info(
                    "Frontier message missing or unmarked, searching for marker",
                    frontier=old_last_id,
                    message_id=row.id,
                )
                while not is_marked(snapshot[i].date, magic):
                    if self.transform(snapshot[i]):
                        fixed += 1
                    if i == last:
                        break
                    i += 1

        if fixed:
            self.logger.info("Sweep complete", fixed=fixed, frontier=self.tracker.last_id)
        return fixed

    def mark_existing(self, snapshot: Sequence[MessageRow]) -> int:
        """
        Put the marker on messages that were in the store before the watcher.

        Only the sub-second digits change, so displayed times stay the same.
        Without this, the first sweep finds the frontier message unmarked and
        walks back through the whole unmarked history fixing it.

        Returns:
            Number of messages written
        """
        magic = self.settings.magic
        marked = 0
        for row in snapshot:
            if is_marked(row.date, magic):
                continue
            try:
                if self.store.update_date(row.id, stamp_marked(row.date, magic), origin=self):
                    marked += 1
            except StoreError as e:
                self.logger.record_write_failure()
                self.logger.error(
                    "Failed to mark existing message",
                    message_id=row.id,
                    error=str(e),
                )
        if marked:
            self.logger.info("Marked existing messages", count=marked)
        return marked

    def transform(self, row: MessageRow) -> bool:
        """
        Adjust and mark the date of one message.

        Returns:
            True if the new date was written
        """
        magic = self.settings.magic
        if is_marked(row.date, magic):
            self.logger.record_skip()
            self.logger.debug("Message already fixed, skipping", message_id=row.id)
            return False

        self.logger.info("Adjusting timestamp for message", message_id=row.id)
        target = adjusted_timestamp(
            row.date,
            self.settings,
            now=self.clock(),
            raw_utc_offset_ms=self.raw_utc_offset(),
        )
        value = stamp_marked(target, magic)

        try:
            written = self.store.update_date(row.id, value, origin=self)
        except StoreError as e:
            # keep the frontier below the unmarked row so the next forward
            # sweep reaches it again
            if row.id <= self.tracker.last_id:
                self.tracker.advance(row.id - 1)
            self.logger.record_write_failure()
            self.logger.error(
                "Failed to write adjusted timestamp",
                message_id=row.id,
                error=str(e),
            )
            return False

        if not written:
            self.logger.debug("Message deleted before it could be fixed", message_id=row.id)
            return False

        self.logger.record_fix()
        return True
