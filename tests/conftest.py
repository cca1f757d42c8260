"""
Pytest configuration and shared fixtures.
"""

import pytest
from typing import Dict, List, Optional, Tuple

from smsfix.config import FixSettings, OFFSET_MANUAL
from smsfix.logger import StructuredLogger, get_logger, reset_logger
from smsfix.store import MessageRow, MessageStore, StoreError

NOW = 1_700_000_000_000  # fixed wall clock for tests (ms)


class RecordingStore:
    """In-memory stand-in for MessageStore that records every write."""

    def __init__(self, dates: Optional[Dict[int, int]] = None):
        self.dates: Dict[int, int] = dict(dates or {})
        self.updates: List[Tuple[int, int]] = []
        self.queries = 0
        self.fail_ids = set()
        self.on_query = None
        self._subscribers = []

    def query_inbox(self) -> Tuple[MessageRow, ...]:
        self.queries += 1
        if self.on_query is not None:
            self.on_query()
        return tuple(
            MessageRow(id=i, date=self.dates[i]) for i in sorted(self.dates, reverse=True)
        )

    def update_date(self, message_id: int, value: int, origin: object = None) -> bool:
        if message_id in self.fail_ids:
            raise StoreError(f"disk I/O error on {message_id}")
        self.updates.append((message_id, value))
        if message_id not in self.dates:
            return False
        self.dates[message_id] = value
        self.notify_change(origin)
        return True

    def insert(self, message_id: int, date: int) -> None:
        self.dates[message_id] = date

    def delete(self, message_id: int) -> None:
        del self.dates[message_id]

    def subscribe(self, callback, owner=None):
        self._subscribers.append((callback, owner))

    def unsubscribe(self, callback):
        self._subscribers = [(cb, o) for cb, o in self._subscribers if cb != callback]

    def notify_change(self, origin: object = None) -> None:
        for callback, owner in list(self._subscribers):
            callback(origin is not None and origin is owner)


@pytest.fixture(autouse=True)
def quiet_global_logger(tmp_path):
    """Keep the global logger's file output inside the test's tmp dir."""
    reset_logger()
    get_logger(log_dir=tmp_path / "logs", enable_console=False)
    yield
    reset_logger()


@pytest.fixture
def logger(tmp_path) -> StructuredLogger:
    return StructuredLogger(
        name="smsfix-test",
        level="DEBUG",
        log_dir=tmp_path / "test-logs",
        enable_console=False,
    )


@pytest.fixture
def settings() -> FixSettings:
    """Manual zero-hour offset: only the marker changes the date."""
    return FixSettings(offset_method=OFFSET_MANUAL, offset_hours=0, magic=337)


@pytest.fixture
def recording_store():
    return RecordingStore()


@pytest.fixture
def message_store(tmp_path):
    store = MessageStore(tmp_path / "sms.db")
    yield store
    store.close()
