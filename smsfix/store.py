"""
Message store access.

Wraps the SQLite message database behind the three things the watcher needs
from it: a newest-first query of inbound messages, a single-field update and
change notifications. Writes made through the store notify subscribers right
away; writes made by other processes are picked up by ChangePoller.
"""

import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from .database import (
    Message,
    Preference,
    MESSAGE_TYPE_INBOX,
    create_db_engine,
    get_session_factory,
    init_database,
)

ChangeCallback = Callable[[bool], None]


class StoreError(Exception):
    """Raised when the message store cannot be read or written."""
    pass


@dataclass(frozen=True)
class MessageRow:
    """Immutable (id, date) pair taken from one query."""

    id: int
    date: int


def now_millis() -> int:
    return int(time.time() * 1000)


class MessageStore:
    """SQLite-backed message store with change notifications."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        init_database(self.db_path)
        self.engine = create_db_engine(self.db_path)
        self._Session = get_session_factory(self.engine)
        self._subscribers: List[Tuple[ChangeCallback, object]] = []
        self._lock = threading.Lock()

    def close(self) -> None:
        self.engine.dispose()

    # Notifications

    def subscribe(self, callback: ChangeCallback, owner: object = None) -> None:
        """
        Register for change notifications on inbound messages.

        Args:
            callback: Called with self_change=True when the change was
                written with origin=owner, False otherwise
            owner: Identity used to recognise the subscriber's own writes
        """
        with self._lock:
            self._subscribers.append((callback, owner))

    def unsubscribe(self, callback: ChangeCallback) -> None:
        with self._lock:
            self._subscribers = [(cb, o) for cb, o in self._subscribers if cb != callback]

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def notify_change(self, origin: object = None) -> None:
        """Deliver a change notification to every subscriber."""
        with self._lock:
            subscribers = list(self._subscribers)
        for callback, owner in subscribers:
            callback(origin is not None and origin is owner)

    # Queries

    def query_inbox(self) -> Tuple[MessageRow, ...]:
        """
        Return every inbound message, newest id first.

        Raises:
            StoreError: If the database cannot be read
        """
        try:
            with self._Session() as session:
                rows = (
                    session.query(Message.id, Message.date)
                    .filter(Message.type == MESSAGE_TYPE_INBOX)
                    .order_by(Message.id.desc())
                    .all()
                )
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to query messages: {e}") from e
        return tuple(MessageRow(id=row.id, date=row.date) for row in rows)

    def list_messages(self, limit: Optional[int] = None) -> List[Message]:
        """Return full message rows, newest first."""
        try:
            with self._Session() as session:
                query = session.query(Message).order_by(Message.id.desc())
                if limit is not None:
                    query = query.limit(limit)
                return query.all()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list messages: {e}") from e

    # Writes

    def update_date(self, message_id: int, value: int, origin: object = None) -> bool:
        """
        Set the date of one message.

        Args:
            message_id: Message id
            value: New date in milliseconds since epoch
            origin: Writer identity passed on to notifications

        Returns:
            True if a message was updated, False if it no longer exists

        Raises:
            StoreError: If the write fails
        """
        try:
            with self._Session() as session:
                updated = (
                    session.query(Message)
                    .filter(Message.id == message_id)
                    .update({Message.date: value}, synchronize_session=False)
                )
                session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to update message {message_id}: {e}") from e

        if updated:
            self.notify_change(origin)
        return bool(updated)

    def insert_message(
        self,
        body: str,
        address: str = "",
        date: Optional[int] = None,
        message_type: int = MESSAGE_TYPE_INBOX,
    ) -> int:
        """Insert a message and return its id."""
        message = Message(
            type=message_type,
            address=address,
            body=body,
            date=now_millis() if date is None else date,
        )
        try:
            with self._Session() as session:
                session.add(message)
                session.commit()
                message_id = message.id
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to insert message: {e}") from e

        self.notify_change()
        return message_id

    def delete_message(self, message_id: int) -> bool:
        """Delete a message. Returns False if it did not exist."""
        try:
            with self._Session() as session:
                deleted = (
                    session.query(Message)
                    .filter(Message.id == message_id)
                    .delete(synchronize_session=False)
                )
                session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to delete message {message_id}: {e}") from e

        if deleted:
            self.notify_change()
        return bool(deleted)

    # Preferences

    def get_preference(self, key: str, default: Optional[str] = None) -> Optional[str]:
        try:
            with self._Session() as session:
                pref = session.get(Preference, key)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read preference {key}: {e}") from e
        return default if pref is None else pref.value

    def set_preference(self, key: str, value: str) -> None:
        try:
            with self._Session() as session:
                session.merge(Preference(key=key, value=value))
                session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to write preference {key}: {e}") from e


class ChangePoller:
    """
    Detects commits made to the database by other connections.

    SQLite bumps `PRAGMA data_version` on a connection whenever another
    connection commits. The poller keeps one connection open, compares the
    value on every check and turns a change into a store notification.
    """

    def __init__(self, store: MessageStore):
        self.store = store
        self._conn = None
        self._last_version: Optional[int] = None

    def _read_version(self) -> int:
        if self._conn is None:
            self._conn = self.store.engine.connect()
        try:
            version = self._conn.exec_driver_sql("PRAGMA data_version").scalar()
            self._conn.rollback()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to poll database: {e}") from e
        return int(version)

    def check(self) -> bool:
        """
        Poll once.

        Returns:
            True if a change was seen and subscribers were notified
        """
        version = self._read_version()
        if self._last_version is None:
            self._last_version = version
            return False
        if version == self._last_version:
            return False
        self._last_version = version
        self.store.notify_change()
        return True

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
