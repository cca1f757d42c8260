"""
Watcher lifecycle.

Starting the service loads the frontier from the store, subscribes the fixup
engine to change notifications and records that the watcher is active.
The frontier is read again from the store every time the service starts.
Messages already in the store are marked only on the very first start;
after that, unmarked messages below the frontier are ones that arrived while
the watcher was stopped, and the first sweep corrects them.
"""

from typing import Any, Dict, Optional

from .config import FixSettings
from .fixer import FixupEngine, FrontierTracker
from .logger import StructuredLogger, get_logger
from .store import MessageStore

ACTIVE_KEY = "active"
BASELINED_KEY = "baselined"


def is_watcher_active(store: MessageStore) -> bool:
    """Read the persisted active flag."""
    return store.get_preference(ACTIVE_KEY, "false") == "true"


def is_baselined(store: MessageStore) -> bool:
    """True once a first start has run, whether or not it marked anything."""
    return store.get_preference(BASELINED_KEY, "false") == "true"


class FixService:
    """Monitors inbound messages and fixes their timestamps."""

    def __init__(
        self,
        store: MessageStore,
        settings: FixSettings,
        logger: Optional[StructuredLogger] = None,
        mark_existing: bool = True,
        **engine_kwargs,
    ):
        self.store = store
        self.settings = settings
        self.mark_existing = mark_existing
        self.logger = logger or get_logger()
        self._engine_kwargs = engine_kwargs
        self.engine: Optional[FixupEngine] = None
        self.running = False

    def start(self) -> FixupEngine:
        """Begin monitoring. Calling start on a running service is a no-op."""
        if self.running:
            return self.engine

        snapshot = self.store.query_inbox()
        tracker = FrontierTracker()
        tracker.initialize(snapshot)
        self.engine = FixupEngine(
            self.store,
            self.settings,
            tracker=tracker,
            logger=self.logger,
            **self._engine_kwargs,
        )
        if not is_baselined(self.store):
            if self.mark_existing:
                self.engine.mark_existing(snapshot)
            self.store.set_preference(BASELINED_KEY, "true")
        self.store.subscribe(self.engine.on_change, owner=self.engine)
        self.store.set_preference(ACTIVE_KEY, "true")
        self.running = True

        self.logger.info(
            "SMS messages now being monitored",
            last_sms_id=tracker.last_id,
            offset_method=self.settings.offset_method,
        )
        return self.engine

    def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        self.store.set_preference(ACTIVE_KEY, "false")
        self.store.unsubscribe(self.engine.on_change)
        self.logger.info("SMS messages are no longer being monitored. Good-bye.")
        self.logger.log_metrics_summary()

    @property
    def last_sms_id(self) -> Optional[int]:
        return self.engine.last_id if self.engine is not None else None

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "active": is_watcher_active(self.store),
            "last_sms_id": self.last_sms_id,
        }
