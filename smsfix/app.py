import argparse
import os
import time
from datetime import datetime
from typing import Dict

from . import __version__
from .config import ConfigError, AppConfig, OFFSET_METHODS, load_config
from .database import MESSAGE_TYPE_INBOX
from .env import load_env
from .fixer import is_marked
from .logger import get_logger
from .service import FixService, is_watcher_active
from .store import ChangePoller, MessageStore, StoreError


def _config_from_args(args: argparse.Namespace) -> AppConfig:
    env: Dict[str, str] = dict(os.environ)
    overrides = {
        "SMSFIX_DB": getattr(args, "db", None),
        "SMSFIX_OFFSET_METHOD": getattr(args, "offset_method", None),
        "SMSFIX_OFFSET_HOURS": getattr(args, "offset_hours", None),
        "SMSFIX_POLL_INTERVAL": getattr(args, "interval", None),
    }
    for key, value in overrides.items():
        if value is not None:
            env[key] = str(value)
    if getattr(args, "cdma", False):
        env["SMSFIX_CDMA"] = "true"
    try:
        return load_config(env)
    except ConfigError as e:
        raise SystemExit(str(e))


def _format_date(millis: int) -> str:
    return datetime.fromtimestamp(millis / 1000).strftime("%Y-%m-%d %H:%M:%S")


def cmd_watch(args: argparse.Namespace) -> None:
    config = _config_from_args(args)
    logger = get_logger(level=config.log_level)
    store = MessageStore(config.db_path)
    service = FixService(store, config.settings, logger=logger, mark_existing=config.mark_existing)
    poller = ChangePoller(store)
    try:
        service.start()
        poller.check()
        while True:
            time.sleep(config.poll_interval)
            poller.check()
    except KeyboardInterrupt:
        pass
    except StoreError as e:
        logger.critical("Message store unavailable", error=str(e))
        raise SystemExit(f"Message store unavailable: {e}")
    finally:
        service.stop()
        poller.close()
        store.close()


def cmd_receive(args: argparse.Namespace) -> None:
    config = _config_from_args(args)
    store = MessageStore(config.db_path)
    try:
        message_id = store.insert_message(body=args.body, address=args.address, date=args.date)
    except StoreError as e:
        raise SystemExit(str(e))
    finally:
        store.close()
    print(f"Received message {message_id}")


def cmd_delete(args: argparse.Namespace) -> None:
    config = _config_from_args(args)
    store = MessageStore(config.db_path)
    try:
        deleted = store.delete_message(args.id)
    except StoreError as e:
        raise SystemExit(str(e))
    finally:
        store.close()
    if not deleted:
        raise SystemExit(f"Message not found: {args.id}")
    print(f"Deleted message {args.id}")


def cmd_list(args: argparse.Namespace) -> None:
    config = _config_from_args(args)
    magic = config.settings.magic
    store = MessageStore(config.db_path)
    try:
        messages = store.list_messages(limit=args.limit)
    except StoreError as e:
        raise SystemExit(str(e))
    finally:
        store.close()
    if not messages:
        print("No messages in store.")
        return
    for message in messages:
        flag = "fixed" if is_marked(message.date, magic) else "-"
        kind = "in" if message.type == MESSAGE_TYPE_INBOX else "out"
        print(f"{message.id:>6} {kind:<3} {_format_date(message.date)} {flag:<5} {message.address}: {message.body}")


def cmd_status(args: argparse.Namespace) -> None:
    config = _config_from_args(args)
    magic = config.settings.magic
    store = MessageStore(config.db_path)
    try:
        active = is_watcher_active(store)
        inbox = store.query_inbox()
    except StoreError as e:
        raise SystemExit(str(e))
    finally:
        store.close()
    marked = sum(1 for row in inbox if is_marked(row.date, magic))
    print(f"Database: {config.db_path}")
    print(f"Watcher active: {'yes' if active else 'no'}")
    print(f"Newest inbound id: {inbox[0].id if inbox else -1}")
    print(f"Inbound messages: {len(inbox)} (fixed: {marked}, unfixed: {len(inbox) - marked})")


def main():
    # Load .env if present (SMSFIX_DB, SMSFIX_OFFSET_METHOD, etc.)
    load_env()
    parser = argparse.ArgumentParser(prog="smsfix", description="Fix the timestamps of incoming text messages")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")
    wat = subparsers.add_parser("watch", help="Monitor the message store and fix new inbound messages")
    wat.add_argument("--db", help="Path to SQLite message store (or set SMSFIX_DB)")
    wat.add_argument("--offset-method", choices=list(OFFSET_METHODS), help="How to compute the correction")
    wat.add_argument("--offset-hours", type=int, help="Offset in hours for the manual method")
    wat.add_argument("--cdma", action="store_true", help="Only shift messages dated ahead of the local clock")
    wat.add_argument("--interval", type=float, help="Seconds between checks for outside changes")
    wat.set_defaults(func=cmd_watch)

    rcv = subparsers.add_parser("receive", help="Insert an inbound message")
    rcv.add_argument("--db", help="Path to SQLite message store (or set SMSFIX_DB)")
    rcv.add_argument("--body", required=True, help="Message text")
    rcv.add_argument("--address", default="", help="Sender address")
    rcv.add_argument("--date", type=int, help="Message date in ms since epoch (default: now)")
    rcv.set_defaults(func=cmd_receive)

    dlt = subparsers.add_parser("delete", help="Delete a message by id")
    dlt.add_argument("--db", help="Path to SQLite message store (or set SMSFIX_DB)")
    dlt.add_argument("--id", type=int, required=True, help="Message id")
    dlt.set_defaults(func=cmd_delete)

    lst = subparsers.add_parser("list", help="List stored messages, newest first")
    lst.add_argument("--db", help="Path to SQLite message store (or set SMSFIX_DB)")
    lst.add_argument("--limit", type=int, help="Show at most this many messages")
    lst.set_defaults(func=cmd_list)

    sts = subparsers.add_parser("status", help="Show watcher and store status")
    sts.add_argument("--db", help="Path to SQLite message store (or set SMSFIX_DB)")
    sts.set_defaults(func=cmd_status)

    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
