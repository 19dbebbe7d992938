"""
Application wiring for the progress sync engine, plus a small CLI for
inspecting and exercising a user's learning progress.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Callable, List, Optional

import config
from clients.remote_store import RemoteAggregateStore
from db.connection import Database
from db.progress import SqliteAggregateStore
from learning.errors import StoreError, UserActionError
from learning.models import Difficulty, LiveCounters
from learning.session_manager import SessionLifecycleManager
from learning.statistics_reader import StatisticsReader
from learning.store import AggregateStore, AggregateStoreClient, AuthContext
from logging_utils import log_system_info, setup_logging

logger = logging.getLogger(__name__)

DIFFICULTY_KEYS = {"e": Difficulty.EASY, "m": Difficulty.MEDIUM, "h": Difficulty.HARD}


def build_store(config_module=None) -> AggregateStore:
    """Create the backend named in PROGRESS_CONFIG"""
    settings = getattr(config_module, "PROGRESS_CONFIG", {}) if config_module else {}
    backend = settings.get("backend", "sqlite")

    if backend == "remote":
        return RemoteAggregateStore()
    if backend != "sqlite":
        logger.warning(f"Unknown backend '{backend}', falling back to SQLite")
    return SqliteAggregateStore(Database(settings.get("database_path")))


class ProgressApp:
    """Owns the engine objects for one signed-in user and their teardown"""

    def __init__(self, user_id: Optional[str] = None, store: Optional[AggregateStore] = None,
                 config_module=config):
        self.config = config_module
        self.auth = AuthContext(user_id or getattr(config_module, "DEFAULT_USER_ID", None))
        self.store = store or build_store(config_module)
        self.client = AggregateStoreClient(self.store, self.auth)
        self.reader = StatisticsReader(self.client)
        self.manager = SessionLifecycleManager(self.client, self.reader)
        self.shutdown_handlers: List[Callable] = [self.client.close]
        self._closed = False

    async def mount(self) -> LiveCounters:
        """Open the store, seed live counters and close abandoned sessions"""
        try:
            await self.store.initialize()
        except StoreError as e:
            logger.warning(f"{self.store.name} not ready: {e}")

        counters = await self.reader.load()
        await self.manager.recover_abandoned()
        return counters

    def add_shutdown_handler(self, handler: Callable):
        """Add a function to be called during shutdown"""
        self.shutdown_handlers.append(handler)

    async def shutdown(self):
        """Flush the active session, then release resources"""
        if self._closed:
            return
        self._closed = True

        logger.info("Flushing progress before shutdown...")
        await self.manager.end()

        for handler in self.shutdown_handlers:
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler()
                else:
                    handler()
            except Exception as e:
                logger.error(f"Error in shutdown handler: {e}")

    def install_signal_handlers(self):
        """Setup signal handlers for graceful shutdown"""
        loop = asyncio.get_running_loop()

        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, saving progress...")
            loop.call_soon_threadsafe(lambda: loop.create_task(self.shutdown()))

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)


def replay_events(manager: SessionLifecycleManager, events: str):
    """
    Apply a compact string of answer events to the active session.

    c = correct, x = incorrect, s = skip, r = reveal answer,
    e/m/h = switch to easy/medium/hard. Whitespace is ignored.
    """
    for event in events.lower():
        if event == "c":
            manager.record_answer(True)
        elif event == "x":
            manager.record_answer(False)
        elif event == "s":
            manager.skip()
        elif event == "r":
            manager.reveal_answer()
        elif event in DIFFICULTY_KEYS:
            manager.change_difficulty(DIFFICULTY_KEYS[event])
        elif event.isspace():
            continue
        else:
            raise ValueError(f"Unknown answer event {event!r}")


def _format_duration(seconds: int) -> str:
    minutes, seconds = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m {seconds}s"


def print_statistics(app: ProgressApp):
    stats = app.reader.statistics()
    if stats is None:
        print("No learning statistics yet.")
        return

    print(f"Sessions:        {stats.total_sessions}")
    print(f"Questions:       {stats.total_questions_correct}/{stats.total_questions_attempted} "
          f"({stats.accuracy_percentage:.1f}%)")
    print(f"Streak:          {stats.current_streak} (best {stats.best_streak})")
    print(f"Best score:      {stats.best_score}")
    print(f"Time spent:      {_format_duration(stats.total_time_spent_seconds)}")
    print(f"Easy/Med/Hard:   {stats.easy_accuracy:.1f}% / {stats.medium_accuracy:.1f}% / "
          f"{stats.hard_accuracy:.1f}%")


async def print_history(app: ProgressApp, limit: Optional[int] = None):
    sessions = await app.client.recent_sessions(limit)
    if not sessions:
        print("No completed sessions.")
        return
    for record in sessions:
        flag = " (recovered)" if record.recovered else ""
        print(f"{record.session_id[:8]}  {record.difficulty.value:<6}  "
              f"{record.questions_correct}/{record.questions_attempted}  "
              f"streak {record.max_streak}  {_format_duration(record.duration_seconds)}{flag}")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Learning progress tools")
    parser.add_argument("--user", help="User id (defaults to PROGRESS_USER_ID)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("stats", help="Show aggregate statistics")

    history = subparsers.add_parser("history", help="Show recent sessions")
    history.add_argument("--limit", type=int, default=None)

    record = subparsers.add_parser("record", help="Replay a practice session")
    record.add_argument("events", help="Answer events, e.g. 'cccxsr'")
    record.add_argument("--difficulty", default=Difficulty.EASY.value,
                        choices=[d.value for d in Difficulty])

    subparsers.add_parser("reset", help="Reset all statistics")
    subparsers.add_parser("delete-account", help="Delete all stored progress")

    return parser.parse_args(argv)


async def run_command(app: ProgressApp, args: argparse.Namespace) -> int:
    if args.command == "stats":
        print_statistics(app)
    elif args.command == "history":
        await print_history(app, args.limit)
    elif args.command == "record":
        app.manager.start(args.difficulty)
        try:
            replay_events(app.manager, args.events)
        except ValueError as e:
            print(f"Error: {e}")
            return 2
        record = await app.manager.end()
        if record is not None:
            print(f"Recorded {record.questions_correct}/{record.questions_attempted} correct, "
                  f"best streak {record.max_streak}")
        print_statistics(app)
    elif args.command in ("reset", "delete-account"):
        try:
            if args.command == "reset":
                await app.client.reset_statistics()
                await app.reader.load()
                print("All your learning statistics have been reset.")
            else:
                await app.client.delete_user_data()
                print("Your learning data has been deleted.")
        except UserActionError as e:
            print(f"Error: {e}")
            return 1
    return 0


async def main(argv=None) -> int:
    args = parse_args(argv)
    app_logger = setup_logging(config)
    log_system_info(app_logger, {"Version": getattr(config, "APP_VERSION", "1.0.0")})

    app = ProgressApp(user_id=args.user)
    app.install_signal_handlers()

    try:
        await app.mount()
        return await run_command(app, args)
    finally:
        await app.shutdown()


def cli():
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nInterrupted")


if __name__ == "__main__":
    cli()
