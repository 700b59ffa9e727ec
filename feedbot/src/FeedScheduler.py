"""FeedScheduler: the bot's owned scheduler object.

One feed is considered per tick, round-robin over the feeds currently in
the store. A single process-wide ``asyncio.Lock`` guarantees that at most
one update flow runs at any time, whether it was started by the timer or by
a manual trigger. Ticks run as their own tasks, so the timer keeps firing
during a long flow and those ticks are recorded as skipped.

Counters and the round-robin cursor reset on both start and stop.

.. code-block:: python

    >>> scheduler = FeedScheduler(store, updater, config)
    >>> await scheduler.start()
    >>> ...
    >>> await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .BotStats import BotStats, BotStatus, EventLog, StatusNotifier
from .Config import BotConfig
from .Feed import Feed
from .FeedStore import FeedStore
from .FeedUpdater import FeedUpdater, FeedUpdateResult
from .RetryPolicy import Clock, SystemClock
from .errors import ConfigError, RpcError, TransientError

logger = logging.getLogger(__name__)

UPDATE_IN_PROGRESS = "Update already in progress"


class FeedScheduler:
    """Timer loop, round-robin cursor and flight lock.

    :ivar store: Feed store, reloaded on every tick.
    :ivar updater: Runs the update flows.
    :ivar config: Bot configuration.
    :ivar event_log: Structured log shared with the updater.
    :ivar notifier: Status publisher.
    :ivar stats: Counters of the current run.
    :ivar feeds: Feeds seen by the last successful reload.
    :ivar cursor: Index of the next feed to consider.
    """

    def __init__(
        self,
        store: FeedStore,
        updater: FeedUpdater,
        config: BotConfig,
        clock: Clock | None = None,
        event_log: EventLog | None = None,
    ) -> None:
        self.store = store
        self.updater = updater
        self.config = config
        self.clock = clock or SystemClock()
        self.event_log = event_log or updater.event_log
        self.notifier = StatusNotifier()
        self.stats = BotStats()
        self.feeds: list[Feed] = []
        self.cursor = 0

        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._ticks: set[asyncio.Task] = set()
        self._tick_count = 0
        self._last_stats_time = self.clock.time()

    @property
    def status(self) -> BotStatus:
        return self.notifier.status

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    async def start(self) -> None:
        """Validate configuration, load feeds and start the timer.

        The first tick runs immediately.

        :raises ConfigError: If the configuration or feed store is invalid.
            The status is left at ``error``.
        """
        if self.status in (BotStatus.RUNNING, BotStatus.STARTING):
            logger.warning("Scheduler already running")
            return

        self.notifier.set(BotStatus.STARTING)
        try:
            self.config.check()
            self.feeds = self._select(await self.store.load(strict=True))
        except ConfigError as e:
            self.event_log.error(f"Failed to start: {e}")
            self.notifier.set(BotStatus.ERROR)
            raise
        except TransientError as e:
            # Unreachable store at start is retried by the ticks.
            self.event_log.warn(f"Feed store unavailable at start: {e}")
            self.feeds = []

        now = self.clock.time()
        self.stats = BotStats(start_time=now)
        self.cursor = 0
        self._tick_count = 0
        self._last_stats_time = now
        self._stop_event = asyncio.Event()

        self.notifier.set(BotStatus.RUNNING)
        self.event_log.info(
            f"Bot started with {len(self.feeds)} feeds, checking every {self.config.check_interval}s",
            feeds=len(self.feeds),
        )
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Halt the timer and wait for an in-flight flow to finish.

        The final counters are logged, then the counters and the cursor reset.
        """
        if self._task is None:
            self.notifier.set(BotStatus.STOPPED)
            return

        stopping_on_error = self.status is BotStatus.ERROR
        if not stopping_on_error:
            self.notifier.set(BotStatus.STOPPING)
        self._stop_event.set()
        await self._task
        self._task = None

        self.event_log.info(f"Final stats: {self.stats.summary(self.clock.time())}")
        self.stats = BotStats()
        self.cursor = 0
        if not stopping_on_error:
            self.notifier.set(BotStatus.STOPPED)

    async def wait(self) -> None:
        """Block until the timer loop ends."""
        if self._task is not None:
            await self._task

    async def _run(self) -> None:
        # Ticks run beside the timer so a long flow is visible as skipped ticks.
        while self.status is BotStatus.RUNNING:
            tick = asyncio.create_task(self.tick())
            self._ticks.add(tick)
            tick.add_done_callback(self._tick_done)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.check_interval)
            except asyncio.TimeoutError:
                continue
            break
        if self._ticks:
            await asyncio.wait(set(self._ticks))
        logger.debug("Scheduler loop ended")

    def _tick_done(self, tick: asyncio.Task) -> None:
        self._ticks.discard(tick)
        if tick.cancelled():
            return
        error = tick.exception()
        if error is not None:
            logger.error("Tick failed", exc_info=error)
            self.event_log.error(f"Tick failed: {error}")

    def _halt(self, status: BotStatus) -> None:
        self.notifier.set(status)
        self._stop_event.set()

    def _select(self, feeds: list[Feed]) -> list[Feed]:
        selected = set(self.config.selected_feed_ids)
        return [
            feed
            for feed in feeds
            if not feed.is_archived and (not selected or feed.id in selected)
        ]

    async def _reload_feeds(self) -> None:
        try:
            self.feeds = self._select(await self.store.load(strict=False))
        except (TransientError, ConfigError) as e:
            self.event_log.warn(
                f"Could not reload feeds, keeping {len(self.feeds)}: {e}",
                feeds=len(self.feeds),
            )

    def _note(self, note: str) -> None:
        self.stats.last_check_note = note

    async def tick(self) -> FeedUpdateResult | None:
        """Consider one feed.

        :returns: Result of the flow, or None when no flow ran.
        """
        now = self.clock.time()
        self.stats.record_check(now)

        if self._lock.locked():
            self._note("Skipped: update already in progress")
            self.event_log.debug("Skipped tick: update already in progress")
            return None

        async with self._lock:
            self._tick_count += 1
            try:
                if not await self._check_balance():
                    return None

                await self._reload_feeds()
                if not self.feeds:
                    self._note("No feeds configured")
                    return None

                index = self.cursor % len(self.feeds)
                feed = self.feeds[index]
                self.cursor = (index + 1) % len(self.feeds)

                if not await self.updater.is_eligible(feed):
                    self._note(f"Not ready: {feed.alias}")
                    self.event_log.debug(f"{feed.alias} not ready", feed=feed.alias)
                    return None

                self._note(f"Updating: {feed.alias}")
                return await self._run_flow(feed)
            finally:
                self._maybe_log_stats()

    async def update_single(self, feed_id: str) -> FeedUpdateResult:
        """Run one feed's flow now, outside the round-robin order.

        Fails fast when another flow holds the lock.

        :param feed_id: Id of the feed to update.
        :returns: Result of the flow.
        """
        if self._lock.locked():
            self.event_log.warn(f"Manual update of {feed_id} refused: update already in progress")
            return FeedUpdateResult(feed_id, feed_id, success=False, error=UPDATE_IN_PROGRESS)

        async with self._lock:
            await self._reload_feeds()
            feed = next((f for f in self.feeds if f.id == feed_id), None)
            if feed is None:
                self.event_log.error(f"Feed not found: {feed_id}")
                return FeedUpdateResult(feed_id, feed_id, success=False, error="Feed not found")
            return await self._run_flow(feed)

    async def _run_flow(self, feed: Feed) -> FeedUpdateResult:
        try:
            result = await self.updater.update(feed)
        except Exception as e:
            logger.exception(f"Error in update loop for {feed.alias}")
            self.event_log.error(f"Error: {e}", feed=feed.alias)
            self._note(f"Error: {e}")
            result = FeedUpdateResult(feed.id, feed.alias, success=False, error=str(e))

        now = self.clock.time()
        if result.success:
            self.stats.record_success(feed.id, now, result.price)
        elif result.skipped:
            self.stats.record_skip(feed.id)
        else:
            self.stats.record_failure(feed.id)
            self._check_circuit_breaker()
        return result

    def _check_circuit_breaker(self) -> None:
        failures = self.stats.consecutive_failures
        if failures < self.config.max_consecutive_failures:
            return
        self.event_log.error(
            f"Too many consecutive failures ({failures}), stopping bot",
            failures=failures,
        )
        self._halt(BotStatus.ERROR)

    async def _check_balance(self) -> bool:
        """Check the wallet every ``balance_check_every`` ticks.

        :returns: False when the balance is critical and the bot stopped.
        """
        if (self._tick_count - 1) % self.config.balance_check_every != 0:
            return True

        symbol = self.config.native_symbol
        try:
            balance = await self.updater.adapters.destination.balance()
        except RpcError as e:
            self.event_log.warn(f"Balance check failed: {e}")
            return True

        if balance < self.config.critical_balance:
            self.event_log.error(
                f"CRITICAL: balance {balance:.4f} {symbol} below {self.config.critical_balance} {symbol}, stopping bot",
                balance=balance,
            )
            self._note("Stopped: balance critical")
            self._halt(BotStatus.ERROR)
            return False
        if balance < self.config.min_balance:
            self.event_log.warn(
                f"Low balance: {balance:.4f} {symbol} (minimum {self.config.min_balance} {symbol})",
                balance=balance,
            )
        else:
            self.event_log.debug(f"Balance: {balance:.4f} {symbol}", balance=balance)
        return True

    def _maybe_log_stats(self) -> None:
        now = self.clock.time()
        if now - self._last_stats_time < self.config.stats_interval:
            return
        self._last_stats_time = now
        self.event_log.info(f"Stats: {self.stats.summary(now)}")

    def snapshot(self) -> dict[str, Any]:
        """Status, counters and feed selection for presentation layers."""
        return {
            "status": self.status.value,
            "busy": self.is_busy,
            "feeds": [feed.id for feed in self.feeds],
            "cursor": self.cursor,
            "stats": self.stats.snapshot(self.clock.time()),
        }


