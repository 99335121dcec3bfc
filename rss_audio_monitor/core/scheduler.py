"""Scheduler for periodic subscription checks."""

import logging
import threading
from datetime import datetime
from typing import Callable, List, Optional, Set

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config.database import DatabaseHandler
from ..exceptions import RssMonitorError
from ..models.subscription import Subscription


class FeedScheduler:
    """Runs due subscription checks on a fixed tick.

    Each due subscription is checked on its own thread, so a slow feed never
    holds up the others or the next tick.
    """

    def __init__(
        self,
        logger: logging.Logger,
        db: DatabaseHandler,
        check_function: Callable[[Subscription], int],
        tick_seconds: int = 60
    ):
        """Initialize scheduler.

        Args:
            logger: Logger instance
            db: Database handler used for the due query
            check_function: Function checking one subscription
            tick_seconds: Seconds between due checks
        """
        self.logger = logger
        self.db = db
        self.check_function = check_function
        self.tick_seconds = tick_seconds

        self.scheduler = BackgroundScheduler()
        self._job_id = "subscription_tick"
        self._in_flight: Set[int] = set()
        self._lock = threading.Lock()

    def start(self) -> None:
        """Start the scheduler and run a first tick right away."""
        try:
            self.logger.info(f"Starting scheduler with tick interval: {self.tick_seconds} seconds")

            self.scheduler.add_job(
                self.tick,
                trigger=IntervalTrigger(seconds=self.tick_seconds),
                id=self._job_id,
                name="Subscription Tick",
                next_run_time=datetime.now(),
                replace_existing=True,
                max_instances=1,
                coalesce=True
            )

            self.scheduler.start()
            self.logger.info("Scheduler started successfully")

        except Exception as e:
            self.logger.error(f"Failed to start scheduler: {e}")
            raise

    def stop(self) -> None:
        """Stop the scheduler gracefully."""
        try:
            if self.scheduler.running:
                self.logger.info("Stopping scheduler...")
                self.scheduler.shutdown(wait=True)
                self.logger.info("Scheduler stopped")
        except Exception as e:
            self.logger.error(f"Error stopping scheduler: {e}")

    def tick(self) -> List[threading.Thread]:
        """Start a check for every subscription that is due.

        Errors never escape, so one bad tick does not stop the schedule.

        Returns:
            Threads started by this tick
        """
        try:
            due = self.db.get_subscriptions_to_check()
        except RssMonitorError as e:
            self.logger.error(f"Failed to load due subscriptions: {e}")
            return []

        if due:
            self.logger.debug(f"{len(due)} subscription(s) due for check")

        threads = []
        for subscription in due:
            thread = self._spawn_check(subscription)
            if thread is not None:
                threads.append(thread)
        return threads

    def check_now(self, subscription_id: int) -> Optional[threading.Thread]:
        """Check one subscription immediately, ignoring its schedule.

        Returns:
            The check thread, or None if a check is already running

        Raises:
            NotFoundError: If the subscription doesn't exist
        """
        subscription = self.db.get_subscription(subscription_id)
        self.logger.info(f"Triggering immediate check of {subscription.name}")

        thread = self._spawn_check(subscription)
        if thread is None:
            self.logger.info(f"Check of {subscription.name} already in progress, not starting another")
        return thread

    def is_checking(self, subscription_id: int) -> bool:
        with self._lock:
            return subscription_id in self._in_flight

    def _spawn_check(self, subscription: Subscription) -> Optional[threading.Thread]:
        with self._lock:
            if subscription.id in self._in_flight:
                self.logger.debug(f"Check of {subscription.name} already in progress")
                return None
            self._in_flight.add(subscription.id)

        thread = threading.Thread(
            target=self._safe_check,
            args=(subscription,),
            name=f"check-{subscription.id}",
            daemon=True
        )
        thread.start()
        return thread

    def _safe_check(self, subscription: Subscription) -> None:
        """Wrapper for the check function with error handling."""
        try:
            self.check_function(subscription)
        except Exception as e:
            self.logger.error(f"Error checking subscription {subscription.name}: {e}", exc_info=True)
        finally:
            with self._lock:
                self._in_flight.discard(subscription.id)

    def get_next_run_time(self) -> Optional[str]:
        """Get the next scheduled tick time.

        Returns:
            Next run time as string, or None if scheduler not running
        """
        job = self.scheduler.get_job(self._job_id)
        if job and job.next_run_time:
            return str(job.next_run_time)
        return None

    def is_running(self) -> bool:
        """Check if scheduler is running.

        Returns:
            True if running
        """
        return self.scheduler.running
