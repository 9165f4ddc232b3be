"""Daily settlement watcher: cutover scheduling, check loop and alerting.

At each daily cutover the day's state is reset and a check runs at once.
Further checks fire every ``CHECK_INTERVAL_MINUTES`` until the settlement is
complete, at which point the check job cancels itself. The next cutover
starts a fresh cycle.
"""

import logging
import time
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, tzinfo
from enum import Enum
from typing import Callable, List, Optional, Tuple
from zoneinfo import ZoneInfo

import schedule

from ..data.db import Database, QueryError, bind_day
from .alerts import DeliveryResult, WebhookNotifier, delivered
from .cutover import has_passed_today, next_wake, parse_cutover, seconds_until

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    """Result of a single check."""

    SKIPPED_COMPLETE = "SKIPPED_COMPLETE"
    SETTLING = "SETTLING"
    QUERY_FAILED = "QUERY_FAILED"
    ALERTED = "ALERTED"
    ALERT_SUPPRESSED = "ALERT_SUPPRESSED"
    COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class DayState:
    """Per-day run state, reset at every cutover."""

    day: date
    completed: bool = False
    alert_sent: bool = False
    last_alert_at: Optional[datetime] = None
    checks: int = 0


def is_complete(count: int, count_mode: str = "completed") -> bool:
    """Interpret a query count.

    ``completed`` mode counts finished records, so any row means done.
    ``pending`` mode counts outstanding records, so zero means done.
    """
    if count_mode == "pending":
        return count == 0
    return count > 0


def alert_due(state: DayState, now: datetime, alert_interval: timedelta) -> bool:
    if not state.alert_sent or state.last_alert_at is None:
        return True
    return now - state.last_alert_at >= alert_interval


def activity_age(latest, now: datetime, tz: tzinfo) -> Optional[timedelta]:
    """Age of the latest activity timestamp relative to ``now``.

    Naive timestamps are read in ``tz``; a naive ``now`` is host local time.
    """
    if not isinstance(latest, datetime):
        return None
    if latest.tzinfo is None:
        latest = latest.replace(tzinfo=tz)
    return now.astimezone() - latest


class SettlementWatcher:
    """Runs the daily settlement check cycle on a ``schedule.Scheduler``."""

    def __init__(
        self,
        db: Database,
        notifier: WebhookNotifier,
        cutover: str = "12:00",
        check_interval: timedelta = timedelta(minutes=30),
        alert_interval: timedelta = timedelta(minutes=60),
        completion_query: str = "",
        count_mode: str = "completed",
        activity_query: Optional[str] = None,
        activity_grace: timedelta = timedelta(minutes=30),
        timezone: str = "Asia/Shanghai",
        alert_template: str = "Payment settlement for {day} is still outstanding (count: {count}).",
        complete_template: str = "Payment settlement for {day} is complete (count: {count}).",
        scheduler: Optional[schedule.Scheduler] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.notifier = notifier
        self.cutover = parse_cutover(cutover)
        self.cutover_text = self.cutover.strftime("%H:%M")
        self.check_interval = check_interval
        self.alert_interval = alert_interval
        self.completion_query = completion_query
        self.count_mode = count_mode
        self.activity_query = activity_query
        self.activity_grace = activity_grace
        self.tz = ZoneInfo(timezone)
        self.alert_template = alert_template
        self.complete_template = complete_template
        self.scheduler = scheduler or schedule.Scheduler()
        self.clock = clock

        self.state: Optional[DayState] = None
        self.daily_job: Optional[schedule.Job] = None
        self.check_job: Optional[schedule.Job] = None
        self._cycle = 0

    @classmethod
    def from_settings(cls, settings, db: Database, notifier: WebhookNotifier, **kwargs) -> "SettlementWatcher":
        return cls(
            db=db,
            notifier=notifier,
            cutover=settings.CUTOVER,
            check_interval=timedelta(minutes=settings.CHECK_INTERVAL_MINUTES),
            alert_interval=timedelta(minutes=settings.ALERT_INTERVAL_MINUTES),
            completion_query=settings.COMPLETION_QUERY,
            count_mode=settings.COUNT_MODE,
            activity_query=settings.ACTIVITY_QUERY,
            activity_grace=timedelta(minutes=settings.ACTIVITY_GRACE_MINUTES),
            timezone=settings.TIMEZONE,
            alert_template=settings.ALERT_TEMPLATE,
            complete_template=settings.COMPLETE_TEMPLATE,
            **kwargs,
        )

    # -- single check -----------------------------------------------------

    def _format(self, template: str, state: DayState, count: int) -> str:
        return template.format(day=state.day.isoformat(), count=count)

    def _still_settling(self, now: datetime) -> bool:
        if not self.activity_query:
            return False

        latest = self.db.scalar(self.activity_query)
        age = activity_age(latest, now, self.tz)
        if age is None:
            logger.info("No settlement activity found")
            return False

        logger.info("Latest settlement activity %s ago", age)
        return age < self.activity_grace

    def check(self, state: DayState, now: datetime) -> Tuple[DayState, Outcome]:
        """Run one check against ``state`` and return the new state.

        Query failures leave the state untouched apart from the check count.
        """
        if state.completed:
            logger.info("Settlement for %s already complete, skipping check", state.day)
            return state, Outcome.SKIPPED_COMPLETE

        state = replace(state, checks=state.checks + 1)

        try:
            if self._still_settling(now):
                logger.info("Settlement activity within %s, skipping this check", self.activity_grace)
                return state, Outcome.SETTLING

            count = self.db.count(bind_day(self.completion_query, state.day))
        except QueryError as e:
            logger.error("Settlement query failed: %s", e)
            return state, Outcome.QUERY_FAILED

        logger.info("Settlement query count for %s: %d (%s mode)", state.day, count, self.count_mode)

        if is_complete(count, self.count_mode):
            results = self.notifier.send(self._format(self.complete_template, state, count), mention=False)
            self._log_delivery("completion notice", results)
            logger.info("Settlement for %s complete, stopping checks for today", state.day)
            return replace(state, completed=True), Outcome.COMPLETED

        if not alert_due(state, now, self.alert_interval):
            logger.info(
                "Settlement outstanding, alert already sent at %s (resend after %s)",
                state.last_alert_at, self.alert_interval,
            )
            return state, Outcome.ALERT_SUPPRESSED

        results = self.notifier.send(self._format(self.alert_template, state, count), mention=True)
        self._log_delivery("outstanding alert", results)
        return replace(state, alert_sent=True, last_alert_at=now), Outcome.ALERTED

    def _log_delivery(self, what: str, results: List[DeliveryResult]) -> None:
        if not results:
            return
        if delivered(results):
            logger.info("Sent %s to %d/%d webhook(s)", what, sum(r.ok for r in results), len(results))
        else:
            logger.error("Failed to deliver %s: %s", what, "; ".join(f"{r.url}: {r.error}" for r in results))

    # -- scheduling -------------------------------------------------------

    def tick(self, cycle: Optional[int] = None):
        """Check job body; cancels the job once the day is complete.

        A job left over from an earlier cycle cancels itself without checking.
        run_pending() can still call it once after start_day() removed it.
        """
        if cycle is not None and cycle != self._cycle:
            return schedule.CancelJob

        if self.state is None:
            self.state = DayState(day=self.clock().date())

        if self.state.completed:
            return schedule.CancelJob

        self.state, outcome = self.check(self.state, self.clock())
        logger.debug("Check #%d outcome: %s", self.state.checks, outcome.value)

        if self.state.completed:
            self.check_job = None
            return schedule.CancelJob
        return None

    def start_day(self) -> None:
        """Cutover: reset the day's state, check now and start the check timer."""
        if self.check_job is not None:
            self.scheduler.cancel_job(self.check_job)
            self.check_job = None

        self._cycle += 1
        now = self.clock()
        self.state = DayState(day=now.date())
        logger.info("Cutover reached, starting settlement checks for %s", self.state.day)

        self.tick()
        if self.state.completed:
            return

        seconds = max(1, int(self.check_interval.total_seconds()))
        self.check_job = self.scheduler.every(seconds).seconds.do(self.tick, self._cycle)
        logger.info("Re-checking every %s", self.check_interval)

    def install(self, run_now: bool = False) -> None:
        """Register the daily cutover job.

        Args:
            run_now: Start today's cycle immediately when the cutover has
                already passed
        """
        if self.daily_job is not None:
            self.scheduler.cancel_job(self.daily_job)
        self.daily_job = self.scheduler.every().day.at(self.cutover_text).do(self.start_day)

        now = self.clock()
        if run_now and has_passed_today(self.cutover, now):
            logger.info("Cutover %s already passed today, starting now", self.cutover_text)
            self.start_day()
        else:
            logger.info("Waiting for cutover at %s (%.0f s)", next_wake(self.cutover, now), seconds_until(self.cutover, now))

    def run_once(self) -> Outcome:
        """Run a single check for today outside the schedule."""
        today = self.clock().date()
        if self.state is None or self.state.day != today:
            self.state = DayState(day=today)
        self.state, outcome = self.check(self.state, self.clock())
        return outcome

    def run_forever(self, poll_seconds: int = 30) -> None:
        """Poll the scheduler until the process is stopped."""
        while True:
            self.scheduler.run_pending()
            idle = self.scheduler.idle_seconds
            if idle is None:
                idle = poll_seconds
            time.sleep(min(max(idle, 0), poll_seconds))
