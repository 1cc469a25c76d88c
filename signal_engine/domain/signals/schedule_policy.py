"""
Scheduling policy for the periodic signal jobs.

A pure function of a datetime decides whether a job may run, so the jobs
themselves carry no wall-clock or calendar logic and can be driven by any
timer. Windows are expressed in the market timezone (IST for NSE).
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from zoneinfo import ZoneInfo

IST = ZoneInfo("Asia/Kolkata")


class Job(str, Enum):
    """Periodic jobs driven by the job runner."""

    GENERATE = "generate"
    NOTIFY = "notify"
    RECONCILE = "reconcile"
    EXPIRE = "expire"
    VERIFY = "verify"


# NSE trading holidays
NSE_HOLIDAYS = frozenset(
    {
        # 2025
        date(2025, 2, 26),   # Mahashivratri
        date(2025, 3, 14),   # Holi
        date(2025, 3, 31),   # Id-Ul-Fitr
        date(2025, 4, 10),   # Mahavir Jayanti
        date(2025, 4, 14),   # Dr. Ambedkar Jayanti
        date(2025, 4, 18),   # Good Friday
        date(2025, 5, 1),    # Maharashtra Day
        date(2025, 8, 15),   # Independence Day
        date(2025, 8, 27),   # Ganesh Chaturthi
        date(2025, 10, 2),   # Gandhi Jayanti
        date(2025, 10, 21),  # Diwali Laxmi Pujan
        date(2025, 10, 22),  # Diwali Balipratipada
        date(2025, 11, 5),   # Guru Nanak Jayanti
        date(2025, 12, 25),  # Christmas
        # 2026
        date(2026, 1, 26),   # Republic Day
        date(2026, 2, 17),   # Mahashivratri
        date(2026, 3, 3),    # Holi
        date(2026, 3, 20),   # Id-Ul-Fitr
        date(2026, 3, 30),   # Mahavir Jayanti
        date(2026, 4, 3),    # Good Friday
        date(2026, 4, 14),   # Dr. Ambedkar Jayanti
        date(2026, 5, 1),    # Maharashtra Day
        date(2026, 5, 27),   # Bakri Id
        date(2026, 6, 26),   # Muharram
        date(2026, 8, 15),   # Independence Day
        date(2026, 8, 16),   # Ganesh Chaturthi
        date(2026, 10, 2),   # Gandhi Jayanti
        date(2026, 10, 9),   # Dussehra
        date(2026, 10, 29),  # Diwali Laxmi Pujan
        date(2026, 10, 30),  # Diwali Balipratipada
        date(2026, 11, 16),  # Guru Nanak Jayanti
        date(2026, 12, 25),  # Christmas
    }
)


@dataclass(frozen=True)
class Window:
    """Half-open [start, end) time-of-day window."""

    start: time
    end: time

    def contains(self, moment: time) -> bool:
        return self.start <= moment < self.end


DEFAULT_WINDOWS: dict[Job, tuple[Window, ...]] = {
    Job.GENERATE: (
        Window(time(9, 30), time(9, 35)),
        Window(time(13, 0), time(13, 5)),
    ),
    Job.NOTIFY: (Window(time(9, 0), time(16, 0)),),
    Job.RECONCILE: (Window(time(9, 0), time(17, 0)),),
    Job.EXPIRE: (Window(time(0, 0), time.max),),
    Job.VERIFY: (Window(time(9, 0), time(17, 0)),),
}


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def is_trading_day(day: date, holidays: frozenset[date] = NSE_HOLIDAYS) -> bool:
    """Check if a date is an NSE trading day (not weekend, not holiday)."""
    return not is_weekend(day) and day not in holidays


@dataclass(frozen=True)
class SchedulePolicy:
    """Decides whether a periodic job may run at a given moment.

    Attributes:
        tz: Market timezone used to evaluate windows and trading days.
        windows: Allowed time-of-day windows per job.
        holidays: Non-trading dates.
        trading_days_only: Jobs listed here only run on trading days.
    """

    tz: ZoneInfo = IST
    windows: dict[Job, tuple[Window, ...]] = field(
        default_factory=lambda: dict(DEFAULT_WINDOWS)
    )
    holidays: frozenset[date] = NSE_HOLIDAYS
    trading_days_only: frozenset[Job] = frozenset(
        {Job.GENERATE, Job.NOTIFY, Job.RECONCILE, Job.VERIFY}
    )

    def should_run(self, job: Job, now: datetime) -> bool:
        local = now.astimezone(self.tz)
        if job in self.trading_days_only and not is_trading_day(
            local.date(), self.holidays
        ):
            return False
        return any(w.contains(local.time()) for w in self.windows.get(job, ()))


class AlwaysRun(SchedulePolicy):
    """Policy that never blocks a job, for manual triggers and tests."""

    def should_run(self, job: Job, now: datetime) -> bool:
        return True
