"""
Target-window estimation and adaptive polling for CampRush

Decides when a plan's detection URL should be polled, tightening the
cadence as the predicted registration-open time approaches.
"""
import asyncio
import re
import time
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple
import pytz

from .models import RegistrationPlan

logger = logging.getLogger(__name__)

KNOWN_TIME_MARGIN = timedelta(hours=1)
SEASONAL_GUESS_MARGIN = timedelta(hours=24)
DEFAULT_OPEN_HOUR = 9

# (month, day) each season's registration is assumed to open
SEASON_OPEN_DATES = {
    "spring": (3, 1),
    "summer": (6, 1),
    "fall": (9, 1),
    "winter": (12, 1),
}

YEAR_SEASON_PATTERN = re.compile(r"/(\d{4})/(spring|summer|fall|winter)")
DATE_PATTERN = re.compile(r"(\d{4})-(\d{2})-(\d{2})|(\d{2})-(\d{2})-(\d{4})")


@dataclass(frozen=True)
class TargetWindow:
    """Time range within which registration is believed likely to open"""
    start: datetime
    end: datetime
    target: datetime
    source: str


@dataclass(frozen=True)
class PollDecision:
    should_poll: bool
    next_check_at: datetime
    reason: str
    minutes_until_target: int
    interval_minutes: int


def _timezone(name: Optional[str]):
    try:
        return pytz.timezone(name or "UTC")
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone {name!r}, using UTC")
        return pytz.UTC


def _aware(moment: datetime, tz) -> datetime:
    if moment.tzinfo is None:
        return tz.localize(moment)
    return moment


def parse_date_from_url(url: Optional[str], timezone: str = "UTC") -> Optional[datetime]:
    """
    Try to read a registration date out of a tracked URL.

    Recognizes `/2025/summer` style season paths and `YYYY-MM-DD` or
    `MM-DD-YYYY` tokens. Returns 9:00 local time on that date, or None.
    """
    if not url:
        return None

    tz = _timezone(timezone)
    lowered = url.lower()

    match = YEAR_SEASON_PATTERN.search(lowered)
    if match:
        month, day = SEASON_OPEN_DATES[match.group(2)]
        return tz.localize(datetime(int(match.group(1)), month, day, DEFAULT_OPEN_HOUR))

    match = DATE_PATTERN.search(lowered)
    if match:
        if match.group(1):
            year, month, day = match.group(1), match.group(2), match.group(3)
        else:
            year, month, day = match.group(6), match.group(4), match.group(5)
        try:
            return tz.localize(datetime(int(year), int(month), int(day), DEFAULT_OPEN_HOUR))
        except ValueError:
            logger.debug(f"Ignoring malformed date token in {url}")

    return None


def seasonal_guess(now: datetime) -> datetime:
    """Next plausible registration season, in the timezone of `now`"""
    tz = now.tzinfo
    if now.month <= 3:
        naive = datetime(now.year, 3, 1, DEFAULT_OPEN_HOUR)
    elif now.month <= 9:
        naive = datetime(now.year, 8, 15, DEFAULT_OPEN_HOUR)
    else:
        naive = datetime(now.year + 1, 3, 1, DEFAULT_OPEN_HOUR)

    if hasattr(tz, "localize"):
        return tz.localize(naive)
    return naive.replace(tzinfo=tz)


def compute_target_window(plan: RegistrationPlan, now: Optional[datetime] = None) -> TargetWindow:
    """
    Compute the window around a plan's known or guessed opening time.

    Never raises: precision degrades from an explicit timestamp, to a
    date parsed from the URL, to a seasonal guess with a wider window.
    """
    tz = _timezone(plan.timezone)

    if plan.manual_open_at:
        target = _aware(plan.manual_open_at, tz)
        return TargetWindow(target - KNOWN_TIME_MARGIN, target + KNOWN_TIME_MARGIN, target, "manual")

    parsed = parse_date_from_url(plan.detect_url, plan.timezone)
    if parsed:
        return TargetWindow(parsed - KNOWN_TIME_MARGIN, parsed + KNOWN_TIME_MARGIN, parsed, "url")

    now = _aware(now, pytz.UTC) if now else datetime.now(pytz.UTC)
    guess = seasonal_guess(now.astimezone(tz))
    return TargetWindow(guess - SEASONAL_GUESS_MARGIN, guess + SEASONAL_GUESS_MARGIN, guess, "seasonal")


def polling_interval(minutes_until_target: float, minutes_since_target: float) -> Tuple[int, str]:
    """Cadence tier for a position relative to the target window"""
    # Tiers are measured to the window's target instant, not its start.
    # Measured to the start, an opening 90 minutes out (window starting
    # 30 minutes out) would already sit in the 1-minute tier.
    if minutes_until_target > 48 * 60:
        return 15, f"Outside target window ({round(minutes_until_target / 60)}h until target)"
    if minutes_until_target > 60:
        return 5, f"Within 48h window ({round(minutes_until_target / 60)}h until target)"
    if minutes_until_target >= -60:
        direction = "until" if minutes_until_target > 0 else "past"
        return 1, f"Within 1h window ({round(abs(minutes_until_target))}min {direction} target)"
    if minutes_since_target < 120:
        return 5, f"Recent target window ({round(minutes_since_target)}min past window)"
    return 15, f"Past target window ({round(minutes_since_target / 60)}h past window)"


class AdaptivePollScheduler:
    """
    Level-triggered poll throttle.

    Callers invoke `schedule` on a fixed low-frequency tick; it answers
    whether a network poll is due and when the next one would be.
    """

    def __init__(self, timezone: str = "America/Chicago"):
        self.tz = _timezone(timezone)

    def now(self) -> datetime:
        """Get current time in configured timezone"""
        return datetime.now(self.tz)

    def schedule(
        self,
        plan: RegistrationPlan,
        last_check_at: Optional[datetime],
        now: Optional[datetime] = None
    ) -> PollDecision:
        now = _aware(now, self.tz) if now else self.now()
        window = compute_target_window(plan, now)

        minutes_until_target = (window.target - now).total_seconds() / 60
        minutes_since_target = (now - window.end).total_seconds() / 60
        interval, reason = polling_interval(minutes_until_target, minutes_since_target)
        interval_delta = timedelta(minutes=interval)

        if last_check_at is None:
            should_poll = True
            next_check_at = now
        else:
            last_check_at = _aware(last_check_at, self.tz)
            should_poll = now - last_check_at >= interval_delta
            next_check_at = last_check_at + interval_delta

        return PollDecision(
            should_poll=should_poll,
            next_check_at=next_check_at,
            reason=reason,
            minutes_until_target=round(minutes_until_target),
            interval_minutes=interval,
        )

    def time_until(self, target: datetime) -> timedelta:
        """Get timedelta until target"""
        return _aware(target, self.tz) - self.now()

    def format_countdown(self, target: datetime) -> str:
        """Format remaining time as human-readable string"""
        total_seconds = int(self.time_until(target).total_seconds())

        if total_seconds < 0:
            return "NOW!"

        days = total_seconds // 86400
        hours = (total_seconds % 86400) // 3600
        minutes = (total_seconds % 3600) // 60
        seconds = total_seconds % 60

        parts = []
        if days > 0:
            parts.append(f"{days}d")
        if hours > 0:
            parts.append(f"{hours}h")
        if minutes > 0:
            parts.append(f"{minutes}m")
        parts.append(f"{seconds}s")

        return " ".join(parts)


class RateLimiter:
    """
    Rate limiter for outbound page fetches.

    Uses token bucket algorithm.
    """

    def __init__(self, requests_per_second: float = 2.0):
        self.rate = requests_per_second
        self.tokens = requests_per_second
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self):
        """Wait until a request can be made"""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self.last_update
            self.tokens = min(self.rate, self.tokens + elapsed * self.rate)
            self.last_update = now

            if self.tokens < 1:
                wait_time = (1 - self.tokens) / self.rate
                await asyncio.sleep(wait_time)
                self.tokens = 0
            else:
                self.tokens -= 1

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, *args):
        pass
