"""
Availability slot rules - pure functions

Weekly availability blocks, adjusted by date-specific exceptions, are expanded
into fixed-length slots per date; those slots are what the availability cache
stores. Reads merge cached slots across providers and drop the ones that
collide with booked appointments, local or in the EMR.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional


@dataclass(frozen=True)
class AvailabilityBlock:
    day_of_week: int  # 0 = Sunday ... 6 = Saturday
    start_time: time
    end_time: time
    is_recurring: bool = True
    effective_date: Optional[date] = None
    expiration_date: Optional[date] = None


@dataclass(frozen=True)
class ScheduleException:
    exception_date: date
    exception_type: str = "unavailable"
    start_time: Optional[time] = None
    end_time: Optional[time] = None

    @property
    def all_day(self) -> bool:
        return self.start_time is None or self.end_time is None


def sunday_based_weekday(day: date) -> int:
    """0 = Sunday ... 6 = Saturday"""
    return (day.weekday() + 1) % 7


def generate_time_slots(
    start: time, end: time, duration_minutes: int, interval_minutes: Optional[int] = None
) -> list[tuple[time, time]]:
    """Slots of duration_minutes starting at start, every interval, ending no later than end"""
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")
    step = timedelta(minutes=interval_minutes or duration_minutes)
    length = timedelta(minutes=duration_minutes)

    anchor = date(2000, 1, 1)
    cursor = datetime.combine(anchor, start)
    limit = datetime.combine(anchor, end)
    slots = []
    while cursor + length <= limit:
        slots.append((cursor.time(), (cursor + length).time()))
        cursor += step
    return slots


def windows_for_date(blocks: Iterable[AvailabilityBlock], day: date) -> list[tuple[time, time]]:
    """Availability windows that apply on day"""
    weekday = sunday_based_weekday(day)
    windows = []
    for block in blocks:
        if block.day_of_week != weekday:
            continue
        if block.effective_date and block.effective_date > day:
            continue
        if block.expiration_date and block.expiration_date < day:
            continue
        if not block.is_recurring and block.effective_date != day:
            continue
        windows.append((block.start_time, block.end_time))
    return sorted(windows)


def subtract_window(
    windows: list[tuple[time, time]], start: time, end: time
) -> list[tuple[time, time]]:
    """Remove [start, end) from each window, splitting a window that straddles it"""
    remaining = []
    for w_start, w_end in windows:
        if end <= w_start or start >= w_end:
            remaining.append((w_start, w_end))
            continue
        if w_start < start:
            remaining.append((w_start, start))
        if end < w_end:
            remaining.append((end, w_end))
    return remaining


def apply_exceptions(
    windows: list[tuple[time, time]], exceptions: Iterable[ScheduleException], day: date
) -> list[tuple[time, time]]:
    """
    Adjust a day's windows for its exceptions.

    custom_hours replaces the weekly windows with the given hours. Any other
    type without times takes the whole day off; with times it blocks that
    range only.
    """
    todays = [e for e in exceptions if e.exception_date == day]
    custom = [
        (e.start_time, e.end_time)
        for e in todays
        if e.exception_type == "custom_hours" and not e.all_day
    ]
    if custom:
        windows = custom
    for exception in todays:
        if exception.exception_type == "custom_hours":
            continue
        if exception.all_day:
            return []
        windows = subtract_window(windows, exception.start_time, exception.end_time)
    return sorted(windows)


def build_day_slots(
    blocks: Iterable[AvailabilityBlock],
    day: date,
    duration_minutes: int,
    exceptions: Iterable[ScheduleException] = (),
) -> list[dict]:
    """Cache payload for one provider/date: sorted, de-duplicated open slots"""
    seen = set()
    slots = []
    for start, end in apply_exceptions(windows_for_date(blocks, day), exceptions, day):
        for slot_start, slot_end in generate_time_slots(start, end, duration_minutes):
            key = slot_start.strftime("%H:%M")
            if key in seen:
                continue
            seen.add(key)
            slots.append(
                {
                    "start_time": key,
                    "end_time": slot_end.strftime("%H:%M"),
                    "available": True,
                    "duration_minutes": duration_minutes,
                }
            )
    slots.sort(key=lambda s: s["start_time"])
    return slots


def slots_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval overlap: touching intervals do not conflict"""
    return a_start < b_end and b_start < a_end


EMR_INACTIVE_STATUSES = ("cancelled", "canceled", "declined", "noshow")


def _from_epoch_ms(value) -> datetime:
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc).replace(tzinfo=None)


def emr_busy_interval(
    appointment: dict, default_minutes: int = 60
) -> Optional[tuple[datetime, datetime]]:
    """Naive UTC (start, end) an EMR appointment occupies, or None when it frees the time"""
    status = str(appointment.get("Status") or "").replace(" ", "").lower()
    if status in EMR_INACTIVE_STATUSES or appointment.get("StartDate") is None:
        return None
    start = _from_epoch_ms(appointment["StartDate"])
    if appointment.get("EndDate"):
        return start, _from_epoch_ms(appointment["EndDate"])
    minutes = int(appointment.get("Duration") or default_minutes)
    return start, start + timedelta(minutes=minutes)


def filter_conflicts(
    slots: list[dict], busy: dict[str, list[tuple[datetime, datetime]]]
) -> list[dict]:
    """Drop slots whose [start_utc, end_utc) overlaps a busy interval of the same provider"""
    kept = []
    for slot in slots:
        intervals = busy.get(slot["provider_id"], [])
        if any(slots_overlap(slot["start_utc"], slot["end_utc"], s, e) for s, e in intervals):
            continue
        kept.append(slot)
    return kept


def merge_provider_slots(slots: list[dict]) -> dict[str, list[dict]]:
    """Group slots by date, sorted by time then provider, one slot per provider/date/time"""
    seen = set()
    by_date: dict[str, list[dict]] = {}
    for slot in sorted(slots, key=lambda s: (s["date"], s["start_time"], s["provider_id"])):
        key = (slot["provider_id"], slot["date"], slot["start_time"])
        if key in seen:
            continue
        seen.add(key)
        by_date.setdefault(slot["date"], []).append(slot)
    return by_date
