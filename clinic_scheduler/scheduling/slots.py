"""Slot catalog: the bookable start times of a clinic day.

The catalog is a pure function of the date and the configured shift
windows. Nothing here touches storage.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from functools import lru_cache
from typing import Iterable, Mapping

from clinic_scheduler.core import config
from clinic_scheduler.scheduling.errors import InvalidSlot, SlotCatalogConfigError

TIME_24H_PATTERN = re.compile(r'^(\d{1,2}):(\d{2})(?::(\d{2}))?$')
TIME_12H_PATTERN = re.compile(r'^(\d{1,2}):(\d{2})\s*([AaPp][Mm])$')


@dataclass(frozen=True)
class ShiftWindow:
    start: time
    end: time

    def __str__(self) -> str:
        return f'{format_slot_time(self.start)}-{format_slot_time(self.end)}'


def parse_slot_time(value: str) -> time:
    """Parse ``HH:MM`` (24h) or ``h:mm AM/PM`` into a time of day."""
    normalized = value.strip()

    match = TIME_24H_PATTERN.match(normalized)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        seconds = int(match.group(3) or 0)
        if hours > 23 or minutes > 59 or seconds > 59:
            raise ValueError(f'Invalid time: {value!r}')
        return time(hours, minutes, seconds)

    match = TIME_12H_PATTERN.match(normalized)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        period = match.group(3).upper()
        if not 1 <= hours <= 12 or minutes > 59:
            raise ValueError(f'Invalid time: {value!r}')
        if period == 'PM' and hours != 12:
            hours += 12
        elif period == 'AM' and hours == 12:
            hours = 0
        return time(hours, minutes)

    raise ValueError(f'Invalid time format {value!r}. Use HH:MM or h:mm AM/PM.')


def format_slot_time(slot_time: time) -> str:
    return slot_time.strftime('%H:%M')


def parse_shifts(raw: str) -> list[ShiftWindow]:
    windows: list[ShiftWindow] = []

    for chunk in raw.split(','):
        chunk = chunk.strip()
        if not chunk:
            continue

        try:
            start_raw, end_raw = chunk.split('-')
            window = ShiftWindow(parse_slot_time(start_raw), parse_slot_time(end_raw))
        except ValueError as exc:
            raise SlotCatalogConfigError(f'Invalid shift window {chunk!r}; expected HH:MM-HH:MM.') from exc

        windows.append(window)

    return windows


def parse_weekdays(values: Iterable[str]) -> frozenset[int]:
    weekdays = set()
    for value in values:
        try:
            weekday = int(value)
        except ValueError as exc:
            raise SlotCatalogConfigError(f'Invalid weekday {value!r}; expected 0 (Monday) to 6 (Sunday).') from exc
        if not 0 <= weekday <= 6:
            raise SlotCatalogConfigError(f'Invalid weekday {value!r}; expected 0 (Monday) to 6 (Sunday).')
        weekdays.add(weekday)
    return frozenset(weekdays)


def parse_weekday_shifts(raw: str) -> dict[int, list[ShiftWindow]]:
    """Parse ``5=10:00-13:00;6=09:00-12:00,14:00-16:00`` into per-weekday windows."""
    overrides: dict[int, list[ShiftWindow]] = {}

    for chunk in raw.split(';'):
        chunk = chunk.strip()
        if not chunk:
            continue

        weekday_raw, separator, windows_raw = chunk.partition('=')
        if not separator:
            raise SlotCatalogConfigError(f'Invalid weekday shifts {chunk!r}; expected WEEKDAY=HH:MM-HH:MM.')

        (weekday,) = parse_weekdays([weekday_raw.strip()])
        if weekday in overrides:
            raise SlotCatalogConfigError(f'Weekday {weekday} has more than one shift override.')
        overrides[weekday] = parse_shifts(windows_raw)

    return overrides


def _sorted_windows(windows: Iterable[ShiftWindow]) -> tuple[ShiftWindow, ...]:
    return tuple(sorted(windows, key=lambda window: window.start))


class SlotCatalog:
    def __init__(
        self,
        shifts: Iterable[ShiftWindow],
        granularity_minutes: int,
        closed_weekdays: Iterable[int] = (),
        weekday_shifts: Mapping[int, Iterable[ShiftWindow]] | None = None,
    ):
        self.shifts = _sorted_windows(shifts)
        self.granularity_minutes = granularity_minutes
        self.closed_weekdays = frozenset(closed_weekdays)
        self.weekday_shifts = {
            weekday: _sorted_windows(windows) for weekday, windows in (weekday_shifts or {}).items()
        }
        self._validate()
        self._daily_slots = tuple(self._build_daily_slots(self.shifts))
        self._weekday_slots = {
            weekday: tuple(self._build_daily_slots(windows)) for weekday, windows in self.weekday_shifts.items()
        }

    def _validate(self) -> None:
        if self.granularity_minutes <= 0:
            raise SlotCatalogConfigError('Slot granularity must be a positive number of minutes.')

        if 60 % self.granularity_minutes != 0:
            raise SlotCatalogConfigError(
                f'Slot granularity of {self.granularity_minutes} minutes does not divide an hour evenly.'
            )

        if not self.shifts:
            raise SlotCatalogConfigError('At least one shift window is required.')

        self._validate_windows(self.shifts)
        for weekday, windows in self.weekday_shifts.items():
            if not 0 <= weekday <= 6:
                raise SlotCatalogConfigError(f'Invalid weekday {weekday!r}; expected 0 (Monday) to 6 (Sunday).')
            self._validate_windows(windows)

    @staticmethod
    def _validate_windows(windows: tuple[ShiftWindow, ...]) -> None:
        previous_end: time | None = None
        for window in windows:
            if window.end <= window.start:
                raise SlotCatalogConfigError(f'Shift {window} ends before it starts.')
            if previous_end is not None and window.start < previous_end:
                raise SlotCatalogConfigError(f'Shift {window} overlaps the previous shift.')
            previous_end = window.end

    def _build_daily_slots(self, windows: tuple[ShiftWindow, ...]) -> list[time]:
        step = timedelta(minutes=self.granularity_minutes)
        # Any fixed date works; only the time of day is kept.
        anchor = date(2000, 1, 3)
        slots: list[time] = []

        for window in windows:
            current = datetime.combine(anchor, window.start)
            window_end = datetime.combine(anchor, window.end)
            while current + step <= window_end:
                slots.append(current.time())
                current += step

        return slots

    def shifts_for(self, slot_date: date) -> tuple[ShiftWindow, ...]:
        weekday = slot_date.weekday()
        if weekday in self.closed_weekdays:
            return ()
        return self.weekday_shifts.get(weekday, self.shifts)

    def generate_slots(self, slot_date: date) -> list[time]:
        weekday = slot_date.weekday()
        if weekday in self.closed_weekdays:
            return []
        return list(self._weekday_slots.get(weekday, self._daily_slots))

    def contains(self, slot_date: date, slot_time: time) -> bool:
        return slot_time in self.generate_slots(slot_date)

    def require_slot(self, slot_date: date, slot_time: time) -> None:
        windows = self.shifts_for(slot_date)
        if not windows:
            raise InvalidSlot(f'The clinic is closed on {slot_date.isoformat()}.')

        if not self.contains(slot_date, slot_time):
            shifts = ', '.join(str(window) for window in windows)
            raise InvalidSlot(
                f'{format_slot_time(slot_time)} is not a bookable slot. '
                f'Slots start every {self.granularity_minutes} minutes within {shifts}.'
            )


def load_slot_catalog() -> SlotCatalog:
    return SlotCatalog(
        shifts=parse_shifts(config.CLINIC_SHIFTS),
        granularity_minutes=config.SLOT_GRANULARITY_MINUTES,
        closed_weekdays=parse_weekdays(config.CLOSED_WEEKDAYS),
        weekday_shifts=parse_weekday_shifts(config.CLINIC_WEEKDAY_SHIFTS),
    )


@lru_cache(maxsize=1)
def get_slot_catalog() -> SlotCatalog:
    return load_slot_catalog()
