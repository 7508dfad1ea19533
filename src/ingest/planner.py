"""Split a requested time range into per-request chunks.

Each calendar day is cut into windows that follow the observed daily traffic
profile: a long quiet morning, then progressively shorter windows through the
busy afternoon and evening.  Sizing windows to the expected load keeps each
request's result volume roughly even and under the API's response ceiling.
"""

from collections.abc import Sequence
from datetime import datetime, time, timedelta

from src.ingest.models import TimeChunk

# Hours at which a new window starts; the last window runs to midnight.
# 00:00-11:59, 12:00-16:59, 17:00-18:59, 19:00-20:59, 21:00-23:59
DEFAULT_DAY_BOUNDARIES: tuple[int, ...] = (0, 12, 17, 19, 21)


def parse_boundaries(text: str) -> tuple[int, ...]:
    """Parse a comma-separated boundary list such as ``"0,12,17,19,21"``.

    Raises:
        ValueError: If the list is empty, does not start at 0, is not strictly
            increasing, or contains hours outside 0-23.
    """
    try:
        hours = tuple(int(part) for part in text.split(",") if part.strip())
    except ValueError:
        raise ValueError(f"Chunk boundaries must be integers, got '{text}'") from None
    validate_boundaries(hours)
    return hours


def validate_boundaries(hours: Sequence[int]) -> None:
    if not hours:
        raise ValueError("At least one chunk boundary is required")
    if hours[0] != 0:
        raise ValueError("The first chunk boundary must be hour 0")
    if any(h < 0 or h > 23 for h in hours):
        raise ValueError("Chunk boundaries must be hours between 0 and 23")
    if any(b <= a for a, b in zip(hours, hours[1:], strict=False)):
        raise ValueError("Chunk boundaries must be strictly increasing")


def _day_windows(day: datetime, boundaries: Sequence[int]) -> list[tuple[datetime, datetime]]:
    """Return the ``[start, end)`` windows of one day (``day`` is its midnight)."""
    next_midnight = datetime.combine(day.date() + timedelta(days=1), time.min, tzinfo=day.tzinfo)
    starts = [day + timedelta(hours=h) for h in boundaries]
    ends = [*starts[1:], next_midnight]
    return list(zip(starts, ends, strict=True))


def _label(start: datetime, end: datetime) -> str:
    # A window ending exactly at midnight reads 24:00, not 00:00
    end_text = "24:00" if end.time() == time.min and end.date() > start.date() else end.strftime("%H:%M")
    return f"{start:%Y-%m-%d %H:%M}-{end_text}"


def plan_chunks(
    start: datetime,
    end: datetime,
    boundaries: Sequence[int] = DEFAULT_DAY_BOUNDARIES,
) -> list[TimeChunk]:
    """Split ``[start, end)`` into chronological, non-overlapping chunks.

    Every day touched by the range contributes its windows, each clipped to
    the caller's bounds; windows whose clipped range is empty are dropped.
    Together the chunks cover ``[start, end)`` exactly.

    Args:
        start: Inclusive start of the range.
        end: Exclusive end of the range.
        boundaries: Window start hours for each day.

    Returns:
        The chunks in chronological order (empty when ``start == end``).

    Raises:
        ValueError: If ``start > end`` or the boundaries are invalid.
    """
    if start > end:
        raise ValueError(f"start ({start.isoformat()}) must not be after end ({end.isoformat()})")
    validate_boundaries(boundaries)

    chunks: list[TimeChunk] = []
    day = datetime.combine(start.date(), time.min, tzinfo=start.tzinfo)
    while day < end:
        for window_start, window_end in _day_windows(day, boundaries):
            clipped_start = max(window_start, start)
            clipped_end = min(window_end, end)
            if clipped_start >= clipped_end:
                continue
            chunks.append(
                TimeChunk(
                    start=clipped_start,
                    end=clipped_end,
                    label=_label(clipped_start, clipped_end),
                )
            )
        day = datetime.combine(day.date() + timedelta(days=1), time.min, tzinfo=start.tzinfo)
    return chunks
