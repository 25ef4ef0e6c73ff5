from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Sequence

from .models import ClassificationEvent, TimeSegment

DEFAULT_SEGMENT_DURATION = timedelta(minutes=20)


def build_time_segments(
    events: Sequence[ClassificationEvent],
    default_duration: timedelta = DEFAULT_SEGMENT_DURATION,
    max_segment_duration: timedelta | None = None,
) -> list[TimeSegment]:
    """Turn classification events into contiguous, day-clipped segments.

    Each event lasts until the next one; the last event of the log lasts
    ``default_duration``. A segment never crosses its local midnight, and
    whatever is cut off there is dropped rather than carried into the next
    day. Empty segments are skipped.
    """
    if not events:
        return []

    ordered = sorted(events, key=lambda event: _local(event.occurred_at))
    segments: list[TimeSegment] = []
    for index, event in enumerate(ordered):
        start = _local(event.occurred_at)
        if index + 1 < len(ordered):
            end = _local(ordered[index + 1].occurred_at)
        else:
            end = start + default_duration
        if max_segment_duration is not None:
            end = min(end, start + max_segment_duration)
        end = min(end, next_local_midnight(start))
        if end <= start:
            continue

        segments.append(
            TimeSegment(
                start=start,
                end=end,
                theme=event.theme,
                analysis_text=event.analysis_text,
                confidence=event.confidence,
            )
        )
    return segments


def group_segments_by_day(segments: Sequence[TimeSegment]) -> dict[date, list[TimeSegment]]:
    grouped: dict[date, list[TimeSegment]] = defaultdict(list)
    for segment in sorted(segments, key=lambda row: row.start):
        grouped[_local(segment.start).date()].append(segment)
    return {day: grouped[day] for day in sorted(grouped)}


def segments_for_range(
    events: Sequence[ClassificationEvent],
    start_day: date,
    end_day: date,
    default_duration: timedelta = DEFAULT_SEGMENT_DURATION,
) -> list[TimeSegment]:
    segments = build_time_segments(events, default_duration)
    return [segment for segment in segments if start_day <= _local(segment.start).date() <= end_day]


def summarize_by_category(segments: Sequence[TimeSegment]) -> dict[str, int]:
    totals: dict[str, int] = defaultdict(int)
    for segment in segments:
        totals[segment.theme.category or "Other"] += segment.duration_seconds
    return dict(sorted(totals.items(), key=lambda item: (-item[1], item[0])))


def local_day_start(day: date) -> datetime:
    return datetime.combine(day, time.min).astimezone()


def next_local_midnight(moment: datetime) -> datetime:
    return local_day_start(_local(moment).date() + timedelta(days=1))


def format_duration(total_seconds: int) -> str:
    seconds = max(0, int(total_seconds))
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)

    if hours:
        return f"{hours}h {minutes:02d}m"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


def _local(moment: datetime) -> datetime:
    # Naive timestamps are taken as local time.
    return moment.astimezone()
