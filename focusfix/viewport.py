from __future__ import annotations

from datetime import datetime, timedelta

from .models import TimeSegment

MS_PER_DAY = 24 * 60 * 60 * 1000
MS_PER_HOUR = 60 * 60 * 1000
MIN_SEGMENT_WIDTH = 2.0


class TimelineViewport:
    """Zoom and pan state for drawing one day per row.

    ``x = (instant - day_start) * pixels_per_ms + pan``. Zoom stays within
    ``[min_zoom, max_zoom]`` and pan within one day-width either way.
    """

    def __init__(
        self,
        base_day_width: float = 1000.0,
        min_zoom: float = 0.2,
        max_zoom: float = 2.0,
        zoom: float = 1.0,
        pan: float = 0.0,
    ):
        if base_day_width <= 0:
            raise ValueError("Day width must be positive.")
        if min_zoom <= 0 or min_zoom > max_zoom:
            raise ValueError("Zoom range is invalid.")
        self.base_day_width = float(base_day_width)
        self.min_zoom = float(min_zoom)
        self.max_zoom = float(max_zoom)
        self._zoom = self._clamp_zoom(zoom)
        self._pan = self._clamp_pan(pan)

    @property
    def zoom(self) -> float:
        return self._zoom

    @property
    def pan(self) -> float:
        return self._pan

    @property
    def day_width(self) -> float:
        return self.base_day_width * self._zoom

    @property
    def pixels_per_ms(self) -> float:
        return self.day_width / MS_PER_DAY

    def set_zoom(self, zoom: float) -> float:
        self._zoom = self._clamp_zoom(zoom)
        self._pan = self._clamp_pan(self._pan)
        return self._zoom

    def zoom_by(self, factor: float) -> float:
        return self.set_zoom(self._zoom * factor)

    def set_pan(self, pan: float) -> float:
        self._pan = self._clamp_pan(pan)
        return self._pan

    def drag_by(self, delta: float) -> float:
        return self.set_pan(self._pan + delta)

    def reset(self) -> None:
        self._zoom = self._clamp_zoom(1.0)
        self._pan = 0.0

    def map_to_x(self, instant: datetime, day_start: datetime) -> float:
        elapsed_ms = (instant - day_start) / timedelta(milliseconds=1)
        return elapsed_ms * self.pixels_per_ms + self._pan

    def segment_span(self, segment: TimeSegment, day_start: datetime) -> tuple[float, float]:
        day_end = day_start + timedelta(milliseconds=MS_PER_DAY)
        left = self.map_to_x(segment.start, day_start)
        right = self.map_to_x(min(segment.end, day_end), day_start)
        return left, max(right - left, MIN_SEGMENT_WIDTH)

    def hour_markers(self, day_start: datetime) -> list[tuple[int, float]]:
        return [
            (hour, self.map_to_x(day_start + timedelta(milliseconds=hour * MS_PER_HOUR), day_start))
            for hour in range(25)
        ]

    def _clamp_zoom(self, zoom: float) -> float:
        return max(self.min_zoom, min(self.max_zoom, float(zoom)))

    def _clamp_pan(self, pan: float) -> float:
        limit = self.day_width
        return max(-limit, min(limit, float(pan)))
