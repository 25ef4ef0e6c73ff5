from __future__ import annotations

import unittest
from datetime import date, timedelta

from focusfix.models import ThemeNode, TimeSegment
from focusfix.timeline import local_day_start
from focusfix.viewport import TimelineViewport

DAY_START = local_day_start(date(2026, 4, 1))


def _segment(start_hour: float, end_hour: float) -> TimeSegment:
    return TimeSegment(
        start=DAY_START + timedelta(hours=start_hour),
        end=DAY_START + timedelta(hours=end_hour),
        theme=ThemeNode(1, "Work"),
        analysis_text="",
        confidence=50.0,
    )


class TimelineViewportTests(unittest.TestCase):
    def test_mapping_is_deterministic(self) -> None:
        viewport = TimelineViewport()
        moment = DAY_START + timedelta(hours=6, minutes=30)
        self.assertEqual(viewport.map_to_x(moment, DAY_START), viewport.map_to_x(moment, DAY_START))
        self.assertEqual(TimelineViewport().map_to_x(moment, DAY_START), viewport.map_to_x(moment, DAY_START))

    def test_mapping_is_monotonic(self) -> None:
        viewport = TimelineViewport(zoom=1.7, pan=-120)
        xs = [viewport.map_to_x(DAY_START + timedelta(minutes=m), DAY_START) for m in range(0, 1440, 7)]
        self.assertEqual(xs, sorted(xs))
        self.assertEqual(len(set(xs)), len(xs))

    def test_mapping_formula(self) -> None:
        viewport = TimelineViewport(base_day_width=1000, zoom=2, pan=50)
        self.assertAlmostEqual(viewport.map_to_x(DAY_START + timedelta(hours=12), DAY_START), 1050.0)
        self.assertAlmostEqual(viewport.map_to_x(DAY_START, DAY_START), 50.0)

    def test_zoom_is_clamped(self) -> None:
        viewport = TimelineViewport(min_zoom=0.2, max_zoom=2.0)
        self.assertEqual(viewport.set_zoom(10), 2.0)
        self.assertEqual(viewport.set_zoom(0.01), 0.2)
        viewport.set_zoom(1.0)
        self.assertAlmostEqual(viewport.zoom_by(1.1), 1.1)
        self.assertAlmostEqual(viewport.zoom_by(0.9), 0.99)

    def test_pan_is_clamped_to_one_day_width(self) -> None:
        viewport = TimelineViewport(base_day_width=1000)
        self.assertEqual(viewport.set_pan(5000), 1000.0)
        self.assertEqual(viewport.set_pan(-5000), -1000.0)
        self.assertEqual(viewport.drag_by(300), -700.0)

    def test_zooming_out_reclamps_pan(self) -> None:
        viewport = TimelineViewport(base_day_width=1000, max_zoom=2.0)
        viewport.set_zoom(2.0)
        viewport.set_pan(-1800)
        viewport.set_zoom(0.5)
        self.assertEqual(viewport.pan, -500.0)

    def test_segment_span_clips_to_day_end(self) -> None:
        viewport = TimelineViewport(base_day_width=2400)
        left, width = viewport.segment_span(_segment(22, 26), DAY_START)
        self.assertAlmostEqual(left, 2200.0)
        self.assertAlmostEqual(width, 200.0)

    def test_tiny_segments_stay_visible(self) -> None:
        viewport = TimelineViewport(base_day_width=1000)
        _, width = viewport.segment_span(_segment(1, 1.0001), DAY_START)
        self.assertEqual(width, 2.0)

    def test_hour_markers_cover_the_day(self) -> None:
        viewport = TimelineViewport(base_day_width=1200)
        markers = viewport.hour_markers(DAY_START)
        self.assertEqual(len(markers), 25)
        self.assertEqual(markers[0], (0, 0.0))
        self.assertAlmostEqual(markers[24][1], 1200.0)

    def test_reset(self) -> None:
        viewport = TimelineViewport(zoom=1.5, pan=-200)
        viewport.reset()
        self.assertEqual((viewport.zoom, viewport.pan), (1.0, 0.0))

    def test_invalid_configuration(self) -> None:
        with self.assertRaises(ValueError):
            TimelineViewport(base_day_width=0)
        with self.assertRaises(ValueError):
            TimelineViewport(min_zoom=3, max_zoom=2)


if __name__ == "__main__":
    unittest.main()
