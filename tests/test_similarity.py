from __future__ import annotations

import io
import unittest
from datetime import datetime, timezone

from PIL import Image

from focusfix.models import CaptureSample
from focusfix.similarity import SimilarityGate, similarity


def _png(color: tuple[int, int, int], size: tuple[int, int] = (64, 48), fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def _sample(data: bytes) -> CaptureSample:
    return CaptureSample(data=data, captured_at=datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))


class SimilarityTests(unittest.TestCase):
    def test_identical_buffers_are_maximally_similar(self) -> None:
        for data in (_png((10, 20, 30)), b"not an image at all"):
            self.assertEqual(similarity(data, data), 100.0)

    def test_score_is_symmetric(self) -> None:
        pairs = [
            (_png((0, 0, 0)), _png((200, 200, 200))),
            (_png((10, 10, 10)), b"garbage bytes"),
            (b"abcdef", b"abcxyz123"),
        ]
        for a, b in pairs:
            self.assertEqual(similarity(a, b), similarity(b, a))

    def test_empty_buffer_is_never_similar(self) -> None:
        self.assertEqual(similarity(b"", b""), 0.0)
        self.assertEqual(similarity(b"", _png((1, 2, 3))), 0.0)

    def test_black_and_white_frames_differ_completely(self) -> None:
        self.assertEqual(similarity(_png((0, 0, 0)), _png((255, 255, 255))), 0.0)

    def test_same_picture_in_different_encodings_matches(self) -> None:
        self.assertEqual(similarity(_png((90, 90, 90)), _png((90, 90, 90), fmt="BMP")), 100.0)

    def test_raw_bytes_fall_back_to_equality_ratio(self) -> None:
        self.assertAlmostEqual(similarity(b"aaaa", b"aabb"), 50.0)
        self.assertAlmostEqual(similarity(b"aaaa", b"aaaaaaaa"), 50.0)


class SimilarityGateTests(unittest.TestCase):
    def test_first_sample_is_always_admitted(self) -> None:
        gate = SimilarityGate(threshold=1)
        decision = gate.check(_sample(_png((5, 5, 5))))
        self.assertTrue(decision.admitted)
        self.assertIsNone(decision.score)

    def test_similar_sample_is_skipped_and_becomes_baseline(self) -> None:
        gate = SimilarityGate(threshold=90)
        dark = _png((0, 0, 0))
        light = _png((255, 255, 255))
        self.assertTrue(gate.check(_sample(dark)).admitted)
        self.assertFalse(gate.check(_sample(dark)).admitted)
        self.assertTrue(gate.check(_sample(light)).admitted)
        skipped = gate.check(_sample(light))
        self.assertFalse(skipped.admitted)
        self.assertEqual(skipped.score, 100.0)

    def test_score_below_threshold_is_admitted(self) -> None:
        gate = SimilarityGate(threshold=95)
        gate.check(_sample(b"aaaa"))
        decision = gate.check(_sample(b"aabb"))
        self.assertTrue(decision.admitted)
        self.assertAlmostEqual(decision.score, 50.0)

    def test_zero_threshold_disables_skipping(self) -> None:
        gate = SimilarityGate(threshold=0)
        data = _png((7, 7, 7))
        gate.check(_sample(data))
        self.assertTrue(gate.check(_sample(data)).admitted)

    def test_empty_frame_is_admitted(self) -> None:
        gate = SimilarityGate(threshold=50)
        gate.check(_sample(b"abc"))
        self.assertTrue(gate.check(_sample(b"")).admitted)

    def test_reset_forgets_baseline(self) -> None:
        gate = SimilarityGate(threshold=50)
        data = _png((7, 7, 7))
        gate.check(_sample(data))
        gate.reset()
        self.assertFalse(gate.has_baseline)
        self.assertTrue(gate.check(_sample(data)).admitted)


if __name__ == "__main__":
    unittest.main()
