from __future__ import annotations

import io
import logging
from dataclasses import dataclass

import numpy as np
from PIL import Image, UnidentifiedImageError

from .models import CaptureSample

logger = logging.getLogger(__name__)

MAX_SIMILARITY = 100.0
MIN_SIMILARITY = 0.0
THUMBNAIL_SIZE = (32, 32)


def similarity(a: bytes, b: bytes) -> float:
    """Return how alike two raw screenshot buffers are, from 0 to 100.

    Identical buffers score 100 and the score is symmetric in its
    arguments. An empty buffer always scores 0 so that it can never cause
    a skip. Buffers Pillow can decode are compared as small grayscale
    thumbnails; anything else falls back to a byte-by-byte equality ratio.
    """
    if not a or not b:
        return MIN_SIMILARITY
    if a == b:
        return MAX_SIMILARITY

    pixels_a = _thumbnail_pixels(a)
    pixels_b = _thumbnail_pixels(b)
    if pixels_a is not None and pixels_b is not None:
        mean_delta = float(np.abs(pixels_a - pixels_b).mean())
        return _clamp(MAX_SIMILARITY - mean_delta / 255.0 * MAX_SIMILARITY)

    return _byte_similarity(a, b)


@dataclass(frozen=True)
class GateDecision:
    admitted: bool
    score: float | None


class SimilarityGate:
    """Skip analysis for frames that barely differ from the previous one.

    The baseline is the most recent frame seen, admitted or not.
    """

    def __init__(self, threshold: float):
        self.threshold = float(threshold)
        self._baseline: bytes | None = None

    @property
    def has_baseline(self) -> bool:
        return self._baseline is not None

    def check(self, sample: CaptureSample) -> GateDecision:
        previous = self._baseline
        self._baseline = sample.data

        if previous is None or self.threshold <= 0:
            return GateDecision(admitted=True, score=None)

        score = similarity(previous, sample.data)
        if score >= self.threshold:
            logger.debug("Frame skipped at similarity %.1f%% (threshold %.1f%%)", score, self.threshold)
            return GateDecision(admitted=False, score=score)
        return GateDecision(admitted=True, score=score)

    def reset(self) -> None:
        self._baseline = None


def _thumbnail_pixels(raw: bytes) -> np.ndarray | None:
    try:
        with Image.open(io.BytesIO(raw)) as image:
            thumb = image.convert("L").resize(THUMBNAIL_SIZE, Image.Resampling.BILINEAR)
            return np.asarray(thumb, dtype=np.float64)
    except (UnidentifiedImageError, OSError, ValueError):
        return None


def _byte_similarity(a: bytes, b: bytes) -> float:
    longest = max(len(a), len(b))
    shortest = min(len(a), len(b))
    left = np.frombuffer(a[:shortest], dtype=np.uint8)
    right = np.frombuffer(b[:shortest], dtype=np.uint8)
    equal = int(np.count_nonzero(left == right))
    return _clamp(equal / longest * MAX_SIMILARITY)


def _clamp(value: float) -> float:
    return max(MIN_SIMILARITY, min(MAX_SIMILARITY, value))
