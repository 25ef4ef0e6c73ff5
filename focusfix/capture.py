from __future__ import annotations

import io
import logging
from datetime import datetime

import mss
from PIL import Image

from .errors import CaptureUnavailable
from .models import CapturedFrame

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = (800, 600)


class ScreenCaptureService:
    """Grab the primary monitor and encode it as a downsized PNG."""

    def __init__(self, max_size: tuple[int, int] = DEFAULT_MAX_SIZE):
        self._max_size = max_size

    def capture(self) -> CapturedFrame:
        captured_at = datetime.now().astimezone()
        try:
            image = self._grab_primary_monitor()
        except CaptureUnavailable:
            raise
        except Exception as exc:  # noqa: BLE001
            raise CaptureUnavailable(f"Screen capture failed: {exc}") from exc

        image.thumbnail(self._max_size, Image.Resampling.LANCZOS)
        buffer = io.BytesIO()
        image.save(buffer, format="PNG", optimize=True)
        data = buffer.getvalue()
        logger.debug("Captured %dx%d frame (%d bytes)", image.width, image.height, len(data))
        return CapturedFrame(
            data=data,
            width=image.width,
            height=image.height,
            format="png",
            captured_at=captured_at,
        )

    @staticmethod
    def _grab_primary_monitor() -> Image.Image:
        with mss.mss() as sct:
            if len(sct.monitors) < 2:
                raise CaptureUnavailable("No screen available for capture.")
            # Monitor 0 is the union of all screens; 1 is the primary.
            shot = sct.grab(sct.monitors[1])
            return Image.frombytes("RGB", shot.size, shot.bgra, "raw", "BGRX")
