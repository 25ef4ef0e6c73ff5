from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class ThemeNode:
    id: int
    category: str
    subcategory: str = ""
    specific: str = ""

    @property
    def path(self) -> str:
        return " > ".join(part for part in (self.category, self.subcategory, self.specific) if part)


@dataclass(frozen=True)
class CapturedFrame:
    data: bytes
    width: int
    height: int
    format: str
    captured_at: datetime


@dataclass(frozen=True)
class CaptureSample:
    data: bytes
    captured_at: datetime


@dataclass(frozen=True)
class ClassificationEvent:
    theme: ThemeNode
    analysis_text: str
    confidence: float
    occurred_at: datetime
    degraded: bool = False
    model_used: str = ""


@dataclass(frozen=True)
class TimeSegment:
    start: datetime
    end: datetime
    theme: ThemeNode
    analysis_text: str
    confidence: float

    @property
    def duration_seconds(self) -> int:
        return max(0, int(round((self.end - self.start).total_seconds())))
