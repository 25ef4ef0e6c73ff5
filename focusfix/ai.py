from __future__ import annotations

import base64
import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Protocol, Sequence

import requests

from .errors import (
    ConfigurationError,
    ServiceAuthError,
    ServiceError,
    ServiceGenericError,
    ServiceQuotaExceeded,
    ServiceRateLimited,
)
from .models import ClassificationEvent, ThemeNode
from .taxonomy import format_theme_list, require_taxonomy, resolve_theme

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.openai.com/v1"
DEFAULT_CONFIDENCE = 50.0
DEGRADED_CONFIDENCE = 0.0
REQUEST_TIMEOUT_SECONDS = 60


class CompletionClient(Protocol):
    def complete(self, prompt: str, image_bytes: bytes, model: str) -> str: ...


class OpenAICompatibleClient:
    """Chat-completions client for OpenAI and compatible vision endpoints."""

    def __init__(self, endpoint: str = "", api_key: str = "", timeout: float = REQUEST_TIMEOUT_SECONDS):
        self.timeout = timeout
        self.configure(endpoint, api_key)

    def configure(self, endpoint: str, api_key: str) -> None:
        self.endpoint = resolve_endpoint(endpoint)
        self.api_key = api_key.strip()

    def complete(self, prompt: str, image_bytes: bytes, model: str) -> str:
        content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        if image_bytes:
            content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": _image_data_uri(image_bytes), "detail": "low"},
                }
            )
        payload = {
            "model": model,
            "temperature": 0.3,
            "max_tokens": 500,
            "messages": [{"role": "user", "content": content}],
        }
        data = self._post(payload)
        return _extract_openai_text(data)

    def check_connection(self, model: str) -> tuple[bool, str]:
        payload = {
            "model": model,
            "max_tokens": 10,
            "messages": [{"role": "user", "content": "Hello, this is a test message."}],
        }
        try:
            self._post(payload)
        except ServiceError as exc:
            return False, f"Connection failed: {exc}"
        return True, f"Connected to {self.endpoint} using {model}."

    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = requests.post(
                self.endpoint,
                json=payload,
                headers=_auth_headers(self.api_key),
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise ServiceGenericError("AI request timed out.") from exc
        except requests.RequestException as exc:
            raise ServiceGenericError(f"AI request failed: {exc}") from exc

        if response.status_code >= 400:
            raise _error_for_response(response.status_code, response.text)

        try:
            return response.json()
        except ValueError as exc:
            raise ServiceGenericError("AI provider returned non-JSON response.") from exc


def resolve_endpoint(endpoint: str) -> str:
    custom = endpoint.strip().rstrip("/")
    if not custom:
        custom = DEFAULT_ENDPOINT
    if custom.endswith("/chat/completions"):
        return custom
    return f"{custom}/chat/completions"


def build_classification_prompt(themes: Sequence[ThemeNode]) -> str:
    return (
        "Look at this screenshot and decide which activity the user is doing.\n"
        "Available themes:\n"
        f"{format_theme_list(themes)}\n"
        "Return strict JSON with this shape only:\n"
        "{\"theme\": \"Category > Subcategory > Specific\", \"confidence\": 85, "
        "\"analysis\": \"...\"}\n"
        "Rules:\n"
        "- theme must be copied exactly from the list above.\n"
        "- confidence is an integer from 0 to 100; lower it when the screenshot is blurry or ambiguous.\n"
        "- analysis briefly describes what is visible and why the theme fits.\n"
        "- Prefer the most specific matching theme.\n"
        "- No markdown, no prose outside JSON."
    )


@dataclass(frozen=True)
class ParsedResult:
    theme_path: Optional[str]
    confidence: Any
    analysis: str


ParseStrategy = Callable[[str], Optional[ParsedResult]]

_THEME_TRIPLE = re.compile(r"([^>\n\"{}:：]+?)\s*>\s*([^>\n\"{}]+?)\s*>\s*([^>\n\",{}:：]+)")
_CONFIDENCE_LABEL = re.compile(
    r"(?:confidence|置信度)\s*[\"']?\s*[:：=]\s*(-?\d+(?:\.\d+)?)",
    re.IGNORECASE,
)
_ANY_LABEL = re.compile(r"[^\W\d_]+\s*[:：]\s*(-?\d+(?:\.\d+)?)")


def parse_strict_json(text: str) -> Optional[ParsedResult]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or start >= end:
        return None
    try:
        parsed = json.loads(text[start : end + 1])
    except (json.JSONDecodeError, RecursionError):
        return None
    if not isinstance(parsed, dict):
        return None

    theme_path = _theme_path_from_json(parsed.get("theme"))
    if theme_path is None:
        return None
    analysis = parsed.get("analysis")
    if not isinstance(analysis, str) or not analysis.strip():
        analysis = text.strip()
    return ParsedResult(
        theme_path=theme_path,
        confidence=parsed.get("confidence", DEFAULT_CONFIDENCE),
        analysis=analysis.strip(),
    )


def parse_pattern_text(text: str) -> Optional[ParsedResult]:
    match = _THEME_TRIPLE.search(text)
    if match is None:
        return None
    theme_path = " > ".join(group.strip() for group in match.groups())
    return ParsedResult(
        theme_path=theme_path,
        confidence=_confidence_from_text(text),
        analysis=text.strip(),
    )


def parse_default_theme(text: str) -> Optional[ParsedResult]:
    return ParsedResult(
        theme_path=None,
        confidence=_confidence_from_text(text),
        analysis=text.strip(),
    )


PARSE_STRATEGIES: tuple[ParseStrategy, ...] = (
    parse_strict_json,
    parse_pattern_text,
    parse_default_theme,
)


def parse_model_response(text: Any) -> ParsedResult:
    """Run the parser strategies in order and return the first result."""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    text = "" if text is None else str(text)
    for strategy in PARSE_STRATEGIES:
        result = strategy(text)
        if result is not None:
            return result
    return ParsedResult(theme_path=None, confidence=DEFAULT_CONFIDENCE, analysis=text.strip())


def clamp_confidence(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return DEFAULT_CONFIDENCE
    try:
        number = float(str(value).strip().rstrip("%")) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if math.isnan(number):
        return DEFAULT_CONFIDENCE
    return max(0.0, min(100.0, number))


class ThemeClassifier:
    """Turn a screenshot into a :class:`ClassificationEvent`.

    Service failures never propagate: they produce a degraded event pinned
    to the first theme, and the failure is kept in ``last_error``.
    """

    def __init__(
        self,
        client: CompletionClient,
        themes: Sequence[ThemeNode],
        model: str,
        clock: Callable[[], datetime] | None = None,
    ):
        if not model.strip():
            raise ConfigurationError("Model is required.")
        require_taxonomy(themes)
        self._client = client
        self._themes = tuple(themes)
        self._model = model.strip()
        self._clock = clock or (lambda: datetime.now().astimezone())
        self.last_error: ServiceError | None = None

    @property
    def themes(self) -> tuple[ThemeNode, ...]:
        return self._themes

    @property
    def model(self) -> str:
        return self._model

    def update_themes(self, themes: Sequence[ThemeNode]) -> None:
        require_taxonomy(themes)
        self._themes = tuple(themes)

    def update_model(self, model: str) -> None:
        if not model.strip():
            raise ConfigurationError("Model is required.")
        self._model = model.strip()

    def classify(self, image_bytes: bytes) -> ClassificationEvent:
        themes = self._themes
        prompt = build_classification_prompt(themes)
        try:
            raw = self._client.complete(prompt, image_bytes, self._model)
        except ServiceError as exc:
            return self._degraded(themes, exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected completion client error")
            return self._degraded(themes, ServiceGenericError(str(exc) or type(exc).__name__))

        self.last_error = None
        parsed = parse_model_response(raw)
        return ClassificationEvent(
            theme=resolve_theme(parsed.theme_path, themes),
            analysis_text=parsed.analysis,
            confidence=clamp_confidence(parsed.confidence),
            occurred_at=self._clock(),
            model_used=self._model,
        )

    def _degraded(self, themes: Sequence[ThemeNode], error: ServiceError) -> ClassificationEvent:
        self.last_error = error
        logger.warning("Classification request failed: %s", error)
        return ClassificationEvent(
            theme=themes[0],
            analysis_text=f"Analysis failed: {error.reason} ({error})",
            confidence=DEGRADED_CONFIDENCE,
            occurred_at=self._clock(),
            degraded=True,
            model_used=self._model,
        )


def _theme_path_from_json(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if isinstance(value, dict):
        parts = [str(value.get(key, "")).strip() for key in ("category", "subcategory", "specific")]
        if parts[0]:
            return " > ".join(parts)
    return None


def _confidence_from_text(text: str) -> Any:
    match = _CONFIDENCE_LABEL.search(text) or _ANY_LABEL.search(text)
    if match is None:
        return DEFAULT_CONFIDENCE
    return match.group(1)


def _error_for_response(status_code: int, body: str) -> ServiceError:
    snippet = (body or "").strip()[:300]
    message = f"AI request failed ({status_code}): {snippet}"
    if status_code in {401, 403}:
        return ServiceAuthError(message, status_code)
    if status_code == 402 or "insufficient_quota" in snippet:
        return ServiceQuotaExceeded(message, status_code)
    if status_code == 429:
        return ServiceRateLimited(message, status_code)
    return ServiceGenericError(message, status_code)


def _image_data_uri(raw: bytes) -> str:
    encoded = base64.b64encode(raw).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def _auth_headers(api_key: str) -> dict[str, str]:
    if not api_key.strip():
        return {}
    return {"Authorization": f"Bearer {api_key.strip()}"}


def _extract_openai_text(data: dict[str, Any]) -> str:
    choices = data.get("choices") if isinstance(data, dict) else None
    if not isinstance(choices, list) or not choices:
        raise ServiceGenericError("OpenAI-style response missing choices.")
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    if not isinstance(message, dict):
        raise ServiceGenericError("OpenAI-style response missing message.")
    content = message.get("content")
    if isinstance(content, str) and content.strip():
        return content
    if isinstance(content, list):
        chunks: list[str] = []
        for entry in content:
            if isinstance(entry, dict):
                text = entry.get("text")
                if isinstance(text, str):
                    chunks.append(text)
        joined = "\n".join(chunks).strip()
        if joined:
            return joined
    raise ServiceGenericError("OpenAI-style response did not include text content.")
