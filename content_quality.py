"""Heuristic gate telling real page content apart from banners and error text.

The verdict only drives how eagerly the agent looks for another source, so
misclassifications are tolerated by every caller.
"""

from __future__ import annotations

import re
from typing import Optional

from config import QualitySettings
from models import ContentQuality

MARKER_PATTERN = re.compile(r"\n?\[CONTENT_QUALITY:\s*(HIGH|LOW)[^\]]*\]")

DEFAULT_QUALITY = QualitySettings()


def classify(text: Optional[str], settings: QualitySettings = DEFAULT_QUALITY) -> ContentQuality:
    if not text or len(text) < settings.min_length:
        return ContentQuality.LOW

    lowered = text.lower()
    if any(phrase in lowered for phrase in settings.noise_phrases):
        return ContentQuality.LOW

    if len(text) > settings.long_length:
        return ContentQuality.HIGH
    has_substance = any(word in lowered for word in settings.substance_indicators)
    if len(text) > settings.substantial_length and has_substance:
        return ContentQuality.HIGH
    return ContentQuality.LOW


def tag(text: str, quality: ContentQuality, note: str = "") -> str:
    if not note:
        note = "good content found" if quality is ContentQuality.HIGH else "may need to try different source"
    return f"{text}\n[CONTENT_QUALITY: {quality.value} - {note}]"


def quality_of(result: Optional[str]) -> Optional[ContentQuality]:
    """Read back the marker appended by ``tag``; None when the text has none."""
    if not result:
        return None
    match = MARKER_PATTERN.search(result)
    return ContentQuality(match.group(1)) if match else None


def strip_markers(text: Optional[str]) -> str:
    return MARKER_PATTERN.sub("", text or "").strip()
