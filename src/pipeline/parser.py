"""Structured parsing of analysis documents returned by the model.

The model is asked to answer in a fixed markdown template (see
``TEMPLATE_LABELS``). Parsing is a staged set of regular expressions over that
template: sections are located by their decorated header labels, the timeline
is split on segment sub-headers and each segment is mined for labeled fields.

The header labels are a contract with the prompt in ``src.service.gemini``.
If the template changes, extraction degrades per section: a section whose
label is no longer found comes back empty while the others still parse. The
takeaways header has two accepted spellings because older documents were
produced with the ``Key Takeaways`` wording.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional, Sequence, Tuple

from .types import (
    DEFAULT_SEGMENT_TITLE,
    DEFAULT_TIMESTAMP,
    NEUTRAL_SENTIMENT,
    NO_DIALOGUE,
    OBSERVATION_TITLE,
    UNKNOWN_SPEAKER,
    Insight,
    ParsedAnalysis,
    TimelineSegment,
)

logger = logging.getLogger(__name__)

_VS16 = "\ufe0f"


@dataclass(frozen=True)
class TemplateLabels:
    """Header and field markers of the analysis markdown template."""

    executive: str = "## \U0001F3AC Executive Summary"
    timeline: str = "## \u23f1\ufe0f Detailed Chronological Analysis"
    segment: str = "### \U0001F539"
    takeaways: Tuple[str, ...] = (
        "## \U0001F5DD\ufe0f Critical Analysis & Takeaways",
        "## \U0001F5DD\ufe0f Key Takeaways",
    )
    speaker: str = "\U0001F5E3\ufe0f Speaker"
    sentiment: str = "\U0001F3AD Sentiment"
    dialogue: str = "\U0001F4AC Dialogue"
    visual_context: str = "\U0001F441\ufe0f Visual Context"

    @property
    def current_takeaways(self) -> str:
        return self.takeaways[0]


TEMPLATE_LABELS = TemplateLabels()


def _is_decoration(char: str) -> bool:
    return ord(char) > 0x2000


def _label_pattern(label: str, optional_icon: bool = False) -> str:
    """Regex for ``label`` with flexible spacing and optional U+FE0F."""
    label = label.replace(_VS16, "")
    icon = ""
    if optional_icon and label and _is_decoration(label[0]):
        icon, label = label[0], label[1:].lstrip()
    pieces: List[str] = []
    for char in label:
        if char == " ":
            pieces.append(r"[ \t]*")
        elif _is_decoration(char):
            pieces.append(re.escape(char) + _VS16 + "?")
        else:
            pieces.append(re.escape(char))
    pattern = "".join(pieces)
    if icon:
        pattern = "(?:" + re.escape(icon) + _VS16 + r"?[ \t]*)?" + pattern
    return pattern


_NEXT_TOP_LEVEL = r"(?=^[ \t]*##(?!#)|\Z)"
_FIELD_END = r"(?=\n\s*\*|\n\s*###|\Z)"
_BRACKET_TIMESTAMP = re.compile(r"\[(.*?)\]")
_BRACKET_TITLE = re.compile(r"\]\s*[-–—]\s*(.*)")
_BARE_TIMESTAMP = re.compile(r"(\d{1,2}:\d{2}(?::\d{2})?)(?:\s*[-–—]\s*(.*))?")
_BULLET = re.compile(r"^\s*[*-]\s+(.*\S)\s*$")
_BOLD_TITLE = re.compile(r"^\*\*(.+?)\*\*\s*:?\s*(.*)$", re.S)


def _section_regex(label: str) -> "re.Pattern[str]":
    return re.compile(r"^[ \t]*" + _label_pattern(label) + r"(.*?)" + _NEXT_TOP_LEVEL, re.M | re.S)


def _field_regex(label: str) -> "re.Pattern[str]":
    name = _label_pattern(label, optional_icon=True)
    return re.compile(r"\*\*[ \t]*" + name + r"[ \t]*:?[ \t]*\*\*[ \t]*:?(.*?)" + _FIELD_END, re.S)


class ResponseParser:
    """Splits a markdown analysis document into a :class:`ParsedAnalysis`."""

    def __init__(self, labels: TemplateLabels = TEMPLATE_LABELS) -> None:
        self._labels = labels
        self._executive = _section_regex(labels.executive)
        self._timeline = _section_regex(labels.timeline)
        self._takeaways = [_section_regex(label) for label in labels.takeaways]
        self._segment = re.compile(r"^[ \t]*" + _label_pattern(labels.segment), re.M)
        self._speaker = _field_regex(labels.speaker)
        self._sentiment = _field_regex(labels.sentiment)
        self._dialogue = _field_regex(labels.dialogue)
        self._visual = _field_regex(labels.visual_context)

    def parse(self, document: str) -> Optional[ParsedAnalysis]:
        """Return the structured analysis, or ``None`` to render raw text."""
        if not document or not isinstance(document, str):
            return None
        try:
            executive = self._section(document, [self._executive])
            timeline_text = self._section(document, [self._timeline])
            segments = tuple(self._segments(timeline_text))
            raw_takeaways = self._section(document, self._takeaways)
            insights = tuple(self._insights(raw_takeaways))
        except Exception as error:  # pragma: no cover - regex engine failures
            logger.debug("Analysis parsing failed: %s", error)
            return None

        if not executive and not segments:
            return None
        return ParsedAnalysis(
            executive_summary=executive,
            timeline_segments=segments,
            insights=insights,
            raw_takeaways=raw_takeaways,
        )

    # ------------------------------------------------------------------
    @staticmethod
    def _section(document: str, patterns: Sequence["re.Pattern[str]"]) -> str:
        for pattern in patterns:
            match = pattern.search(document)
            if match:
                return match.group(1).strip()
        return ""

    def _segments(self, timeline_text: str) -> List[TimelineSegment]:
        if not timeline_text:
            return []
        starts = [match.start() for match in self._segment.finditer(timeline_text)]
        blocks = [
            timeline_text[start:end]
            for start, end in zip(starts, starts[1:] + [len(timeline_text)])
        ]
        return [self._segment_from_block(block) for block in blocks]

    def _segment_from_block(self, block: str) -> TimelineSegment:
        block = block.strip()
        header = block.split("\n", 1)[0]
        timestamp, title = self._header_parts(header)
        return TimelineSegment(
            raw_block_text=block,
            timestamp_token=timestamp,
            title=title,
            speaker=self._field(self._speaker, block, UNKNOWN_SPEAKER),
            sentiment=self._field(self._sentiment, block, NEUTRAL_SENTIMENT),
            dialogue=self._field(self._dialogue, block, NO_DIALOGUE),
            visual_context_text=self._field(self._visual, block, ""),
        )

    @staticmethod
    def _header_parts(header: str) -> Tuple[str, str]:
        time_match = _BRACKET_TIMESTAMP.search(header)
        if time_match:
            timestamp = time_match.group(1).strip() or DEFAULT_TIMESTAMP
            title_match = _BRACKET_TITLE.search(header)
            title = title_match.group(1).strip() if title_match else ""
        else:
            bare = _BARE_TIMESTAMP.search(header)
            timestamp = bare.group(1) if bare else DEFAULT_TIMESTAMP
            title = (bare.group(2) or "").strip() if bare else ""
        if title.startswith("[") and title.endswith("]"):
            title = title[1:-1].strip()
        return timestamp, title or DEFAULT_SEGMENT_TITLE

    @staticmethod
    def _field(pattern: "re.Pattern[str]", block: str, default: str) -> str:
        match = pattern.search(block)
        if not match:
            return default
        value = match.group(1).strip()
        return value or default

    @staticmethod
    def _insights(raw_takeaways: str) -> List[Insight]:
        insights: List[Insight] = []
        if not raw_takeaways:
            return insights
        for line in raw_takeaways.splitlines():
            bullet = _BULLET.match(line)
            if not bullet:
                continue
            text = bullet.group(1).strip()
            titled = _BOLD_TITLE.match(text)
            if titled and titled.group(1).strip(" :"):
                insights.append(
                    Insight(title=titled.group(1).strip(" :"), content=titled.group(2).strip())
                )
            else:
                insights.append(Insight(title=OBSERVATION_TITLE, content=text))
        return insights


_DEFAULT_PARSER = ResponseParser()


@lru_cache(maxsize=64)
def parse_analysis(document: str) -> Optional[ParsedAnalysis]:
    """Memoized :meth:`ResponseParser.parse` using the default template."""
    return _DEFAULT_PARSER.parse(document)


__all__ = ["TEMPLATE_LABELS", "TemplateLabels", "ResponseParser", "parse_analysis"]
