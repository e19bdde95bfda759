from __future__ import annotations

from src.pipeline.parser import TEMPLATE_LABELS, ResponseParser, TemplateLabels, parse_analysis
from src.pipeline.types import NO_DIALOGUE, NEUTRAL_SENTIMENT, UNKNOWN_SPEAKER

SAMPLE_DOCUMENT = """## \U0001F3AC Executive Summary
A product walkthrough of a new espresso machine, upbeat and practical.

## \u23f1\ufe0f Detailed Chronological Analysis
Break down follows.

### \U0001F539 [00:05] - Intro
*   **\U0001F5E3\ufe0f Speaker**: Host
*   **\U0001F3AD Sentiment**: Positive - excited greeting
*   **\U0001F4AC Dialogue**: "Welcome back to the channel."
*   **\U0001F441\ufe0f Visual Context**: Host stands in a bright kitchen.

### \U0001F539 [01:30] - [Unboxing]
*   **\U0001F5E3\ufe0f Speaker**: Host
*   **\U0001F4AC Dialogue**: Lists what is in the box.
*   **\U0001F441\ufe0f Visual Context**: Close-up of packaging.

### \U0001F539 [01:02:03] - Verdict
*   **\U0001F5E3\ufe0f Speaker**: Guest Reviewer
*   **\U0001F3AD Sentiment**: Neutral - measured

## \U0001F5DD\ufe0f Critical Analysis & Takeaways
*   **Build quality**: Feels premium for the price.
*   - stray dash bullet
-   Plain observation without a title.
"""


def test_parses_sections_in_order() -> None:
    parsed = ResponseParser().parse(SAMPLE_DOCUMENT)

    assert parsed is not None
    assert parsed.executive_summary.startswith("A product walkthrough")
    assert [segment.timestamp_token for segment in parsed.timeline_segments] == ["00:05", "01:30", "01:02:03"]
    assert [segment.seconds for segment in parsed.timeline_segments] == [5, 90, 3723]
    assert [segment.title for segment in parsed.timeline_segments] == ["Intro", "Unboxing", "Verdict"]


def test_segment_fields_and_defaults() -> None:
    parsed = ResponseParser().parse(SAMPLE_DOCUMENT)
    intro, unboxing, verdict = parsed.timeline_segments

    assert intro.speaker == "Host"
    assert intro.sentiment == "Positive - excited greeting"
    assert intro.dialogue == '"Welcome back to the channel."'
    assert intro.visual_context_text == "Host stands in a bright kitchen."

    assert unboxing.sentiment == NEUTRAL_SENTIMENT
    assert verdict.dialogue == NO_DIALOGUE
    assert verdict.visual_context_text == ""
    assert intro.raw_block_text.startswith("### \U0001F539 [00:05]")


def test_insights_split_titles_from_observations() -> None:
    parsed = ResponseParser().parse(SAMPLE_DOCUMENT)

    assert parsed.insights[0].title == "Build quality"
    assert parsed.insights[0].content == "Feels premium for the price."
    assert parsed.insights[-1].title == "Observation"
    assert parsed.insights[-1].content == "Plain observation without a title."
    assert "Build quality" in parsed.raw_takeaways


def test_legacy_takeaways_header_is_accepted() -> None:
    document = SAMPLE_DOCUMENT.replace("Critical Analysis & Takeaways", "Key Takeaways")
    parsed = ResponseParser().parse(document)

    assert parsed is not None
    assert parsed.insights[0].title == "Build quality"


def test_labels_match_without_variation_selectors() -> None:
    document = SAMPLE_DOCUMENT.replace("\ufe0f", "")
    parsed = ResponseParser().parse(document)

    assert parsed is not None
    assert len(parsed.timeline_segments) == 3
    assert parsed.timeline_segments[0].speaker == "Host"
    assert parsed.insights


def test_field_icons_are_optional() -> None:
    document = """## \U0001F3AC Executive Summary
Short.

## \u23f1\ufe0f Detailed Chronological Analysis
### \U0001F539 [00:10] - Scene
*   **Speaker**: Narrator
*   **Dialogue**: Hello.
"""
    segment = ResponseParser().parse(document).timeline_segments[0]
    assert segment.speaker == "Narrator"
    assert segment.dialogue == "Hello."


def test_header_variants() -> None:
    parser = ResponseParser()
    assert parser._header_parts("### \U0001F539 [00:05] - Intro") == ("00:05", "Intro")
    assert parser._header_parts("### \U0001F539 [00:05]") == ("00:05", "Event Segment")
    assert parser._header_parts("### \U0001F539 02:15 - Bare") == ("02:15", "Bare")
    assert parser._header_parts("### \U0001F539 No time at all") == ("00:00", "Event Segment")


def test_missing_speaker_defaults() -> None:
    document = """## \U0001F3AC Executive Summary
Summary.

## \u23f1\ufe0f Detailed Chronological Analysis
### \U0001F539 [00:01] - Only visuals
*   **\U0001F441\ufe0f Visual Context**: A sunset.
"""
    segment = ResponseParser().parse(document).timeline_segments[0]
    assert segment.speaker == UNKNOWN_SPEAKER
    assert segment.visual_context_text == "A sunset."


def test_unstructured_text_returns_sentinel() -> None:
    assert ResponseParser().parse("The model answered in free prose.") is None
    assert ResponseParser().parse("") is None
    assert parse_analysis("") is None


def test_sections_degrade_independently() -> None:
    document = SAMPLE_DOCUMENT.replace("Detailed Chronological Analysis", "Timeline")
    parsed = ResponseParser().parse(document)

    assert parsed is not None
    assert parsed.timeline_segments == ()
    assert parsed.executive_summary
    assert parsed.insights


def test_timeline_only_document_is_structured() -> None:
    document = SAMPLE_DOCUMENT.split("## \u23f1", 1)[1]
    parsed = ResponseParser().parse("## \u23f1" + document)

    assert parsed is not None
    assert parsed.executive_summary == ""
    assert len(parsed.timeline_segments) == 3


def test_parse_is_deterministic_and_memoized() -> None:
    first = parse_analysis(SAMPLE_DOCUMENT)
    second = parse_analysis(SAMPLE_DOCUMENT)

    assert first == ResponseParser().parse(SAMPLE_DOCUMENT)
    assert first is second


def test_custom_labels() -> None:
    labels = TemplateLabels(executive="## Summary", timeline="## Timeline", segment="### Segment")
    document = "## Summary\nHi.\n\n## Timeline\n### Segment [00:03] - One\n"
    parsed = ResponseParser(labels).parse(document)

    assert parsed.executive_summary == "Hi."
    assert parsed.timeline_segments[0].seconds == 3
    assert TEMPLATE_LABELS.current_takeaways.endswith("Critical Analysis & Takeaways")
