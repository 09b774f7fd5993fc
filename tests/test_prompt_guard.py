from __future__ import annotations

from guard import (
    content_policy_message,
    detect_celebrity_violation,
    is_content_policy_violation,
    sanitize,
)
from guard.sanitizer import PERSON_REFERENCE, TRADEMARK


def test_trademarks_replaced_case_insensitive_whole_word() -> None:
    result = sanitize("A NIKE runner drinking Coca-Cola next to a Tesla")
    assert result.was_modified is True
    assert "athletic sportswear" in result.sanitized_prompt
    assert "a refreshing cola beverage" in result.sanitized_prompt
    assert "an electric vehicle" in result.sanitized_prompt
    originals = [item.original for item in result.replacements]
    assert originals == ["Coca-Cola", "Tesla", "NIKE"]
    assert all(item.reason == TRADEMARK for item in result.replacements)
    assert result.warnings == ["Trademarks were replaced with generic descriptions."]


def test_trademark_inside_longer_word_is_left_alone() -> None:
    result = sanitize("fresh pineapple and targeted lighting")
    assert result.was_modified is False
    assert result.sanitized_prompt == "fresh pineapple and targeted lighting"
    assert result.replacements == []


def test_every_occurrence_is_recorded() -> None:
    result = sanitize("nike shoes, nike shirt")
    assert result.sanitized_prompt == "athletic sportswear shoes, athletic sportswear shirt"
    assert len(result.replacements) == 2


def test_sanitize_is_idempotent() -> None:
    first = sanitize("Elon Musk holding an iPhone in front of a Ferrari")
    assert first.was_modified is True
    second = sanitize(first.sanitized_prompt)
    assert second.was_modified is False
    assert second.sanitized_prompt == first.sanitized_prompt


def test_person_reference_patterns() -> None:
    result = sanitize("make the woman from the photo smile")
    assert result.was_modified is True
    assert "a professional person" in result.sanitized_prompt
    assert [item.reason for item in result.replacements] == [PERSON_REFERENCE]
    assert result.warnings == ["References to real people were replaced with generic descriptions."]


def test_trademark_pass_runs_before_person_pass() -> None:
    result = sanitize("a star sipping Starbucks")
    reasons = [item.reason for item in result.replacements]
    assert reasons == [TRADEMARK, PERSON_REFERENCE]
    assert result.sanitized_prompt == "a a professional person sipping a premium coffee cup"


def test_content_policy_message_lists_suggestions() -> None:
    result = sanitize("Taylor Swift wearing Gucci")
    message, suggestions = content_policy_message(result)
    assert "1 brand(s) replaced" in message
    assert "1 reference(s) to people replaced" in message
    assert len(suggestions) == 4


def test_celebrity_gate_blocks_named_people() -> None:
    violation = detect_celebrity_violation("a video with Elon Musk")
    assert violation is not None
    assert violation.code == "CONTENT_POLICY_VIOLATION"
    assert violation.detected_names == ["Elon Musk"]
    assert violation.suggestions
    assert violation.to_dict()["detectedNames"] == ["Elon Musk"]


def test_celebrity_gate_allows_generic_people() -> None:
    assert detect_celebrity_violation("a video with a tech entrepreneur") is None


def test_celebrity_gate_dedupes_names() -> None:
    violation = detect_celebrity_violation("Bill Gates meets bill gates and Rihanna")
    assert violation is not None
    assert violation.detected_names == ["Rihanna", "Bill Gates"]


def test_provider_error_classifier() -> None:
    assert is_content_policy_violation("Your request was rejected by our Content Policy")
    assert is_content_policy_violation("Prompt could not be submitted")
    assert not is_content_policy_violation("upstream timeout after 30s")
    assert not is_content_policy_violation("")
