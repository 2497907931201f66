"""Tests for safety verdict normalization."""

import pytest

from faceswap_api.services.safety import (
    SafetyStrictness,
    SafetyViolationNormalizer,
    classify_refusal_text,
    normalize_generation_response,
    normalize_safe_search,
    worst_safe_search_violation,
)

MIXED = {"adult": "VERY_LIKELY", "violence": "UNLIKELY", "racy": "POSSIBLE"}


class TestSafeSearch:

    def test_lenient_blocks_very_likely(self) -> None:
        verdict = normalize_safe_search(MIXED, SafetyStrictness.LENIENT)

        assert verdict.is_safe is False
        assert verdict.category == "adult"
        assert verdict.code == 1001
        assert verdict.level == "VERY_LIKELY"

    def test_strict_reports_worst_violation(self) -> None:
        verdict = normalize_safe_search(MIXED, SafetyStrictness.STRICT)

        assert verdict.is_safe is False
        assert verdict.category == "adult"
        assert verdict.code == 1001

    def test_lenient_allows_likely(self) -> None:
        verdict = normalize_safe_search({"adult": "LIKELY", "racy": "LIKELY"}, "lenient")
        assert verdict.is_safe is True

    def test_strict_blocks_likely(self) -> None:
        verdict = normalize_safe_search({"adult": "UNLIKELY", "racy": "LIKELY"}, "strict")

        assert verdict.is_safe is False
        assert verdict.category == "racy"
        assert verdict.code == 1003

    def test_disabled_never_blocks(self) -> None:
        annotation = {c: "VERY_LIKELY" for c in ("adult", "violence", "racy", "medical", "spoof")}
        assert normalize_safe_search(annotation, "disabled").is_safe is True

    def test_medical_and_spoof_are_checked(self) -> None:
        assert normalize_safe_search({"medical": "VERY_LIKELY"}).code == 1004
        assert normalize_safe_search({"spoof": "VERY_LIKELY"}).code == 1005

    def test_worst_violation_tie_keeps_category_order(self) -> None:
        worst = worst_safe_search_violation({"racy": "LIKELY", "violence": "LIKELY"})
        assert worst == ("violence", "LIKELY", 1002)

    def test_nothing_concerning(self) -> None:
        assert worst_safe_search_violation({"adult": "UNLIKELY", "racy": "VERY_UNLIKELY"}) is None


class TestGenerationResponse:

    def test_prompt_block_with_harm_category(self) -> None:
        body = {"promptFeedback": {"blockReason": "HARM_CATEGORY_SEXUALLY_EXPLICIT"}}
        verdict = normalize_generation_response(body)

        assert verdict.is_safe is False
        assert verdict.code == 2003

    def test_prompt_block_uses_feedback_ratings(self) -> None:
        body = {
            "promptFeedback": {
                "blockReason": "SAFETY",
                "safetyRatings": [
                    {"category": "HARM_CATEGORY_HARASSMENT", "probability": "NEGLIGIBLE"},
                    {"category": "HARM_CATEGORY_HATE_SPEECH", "probability": "HIGH"},
                ],
            }
        }
        assert normalize_generation_response(body).code == 2001

    def test_prompt_block_without_detail_is_unknown(self) -> None:
        verdict = normalize_generation_response({"promptFeedback": {"blockReason": "OTHER"}})
        assert verdict.code == 3000

    def test_candidate_safety_rating(self) -> None:
        body = {
            "candidates": [{
                "finishReason": "SAFETY",
                "safetyRatings": [
                    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "probability": "MEDIUM", "blocked": True},
                ],
            }]
        }
        verdict = normalize_generation_response(body)

        assert verdict.code == 2004
        assert verdict.category == "dangerous_content"

    def test_text_refusal_falls_back_to_keywords(self) -> None:
        body = {
            "candidates": [{
                "finishReason": "STOP",
                "content": {"parts": [{"text": "I can't create images that contain nudity."}]},
            }]
        }
        assert normalize_generation_response(body).code == 2003

    def test_image_response_is_safe(self) -> None:
        body = {
            "candidates": [{
                "finishReason": "STOP",
                "content": {"parts": [{"inlineData": {"mimeType": "image/png", "data": "aGVsbG8="}}]},
            }]
        }
        assert normalize_generation_response(body).is_safe is True

    def test_text_only_allowed_when_no_image_expected(self) -> None:
        body = {"candidates": [{"finishReason": "STOP", "content": {"parts": [{"text": "{}"}]}}]}
        assert normalize_generation_response(body, expect_image=False).is_safe is True

    def test_snake_case_fields(self) -> None:
        body = {"prompt_feedback": {"block_reason": "HARM_CATEGORY_HARASSMENT"}}
        assert normalize_generation_response(body).code == 2002


class TestKeywordFallback:

    @pytest.mark.parametrize("text,code", [
        ("This request contains sexually explicit material", 2003),
        ("The image depicts violence", 2004),
        ("That would be hate speech", 2001),
        ("This looks like bullying", 2002),
        ("This goes against our content policy", 3000),
        ("Whatever you say", 3000),
    ])
    def test_keyword_rules(self, text: str, code: int) -> None:
        assert classify_refusal_text(text)[0] == code

    def test_unmatched_text_is_unknown(self) -> None:
        assert classify_refusal_text("Here is your picture") == (3000, "unknown")


class TestNormalizer:

    def test_dispatches_on_payload_shape(self) -> None:
        normalizer = SafetyViolationNormalizer("strict")

        assert normalizer.normalize({"racy": "LIKELY"}).code == 1003
        assert normalizer.normalize({"promptFeedback": {"blockReason": "HARM_CATEGORY_HATE_SPEECH"}}).code == 2001
