"""
Safety Violation Normalizer
Maps Google Vision SafeSearch annotations and Gemini/Vertex response envelopes
onto one {code, category, level, reason} vocabulary.

Codes:
    1001-1005  SafeSearch categories (adult, violence, racy, medical, spoof)
    2001-2004  Generative harm categories (hate, harassment, sexual, dangerous)
    3000       Unknown / unclassified block
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from faceswap_api.schemas.generation import SafetyVerdict

logger = logging.getLogger(__name__)


class SafetyStrictness(str, Enum):
    """Which SafeSearch likelihoods block a request."""
    LENIENT = "lenient"    # VERY_LIKELY only
    STRICT = "strict"      # LIKELY and VERY_LIKELY
    DISABLED = "disabled"  # never block


# SafeSearch
SAFE_SEARCH_CODES: Dict[str, int] = {
    "adult": 1001,
    "violence": 1002,
    "racy": 1003,
    "medical": 1004,
    "spoof": 1005,
}

LIKELIHOOD_SEVERITY: Dict[str, int] = {
    "VERY_UNLIKELY": -1,
    "UNLIKELY": 0,
    "POSSIBLE": 1,
    "LIKELY": 2,
    "VERY_LIKELY": 3,
}

CONCERNING_LEVELS = ("POSSIBLE", "LIKELY", "VERY_LIKELY")

UNSAFE_LEVELS: Dict[SafetyStrictness, Tuple[str, ...]] = {
    SafetyStrictness.LENIENT: ("VERY_LIKELY",),
    SafetyStrictness.STRICT: ("LIKELY", "VERY_LIKELY"),
    SafetyStrictness.DISABLED: (),
}

# Generative models
HATE_SPEECH = 2001
HARASSMENT = 2002
SEXUALLY_EXPLICIT = 2003
DANGEROUS_CONTENT = 2004
UNKNOWN_VIOLATION = 3000

HARM_CATEGORY_CODES: Dict[str, Tuple[int, str]] = {
    "HARM_CATEGORY_HATE_SPEECH": (HATE_SPEECH, "hate_speech"),
    "HARM_CATEGORY_HARASSMENT": (HARASSMENT, "harassment"),
    "HARM_CATEGORY_SEXUALLY_EXPLICIT": (SEXUALLY_EXPLICIT, "sexually_explicit"),
    "HARM_CATEGORY_DANGEROUS_CONTENT": (DANGEROUS_CONTENT, "dangerous_content"),
}

BLOCKING_FINISH_REASONS = frozenset([
    "SAFETY",
    "IMAGE_SAFETY",
    "RECITATION",
    "BLOCKED",
    "PROHIBITED_CONTENT",
    "BLOCKLIST",
    "SPII",
])

BLOCKING_PROBABILITIES = frozenset(["MEDIUM", "HIGH"])


@dataclass(frozen=True)
class KeywordRule:
    """One step of the free-text fallback; rules are tested in order."""
    code: int
    category: str
    keywords: Tuple[str, ...]


# Policy configuration: English-only and best-effort, tune as refusals are observed
DEFAULT_KEYWORD_RULES: Tuple[KeywordRule, ...] = (
    KeywordRule(SEXUALLY_EXPLICIT, "sexually_explicit", (
        "sexual", "sexually", "explicit", "nudity", "nude", "naked", "porn",
        "erotic", "adult content", "suggestive",
    )),
    KeywordRule(DANGEROUS_CONTENT, "dangerous_content", (
        "dangerous", "violent", "violence", "weapon", "gore", "blood",
        "self-harm", "harmful",
    )),
    KeywordRule(HATE_SPEECH, "hate_speech", (
        "hate speech", "hateful", "hatred", "racist", "discriminat", "slur",
    )),
    KeywordRule(HARASSMENT, "harassment", (
        "harassment", "harass", "bully", "bullying", "threaten", "intimidat",
    )),
    KeywordRule(UNKNOWN_VIOLATION, "content_policy", (
        "content policy", "policy", "guidelines", "safety", "inappropriate",
        "not able to", "unable to", "can't help", "cannot help", "can't create",
        "cannot create", "violat",
    )),
)


def unsafe_levels(strictness: SafetyStrictness) -> Tuple[str, ...]:
    return UNSAFE_LEVELS[SafetyStrictness(strictness)]


def severity(level: Optional[str]) -> int:
    return LIKELIHOOD_SEVERITY.get(level or "", 0)


def worst_safe_search_violation(annotation: Dict[str, Any]) -> Optional[Tuple[str, str, int]]:
    """
    Find the most severe concerning category.

    Returns:
        (category, level, code) or None when nothing is POSSIBLE or worse.
        Ties keep the earlier category (adult, violence, racy, medical, spoof).
    """
    worst = None
    for category, code in SAFE_SEARCH_CODES.items():
        level = annotation.get(category)
        if level not in CONCERNING_LEVELS:
            continue
        if worst is None or severity(level) > severity(worst[1]):
            worst = (category, level, code)
    return worst


def normalize_safe_search(
    annotation: Dict[str, Any],
    strictness: SafetyStrictness = SafetyStrictness.LENIENT
) -> SafetyVerdict:
    """
    Build a verdict from a SafeSearch {adult, violence, racy, medical, spoof} annotation.
    """
    blocking = unsafe_levels(strictness)
    flagged = [c for c in SAFE_SEARCH_CODES if annotation.get(c) in blocking]

    if not flagged:
        return SafetyVerdict(is_safe=True, source="safe_search")

    worst = worst_safe_search_violation(annotation)
    category, level, code = worst
    return SafetyVerdict(
        is_safe=False,
        code=code,
        category=category,
        level=level,
        reason=f"Content blocked: image contains {category} content ({level})",
        source="safe_search",
    )


def _get(obj: Dict[str, Any], *keys: str) -> Any:
    """Read the first present key; Vertex REST mixes camelCase and snake_case."""
    for key in keys:
        if key in obj:
            return obj[key]
    return None


def _has_image(candidate: Dict[str, Any]) -> bool:
    content = candidate.get("content") or {}
    for part in content.get("parts") or []:
        inline = _get(part, "inlineData", "inline_data") or {}
        if inline.get("data"):
            return True
    return False


def _candidate_text(candidate: Dict[str, Any]) -> str:
    texts: List[str] = []
    finish_message = _get(candidate, "finishMessage", "finish_message")
    if finish_message:
        texts.append(str(finish_message))
    content = candidate.get("content") or {}
    for part in content.get("parts") or []:
        if part.get("text"):
            texts.append(str(part["text"]))
    return " ".join(texts)


def _match_ratings(ratings: Iterable[Dict[str, Any]]) -> Optional[Tuple[int, str, str]]:
    """First rating that is blocked or MEDIUM/HIGH and maps to a known category."""
    for rating in ratings or []:
        probability = rating.get("probability")
        if not (rating.get("blocked") is True or probability in BLOCKING_PROBABILITIES):
            continue
        mapped = HARM_CATEGORY_CODES.get(rating.get("category", ""))
        if mapped:
            return mapped[0], mapped[1], probability or "BLOCKED"
    return None


def classify_refusal_text(
    text: str,
    rules: Tuple[KeywordRule, ...] = DEFAULT_KEYWORD_RULES
) -> Tuple[int, str]:
    """Keyword fallback for refusals without structured safety fields."""
    lowered = (text or "").lower()
    for rule in rules:
        if any(keyword in lowered for keyword in rule.keywords):
            return rule.code, rule.category
    return UNKNOWN_VIOLATION, "unknown"


def normalize_generation_response(
    body: Dict[str, Any],
    expect_image: bool = True,
    rules: Tuple[KeywordRule, ...] = DEFAULT_KEYWORD_RULES
) -> SafetyVerdict:
    """
    Build a verdict from a generateContent response envelope.

    Args:
        body: Parsed JSON body (promptFeedback / candidates)
        expect_image: Treat a STOP finish without an inline image as a block
        rules: Ordered keyword rules for free-text refusals
    """
    if not isinstance(body, dict):
        return SafetyVerdict(is_safe=True, source="generative")

    # 1. Prompt-level block
    feedback = _get(body, "promptFeedback", "prompt_feedback") or {}
    block_reason = _get(feedback, "blockedReason", "blockReason", "block_reason")
    if block_reason:
        mapped = HARM_CATEGORY_CODES.get(block_reason)
        if mapped is None:
            rated = _match_ratings(_get(feedback, "safetyRatings", "safety_ratings"))
            if rated:
                mapped = (rated[0], rated[1])
        code, category = mapped if mapped else (UNKNOWN_VIOLATION, "unknown")
        logger.warning(f"[Safety] Prompt blocked: {block_reason} -> {code}")
        return SafetyVerdict(
            is_safe=False,
            code=code,
            category=category,
            level=block_reason,
            reason=f"Request blocked by safety filters ({block_reason})",
            source="generative",
        )

    # 2. Candidate-level blocks
    for candidate in body.get("candidates") or []:
        finish_reason = _get(candidate, "finishReason", "finish_reason")
        has_image = _has_image(candidate)
        blocked = finish_reason in BLOCKING_FINISH_REASONS or (
            expect_image and finish_reason == "STOP" and not has_image
        )
        if not blocked:
            continue

        rated = _match_ratings(_get(candidate, "safetyRatings", "safety_ratings"))
        if rated:
            code, category, level = rated
        else:
            code, category = classify_refusal_text(_candidate_text(candidate), rules)
            level = finish_reason

        logger.warning(f"[Safety] Candidate blocked: finish={finish_reason} -> {code} ({category})")
        return SafetyVerdict(
            is_safe=False,
            code=code,
            category=category,
            level=level,
            reason=f"Content blocked: {category.replace('_', ' ')} (finish reason {finish_reason})",
            source="generative",
        )

    return SafetyVerdict(is_safe=True, source="generative")


class SafetyViolationNormalizer:
    """Bundles both normalizers with a configured strictness and keyword policy."""

    def __init__(
        self,
        strictness: SafetyStrictness = SafetyStrictness.LENIENT,
        keyword_rules: Tuple[KeywordRule, ...] = DEFAULT_KEYWORD_RULES
    ):
        self.strictness = SafetyStrictness(strictness)
        self.keyword_rules = keyword_rules

    def from_safe_search(self, annotation: Dict[str, Any]) -> SafetyVerdict:
        return normalize_safe_search(annotation, self.strictness)

    def from_generation_response(self, body: Dict[str, Any], expect_image: bool = True) -> SafetyVerdict:
        return normalize_generation_response(body, expect_image, self.keyword_rules)

    def normalize(self, payload: Dict[str, Any], expect_image: bool = True) -> SafetyVerdict:
        """Pick the right vocabulary by shape."""
        if any(k in payload for k in ("candidates", "promptFeedback", "prompt_feedback")):
            return self.from_generation_response(payload, expect_image)
        return self.from_safe_search(payload)


__all__ = [
    "SafetyStrictness",
    "SAFE_SEARCH_CODES",
    "HARM_CATEGORY_CODES",
    "UNKNOWN_VIOLATION",
    "KeywordRule",
    "DEFAULT_KEYWORD_RULES",
    "worst_safe_search_violation",
    "normalize_safe_search",
    "normalize_generation_response",
    "classify_refusal_text",
    "SafetyViolationNormalizer",
]
