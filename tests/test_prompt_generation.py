"""Tests for prompt augmentation and scene-description recovery."""

import json

from faceswap_api.services.prompt_generation import (
    CONTENT_SAFETY_INSTRUCTION,
    FACIAL_PRESERVATION_INSTRUCTION,
    MERGE_PROMPT_DEFAULT,
    augment_prompt,
    build_faceswap_prompt,
    build_merge_prompt,
    parse_prompt_json,
    prompt_to_text,
)

SCENE = {
    "prompt": "A knight in polished armor standing on a misty cliff at sunrise, cinematic HDR lighting",
    "style": "photorealistic",
    "lighting": "golden hour",
    "composition": "full body",
    "camera": "35mm",
    "background": "misty mountains",
}


class TestAugmentPrompt:

    def test_string_prompt_gets_extras(self) -> None:
        result = augment_prompt("A castle", "Add snow", "female")

        assert result.startswith("A castle Add snow")
        assert "female with graceful, feminine presence" in result

    def test_dict_prompt_is_not_mutated(self) -> None:
        original = dict(SCENE)
        result = augment_prompt(original, None, "male")

        assert "masculine presence" in result["prompt"]
        assert original == SCENE
        assert result["style"] == "photorealistic"

    def test_no_extras_returns_input(self) -> None:
        assert augment_prompt(SCENE, "  ", "other") is SCENE

    def test_prompt_to_text(self) -> None:
        assert json.loads(prompt_to_text(SCENE)) == SCENE
        assert prompt_to_text(None) == ""


class TestInstructionTexts:

    def test_faceswap_adds_preservation_once(self) -> None:
        once = build_faceswap_prompt("A castle")
        assert FACIAL_PRESERVATION_INSTRUCTION in once
        assert once.endswith(CONTENT_SAFETY_INSTRUCTION)

        already = build_faceswap_prompt("Keep 100% identical facial features please")
        assert FACIAL_PRESERVATION_INSTRUCTION not in already

    def test_merge_default(self) -> None:
        assert build_merge_prompt(None).startswith(MERGE_PROMPT_DEFAULT)


class TestParsePromptJson:

    def test_plain_json(self) -> None:
        prompt, error = parse_prompt_json(json.dumps(SCENE))
        assert error is None
        assert prompt == SCENE

    def test_fenced_block(self) -> None:
        text = "Sure!\n```json\n" + json.dumps(SCENE) + "\n```"
        prompt, _ = parse_prompt_json(text)
        assert prompt == SCENE

    def test_truncated_object_is_closed(self) -> None:
        text = json.dumps(SCENE)[:-1]
        prompt, _ = parse_prompt_json(text)
        assert prompt == SCENE

    def test_field_extraction_fills_defaults(self) -> None:
        text = 'garbage "prompt": "' + SCENE["prompt"] + '", "style": "anime", "lighting": '
        prompt, error = parse_prompt_json(text)

        assert error is None
        assert prompt["prompt"] == SCENE["prompt"]
        assert prompt["style"] == "anime"
        assert prompt["background"] == "neutral"

    def test_missing_keys(self) -> None:
        _, error = parse_prompt_json(json.dumps({"prompt": SCENE["prompt"]}))
        assert error.startswith("Missing required keys")

    def test_short_prompt(self) -> None:
        _, error = parse_prompt_json(json.dumps(dict(SCENE, prompt="too short")))
        assert "too short" in error.lower()

    def test_no_json(self) -> None:
        prompt, error = parse_prompt_json("I cannot describe this image.")
        assert prompt is None
        assert error == "No valid JSON response from Vertex AI"
