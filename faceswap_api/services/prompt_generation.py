"""
Prompt Generation Helpers
Instruction texts sent to the Vertex image models, prompt augmentation, and
recovery of the structured scene description returned by the prompt model.
"""

import json
import re
from typing import Any, Dict, Optional, Tuple, Union

FACIAL_PRESERVATION_INSTRUCTION = (
    "Keep the person exactly as shown in the reference image with 100% identical facial features, "
    "bone structure, skin tone, and appearance. Remove all pimples, blemishes, and skin imperfections. "
    "Enhance skin texture with flawless, smooth, and natural appearance. 8K ultra-high detail, "
    "ultra-sharp facial features, and professional skin retouching."
)

CONTENT_SAFETY_INSTRUCTION = (
    "The result must be fully compliant with app store content policies: no sexual, explicit, "
    "suggestive, racy or adult content, no exposed sensitive body areas, no violence or gore. "
    "Keep the scene wholesome, respectful and appropriate for all audiences."
)

MERGE_PROMPT_DEFAULT = (
    "Create a photorealistic composite placing the subject from [Image 1] into the scene of [Image 2]. "
    "Keep realistic body proportions, match lighting, color temperature, contrast and shadows on the "
    "subject to the background environment so the subject looks grounded and seamlessly integrated. "
    "The outfit may be replaced to match the scene, but keep each subject's face and expression."
)

PROMPT_GENERATION_DEFAULT = (
    "Analyze the provided image and return a detailed description of its contents, pose, clothing, "
    "environment, HDR lighting, style, and composition in a strict JSON format. Generate a JSON object "
    'with the keys "prompt", "style", "lighting", "composition", "camera", and "background". '
    'In "prompt", write a detailed HDR scene description including the character\'s pose, outfit, '
    "environment, atmosphere and visual mood, and include this face-swap rule: \"Replace the original "
    "face with the face from the image I will upload later. " + FACIAL_PRESERVATION_INSTRUCTION + "\" "
    "The description must not contain any sexual, explicit, suggestive or adult content. Return only "
    "the JSON object, without extra commentary."
)

PROMPT_GENERATION_FILTER = (
    "Analyze the provided image and describe its visual style as a reusable filter in strict JSON with "
    'the keys "prompt", "style", "lighting", "composition", "camera", and "background". In "prompt", '
    "describe how to restyle any photo with this look (color grading, lighting, texture, mood) while "
    "keeping the subject's identity unchanged. Return only the JSON object."
)

GENDER_HINTS = {
    "male": "Emphasize that the character is male with confident, masculine presence and styling.",
    "female": "Emphasize that the character is female with graceful, feminine presence and styling.",
}

REQUIRED_PROMPT_KEYS = ("prompt", "style", "lighting", "composition", "camera", "background")
MIN_PROMPT_LENGTH = 50

# Response schema asked from the prompt model
PROMPT_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {key: {"type": "string"} for key in REQUIRED_PROMPT_KEYS},
    "required": list(REQUIRED_PROMPT_KEYS),
}

PROMPT_FIELD_DEFAULTS = {
    "prompt": "A professional portrait",
    "style": "photorealistic",
    "lighting": "natural",
    "composition": "portrait",
    "camera": "professional",
    "background": "neutral",
}


def prompt_to_text(prompt: Union[str, Dict[str, Any], None]) -> str:
    """Structured prompts are sent as pretty-printed JSON."""
    if prompt is None:
        return ""
    if isinstance(prompt, dict):
        return json.dumps(prompt, indent=2)
    return str(prompt)


def augment_prompt(
    prompt: Union[str, Dict[str, Any], None],
    additional_prompt: Optional[str] = None,
    gender: Optional[str] = None
) -> Union[str, Dict[str, Any], None]:
    """
    Append caller instructions and a gender hint to a stored prompt.

    Dict prompts get the extras appended to their "prompt" field; the input
    is never mutated.
    """
    extras = []
    if additional_prompt and additional_prompt.strip():
        extras.append(additional_prompt.strip())
    hint = GENDER_HINTS.get((gender or "").lower())
    if hint:
        extras.append(hint)

    if not extras:
        return prompt

    suffix = " ".join(extras)
    if isinstance(prompt, dict):
        augmented = dict(prompt)
        base = str(augmented.get("prompt", "")).strip()
        augmented["prompt"] = f"{base} {suffix}".strip()
        return augmented
    base = (prompt or "").strip()
    return f"{base} {suffix}".strip()


def build_faceswap_prompt(prompt: Union[str, Dict[str, Any], None]) -> str:
    text = prompt_to_text(prompt)
    if "100% identical facial features" not in text:
        text = f"{text} {FACIAL_PRESERVATION_INSTRUCTION}".strip()
    return f"{text}\n\n{CONTENT_SAFETY_INSTRUCTION}"


def build_merge_prompt(prompt: Union[str, Dict[str, Any], None]) -> str:
    text = prompt_to_text(prompt) or MERGE_PROMPT_DEFAULT
    return f"{text}\n\n{CONTENT_SAFETY_INSTRUCTION}"


def build_background_prompt(prompt: Union[str, Dict[str, Any], None]) -> str:
    return f"{prompt_to_text(prompt)}\n\n{CONTENT_SAFETY_INSTRUCTION}"


def _string_field(text: str, key: str) -> Optional[str]:
    match = re.search(rf'"{key}"\s*:\s*"((?:[^"\\]|\\.)*)"', text)
    if not match:
        return None
    try:
        return json.loads(f'"{match.group(1)}"')
    except ValueError:
        return match.group(1)


def _recover_json(text: str) -> Optional[Dict[str, Any]]:
    text = text.strip()

    # Plain JSON
    try:
        value = json.loads(text)
        if isinstance(value, dict):
            return value
    except ValueError:
        pass

    # Markdown fenced block
    fenced = re.search(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```", text)
    if fenced:
        try:
            return json.loads(fenced.group(1))
        except ValueError:
            pass

    # Truncated object - close the open braces
    if text.startswith("{") and not text.endswith("}"):
        missing = text.count("{") - text.count("}")
        try:
            value = json.loads(text + "}" * max(0, missing))
            if isinstance(value, dict):
                return value
        except ValueError:
            pass

    # Field-by-field extraction
    prompt = _string_field(text, "prompt")
    if prompt:
        recovered = {"prompt": prompt}
        for key in REQUIRED_PROMPT_KEYS[1:]:
            recovered[key] = _string_field(text, key) or PROMPT_FIELD_DEFAULTS[key]
        return recovered

    return None


def parse_prompt_json(text: str) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """
    Recover the scene description object from model output.

    Returns:
        (prompt_dict, None) on success, (None, error_message) otherwise
    """
    recovered = _recover_json(text or "")
    if recovered is None:
        return None, "No valid JSON response from Vertex AI"

    missing = [key for key in REQUIRED_PROMPT_KEYS if not recovered.get(key)]
    if missing:
        return None, f"Missing required keys: {', '.join(missing)}"

    if len(str(recovered["prompt"])) < MIN_PROMPT_LENGTH:
        return None, "Prompt too short - likely truncated response"

    return recovered, None
