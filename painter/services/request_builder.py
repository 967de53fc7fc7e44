"""Assemble the multimodal ``generateContent`` request body for a shot."""
from __future__ import annotations

import base64
import logging
import math
from typing import Any, Dict, List, Sequence

from painter.errors import InvalidInputError
from painter.schemas import GenerationParams, Shot, normalise_image_size
from painter.services.reference_fetcher import ReferenceImage

logger = logging.getLogger(__name__)

IMAGE_ONLY_SUFFIX = (
    "\n\nOUTPUT REQUIREMENT: Return exactly one generated image. "
    "Do not answer with text only."
)


def _finite(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def build_generation_config(params: GenerationParams) -> Dict[str, Any]:
    config: Dict[str, Any] = {
        "responseModalities": list(params.response_modalities or ["IMAGE"]),
        "candidateCount": 1,
    }
    if _finite(params.seed):
        config["seed"] = int(params.seed)  # type: ignore[arg-type]
    if _finite(params.temperature):
        config["temperature"] = float(params.temperature)  # type: ignore[arg-type]

    image_config: Dict[str, Any] = {}
    if params.aspect_ratio:
        image_config["aspectRatio"] = params.aspect_ratio
    size = normalise_image_size(params.image_size)
    if size:
        image_config["imageSize"] = size
    if image_config:
        config["imageConfig"] = image_config

    if params.thinking_config:
        config["thinkingConfig"] = dict(params.thinking_config)
    if params.edit_mode:
        config["editMode"] = params.edit_mode
    return config


def build_generate_request(
    shot: Shot,
    references: Sequence[ReferenceImage],
    *,
    job_params: GenerationParams | None = None,
) -> Dict[str, Any]:
    """Return the provider request body; identical across retry attempts."""

    text = (shot.user_text or "").strip()
    if not text:
        raise InvalidInputError(f"Prompt is empty for shot {shot.shot_id}")

    system_instruction = (shot.system_instruction or "").strip()
    parts: List[Dict[str, Any]] = [{"text": f"{text}{IMAGE_ONLY_SUFFIX}"}]
    for reference in references:
        if system_instruction:
            parts.append({"text": f"[{reference.label}]"})
        parts.append(
            {
                "inlineData": {
                    "mimeType": reference.mime_type,
                    "data": base64.b64encode(reference.data).decode("ascii"),
                }
            }
        )

    contents: List[Dict[str, Any]] = []
    if system_instruction:
        for turn in shot.history:
            turn_text = (turn.text or "").strip()
            if not turn_text:
                continue
            # consecutive turns of one role collapse so user/model strictly alternate
            if contents and contents[-1]["role"] == turn.role:
                contents[-1]["parts"].append({"text": turn_text})
            else:
                contents.append({"role": turn.role, "parts": [{"text": turn_text}]})
    if contents and contents[-1]["role"] == "user":
        contents[-1]["parts"].extend(parts)
    else:
        contents.append({"role": "user", "parts": parts})

    params = shot.effective_params(job_params)
    body: Dict[str, Any] = {
        "contents": contents,
        "generationConfig": build_generation_config(params),
    }
    if system_instruction:
        body["systemInstruction"] = {"parts": [{"text": system_instruction}]}

    # never log the body itself, it carries base64 images
    logger.debug(
        "request.built shot=%s images=%s history=%s config=%s",
        shot.shot_id,
        len(references),
        len(contents) - 1,
        body["generationConfig"],
    )
    return body


__all__ = ["IMAGE_ONLY_SUFFIX", "build_generate_request", "build_generation_config"]
