"""Validation of incoming generation requests."""

from __future__ import annotations

import math
from typing import Any, Mapping

from jsonschema import Draft202012Validator

from ..domain.models import (
    ALLOWED_DIMENSIONS,
    DEFAULT_DIMENSION,
    GenerationRequest,
    GenerationStyle,
    Principal,
)
from ..exceptions import ValidationError

PROMPT_MIN_LENGTH = 3
PROMPT_MAX_LENGTH = 500
NEGATIVE_PROMPT_MAX_LENGTH = 500
MAX_SEED = 2**32

# Provider parameters a client may tune; prompt, size and seed are top-level fields.
PARAMS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "num_inference_steps": {"type": "integer", "minimum": 1, "maximum": 100},
        "guidance_scale": {"type": "number", "minimum": 1, "maximum": 20},
        "scheduler": {
            "enum": ["DDIM", "DPMSolverMultistep", "HeunDiscrete", "KarrasDPM", "K_EULER_ANCESTRAL", "K_EULER", "PNDM"]
        },
        "refine": {"enum": ["no_refiner", "expert_ensemble_refiner", "base_image_refiner"]},
        "high_noise_frac": {"type": "number", "minimum": 0, "maximum": 1},
        "apply_watermark": {"type": "boolean"},
    },
}

_params_validator = Draft202012Validator(PARAMS_SCHEMA)


def validate_generation_request(payload: Mapping[str, Any], *, principal: Principal) -> GenerationRequest:
    """Return a normalised :class:`GenerationRequest` or raise :class:`ValidationError`."""

    prompt = payload.get("prompt")
    if not isinstance(prompt, str):
        raise ValidationError("prompt is required", field="prompt")
    prompt = prompt.strip()
    if not PROMPT_MIN_LENGTH <= len(prompt) <= PROMPT_MAX_LENGTH:
        raise ValidationError(
            f"prompt must be between {PROMPT_MIN_LENGTH} and {PROMPT_MAX_LENGTH} characters",
            field="prompt",
        )

    style = _parse_style(payload.get("style"))
    if style.is_premium and not principal.is_premium:
        raise ValidationError(f"style '{style.value}' requires a premium subscription", field="style")

    width = _parse_dimension(payload.get("width"), "width")
    height = _parse_dimension(payload.get("height"), "height")
    seed = _parse_seed(payload.get("seed"))
    negative_prompt = _parse_negative_prompt(payload.get("negative_prompt"))
    params = _parse_params(payload.get("params"))

    return GenerationRequest(
        prompt=prompt,
        style=style,
        width=width,
        height=height,
        seed=seed,
        negative_prompt=negative_prompt,
        params=params,
    )


def _parse_style(value: Any) -> GenerationStyle:
    if not isinstance(value, str) or not value:
        raise ValidationError("style is required", field="style")
    try:
        return GenerationStyle(value.strip().lower())
    except ValueError:
        allowed = ", ".join(style.value for style in GenerationStyle)
        raise ValidationError(f"style must be one of: {allowed}", field="style") from None


def _parse_dimension(value: Any, field_name: str) -> int:
    if value is None:
        return DEFAULT_DIMENSION
    if isinstance(value, bool) or not isinstance(value, int) or value not in ALLOWED_DIMENSIONS:
        allowed = ", ".join(str(size) for size in ALLOWED_DIMENSIONS)
        raise ValidationError(f"{field_name} must be one of: {allowed}", field=field_name)
    return value


def _parse_seed(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < MAX_SEED:
        raise ValidationError(f"seed must be an integer in [0, {MAX_SEED})", field="seed")
    return value


def _parse_negative_prompt(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("negative_prompt must be a string", field="negative_prompt")
    value = value.strip()
    if len(value) > NEGATIVE_PROMPT_MAX_LENGTH:
        raise ValidationError(
            f"negative_prompt must be at most {NEGATIVE_PROMPT_MAX_LENGTH} characters",
            field="negative_prompt",
        )
    return value or None


def _parse_params(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValidationError("params must be an object", field="params")
    params = dict(value)
    errors = sorted(_params_validator.iter_errors(params), key=lambda err: list(err.path))
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.path) or "params"
        raise ValidationError(f"{location}: {first.message}", field="params")
    for key, item in params.items():
        if isinstance(item, float) and not math.isfinite(item):
            raise ValidationError(f"params.{key} must be finite", field="params")
    return params


__all__ = [
    "MAX_SEED",
    "PARAMS_SCHEMA",
    "PROMPT_MAX_LENGTH",
    "PROMPT_MIN_LENGTH",
    "validate_generation_request",
]
