"""Replicate predictions API adapter (Stable Diffusion XL)."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping

import httpx

from ..domain.models import GenerationRequest, GenerationStyle
from .base import (
    FetchedOutput,
    PermanentProviderError,
    PollResult,
    PollStatus,
    ProviderAdapter,
    ProviderOutput,
    SubmitResult,
    TransientProviderError,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL_VERSION = "39ed52f2a78e934b3ba6e2a89f5b1c712de7dfea535525255b1aa35c5565e08b"
DEFAULT_NEGATIVE_PROMPT = (
    "low quality, blurry, pixelated, ugly, distorted, disfigured, poor composition"
)

_TRANSIENT_STATUS_CODES = frozenset({408, 409, 425, 429})
_PERMANENT_STATUS_CODES = frozenset({400, 401, 402, 403, 404, 422})
_RUNNING_STATES = frozenset({"starting", "processing"})
_PROGRESS_PATTERN = re.compile(r"(\d{1,3})%\|")


@dataclass(frozen=True, slots=True)
class ModelPreset:
    num_inference_steps: int = 30
    guidance_scale: float = 7.5
    scheduler: str = "K_EULER"
    negative_prompt: str = DEFAULT_NEGATIVE_PROMPT


BASE_PRESET = ModelPreset()

STYLE_PRESETS: dict[GenerationStyle, ModelPreset] = {
    GenerationStyle.REALISTIC: ModelPreset(
        num_inference_steps=50,
        guidance_scale=8.5,
        negative_prompt="cartoon, anime, illustration, painting, drawing, art, sketch, 3d, render",
    ),
    GenerationStyle.MINIMALIST: ModelPreset(
        num_inference_steps=20,
        guidance_scale=6.0,
        negative_prompt="complex, detailed, colorful, shaded, gradient",
    ),
    GenerationStyle.WATERCOLOR: ModelPreset(
        guidance_scale=6.5,
        negative_prompt="digital art, 3d render, photograph, sharp lines",
    ),
}


@dataclass(slots=True)
class ReplicateProvider(ProviderAdapter):
    """Drive SDXL predictions through the Replicate HTTP API.

    ``submit`` creates a prediction and returns its id as the handle. ``poll``
    maps the prediction status onto :class:`PollStatus`; ``failed`` and
    ``canceled`` predictions are permanent errors. Every HTTP call opens its own
    client bounded by ``timeout_seconds``.
    """

    api_token: str
    base_url: str = "https://api.replicate.com"
    model_version: str = DEFAULT_MODEL_VERSION
    timeout_seconds: float = 30.0
    log: logging.Logger = field(default_factory=lambda: logger)

    provider_id = "replicate"

    async def submit(self, request: GenerationRequest) -> SubmitResult:
        payload = {"version": self.model_version, "input": build_model_input(request)}
        self.log.info(
            "replicate.submit.start",
            extra={
                "style": request.style.value,
                "width": request.width,
                "height": request.height,
                "prompt_len": len(request.prompt),
            },
        )
        response = await self._request("POST", self._url("/v1/predictions"), json=payload)
        body = self._parse_body(response)
        handle = body.get("id")
        if not isinstance(handle, str) or not handle:
            raise TransientProviderError("Replicate response is missing the prediction id")

        output = None
        status = body.get("status")
        if status == "succeeded":
            output = self._extract_output(body)
        elif status in {"failed", "canceled"}:
            raise PermanentProviderError(self._prediction_error(body, status))
        self.log.info("replicate.submit.accepted", extra={"handle": handle, "status": status})
        return SubmitResult(handle=handle, output=output)

    async def poll(self, handle: str) -> PollResult:
        response = await self._request("GET", self._url(f"/v1/predictions/{handle}"))
        body = self._parse_body(response)
        status = body.get("status")
        if status in _RUNNING_STATES:
            return PollResult(status=PollStatus.RUNNING, progress=parse_progress(body.get("logs")))
        if status == "succeeded":
            return PollResult(
                status=PollStatus.SUCCEEDED,
                output=self._extract_output(body),
                progress=1.0,
            )
        if status in {"failed", "canceled"}:
            self.log.warning(
                "replicate.prediction.unsuccessful",
                extra={"handle": handle, "status": status},
            )
            raise PermanentProviderError(self._prediction_error(body, status))
        raise TransientProviderError(f"Replicate returned unknown prediction status {status!r}")

    async def fetch_output(self, output: ProviderOutput) -> FetchedOutput:
        headers = self._headers() if output.uri.startswith(self.base_url) else {}
        response = await self._request("GET", output.uri, headers=headers)
        content = response.content
        if not content:
            raise TransientProviderError("Replicate output download returned no bytes")
        content_type = output.content_type or _content_type_from(response) or "image/png"
        return FetchedOutput(data=content, content_type=content_type)

    async def cancel(self, handle: str) -> None:
        await self._request("POST", self._url(f"/v1/predictions/{handle}/cancel"))
        self.log.info("replicate.prediction.cancelled", extra={"handle": handle})

    # Helpers ------------------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}{path}"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json: Mapping[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        request_headers = self._headers() if headers is None else headers
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                if method == "POST":
                    response = await client.post(url, headers=request_headers, json=json)
                else:
                    response = await client.get(url, headers=request_headers)
        except httpx.TimeoutException as exc:
            raise TransientProviderError(f"Replicate request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransientProviderError(f"Replicate HTTP error: {exc}") from exc

        status_code = response.status_code
        if 200 <= status_code < 300:
            return response
        detail = _extract_error(response)
        self.log.error(
            "replicate.response.error status=%s detail=%s",
            status_code,
            detail,
            extra={"provider": self.provider_id, "http_status": status_code},
        )
        message = f"Replicate request failed (status={status_code}): {detail}"
        if status_code in _TRANSIENT_STATUS_CODES or status_code >= 500:
            raise TransientProviderError(message)
        if status_code in _PERMANENT_STATUS_CODES:
            raise PermanentProviderError(message)
        raise TransientProviderError(message)

    @staticmethod
    def _parse_body(response: httpx.Response) -> Mapping[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise TransientProviderError("Replicate response is not valid JSON") from exc
        if not isinstance(body, Mapping):
            raise TransientProviderError("Replicate response is not a JSON object")
        return body

    @staticmethod
    def _extract_output(body: Mapping[str, Any]) -> ProviderOutput:
        output = body.get("output")
        if isinstance(output, list):
            output = output[0] if output else None
        if not isinstance(output, str) or not output:
            raise TransientProviderError("Replicate prediction succeeded without output")
        return ProviderOutput(uri=output)

    @staticmethod
    def _prediction_error(body: Mapping[str, Any], status: str) -> str:
        error = body.get("error")
        if error:
            return f"Replicate prediction {status}: {error}"
        return f"Replicate prediction {status}"


def build_model_input(request: GenerationRequest) -> dict[str, Any]:
    """Map a generation request onto SDXL model inputs."""

    preset = STYLE_PRESETS.get(request.style, BASE_PRESET)
    model_input: dict[str, Any] = {
        "prompt": request.prompt,
        "negative_prompt": request.negative_prompt or preset.negative_prompt,
        "width": request.width,
        "height": request.height,
        "num_inference_steps": preset.num_inference_steps,
        "guidance_scale": preset.guidance_scale,
        "scheduler": preset.scheduler,
    }
    if request.seed is not None:
        model_input["seed"] = request.seed
    model_input.update(request.params)
    return model_input


def parse_progress(logs: Any) -> float | None:
    """Return the last ``NN%|`` progress marker of the prediction logs as 0..1."""

    if not isinstance(logs, str):
        return None
    matches = _PROGRESS_PATTERN.findall(logs)
    if not matches:
        return None
    return min(int(matches[-1]), 100) / 100.0


def _content_type_from(response: httpx.Response) -> str | None:
    headers = getattr(response, "headers", None) or {}
    value = headers.get("content-type") or headers.get("Content-Type")
    if not value:
        return None
    return value.split(";", 1)[0].strip() or None


def _extract_error(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:  # pragma: no cover - fallback
        return response.text[:500]
    if isinstance(data, dict):
        detail = data.get("detail") or data.get("error") or data.get("title")
        if detail:
            return str(detail)
    return str(data)[:500]


__all__ = [
    "BASE_PRESET",
    "DEFAULT_MODEL_VERSION",
    "DEFAULT_NEGATIVE_PROMPT",
    "ModelPreset",
    "ReplicateProvider",
    "STYLE_PRESETS",
    "build_model_input",
    "parse_progress",
]
