import base64
import binascii
import io
import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import requests
from PIL import Image, UnidentifiedImageError

from .config import Settings
from .errors import GenerationCancelled, GenerationTimeout, GeneratorError
from .models import ImagePrompt


logger = logging.getLogger(__name__)

# Decoded payloads smaller than this are never real images.
MIN_IMAGE_BYTES = 100


@dataclass
class BackgroundGenerator:
    """
    Client for AI background generation.

    `generate` is safe to call from several worker threads at once: it holds no
    mutable state beyond its configuration.
    """

    settings: Settings = field(default_factory=Settings)
    retry_delays: Tuple[float, ...] = (2.0, 4.0)

    def generate(
        self,
        prompt: ImagePrompt,
        reference: Optional[bytes] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> bytes:
        """
        Generate one background, retrying failed calls with a growing delay.

        The last error is re-raised once retries are exhausted.
        """
        retries = min(self.settings.per_call_retries, len(self.retry_delays))
        last_error: Optional[Exception] = None

        for attempt in range(retries + 1):
            if attempt > 0:
                delay = self.retry_delays[attempt - 1]
                logger.info(
                    "Retry attempt %d/%d for %s screen %d after %.0fs delay",
                    attempt, retries, prompt.family.value, prompt.screen_index, delay,
                )
                if _wait(cancel_event, delay):
                    raise GenerationCancelled()
            elif cancel_event is not None and cancel_event.is_set():
                raise GenerationCancelled()

            try:
                return self.generate_single(prompt, reference)
            except GenerationTimeout as e:
                last_error = e
                logger.warning(
                    "Generation timed out after %ss for %s screen %d",
                    int(self.settings.request_timeout), prompt.family.value, prompt.screen_index,
                )
            except GeneratorError as e:
                last_error = e
                logger.warning(
                    "Generation failed for %s screen %d: %s",
                    prompt.family.value, prompt.screen_index, e,
                )

        assert last_error is not None
        raise last_error

    def generate_single(self, prompt: ImagePrompt, reference: Optional[bytes] = None) -> bytes:
        if self.settings.image_backend == "replicate":
            return self._replicate_generate(prompt)
        return self._openai_generate(prompt, reference)

    def _openai_generate(self, prompt: ImagePrompt, reference: Optional[bytes]) -> bytes:
        """
        Call an OpenAI-compatible Chat Completions endpoint (OpenAI, OpenRouter,
        Gemini's OpenAI compatibility layer, LiteLLM, ...) and pull the image out
        of the response.
        """
        import openai
        from openai import OpenAI

        if not self.settings.image_base_url:
            raise GeneratorError(
                "No image generation base URL configured. Set APPSHOTS_IMAGE_BASE_URL."
            )
        if not self.settings.image_api_key:
            raise GeneratorError(
                "No image generation API key configured. Set APPSHOTS_IMAGE_API_KEY."
            )

        client = OpenAI(
            base_url=normalize_base_url(self.settings.image_base_url),
            api_key=self.settings.image_api_key,
            timeout=self.settings.request_timeout,
            max_retries=0,
        )

        text = prompt.prompt
        if prompt.negative_prompt:
            text = f"{text}\n\nAvoid: {prompt.negative_prompt}"

        if reference is not None:
            encoded = base64.b64encode(reference).decode("ascii")
            content: Any = [
                {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{encoded}"}},
                {"type": "text", "text": text},
            ]
        else:
            content = text

        try:
            response = client.chat.completions.create(
                model=self.settings.image_model,
                max_tokens=4096,
                messages=[{"role": "user", "content": content}],
            )
        except openai.APITimeoutError:
            raise GenerationTimeout(self.settings.request_timeout) from None
        except openai.APIStatusError as e:
            raise GeneratorError(
                f"Image generation failed: HTTP {e.status_code}: {e.message}"
            ) from e
        except openai.APIError as e:
            raise GeneratorError(f"Image generation failed: {e}") from e

        return extract_image_data(response.model_dump(), timeout=self.settings.request_timeout)

    def _replicate_generate(self, prompt: ImagePrompt) -> bytes:
        """
        Call the Replicate API (Imagen 4 Fast by default).

        Requires REPLICATE_API_TOKEN to be set in the environment. Reference
        screenshots are not supported by this backend and are ignored.
        """
        import replicate
        from replicate.exceptions import ReplicateError

        if not os.environ.get("REPLICATE_API_TOKEN"):
            raise GeneratorError(
                "REPLICATE_API_TOKEN is not set. A valid API token is required for image generation."
            )

        final_prompt = (
            f"{prompt.prompt}. IMPORTANT: Do not include any text, letters, words, "
            "or typography in the image."
        )
        input_params: Dict[str, Any] = {
            "prompt": final_prompt,
            "aspect_ratio": "9:16" if prompt.family.value == "phone" else "3:4",
        }
        if prompt.negative_prompt:
            input_params["negative_prompt"] = prompt.negative_prompt

        try:
            output = replicate.run(self.settings.replicate_model, input=input_params)
        except ReplicateError as e:
            raise GeneratorError(f"Image generation failed: {e}") from e

        if isinstance(output, list):
            output = output[0] if output else None
        if output is None:
            raise GeneratorError("Image generation failed: empty output from Replicate.")

        data = output.read()
        if not _looks_like_image(data):
            raise GeneratorError("Generated image data is invalid.")
        return data


def normalize_base_url(base_url: str) -> str:
    """
    Turn a user-supplied endpoint into the base URL the OpenAI client expects
    (the client appends `/chat/completions` itself).
    """
    base = base_url.strip().rstrip("/")
    if base.endswith("/chat/completions"):
        return base[: -len("/chat/completions")]
    if base.endswith("/v1") or base.endswith("/v1beta/openai"):
        return base
    return base + "/v1"


def extract_image_data(payload: Dict[str, Any], timeout: float = 90.0) -> bytes:
    """
    Pull image bytes out of an OpenAI-compatible response payload.

    Understands chat completion content parts, base64 text and data URIs,
    OpenRouter style `message.images`, and Images API `data[]` entries.
    """
    error = payload.get("error")
    if isinstance(error, dict) and error.get("message"):
        raise GeneratorError(f"Image generation failed: API error: {error['message']}")

    for choice in payload.get("choices") or []:
        message = (choice or {}).get("message") or {}
        content = message.get("content")

        if isinstance(content, list):
            for part in content:
                data = _image_from_part(part)
                if data is not None:
                    return data
            for part in content:
                if isinstance(part, dict) and part.get("type") == "text":
                    data = _base64_from_text(part.get("text") or "")
                    if data is not None:
                        return data
        elif isinstance(content, str):
            data = _base64_from_text(content)
            if data is not None:
                return data

        for part in message.get("images") or []:
            data = _image_from_part(part)
            if data is not None:
                return data

    for item in payload.get("data") or []:
        b64 = item.get("b64_json")
        if b64:
            data = _decode_base64(b64)
            if data is not None:
                return data
        url = item.get("url")
        if url:
            try:
                response = requests.get(url, timeout=timeout)
                response.raise_for_status()
            except requests.Timeout:
                raise GenerationTimeout(timeout) from None
            except requests.RequestException as e:
                raise GeneratorError(f"Image generation failed: could not download image: {e}") from e
            if _looks_like_image(response.content):
                return response.content

    keys = ", ".join(sorted(str(k) for k in payload.keys()))
    raise GeneratorError(f"Image generation failed: no image data found. Response keys: [{keys}]")


def _image_from_part(part: Any) -> Optional[bytes]:
    if not isinstance(part, dict):
        return None
    kind = part.get("type")

    if kind == "image_url":
        image_url = part.get("image_url") or {}
        url = image_url.get("url") if isinstance(image_url, dict) else image_url
        return _base64_from_text(url or "")

    if kind == "image":
        if isinstance(part.get("data"), str):
            return _decode_base64(part["data"])
        image = part.get("image")
        if isinstance(image, dict) and image.get("url"):
            return _base64_from_text(image["url"])

    return None


def _base64_from_text(text: str) -> Optional[bytes]:
    marker = "base64,"
    if marker in text:
        tail = text.split(marker, 1)[1].strip()
        for stop in ('"', "'", " ", "\n", ")"):
            tail = tail.split(stop, 1)[0]
        return _decode_base64(tail)
    return _decode_base64(text)


def _decode_base64(text: str) -> Optional[bytes]:
    cleaned = "".join(text.split())
    cleaned += "=" * (-len(cleaned) % 4)
    try:
        data = base64.b64decode(cleaned)
    except (binascii.Error, ValueError):
        return None
    return data if _looks_like_image(data) else None


def _looks_like_image(data: bytes) -> bool:
    if len(data) <= MIN_IMAGE_BYTES:
        return False
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        return False
    return True


def _wait(cancel_event: Optional[threading.Event], seconds: float) -> bool:
    """Sleep for `seconds`; returns True if cancelled while waiting."""
    if cancel_event is None:
        threading.Event().wait(seconds)
        return False
    return cancel_event.wait(seconds)


__all__ = ["BackgroundGenerator", "extract_image_data", "normalize_base_url"]
