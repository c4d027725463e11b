"""
Background generation client unit tests (no network)
"""

import base64
import threading

import pytest

from appshots import generator as generator_module
from appshots.config import Settings
from appshots.errors import GenerationCancelled, GenerationTimeout, GeneratorError
from appshots.generator import BackgroundGenerator, extract_image_data, normalize_base_url
from appshots.models import ImagePrompt


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class TestNormalizeBaseUrl:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("https://api.example.com/v1/chat/completions", "https://api.example.com/v1"),
            ("https://api.example.com/v1/", "https://api.example.com/v1"),
            (
                "https://generativelanguage.googleapis.com/v1beta/openai",
                "https://generativelanguage.googleapis.com/v1beta/openai",
            ),
            ("https://openrouter.ai/api", "https://openrouter.ai/api/v1"),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_base_url(raw) == expected


class TestExtractImageData:
    def test_image_url_part_with_data_uri(self, png_bytes):
        payload = {"choices": [{"message": {"content": [
            {"type": "text", "text": "Here you go"},
            {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{b64(png_bytes)}"}},
        ]}}]}
        assert extract_image_data(payload) == png_bytes

    def test_inline_image_part(self, png_bytes):
        payload = {"choices": [{"message": {"content": [{"type": "image", "data": b64(png_bytes)}]}}]}
        assert extract_image_data(payload) == png_bytes

    def test_plain_base64_string_content(self, png_bytes):
        payload = {"choices": [{"message": {"content": b64(png_bytes)}}]}
        assert extract_image_data(payload) == png_bytes

    def test_data_uri_inside_markdown(self, png_bytes):
        text = f"![background](data:image/png;base64,{b64(png_bytes)})"
        payload = {"choices": [{"message": {"content": text}}]}
        assert extract_image_data(payload) == png_bytes

    def test_message_images(self, png_bytes):
        payload = {"choices": [{"message": {
            "content": "",
            "images": [{"type": "image_url", "image_url": {"url": f"data:image/png;base64,{b64(png_bytes)}"}}],
        }}]}
        assert extract_image_data(payload) == png_bytes

    def test_images_api_b64_json(self, png_bytes):
        assert extract_image_data({"data": [{"b64_json": b64(png_bytes)}]}) == png_bytes

    def test_images_api_url(self, png_bytes, monkeypatch):
        class FakeResponse:
            content = png_bytes

            def raise_for_status(self):
                return None

        requested = []

        def fake_get(url, timeout):
            requested.append((url, timeout))
            return FakeResponse()

        monkeypatch.setattr(generator_module.requests, "get", fake_get)
        data = extract_image_data({"data": [{"url": "https://cdn.example.com/bg.png"}]}, timeout=12)
        assert data == png_bytes
        assert requested == [("https://cdn.example.com/bg.png", 12)]

    def test_api_error_payload(self):
        with pytest.raises(GeneratorError, match="quota exceeded"):
            extract_image_data({"error": {"message": "quota exceeded"}})

    def test_text_only_response_is_rejected(self):
        payload = {"choices": [{"message": {"content": "I cannot draw that."}}], "id": "x"}
        with pytest.raises(GeneratorError, match="no image data found"):
            extract_image_data(payload)

    def test_tiny_payload_is_not_an_image(self):
        payload = {"choices": [{"message": {"content": b64(b"\x89PNG tiny")}}]}
        with pytest.raises(GeneratorError):
            extract_image_data(payload)


class TestBackgroundGenerator:
    def _generator(self, **settings):
        return BackgroundGenerator(settings=Settings(**settings), retry_delays=(0.0, 0.0))

    def test_retries_then_succeeds(self, png_bytes, monkeypatch):
        gen = self._generator()
        outcomes = [GeneratorError("first"), GenerationTimeout(90), png_bytes]
        calls = []

        def fake_single(prompt, reference=None):
            calls.append(prompt.screen_index)
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        monkeypatch.setattr(gen, "generate_single", fake_single)
        assert gen.generate(ImagePrompt(4, "p")) == png_bytes
        assert calls == [4, 4, 4]

    def test_gives_up_after_two_retries(self, monkeypatch):
        gen = self._generator()
        calls = []

        def fake_single(prompt, reference=None):
            calls.append(1)
            raise GeneratorError(f"failure {len(calls)}")

        monkeypatch.setattr(gen, "generate_single", fake_single)
        with pytest.raises(GeneratorError, match="failure 3"):
            gen.generate(ImagePrompt(0, "p"))
        assert len(calls) == 3

    def test_missing_base_url(self):
        gen = self._generator(image_api_key="key")
        with pytest.raises(GeneratorError, match="base URL"):
            gen.generate_single(ImagePrompt(0, "p"))

    def test_missing_api_key(self):
        gen = self._generator(image_base_url="https://api.example.com/v1")
        with pytest.raises(GeneratorError, match="API key"):
            gen.generate_single(ImagePrompt(0, "p"))

    def test_replicate_requires_token(self, monkeypatch):
        monkeypatch.delenv("REPLICATE_API_TOKEN", raising=False)
        gen = self._generator(image_backend="replicate")
        with pytest.raises(GeneratorError, match="REPLICATE_API_TOKEN"):
            gen.generate_single(ImagePrompt(0, "p"))

    def test_cancelled_before_start(self, monkeypatch):
        gen = self._generator()
        monkeypatch.setattr(gen, "generate_single", lambda prompt, reference=None: b"")
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(GenerationCancelled):
            gen.generate(ImagePrompt(0, "p"), cancel_event=cancel)

    def test_cancel_during_retry_delay(self, monkeypatch):
        gen = BackgroundGenerator(settings=Settings(), retry_delays=(30.0, 30.0))
        cancel = threading.Event()

        def failing(prompt, reference=None):
            cancel.set()
            raise GeneratorError("down")

        monkeypatch.setattr(gen, "generate_single", failing)
        with pytest.raises(GenerationCancelled):
            gen.generate(ImagePrompt(0, "p"), cancel_event=cancel)
