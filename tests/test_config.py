"""
Settings loading unit tests
"""

from pathlib import Path

import pytest

from appshots.config import Settings, load_settings


ENV_VARS = [
    "APPSHOTS_IMAGE_BACKEND",
    "APPSHOTS_IMAGE_BASE_URL",
    "APPSHOTS_IMAGE_API_KEY",
    "APPSHOTS_IMAGE_MODEL",
    "APPSHOTS_REPLICATE_MODEL",
    "APPSHOTS_REQUEST_TIMEOUT",
    "APPSHOTS_PER_CALL_RETRIES",
    "APPSHOTS_MAX_CONCURRENCY",
    "APPSHOTS_RETRY_DELAY",
    "APPSHOTS_AUTO_ADVANCE_DELAY",
    "APPSHOTS_LLM_MODEL",
    "APPSHOTS_FRAMES_DIR",
    "APPSHOTS_FONTS_DIR",
    "OPENAI_API_KEY",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestLoadSettings:
    def test_defaults(self, clean_env):
        settings = load_settings(use_dotenv=False)
        assert settings == Settings()
        assert settings.request_timeout == 90.0
        assert settings.max_concurrency == 4
        assert settings.retry_delay == 2.0

    def test_environment_values(self, clean_env):
        clean_env.setenv("APPSHOTS_IMAGE_BACKEND", "Replicate")
        clean_env.setenv("APPSHOTS_MAX_CONCURRENCY", "8")
        clean_env.setenv("APPSHOTS_REQUEST_TIMEOUT", "30.5")
        clean_env.setenv("APPSHOTS_FRAMES_DIR", "/tmp/frames")

        settings = load_settings(use_dotenv=False)

        assert settings.image_backend == "replicate"
        assert settings.max_concurrency == 8
        assert settings.request_timeout == 30.5
        assert settings.frames_dir == Path("/tmp/frames")

    def test_api_key_falls_back_to_openai_key(self, clean_env):
        clean_env.setenv("OPENAI_API_KEY", "sk-openai")
        assert load_settings(use_dotenv=False).image_api_key == "sk-openai"
        clean_env.setenv("APPSHOTS_IMAGE_API_KEY", "sk-image")
        assert load_settings(use_dotenv=False).image_api_key == "sk-image"

    def test_overrides_win(self, clean_env):
        clean_env.setenv("APPSHOTS_MAX_CONCURRENCY", "8")
        assert load_settings(use_dotenv=False, max_concurrency=2).max_concurrency == 2

    def test_unknown_override(self, clean_env):
        with pytest.raises(TypeError):
            load_settings(use_dotenv=False, colour="red")

    def test_invalid_backend(self, clean_env):
        clean_env.setenv("APPSHOTS_IMAGE_BACKEND", "dalle")
        with pytest.raises(ValueError):
            load_settings(use_dotenv=False)

    def test_invalid_number(self, clean_env):
        clean_env.setenv("APPSHOTS_RETRY_DELAY", "soon")
        with pytest.raises(ValueError, match="APPSHOTS_RETRY_DELAY"):
            load_settings(use_dotenv=False)

    def test_concurrency_must_be_positive(self, clean_env):
        clean_env.setenv("APPSHOTS_MAX_CONCURRENCY", "0")
        with pytest.raises(ValueError):
            load_settings(use_dotenv=False)
