import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


@dataclass
class Settings:
    """
    Runtime configuration, resolved from the environment (and a local .env).

    Precedence: explicit keyword overrides > environment > defaults.
    """

    image_backend: str = "openai"
    image_base_url: str = ""
    image_api_key: str = ""
    image_model: str = ""
    replicate_model: str = "google/imagen-4-fast"
    request_timeout: float = 90.0
    per_call_retries: int = 2
    max_concurrency: int = 4
    retry_delay: float = 2.0
    auto_advance_delay: float = 0.5
    llm_model: Optional[str] = None
    frames_dir: Optional[Path] = None
    fonts_dir: Optional[Path] = None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_path(name: str) -> Optional[Path]:
    raw = os.environ.get(name)
    return Path(raw).expanduser() if raw else None


def load_settings(use_dotenv: bool = True, **overrides) -> Settings:
    if use_dotenv:
        load_dotenv()

    settings = Settings(
        image_backend=os.environ.get("APPSHOTS_IMAGE_BACKEND", "openai").strip().lower(),
        image_base_url=os.environ.get("APPSHOTS_IMAGE_BASE_URL", ""),
        image_api_key=(
            os.environ.get("APPSHOTS_IMAGE_API_KEY") or os.environ.get("OPENAI_API_KEY") or ""
        ),
        image_model=os.environ.get("APPSHOTS_IMAGE_MODEL", ""),
        replicate_model=os.environ.get("APPSHOTS_REPLICATE_MODEL", "google/imagen-4-fast"),
        request_timeout=_env_float("APPSHOTS_REQUEST_TIMEOUT", 90.0),
        per_call_retries=_env_int("APPSHOTS_PER_CALL_RETRIES", 2),
        max_concurrency=_env_int("APPSHOTS_MAX_CONCURRENCY", 4),
        retry_delay=_env_float("APPSHOTS_RETRY_DELAY", 2.0),
        auto_advance_delay=_env_float("APPSHOTS_AUTO_ADVANCE_DELAY", 0.5),
        llm_model=os.environ.get("APPSHOTS_LLM_MODEL") or None,
        frames_dir=_env_path("APPSHOTS_FRAMES_DIR"),
        fonts_dir=_env_path("APPSHOTS_FONTS_DIR"),
    )

    for name, value in overrides.items():
        if not hasattr(settings, name):
            raise TypeError(f"Unknown setting: {name}")
        if value is not None:
            setattr(settings, name, value)

    if settings.image_backend not in ("openai", "replicate"):
        raise ValueError(
            f"APPSHOTS_IMAGE_BACKEND must be 'openai' or 'replicate', got {settings.image_backend!r}"
        )
    if settings.max_concurrency < 1:
        raise ValueError("APPSHOTS_MAX_CONCURRENCY must be at least 1")
    return settings
