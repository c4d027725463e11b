import io
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from PIL import Image

from .errors import EncodingFailure, NoImages, WriteFailure
from .models import DeviceFamily
from .render import ComposedImage


logger = logging.getLogger(__name__)

MIN_JPEG_QUALITY = 0.1
QUALITY_STEP = 0.1


@dataclass(frozen=True)
class DeviceSize:
    id: str
    display_name: str
    width: int
    height: int
    family: DeviceFamily = DeviceFamily.PHONE
    required: bool = False


IPHONE_6_9 = DeviceSize("iphone_6.9", 'iPhone 6.9"', 1320, 2868, DeviceFamily.PHONE, True)
IPHONE_6_7 = DeviceSize("iphone_6.7", 'iPhone 6.7"', 1290, 2796, DeviceFamily.PHONE, True)
IPHONE_6_5 = DeviceSize("iphone_6.5", 'iPhone 6.5"', 1242, 2688, DeviceFamily.PHONE)
IPHONE_5_5 = DeviceSize("iphone_5.5", 'iPhone 5.5"', 1242, 2208, DeviceFamily.PHONE)
IPAD_13 = DeviceSize("ipad_13", 'iPad 13"', 2048, 2732, DeviceFamily.TABLET)

ALL_SIZES: Tuple[DeviceSize, ...] = (IPHONE_6_9, IPHONE_6_7, IPHONE_6_5, IPHONE_5_5, IPAD_13)
DEFAULT_SIZES: Tuple[DeviceSize, ...] = (IPHONE_6_9, IPHONE_6_7)
SIZES_BY_ID: Dict[str, DeviceSize] = {size.id: size for size in ALL_SIZES}


class ExportFormat(str, Enum):
    PNG = "png"
    JPEG = "jpeg"

    @property
    def extension(self) -> str:
        return "jpg" if self is ExportFormat.JPEG else "png"


@dataclass(frozen=True)
class ExportConfig:
    sizes: Tuple[DeviceSize, ...] = DEFAULT_SIZES
    format: ExportFormat = ExportFormat.PNG
    jpeg_quality: float = 0.9
    # App Store limit.
    max_file_size_mb: float = 8.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.jpeg_quality <= 1.0:
            raise ValueError(f"jpeg_quality must be within [0, 1], got {self.jpeg_quality}")
        if self.max_file_size_mb <= 0:
            raise ValueError("max_file_size_mb must be positive")

    @property
    def max_bytes(self) -> int:
        return int(self.max_file_size_mb * 1024 * 1024)

    def for_family(self, family: DeviceFamily) -> "ExportConfig":
        return ExportConfig(
            sizes=tuple(s for s in self.sizes if s.family is family),
            format=self.format,
            jpeg_quality=self.jpeg_quality,
            max_file_size_mb=self.max_file_size_mb,
        )


@dataclass(frozen=True)
class ExportResult:
    file_path: Path
    file_name: str
    file_size: int
    device_size: DeviceSize
    screen_index: int = 0


ExportInput = Union[ComposedImage, Image.Image]
ExportProgress = Callable[[int, int], None]


def sanitize_file_name(name: str) -> str:
    """
    Collapse every run of characters outside [A-Za-z0-9_-] into one underscore,
    trim surrounding underscores and lowercase. "My App!!" -> "my_app".
    """
    cleaned = re.sub(r"[^A-Za-z0-9_-]+", "_", name).strip("_").lower()
    return cleaned or "app"


def export_file_name(app_name: str, size: DeviceSize, screen_index: int, fmt: ExportFormat) -> str:
    return f"{sanitize_file_name(app_name)}_{size.id}_{screen_index}.{fmt.extension}"


def resize_to_device(image: Image.Image, size: DeviceSize) -> Image.Image:
    """
    Resize to the exact device pixel size (stretching, never cropping).
    Images already at that size are returned untouched.
    """
    target = (size.width, size.height)
    if image.size == target:
        return image
    return image.resize(target, Image.Resampling.LANCZOS)


def encode_image(image: Image.Image, fmt: ExportFormat, quality: float = 0.9) -> bytes:
    buffer = io.BytesIO()
    if fmt is ExportFormat.JPEG:
        if image.mode != "RGB":
            image = image.convert("RGB")
        image.save(buffer, format="JPEG", quality=_pil_quality(quality), optimize=True)
    else:
        image.save(buffer, format="PNG")
    return buffer.getvalue()


def compress_to_fit(
    image: Image.Image,
    max_bytes: int,
    initial_quality: float,
    encoded: Optional[bytes] = None,
) -> Tuple[bytes, float]:
    """
    Re-encode as JPEG at decreasing quality (steps of 0.1) until the output fits
    in `max_bytes`. If even the 0.1 floor is too large, that encoding is
    returned anyway.

    `encoded` is an existing encoding at `initial_quality`; it is used for the
    first step instead of encoding again.
    """
    quality = round(initial_quality, 2)
    data = encoded
    while True:
        if data is None:
            data = encode_image(image, ExportFormat.JPEG, quality)
        if len(data) <= max_bytes:
            logger.debug("Compressed to %d bytes at quality %.1f", len(data), quality)
            return data, quality
        if quality <= MIN_JPEG_QUALITY + 1e-9:
            logger.warning(
                "JPEG still %.1fMB at minimum quality; accepting oversized file",
                len(data) / (1024 * 1024),
            )
            return data, quality
        quality = max(round(quality - QUALITY_STEP, 2), MIN_JPEG_QUALITY)
        data = None


def _pil_quality(quality: float) -> int:
    return max(1, min(100, int(round(quality * 100))))


class Exporter:
    """
    Writes composed images to disk for each requested device size.

    Stops at the first failing file; the raised error carries the results that
    were already written.
    """

    def export_all(
        self,
        images: Sequence[ExportInput],
        app_name: str,
        config: ExportConfig,
        output_directory: Path,
        on_progress: Optional[ExportProgress] = None,
    ) -> List[ExportResult]:
        if not images:
            raise NoImages()

        output_directory.mkdir(parents=True, exist_ok=True)
        results: List[ExportResult] = []
        total = len(images) * len(config.sizes)
        completed = 0

        for position, item in enumerate(images):
            if isinstance(item, ComposedImage):
                image, screen_index = item.image, item.screen_index
            else:
                image, screen_index = item, position

            for size in config.sizes:
                result = self._export_one(
                    image, app_name, screen_index, size, config, output_directory, results
                )
                results.append(result)
                completed += 1
                if on_progress is not None:
                    on_progress(completed, total)

        logger.info("Exported %d files to %s", len(results), output_directory)
        return results

    def export_single(
        self,
        image: Image.Image,
        app_name: str,
        index: int,
        size: DeviceSize,
        config: ExportConfig,
        output_directory: Path,
    ) -> ExportResult:
        output_directory.mkdir(parents=True, exist_ok=True)
        return self._export_one(image, app_name, index, size, config, output_directory, [])

    def _export_one(
        self,
        image: Image.Image,
        app_name: str,
        screen_index: int,
        size: DeviceSize,
        config: ExportConfig,
        output_directory: Path,
        written: List[ExportResult],
    ) -> ExportResult:
        file_name = export_file_name(app_name, size, screen_index, config.format)
        file_path = output_directory / file_name

        try:
            resized = resize_to_device(image, size)
            data = encode_image(resized, config.format, config.jpeg_quality)
            if config.format is ExportFormat.JPEG and len(data) > config.max_bytes:
                data, quality = compress_to_fit(resized, config.max_bytes, config.jpeg_quality, data)
                logger.info("%s recompressed at quality %.1f (%d bytes)", file_name, quality, len(data))
        except (OSError, ValueError) as e:
            raise EncodingFailure(file_name, str(e), written) from e

        try:
            file_path.write_bytes(data)
        except OSError as e:
            raise WriteFailure(file_path, str(e), written) from e

        return ExportResult(
            file_path=file_path,
            file_name=file_name,
            file_size=len(data),
            device_size=size,
            screen_index=screen_index,
        )


def resolve_sizes(ids: Sequence[str]) -> Tuple[DeviceSize, ...]:
    unknown = [i for i in ids if i not in SIZES_BY_ID]
    if unknown:
        raise ValueError(f"Unknown device size(s): {', '.join(unknown)}")
    return tuple(SIZES_BY_ID[i] for i in ids)


__all__ = [
    "ALL_SIZES",
    "DEFAULT_SIZES",
    "DeviceSize",
    "ExportConfig",
    "ExportFormat",
    "ExportResult",
    "Exporter",
    "compress_to_fit",
    "encode_image",
    "resize_to_device",
    "resolve_sizes",
    "sanitize_file_name",
]
