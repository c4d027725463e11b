import io
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Tuple, Union

from PIL import Image, ImageDraw, ImageFilter, UnidentifiedImageError

from .errors import CompositionFailure, DecodeFailure
from .frames import load_frame
from .layout import LayoutEngine, LayoutResult, Rect
from .models import DeviceFamily, ResolvedColors, ScreenConfig, ScreenPlan
from .text import draw_text_block, parse_color


logger = logging.getLogger(__name__)

PHONE_CANVAS = (1290, 2796)
TABLET_CANVAS = (2048, 2732)

ImageInput = Union[bytes, Image.Image]


@dataclass(frozen=True)
class ComposedImage:
    screen_index: int
    family: DeviceFamily
    image: Image.Image

    @property
    def size(self) -> Tuple[int, int]:
        return self.image.size


@dataclass(frozen=True)
class _ScreenView:
    """The fields of a screen that apply to one device family."""

    heading: str
    subheading: str
    layout: LayoutResult


def default_canvas(family: DeviceFamily) -> Tuple[int, int]:
    return TABLET_CANVAS if family is DeviceFamily.TABLET else PHONE_CANVAS


def _canvas_size(target_size) -> Tuple[int, int]:
    if hasattr(target_size, "width") and hasattr(target_size, "height"):
        return int(target_size.width), int(target_size.height)
    width, height = target_size
    return int(width), int(height)


def decode_image(data: ImageInput) -> Image.Image:
    """Decode image bytes; raises DecodeFailure for anything Pillow can't read."""
    if isinstance(data, Image.Image):
        return data
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            return img.convert("RGBA")
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise DecodeFailure(f"Invalid image data ({len(data)} bytes): {e}") from e


def gradient_background(size: Tuple[int, int], top: str, bottom: str) -> Image.Image:
    """Vertical gradient from `top` color to `bottom` color."""
    mask = Image.linear_gradient("L").resize(size, Image.Resampling.BICUBIC)
    return Image.composite(
        Image.new("RGB", size, parse_color(bottom)),
        Image.new("RGB", size, parse_color(top)),
        mask,
    )


class Compositor:
    """
    Builds the final marketing image from four layers:

    1. background: the generated image, or a primary -> accent gradient
    2. the screenshot inside the device screen (or covering the canvas for
       full-bleed layouts)
    3. device frame chrome (skipped for full-bleed and frameless layouts)
    4. heading and subheading

    Rendering is deterministic: the same inputs always give the same pixels.
    """

    def __init__(
        self,
        frames_dir: Optional[Path] = None,
        fonts_dir: Optional[Path] = None,
        layout_engine: Optional[LayoutEngine] = None,
    ) -> None:
        self.frames_dir = frames_dir
        self.fonts_dir = str(fonts_dir) if fonts_dir else None
        self.layout_engine = layout_engine or LayoutEngine()

    def compose(
        self,
        screen: ScreenConfig,
        screenshot: ImageInput,
        background: Optional[ImageInput],
        colors: ResolvedColors,
        target_size,
        family: DeviceFamily = DeviceFamily.PHONE,
        secondary_screenshot: Optional[ImageInput] = None,
    ) -> Image.Image:
        """
        Compose one screen over an AI background.

        Falls back to the gradient when `background` is missing or undecodable.
        """
        if background is None:
            return self.compose_with_gradient(
                screen, screenshot, colors, target_size, family, secondary_screenshot
            )
        try:
            bg = decode_image(background)
        except DecodeFailure as e:
            logger.warning("Background for screen %d unusable, using gradient: %s", screen.index, e)
            return self.compose_with_gradient(
                screen, screenshot, colors, target_size, family, secondary_screenshot
            )

        size = _canvas_size(target_size)
        canvas = bg.convert("RGB")
        if canvas.size != size:
            canvas = canvas.resize(size, Image.Resampling.LANCZOS)
        return self._render(canvas, screen, screenshot, secondary_screenshot, colors, family)

    def compose_with_gradient(
        self,
        screen: ScreenConfig,
        screenshot: ImageInput,
        colors: ResolvedColors,
        target_size,
        family: DeviceFamily = DeviceFamily.PHONE,
        secondary_screenshot: Optional[ImageInput] = None,
    ) -> Image.Image:
        size = _canvas_size(target_size)
        canvas = gradient_background(size, colors.primary, colors.accent)
        return self._render(canvas, screen, screenshot, secondary_screenshot, colors, family)

    def compose_all(
        self,
        plan: ScreenPlan,
        screenshots: Sequence[ImageInput],
        backgrounds: Mapping[int, bytes],
        family: DeviceFamily = DeviceFamily.PHONE,
        target_size=None,
    ) -> Tuple[List[ComposedImage], List[CompositionFailure]]:
        """
        Compose every screen of the plan for one device family, in index order.

        A failing screen is reported in the second list and does not stop the
        others.
        """
        size = _canvas_size(target_size) if target_size is not None else default_canvas(family)
        composed: List[ComposedImage] = []
        failures: List[CompositionFailure] = []

        for screen in plan.sorted_screens():
            try:
                image = self.compose_screen(plan, screen, screenshots, backgrounds, family, size)
            except CompositionFailure as e:
                logger.warning("%s", e)
                failures.append(e)
                continue
            composed.append(ComposedImage(screen.index, family, image))

        return composed, failures

    def compose_screen(
        self,
        plan: ScreenPlan,
        screen: ScreenConfig,
        screenshots: Sequence[ImageInput],
        backgrounds: Mapping[int, bytes],
        family: DeviceFamily,
        target_size,
    ) -> Image.Image:
        match = screen.screenshot_match
        secondary_match = None
        if family is DeviceFamily.TABLET:
            tablet = screen.tablet_view()
            match = tablet.screenshot_match
            secondary_match = tablet.secondary_screenshot_match

        screenshot = _pick_screenshot(screenshots, match, screen.index)
        secondary = None
        if secondary_match is not None and 0 <= secondary_match < len(screenshots):
            secondary = screenshots[secondary_match]

        return self.compose(
            screen,
            screenshot,
            backgrounds.get(screen.index),
            plan.colors,
            target_size,
            family,
            secondary,
        )

    # -- internals ----------------------------------------------------------

    def _view(
        self,
        screen: ScreenConfig,
        family: DeviceFamily,
        canvas: Tuple[int, int],
        has_secondary: bool,
    ) -> _ScreenView:
        if family is DeviceFamily.TABLET:
            tablet = screen.tablet_view()
            subheading = tablet.subheading or ""
            layout = self.layout_engine.calculate_tablet(
                tablet.resolved_layout(),
                canvas,
                bool(subheading),
                tablet.orientation,
                has_secondary,
            )
            return _ScreenView(
                heading=tablet.heading or "",
                subheading=subheading,
                layout=layout,
            )

        layout = self.layout_engine.calculate(screen.modifiers(), canvas, bool(screen.subheading))
        return _ScreenView(
            heading=screen.heading,
            subheading=screen.subheading,
            layout=layout,
        )

    def _render(
        self,
        canvas: Image.Image,
        screen: ScreenConfig,
        screenshot: ImageInput,
        secondary: Optional[ImageInput],
        colors: ResolvedColors,
        family: DeviceFamily,
    ) -> Image.Image:
        try:
            shot = decode_image(screenshot)
        except DecodeFailure as e:
            raise CompositionFailure(screen.index, f"screenshot is not a valid image ({e})") from e

        second: Optional[Image.Image] = None
        if secondary is not None:
            try:
                second = decode_image(secondary)
            except DecodeFailure as e:
                logger.warning("Secondary screenshot for screen %d ignored: %s", screen.index, e)

        view = self._view(screen, family, canvas.size, second is not None)
        layout = view.layout

        if layout.split_background:
            _split_tint(canvas)

        if layout.full_bleed:
            canvas.paste(shot.convert("RGB").resize(canvas.size, Image.Resampling.LANCZOS), (0, 0))
            if layout.scrim_rect is not None:
                _draw_scrim(canvas, layout.scrim_rect)
        else:
            self._draw_device(canvas, shot, layout.device_rect, layout, family)
            if layout.secondary_device_rect is not None and second is not None:
                self._draw_device(canvas, second, layout.secondary_device_rect, layout, family)

        self._draw_text(canvas, view, colors, layout)
        return canvas

    def _draw_device(
        self,
        canvas: Image.Image,
        screenshot: Image.Image,
        device_rect: Rect,
        layout: LayoutResult,
        family: DeviceFamily,
    ) -> None:
        device_w, device_h = max(round(device_rect.width), 1), max(round(device_rect.height), 1)
        inset = layout.screen_inset or Rect(0, 0, device_rect.width, device_rect.height)
        screen_box = inset.box()
        screen_w = max(screen_box[2] - screen_box[0], 1)
        screen_h = max(screen_box[3] - screen_box[1], 1)

        group = Image.new("RGBA", (device_w, device_h), (0, 0, 0, 0))
        fitted = screenshot.convert("RGBA").resize((screen_w, screen_h), Image.Resampling.LANCZOS)
        corner = round(min(screen_w, screen_h) * (0.05 if layout.frameless else 0.08))
        mask = Image.new("L", (screen_w, screen_h), 0)
        ImageDraw.Draw(mask).rounded_rectangle([0, 0, screen_w - 1, screen_h - 1], radius=corner, fill=255)
        group.paste(fitted, (screen_box[0], screen_box[1]), mask)

        if not layout.frameless:
            frame = load_frame(family, (device_w, device_h), screen_box, self.frames_dir)
            group.alpha_composite(frame)

        x, y = device_rect.x, device_rect.y
        if layout.rotation or layout.skew:
            group, (dx, dy) = _tilt_layer(group, layout.rotation, layout.skew)
            x += dx
            y += dy

        if layout.frameless:
            _draw_shadow(canvas, group, (round(x), round(y)))
        canvas.paste(group, (round(x), round(y)), group)

    def _draw_text(
        self,
        canvas: Image.Image,
        view: _ScreenView,
        colors: ResolvedColors,
        layout: LayoutResult,
    ) -> None:
        if layout.full_bleed:
            overlay = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
            shadow_draw = ImageDraw.Draw(overlay)
            offset = layout.heading_font_size * 0.04
            shadow_rect = Rect(
                layout.heading_rect.x + offset,
                layout.heading_rect.y + offset,
                layout.heading_rect.width,
                layout.heading_rect.height,
            )
            draw_text_block(
                shadow_draw, view.heading, shadow_rect, (0, 0, 0, 160), layout.heading_font_size,
                bold=True, align=layout.text_align, fonts_dir=self.fonts_dir,
            )
            overlay = overlay.filter(ImageFilter.GaussianBlur(radius=max(offset, 1)))
            canvas.paste(overlay, (0, 0), overlay)

        draw = ImageDraw.Draw(canvas)
        draw_text_block(
            draw,
            view.heading,
            layout.heading_rect,
            parse_color(colors.text, default=(255, 255, 255)),
            layout.heading_font_size,
            bold=True,
            align=layout.text_align,
            spacing=1.1,
            fonts_dir=self.fonts_dir,
        )
        if view.subheading:
            draw_text_block(
                draw,
                view.subheading,
                layout.subheading_rect,
                parse_color(colors.subtext, default=(160, 160, 160)),
                layout.subheading_font_size,
                bold=False,
                align=layout.text_align,
                spacing=1.25,
                fonts_dir=self.fonts_dir,
            )


def _pick_screenshot(screenshots: Sequence[ImageInput], match: int, screen_index: int) -> ImageInput:
    if not screenshots:
        raise CompositionFailure(screen_index, "no screenshots available")
    if 0 <= match < len(screenshots):
        return screenshots[match]
    logger.warning(
        "Screen %d matches screenshot %d but only %d exist; using the last one",
        screen_index, match, len(screenshots),
    )
    return screenshots[-1]


def _tilt_layer(layer: Image.Image, degrees: float, skew: float) -> Tuple[Image.Image, Tuple[float, float]]:
    """
    Rotate and shear a layer about its center.

    Returns the transformed layer (grown to fit) and the offset of its top-left
    corner relative to the original layer's top-left corner.
    """
    w, h = layer.size
    theta = math.radians(degrees)
    cos_t, sin_t = math.cos(theta), math.sin(theta)

    # forward = rotation * shear
    a, b = cos_t, cos_t * skew + sin_t
    d, e = -sin_t, -sin_t * skew + cos_t

    cx, cy = w / 2, h / 2
    corners = [(-cx, -cy), (cx, -cy), (-cx, cy), (cx, cy)]
    xs = [a * x + b * y for x, y in corners]
    ys = [d * x + e * y for x, y in corners]
    min_x, min_y = min(xs), min(ys)
    out_size = (math.ceil(max(xs) - min_x), math.ceil(max(ys) - min_y))

    det = a * e - b * d
    ia, ib, id_, ie = e / det, -b / det, -d / det, a / det
    data = (
        ia, ib, ia * min_x + ib * min_y + cx,
        id_, ie, id_ * min_x + ie * min_y + cy,
    )
    tilted = layer.transform(
        out_size, Image.Transform.AFFINE, data, resample=Image.Resampling.BICUBIC
    )
    return tilted, (cx + min_x, cy + min_y)


def _draw_scrim(canvas: Image.Image, rect: Rect) -> None:
    """Dark gradient behind the text, transparent at the top of `rect`."""
    overlay = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    top = round(rect.y)
    height = max(round(rect.height), 1)
    for i in range(height):
        alpha = int(220 * (i / height))
        draw.line([(0, top + i), (canvas.width, top + i)], fill=(0, 0, 0, alpha))
    canvas.paste(overlay, (0, 0), overlay)


def _draw_shadow(canvas: Image.Image, layer: Image.Image, position: Tuple[int, int]) -> None:
    radius = max(layer.width * 0.03, 2)
    pad = math.ceil(radius * 3)
    alpha = layer.getchannel("A").point(lambda v: 110 if v else 0)
    shadow = Image.new("L", (layer.width + 2 * pad, layer.height + 2 * pad), 0)
    shadow.paste(alpha, (pad, pad))
    shadow = shadow.filter(ImageFilter.GaussianBlur(radius=radius))
    black = Image.new("RGB", shadow.size, (0, 0, 0))
    offset_y = round(radius * 0.6)
    canvas.paste(black, (position[0] - pad, position[1] - pad + offset_y), shadow)


def _split_tint(canvas: Image.Image) -> None:
    """Darken the left half and lighten the right half of the canvas."""
    w, h = canvas.size
    overlay = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    draw.rectangle([0, 0, w // 2 - 1, h - 1], fill=(0, 0, 0, 110))
    draw.rectangle([w // 2, 0, w - 1, h - 1], fill=(255, 255, 255, 70))
    canvas.paste(overlay, (0, 0), overlay)
