"""
Layout geometry for screenshot compositions.

All rects use Pillow's coordinate system: origin at the top-left corner of the
canvas, y growing downwards. Devices may extend past the canvas edges; the
compositor clips them.

Defaults favour a big device (80% of the canvas width on phones, 70% on
tablets), text kept compact above or beside it.
"""

from dataclasses import dataclass
from typing import NamedTuple, Optional, Tuple

from .models import LayoutModifiers, Position, TabletLayoutType


PHONE_ASPECT = 2796 / 1290
TABLET_ASPECT = 2732 / 2048

TILT_DEGREES = 8.0
# Horizontal shear applied together with the tilt rotation.
TILT_SKEW = 0.06

FRAME_BORDER_RATIO = 0.04
H_MARGIN = 0.06
TEXT_TOP = 0.06


class Rect(NamedTuple):
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    def box(self) -> Tuple[int, int, int, int]:
        return (round(self.x), round(self.y), round(self.right), round(self.bottom))


@dataclass(frozen=True)
class LayoutResult:
    heading_rect: Rect
    subheading_rect: Rect
    heading_font_size: float
    subheading_font_size: float
    text_align: str = "center"
    device_rect: Optional[Rect] = None
    # Screen area relative to the device rect origin.
    screen_inset: Optional[Rect] = None
    secondary_device_rect: Optional[Rect] = None
    rotation: float = 0.0
    skew: float = 0.0
    full_bleed: bool = False
    scrim_rect: Optional[Rect] = None
    frameless: bool = False
    split_background: bool = False

    @property
    def has_device(self) -> bool:
        return self.device_rect is not None and not self.full_bleed


def _device(width: float, x: float, y: float, aspect: float, border_ratio: float = FRAME_BORDER_RATIO):
    height = width * aspect
    border = width * border_ratio
    rect = Rect(x, y, width, height)
    inset = Rect(border, border, width - 2 * border, height - 2 * border)
    return rect, inset


def _text_rects(
    canvas: Tuple[int, int],
    top: float,
    text_x: float,
    text_width: float,
    has_subheading: bool,
    heading_scale: float = 0.08,
    subheading_scale: float = 0.04,
):
    """Heading and subheading stacked downwards from `top`."""
    w, _ = canvas
    heading_fs = w * heading_scale
    subheading_fs = w * subheading_scale

    heading_height = heading_fs * 3.0
    subheading_height = subheading_fs * 2.5 if has_subheading else 0.0
    gap = heading_fs * 0.3 if has_subheading else 0.0

    heading = Rect(text_x, top, text_width, heading_height)
    subheading = Rect(
        text_x + w * 0.02,
        heading.bottom + gap,
        max(text_width - w * 0.04, 1.0),
        subheading_height,
    )
    return heading, subheading, heading_fs, subheading_fs


def _tilt(tilt: bool, direction: float = -1.0) -> Tuple[float, float]:
    if not tilt:
        return 0.0, 0.0
    return direction * TILT_DEGREES, -direction * TILT_SKEW


class LayoutEngine:
    def calculate(
        self,
        modifiers: LayoutModifiers,
        canvas: Tuple[int, int],
        has_subheading: bool,
    ) -> LayoutResult:
        """Phone layout from the tilt / position / full-bleed modifiers."""
        if modifiers.full_bleed:
            return self._full_bleed(canvas, has_subheading)
        return self._standard(modifiers.tilt, modifiers.position, canvas, has_subheading, PHONE_ASPECT)

    def calculate_tablet(
        self,
        layout_type: TabletLayoutType,
        canvas: Tuple[int, int],
        has_subheading: bool,
        orientation: str = "portrait",
        has_secondary: bool = False,
    ) -> LayoutResult:
        aspect = 1.0 / TABLET_ASPECT if orientation == "landscape" else TABLET_ASPECT

        if layout_type is TabletLayoutType.UI_FORWARD:
            return self._full_bleed(canvas, has_subheading)
        if layout_type is TabletLayoutType.ANGLED:
            return self._tablet_standard(canvas, has_subheading, aspect, tilt=True)
        if layout_type is TabletLayoutType.FRAMELESS:
            return self._tablet_frameless(canvas, has_subheading, aspect)
        if layout_type is TabletLayoutType.HEADLINE_DOMINANT:
            return self._tablet_headline_dominant(canvas, has_subheading, aspect)
        if layout_type is TabletLayoutType.DARK_LIGHT_DUAL:
            return self._tablet_dual(canvas, has_subheading, aspect)
        if layout_type is TabletLayoutType.SPLIT_PANEL:
            return self._tablet_split_panel(canvas, has_subheading, aspect, has_secondary)
        # multi_orientation and before_after render as standard.
        return self._tablet_standard(canvas, has_subheading, aspect)

    # -- phone -------------------------------------------------------------

    def _standard(
        self,
        tilt: bool,
        position: Position,
        canvas: Tuple[int, int],
        has_subheading: bool,
        aspect: float,
    ) -> LayoutResult:
        w, h = canvas
        margin = w * H_MARGIN

        if position in (Position.LEFT, Position.RIGHT):
            device_width = w * 0.60
            device_height = device_width * aspect
            y = max((h - device_height) / 2, h * 0.04)
            if position is Position.LEFT:
                x = -device_width * 0.06
            else:
                x = w - device_width + device_width * 0.06
            device_rect, inset = _device(device_width, x, y, aspect)

            if position is Position.LEFT:
                text_x = device_rect.right + margin
                text_width = w - text_x - margin
                align = "right"
            else:
                text_x = margin
                text_width = device_rect.x - margin - text_x
                align = "left"

            heading, subheading, heading_fs, subheading_fs = _text_rects(
                canvas, 0, text_x, text_width, has_subheading, 0.065, 0.035
            )
            block_height = subheading.bottom if has_subheading else heading.bottom
            top = device_rect.center[1] - block_height / 2
            heading, subheading, heading_fs, subheading_fs = _text_rects(
                canvas, top, text_x, text_width, has_subheading, 0.065, 0.035
            )
            rotation, skew = _tilt(tilt, -1.0 if position is Position.LEFT else 1.0)
            return LayoutResult(
                heading_rect=heading,
                subheading_rect=subheading,
                heading_font_size=heading_fs,
                subheading_font_size=subheading_fs,
                text_align=align,
                device_rect=device_rect,
                screen_inset=inset,
                rotation=rotation,
                skew=skew,
            )

        heading, subheading, heading_fs, subheading_fs = _text_rects(
            canvas, h * TEXT_TOP, margin, w - 2 * margin, has_subheading
        )
        text_bottom = subheading.bottom if has_subheading else heading.bottom
        device_width = w * 0.80
        x_offset = w * 0.03 if tilt else 0.0
        device_rect, inset = _device(
            device_width, (w - device_width) / 2 + x_offset, text_bottom + h * 0.02, aspect
        )
        rotation, skew = _tilt(tilt)
        return LayoutResult(
            heading_rect=heading,
            subheading_rect=subheading,
            heading_font_size=heading_fs,
            subheading_font_size=subheading_fs,
            device_rect=device_rect,
            screen_inset=inset,
            rotation=rotation,
            skew=skew,
        )

    def _full_bleed(self, canvas: Tuple[int, int], has_subheading: bool) -> LayoutResult:
        """Screenshot fills the canvas; text sits on a scrim at the bottom."""
        w, h = canvas
        margin = w * H_MARGIN
        scrim = Rect(0, h * 0.65, w, h * 0.35)
        heading, subheading, heading_fs, subheading_fs = _text_rects(
            canvas, scrim.y + scrim.height * 0.25, margin, w - 2 * margin, has_subheading
        )
        return LayoutResult(
            heading_rect=heading,
            subheading_rect=subheading,
            heading_font_size=heading_fs,
            subheading_font_size=subheading_fs,
            full_bleed=True,
            scrim_rect=scrim,
        )

    # -- tablet ------------------------------------------------------------

    def _tablet_text(self, canvas, has_subheading, top_ratio=TEXT_TOP, heading_scale=0.075, subheading_scale=0.042):
        w, h = canvas
        margin = w * H_MARGIN
        return _text_rects(
            canvas, h * top_ratio, margin, w - 2 * margin, has_subheading, heading_scale, subheading_scale
        )

    def _tablet_standard(self, canvas, has_subheading, aspect, tilt: bool = False) -> LayoutResult:
        w, h = canvas
        heading, subheading, heading_fs, subheading_fs = self._tablet_text(canvas, has_subheading)
        text_bottom = subheading.bottom if has_subheading else heading.bottom
        device_width = w * 0.70
        x_offset = w * 0.03 if tilt else 0.0
        device_rect, inset = _device(
            device_width, (w - device_width) / 2 + x_offset, text_bottom + h * 0.02, aspect
        )
        rotation, skew = _tilt(tilt)
        return LayoutResult(
            heading_rect=heading,
            subheading_rect=subheading,
            heading_font_size=heading_fs,
            subheading_font_size=subheading_fs,
            device_rect=device_rect,
            screen_inset=inset,
            rotation=rotation,
            skew=skew,
        )

    def _tablet_frameless(self, canvas, has_subheading, aspect) -> LayoutResult:
        w, h = canvas
        heading, subheading, heading_fs, subheading_fs = self._tablet_text(canvas, has_subheading)
        text_bottom = subheading.bottom if has_subheading else heading.bottom
        screen_width = w * 0.75
        device_rect, inset = _device(
            screen_width, (w - screen_width) / 2, text_bottom + h * 0.03, aspect, border_ratio=0.0
        )
        return LayoutResult(
            heading_rect=heading,
            subheading_rect=subheading,
            heading_font_size=heading_fs,
            subheading_font_size=subheading_fs,
            device_rect=device_rect,
            screen_inset=inset,
            frameless=True,
        )

    def _tablet_headline_dominant(self, canvas, has_subheading, aspect) -> LayoutResult:
        w, h = canvas
        heading, subheading, heading_fs, subheading_fs = self._tablet_text(
            canvas, has_subheading, top_ratio=0.08, heading_scale=0.12, subheading_scale=0.05
        )
        device_top = max(h * 0.42, (subheading.bottom if has_subheading else heading.bottom) + h * 0.02)
        device_width = w * 0.60
        device_rect, inset = _device(device_width, (w - device_width) / 2, device_top, aspect)
        return LayoutResult(
            heading_rect=heading,
            subheading_rect=subheading,
            heading_font_size=heading_fs,
            subheading_font_size=subheading_fs,
            device_rect=device_rect,
            screen_inset=inset,
        )

    def _tablet_dual(self, canvas, has_subheading, aspect) -> LayoutResult:
        w, h = canvas
        heading, subheading, heading_fs, subheading_fs = self._tablet_text(canvas, has_subheading)
        text_bottom = subheading.bottom if has_subheading else heading.bottom
        device_width = w * 0.60
        device_rect, inset = _device(device_width, (w - device_width) / 2, text_bottom + h * 0.02, aspect)
        return LayoutResult(
            heading_rect=heading,
            subheading_rect=subheading,
            heading_font_size=heading_fs,
            subheading_font_size=subheading_fs,
            device_rect=device_rect,
            screen_inset=inset,
            split_background=True,
        )

    def _tablet_split_panel(self, canvas, has_subheading, aspect, has_secondary: bool) -> LayoutResult:
        w, h = canvas
        heading, subheading, heading_fs, subheading_fs = self._tablet_text(
            canvas, has_subheading, heading_scale=0.065, subheading_scale=0.038
        )
        text_bottom = subheading.bottom if has_subheading else heading.bottom
        top = text_bottom + h * 0.03

        if not has_secondary:
            device_width = w * 0.55
            device_rect, inset = _device(device_width, (w - device_width) / 2, top, aspect)
            secondary = None
        else:
            device_width = w * 0.43
            gap = w * 0.04
            left_x = (w - 2 * device_width - gap) / 2
            device_rect, inset = _device(device_width, left_x, top, aspect)
            secondary, _ = _device(device_width, left_x + device_width + gap, top, aspect)

        return LayoutResult(
            heading_rect=heading,
            subheading_rect=subheading,
            heading_font_size=heading_fs,
            subheading_font_size=subheading_fs,
            device_rect=device_rect,
            screen_inset=inset,
            secondary_device_rect=secondary,
        )
