import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional, Tuple


# Legacy prompt sets encode tablet screens as `index + 1000`.
TABLET_INDEX_OFFSET = 1000


class DeviceFamily(str, Enum):
    PHONE = "phone"
    TABLET = "tablet"


class Position(str, Enum):
    CENTER = "center"
    LEFT = "left"
    RIGHT = "right"


class LayoutType(str, Enum):
    CENTER_DEVICE = "center_device"
    LEFT_DEVICE = "left_device"
    RIGHT_DEVICE = "right_device"
    TILTED = "tilted"
    FULL_BLEED = "full_bleed"


class TabletLayoutType(str, Enum):
    STANDARD = "standard"
    ANGLED = "angled"
    FRAMELESS = "frameless"
    HEADLINE_DOMINANT = "headline_dominant"
    UI_FORWARD = "ui_forward"
    DARK_LIGHT_DUAL = "dark_light_dual"
    SPLIT_PANEL = "split_panel"
    MULTI_ORIENTATION = "multi_orientation"
    BEFORE_AFTER = "before_after"

    @classmethod
    def from_modifiers(cls, tilt: bool, position: Position, full_bleed: bool) -> "TabletLayoutType":
        if full_bleed:
            return cls.UI_FORWARD
        if tilt:
            return cls.ANGLED
        if position in (Position.LEFT, Position.RIGHT):
            return cls.SPLIT_PANEL
        return cls.STANDARD


class GenerationKey(NamedTuple):
    """Identifies one generation request: a screen within a device family."""

    family: DeviceFamily
    index: int

    @classmethod
    def decode(cls, raw_index: int) -> "GenerationKey":
        """Map a legacy offset index onto a tagged key."""
        if raw_index >= TABLET_INDEX_OFFSET:
            return cls(DeviceFamily.TABLET, raw_index - TABLET_INDEX_OFFSET)
        return cls(DeviceFamily.PHONE, raw_index)

    def encode(self) -> int:
        if self.family is DeviceFamily.TABLET:
            return self.index + TABLET_INDEX_OFFSET
        return self.index


@dataclass(frozen=True)
class ResolvedColors:
    primary: str = "#0a0a0a"
    accent: str = "#3b82f6"
    text: str = "#ffffff"
    subtext: str = "#a0a0a0"


@dataclass(frozen=True)
class LayoutModifiers:
    tilt: bool = False
    position: Position = Position.CENTER
    full_bleed: bool = False


@dataclass(frozen=True)
class TabletConfig:
    heading: Optional[str] = None
    subheading: Optional[str] = None
    tilt: bool = False
    position: Position = Position.CENTER
    full_bleed: bool = False
    layout_type: Optional[TabletLayoutType] = None
    orientation: str = "portrait"
    screenshot_match: Optional[int] = None
    secondary_screenshot_match: Optional[int] = None
    visual_direction: str = ""
    image_prompt: str = ""
    negative_prompt: str = ""

    def resolved_layout(self) -> TabletLayoutType:
        if self.layout_type is not None:
            return self.layout_type
        return TabletLayoutType.from_modifiers(self.tilt, self.position, self.full_bleed)


@dataclass(frozen=True)
class ScreenConfig:
    index: int
    screenshot_match: int
    heading: str
    subheading: str = ""
    tilt: bool = False
    position: Position = Position.CENTER
    full_bleed: bool = False
    layout: Optional[LayoutType] = None
    visual_direction: str = ""
    image_prompt: str = ""
    negative_prompt: str = ""
    tablet: Optional[TabletConfig] = None

    def modifiers(self) -> LayoutModifiers:
        """
        Layout modifiers for the phone rendering.

        An explicit `layout` wins over the individual flags.
        """
        if self.layout is LayoutType.CENTER_DEVICE:
            return LayoutModifiers()
        if self.layout is LayoutType.LEFT_DEVICE:
            return LayoutModifiers(position=Position.LEFT)
        if self.layout is LayoutType.RIGHT_DEVICE:
            return LayoutModifiers(position=Position.RIGHT)
        if self.layout is LayoutType.TILTED:
            return LayoutModifiers(tilt=True)
        if self.layout is LayoutType.FULL_BLEED:
            return LayoutModifiers(full_bleed=True)
        return LayoutModifiers(tilt=self.tilt, position=self.position, full_bleed=self.full_bleed)

    def tablet_view(self) -> TabletConfig:
        """Tablet configuration with the phone fields filled in where unset."""
        base = self.tablet or TabletConfig()
        mods = self.modifiers()
        if self.tablet is None:
            base = TabletConfig(tilt=mods.tilt, position=mods.position, full_bleed=mods.full_bleed)
        return TabletConfig(
            heading=base.heading if base.heading is not None else self.heading,
            subheading=base.subheading if base.subheading is not None else self.subheading,
            tilt=base.tilt,
            position=base.position,
            full_bleed=base.full_bleed,
            layout_type=base.layout_type,
            orientation=base.orientation,
            screenshot_match=(
                base.screenshot_match if base.screenshot_match is not None else self.screenshot_match
            ),
            secondary_screenshot_match=base.secondary_screenshot_match,
            visual_direction=base.visual_direction or self.visual_direction,
            image_prompt=base.image_prompt,
            negative_prompt=base.negative_prompt,
        )


@dataclass(frozen=True)
class ScreenPlan:
    app_name: str
    tagline: str = ""
    tone: str = "minimal"
    colors: ResolvedColors = field(default_factory=ResolvedColors)
    screens: Tuple[ScreenConfig, ...] = ()

    def sorted_screens(self) -> List[ScreenConfig]:
        return sorted(self.screens, key=lambda s: s.index)

    def screen(self, index: int) -> Optional[ScreenConfig]:
        for screen in self.screens:
            if screen.index == index:
                return screen
        return None


@dataclass(frozen=True)
class ImagePrompt:
    screen_index: int
    prompt: str
    negative_prompt: str = ""
    family: DeviceFamily = DeviceFamily.PHONE

    @property
    def key(self) -> GenerationKey:
        return GenerationKey(self.family, self.screen_index)

    @property
    def word_count(self) -> int:
        return len(self.prompt.split())

    @property
    def is_minimal(self) -> bool:
        return self.word_count < 10

    @property
    def quality_score(self) -> float:
        """
        Heuristic 0.0-1.0 score of how well-specified the prompt is.
        """
        score = 0.0
        lowered = self.prompt.lower()
        if any(word in lowered for word in ("iphone", "ipad", "device", "mockup")):
            score += 0.3
        if '"' in self.prompt:
            score += 0.2
        if "#" in self.prompt:
            score += 0.2
        if any(word in lowered for word in ("premium", "editorial", "professional", "studio")):
            score += 0.2
        if 20 <= self.word_count <= 60:
            score += 0.1
        return min(round(score, 2), 1.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "screen_index": self.key.encode(),
            "prompt": self.prompt,
            "negative_prompt": self.negative_prompt,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImagePrompt":
        key = GenerationKey.decode(int(data["screen_index"]))
        return cls(
            screen_index=key.index,
            prompt=str(data["prompt"]),
            negative_prompt=str(data.get("negative_prompt") or ""),
            family=key.family,
        )


def _tablet_from_dict(data: Optional[Dict[str, Any]]) -> Optional[TabletConfig]:
    if not data:
        return None
    layout_type = data.get("layout_type") or data.get("layout")
    secondary = data.get("secondary_screenshot_match")
    match = data.get("screenshot_match")
    return TabletConfig(
        heading=data.get("heading"),
        subheading=data.get("subheading"),
        tilt=bool(data.get("tilt", False)),
        position=Position(data.get("position") or "center"),
        full_bleed=bool(data.get("full_bleed", False)),
        layout_type=TabletLayoutType(layout_type) if layout_type else None,
        orientation=data.get("orientation") or "portrait",
        screenshot_match=int(match) if match is not None else None,
        secondary_screenshot_match=int(secondary) if secondary is not None else None,
        visual_direction=data.get("visual_direction", ""),
        image_prompt=data.get("image_prompt", ""),
        negative_prompt=data.get("negative_prompt", ""),
    )


def screen_from_dict(data: Dict[str, Any]) -> ScreenConfig:
    layout = data.get("layout")
    return ScreenConfig(
        index=int(data["index"]),
        screenshot_match=int(data.get("screenshot_match", data["index"])),
        heading=data.get("heading", ""),
        subheading=data.get("subheading") or "",
        tilt=bool(data.get("tilt", False)),
        position=Position(data.get("position") or "center"),
        full_bleed=bool(data.get("full_bleed", False)),
        layout=LayoutType(layout) if layout else None,
        visual_direction=data.get("visual_direction", ""),
        image_prompt=data.get("image_prompt", ""),
        negative_prompt=data.get("negative_prompt", ""),
        tablet=_tablet_from_dict(data.get("ipad") or data.get("tablet")),
    )


def plan_from_dict(data: Dict[str, Any]) -> ScreenPlan:
    colors = data.get("colors") or {}
    defaults = ResolvedColors()
    screens = [screen_from_dict(s) for s in data.get("screens", [])]

    indices = [s.index for s in screens]
    if len(set(indices)) != len(indices):
        raise ValueError(f"Screen indices must be unique, got {indices}")
    if any(i < 0 for i in indices):
        raise ValueError(f"Screen indices must be non-negative, got {indices}")

    return ScreenPlan(
        app_name=data["app_name"],
        tagline=data.get("tagline", ""),
        tone=data.get("tone", "minimal"),
        colors=ResolvedColors(
            primary=colors.get("primary", defaults.primary),
            accent=colors.get("accent", defaults.accent),
            text=colors.get("text", defaults.text),
            subtext=colors.get("subtext", defaults.subtext),
        ),
        screens=tuple(sorted(screens, key=lambda s: s.index)),
    )


def load_plan(path: Path) -> ScreenPlan:
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    return plan_from_dict(data)


def load_prompts(path: Path) -> List[ImagePrompt]:
    """
    Load image prompts from `{"screens": [...]}` or a bare list.

    Tablet entries may use the legacy offset indices.
    """
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    entries = data.get("screens", []) if isinstance(data, dict) else data
    return [ImagePrompt.from_dict(entry) for entry in entries]
