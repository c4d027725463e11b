import json
import logging
import re
from typing import Any, Dict, List, Optional

from .models import DeviceFamily, ImagePrompt, ScreenConfig, ScreenPlan


logger = logging.getLogger(__name__)

TONE_STYLES: Dict[str, str] = {
    "minimal": "clean minimal abstract gradient, subtle geometric shapes, soft transitions",
    "playful": "vibrant colorful abstract shapes, organic flowing forms, warm and inviting",
    "professional": "corporate clean gradient, structured geometric elements, muted tones",
    "bold": "dramatic high-contrast gradient, vivid colors, sharp geometric elements",
    "elegant": "sophisticated subtle gradient, luxurious feel, delicate abstract elements",
}

DEFAULT_NEGATIVE_PROMPT = (
    "text, words, letters, phone, device, mockup, screenshot, UI, people, hands, busy, cluttered"
)

TARGET_RESOLUTION = {
    DeviceFamily.PHONE: "1290x2796 pixels (iPhone portrait)",
    DeviceFamily.TABLET: "2048x2732 pixels (iPad portrait)",
}


def build_prompts(plan: ScreenPlan, family: DeviceFamily = DeviceFamily.PHONE) -> List[ImagePrompt]:
    """
    Deterministic background prompts for every screen of the plan.

    A screen's own `image_prompt` is used verbatim when present; otherwise the
    prompt is assembled from the plan tone, colors and the screen's visual
    direction.
    """
    prompts = []
    for screen in plan.sorted_screens():
        prompts.append(_build_prompt_for_screen(plan, screen, family))
    return prompts


def _build_prompt_for_screen(plan: ScreenPlan, screen: ScreenConfig, family: DeviceFamily) -> ImagePrompt:
    if family is DeviceFamily.TABLET:
        tablet = screen.tablet_view()
        explicit, negative, direction = tablet.image_prompt, tablet.negative_prompt, tablet.visual_direction
    else:
        explicit, negative, direction = screen.image_prompt, screen.negative_prompt, screen.visual_direction

    if explicit.strip():
        return ImagePrompt(
            screen_index=screen.index,
            prompt=explicit.strip(),
            negative_prompt=negative or DEFAULT_NEGATIVE_PROMPT,
            family=family,
        )

    colors = plan.colors
    style = TONE_STYLES.get(plan.tone.lower(), TONE_STYLES["minimal"])
    prompt = f"Background for an App Store screenshot of {plan.app_name}. "
    if direction:
        prompt += f"{direction.rstrip('.')}. "
    prompt += (
        f"Style: {style}. "
        f"Colors: primary {colors.primary}, accent {colors.accent}. "
        f"Target resolution: {TARGET_RESOLUTION[family]}. "
        "no text, no device, no mockup, no UI, no people"
    )

    return ImagePrompt(
        screen_index=screen.index,
        prompt=prompt,
        negative_prompt=negative or DEFAULT_NEGATIVE_PROMPT,
        family=family,
    )


def extract_json(text: str) -> str:
    """Pull the JSON payload out of a ```json fence, a bare fence, or mixed text."""
    fenced = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fenced:
        return fenced.group(1).strip()

    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    end = max(text.rfind("}"), text.rfind("]"))
    if starts and end > min(starts):
        return text[min(starts):end + 1]
    return text.strip()


def parse_prompt_set(text: str, family: Optional[DeviceFamily] = None) -> List[ImagePrompt]:
    """
    Parse `{"screens": [...]}` or a bare list of prompt objects.

    Entries with legacy offset indices decode to tablet prompts. When `family`
    is given, entries without an offset are tagged with it.
    """
    payload = json.loads(extract_json(text))
    if isinstance(payload, dict):
        payload = payload.get("screens")
    if not isinstance(payload, list):
        raise ValueError("Expected a list of image prompts")

    prompts = []
    for entry in payload:
        prompt = ImagePrompt.from_dict(entry)
        if family is not None and prompt.family is DeviceFamily.PHONE:
            prompt = ImagePrompt(
                screen_index=prompt.screen_index,
                prompt=prompt.prompt,
                negative_prompt=prompt.negative_prompt,
                family=family,
            )
        prompts.append(prompt)
    return prompts


class PromptTranslator:
    """
    Adapter for LLM-written background prompts.

    The LLM turns each screen's visual direction into an image-generation
    prompt. Any failure to get a usable answer falls back to `build_prompts`.
    """

    def __init__(self, llm: Any) -> None:
        self.llm = llm

    def translate(self, plan: ScreenPlan, family: DeviceFamily = DeviceFamily.PHONE) -> List[ImagePrompt]:
        fallback = build_prompts(plan, family)
        if self.llm is None:
            return fallback

        try:
            raw = self.llm.invoke(self._build_prompt(plan, family))
        except Exception as e:
            logger.warning("Prompt translation failed (%s); using built-in prompts", e)
            return fallback
        text = getattr(raw, "content", None) or str(raw)

        try:
            translated = parse_prompt_set(text, family)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Could not parse translated prompts (%s); using built-in prompts", e)
            return fallback

        by_index = {p.screen_index: p for p in translated if p.prompt.strip()}
        # Screens the LLM skipped keep their built-in prompt.
        return [by_index.get(p.screen_index, p) for p in fallback]

    @staticmethod
    def _build_prompt(plan: ScreenPlan, family: DeviceFamily) -> str:
        colors = plan.colors
        lines = [
            "You are an expert at writing prompts for AI background image generation "
            "for App Store screenshots.",
            "- The image is a BACKGROUND ONLY: no text, no devices or mockups, no UI, no people.",
            "- Include the specific hex colors, the mood and the composition.",
            '- End every prompt with "no text, no device, no mockup, no UI, no people".',
            "",
            f"App: {plan.app_name}",
            f"Tone: {plan.tone}",
            f"Colors: primary={colors.primary}, accent={colors.accent}, "
            f"text={colors.text}, subtext={colors.subtext}",
            "",
            "Screens to generate backgrounds for:",
            "",
        ]
        for screen in plan.sorted_screens():
            if family is DeviceFamily.TABLET:
                tablet = screen.tablet_view()
                layout, direction = tablet.resolved_layout().value, tablet.visual_direction
            else:
                layout = screen.layout.value if screen.layout else "center_device"
                direction = screen.visual_direction
            lines.extend([
                f"Screen {screen.index}:",
                f"  Heading: {screen.heading}",
                f"  Layout: {layout}",
                f"  Visual Direction: {direction}",
                "",
            ])
        lines.append(f"Output target resolution: {TARGET_RESOLUTION[family]}")
        lines.append(
            "Return ONLY a valid JSON object with this exact shape and no surrounding commentary:\n"
            '{"screens": [{"screen_index": 0, "prompt": "string", "negative_prompt": "string"}]}'
        )
        return "\n".join(lines)
