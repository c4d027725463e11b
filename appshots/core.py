import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from .config import Settings
from .errors import CompositionFailure, GenerationCancelled, NoImages
from .export import ExportConfig, Exporter, ExportResult
from .models import DeviceFamily, GenerationKey, ImagePrompt, ScreenConfig, ScreenPlan
from .orchestrator import (
    AutoAdvance,
    GenerationClient,
    GenerationOrchestrator,
    GenerationResult,
    ProgressCallback,
    ProgressEvent,
)
from .prompts import PromptTranslator, build_prompts
from .render import ComposedImage, Compositor, default_canvas


logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]


class Step(str, Enum):
    PLAN_PREVIEW = "plan_preview"
    GENERATING = "generating"
    COMPOSING = "composing"
    EXPORT = "export"


class ScreenshotWorkflow:
    """
    Drives one plan through the pipeline:
    - build background prompts (deterministic, or via the LLM translator)
    - generate backgrounds for phone (and optionally tablet) screens
    - compose every screen for each family
    - export phone images to phone sizes and tablet images to tablet sizes

    Step changes and the delayed move from `generating` to `composing` happen
    under one lock, so navigating away always wins over a pending auto-advance.
    """

    def __init__(
        self,
        plan: ScreenPlan,
        screenshots: Sequence[bytes],
        client: GenerationClient,
        settings: Optional[Settings] = None,
        include_tablet: bool = False,
        translator: Optional[PromptTranslator] = None,
        compositor: Optional[Compositor] = None,
        exporter: Optional[Exporter] = None,
        on_status: Optional[StatusCallback] = None,
    ) -> None:
        self.plan = plan
        self.screenshots = list(screenshots)
        self.client = client
        self.settings = settings or Settings()
        self.include_tablet = include_tablet
        self.translator = translator
        self.compositor = compositor or Compositor(
            frames_dir=self.settings.frames_dir, fonts_dir=self.settings.fonts_dir
        )
        self.exporter = exporter or Exporter()
        self.on_status = on_status

        self.orchestrator = GenerationOrchestrator(
            client,
            max_concurrency=self.settings.max_concurrency,
            retry_delay=self.settings.retry_delay,
        )
        self.auto_advance = AutoAdvance(self.settings.auto_advance_delay, self._advance_after_generation)

        self._lock = threading.RLock()
        self._step = Step.PLAN_PREVIEW
        self._running = False

        self.prompts: Dict[DeviceFamily, List[ImagePrompt]] = {DeviceFamily.PHONE: [], DeviceFamily.TABLET: []}
        self.backgrounds: Dict[DeviceFamily, Dict[int, bytes]] = {DeviceFamily.PHONE: {}, DeviceFamily.TABLET: {}}
        self.composed: Dict[DeviceFamily, List[ComposedImage]] = {DeviceFamily.PHONE: [], DeviceFamily.TABLET: []}
        self.composition_failures: Dict[DeviceFamily, List[CompositionFailure]] = {
            DeviceFamily.PHONE: [],
            DeviceFamily.TABLET: [],
        }
        self.progress = 0.0
        self.status_message = ""
        self.error_message: Optional[str] = None
        self.warnings: List[str] = []
        self.export_results: List[ExportResult] = []

    # -- navigation ---------------------------------------------------------

    @property
    def step(self) -> Step:
        with self._lock:
            return self._step

    def go_to_step(self, step: Step) -> None:
        with self._lock:
            self.auto_advance.cancel()
            self._step = step

    def cancel(self) -> None:
        """
        Stop a running generation and drop any pending auto-advance.

        The cancellation covers the whole run: prompt building, generation and
        the composition that follows it. A cancelled run never advances.
        """
        self.orchestrator.cancel()
        with self._lock:
            self.auto_advance.cancel()
            if self._step is Step.GENERATING and not self._running:
                self._step = Step.PLAN_PREVIEW

    def _advance_after_generation(self) -> None:
        with self._lock:
            if self._step is Step.GENERATING and not self.orchestrator.cancelled:
                self._step = Step.COMPOSING
                logger.info("Advanced to %s", Step.COMPOSING.value)

    # -- generation ---------------------------------------------------------

    @property
    def families(self) -> List[DeviceFamily]:
        if self.include_tablet:
            return [DeviceFamily.PHONE, DeviceFamily.TABLET]
        return [DeviceFamily.PHONE]

    def prepare_prompts(self) -> Dict[DeviceFamily, List[ImagePrompt]]:
        for family in self.families:
            if self.translator is not None:
                self.prompts[family] = self.translator.translate(self.plan, family)
            else:
                self.prompts[family] = build_prompts(self.plan, family)
        return self.prompts

    def screenshot_map(self) -> Dict[GenerationKey, bytes]:
        """Reference screenshot for every generation key whose match is in range."""
        refs: Dict[GenerationKey, bytes] = {}
        for screen in self.plan.sorted_screens():
            matches = {DeviceFamily.PHONE: screen.screenshot_match}
            if self.include_tablet:
                matches[DeviceFamily.TABLET] = screen.tablet_view().screenshot_match
            for family, match in matches.items():
                if match is not None and 0 <= match < len(self.screenshots):
                    refs[GenerationKey(family, screen.index)] = self.screenshots[match]
        return refs

    def start_generation(
        self,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GenerationResult:
        """
        Generate every background, then compose whatever was produced.

        A partial failure keeps the delivered backgrounds and records the error
        message. A non-empty result schedules the auto-advance to `composing`.
        Raises `GenerationCancelled` after returning to `plan_preview`.
        """
        with self._lock:
            self.orchestrator.reset()
            self.auto_advance.cancel()
            self._step = Step.GENERATING
            self._running = True
        self.error_message = None
        self.progress = 0.0

        try:
            return self._run_generation(on_progress)
        except GenerationCancelled:
            self._set_status("Generation cancelled")
            self.go_to_step(Step.PLAN_PREVIEW)
            raise
        finally:
            with self._lock:
                self._running = False

    def _run_generation(self, on_progress: Optional[ProgressCallback]) -> GenerationResult:
        if not self.prompts[DeviceFamily.PHONE]:
            self._set_status("Building image prompts...")
            self.prepare_prompts()
        self._raise_if_cancelled()

        phone_prompts = self.prompts[DeviceFamily.PHONE]
        tablet_prompts = self.prompts[DeviceFamily.TABLET] if self.include_tablet else []
        if tablet_prompts:
            self._set_status(
                f"Generating {len(phone_prompts)} iPhone + {len(tablet_prompts)} iPad screenshots..."
            )
        else:
            self._set_status("Generating screenshots...")

        def progress(event: ProgressEvent) -> None:
            self.progress = event.fraction
            self._set_status(event.message)
            if on_progress is not None:
                on_progress(event)

        result = self.orchestrator.generate_all(
            phone_prompts, tablet_prompts, self.screenshot_map(), progress
        )

        self.backgrounds[DeviceFamily.PHONE] = dict(result.phone)
        self.backgrounds[DeviceFamily.TABLET] = dict(result.tablet)

        if result.error is not None:
            self.error_message = str(result.error)

        if result.is_empty:
            self.go_to_step(Step.PLAN_PREVIEW)
            return result

        for family in self.families:
            self._raise_if_cancelled()
            self.compose_all(family)

        with self._lock:
            self._raise_if_cancelled()
            self.auto_advance.schedule()
        return result

    def _raise_if_cancelled(self) -> None:
        if self.orchestrator.cancelled:
            raise GenerationCancelled()

    def regenerate_background(self, screen_index: int, family: DeviceFamily = DeviceFamily.PHONE) -> bytes:
        """Regenerate one screen's background and recompose that screen."""
        screen = self._screen(screen_index)
        prompts = self.prompts[family] or build_prompts(self.plan, family)
        prompt = next((p for p in prompts if p.screen_index == screen.index), None)
        if prompt is None:
            raise KeyError(f"No {family.value} prompt for screen {screen.index}")

        reference = self.screenshot_map().get(GenerationKey(family, screen.index))
        self._set_status(f"Regenerating background for screen {screen.index}...")
        data = self.client.generate(prompt, reference)
        self.backgrounds[family][screen.index] = data
        self.recompose_single(screen.index, family)
        return data

    # -- composition --------------------------------------------------------

    def compose_all(self, family: DeviceFamily = DeviceFamily.PHONE) -> List[ComposedImage]:
        self._set_status(f"Compositing {_family_label(family)} screenshots...")
        composed, failures = self.compositor.compose_all(
            self.plan,
            self.screenshots,
            self.backgrounds[family],
            family,
            default_canvas(family),
        )
        self.composed[family] = composed
        self.composition_failures[family] = failures
        if failures:
            self.error_message = "; ".join(str(f) for f in failures)
        return composed

    def recompose_single(self, screen_index: int, family: DeviceFamily = DeviceFamily.PHONE) -> ComposedImage:
        screen = self._screen(screen_index)
        image = self.compositor.compose_screen(
            self.plan,
            screen,
            self.screenshots,
            self.backgrounds[family],
            family,
            default_canvas(family),
        )
        composed = ComposedImage(screen.index, family, image)
        others = [c for c in self.composed[family] if c.screen_index != screen.index]
        self.composed[family] = sorted(others + [composed], key=lambda c: c.screen_index)
        self.composition_failures[family] = [
            f for f in self.composition_failures[family] if f.screen_index != screen.index
        ]
        return composed

    # -- export -------------------------------------------------------------

    def export_all(
        self,
        output_directory: Path,
        config: Optional[ExportConfig] = None,
        on_progress: Optional[Callable[[DeviceFamily, int, int], None]] = None,
    ) -> List[ExportResult]:
        """
        Export phone images to the selected phone sizes and tablet images to
        the selected tablet sizes.
        """
        config = config or ExportConfig()
        self.go_to_step(Step.EXPORT)
        self.warnings = []
        results: List[ExportResult] = []

        exported_any = False
        for family in (DeviceFamily.PHONE, DeviceFamily.TABLET):
            family_config = config.for_family(family)
            images = self.composed[family]
            if not family_config.sizes or not images:
                continue

            def progress(completed: int, total: int, family: DeviceFamily = family) -> None:
                self._set_status(f"Exporting {_family_label(family)} {completed}/{total}")
                if on_progress is not None:
                    on_progress(family, completed, total)

            results.extend(
                self.exporter.export_all(images, self.plan.app_name, family_config, output_directory, progress)
            )
            exported_any = True

        if config.for_family(DeviceFamily.TABLET).sizes and not self.composed[DeviceFamily.TABLET]:
            warning = "iPad sizes selected but no iPad images generated. Only iPhone images were exported."
            logger.warning(warning)
            self.warnings.append(warning)

        if not exported_any:
            raise NoImages()

        self.export_results = results
        self._set_status(f"Exported {len(results)} files")
        return results

    # -- helpers ------------------------------------------------------------

    def _screen(self, screen_index: int) -> ScreenConfig:
        screen = self.plan.screen(screen_index)
        if screen is None:
            raise KeyError(f"No screen with index {screen_index}")
        return screen

    def _set_status(self, message: str) -> None:
        self.status_message = message
        if self.on_status is not None:
            self.on_status(message)


def _family_label(family: DeviceFamily) -> str:
    return "iPad" if family is DeviceFamily.TABLET else "iPhone"
