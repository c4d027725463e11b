import argparse
import logging
import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from langchain_openai import ChatOpenAI

from appshots.config import load_settings
from appshots.core import ScreenshotWorkflow
from appshots.errors import AppShotsError
from appshots.export import ALL_SIZES, DEFAULT_SIZES, ExportConfig, ExportFormat, resolve_sizes
from appshots.generator import BackgroundGenerator
from appshots.models import DeviceFamily, load_plan, load_prompts
from appshots.prompts import PromptTranslator


SCREENSHOT_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp"}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate App Store screenshots from a screen plan and raw app screenshots."
    )
    parser.add_argument(
        "--plan",
        type=Path,
        required=True,
        help="Path to the screen plan JSON file.",
    )
    parser.add_argument(
        "--screenshots",
        type=Path,
        nargs="+",
        required=True,
        help="Screenshot files, or a folder of screenshots (sorted by name).",
    )
    parser.add_argument(
        "--prompts",
        type=Path,
        default=None,
        help="Optional JSON file of image prompts; built from the plan when omitted.",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("outputs"),
        help="Folder where exported screenshots will be written.",
    )
    parser.add_argument(
        "--tablet",
        action="store_true",
        help="Also generate and export iPad screenshots.",
    )
    parser.add_argument(
        "--sizes",
        nargs="+",
        default=None,
        choices=[size.id for size in ALL_SIZES],
        help="Device sizes to export (default: iphone_6.9 iphone_6.7, plus ipad_13 with --tablet).",
    )
    parser.add_argument(
        "--format",
        choices=[fmt.value for fmt in ExportFormat],
        default=ExportFormat.PNG.value,
    )
    parser.add_argument("--jpeg-quality", type=float, default=0.9)
    parser.add_argument("--max-file-size-mb", type=float, default=8.0)
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args()


def collect_screenshots(paths: List[Path]) -> List[bytes]:
    files: List[Path] = []
    for path in paths:
        if path.is_dir():
            files.extend(
                sorted(p for p in path.iterdir() if p.suffix.lower() in SCREENSHOT_EXTENSIONS)
            )
        else:
            files.append(path)
    return [f.read_bytes() for f in files]


def main() -> None:
    # Load environment variables from a local .env file if present
    # (e.g. OPENAI_API_KEY=sk-...).
    load_dotenv()

    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = load_settings(use_dotenv=False)
    plan = load_plan(args.plan)
    screenshots = collect_screenshots(args.screenshots)
    if not screenshots:
        raise SystemExit("No screenshots found.")

    # Prompt translation via LangChain when an OpenAI key is configured;
    # otherwise prompts are built from the plan.
    api_key = os.environ.get("OPENAI_API_KEY")
    translator = None
    if api_key and args.prompts is None:
        llm = ChatOpenAI(
            model=settings.llm_model or "gpt-5-mini-2025-08-07",
            temperature=0.5,
            api_key=api_key,
        )
        translator = PromptTranslator(llm=llm)

    workflow = ScreenshotWorkflow(
        plan=plan,
        screenshots=screenshots,
        client=BackgroundGenerator(settings=settings),
        settings=settings,
        include_tablet=args.tablet,
        translator=translator,
        on_status=lambda message: print(f"⏳ {message}"),
    )

    if args.prompts is not None:
        for prompt in load_prompts(args.prompts):
            workflow.prompts[prompt.family].append(prompt)

    sizes = resolve_sizes(args.sizes) if args.sizes else DEFAULT_SIZES
    if args.tablet and not args.sizes:
        sizes = sizes + resolve_sizes(["ipad_13"])

    try:
        result = workflow.start_generation()
        if workflow.error_message:
            print(f"⚠️  {workflow.error_message}")
        if result.is_empty:
            raise SystemExit(1)

        results = workflow.export_all(
            args.output,
            ExportConfig(
                sizes=tuple(sizes),
                format=ExportFormat(args.format),
                jpeg_quality=args.jpeg_quality,
                max_file_size_mb=args.max_file_size_mb,
            ),
        )
    except AppShotsError as e:
        print(f"❌ {e}")
        raise SystemExit(1)

    for warning in workflow.warnings:
        print(f"⚠️  {warning}")
    for family in (DeviceFamily.PHONE, DeviceFamily.TABLET):
        for failure in workflow.composition_failures[family]:
            print(f"⚠️  {failure}")
    for item in results:
        print(f"📁 {item.file_path} ({item.file_size / 1024:.0f} KB)")


if __name__ == "__main__":
    main()
