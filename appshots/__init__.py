"""
AppShots: turns a screen plan into App Store marketing screenshots.

Modules:
- models: plan, prompt and generation-key data types
- generator: background generation client (OpenAI-compatible / Replicate)
- orchestrator: parallel background generation with retry and cancellation
- layout, text, frames: geometry, typography and device chrome
- render: layered compositor with gradient fallback
- export: resizing, encoding and compress-to-fit file export
- prompts: image prompt building and optional LLM translation
- core: workflow facade tying generation, composition and export together
"""
