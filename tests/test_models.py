"""
Data model unit tests
"""

import json

import pytest

from appshots.models import (
    DeviceFamily,
    GenerationKey,
    ImagePrompt,
    LayoutModifiers,
    LayoutType,
    Position,
    ScreenConfig,
    TabletLayoutType,
    load_plan,
    load_prompts,
    plan_from_dict,
)


class TestGenerationKey:
    def test_decode_legacy_tablet_index(self):
        assert GenerationKey.decode(1003) == GenerationKey(DeviceFamily.TABLET, 3)

    def test_decode_phone_index(self):
        assert GenerationKey.decode(3) == GenerationKey(DeviceFamily.PHONE, 3)

    def test_encode_applies_offset_for_tablet_only(self):
        assert GenerationKey(DeviceFamily.TABLET, 0).encode() == 1000
        assert GenerationKey(DeviceFamily.PHONE, 7).encode() == 7

    def test_same_index_different_family_are_distinct(self):
        assert GenerationKey(DeviceFamily.PHONE, 0) != GenerationKey(DeviceFamily.TABLET, 0)


class TestScreenPlan:
    def test_screens_sorted_by_index(self, sample_plan):
        assert [s.index for s in sample_plan.screens] == [0, 1, 2]

    def test_colors_fill_defaults(self, sample_plan):
        assert sample_plan.colors.primary == "#101820"
        assert sample_plan.colors.text == "#ffffff"
        assert sample_plan.colors.subtext == "#a0a0a0"

    def test_duplicate_indices_rejected(self, plan_data):
        plan_data["screens"][1]["index"] = 1
        with pytest.raises(ValueError):
            plan_from_dict(plan_data)

    def test_negative_index_rejected(self, plan_data):
        plan_data["screens"][0]["index"] = -1
        with pytest.raises(ValueError):
            plan_from_dict(plan_data)

    def test_screen_lookup(self, sample_plan):
        assert sample_plan.screen(2).heading == "Share with friends"
        assert sample_plan.screen(9) is None

    def test_load_plan(self, plan_data, temp_dir):
        path = temp_dir / "plan.json"
        path.write_text(json.dumps(plan_data), encoding="utf-8")
        plan = load_plan(path)
        assert plan.app_name == "My App!!"
        assert plan.screen(1).position is Position.LEFT


class TestScreenConfig:
    def test_explicit_layout_wins_over_flags(self):
        screen = ScreenConfig(index=0, screenshot_match=0, heading="h", tilt=True, layout=LayoutType.RIGHT_DEVICE)
        assert screen.modifiers() == LayoutModifiers(position=Position.RIGHT)

    def test_flags_used_without_layout(self):
        screen = ScreenConfig(index=0, screenshot_match=0, heading="h", tilt=True, position=Position.LEFT)
        assert screen.modifiers() == LayoutModifiers(tilt=True, position=Position.LEFT)

    def test_tablet_view_inherits_phone_fields(self, sample_plan):
        view = sample_plan.screen(0).tablet_view()
        assert view.heading == "Organise on the big screen"
        assert view.subheading == "Everything in one place"
        assert view.screenshot_match == 0
        assert view.resolved_layout() is TabletLayoutType.FRAMELESS

    def test_tablet_view_without_tablet_config_follows_modifiers(self, sample_plan):
        view = sample_plan.screen(1).tablet_view()
        assert view.resolved_layout() is TabletLayoutType.ANGLED

    @pytest.mark.parametrize(
        "tilt,position,full_bleed,expected",
        [
            (False, Position.CENTER, False, TabletLayoutType.STANDARD),
            (True, Position.CENTER, False, TabletLayoutType.ANGLED),
            (False, Position.LEFT, False, TabletLayoutType.SPLIT_PANEL),
            (True, Position.LEFT, True, TabletLayoutType.UI_FORWARD),
        ],
    )
    def test_tablet_layout_from_modifiers(self, tilt, position, full_bleed, expected):
        assert TabletLayoutType.from_modifiers(tilt, position, full_bleed) is expected


class TestImagePrompt:
    def test_from_dict_decodes_legacy_offset(self):
        prompt = ImagePrompt.from_dict({"screen_index": 1001, "prompt": "p"})
        assert prompt.family is DeviceFamily.TABLET
        assert prompt.screen_index == 1

    def test_to_dict_encodes_tablet_offset(self):
        prompt = ImagePrompt(screen_index=2, prompt="p", family=DeviceFamily.TABLET)
        assert prompt.to_dict()["screen_index"] == 1002

    def test_word_count_and_minimal(self):
        assert ImagePrompt(0, "soft blue gradient").word_count == 3
        assert ImagePrompt(0, "soft blue gradient").is_minimal
        assert not ImagePrompt(0, " ".join(["word"] * 12)).is_minimal

    def test_quality_score_bounded(self):
        rich = ImagePrompt(
            0,
            'Premium studio mockup of an iPhone showing "Tasks", colors #101820 and #3b82f6, '
            + " ".join(["detail"] * 20),
        )
        assert rich.quality_score == 1.0
        assert ImagePrompt(0, "blue").quality_score == 0.0

    def test_load_prompts_mixed_families(self, temp_dir):
        path = temp_dir / "prompts.json"
        path.write_text(
            json.dumps({"screens": [
                {"screen_index": 0, "prompt": "a"},
                {"screen_index": 1000, "prompt": "b", "negative_prompt": "text"},
            ]}),
            encoding="utf-8",
        )
        prompts = load_prompts(path)
        assert [p.key for p in prompts] == [
            GenerationKey(DeviceFamily.PHONE, 0),
            GenerationKey(DeviceFamily.TABLET, 0),
        ]
        assert prompts[1].negative_prompt == "text"
