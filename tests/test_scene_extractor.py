"""Tests for services/scene_extractor.py and services/illustration.py."""

from __future__ import annotations

import pytest

from conftest import make_adventurer, make_event, make_events, make_record
from saga_worker.models.schemas import GameplayRecord
from saga_worker.services.illustration import illustrate_pages, wallet_seed
from saga_worker.services.scene_extractor import (
    extract_scenes,
    group_into_pages,
    infer_location,
    narrative_title,
    score_event,
)


class TestExtractScenesCardinality:
    """Scene count is fixed regardless of log length."""

    @pytest.mark.parametrize("count", [0, 1, 3, 19, 20, 21, 150])
    def test_always_twenty_scenes(self, count):
        """Every log produces exactly the target number of scenes."""
        record = make_record(events=make_events(count, died=False), health=0)
        assert len(extract_scenes(record)) == 20

    def test_custom_target(self):
        """Target below the default is honoured."""
        assert len(extract_scenes(make_record(), target_scenes=8)) == 8

    def test_invalid_target(self):
        """Zero scenes is rejected."""
        with pytest.raises(ValueError):
            extract_scenes(make_record(), target_scenes=0)

    def test_panels_numbered_in_order(self):
        """Panel numbers run 1..N."""
        scenes = extract_scenes(make_record())
        assert [s.panel_number for s in scenes] == list(range(1, 21))


class TestExtractScenesDeterminism:
    """Identical input yields identical scenes."""

    def test_same_input_same_output(self):
        record = make_record(events=make_events(57))
        assert extract_scenes(record) == extract_scenes(record)

    def test_same_input_copied_record(self):
        """A structurally equal record rebuilt from JSON gives the same scenes."""
        record = make_record(events=make_events(12))
        clone = GameplayRecord.model_validate_json(record.model_dump_json(by_alias=True))
        assert extract_scenes(record) == extract_scenes(clone)

    def test_empty_log_deterministic(self):
        record = make_record(events=[], health=30)
        assert extract_scenes(record) == extract_scenes(record)


class TestTerminalEvents:
    """Terminal events close the story verbatim."""

    def test_died_event_is_final_scene(self):
        """The Died event appears as the final panel of the final page."""
        record = make_record(events=make_events(80))
        pages = group_into_pages(extract_scenes(record))
        last = pages[-1].scenes[-1]
        assert last.source_event_id == "ev-died"
        assert last.scene_type == "death"
        assert last.monster == "Chimera"

    def test_dead_without_died_event_uses_last_event(self):
        """A dead adventurer's last event becomes the death scene."""
        events = make_events(25, died=False)
        record = make_record(events=events, health=0)
        last = extract_scenes(record)[-1]
        assert last.source_event_id == events[-1].id
        assert last.scene_type == "death"

    def test_alive_ends_in_victory(self):
        """A living adventurer gets a closing victory beat."""
        record = make_record(events=make_events(25, died=False), health=40)
        scenes = extract_scenes(record)
        assert scenes[-1].scene_type == "victory"
        assert all(s.scene_type != "death" for s in scenes)

    def test_dead_with_empty_log_ends_in_death(self):
        record = make_record(events=[], health=0)
        assert extract_scenes(record)[-1].scene_type == "death"


class TestShortLogs:
    """Padding for short and empty logs."""

    def test_single_event_lead_up(self):
        """A lone killing blow is preceded by an encounter with the same beast."""
        event = make_event("only", "BeastAttack", 3, beastName="Wraith", damage=70)
        record = make_record(events=[event], health=0)
        scenes = extract_scenes(record)
        assert scenes[-1].source_event_id == "only"
        assert scenes[-2].monster == "Wraith"
        assert scenes[-7].action == "Encountering the Wraith"

    def test_short_log_keeps_all_events_in_order(self):
        events = make_events(4, died=False)
        record = make_record(events=events, health=25)
        ids = [s.source_event_id for s in extract_scenes(record) if s.source_event_id]
        assert ids == [e.id for e in events]

    def test_empty_log_uses_no_events(self):
        record = make_record(events=[], health=25)
        assert all(s.source_event_id is None for s in extract_scenes(record))


class TestHelpers:
    def test_infer_location_tiers(self):
        assert infer_location(1) == infer_location(4)
        assert infer_location(4) != infer_location(5)
        assert "boss chamber" in infer_location(99)

    def test_narrative_title(self):
        assert narrative_title(make_adventurer(health=0)) == "The Fall of Aria"
        assert narrative_title(make_adventurer(health=10)) == "The Journey of Aria"
        assert narrative_title(make_adventurer(health=10, name=None)) == "The Journey of the Hero"

    def test_score_event_first_attack_highest(self):
        attack = make_event("a", "Attack", 1, damage=3)
        assert score_event(attack, first_attack=True) == 10
        assert score_event(attack, first_attack=False) == 2

    def test_score_event_discovery(self):
        found = make_event("d", "Discovered", 1, entityName="Gold")
        unknown = make_event("u", "Discovered", 1)
        assert score_event(found, first_attack=False) == 9
        assert score_event(unknown, first_attack=False) == 3


class TestGroupIntoPages:
    def test_twenty_scenes_five_pages(self):
        pages = group_into_pages(extract_scenes(make_record()))
        assert [p.page_number for p in pages] == [1, 2, 3, 4, 5]
        assert all(len(p.scenes) == 4 for p in pages)

    def test_last_page_may_be_short(self):
        pages = group_into_pages(extract_scenes(make_record(), target_scenes=18))
        assert [len(p.scenes) for p in pages] == [4, 4, 4, 4, 2]

    def test_page_prompt_and_description(self):
        page = group_into_pages(extract_scenes(make_record()))[0]
        assert "2x2 grid" in page.image_prompt
        assert "Panel 1 (top-left)" in page.image_prompt
        assert page.page_description.startswith("Page 1: Panel 1: ")

    def test_rejects_zero_panels(self):
        with pytest.raises(ValueError):
            group_into_pages([], panels_per_page=0)


class TestWalletSeed:
    """32-bit string hash of the wallet."""

    def test_known_values(self):
        assert wallet_seed("") == 0
        assert wallet_seed("abc") == 96354
        assert wallet_seed("hello") == 99162322

    def test_negative_hash_made_positive(self):
        # hashes to the minimum signed 32-bit value
        assert wallet_seed("polygenelubricants") == 2147483648

    def test_stable(self):
        wallet = "0x04a1b2c3d4e5f60718293a4b5c6d7e8f90a1b2c3d4e5f60718293a4b5c6d7e8f"
        assert wallet_seed(wallet) == wallet_seed(wallet)
        assert wallet_seed(wallet) >= 0


class TestIllustratePages:
    """Sequential rendering with a fixed pause between pages."""

    def test_seeds_offset_by_page_and_delay_between(self, renderer):
        pages = group_into_pages(extract_scenes(make_record()))
        sleeps: list[float] = []
        progress: list[tuple[int, int]] = []
        urls = illustrate_pages(
            pages,
            renderer,
            1000,
            delay_seconds=10,
            on_page_done=lambda done, total: progress.append((done, total)),
            sleep=sleeps.append,
        )
        assert [seed for _, seed in renderer.calls] == [1000, 1001, 1002, 1003, 1004]
        assert sleeps == [10, 10, 10, 10]
        assert progress == [(1, 5), (2, 5), (3, 5), (4, 5), (5, 5)]
        assert urls[0] == "https://images.test/1000.webp"

    def test_first_failure_aborts(self, timeline):
        from conftest import FakeRenderer
        from saga_worker.errors import ImageGenerationError

        failing = FakeRenderer(fail_on_call=2, timeline=timeline)
        pages = group_into_pages(extract_scenes(make_record()))
        with pytest.raises(ImageGenerationError):
            illustrate_pages(pages, failing, 1, delay_seconds=0, sleep=lambda _s: None)
        assert len(failing.calls) == 2
