"""Deterministic scene extraction and comic page grouping.

Turns an adventurer and its event log into a fixed number of narrative
beats, then groups them into pages with one combined 2x2 image prompt each.

Rules:
- The beat count is fixed (20 by default). Long logs are split into equal
  buckets and the most important event of each bucket is kept.
- Terminal events (``Died``, or the last event of a dead adventurer) are
  never sampled out; they always close the sequence.
- Short logs are padded with beats derived from stats and equipment. A
  log with a single terminal event gets an encounter lead-up built from
  that event.
- Nothing here reads the clock or a random source, so a retried job
  reproduces exactly the same scenes.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Sequence

from ..models.schemas import Adventurer, GameEvent, GameplayRecord, Mood, SceneType
from .loot_items import equipped_name

DEFAULT_TARGET_SCENES = 20
DEFAULT_PANELS_PER_PAGE = 4

PANEL_POSITIONS = ("top-left", "top-right", "bottom-left", "bottom-right")

ACTION_STYLE = "dynamic action scene, motion lines, speed effects, dramatic shadows"
INK_STYLE = (
    "classic comic book style, black and white charcoal drawing, "
    "pen and ink illustration, high contrast, monochrome, no colors"
)

_LOCATION_TIERS: tuple[tuple[int, str], ...] = (
    (5, "dark dungeon with stone walls and torches"),
    (10, "ancient cave with stalactites and glowing crystals"),
    (15, "deep forest with tall trees and shadows"),
    (20, "ruined temple with broken columns"),
    (30, "underground crypt with coffins"),
    (40, "castle courtyard with battlements"),
)
_FINAL_LOCATION = "boss chamber with throne and dark aura"

_MONSTER_TIERS: tuple[tuple[int, tuple[str, ...]], ...] = (
    (5, ("Skeleton Warrior", "Goblin", "Zombie", "Rat")),
    (10, ("Orc", "Troll", "Giant Spider", "Dark Knight")),
    (20, ("Dragon", "Demon", "Lich", "Beast")),
    (30, ("Ancient Dragon", "Archdemon", "Death Knight", "Shadow Beast")),
)
_FINAL_MONSTERS = ("Final Boss", "Elder Dragon", "Dark Lord", "Ultimate Beast")

_MOODS: dict[str, Mood] = {
    "battle": "dramatic",
    "discovery": "tense",
    "upgrade": "calm",
    "death": "somber",
    "victory": "triumphant",
    "rest": "tense",
}


@dataclass(frozen=True)
class Scene:
    panel_number: int
    scene_type: SceneType
    action: str
    location: str
    description: str
    speech_bubble: str
    turn_number: int | None = None
    monster: str | None = None
    source_event_id: str | None = None

    @property
    def mood(self) -> Mood:
        return _MOODS[self.scene_type]

    @property
    def narration(self) -> str:
        return f"{self.action}, in the {self.location}."


@dataclass(frozen=True)
class ComicPage:
    page_number: int
    scenes: tuple[Scene, ...]
    page_description: str
    image_prompt: str


def infer_location(level: int) -> str:
    for limit, location in _LOCATION_TIERS:
        if level < limit:
            return location
    return _FINAL_LOCATION


def monster_for_level(level: int, index: int) -> str:
    for limit, monsters in _MONSTER_TIERS:
        if level < limit:
            return monsters[index % len(monsters)]
    return _FINAL_MONSTERS[index % len(_FINAL_MONSTERS)]


def narrative_title(adventurer: Adventurer) -> str:
    if adventurer.is_dead:
        return f"The Fall of {adventurer.display_name}"
    return f"The Journey of {adventurer.display_name}"


def score_event(event: GameEvent, first_attack: bool) -> int:
    """Narrative importance of an event; higher survives sampling."""
    kind = event.event_type
    data = event.data
    if kind == "Attack":
        if first_attack:
            return 10
        if data.critical_hit:
            return 8
        if (data.damage or 0) > 30:
            return 6
        return 2
    if kind == "Died":
        return 10
    if kind == "Discovered":
        entity = data.entity_name or data.discovery_type
        return 9 if entity and entity != "Unknown" else 3
    if kind == "Flee":
        return 7
    return 1


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------


def _terminal_indices(events: Sequence[GameEvent], adventurer: Adventurer) -> list[int]:
    indices = [i for i, event in enumerate(events) if event.event_type == "Died"]
    if not indices and adventurer.is_dead and events:
        indices = [len(events) - 1]
    return indices


def _sample_events(events: Sequence[GameEvent], slots: int) -> list[GameEvent]:
    """Keep *slots* events: one per equal-width bucket, the most important wins."""
    if len(events) <= slots:
        return list(events)

    scores: list[int] = []
    first_attack_seen = False
    for event in events:
        is_first_attack = event.event_type == "Attack" and not first_attack_seen
        if is_first_attack:
            first_attack_seen = True
        scores.append(score_event(event, is_first_attack))

    total = len(events)
    picked: list[GameEvent] = []
    for bucket in range(slots):
        lo = bucket * total // slots
        hi = (bucket + 1) * total // slots
        best = max(range(lo, hi), key=lambda i: (scores[i], -i))
        picked.append(events[best])
    return picked


# ---------------------------------------------------------------------------
# Scene builders
# ---------------------------------------------------------------------------


def _gear(adventurer: Adventurer) -> tuple[str, str]:
    weapon = equipped_name(adventurer.equipment.weapon)
    chest = equipped_name(adventurer.equipment.chest)
    return weapon or "bare fists", chest or "tattered clothes"


def _hero_clause(adventurer: Adventurer) -> str:
    weapon, chest = _gear(adventurer)
    stats = adventurer.stats
    helm = equipped_name(adventurer.equipment.head)
    clause = (
        f"Adventurer (Strength {stats.strength}, Dexterity {stats.dexterity}, "
        f"Vitality {stats.vitality}) wielding {weapon}, wearing {chest}"
    )
    if helm:
        clause += f" and {helm}"
    return clause


def _event_monster(event: GameEvent) -> str | None:
    data = event.data
    if event.event_type in ("Discovered", "BeastAttack", "Ambush"):
        return data.entity_name or data.beast_name or data.discovery_type or "Unknown Creature"
    return data.beast_name


def _scene_from_event(event: GameEvent, adventurer: Adventurer) -> Scene:
    data = event.data
    kind = event.event_type
    monster = _event_monster(event)
    damage = data.damage or 0
    hit_at = data.location_name or "the target"
    enemy = monster or "the enemy"
    location = infer_location(adventurer.level)

    scene_type: SceneType = "battle"
    if kind == "Attack":
        if data.critical_hit:
            action = f"Critical strike dealing {damage} damage at {hit_at}"
            speech = f"Critical hit! {damage} damage to {hit_at}! {enemy} reels!"
        else:
            action = f"Attack dealing {damage} damage at {hit_at}"
            speech = f"{damage} damage! {enemy} staggers!"
    elif kind in ("BeastAttack", "Ambush"):
        verb = "ambushes the hero" if kind == "Ambush" else "strikes"
        action = f"{enemy} {verb} for {damage} damage at {hit_at}"
        speech = f"The {enemy} strikes! {damage} damage taken!"
    elif kind == "Flee":
        scene_type = "rest"
        action = "Fleeing from battle"
        speech = "Retreat! I must live to fight another day!"
    elif kind == "Discovered":
        scene_type = "discovery"
        if data.discovery_type == "Beast":
            action = (
                f"Encountering {enemy} (Level {data.beast_level or '?'}, "
                f"Health {data.beast_health or '?'})"
            )
            speech = f"{enemy} (Level {data.beast_level or '?'}) appears! Battle begins!"
        elif data.discovery_type == "Gold":
            action = f"Discovering {data.discovery_value or 0} gold"
            speech = f"Found {data.discovery_value or 0} gold coins!"
        elif data.discovery_type == "Item":
            action = "Finding an item"
            speech = "An item discovered!"
        else:
            action = f"Discovering {data.entity_name or 'a creature'}"
            speech = f"{monster or 'Something'} appears!"
    elif kind == "Upgraded":
        scene_type = "upgrade"
        action = "Training and upgrading gear between battles"
        speech = "Stronger than before!"
    else:
        action = f"{kind} event"
        speech = "The adventure continues..."

    emphasis = "bright flash and heavy impact" if data.critical_hit else ACTION_STYLE
    description = (
        f"{_hero_clause(adventurer)}, {action.lower()}, "
        f"{'facing ' + enemy if monster else 'alone'}, in {location}, {emphasis}, {INK_STYLE}"
    )
    return Scene(
        panel_number=0,
        scene_type=scene_type,
        action=action,
        location=location,
        description=description,
        speech_bubble=speech,
        turn_number=event.turn_number,
        monster=monster,
        source_event_id=event.id,
    )


def _death_scene_from_event(event: GameEvent, adventurer: Adventurer) -> Scene:
    """The killing blow, carrying the event's own details."""
    data = event.data
    weapon, _ = _gear(adventurer)
    beast = data.beast_name or data.entity_name or "Beast"
    damage = data.damage or 0
    crit = data.critical_hit
    where = infer_location(adventurer.level)

    if event.event_type == "BeastAttack":
        action = f"Final blow from {beast} - Death"
        speech = (
            f"The {beast}'s {damage} damage{' critical hit' if crit else ''}... "
            "This is where my journey ends..."
        )
        detail = (
            f"{beast} delivers the killing blow{' with a CRITICAL HIT' if crit else ''} "
            f"dealing {damage} damage, the hero falls, {weapon} dropping from hand"
        )
    elif event.event_type == "Attack":
        action = "Final attack fails - Death"
        speech = (
            f"My {damage} damage{' critical' if crit else ''} strike wasn't enough... "
            f"The {beast}... finishes me..."
        )
        detail = (
            f"the hero's last attack with {weapon} deals {damage} damage to {beast} "
            f"but it is not enough, {beast} counter-attacks and the hero falls"
        )
    elif event.event_type == "Flee":
        action = "Flee attempt fails - Death"
        speech = f"I couldn't escape... The {beast} caught me... This is where my journey ends..."
        detail = f"the flee attempt fails, {beast} catches up and delivers the final blow"
    else:
        slain_by = data.beast_name or data.entity_name
        action = f"Slain by {slain_by} - Death" if slain_by else "Final moments - Death"
        speech = "This is where my journey ends..."
        detail = "health reaches zero, the hero falls"

    description = (
        f"The hero's final moments, {_hero_clause(adventurer)}, {detail}, "
        f"the adventure ends, in {where}, dramatic death scene, {ACTION_STYLE}, {INK_STYLE}"
    )
    return Scene(
        panel_number=0,
        scene_type="death",
        action=action,
        location=where,
        description=description,
        speech_bubble=speech,
        turn_number=event.turn_number,
        monster=beast,
        source_event_id=event.id,
    )


def _closing_death_scene(adventurer: Adventurer) -> Scene:
    where = infer_location(adventurer.level)
    return Scene(
        panel_number=0,
        scene_type="death",
        action="Final moments - Death",
        location=where,
        description=(
            f"The hero's final moments, {_hero_clause(adventurer)}, health reaches zero, "
            f"the adventure ends, in {where}, dramatic death scene, {INK_STYLE}"
        ),
        speech_bubble="This is where my journey ends...",
    )


def _closing_victory_scene(adventurer: Adventurer) -> Scene:
    where = "boss chamber with throne and light"
    return Scene(
        panel_number=0,
        scene_type="victory",
        action="Victory achieved",
        location=where,
        description=(
            f"{_hero_clause(adventurer)} standing victorious at level {adventurer.level} "
            f"with {adventurer.xp} XP and {adventurer.gold} gold, in {where}, "
            f"triumphant pose, dramatic lighting, {INK_STYLE}"
        ),
        speech_bubble="Victory! The adventure is complete!",
    )


def _journey_beats(adventurer: Adventurer, count: int, with_boss: bool = False) -> list[Scene]:
    """Beats derived only from stats, level, gold and equipment."""
    weapon, chest = _gear(adventurer)
    stats = adventurer.stats
    beats: list[Scene] = []
    for i in range(count):
        progress = (i + 1) / count
        level = max(1, int(adventurer.level * progress))
        monster: str | None = monster_for_level(level, i)
        scene_type: SceneType = "battle"

        if i == 0:
            scene_type = "discovery"
            action = f"Entering the dungeon with {weapon}"
            speech = f"Armed with {weapon}, wearing {chest}, the adventure begins..."
        elif with_boss and count >= 3 and i == count - 1:
            monster = "Final Boss" if adventurer.level > 30 else (
                "Elder Dragon" if adventurer.level > 20 else "Boss"
            )
            action = f"Final battle against {monster} with {weapon}"
            speech = f"The final confrontation! {weapon} ready!"
        elif level % 5 == 0 and i % 3 == 0:
            scene_type = "upgrade"
            monster = None
            action = f"Level up! Reached level {level}"
            speech = f"Level {level}! New powers awaken!"
        elif adventurer.gold > 0 and i % 4 == 0:
            scene_type = "discovery"
            monster = None
            action = f"Discovering treasure chest with {adventurer.gold} gold"
            speech = f"Treasure found! {adventurer.gold} gold coins!"
        elif stats.strength > 20:
            action = f"Powerful {weapon} strike with crushing force against {monster}"
            speech = f"{weapon} strikes true! {monster} staggers!"
        elif stats.dexterity > 20:
            action = f"Agile dodge and swift {weapon} counter-attack on {monster}"
            speech = f"Too fast! {monster} can't keep up!"
        elif stats.intelligence > 10:
            action = f"Casting a spell at {monster} while wielding {weapon}"
            speech = f"Magic flows through {weapon}!"
        elif stats.vitality > 25:
            action = f"Blocking {monster} with {chest}, then countering with {weapon}"
            speech = f"{chest} protects! {weapon} strikes back!"
        else:
            action = f"Combat with {weapon} against {monster}"
            speech = f"Fighting {monster} with {weapon}!"

        location = infer_location(level)
        beats.append(
            Scene(
                panel_number=0,
                scene_type=scene_type,
                action=action,
                location=location,
                description=(
                    f"{_hero_clause(adventurer)}, {action.lower()}, "
                    f"facing {monster or 'the unknown'}, in {location}, {ACTION_STYLE}, {INK_STYLE}"
                ),
                speech_bubble=speech,
                monster=monster,
            )
        )
    return beats


def _lead_up_beats(event: GameEvent, adventurer: Adventurer, count: int) -> list[Scene]:
    """Encounter sequence that leads into a single terminal event."""
    weapon, _ = _gear(adventurer)
    beast = event.data.beast_name or event.data.entity_name or "Beast"
    location = infer_location(adventurer.level)
    fled = event.event_type == "Flee"
    sequence: list[tuple[SceneType, str, str]] = [
        ("battle", f"Encountering the {beast}", f"A powerful {beast} blocks my path!"),
        ("battle", f"First strike against {beast}", f"Take this! {weapon} strikes!"),
        ("battle", f"{beast} counter-attacks", f"The {beast} strikes back!"),
        ("battle", f"Taking damage from {beast}", "I'm wounded! But I must continue!"),
        (
            "battle",
            f"Desperate final attack against {beast}",
            f"This is my last chance! {weapon}, don't fail me!",
        ),
        (
            ("rest", f"Attempting to flee from {beast}", "I must escape! This is too dangerous!")
            if fled
            else ("battle", f"{beast} prepares a final attack", f"The {beast} is too strong!")
        ),
    ]
    encounter = [
        Scene(
            panel_number=0,
            scene_type=scene_type,
            action=action,
            location=location,
            description=(
                f"{_hero_clause(adventurer)}, {action.lower()}, facing {beast}, "
                f"in {location}, {ACTION_STYLE}, {INK_STYLE}"
            ),
            speech_bubble=speech,
            monster=beast,
        )
        for scene_type, action, speech in sequence
    ]
    if count <= len(encounter):
        return encounter[len(encounter) - count:]
    return _journey_beats(adventurer, count - len(encounter)) + encounter


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def extract_scenes(record: GameplayRecord, target_scenes: int = DEFAULT_TARGET_SCENES) -> list[Scene]:
    """Return exactly *target_scenes* ordered beats for *record*."""
    if target_scenes < 1:
        raise ValueError("target_scenes must be at least 1")

    adventurer = record.adventurer
    events = record.events
    terminal_idx = _terminal_indices(events, adventurer)
    terminal_set = set(terminal_idx)
    terminal_events = [events[i] for i in terminal_idx][-target_scenes:]
    body_events = [event for i, event in enumerate(events) if i not in terminal_set]

    tail = [_death_scene_from_event(event, adventurer) for event in terminal_events]
    if not tail:
        tail = [_closing_death_scene(adventurer) if adventurer.is_dead else _closing_victory_scene(adventurer)]

    slots = target_scenes - len(tail)
    if slots <= 0:
        beats = tail[-target_scenes:]
    else:
        body = [_scene_from_event(event, adventurer) for event in _sample_events(body_events, slots)]
        missing = slots - len(body)
        if missing:
            if not events:
                padding = _journey_beats(adventurer, missing, with_boss=True)
            elif len(events) == 1 and terminal_events:
                padding = _lead_up_beats(terminal_events[0], adventurer, missing)
            else:
                padding = _journey_beats(adventurer, missing)
            body = padding + body
        beats = body + tail

    return [replace(scene, panel_number=i + 1) for i, scene in enumerate(beats)]


def _page_prompt(scenes: Sequence[Scene]) -> str:
    panels = " | ".join(
        f"Panel {i + 1} ({PANEL_POSITIONS[i] if i < len(PANEL_POSITIONS) else f'position {i + 1}'}): "
        f"{scene.description}, distinct from every other panel"
        for i, scene in enumerate(scenes)
    )
    return (
        f"Professional comic book page, 2x2 grid layout with exactly {len(scenes)} distinct panels, "
        "each panel clearly separated with thick black borders, every panel a different scene "
        "with a different enemy, action, location, composition and camera angle: "
        f"{panels}, detailed linework, hatching and crosshatching, {INK_STYLE}, grayscale, "
        "no speech bubbles or text in images"
    )


def _page_description(page_number: int, scenes: Sequence[Scene]) -> str:
    lines = " | ".join(f"Panel {scene.panel_number}: {scene.speech_bubble}" for scene in scenes)
    return f"Page {page_number}: {lines}"


def group_into_pages(
    scenes: Sequence[Scene], panels_per_page: int = DEFAULT_PANELS_PER_PAGE
) -> list[ComicPage]:
    """Split scenes into pages of *panels_per_page*; the last page may be short."""
    if panels_per_page < 1:
        raise ValueError("panels_per_page must be at least 1")
    pages: list[ComicPage] = []
    for start in range(0, len(scenes), panels_per_page):
        chunk = tuple(scenes[start:start + panels_per_page])
        page_number = start // panels_per_page + 1
        pages.append(
            ComicPage(
                page_number=page_number,
                scenes=chunk,
                page_description=_page_description(page_number, chunk),
                image_prompt=_page_prompt(chunk),
            )
        )
    return pages
