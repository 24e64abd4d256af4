from __future__ import annotations

from typing import Any, Sequence

from .types import CharacterState

SYSTEM_PROMPT = (
    "You are the narrative engine of a tabletop session, not its rules engine.\n"
    "Always narrate in Brazilian Portuguese. Keep the adventure coherent, dramatic "
    "and focused on choices.\n\n"
    "## World\n"
    "World: {world_history}\n"
    "Genre: {genre}\n"
    "Tone and lethality: {tone}\n"
    "Magic level: {magic}\n"
    "Technology level: {tech}\n"
    "Visual style: {visual_style}\n\n"
    "## Acting character\n"
    "Name: {character_name}\n"
    "Profession: {character_profession}\n"
    "Health: {character_health}\n"
    "Inventory: {character_inventory}\n\n"
    "## Attributes (pick the most logical one)\n"
    "- VIGOR: strength, endurance, raw physical effort.\n"
    "- DESTREZA: agility, reflexes, stealth, manual precision.\n"
    "- MENTE: reasoning, perception, technology, analysis.\n"
    "- PRESENÇA: charisma, willpower, magic, influence.\n\n"
    "## Rolls\n"
    "You never compute outcomes. Never resolve an uncertain action without "
    "requesting a roll; stop the narration and call request_roll. Mark "
    "is_profession_relevant true only when the profession bears directly on the action. "
    "Accepted difficulties: NORMAL, HARD, VERY_HARD. For impossible actions, answer "
    "with a sarcastic warning and do not request a roll.\n\n"
    "## Tools\n"
    "Damage, rest, images, character changes and death only happen through tools. "
    "When a tool call is not available, emit strict JSON inside <tool_code> tags:\n"
    '<tool_code>{{"action": "apply_damage", "params": {{"type": "LIGHT"}}}}</tool_code>\n'
    "Image prompts are comma-separated keywords, never full sentences.\n\n"
    "## Output\n"
    "Fluid, objective narration ending with 3 to 5 clear options. Never show JSON "
    "or rule explanations in the visible narration.\n"
)

TABLE_STATUS_PROMPT = (
    "\n## Table status\n"
    "Current status: {status}.\n"
    "- If the status is 'waiting_for_players' or 'paused', answer only with "
    '"[SISTEMA] Mesa em espera." and do not advance the story.\n'
    "- The narration is shared by every player. Do not invent facts that "
    "contradict the history.\n"
    "- Personalize only the point of view of the acting character.\n"
)

ROSTER_PROMPT = (
    "\n## Multiplayer POV\n"
    "Active players: {names}.\n"
    "- Narrate the same scene for everybody, with one POV block per player in the "
    'format "POV - <Name>: ...".\n'
    "- One player's actions change the state and consequences for the others.\n"
    "- Keep the POV blocks consistent with each other.\n"
)

OPENING_PROMPT = (
    "Start the adventure. Present the opening scene to the whole table and end with "
    "the first choices."
)

TOOL_SCHEMAS: list[dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": "request_roll",
            "description": "Request a dice roll from the acting player.",
            "parameters": {
                "type": "object",
                "properties": {
                    "attribute": {"type": "string", "enum": ["VIGOR", "DESTREZA", "MENTE", "PRESENÇA"]},
                    "is_profession_relevant": {"type": "boolean"},
                    "difficulty": {"type": "string", "enum": ["NORMAL", "HARD", "VERY_HARD"]},
                    "is_impossible": {"type": "boolean"},
                    "impossible_reason": {"type": "string"},
                },
                "required": ["attribute", "is_profession_relevant", "difficulty"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "apply_damage",
            "description": "Apply light or heavy damage to the acting character.",
            "parameters": {
                "type": "object",
                "properties": {"type": {"type": "string", "enum": ["LIGHT", "HEAVY"]}},
                "required": ["type"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "apply_rest",
            "description": "Apply a short or long rest to the acting character.",
            "parameters": {
                "type": "object",
                "properties": {"type": {"type": "string", "enum": ["SHORT", "LONG"]}},
                "required": ["type"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "generate_image",
            "description": "Illustrate the current scene with a keyword prompt.",
            "parameters": {
                "type": "object",
                "properties": {"prompt": {"type": "string"}},
                "required": ["prompt"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "trigger_game_over",
            "description": "End the acting character's story when they die.",
            "parameters": {
                "type": "object",
                "properties": {
                    "causeOfDeath": {"type": "string"},
                    "worldFuture": {"type": "string"},
                },
                "required": ["causeOfDeath", "worldFuture"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "update_character",
            "description": "Update the character's profession or inventory when the story changes them.",
            "parameters": {
                "type": "object",
                "properties": {
                    "profession": {"type": "string"},
                    "inventory": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "id": {"type": "string"},
                                "name": {"type": "string"},
                                "type": {"type": "string", "enum": ["consumable", "equipment"]},
                                "quantity": {"type": "number"},
                            },
                        },
                    },
                },
                "required": [],
            },
        },
    },
]


def _inventory_line(character: CharacterState) -> str:
    if not character.inventory:
        return "empty"
    return ", ".join(f"{item.name} x{item.quantity}" for item in character.inventory)


def build_system_prompt(
    campaign: Any,
    character: CharacterState | None = None,
    roster: Sequence[str] = (),
) -> str:
    character = character or CharacterState()
    prompt = SYSTEM_PROMPT.format(
        world_history=getattr(campaign, "world_history", "") or "",
        genre=getattr(campaign, "genre", "") or "",
        tone=getattr(campaign, "tone", "") or "",
        magic=getattr(campaign, "magic", "") or "",
        tech=getattr(campaign, "tech", "") or "",
        visual_style=getattr(campaign, "visual_style", "") or "",
        character_name=character.name or "Jogador",
        character_profession=character.profession or "Sem profissao definida",
        character_health=character.health.tier.value,
        character_inventory=_inventory_line(character),
    )
    prompt += TABLE_STATUS_PROMPT.format(status=getattr(campaign, "status", "") or "")
    if len(roster) > 1:
        prompt += ROSTER_PROMPT.format(names=", ".join(roster))
    return prompt
