"""Loot item id to display name mapping used when describing equipment."""

from __future__ import annotations

from ..models.schemas import EquipmentItem

LOOT_ITEMS: dict[int, str] = {
    # Jewelry
    1: "Pendant",
    2: "Necklace",
    3: "Amulet",
    4: "Silver Ring",
    5: "Bronze Ring",
    6: "Platinum Ring",
    7: "Titanium Ring",
    8: "Gold Ring",
    # Magic weapons
    9: "Ghost Wand",
    10: "Grave Wand",
    11: "Bone Wand",
    12: "Wand",
    13: "Grimoire",
    14: "Chronicle",
    15: "Tome",
    16: "Book",
    # Bludgeons
    17: "Warhammer",
    18: "Quarterstaff",
    19: "Maul",
    20: "Mace",
    21: "Club",
    # Blades
    22: "Katana",
    23: "Falchion",
    24: "Scimitar",
    25: "Long Sword",
    26: "Short Sword",
    # Chest
    27: "Divine Robe",
    28: "Silk Robe",
    29: "Linen Robe",
    30: "Robe",
    31: "Shirt",
    32: "Demon Husk",
    33: "Dragonskin Armor",
    34: "Studded Leather Armor",
    35: "Hard Leather Armor",
    36: "Leather Armor",
    37: "Holy Chestplate",
    38: "Ornate Chestplate",
    39: "Plate Mail",
    40: "Chain Mail",
    41: "Ring Mail",
    # Head
    42: "Divine Hood",
    43: "Silk Hood",
    44: "Linen Hood",
    45: "Hood",
    46: "Demon Crown",
    47: "Dragonskin Helm",
    48: "War Cap",
    49: "Leather Cap",
    50: "Cap",
    51: "Holy Helm",
    52: "Ornate Helm",
    53: "Great Helm",
    54: "Full Helm",
    55: "Helm",
    # Waist
    56: "Platinum Sash",
    57: "Gold Sash",
    58: "Silver Sash",
    59: "Bronze Sash",
    60: "Silk Sash",
    61: "Demonhide Belt",
    62: "Dragonskin Belt",
    63: "Studded Leather Belt",
    64: "Hard Leather Belt",
    65: "Leather Belt",
    66: "Brightsilk Sash",
    67: "Ornate Belt",
    68: "War Belt",
    69: "Plated Belt",
    70: "Mesh Belt",
    # Foot
    71: "Divine Slippers",
    72: "Silk Slippers",
    73: "Linen Shoes",
    74: "Shoes",
    75: "Demonhide Boots",
    76: "Dragonskin Boots",
    77: "Studded Leather Boots",
    78: "Hard Leather Boots",
    79: "Leather Boots",
    80: "Holy Greaves",
    81: "Ornate Greaves",
    82: "Greaves",
    83: "Chain Boots",
    84: "Heavy Boots",
    # Hand
    85: "Divine Gloves",
    86: "Silk Gloves",
    87: "Linen Gloves",
    88: "Gloves",
    89: "Demon's Hands",
    90: "Dragonskin Gloves",
    91: "Studded Leather Gloves",
    92: "Hard Leather Gloves",
    93: "Leather Gloves",
    94: "Holy Gauntlets",
    95: "Ornate Gauntlets",
    96: "Gauntlets",
    97: "Chain Gloves",
    98: "Ring Gloves",
}


def item_name(item_id: int) -> str:
    return LOOT_ITEMS.get(item_id, f"Unknown Item ({item_id})")


def equipped_name(item: EquipmentItem | None) -> str | None:
    """Display name of an equipped item, or None for an empty slot."""
    if item is None or item.id == 0:
        return None
    return item.name or item_name(item.id)
