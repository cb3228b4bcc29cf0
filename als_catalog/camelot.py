"""
Camelot Wheel Key Notation

Maps the key names decoded from a Live Set's scale information
("A Minor", "F# Major", "D Dorian") onto the Camelot wheel used by DJs.
The wheel has 12 positions (1-12) and 2 rings: A (minor) and B (major).
Modes are placed on the position of their relative major/minor; exotic
scales have no Camelot code.
"""

import re
from typing import Optional, Tuple, Dict


# Valid Camelot key pattern: 1-12 followed by A or B
_KEY_PATTERN = re.compile(r"^(\d{1,2})([ABab])$")

CAMELOT_MAP: Dict[str, str] = {
    # Major keys (B ring)
    "C Major": "8B", "C# Major": "3B", "D Major": "10B", "D# Major": "5B",
    "E Major": "12B", "F Major": "7B", "F# Major": "2B", "G Major": "9B",
    "G# Major": "4B", "A Major": "11B", "A# Major": "6B", "B Major": "1B",

    # Minor keys (A ring)
    "C Minor": "5A", "C# Minor": "12A", "D Minor": "7A", "D# Minor": "2A",
    "E Minor": "9A", "F Minor": "4A", "F# Minor": "11A", "G Minor": "6A",
    "G# Minor": "1A", "A Minor": "8A", "A# Minor": "3A", "B Minor": "10A",

    # Common modes at their relative position
    "C Dorian": "6A", "D Dorian": "8A", "E Dorian": "10A", "F Dorian": "11A",
    "G Dorian": "1A", "A Dorian": "3A", "B Dorian": "5A",

    "C Mixolydian": "7B", "D Mixolydian": "9B", "E Mixolydian": "11B",
    "F Mixolydian": "12B", "G Mixolydian": "2B", "A Mixolydian": "4B",
    "B Mixolydian": "6B",
}

# First key name wins for codes shared by a key and a mode ("8A": "A Minor").
_CODE_TO_NAME: Dict[str, str] = {}
for _name, _code in CAMELOT_MAP.items():
    _CODE_TO_NAME.setdefault(_code, _name)


def parse_key(key: str) -> Optional[Tuple[int, str]]:
    """
    Parse a Camelot key string into (number, letter).
    '8A' -> (8, 'A'), '12B' -> (12, 'B')
    Returns None for invalid keys.
    """
    if not key:
        return None
    match = _KEY_PATTERN.match(key.strip())
    if not match:
        return None
    num = int(match.group(1))
    letter = match.group(2).upper()
    if not (1 <= num <= 12):
        return None
    return (num, letter)


def to_camelot(key_name: str) -> Optional[str]:
    """'A Minor' -> '8A'. None for scales that don't map onto the wheel."""
    return CAMELOT_MAP.get(key_name)


def from_camelot(code: str) -> Optional[str]:
    """'8A' -> 'A Minor'. Accepts lowercase and surrounding whitespace."""
    parsed = parse_key(code)
    if not parsed:
        return None
    num, letter = parsed
    return _CODE_TO_NAME.get(f"{num}{letter}")
