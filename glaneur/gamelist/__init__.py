"""
Gamelist package for glaneur.

Handles parsing and writing gamelist.xml files.
"""

from .game_entry import GameEntry
from .xml_writer import GamelistWriter, write_gamelist
from .parser import GamelistParser, read_gamelist

__all__ = [
    'GameEntry',
    'GamelistWriter',
    'GamelistParser',
    'read_gamelist',
    'write_gamelist',
]
