"""
Game data structures for gamelist generation.

Defines the record written for each ROM into gamelist.xml.
"""

import html
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from glaneur.api.sources import Game
from glaneur.scanner.rom_types import ROMInfo


@dataclass
class GameEntry:
    """
    Represents a game entry for gamelist.xml.

    All text fields are stored as decoded UTF-8 (HTML entities already decoded).
    lxml will handle XML escaping when writing.
    """
    # Required fields
    path: str  # Relative path to ROM (e.g., "./Game.zip")
    name: str  # Game name

    # Provenance (written as <game> attributes)
    game_id: Optional[str] = None
    source: Optional[str] = None

    # Optional metadata fields
    desc: Optional[str] = None
    rating: Optional[float] = None  # 0.0-1.0
    releasedate: Optional[str] = None  # YYYYMMDDTHHMMSS format
    developer: Optional[str] = None
    publisher: Optional[str] = None
    genre: Optional[str] = None
    players: Optional[str] = None
    cloneof: Optional[str] = None

    # Media paths (relative to gamelist directory)
    image: Optional[str] = None
    thumbnail: Optional[str] = None
    video: Optional[str] = None

    # User-editable fields (preserved on refresh)
    favorite: bool = False
    playcount: Optional[int] = None
    lastplayed: Optional[str] = None
    hidden: bool = False

    # Unknown XML fields (sortname, kidgame, ...) kept as-is
    extra_fields: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Decode HTML entities in text fields."""
        if self.name:
            self.name = html.unescape(self.name)
        if self.desc:
            self.desc = html.unescape(self.desc)
        if self.developer:
            self.developer = html.unescape(self.developer)
        if self.publisher:
            self.publisher = html.unescape(self.publisher)
        if self.genre:
            self.genre = html.unescape(self.genre)

    @classmethod
    def from_game(
        cls,
        rom: ROMInfo,
        game: Game,
        rom_dir: Path,
        media_paths: Optional[Dict[str, str]] = None,
        pretty_name: str = "",
        use_pretty_name: bool = True,
        use_filename: bool = False,
        overview_length: int = 0
    ) -> 'GameEntry':
        """
        Create GameEntry from a Game record.

        Args:
            rom: ROM the game was found for
            game: Game record from a lookup source
            rom_dir: ROM root the <path> is relative to
            media_paths: Gamelist paths keyed by 'image', 'thumbnail', 'video'
            pretty_name: Display name supplied by any source
            use_pretty_name: Prefer ``pretty_name`` over the game title
            use_filename: Use the ROM filename (without extension) as name
            overview_length: Truncate the description to this many characters (0 = no limit)

        Returns:
            GameEntry instance
        """
        if use_filename:
            name = rom.basename
        elif use_pretty_name and pretty_name:
            name = pretty_name
        else:
            name = game.title or rom.basename

        desc = game.overview or None
        if desc and overview_length > 0 and len(desc) > overview_length:
            desc = desc[:overview_length].rstrip() + "..."

        media_paths = media_paths or {}

        return cls(
            path=rom.get_gamelist_path(rom_dir),
            name=name,
            game_id=game.id or None,
            source=game.source or None,
            desc=desc,
            rating=game.rating if game.rating else None,
            releasedate=game.release_date or None,
            developer=game.developer or None,
            publisher=game.publisher or None,
            genre=game.genre or None,
            players=str(game.players) if game.players else None,
            cloneof=game.clone_of or None,
            image=media_paths.get('image'),
            thumbnail=media_paths.get('thumbnail'),
            video=media_paths.get('video'),
        )

    @classmethod
    def not_found(cls, rom: ROMInfo, rom_dir: Path) -> 'GameEntry':
        """Bare entry for a ROM no source knows; named after the file."""
        return cls(path=rom.get_gamelist_path(rom_dir), name=rom.basename)
