"""
XML writer for gamelist.xml files.
"""

from copy import deepcopy
from pathlib import Path
from typing import List

from lxml import etree

from .game_entry import GameEntry


class GamelistWriter:
    """
    Writes gamelist.xml files.

    Features:
    - One <game> element per entry, id/source as attributes
    - HTML entity handling (lxml auto-escapes)
    - Pretty-printed UTF-8 output, written atomically
    """

    def write_gamelist(
        self,
        game_entries: List[GameEntry],
        output_path: Path
    ) -> None:
        """
        Write gamelist.xml file.

        Args:
            game_entries: List of GameEntry objects
            output_path: Path to output gamelist.xml file
        """
        root = etree.Element("gameList")
        for entry in game_entries:
            root.append(self._create_game_element(entry))

        tree = etree.ElementTree(root)
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        temp_path = output_path.with_suffix(output_path.suffix + '.tmp')
        tree.write(
            str(temp_path),
            encoding='utf-8',
            xml_declaration=True,
            pretty_print=True
        )
        temp_path.replace(output_path)

    def _create_game_element(self, entry: GameEntry) -> etree._Element:
        """
        Create game element from GameEntry.

        Args:
            entry: GameEntry object

        Returns:
            <game> element with all metadata
        """
        game = etree.Element("game")

        if entry.game_id:
            game.set("id", entry.game_id)
        if entry.source:
            game.set("source", entry.source)

        self._add_element(game, "path", entry.path)
        self._add_element(game, "name", entry.name)

        if entry.desc:
            self._add_element(game, "desc", entry.desc)

        if entry.image:
            self._add_element(game, "image", entry.image)

        if entry.thumbnail:
            self._add_element(game, "thumbnail", entry.thumbnail)

        if entry.video:
            self._add_element(game, "video", entry.video)

        if entry.rating is not None:
            # 0.9 instead of 0.900000
            rating_str = f"{entry.rating:.6f}".rstrip('0').rstrip('.')
            self._add_element(game, "rating", rating_str)

        if entry.releasedate:
            self._add_element(game, "releasedate", entry.releasedate)

        if entry.developer:
            self._add_element(game, "developer", entry.developer)

        if entry.publisher:
            self._add_element(game, "publisher", entry.publisher)

        if entry.genre:
            self._add_element(game, "genre", entry.genre)

        if entry.players:
            self._add_element(game, "players", entry.players)

        if entry.cloneof:
            self._add_element(game, "cloneof", entry.cloneof)

        if entry.favorite:
            self._add_element(game, "favorite", "true")

        if entry.playcount is not None:
            self._add_element(game, "playcount", str(entry.playcount))

        if entry.lastplayed:
            self._add_element(game, "lastplayed", entry.lastplayed)

        if entry.hidden:
            self._add_element(game, "hidden", "true")

        for tag, value in sorted(entry.extra_fields.items(), key=lambda item: item[0]):
            if isinstance(value, etree._Element):
                game.append(deepcopy(value))
            elif value is not None:
                self._add_element(game, tag, str(value))

        return game

    def _add_element(self, parent: etree._Element, tag: str, text: str) -> None:
        elem = etree.SubElement(parent, tag)
        elem.text = text


def write_gamelist(entries: List[GameEntry], path: Path) -> None:
    """Write ``entries`` to ``path`` as gamelist.xml."""
    GamelistWriter().write_gamelist(entries, path)
