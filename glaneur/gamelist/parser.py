"""
Gamelist XML parser.

Parses existing gamelist.xml files so re-runs can skip or refresh entries
while preserving user edits.
"""

import logging
from copy import deepcopy
from pathlib import Path
from typing import List, Optional

from lxml import etree

from .game_entry import GameEntry

logger = logging.getLogger(__name__)

KNOWN_FIELDS = {
    "path", "name", "desc", "rating", "releasedate", "developer",
    "publisher", "genre", "players", "cloneof", "image", "thumbnail",
    "video", "favorite", "playcount", "lastplayed", "hidden",
}


class GamelistParser:
    """
    Parses gamelist.xml files.

    Extracts game entries while preserving user-editable fields.
    """

    def parse_gamelist(self, gamelist_path: Path) -> List[GameEntry]:
        """
        Parse gamelist.xml file.

        Args:
            gamelist_path: Path to gamelist.xml file

        Returns:
            List of GameEntry objects

        Raises:
            FileNotFoundError: If gamelist file doesn't exist
            etree.XMLSyntaxError: If XML is malformed
        """
        if not gamelist_path.exists():
            raise FileNotFoundError(f"Gamelist not found: {gamelist_path}")

        tree = etree.parse(str(gamelist_path))
        root = tree.getroot()

        entries = []
        for game_elem in root.findall("game"):
            entry = self._parse_game_element(game_elem)
            if entry:
                entries.append(entry)

        return entries

    def _parse_game_element(self, game_elem: etree._Element) -> Optional[GameEntry]:
        path = self._get_text(game_elem, "path")
        if not path:
            return None

        return GameEntry(
            path=path,
            name=self._get_text(game_elem, "name") or Path(path).stem,
            game_id=game_elem.get("id"),
            source=game_elem.get("source"),
            desc=self._get_text(game_elem, "desc"),
            rating=self._get_float(game_elem, "rating"),
            releasedate=self._get_text(game_elem, "releasedate"),
            developer=self._get_text(game_elem, "developer"),
            publisher=self._get_text(game_elem, "publisher"),
            genre=self._get_text(game_elem, "genre"),
            players=self._get_text(game_elem, "players"),
            cloneof=self._get_text(game_elem, "cloneof"),
            image=self._get_text(game_elem, "image"),
            thumbnail=self._get_text(game_elem, "thumbnail"),
            video=self._get_text(game_elem, "video"),
            favorite=self._get_bool(game_elem, "favorite"),
            playcount=self._get_int(game_elem, "playcount"),
            lastplayed=self._get_text(game_elem, "lastplayed"),
            hidden=self._get_bool(game_elem, "hidden"),
            extra_fields=self._get_extra_fields(game_elem),
        )

    def _get_text(self, element: etree._Element, tag: str) -> Optional[str]:
        child = element.find(tag)
        return child.text if child is not None and child.text else None

    def _get_float(self, element: etree._Element, tag: str) -> Optional[float]:
        text = self._get_text(element, tag)
        if text:
            try:
                return float(text)
            except ValueError:
                return None
        return None

    def _get_int(self, element: etree._Element, tag: str) -> Optional[int]:
        text = self._get_text(element, tag)
        if text:
            try:
                return int(text)
            except ValueError:
                return None
        return None

    def _get_bool(self, element: etree._Element, tag: str) -> bool:
        text = self._get_text(element, tag)
        return bool(text) and text.lower() == "true"

    def _get_extra_fields(self, element: etree._Element) -> dict:
        """Extract XML fields glaneur does not manage."""
        extra = {}
        for child in element:
            if not isinstance(child.tag, str) or child.tag in KNOWN_FIELDS:
                continue
            if len(child) > 0 or child.attrib or not child.text:
                extra[child.tag] = deepcopy(child)
            else:
                extra[child.tag] = child.text
        return extra


def read_gamelist(path: Path) -> List[GameEntry]:
    """
    Read an existing gamelist, tolerating a missing or corrupt file.

    Returns:
        Parsed entries, or an empty list when the file is missing or unreadable
    """
    path = Path(path)
    if not path.exists():
        logger.info(f"No existing gamelist at {path}")
        return []
    try:
        return GamelistParser().parse_gamelist(path)
    except (etree.XMLSyntaxError, OSError) as e:
        logger.warning(f"Ignoring unreadable gamelist {path}: {e}")
        return []
