"""
End-to-end scrape runs over a temporary ROM directory.

An offline catalog identifies the ROMs; media URLs are served by respx.
"""

import asyncio
import csv
import hashlib
from io import BytesIO

import httpx
import pytest
import respx
import yaml
from PIL import Image

from glaneur.config.loader import load_config
from glaneur.config.validator import validate_config
from glaneur.gamelist.game_entry import GameEntry
from glaneur.gamelist.parser import read_gamelist
from glaneur.gamelist.xml_writer import write_gamelist
from glaneur.workflow.orchestrator import scrape
from glaneur.workflow.pipeline import RunStatus

MARIO_DATA = bytes(100)
BOX_URL = "https://media.example.org/1/box.png"


def _png() -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (8, 8), (0, 0, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def catalog_file(tmp_path):
    path = tmp_path / "catalog.yaml"
    path.write_text(yaml.safe_dump({
        "games": [{
            "id": "1",
            "title": "Super Mario Bros.",
            "developer": "Nintendo",
            "players": 2,
            "release_date": "1985-09-13",
            "hashes": [hashlib.sha1(MARIO_DATA).hexdigest()],
            "images": {"b": BOX_URL},
        }]
    }))
    return path


@pytest.fixture
def scrape_config(make_config, rom_dir, tmp_path, catalog_file):
    (rom_dir / "mario.bin").write_bytes(MARIO_DATA)
    (rom_dir / "unknown.bin").write_bytes(b"nobody knows this one")

    def _build(**scraping):
        config = load_config(make_config({
            "paths": {
                "catalog": str(catalog_file),
                "missing": str(tmp_path / "missing.csv"),
            },
            "scraping": dict({"workers": 2}, **scraping),
        }))
        validate_config(config)
        return config

    return _build


def _read_csv(path):
    with open(path, newline='', encoding='utf-8') as f:
        return list(csv.reader(f))


@pytest.mark.integration
@pytest.mark.asyncio
async def test_full_scrape_writes_gamelist_media_and_report(scrape_config, rom_dir, tmp_path):
    config = scrape_config()

    async with respx.mock:
        route = respx.get(BOX_URL).mock(return_value=httpx.Response(200, content=_png()))
        summary = await scrape(config)

    assert route.call_count == 1
    assert summary.status is RunStatus.COMPLETED
    assert summary.total_roms == 2
    assert summary.succeeded == 1
    assert summary.not_found == 1
    assert summary.failed == 0
    assert summary.gamelist_entries == 1

    entries = read_gamelist(rom_dir / "gamelist.xml")
    assert len(entries) == 1
    entry = entries[0]
    assert entry.path == "./mario.bin"
    assert entry.name == "Super Mario Bros."
    assert entry.developer == "Nintendo"
    assert entry.players == "2"
    assert entry.releasedate == "19850913T000000"
    assert entry.image == "./images/mario-image.png"
    assert (rom_dir / "images" / "mario-image.png").exists()

    rows = _read_csv(tmp_path / "missing.csv")
    assert rows[0] == ["Game", "Error", "Hash", "Extra"]
    assert len(rows) == 2
    assert rows[1][0] == str(rom_dir / "unknown.bin")
    assert rows[1][2] == hashlib.sha1(b"nobody knows this one").hexdigest()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_scrape_without_media_download(scrape_config, rom_dir, make_config):
    config = scrape_config()
    config['media']['download'] = False

    summary = await scrape(config)

    assert summary.succeeded == 1
    entry = read_gamelist(rom_dir / "gamelist.xml")[0]
    assert entry.image is None
    assert not (rom_dir / "images").exists()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_add_not_found_keeps_unknown_roms(scrape_config, rom_dir):
    config = scrape_config(add_not_found=True)
    config['media']['download'] = False

    summary = await scrape(config)

    paths = sorted(e.path for e in read_gamelist(rom_dir / "gamelist.xml"))
    assert paths == ["./mario.bin", "./unknown.bin"]
    assert summary.gamelist_entries == 2


@pytest.mark.integration
@pytest.mark.asyncio
async def test_new_only_skips_roms_already_in_gamelist(scrape_config, rom_dir):
    write_gamelist([GameEntry(path="./mario.bin", name="My Mario", favorite=True)],
                   rom_dir / "gamelist.xml")
    config = scrape_config()
    config['media']['download'] = False

    summary = await scrape(config)

    assert summary.total_roms == 1
    entries = read_gamelist(rom_dir / "gamelist.xml")
    assert [e.name for e in entries] == ["My Mario"]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_refresh_rescrapes_and_keeps_favorite(scrape_config, rom_dir):
    write_gamelist([GameEntry(path="./mario.bin", name="My Mario", favorite=True, playcount=3)],
                   rom_dir / "gamelist.xml")
    config = scrape_config(mode="refresh")
    config['media']['download'] = False

    summary = await scrape(config)

    assert summary.total_roms == 2
    entries = read_gamelist(rom_dir / "gamelist.xml")
    assert len(entries) == 1
    assert entries[0].name == "Super Mario Bros."
    assert entries[0].favorite is True
    assert entries[0].playcount == 3


@pytest.mark.integration
@pytest.mark.asyncio
async def test_cancelled_run_still_writes_outputs(scrape_config, rom_dir, tmp_path):
    write_gamelist([GameEntry(path="./old.bin", name="Old Game")], rom_dir / "gamelist.xml")
    config = scrape_config()
    event = asyncio.Event()
    event.set()

    summary = await scrape(config, event)

    assert summary.cancelled
    assert summary.succeeded == 0
    assert [e.path for e in read_gamelist(rom_dir / "gamelist.xml")] == ["./old.bin"]
    assert _read_csv(tmp_path / "missing.csv") == [["Game", "Error", "Hash", "Extra"]]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_empty_result_does_not_create_gamelist(make_config, rom_dir):
    (rom_dir / "unknown.bin").write_bytes(b"x")
    config = load_config(make_config({"media": {"download": False}}))

    summary = await scrape(config)

    assert summary.not_found == 1
    assert summary.gamelist_path is None
    assert not (rom_dir / "gamelist.xml").exists()
