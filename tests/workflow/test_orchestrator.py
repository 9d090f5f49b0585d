import pytest

from glaneur.api.error_handler import SourceError
from glaneur.api.sources import Catalog, FilenameSource, HashSource
from glaneur.config.loader import apply_defaults
from glaneur.gamelist.game_entry import GameEntry
from glaneur.scanner.hasher import Hasher
from glaneur.scanner.rom_scanner import ScannerError
from glaneur.workflow.orchestrator import (
    ScrapeSummary,
    _existing_paths,
    build_sources,
    resolve_paths,
    scrape,
)
from glaneur.workflow.pipeline import RunStatus


@pytest.mark.unit
def test_resolve_paths_defaults_under_rom_dir(rom_dir):
    paths = resolve_paths(apply_defaults({"paths": {"roms": str(rom_dir)}}))
    assert paths['roms'] == rom_dir
    assert paths['gamelist'] == rom_dir / "gamelist.xml"
    assert paths['media'] == rom_dir / "images"
    assert paths['missing'] is None
    assert paths['catalog'] is None


@pytest.mark.unit
def test_resolve_paths_explicit_values(rom_dir, tmp_path):
    config = apply_defaults({"paths": {
        "roms": str(rom_dir),
        "gamelist": str(tmp_path / "out" / "gamelist.xml"),
        "missing": str(tmp_path / "missing.csv"),
    }})
    paths = resolve_paths(config)
    assert paths['gamelist'] == tmp_path / "out" / "gamelist.xml"
    assert paths['missing'] == tmp_path / "missing.csv"


@pytest.mark.unit
def test_build_sources_keeps_priority_order():
    sources = build_sources(["filename", "hash"], Hasher(), Catalog())
    assert [type(s) for s in sources] == [FilenameSource, HashSource]


@pytest.mark.unit
def test_build_sources_rejects_unknown_name():
    with pytest.raises(ValueError):
        build_sources(["screenscraper"], Hasher(), Catalog())


@pytest.mark.unit
def test_existing_paths_are_absolute(rom_dir):
    entries = [GameEntry(path="./a.nes", name="A"), GameEntry(path="./sub/b.nes", name="B"),
               GameEntry(path="", name="broken")]
    assert _existing_paths(entries, rom_dir) == {rom_dir / "a.nes", rom_dir / "sub" / "b.nes"}


@pytest.mark.unit
def test_summary_cancelled_flag():
    assert ScrapeSummary(status=RunStatus.CANCELLED).cancelled
    assert not ScrapeSummary(status=RunStatus.COMPLETED).cancelled


@pytest.mark.unit
@pytest.mark.asyncio
async def test_scrape_missing_catalog_raises(rom_dir, tmp_path):
    config = apply_defaults({"paths": {"roms": str(rom_dir), "catalog": str(tmp_path / "nope.yaml")}})
    with pytest.raises(SourceError):
        await scrape(config)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_scrape_missing_rom_dir_raises(tmp_path):
    config = apply_defaults({"paths": {"roms": str(tmp_path / "absent")}})
    with pytest.raises(ScannerError):
        await scrape(config)
