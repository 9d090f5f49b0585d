import pytest

from glaneur.config.loader import apply_defaults
from glaneur.config.validator import ValidationError, validate_config


def _config(rom_dir, **sections) -> dict:
    raw = {"paths": {"roms": str(rom_dir)}}
    for name, values in sections.items():
        raw.setdefault(name, {}).update(values)
    return apply_defaults(raw)


def _errors(config) -> str:
    with pytest.raises(ValidationError) as excinfo:
        validate_config(config)
    return str(excinfo.value)


@pytest.mark.unit
def test_defaults_are_valid(rom_dir):
    validate_config(_config(rom_dir))


@pytest.mark.unit
def test_rom_dir_is_required():
    assert "paths.roms is required" in _errors(apply_defaults({}))


@pytest.mark.unit
def test_rom_dir_must_exist(tmp_path):
    config = apply_defaults({"paths": {"roms": str(tmp_path / "absent")}})
    assert "directory not found" in _errors(config)


@pytest.mark.unit
def test_rom_dir_must_be_a_directory(tmp_path):
    path = tmp_path / "file.txt"
    path.write_text("x")
    config = apply_defaults({"paths": {"roms": str(path)}})
    assert "must be a directory" in _errors(config)


@pytest.mark.unit
def test_catalog_and_hash_map_must_exist(rom_dir, tmp_path):
    config = _config(rom_dir, paths={"catalog": str(tmp_path / "c.yaml"),
                                     "hash_map": str(tmp_path / "h.csv")})
    message = _errors(config)
    assert "paths.catalog file not found" in message
    assert "paths.hash_map file not found" in message


@pytest.mark.unit
@pytest.mark.parametrize("key,value,expected", [
    ("workers", 0, "scraping.workers"),
    ("workers", True, "scraping.workers"),
    ("workers", "4", "scraping.workers"),
    ("max_retries", -1, "scraping.max_retries"),
    ("image_workers", -2, "scraping.image_workers"),
    ("mode", "always", "scraping.mode"),
    ("add_not_found", "yes", "scraping.add_not_found"),
    ("overview_length", -5, "scraping.overview_length"),
    ("sources", "hash", "scraping.sources must be a list"),
    ("sources", ["hash", "screenscraper"], "Invalid source: screenscraper"),
    ("sources", ["hash", "hash"], "duplicates"),
    ("provider_threads", 0, "scraping.provider_threads"),
    ("provider_maxthreads", 1.5, "scraping.provider_maxthreads"),
])
def test_invalid_scraping_values(rom_dir, key, value, expected):
    assert expected in _errors(_config(rom_dir, scraping={key: value}))


@pytest.mark.unit
def test_provider_limits_accept_positive_ints(rom_dir):
    validate_config(_config(rom_dir, scraping={"provider_maxthreads": 4, "provider_threads": 2}))


@pytest.mark.unit
def test_empty_source_list_is_valid(rom_dir):
    validate_config(_config(rom_dir, scraping={"sources": []}))


@pytest.mark.unit
@pytest.mark.parametrize("key,value,expected", [
    ("algorithm", "sha256", "hashing.algorithm"),
    ("cache_size", 0, "hashing.cache_size"),
    ("buffer_size", -1, "hashing.buffer_size"),
    ("extra_extensions", ".iso", "hashing.extra_extensions must be a list"),
    ("extra_extensions", ["."], "non-empty"),
    ("magic_policy", "paranoid", "hashing.magic_policy"),
])
def test_invalid_hashing_values(rom_dir, key, value, expected):
    assert expected in _errors(_config(rom_dir, hashing={key: value}))


@pytest.mark.unit
@pytest.mark.parametrize("algorithm", ["sha1", "md5", "crc32"])
def test_supported_algorithms_are_valid(rom_dir, algorithm):
    validate_config(_config(rom_dir, hashing={"algorithm": algorithm}))


@pytest.mark.unit
@pytest.mark.parametrize("key,value,expected", [
    ("download", "no", "media.download"),
    ("image_types", "b", "media.image_types must be a list"),
    ("image_types", ["b", "poster"], "Invalid image type: poster"),
    ("video_types", ["vx"], "Invalid video type: vx"),
    ("image_suffix", 3, "media.image_suffix"),
    ("request_timeout", 0, "media.request_timeout"),
    ("request_timeout", False, "media.request_timeout"),
])
def test_invalid_media_values(rom_dir, key, value, expected):
    assert expected in _errors(_config(rom_dir, media={key: value}))


@pytest.mark.unit
def test_empty_image_types_are_valid(rom_dir):
    validate_config(_config(rom_dir, media={"image_types": []}))


@pytest.mark.unit
@pytest.mark.parametrize("key,value,expected", [
    ("level", "TRACE", "logging.level"),
    ("console", "true", "logging.console"),
    ("file", 42, "logging.file"),
])
def test_invalid_logging_values(rom_dir, key, value, expected):
    assert expected in _errors(_config(rom_dir, logging={key: value}))


@pytest.mark.unit
def test_all_errors_are_reported_together(rom_dir):
    config = _config(rom_dir, scraping={"workers": 0, "mode": "x"}, logging={"level": "LOUD"})
    message = _errors(config)
    assert message.startswith("Configuration validation failed:")
    assert message.count("\n  - ") == 3
