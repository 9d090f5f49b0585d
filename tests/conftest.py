"""
Shared pytest fixtures and utilities for the glaneur test suite.
"""

import hashlib
from pathlib import Path
from typing import Dict, Any, Callable

import pytest
import yaml

from glaneur.scanner.rom_types import ROMInfo


@pytest.fixture
def rom_dir(tmp_path: Path) -> Path:
    """Empty ROM directory inside the temp workspace."""
    path = tmp_path / "roms"
    path.mkdir()
    return path


@pytest.fixture
def make_rom(rom_dir: Path) -> Callable[..., ROMInfo]:
    """
    Write a ROM file and return its descriptor.

    Usage:
        rom = make_rom("mario.bin", b"\\x00" * 100)
    """

    def _builder(name: str, data: bytes = b"rom data") -> ROMInfo:
        path = rom_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return ROMInfo.from_path(path)

    return _builder


@pytest.fixture
def sha1() -> Callable[[bytes], str]:
    return lambda data: hashlib.sha1(data).hexdigest()


@pytest.fixture
def make_config(tmp_path: Path, rom_dir: Path) -> Callable[[Dict[str, Any]], Path]:
    """
    Create a minimal config.yaml in a temp directory.

    Usage:
        path = make_config({"scraping": {"workers": 2}})
    """

    def _builder(overrides: Dict[str, Any] | None = None) -> Path:
        base = {
            "paths": {
                "roms": str(rom_dir),
            },
            "logging": {"console": False},
        }
        if overrides:
            base = merge_dicts(base, overrides)

        cfg_path = tmp_path / "config.yaml"
        cfg_path.write_text(yaml.safe_dump(base))
        return cfg_path

    return _builder


def merge_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Shallow+deep merge helper for fixture config dictionaries.
    """
    result: Dict[str, Any] = dict(base)
    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = merge_dicts(result[key], value)
        else:
            result[key] = value
    return result
