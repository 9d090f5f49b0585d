"""
Container decoding for the hasher.

Each opener picks the first entry, in the container's own enumeration
order, whose extension has a registered decoder and returns the decoded
stream of that entry. Entries that fail to open or decode are skipped.
"""

import gzip
import io
import logging
import shutil
import struct
import tempfile
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import BinaryIO

import py7zr
from py7zr.exceptions import ArchiveError

from glaneur.scanner.streams import StreamReader
from glaneur.scanner.errors import (
    HashError,
    InvalidFormatError,
    NotReadableError,
    NoValidRomFoundError,
)

logger = logging.getLogger(__name__)

# gzip header flag bits (RFC 1952)
_FEXTRA = 0x04
_FNAME = 0x08

# Raised by the stdlib and py7zr when container data is damaged
CORRUPT_DATA_ERRORS = (
    zipfile.BadZipFile, gzip.BadGzipFile, zlib.error, EOFError, ArchiveError,
)


def _entry_extension(name: str) -> str:
    return PurePosixPath(name.replace('\\', '/')).suffix.lower()


def open_zip(path: Path, registry) -> StreamReader:
    """Decode the first usable entry of a zip archive."""
    try:
        archive = zipfile.ZipFile(path)
    except OSError as e:
        raise NotReadableError(f"cannot open {path}: {e}") from e
    except zipfile.BadZipFile as e:
        raise InvalidFormatError(f"{path}: {e}") from e

    for info in archive.infolist():
        if info.is_dir():
            continue
        decoder, known = registry.get_decoder(_entry_extension(info.filename))
        if not known:
            continue
        member = None
        try:
            member = archive.open(info)
            stream = decoder(member, info.file_size)
        except (HashError, OSError, RuntimeError) + CORRUPT_DATA_ERRORS as e:
            logger.debug(f"Skipping {info.filename} in {path.name}: {e}")
            if member is not None:
                member.close()
            continue
        return StreamReader(stream, archive.close)

    archive.close()
    raise NoValidRomFoundError(f"no valid roms found in {path}")


def open_7z(path: Path, registry) -> StreamReader:
    """
    Decode the first usable entry of a 7z archive.

    The chosen entry is extracted into a temporary directory that is removed
    when the returned stream is closed.
    """
    try:
        with py7zr.SevenZipFile(path, mode='r') as archive:
            entries = [e for e in archive.list() if not e.is_directory]
    except OSError as e:
        raise NotReadableError(f"cannot open {path}: {e}") from e
    except ArchiveError as e:
        raise InvalidFormatError(f"{path}: {e}") from e

    for entry in entries:
        decoder, known = registry.get_decoder(_entry_extension(entry.filename))
        if not known:
            continue
        workdir = tempfile.mkdtemp(prefix='glaneur-7z-')
        member = None
        try:
            with py7zr.SevenZipFile(path, mode='r') as archive:
                archive.extract(path=workdir, targets=[entry.filename])
            member = open(Path(workdir) / entry.filename, 'rb')
            stream = decoder(member, entry.uncompressed)
        except (HashError, OSError) + CORRUPT_DATA_ERRORS as e:
            logger.debug(f"Skipping {entry.filename} in {path.name}: {e}")
            if member is not None:
                member.close()
            shutil.rmtree(workdir, ignore_errors=True)
            continue
        return StreamReader(
            stream, lambda d=workdir: shutil.rmtree(d, ignore_errors=True)
        )

    raise NoValidRomFoundError(f"no valid roms found in {path}")


def gzip_original_name(header: bytes) -> str:
    """
    Return the FNAME field of a gzip member header, or '' when absent.

    Args:
        header: Leading bytes of the gzip file
    """
    if len(header) < 10 or header[:2] != b'\x1f\x8b':
        return ''
    flags = header[3]
    if not flags & _FNAME:
        return ''
    pos = 10
    if flags & _FEXTRA:
        if len(header) < pos + 2:
            return ''
        (extra_len,) = struct.unpack('<H', header[pos:pos + 2])
        pos += 2 + extra_len
    end = header.find(b'\x00', pos)
    if end < 0:
        return ''
    return header[pos:end].decode('latin-1')


def open_gzip(path: Path, registry) -> BinaryIO:
    """
    Decode a gzip-wrapped ROM.

    The inner format comes from the original filename stored in the gzip
    header, falling back to the archive name without ``.gz``.
    """
    try:
        with open(path, 'rb') as f:
            header = f.read(64 * 1024)
            f.seek(0)
            with gzip.GzipFile(fileobj=f) as gz:
                data = gz.read()
    except (FileNotFoundError, PermissionError) as e:
        raise NotReadableError(f"cannot open {path}: {e}") from e
    except CORRUPT_DATA_ERRORS as e:
        raise InvalidFormatError(f"{path}: {e}") from e
    except OSError as e:
        raise HashError(f"error reading {path}: {e}") from e

    inner_name = gzip_original_name(header) or path.stem
    decoder, known = registry.get_decoder(_entry_extension(inner_name))
    if not known:
        raise NoValidRomFoundError(f"no valid roms found in {path}")
    return decoder(io.BytesIO(data), len(data))
