"""
ROM format decoders.

Maps a file extension to a decoder that turns a raw byte stream into the
canonical bytes that should be hashed: copier headers and trainers are
stripped, interleaved dumps are de-interleaved and byte-swapped N64 images
are normalised. Containers (.zip, .7z, .gz) are opened and their first
decodable entry is used.
"""

import io
import logging
import os
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Optional, Set, Tuple

from glaneur.scanner import archives
from glaneur.scanner.errors import HashError, InvalidFormatError, NotReadableError
from glaneur.scanner.streams import LimitedReader, PrefixedReader, SwapReader, read_full

logger = logging.getLogger(__name__)

Decoder = Callable[[BinaryIO, int], BinaryIO]

MD_BLOCK_SIZE = 16384
COPIER_HEADER_SIZE = 512

CONTAINER_EXTENSIONS = ('.zip', '.7z', '.gz')

PASSTHROUGH_EXTENSIONS = (
    '.bin', '.a26', '.a52', '.rom', '.cue', '.gdi', '.gb', '.gba', '.gbc',
    '.32x', '.gg', '.pce', '.sms', '.col', '.ngp', '.ngc', '.sg', '.int',
    '.vb', '.vec', '.gam', '.j64', '.jag', '.mgw', '.nds', '.fds',
)


class MagicPolicy(Enum):
    """What a header decoder does when its magic number is missing."""
    LENIENT = "lenient"  # fall back to the default layout
    STRICT = "strict"    # raise InvalidFormatError


def normalize_extension(ext: str) -> str:
    """Lower-case an extension and make sure it starts with a dot."""
    ext = ext.strip().lower()
    if ext and not ext.startswith('.'):
        ext = '.' + ext
    return ext


def deinterleave(block: bytes) -> bytes:
    """
    Undo the two-plane interleaving of SMD/MGD dumps.

    The first half of the block holds the odd bytes and the second half the
    even bytes of the original data. It is not its own inverse; apply
    :func:`interleave` to undo it.
    """
    half = len(block) // 2
    out = bytearray(len(block))
    out[1::2] = block[:half]
    out[0::2] = block[half:]
    return bytes(out)


def interleave(block: bytes) -> bytes:
    """Inverse of :func:`deinterleave`."""
    return bytes(block[1::2]) + bytes(block[0::2])


def swap_pairs(data: bytes) -> bytes:
    """Swap the two bytes of every 16-bit word (.z64 -> .v64 order)."""
    out = bytearray(data)
    out[0::2] = data[1::2]
    out[1::2] = data[0::2]
    return bytes(out)


def swap_halves(data: bytes) -> bytes:
    """Swap the 16-bit halves of every 32-bit word (.n64 -> .v64 order)."""
    out = bytearray(data)
    out[0::4] = data[2::4]
    out[1::4] = data[3::4]
    out[2::4] = data[0::4]
    out[3::4] = data[1::4]
    return bytes(out)


def noop(stream: BinaryIO, size: int) -> BinaryIO:
    """Hash the stream unchanged."""
    return stream


def decode_a78(stream: BinaryIO, size: int) -> BinaryIO:
    header = read_full(stream, 128)
    if len(header) < 128 or header[1:10] != b'ATARI7800':
        return PrefixedReader(header, stream)
    return stream


def make_lnx_decoder(policy: MagicPolicy) -> Decoder:
    """Build an Atari Lynx decoder that handles a missing header per ``policy``."""

    def decode_lnx(stream: BinaryIO, size: int) -> BinaryIO:
        if size < 4:
            raise InvalidFormatError("invalid ROM: Lynx image shorter than its magic")
        header = read_full(stream, 64)
        if len(header) == 64 and header[:4] == b'LYNX':
            return stream
        if policy is MagicPolicy.STRICT:
            raise InvalidFormatError("lnx file missing magic LYNX header, maybe it is a lyx")
        return PrefixedReader(header, stream)

    return decode_lnx


def _decode_md(stream: BinaryIO, size: int, layout: str, policy: MagicPolicy) -> BinaryIO:
    if size % MD_BLOCK_SIZE == COPIER_HEADER_SIZE:
        if len(read_full(stream, COPIER_HEADER_SIZE)) < COPIER_HEADER_SIZE:
            raise InvalidFormatError("truncated MD copier header")
        size -= COPIER_HEADER_SIZE
    if size % MD_BLOCK_SIZE != 0:
        raise InvalidFormatError(f"invalid MD size: {size}")
    data = bytearray(stream.read())
    stream.close()

    if data[256:260] == b'SEGA':
        return io.BytesIO(bytes(data))
    if data[8320:8328] in (b'SG EEI  ', b'SG EADIE'):
        return io.BytesIO(_deinterleave_blocks(data, size))
    if data[128:135] in (b'EAGNSS ', b'EAMG RV'):
        return io.BytesIO(deinterleave(bytes(data)))

    # No signature matched; fall back to the layout implied by the extension
    if policy is MagicPolicy.STRICT:
        raise InvalidFormatError("MD image has no recognised SEGA signature")
    if layout == 'block':
        return io.BytesIO(_deinterleave_blocks(data, size))
    if layout == 'whole':
        return io.BytesIO(deinterleave(bytes(data)))
    return io.BytesIO(bytes(data))


def _deinterleave_blocks(data: bytearray, size: int) -> bytes:
    for i in range(size // MD_BLOCK_SIZE):
        start = i * MD_BLOCK_SIZE
        end = start + MD_BLOCK_SIZE
        data[start:end] = deinterleave(bytes(data[start:end]))
    return bytes(data)


def make_md_decoder(layout: str, policy: MagicPolicy = MagicPolicy.LENIENT) -> Decoder:
    """
    Build a Mega Drive decoder.

    Args:
        layout: Fallback layout when no signature is found: ``'block'``
            (16 KiB interleaved blocks, .smd), ``'whole'`` (whole image
            interleaved, .mgd) or ``'raw'`` (.gen/.md)
        policy: STRICT rejects images without any signature instead of
            falling back to ``layout``
    """

    def decode_md(stream: BinaryIO, size: int) -> BinaryIO:
        return _decode_md(stream, size, layout, policy)

    return decode_md


def decode_n64(stream: BinaryIO, size: int) -> BinaryIO:
    if size < 4:
        raise InvalidFormatError("invalid ROM: N64 image shorter than one word")
    head = read_full(stream, 4)
    if len(head) < 4:
        raise InvalidFormatError("invalid ROM: truncated N64 header")
    if head[0] == 0x80:
        swap = swap_pairs
    elif head[3] == 0x80:
        swap = swap_halves
    else:
        swap = bytes
    return SwapReader(stream, swap, head)


def decode_nes(stream: BinaryIO, size: int) -> BinaryIO:
    header = read_full(stream, 16)
    if len(header) < 16:
        raise InvalidFormatError("invalid header")
    prg_units = header[4]
    chr_units = header[5]
    if header[7] & 12 == 8:
        # NES 2.0 stores the high bits of both sizes in byte 9
        rom_size = header[9]
        chr_units = ((rom_size & 0x0F) << 8) + chr_units
        prg_units = ((rom_size & 0xF0) << 4) + prg_units
    if header[6] & 4 == 4:
        if len(read_full(stream, 512)) < 512:
            raise InvalidFormatError("truncated NES trainer")
    return LimitedReader(stream, 16 * 1024 * prg_units + 8 * 1024 * chr_units)


def decode_snes(stream: BinaryIO, size: int) -> BinaryIO:
    if size % 1024 == COPIER_HEADER_SIZE:
        if len(read_full(stream, COPIER_HEADER_SIZE)) < COPIER_HEADER_SIZE:
            raise InvalidFormatError("truncated SNES copier header")
    return stream


class DecoderRegistry:
    """
    Extension to decoder mapping.

    Decoders are ``fn(stream, declared_size) -> stream`` callables. Extensions
    on the extra allow list decode as a passthrough. Container extensions are
    always known and are handled by :mod:`glaneur.scanner.archives`.

    Example:
        registry = default_registry()
        registry.add_extra('.iso')
        with registry.decode('/roms/game.smd') as stream:
            data = stream.read()
    """

    def __init__(self):
        self._decoders: Dict[str, Decoder] = {}
        self._extra: Set[str] = set()

    def register(self, extension: str, decoder: Decoder) -> None:
        self._decoders[normalize_extension(extension)] = decoder

    def add_extra(self, *extensions: str) -> None:
        for ext in extensions:
            self._extra.add(normalize_extension(ext))

    def remove_extra(self, *extensions: str) -> None:
        for ext in extensions:
            self._extra.discard(normalize_extension(ext))

    def has_extra(self, extension: str) -> bool:
        return normalize_extension(extension) in self._extra

    def clear_extra(self) -> None:
        self._extra = set()

    def get_decoder(self, extension: str) -> Tuple[Decoder, bool]:
        """
        Look up the decoder for an extension.

        Returns:
            Tuple of (decoder, known). Unknown extensions get the passthrough
            decoder with ``known`` False.
        """
        ext = normalize_extension(extension)
        decoder = self._decoders.get(ext)
        if decoder is not None:
            return decoder, True
        return noop, ext in self._extra

    def is_known_extension(self, extension: str) -> bool:
        ext = normalize_extension(extension)
        if ext in CONTAINER_EXTENSIONS:
            return True
        return self.get_decoder(ext)[1]

    def decode(self, path) -> BinaryIO:
        """
        Open ``path`` and return a stream over its canonical bytes.

        Raises:
            NotReadableError: If the file cannot be opened or stat'd
            InvalidFormatError: If the decoder rejects the contents
            NoValidRomFoundError: If a container has no decodable entry
        """
        path = Path(path)
        ext = path.suffix.lower()
        if ext == '.zip':
            return archives.open_zip(path, self)
        if ext == '.7z':
            return archives.open_7z(path, self)
        if ext == '.gz':
            return archives.open_gzip(path, self)

        decoder, _ = self.get_decoder(ext)
        try:
            stream = open(path, 'rb')
        except OSError as e:
            raise NotReadableError(f"cannot open {path}: {e}") from e
        try:
            size = os.fstat(stream.fileno()).st_size
            return decoder(stream, size)
        except OSError as e:
            stream.close()
            raise HashError(f"error reading {path}: {e}") from e
        except Exception:
            stream.close()
            raise


def default_registry(magic_policy: MagicPolicy = MagicPolicy.LENIENT,
                     extra_extensions: Optional[list] = None) -> DecoderRegistry:
    """
    Build a registry with every built-in ROM format.

    Args:
        magic_policy: How .lnx and Mega Drive images without their magic
            number are treated
        extra_extensions: Extensions to hash as-is in addition to the built-ins
    """
    registry = DecoderRegistry()
    for ext in PASSTHROUGH_EXTENSIONS:
        registry.register(ext, noop)
    registry.register('.a78', decode_a78)
    registry.register('.lnx', make_lnx_decoder(magic_policy))
    # .lyx images are headerless by definition
    registry.register('.lyx', make_lnx_decoder(MagicPolicy.LENIENT))
    registry.register('.smd', make_md_decoder('block', magic_policy))
    registry.register('.mgd', make_md_decoder('whole', magic_policy))
    registry.register('.gen', make_md_decoder('raw', magic_policy))
    registry.register('.md', make_md_decoder('raw', magic_policy))
    for ext in ('.n64', '.v64', '.z64'):
        registry.register(ext, decode_n64)
    registry.register('.nes', decode_nes)
    for ext in ('.smc', '.sfc', '.fig', '.swc'):
        registry.register(ext, decode_snes)
    if extra_extensions:
        registry.add_extra(*extra_extensions)
    return registry
