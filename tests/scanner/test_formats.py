import hashlib
import io

import pytest

from glaneur.scanner.errors import InvalidFormatError, NotReadableError
from glaneur.scanner.formats import (
    MD_BLOCK_SIZE,
    DecoderRegistry,
    MagicPolicy,
    deinterleave,
    default_registry,
    interleave,
    noop,
    normalize_extension,
)

ZEROS_SHA1 = "5c3eb80066420002bc3dcc7ca4ab6efad7ed4ae5"  # 512 zero bytes


def _decoded(registry, path) -> bytes:
    stream = registry.decode(path)
    try:
        return stream.read()
    finally:
        stream.close()


def _n64_images():
    v64 = bytearray(1024)
    z64 = bytearray(1024)
    n64 = bytearray(1024)
    v64[:4] = bytes([0, 0x80, 0, 0])
    z64[:4] = bytes([0x80, 0, 0, 0])
    n64[:4] = bytes([0, 0, 0, 0x80])
    for i in range(4, 1024, 4):
        v64[i:i + 4] = bytes([1, 2, 3, 4])
        z64[i:i + 4] = bytes([2, 1, 4, 3])
        n64[i:i + 4] = bytes([3, 4, 1, 2])
    return bytes(v64), bytes(z64), bytes(n64)


@pytest.mark.unit
def test_normalize_extension():
    assert normalize_extension("NES") == ".nes"
    assert normalize_extension(".Z64") == ".z64"
    assert normalize_extension("") == ""


@pytest.mark.unit
def test_interleave_undoes_deinterleave():
    block = bytes(range(256)) * 64
    assert interleave(deinterleave(block)) == block
    assert deinterleave(interleave(block)) == block


@pytest.mark.unit
def test_deinterleave_places_halves_on_odd_and_even_bytes():
    assert deinterleave(b"abcd") == b"cadb"
    assert deinterleave(b"cadb") == b"dcba"


@pytest.mark.unit
def test_registry_extensions_are_case_insensitive():
    registry = DecoderRegistry()
    registry.register("NES", noop)
    decoder, known = registry.get_decoder(".nes")
    assert known is True
    assert decoder is noop


@pytest.mark.unit
def test_unknown_extension_returns_passthrough_not_known():
    registry = default_registry()
    decoder, known = registry.get_decoder(".txt")
    assert decoder is noop
    assert known is False
    assert registry.is_known_extension(".txt") is False


@pytest.mark.unit
def test_containers_are_always_known():
    registry = DecoderRegistry()
    for ext in (".zip", ".7Z", "gz"):
        assert registry.is_known_extension(ext)


@pytest.mark.unit
def test_extra_extensions_allow_list():
    registry = default_registry()
    registry.add_extra("ISO", ".chd")
    assert registry.has_extra(".iso")
    assert registry.is_known_extension(".ISO")
    assert registry.is_known_extension(".chd")

    registry.remove_extra("iso")
    assert not registry.has_extra(".iso")
    assert not registry.is_known_extension(".iso")

    registry.clear_extra()
    assert not registry.is_known_extension(".chd")


@pytest.mark.unit
def test_default_registry_accepts_extra_extensions():
    registry = default_registry(extra_extensions=[".iso"])
    assert registry.is_known_extension(".iso")


@pytest.mark.unit
def test_decode_missing_file_raises_not_readable(tmp_path):
    with pytest.raises(NotReadableError):
        default_registry().decode(tmp_path / "nope.bin")


@pytest.mark.unit
def test_passthrough_keeps_bytes(tmp_path):
    path = tmp_path / "game.gba"
    path.write_bytes(b"\x01\x02\x03")
    assert _decoded(default_registry(), path) == b"\x01\x02\x03"


@pytest.mark.unit
def test_a78_header_is_skipped(tmp_path):
    header = bytearray(128)
    header[1:10] = b"ATARI7800"
    path = tmp_path / "game.a78"
    path.write_bytes(bytes(header) + bytes(512))

    data = _decoded(default_registry(), path)
    assert hashlib.sha1(data).hexdigest() == ZEROS_SHA1


@pytest.mark.unit
def test_a78_without_header_passes_through(tmp_path):
    path = tmp_path / "game.a78"
    path.write_bytes(bytes(512))
    assert _decoded(default_registry(), path) == bytes(512)


@pytest.mark.unit
def test_a78_shorter_than_header(tmp_path):
    path = tmp_path / "tiny.a78"
    path.write_bytes(b"\x00ATARI")
    assert _decoded(default_registry(), path) == b"\x00ATARI"


@pytest.mark.unit
def test_lnx_header_is_skipped(tmp_path):
    header = bytearray(64)
    header[:4] = b"LYNX"
    path = tmp_path / "game.lnx"
    path.write_bytes(bytes(header) + bytes(512))

    data = _decoded(default_registry(), path)
    assert hashlib.sha1(data).hexdigest() == ZEROS_SHA1


@pytest.mark.unit
def test_lnx_too_short_is_invalid(tmp_path):
    path = tmp_path / "game.lnx"
    path.write_bytes(b"LY")
    with pytest.raises(InvalidFormatError):
        default_registry().decode(path)


@pytest.mark.unit
def test_lnx_without_magic_lenient_passes_through(tmp_path):
    path = tmp_path / "game.lnx"
    path.write_bytes(bytes(512))
    assert _decoded(default_registry(MagicPolicy.LENIENT), path) == bytes(512)


@pytest.mark.unit
def test_lnx_without_magic_strict_raises(tmp_path):
    path = tmp_path / "game.lnx"
    path.write_bytes(bytes(512))
    with pytest.raises(InvalidFormatError):
        default_registry(MagicPolicy.STRICT).decode(path)


@pytest.mark.unit
def test_lyx_is_headerless_even_when_strict(tmp_path):
    path = tmp_path / "game.lyx"
    path.write_bytes(bytes(512))
    assert _decoded(default_registry(MagicPolicy.STRICT), path) == bytes(512)


def _md_image(signature_at=None, signature=b""):
    data = bytearray(MD_BLOCK_SIZE)
    for i in range(len(data)):
        data[i] = i % 251
    if signature_at is not None:
        data[signature_at:signature_at + len(signature)] = signature
    return bytes(data)


@pytest.mark.unit
def test_md_with_sega_signature_is_raw(tmp_path):
    image = _md_image(256, b"SEGA")
    path = tmp_path / "game.smd"
    path.write_bytes(image)
    assert _decoded(default_registry(), path) == image


@pytest.mark.unit
def test_md_copier_header_is_stripped(tmp_path):
    image = _md_image(256, b"SEGA")
    path = tmp_path / "game.gen"
    path.write_bytes(bytes(512) + image)
    assert _decoded(default_registry(), path) == image


@pytest.mark.unit
def test_md_bad_size_is_invalid(tmp_path):
    path = tmp_path / "game.md"
    path.write_bytes(bytes(1000))
    with pytest.raises(InvalidFormatError):
        default_registry().decode(path)


@pytest.mark.unit
def test_smd_falls_back_to_block_deinterleave(tmp_path):
    image = _md_image()
    path = tmp_path / "game.smd"
    path.write_bytes(image)
    assert _decoded(default_registry(), path) == deinterleave(image)


@pytest.mark.unit
def test_mgd_falls_back_to_whole_deinterleave(tmp_path):
    image = _md_image() * 2
    path = tmp_path / "game.mgd"
    path.write_bytes(image)
    assert _decoded(default_registry(), path) == deinterleave(image)


@pytest.mark.unit
def test_gen_without_signature_is_raw(tmp_path):
    image = _md_image()
    path = tmp_path / "game.gen"
    path.write_bytes(image)
    assert _decoded(default_registry(), path) == image


@pytest.mark.unit
def test_md_without_signature_strict_raises(tmp_path):
    path = tmp_path / "game.smd"
    path.write_bytes(_md_image())
    with pytest.raises(InvalidFormatError):
        default_registry(MagicPolicy.STRICT).decode(path)


@pytest.mark.unit
def test_n64_byte_orders_hash_the_same(tmp_path):
    v64, z64, n64 = _n64_images()
    registry = default_registry()
    results = set()
    for name, data in (("a.v64", v64), ("b.z64", z64), ("c.n64", n64)):
        path = tmp_path / name
        path.write_bytes(data)
        results.add(_decoded(registry, path))
    assert results == {v64}


@pytest.mark.unit
def test_n64_extension_does_not_decide_the_swap(tmp_path):
    _, z64, _ = _n64_images()
    path = tmp_path / "mislabelled.n64"
    path.write_bytes(z64)
    assert _decoded(default_registry(), path) == _n64_images()[0]


@pytest.mark.unit
def test_n64_trailing_partial_word_is_not_swapped(tmp_path):
    path = tmp_path / "short.z64"
    path.write_bytes(bytes([0x80, 0, 1, 2, 3, 4]))
    assert _decoded(default_registry(), path) == bytes([0, 0x80, 2, 1, 3, 4])


@pytest.mark.unit
def test_n64_too_short_is_invalid(tmp_path):
    path = tmp_path / "tiny.z64"
    path.write_bytes(b"\x80\x00")
    with pytest.raises(InvalidFormatError):
        default_registry().decode(path)


def _ines(prg_units=1, chr_units=1, trainer=False, flags7=0, byte9=0):
    header = bytearray(16)
    header[:4] = b"NES\x1a"
    header[4] = prg_units
    header[5] = chr_units
    header[6] = 4 if trainer else 0
    header[7] = flags7
    header[9] = byte9
    return bytes(header)


@pytest.mark.unit
def test_nes_hashes_prg_and_chr_only(tmp_path):
    body = bytes([7]) * (16 * 1024 + 8 * 1024)
    path = tmp_path / "game.nes"
    path.write_bytes(_ines() + body + b"trailing garbage")
    assert _decoded(default_registry(), path) == body


@pytest.mark.unit
def test_nes_trainer_is_skipped(tmp_path):
    body = bytes([1]) * (16 * 1024)
    path = tmp_path / "game.nes"
    path.write_bytes(_ines(chr_units=0, trainer=True) + bytes([9]) * 512 + body)
    assert _decoded(default_registry(), path) == body


@pytest.mark.unit
def test_nes2_size_extension(tmp_path):
    # NES 2.0: byte 9 low nibble extends CHR units by 256
    chr_size = 8 * 1024 * (256 + 1)
    body = bytes(16 * 1024) + bytes([2]) * chr_size
    path = tmp_path / "game.nes"
    path.write_bytes(_ines(prg_units=1, chr_units=1, flags7=8, byte9=0x01) + body)
    assert len(_decoded(default_registry(), path)) == len(body)


@pytest.mark.unit
def test_nes_short_header_is_invalid(tmp_path):
    path = tmp_path / "game.nes"
    path.write_bytes(b"NES\x1a")
    with pytest.raises(InvalidFormatError):
        default_registry().decode(path)


@pytest.mark.unit
def test_snes_copier_header_is_skipped(tmp_path):
    body = bytes([5]) * 1024
    path = tmp_path / "game.smc"
    path.write_bytes(bytes(512) + body)
    assert _decoded(default_registry(), path) == body


@pytest.mark.unit
def test_snes_without_copier_header(tmp_path):
    body = bytes([5]) * 1024
    path = tmp_path / "game.sfc"
    path.write_bytes(body)
    assert _decoded(default_registry(), path) == body


@pytest.mark.unit
def test_decoder_receives_declared_size(tmp_path):
    seen = {}

    def capture(stream, size):
        seen['size'] = size
        return stream

    registry = DecoderRegistry()
    registry.register(".dat", capture)
    path = tmp_path / "x.dat"
    path.write_bytes(bytes(42))
    _decoded(registry, path)
    assert seen['size'] == 42


@pytest.mark.unit
def test_swap_reader_handles_small_reads(tmp_path):
    v64, z64, _ = _n64_images()
    path = tmp_path / "game.z64"
    path.write_bytes(z64)
    stream = default_registry().decode(path)
    chunks = []
    try:
        while True:
            chunk = stream.read(3)
            if not chunk:
                break
            chunks.append(chunk)
    finally:
        stream.close()
    assert b"".join(chunks) == v64


@pytest.mark.unit
def test_decoder_can_wrap_in_memory_stream():
    stream = io.BytesIO(bytes(512))
    assert noop(stream, 512) is stream
