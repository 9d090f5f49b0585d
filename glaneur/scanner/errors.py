"""Errors raised while decoding and hashing ROM files."""


class HashError(Exception):
    """Base class for ROM hashing failures (also used for generic I/O errors)."""
    pass


class NotReadableError(HashError):
    """The ROM file could not be opened or stat'd."""
    pass


class InvalidFormatError(HashError):
    """A decoder rejected the byte stream as not matching its format."""
    pass


class NoValidRomFoundError(HashError):
    """A container held no entry with a registered decoder."""
    pass
