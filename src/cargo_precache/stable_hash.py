# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Bit-exact reimplementation of the hash Cargo uses for fingerprint records.

Cargo hashes a fingerprint by feeding its fields through Rust's ``Hash`` trait
into ``core::hash::SipHasher`` (SipHash-2-4) with an all-zero key. The only way
to join independently stored fingerprint records is by comparing those 64-bit
values, so this module reproduces both halves exactly:

- siphash24(): the SipHash-2-4 primitive.
- RustHasher: the byte stream Rust's ``Hash`` impls write for the primitive
  types a fingerprint is built from (integers, str, bool, sequences, enums,
  Option and Path).

The byte stream depends on the target platform: ``usize`` and enum
discriminants are pointer-width, and path component parsing differs between
POSIX and Windows. HashPlatform captures both; HOST_PLATFORM describes the
interpreter running this code.
"""

import os
import struct
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

_MASK = 0xFFFFFFFFFFFFFFFF

# Component discriminants, in declaration order of std::path::Component.
COMPONENT_PREFIX = 0
COMPONENT_ROOT_DIR = 1
COMPONENT_CUR_DIR = 2
COMPONENT_PARENT_DIR = 3
COMPONENT_NORMAL = 4

# std::path::Prefix::Disk discriminant.
PREFIX_DISK = 5

POSIX = "posix"
WINDOWS = "windows"


class UnsupportedPathError(ValueError):
    """Raised for Windows path prefixes whose hashing is not modelled (UNC, verbatim)."""

    pass


@dataclass(frozen=True)
class HashPlatform:
    """Platform traits that change the hashed byte stream.

    Attributes:
        pointer_width: Size of usize/isize in bytes (8 on 64-bit, 4 on 32-bit).
        path_flavor: POSIX or WINDOWS path component rules.
    """

    pointer_width: int = 8
    path_flavor: str = POSIX

    def __post_init__(self) -> None:
        if self.pointer_width not in (4, 8):
            raise ValueError(f"pointer_width must be 4 or 8, got {self.pointer_width}")
        if self.path_flavor not in (POSIX, WINDOWS):
            raise ValueError(f"path_flavor must be '{POSIX}' or '{WINDOWS}'")


HOST_PLATFORM = HashPlatform(
    pointer_width=struct.calcsize("P"),
    path_flavor=WINDOWS if os.name == "nt" else POSIX,
)

X86_64_LINUX = HashPlatform(pointer_width=8, path_flavor=POSIX)
X86_64_WINDOWS = HashPlatform(pointer_width=8, path_flavor=WINDOWS)
X86_WINDOWS = HashPlatform(pointer_width=4, path_flavor=WINDOWS)


def _rotl(x: int, b: int) -> int:
    return ((x << b) | (x >> (64 - b))) & _MASK


def _sip_rounds(
    v0: int, v1: int, v2: int, v3: int, rounds: int
) -> Tuple[int, int, int, int]:
    for _ in range(rounds):
        v0 = (v0 + v1) & _MASK
        v1 = _rotl(v1, 13)
        v1 ^= v0
        v0 = _rotl(v0, 32)
        v2 = (v2 + v3) & _MASK
        v3 = _rotl(v3, 16)
        v3 ^= v2
        v0 = (v0 + v3) & _MASK
        v3 = _rotl(v3, 21)
        v3 ^= v0
        v2 = (v2 + v1) & _MASK
        v1 = _rotl(v1, 17)
        v1 ^= v2
        v2 = _rotl(v2, 32)
    return v0, v1, v2, v3


def siphash24(data: bytes, k0: int = 0, k1: int = 0) -> int:
    """Compute SipHash-2-4 of data with the 128-bit key (k0, k1).

    Args:
        data: Message bytes.
        k0: Low 64 bits of the key.
        k1: High 64 bits of the key.

    Returns:
        Unsigned 64-bit hash value.
    """
    v0 = k0 ^ 0x736F6D6570736575
    v1 = k1 ^ 0x646F72616E646F6D
    v2 = k0 ^ 0x6C7967656E657261
    v3 = k1 ^ 0x7465646279746573

    length = len(data)
    tail_start = length - (length % 8)
    for offset in range(0, tail_start, 8):
        m = int.from_bytes(data[offset : offset + 8], "little")
        v3 ^= m
        v0, v1, v2, v3 = _sip_rounds(v0, v1, v2, v3, 2)
        v0 ^= m

    b = ((length & 0xFF) << 56) | int.from_bytes(data[tail_start:], "little")
    v3 ^= b
    v0, v1, v2, v3 = _sip_rounds(v0, v1, v2, v3, 2)
    v0 ^= b

    v2 ^= 0xFF
    v0, v1, v2, v3 = _sip_rounds(v0, v1, v2, v3, 4)
    return v0 ^ v1 ^ v2 ^ v3


def _split_windows_prefix(path: str) -> Tuple[Optional[str], str]:
    """Split a drive prefix ("C:") from a Windows path."""
    if path.startswith("\\\\") or path.startswith("//"):
        raise UnsupportedPathError(f"UNC and verbatim path prefixes are not supported: {path}")
    if len(path) >= 2 and path[1] == ":" and path[0].isascii() and path[0].isalpha():
        return path[0].upper(), path[2:]
    return None, path


def path_components(path: str, flavor: str = POSIX) -> List[Tuple[int, bytes]]:
    """Split a path the way std::path::Path::components() does.

    Repeated separators and interior "." components are dropped; a leading
    "." on a relative path is kept as CurDir.

    Args:
        path: Path string as stored in the fingerprint record.
        flavor: POSIX or WINDOWS separator and prefix rules.

    Returns:
        List of (component discriminant, payload bytes). For a disk prefix
        the payload is the upper-cased drive letter.
    """
    components: List[Tuple[int, bytes]] = []
    rest = path
    separators = "/"

    if flavor == WINDOWS:
        separators = "/\\"
        drive, rest = _split_windows_prefix(path)
        if drive is not None:
            components.append((COMPONENT_PREFIX, drive.encode("ascii")))

    if rest[:1] and rest[0] in separators:
        components.append((COMPONENT_ROOT_DIR, b""))
    elif rest == "." or (rest[:1] == "." and rest[1:2] and rest[1] in separators):
        components.append((COMPONENT_CUR_DIR, b""))

    part = []
    parts: List[str] = []
    for ch in rest:
        if ch in separators:
            parts.append("".join(part))
            part = []
        else:
            part.append(ch)
    parts.append("".join(part))

    for name in parts:
        if name in ("", "."):
            continue
        if name == "..":
            components.append((COMPONENT_PARENT_DIR, b""))
        else:
            components.append((COMPONENT_NORMAL, name.encode("utf-8", "surrogatepass")))
    return components


class RustHasher:
    """Accumulates the byte stream Rust's Hash impls would feed a Hasher.

    Usage:
        hasher = RustHasher(HOST_PLATFORM)
        hasher.write_u64(1)
        hasher.write_str("serde")
        value = hasher.finish()
    """

    def __init__(self, platform: HashPlatform = HOST_PLATFORM):
        self.platform = platform
        self._buffer = bytearray()

    @property
    def data(self) -> bytes:
        """Bytes written so far."""
        return bytes(self._buffer)

    def write(self, data: bytes) -> None:
        self._buffer.extend(data)

    def write_u8(self, value: int) -> None:
        self._buffer.extend((value & 0xFF).to_bytes(1, "little"))

    def write_u64(self, value: int) -> None:
        self._buffer.extend((value & _MASK).to_bytes(8, "little"))

    def write_usize(self, value: int) -> None:
        width = self.platform.pointer_width
        self._buffer.extend((value & ((1 << (8 * width)) - 1)).to_bytes(width, "little"))

    def write_isize(self, value: int) -> None:
        self.write_usize(value)

    def write_bool(self, value: bool) -> None:
        self.write_u8(1 if value else 0)

    def write_str(self, value: str) -> None:
        # str hashes its UTF-8 bytes followed by a 0xFF terminator.
        self.write(value.encode("utf-8", "surrogatepass"))
        self.write_u8(0xFF)

    def write_discriminant(self, index: int) -> None:
        self.write_isize(index)

    def write_len(self, length: int) -> None:
        self.write_usize(length)

    def write_str_seq(self, values: Iterable[str]) -> None:
        items = list(values)
        self.write_len(len(items))
        for item in items:
            self.write_str(item)

    def write_option_str(self, value: Optional[str]) -> None:
        if value is None:
            self.write_discriminant(0)
        else:
            self.write_discriminant(1)
            self.write_str(value)

    def write_os_str(self, data: bytes) -> None:
        # OsStr hashes as a length-prefixed byte slice.
        self.write_len(len(data))
        self.write(data)

    def write_path(self, path: str) -> None:
        for discriminant, payload in path_components(path, self.platform.path_flavor):
            self.write_discriminant(discriminant)
            if discriminant == COMPONENT_PREFIX:
                self.write_discriminant(PREFIX_DISK)
                self.write_u8(payload[0])
            elif discriminant == COMPONENT_NORMAL:
                self.write_os_str(payload)

    def write_path_seq(self, paths: Iterable[str]) -> None:
        items = list(paths)
        self.write_len(len(items))
        for item in items:
            self.write_path(item)

    def finish(self) -> int:
        """Finalize with SipHash-2-4 under the zero key."""
        return siphash24(bytes(self._buffer))
