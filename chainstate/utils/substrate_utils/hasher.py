"""Hashers used to build Substrate storage addresses."""

from hashlib import blake2b
from typing import Callable

import xxhash


def blake2_256(data: bytes) -> bytes:
    """32 bytes Blake2b hash of ``data``."""
    return blake2b(data, digest_size=32).digest()


def blake2_128(data: bytes) -> bytes:
    """16 bytes Blake2b hash of ``data``."""
    return blake2b(data, digest_size=16).digest()


def blake2_128_concat(data: bytes) -> bytes:
    """16 bytes Blake2b hash of ``data`` followed by ``data`` itself, so the key stays reversible."""
    return blake2b(data, digest_size=16).digest() + data


def xxh64(data: bytes) -> bytes:
    return xxhash.xxh64(data, seed=0).digest()[::-1]


def xxh128(data: bytes) -> bytes:
    """
    Two little-endian xxh64 hashes (seeds 0 and 1) concatenated. This is the hasher Substrate calls ``Twox128`` and
    the one that produces the pallet and storage item prefixes.
    """
    return xxh64(data) + xxhash.xxh64(data, seed=1).digest()[::-1]


def two_x64_concat(data: bytes) -> bytes:
    return xxh64(data) + data


def xxh256(data: bytes) -> bytes:
    return b"".join(xxhash.xxh64(data, seed=seed).digest()[::-1] for seed in range(4))


def identity(data: bytes) -> bytes:
    return bytes(data)


HASHERS: dict[str, Callable[[bytes], bytes]] = {
    "Blake2_128": blake2_128,
    "Blake2_256": blake2_256,
    "Blake2_128Concat": blake2_128_concat,
    "Twox128": xxh128,
    "Twox256": xxh256,
    "Twox64Concat": two_x64_concat,
    "Identity": identity,
}


def get_hasher(name: str) -> Callable[[bytes], bytes]:
    """
    Look up a storage hasher by its metadata name.

    Raises:
        ValueError: if the hasher is unknown.
    """
    try:
        return HASHERS[name]
    except KeyError:
        raise ValueError(f'Unknown storage hasher "{name}"') from None
