import hashlib
import json
import pickle
import pickletools
from enum import Enum
from typing import Any

import xxhash

# Fixed so canonical encodings stay stable across interpreter versions
PICKLE_PROTOCOL = 4


def _str_keys_only(data: Any) -> bool:
    if isinstance(data, dict):
        return all(type(k) is str for k in data) and all(
            _str_keys_only(v) for v in data.values()
        )
    if isinstance(data, (list, tuple)):
        return all(_str_keys_only(v) for v in data)
    return True


def canonical_encode(data: Any) -> bytes:
    """
    Encode data into canonical bytes for comparison and hashing.

    JSON (with sorted keys) is tried first so that equal containers encode
    identically. JSON turns every dict key into a string, so data with
    non-string keys goes straight to optimized pickle, as do values JSON
    cannot encode.
    """
    if _str_keys_only(data):
        try:
            return json.dumps(
                data,
                sort_keys=True,
                separators=(",", ":"),
                allow_nan=True,
            ).encode("utf-8")
        except (TypeError, ValueError):
            pass
    _data = pickle.dumps(data, protocol=PICKLE_PROTOCOL)
    return b"p:" + pickletools.optimize(_data)


def sha256(bdata: bytes) -> int:
    """
    Compute hash using SHA-256.
    """
    return int.from_bytes(hashlib.sha256(bdata).digest(), byteorder="big")


def blake2b(bdata: bytes) -> int:
    """
    Compute hash using BLAKE2b.
    """
    return int.from_bytes(hashlib.blake2b(bdata, digest_size=16).digest(), byteorder="big")


def xxh64(bdata: bytes) -> int:
    """
    Compute hash using xxHash (64-bit).
    """
    return xxhash.xxh64(bdata).intdigest()


class HashMethod(Enum):
    xxh64 = "xxh64"
    blake2b = "blake2b"
    sha256 = "sha256"


def hash(data: Any, method: HashMethod = HashMethod.xxh64) -> int:
    bdata = data if type(data) is bytes else canonical_encode(data)
    if method == HashMethod.xxh64:
        return xxh64(bdata)
    elif method == HashMethod.blake2b:
        return blake2b(bdata)
    elif method == HashMethod.sha256:
        return sha256(bdata)
    else:
        raise ValueError(f"Invalid hash method: {method}")
