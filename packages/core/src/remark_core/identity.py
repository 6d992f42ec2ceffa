"""Identity Resolver: (HEAD, view, path) -> SyntheticId.

The id is the git blob id of a canonical key. Every field of the key is
length-prefixed, so no path or ref (which may contain newlines, colons or
arbitrary bytes) can make two different triples encode to the same bytes.
Using the blob id means the store can write the key as a real object and
attach the note to it.

The hash follows the repository's object format, inferred from the length of
``head``: 40 hex digits is SHA-1, 64 is SHA-256.
"""

from __future__ import annotations

import hashlib
import os

from remark_core.views import ViewDescriptor, ViewKind
from remark_store.errors import ArgumentError
from remark_store.models import SyntheticId

_KEY_VERSION = b"remark-file-key v2\n"


def _field(name: bytes, value: bytes) -> bytes:
    return name + b" " + str(len(value)).encode("ascii") + b":" + value + b"\n"


def _path_bytes(path: str | bytes) -> bytes:
    if isinstance(path, bytes):
        return path
    return os.fsencode(path)


def canonical_key(head: str, view: ViewDescriptor, path: str | bytes) -> bytes:
    key = _KEY_VERSION
    key += _field(b"head", head.encode("ascii"))
    key += _field(b"view", view.kind.value.encode("ascii"))
    if view.kind is ViewKind.BASE:
        key += _field(b"base", view.base_ref.encode("utf-8"))
    key += _field(b"path", _path_bytes(path))
    return key


def _hasher(head: str):
    if len(head) == 40:
        return hashlib.sha1()
    if len(head) == 64:
        return hashlib.sha256()
    raise ArgumentError(f"not a full commit id: {head!r}")


def resolve(head: str, view: ViewDescriptor, path: str | bytes) -> SyntheticId:
    """Return the stable note target for ``path`` under ``view`` at ``head``."""
    head = head.strip().lower()
    key = canonical_key(head, view, path)
    h = _hasher(head)
    h.update(b"blob %d\0" % len(key))
    h.update(key)
    return SyntheticId(oid=h.hexdigest(), key=key)
