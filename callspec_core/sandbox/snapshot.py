"""
Filesystem snapshots and deltas.

A snapshot maps every entry below a root (relative, "/"-separated path) to its
kind and a sha256 fingerprint. Symlinks are recorded, never followed. The delta
between two snapshots carries bounded post-run file content so effects can be
checked after the sandbox is gone.

Entries the verifier cannot read (a file or directory the binary made
unreadable) stay in the snapshot with `unreadable=True` and no digest.
"""

from __future__ import annotations

import hashlib
import logging
import os
import stat
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from ..spec.model import ChangeKind, EntryKind

logger = logging.getLogger(__name__)

_CHUNK = 64 * 1024


@dataclass(frozen=True)
class EntryState:
    kind: EntryKind
    digest: Optional[str] = None
    size: int = 0
    mode: int = 0
    unreadable: bool = False


@dataclass(frozen=True)
class DeltaEntry:
    path: str
    change: ChangeKind
    kind: EntryKind
    digest: Optional[str] = None
    size: int = 0
    content: Optional[bytes] = None
    truncated: bool = False
    unreadable: bool = False

    @property
    def text(self) -> Optional[str]:
        if self.content is None:
            return None
        return self.content.decode("utf-8", errors="replace")

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "change": self.change.value,
            "kind": self.kind.value,
            "digest": self.digest,
            "size": self.size,
            "truncated": self.truncated,
            "unreadable": self.unreadable,
        }


Snapshot = Dict[str, EntryState]


def _rel(root: str, full: str) -> str:
    return os.path.relpath(full, root).replace(os.sep, "/")


def _fingerprint(full: str) -> Tuple[str, int]:
    h = hashlib.sha256()
    size = 0
    with open(full, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            h.update(chunk)
            size += len(chunk)
    return h.hexdigest(), size


def _state(full: str) -> EntryState:
    st = os.lstat(full)
    mode = stat.S_IMODE(st.st_mode)
    if stat.S_ISLNK(st.st_mode):
        target = os.readlink(full)
        return EntryState(
            kind=EntryKind.SYMLINK,
            digest=hashlib.sha256(target.encode("utf-8", errors="surrogateescape")).hexdigest(),
            mode=mode,
        )
    if stat.S_ISDIR(st.st_mode):
        return EntryState(kind=EntryKind.DIR, mode=mode)
    if not stat.S_ISREG(st.st_mode):
        return EntryState(kind=EntryKind.FILE, size=st.st_size, mode=mode)
    try:
        digest, size = _fingerprint(full)
    except OSError as e:
        logger.debug("cannot fingerprint %s: %s", full, e)
        return EntryState(kind=EntryKind.FILE, size=st.st_size, mode=mode, unreadable=True)
    return EntryState(kind=EntryKind.FILE, digest=digest, size=size, mode=mode)


def take_snapshot(root: str) -> Snapshot:
    snap: Snapshot = {}
    blocked: List[str] = []
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False, onerror=lambda e: blocked.append(e.filename)):
        dirnames.sort()
        for name in dirnames + sorted(filenames):
            full = os.path.join(dirpath, name)
            try:
                snap[_rel(root, full)] = _state(full)
            except FileNotFoundError:
                # removed while the tree was being walked
                continue
    for full in blocked:
        rel = _rel(root, full)
        if rel in snap:
            # listed by its parent, contents hidden from us
            snap[rel] = replace(snap[rel], unreadable=True)
    return snap


def _read_bounded(full: str, limit: int) -> Tuple[Optional[bytes], bool]:
    try:
        with open(full, "rb") as f:
            data = f.read(limit + 1)
    except OSError as e:
        logger.debug("cannot read %s: %s", full, e)
        return None, False
    if len(data) > limit:
        return data[:limit], True
    return data, False


def diff(pre: Snapshot, post: Snapshot, root: str, *, content_limit: int) -> Tuple[DeltaEntry, ...]:
    """Entries added, removed or modified between `pre` and `post`, sorted by path."""
    out: List[DeltaEntry] = []
    for path in sorted(set(pre) | set(post)):
        before = pre.get(path)
        after = post.get(path)
        if after is None:
            out.append(DeltaEntry(path, ChangeKind.REMOVED, before.kind, before.digest, before.size,
                                  unreadable=before.unreadable))
            continue
        if before is None:
            change = ChangeKind.ADDED
        elif (before.kind, before.digest, before.size, before.mode, before.unreadable) != (
            after.kind, after.digest, after.size, after.mode, after.unreadable
        ):
            change = ChangeKind.MODIFIED
        else:
            continue

        content, truncated = None, False
        if after.kind == EntryKind.FILE and after.digest is not None:
            content, truncated = _read_bounded(os.path.join(root, path), content_limit)
        out.append(DeltaEntry(
            path, change, after.kind, after.digest, after.size, content, truncated,
            unreadable=after.unreadable or (after.digest is not None and content is None),
        ))
    return tuple(out)
