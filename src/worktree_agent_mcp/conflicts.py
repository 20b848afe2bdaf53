"""Conflict extraction for a worktree stuck in a failed rebase.

The conflicted path list always comes from ``git status``, never from
scanning the filesystem: a deletion conflict has no file to scan and must
still be reported. Each readable path is then scanned for marker regions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .observability import log_debug
from .repository import WorktreeRepository

MARKER_OURS = "<<<<<<<"
MARKER_BASE = "|||||||"
MARKER_SEPARATOR = "======="
MARKER_THEIRS = ">>>>>>>"


class ConflictKind(str, Enum):
    CONTENT = "content"  # marker regions captured
    DELETION = "deletion"  # one side deleted the file
    BINARY = "binary"  # conflicted but no text regions (binary or mode conflict)


@dataclass(frozen=True)
class ConflictRegion:
    """One ``<<<<<<< ... >>>>>>>`` block.

    During a rebase "ours" is the upstream side being rebased onto and
    "theirs" is the feature commit being replayed.
    """
    ours: str
    theirs: str
    ours_label: str = ""
    theirs_label: str = ""
    base: Optional[str] = None


@dataclass
class ConflictedFile:
    path: str
    kind: ConflictKind
    regions: List[ConflictRegion] = field(default_factory=list)

    @property
    def region_count(self) -> int:
        return len(self.regions)


@dataclass
class ConflictSet:
    files: List[ConflictedFile] = field(default_factory=list)

    @property
    def paths(self) -> List[str]:
        return [f.path for f in self.files]

    def __len__(self) -> int:
        return len(self.files)

    def __bool__(self) -> bool:
        return bool(self.files)


def _is_marker(line: str, marker: str) -> bool:
    stripped = line.rstrip("\r\n")
    return stripped == marker or stripped.startswith(marker + " ")


def _marker_label(line: str, marker: str) -> str:
    return line[len(marker):].strip()


def parse_conflict_regions(text: str) -> List[ConflictRegion]:
    """Extract every complete conflict region from ``text``.

    Handles the diff3 style (``|||||||`` base section). Regions missing their
    closing marker are dropped.
    """
    regions: List[ConflictRegion] = []
    lines = text.splitlines(keepends=True)
    i = 0
    while i < len(lines):
        line = lines[i]
        if not _is_marker(line, MARKER_OURS):
            i += 1
            continue

        ours_label = _marker_label(line, MARKER_OURS)
        ours: List[str] = []
        base: Optional[List[str]] = None
        theirs: List[str] = []
        section = ours
        j = i + 1
        closed = False
        while j < len(lines):
            current = lines[j]
            if _is_marker(current, MARKER_BASE) and section is ours:
                base = []
                section = base
            elif _is_marker(current, MARKER_SEPARATOR) and section is not theirs:
                section = theirs
            elif _is_marker(current, MARKER_THEIRS) and section is theirs:
                regions.append(
                    ConflictRegion(
                        ours="".join(ours),
                        theirs="".join(theirs),
                        ours_label=ours_label,
                        theirs_label=_marker_label(current, MARKER_THEIRS),
                        base="".join(base) if base is not None else None,
                    )
                )
                closed = True
                break
            elif _is_marker(current, MARKER_OURS):
                # Nested/garbled start marker: restart from here
                break
            else:
                section.append(current)
            j += 1
        i = j + 1 if closed else max(j, i + 1)
    return regions


def _read_text(path: Path) -> Optional[str]:
    try:
        data = path.read_bytes()
    except OSError:
        return None
    if b"\0" in data:
        return ""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return ""


def extract_conflicts(repo: WorktreeRepository) -> ConflictSet:
    """Build the conflict set from the repository's current status.

    Always recomputed: the external agent may have changed the tree since
    the last look.
    """
    conflict_set = ConflictSet()
    for entry in repo.status().conflicted:
        file_path = repo.path / entry.path
        text = None if entry.is_deletion else _read_text(file_path)
        if text is None:
            conflict_set.files.append(ConflictedFile(path=entry.path, kind=ConflictKind.DELETION))
            continue
        regions = parse_conflict_regions(text)
        kind = ConflictKind.CONTENT if regions else ConflictKind.BINARY
        conflict_set.files.append(ConflictedFile(path=entry.path, kind=kind, regions=regions))
    log_debug(
        "Extracted conflicts",
        paths=conflict_set.paths,
        regions=sum(f.region_count for f in conflict_set.files),
    )
    return conflict_set
