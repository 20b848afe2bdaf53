"""Tests for the CONFLICTS.md builder."""

from __future__ import annotations

from pathlib import Path

from worktree_agent_mcp.conflict_report import (
    REPORT_FILENAME,
    build_conflict_report,
    parse_report_paths,
    remove_conflict_report,
    write_conflict_report,
)
from worktree_agent_mcp.conflicts import (
    ConflictedFile,
    ConflictKind,
    ConflictRegion,
    ConflictSet,
)


def _sample_set() -> ConflictSet:
    return ConflictSet(
        files=[
            ConflictedFile(
                path="src/app.py",
                kind=ConflictKind.CONTENT,
                regions=[
                    ConflictRegion(ours="x = 1\n", theirs="x = 2\n", ours_label="HEAD", theirs_label="abc (feat)"),
                    ConflictRegion(ours="y = 1\n", theirs="y = 3\n"),
                ],
            ),
            ConflictedFile(path="docs/old.md", kind=ConflictKind.DELETION),
            ConflictedFile(path="assets/logo.png", kind=ConflictKind.BINARY),
        ]
    )


def test_report_lists_every_path_with_its_details() -> None:
    text = build_conflict_report(_sample_set(), "alpha", "main")
    assert text.startswith("# Manual Conflict Resolution Guide")
    assert "- **Feature:** alpha" in text
    assert "- **Branch:** feature/alpha" in text
    assert "- **Base:** origin/main" in text
    assert "2 conflict regions" in text
    assert "Deletion conflict" in text
    assert "Binary or mode conflict" in text
    assert "x = 1" in text and "x = 2" in text
    assert "y = 3" in text


def test_report_has_guidance_and_finish_steps() -> None:
    text = build_conflict_report(_sample_set(), "alpha", "main")
    assert "## Resolution Strategy" in text
    assert "prefer the changes from `main`" in text
    assert "## How to Finish" in text
    assert "git rebase origin/main" in text
    assert "git add src/app.py docs/old.md assets/logo.png" in text
    assert "git rebase --continue" in text
    assert "`feature_sync`" in text


def test_report_round_trips_paths() -> None:
    conflict_set = _sample_set()
    text = build_conflict_report(conflict_set, "alpha", "main")
    assert parse_report_paths(text) == conflict_set.paths


def test_round_trip_survives_markdown_inside_conflict_blocks() -> None:
    conflict_set = ConflictSet(
        files=[
            ConflictedFile(
                path="README.md",
                kind=ConflictKind.CONTENT,
                regions=[
                    ConflictRegion(
                        ours="## Conflicted Files\n### `fake.txt`\n```\ncode\n```\n",
                        theirs="### Another heading\n",
                    )
                ],
            ),
            ConflictedFile(path="weird `name`.txt", kind=ConflictKind.BINARY),
            ConflictedFile(path="dir with space/file.txt", kind=ConflictKind.DELETION),
        ]
    )
    text = build_conflict_report(conflict_set, "alpha", "main")
    assert parse_report_paths(text) == conflict_set.paths


def test_report_uses_configured_remote_and_branch() -> None:
    text = build_conflict_report(
        _sample_set(), "alpha", "develop", remote="upstream", feature_branch="feat/alpha"
    )
    assert "git rebase upstream/develop" in text
    assert "feat/alpha" in text


def test_build_is_pure() -> None:
    conflict_set = _sample_set()
    assert build_conflict_report(conflict_set, "alpha", "main") == build_conflict_report(
        conflict_set, "alpha", "main"
    )


def test_write_overwrites_and_remove_deletes(tmp_path: Path) -> None:
    path = write_conflict_report(tmp_path, "first")
    assert path == tmp_path / REPORT_FILENAME
    write_conflict_report(tmp_path, "second")
    assert path.read_text() == "second"

    assert remove_conflict_report(tmp_path) is True
    assert not path.exists()
    assert remove_conflict_report(tmp_path) is False
