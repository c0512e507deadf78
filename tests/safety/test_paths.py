"""Tests for the path safety guard."""

import os
from pathlib import Path

import pytest

from vett.errors import PathTraversalError, SymlinkTraversalError
from vett.safety.paths import (
    MAX_SEGMENT_LENGTH,
    assert_no_symlink_components,
    assert_within_base,
    is_path_safe,
    is_safe_relative_path,
)

pytestmark = pytest.mark.unit


class TestIsPathSafe:
    """Tests for single-segment validation."""

    @pytest.mark.parametrize(
        "segment",
        ["acme", "tools", "hello-world", "v1.2.3", "a_b", "x", "a" * MAX_SEGMENT_LENGTH],
    )
    def test_accepts_plain_segments(self, segment: str) -> None:
        assert is_path_safe(segment)

    @pytest.mark.parametrize(
        "segment",
        [
            "",
            ".",
            "..",
            "a..b",
            "../etc",
            "a/b",
            "a\\b",
            "nul\x00byte",
            "café",
            " padded",
            "padded ",
            "C:",
            "a*b",
            "a|b",
            "a" * (MAX_SEGMENT_LENGTH + 1),
        ],
    )
    def test_rejects_unsafe_segments(self, segment: str) -> None:
        assert not is_path_safe(segment)

    def test_rejects_non_strings(self) -> None:
        assert not is_path_safe(None)  # type: ignore[arg-type]
        assert not is_path_safe(42)  # type: ignore[arg-type]


class TestIsSafeRelativePath:
    def test_nested_path(self) -> None:
        assert is_safe_relative_path("rules/setup.md")

    @pytest.mark.parametrize("path", ["", "/etc/passwd", "a//b", "a/../b", "a/", "a\\b"])
    def test_rejects(self, path: str) -> None:
        assert not is_safe_relative_path(path)


class TestAssertWithinBase:
    """Tests for base-directory containment."""

    def test_returns_resolved_child(self, temp_dir: Path) -> None:
        result = assert_within_base(temp_dir, "a/b")
        assert result == temp_dir / "a" / "b"

    def test_base_itself_is_allowed(self, temp_dir: Path) -> None:
        assert assert_within_base(temp_dir, temp_dir) == temp_dir

    def test_rejects_dotdot_escape(self, temp_dir: Path) -> None:
        with pytest.raises(PathTraversalError, match="Path traversal detected"):
            assert_within_base(temp_dir, f"{temp_dir}/../../etc/passwd")

    def test_rejects_prefix_collision(self, temp_dir: Path) -> None:
        base = temp_dir / "base"
        with pytest.raises(PathTraversalError):
            assert_within_base(base, temp_dir / "base-other" / "x")

    def test_rejects_symlink_escape_when_following(self, temp_dir: Path) -> None:
        base = temp_dir / "base"
        outside = temp_dir / "outside"
        base.mkdir()
        outside.mkdir()
        os.symlink(outside, base / "link")

        with pytest.raises(PathTraversalError):
            assert_within_base(base, "link/file")

    def test_lexical_mode_ignores_existing_symlink(self, temp_dir: Path) -> None:
        base = temp_dir / "base"
        outside = temp_dir / "outside"
        base.mkdir()
        outside.mkdir()
        os.symlink(outside, base / "link")

        result = assert_within_base(base, base / "link", follow_symlinks=False)
        assert result == base / "link"

    def test_error_does_not_echo_candidate(self, temp_dir: Path) -> None:
        with pytest.raises(PathTraversalError) as exc_info:
            assert_within_base(temp_dir, "../secret-token-value")
        assert "secret-token-value" not in str(exc_info.value)


class TestAssertNoSymlinkComponents:
    def test_plain_directories_pass(self, temp_dir: Path) -> None:
        (temp_dir / "a" / "b").mkdir(parents=True)
        assert_no_symlink_components(temp_dir, "a/b/c.md")

    def test_nonexistent_components_pass(self, temp_dir: Path) -> None:
        assert_no_symlink_components(temp_dir, "new/dir/file.md")

    def test_symlinked_directory_rejected(self, temp_dir: Path) -> None:
        target = temp_dir / "elsewhere"
        target.mkdir()
        os.symlink(target, temp_dir / "rules")

        with pytest.raises(SymlinkTraversalError):
            assert_no_symlink_components(temp_dir, "rules/style.md")

    def test_dangling_symlink_rejected(self, temp_dir: Path) -> None:
        os.symlink(temp_dir / "missing", temp_dir / "SKILL.md")

        with pytest.raises(SymlinkTraversalError):
            assert_no_symlink_components(temp_dir, "SKILL.md")

    def test_escape_via_dotdot_rejected(self, temp_dir: Path) -> None:
        with pytest.raises(SymlinkTraversalError):
            assert_no_symlink_components(temp_dir / "base", "../other")
