"""
Unit tests for path resolution.
"""

from pathlib import Path

from archaeopteryx.handlers.resolver import PathResolver, Found, NotFound, EntryKind


class TestPathResolver:
    """Tests for PathResolver."""

    def test_file_under_root(self, site_root: Path):
        """An existing file resolves to Found(FILE)."""
        result = PathResolver(site_root).resolve("/app.js")

        assert result == Found(site_root / "app.js", EntryKind.FILE)

    def test_directory_under_root(self, site_root: Path):
        """An existing directory resolves to Found(DIRECTORY)."""
        result = PathResolver(site_root).resolve("/docs")

        assert isinstance(result, Found)
        assert result.is_directory

    def test_root_itself(self, site_root: Path):
        """"/" is the root directory."""
        result = PathResolver(site_root).resolve("/")

        assert isinstance(result, Found)
        assert result.kind is EntryKind.DIRECTORY

    def test_percent_encoded_url(self, site_root: Path):
        """The URL is unescaped before the lookup."""
        result = PathResolver(site_root).resolve("/docs/read%20me.md")

        assert isinstance(result, Found)
        assert result.path.name == "read me.md"

    def test_missing_is_not_found(self, site_root: Path):
        """A missing path is NotFound, not an exception."""
        result = PathResolver(site_root).resolve("/missing.png")

        assert result == NotFound("/missing.png")

    def test_file_used_as_directory(self, site_root: Path):
        """ENOTDIR counts as not found."""
        result = PathResolver(site_root).resolve("/app.js/inner")

        assert isinstance(result, NotFound)

    def test_nul_byte_is_not_found(self, site_root: Path):
        """An embedded NUL byte counts as not found."""
        result = PathResolver(site_root).resolve("/app%00.js")

        assert isinstance(result, NotFound)

    def test_url_is_appended_not_joined(self, site_root: Path, tmp_path: Path):
        """An absolute-looking URL stays under root by default."""
        outside = tmp_path / "outside.txt"
        outside.write_text("x")

        result = PathResolver(site_root).resolve(str(outside))

        assert isinstance(result, NotFound)


class TestAllowAbsolute:
    """Tests for the absolute-path retry."""

    def test_absolute_retry(self, site_root: Path, tmp_path: Path):
        """With allow_absolute, a path missing under root is tried as is."""
        outside = tmp_path / "outside.txt"
        outside.write_text("x")

        result = PathResolver(site_root, allow_absolute=True).resolve(str(outside))

        assert result == Found(outside, EntryKind.FILE)

    def test_root_wins_over_absolute(self, site_root: Path):
        """The root candidate is tried first."""
        result = PathResolver(site_root, allow_absolute=True).resolve("/app.js")

        assert result == Found(site_root / "app.js", EntryKind.FILE)

    def test_absolute_missing_too(self, site_root: Path, tmp_path: Path):
        """Both candidates missing is NotFound."""
        result = PathResolver(site_root, allow_absolute=True).resolve(str(tmp_path / "nope"))

        assert isinstance(result, NotFound)
