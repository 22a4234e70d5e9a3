"""Tests for LocalRepositorySource."""

from __future__ import annotations

import pytest

from revue.exceptions import ContentSourceError
from revue.sources.local import LocalRepositorySource, detect_language, read_git_head

SHA = "0123456789abcdef0123456789abcdef01234567"


@pytest.fixture
def repo(tmp_path):
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.py").write_text("def app():\n    return 1\n")
    (root / "README.md").write_text("# Project\n")
    (root / "node_modules" / "left-pad").mkdir(parents=True)
    (root / "node_modules" / "left-pad" / "index.js").write_text("module.exports = 1\n")
    (root / "image.bin").write_bytes(b"\xff\xfe\x00\x81")
    git = root / ".git"
    (git / "refs" / "heads").mkdir(parents=True)
    (git / "HEAD").write_text("ref: refs/heads/feature\n")
    (git / "refs" / "heads" / "feature").write_text(SHA + "\n")
    return root


class TestDetectLanguage:
    @pytest.mark.parametrize(
        ("path", "language"),
        [("a.py", "python"), ("b.TSX", "typescript"), ("c.yml", "yaml"), ("Dockerfile", "plaintext")],
    )
    def test_languages(self, path, language):
        assert detect_language(path) == language


class TestReadGitHead:
    def test_branch_ref(self, repo):
        assert read_git_head(repo) == (SHA, "feature")

    def test_detached_head(self, tmp_path):
        (tmp_path / ".git").mkdir()
        (tmp_path / ".git" / "HEAD").write_text(SHA + "\n")
        assert read_git_head(tmp_path) == (SHA, None)

    def test_packed_refs(self, tmp_path):
        git = tmp_path / ".git"
        git.mkdir()
        (git / "HEAD").write_text("ref: refs/heads/main\n")
        (git / "packed-refs").write_text(f"# pack-refs with: peeled\n{SHA} refs/heads/main\n")
        assert read_git_head(tmp_path) == (SHA, "main")

    def test_not_a_repository(self, tmp_path):
        assert read_git_head(tmp_path) == ("", None)


class TestFetch:
    async def test_reads_working_tree(self, repo):
        snapshot = await LocalRepositorySource().fetch("42", str(repo))

        assert [f.path for f in snapshot.files] == ["README.md", "src/app.py"]
        assert snapshot.files[1].language == "python"
        assert snapshot.files[1].content.startswith("def app")
        assert snapshot.revision_id == SHA
        assert snapshot.branch == "feature"

    async def test_relative_to_root(self, repo):
        source = LocalRepositorySource(repo.parent)
        snapshot = await source.fetch("42", "project")
        assert len(snapshot.files) == 2

    async def test_requested_revision_wins(self, repo):
        snapshot = await LocalRepositorySource().fetch("42", str(repo), revision="cafebabe")
        assert snapshot.revision_id == "cafebabe"

    async def test_skips_large_files(self, repo):
        (repo / "big.py").write_text("x = 1\n" * 100)
        snapshot = await LocalRepositorySource(max_file_size=50).fetch("42", str(repo))
        assert "big.py" not in [f.path for f in snapshot.files]

    async def test_default_branch_without_git(self, tmp_path):
        (tmp_path / "a.py").write_text("a = 1\n")
        snapshot = await LocalRepositorySource(default_branch="trunk").fetch("1", str(tmp_path))
        assert snapshot.branch == "trunk"
        assert snapshot.revision_id == ""

    async def test_missing_directory(self, tmp_path):
        with pytest.raises(ContentSourceError, match="not found"):
            await LocalRepositorySource().fetch("42", str(tmp_path / "nope"))
