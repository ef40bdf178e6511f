"""Tests for configuration loading and cache root resolution."""

from pathlib import Path

import pytest

from buffered_undo.config import UndoConfig, load_undo_config
from buffered_undo.constants import CACHE_DIR_ENV, DEFAULT_CONTEXT_LINES
from buffered_undo.storage import make_session_storage
from buffered_undo.storage.factory import resolve_cache_dir


def _write_config(root: Path, text: str) -> None:
    cfg_dir = root / ".buffered-undo"
    cfg_dir.mkdir()
    (cfg_dir / "config.yaml").write_text(text)


class TestLoadUndoConfig:
    def test_defaults_without_file(self, tmp_path):
        config = load_undo_config(tmp_path)
        assert config == UndoConfig()
        assert config.context_lines == DEFAULT_CONTEXT_LINES
        assert config.reuse_sandbox is True

    def test_reads_yaml(self, tmp_path):
        _write_config(tmp_path, "cache_dir: /tmp/undo-cache\ncontext_lines: 2\nignore:\n  - '*.tmp'\nreuse_sandbox: false\n")
        config = load_undo_config(tmp_path)

        assert config.cache_dir == Path("/tmp/undo-cache")
        assert config.context_lines == 2
        assert config.extra_ignores == ["*.tmp"]
        assert config.reuse_sandbox is False

    def test_invalid_yaml_falls_back(self, tmp_path):
        _write_config(tmp_path, "ignore: [unclosed\n")
        assert load_undo_config(tmp_path) == UndoConfig()


class TestCacheDir:
    def test_explicit_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CACHE_DIR_ENV, str(tmp_path / "env"))
        assert resolve_cache_dir(tmp_path / "explicit") == tmp_path / "explicit"

    def test_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CACHE_DIR_ENV, str(tmp_path / "env"))
        assert resolve_cache_dir() == tmp_path / "env"

    def test_session_layout(self, cache_dir):
        storage = make_session_storage("abc", cache_dir)
        assert storage.root == cache_dir / "abc"
        assert storage.sandbox_root == cache_dir / "abc" / "sandbox"
        assert storage.tool_output_dir == cache_dir / "abc" / "diffs"
        assert storage.manifests.base_path == cache_dir / "abc" / "base.json"

    @pytest.mark.parametrize("bad", ["", "..", "a/b"])
    def test_invalid_session_id(self, cache_dir, bad):
        with pytest.raises(ValueError):
            make_session_storage(bad, cache_dir)

    def test_destroy(self, storage):
        storage.blobs.put(b"x")
        storage.destroy()
        assert not storage.root.exists()
