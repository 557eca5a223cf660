"""Tests for the hubfetch command line.

Library calls are replaced with recorders so no network is used; the
library itself is covered by the other test modules.
"""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from hubfetch import cli
from hubfetch.cli import app
from hubfetch.config import HubSettings, get_settings, set_settings
from hubfetch.errors import NotFoundOfflineError
from hubfetch.local_cache import HubCache


@pytest.fixture
def runner():
    """Create a CliRunner for in-process testing."""
    return CliRunner()


@pytest.fixture
def recorded(monkeypatch, tmp_path):
    """Replace hub_download/snapshot_download and record their arguments."""
    calls = {}

    def fake_download(repo_id, filename, **kwargs):
        calls["download"] = (repo_id, filename, kwargs)
        if kwargs.get("progress"):
            kwargs["progress"](1.0)
        return tmp_path / "snapshots" / "abc" / filename

    def fake_snapshot(repo_id, **kwargs):
        calls["snapshot"] = (repo_id, kwargs)
        kwargs["progress"].report("config.json", 100)
        return tmp_path / "snapshots" / "abc"

    monkeypatch.setattr(cli, "hub_download", fake_download)
    monkeypatch.setattr(cli, "snapshot_download", fake_snapshot)
    return calls


class TestDownloadCommand:

    def test_prints_path(self, runner, recorded, tmp_path):
        result = runner.invoke(app, ["download", "openai/clip-vit-base-patch16", "config.json"])

        assert result.exit_code == 0, result.output
        assert str(tmp_path / "snapshots" / "abc" / "config.json") in result.output
        repo_id, filename, kwargs = recorded["download"]
        assert repo_id == "openai/clip-vit-base-patch16"
        assert filename == "config.json"
        assert kwargs["local_dir_use_symlinks"] == "auto"
        assert kwargs["local_files_only"] is False

    def test_options(self, runner, recorded, tmp_path):
        result = runner.invoke(app, [
            "download", "a/b", "f.bin",
            "--revision", "v1",
            "--local-dir", str(tmp_path / "work"),
            "--symlinks", "never",
            "--offline",
            "--force",
        ])

        assert result.exit_code == 0, result.output
        _, _, kwargs = recorded["download"]
        assert kwargs["revision"] == "v1"
        assert kwargs["local_dir"] == tmp_path / "work"
        assert kwargs["local_dir_use_symlinks"] is False
        assert kwargs["local_files_only"] is True
        assert kwargs["force_download"] is True

    def test_token_from_env(self, runner, recorded, monkeypatch):
        monkeypatch.setenv("HUBFETCH_TOKEN", "secret")
        result = runner.invoke(app, ["download", "a/b", "f"])
        assert result.exit_code == 0, result.output
        assert recorded["download"][2]["token"] == "secret"

    def test_invalid_symlink_mode(self, runner, recorded):
        result = runner.invoke(app, ["download", "a/b", "f", "--symlinks", "sometimes"])
        assert result.exit_code == 2
        assert "download" not in recorded

    def test_library_error(self, runner, monkeypatch):
        def fail(*args, **kwargs):
            raise NotFoundOfflineError("a/b/f@main")

        monkeypatch.setattr(cli, "hub_download", fail)
        result = runner.invoke(app, ["download", "a/b", "f", "--offline"])

        assert result.exit_code == 1
        assert "a/b/f@main" in result.output


class TestSnapshotCommand:

    def test_patterns_and_workers(self, runner, recorded, tmp_path):
        result = runner.invoke(app, [
            "snapshot", "a/b",
            "--include", "*.json",
            "--include", "*.txt",
            "--exclude", "onnx/",
            "-j", "2",
        ])

        assert result.exit_code == 0, result.output
        assert str(tmp_path / "snapshots" / "abc") in result.output
        repo_id, kwargs = recorded["snapshot"]
        assert repo_id == "a/b"
        assert kwargs["allow_patterns"] == ["*.json", "*.txt"]
        assert kwargs["ignore_patterns"] == ["onnx/"]
        assert kwargs["max_workers"] == 2

    def test_no_patterns(self, runner, recorded):
        result = runner.invoke(app, ["snapshot", "a/b"])
        assert result.exit_code == 0, result.output
        _, kwargs = recorded["snapshot"]
        assert kwargs["allow_patterns"] is None
        assert kwargs["ignore_patterns"] is None
        assert kwargs["max_workers"] == 8


class TestGlobalOptions:

    def test_config_file(self, runner, recorded, tmp_path):
        config = tmp_path / "hubfetch.yaml"
        config.write_text("endpoint: https://mirror.test\n")

        result = runner.invoke(app, ["--config", str(config), "download", "a/b", "f"])

        assert result.exit_code == 0, result.output
        assert get_settings().endpoint == "https://mirror.test"

    def test_missing_config_file(self, runner, recorded, tmp_path):
        result = runner.invoke(app, ["--config", str(tmp_path / "nope.yaml"), "download", "a/b", "f"])
        assert result.exit_code == 1
        assert "download" not in recorded

    def test_verbose(self, runner, recorded):
        result = runner.invoke(app, ["--verbose", "download", "a/b", "f"])
        assert result.exit_code == 0, result.output


class TestCleanCommand:

    def test_removes_incomplete_files(self, runner, tmp_path, capability):
        cache = HubCache(tmp_path / "cache", "a/b", capability=capability)
        with cache.temp_file("tag1") as (f, leftover):
            f.write(b"partial")
        with cache.temp_file("tag2") as (f, tmppath):
            f.write(b"done")
        blob = cache.commit(tmppath, "tag2")

        result = runner.invoke(app, ["clean", "a/b", "--cache-dir", str(tmp_path / "cache")])

        assert result.exit_code == 0, result.output
        assert "Removed 1 incomplete" in result.output
        assert not leftover.exists()
        assert blob.read_bytes() == b"done"

    def test_cache_dir_from_settings(self, runner, tmp_path):
        set_settings(HubSettings(cache_dir=tmp_path / "cache"))
        cache = HubCache(tmp_path / "cache", "a/b")
        with cache.temp_file("tag1") as (f, leftover):
            f.write(b"partial")

        result = runner.invoke(app, ["clean", "a/b"])

        assert result.exit_code == 0, result.output
        assert not leftover.exists()

    def test_nothing_cached(self, runner, tmp_path):
        result = runner.invoke(app, ["clean", "a/b", "--cache-dir", str(tmp_path)])
        assert result.exit_code == 0, result.output
        assert "Removed 0 incomplete" in result.output
