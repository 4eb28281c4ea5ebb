"""
Tests for CLI commands.

Uses typer's CliRunner; uploads are replaced with canned results.
"""

import pytest
from typer.testing import CliRunner

from tarlift import __version__
from tarlift.archive.reader import EntryKind
from tarlift.cli.main import app
from tarlift.client.store import ConflictPolicy
from tarlift.config import ENV_VARS
from tarlift.core.scheduler import EntryOutcome, OutcomeStatus, RunResult
from tarlift.exceptions import AuthenticationError, ConflictError

runner = CliRunner()


@pytest.fixture
def store_env(monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("MANTA_URL", "https://store.example.com")
    monkeypatch.setenv("MANTA_USER", "alice")


@pytest.fixture
def archive_file(tmp_path, sample_archive):
    path = tmp_path / "backup.tar"
    path.write_bytes(sample_archive.getvalue())
    return path


@pytest.fixture
def fake_upload(monkeypatch):
    """Replace upload_archive; returns the dict of captured call arguments."""
    calls = {}
    result = RunResult()

    def _upload(archive, destination, config, fail_fast=False):
        calls.update(archive=archive, destination=destination, config=config, fail_fast=fail_fast)
        return calls.get("result", result)

    monkeypatch.setattr("tarlift.cli.upload.upload_archive", _upload)
    return calls


def _ok_result() -> RunResult:
    result = RunResult()
    result.add(EntryOutcome("test.txt", "/alice/stor/b/test.txt", EntryKind.FILE, OutcomeStatus.SUCCEEDED, size=20))
    result.add(EntryOutcome("subdir1/", "/alice/stor/b/subdir1/", EntryKind.DIRECTORY, OutcomeStatus.SUCCEEDED))
    return result


@pytest.mark.unit
class TestVersion:
    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"tarlift version {__version__}" in result.output

    def test_no_command_shows_help(self):
        result = runner.invoke(app, [])
        assert result.exit_code == 0
        assert "upload" in result.output

    def test_upload_help(self):
        result = runner.invoke(app, ["upload", "--help"])
        assert result.exit_code == 0
        assert "--concurrency" in result.output
        assert "--no-overwrite" in result.output


@pytest.mark.unit
class TestUpload:
    def test_success(self, store_env, archive_file, fake_upload):
        fake_upload["result"] = _ok_result()
        result = runner.invoke(app, ["upload", str(archive_file), "/alice/stor/b"])

        assert result.exit_code == 0, result.output
        assert "Files" in result.output
        assert fake_upload["destination"] == "/alice/stor/b"
        assert fake_upload["archive"] == archive_file
        assert fake_upload["config"].concurrency == 4

    def test_flags_reach_config(self, store_env, archive_file, fake_upload):
        result = runner.invoke(
            app,
            [
                "upload",
                str(archive_file),
                "/alice/stor/b",
                "-c",
                "12",
                "--insecure",
                "--strict",
                "--no-overwrite",
                "--fail-fast",
            ],
        )

        assert result.exit_code == 0, result.output
        config = fake_upload["config"]
        assert config.concurrency == 12
        assert config.insecure
        assert config.strict
        assert config.conflict_policy is ConflictPolicy.FAIL
        assert fake_upload["fail_fast"]

    def test_config_file(self, store_env, archive_file, fake_upload, tmp_path):
        config_file = tmp_path / "tarlift.yaml"
        config_file.write_text("concurrency: 3\nmax_retries: 0\n")
        result = runner.invoke(app, ["upload", str(archive_file), "/alice/stor/b", "--config", str(config_file)])

        assert result.exit_code == 0, result.output
        assert fake_upload["config"].concurrency == 3
        assert fake_upload["config"].max_retries == 0

    def test_failed_entries_exit_nonzero(self, store_env, archive_file, fake_upload):
        run = _ok_result()
        error = ConflictError("object already exists", status=412)
        run.add(EntryOutcome("a.txt", "/alice/stor/b/a.txt", EntryKind.FILE, OutcomeStatus.FAILED, error=error))
        fake_upload["result"] = run

        result = runner.invoke(app, ["upload", str(archive_file), "/alice/stor/b"])

        assert result.exit_code == 1
        assert "/alice/stor/b/a.txt: ConflictError: object already exists" in result.output

    def test_fatal_error_is_reported(self, store_env, archive_file, fake_upload):
        run = RunResult(fatal_error=AuthenticationError("signature rejected"))
        fake_upload["result"] = run

        result = runner.invoke(app, ["upload", str(archive_file), "/alice/stor/b"])

        assert result.exit_code == 1
        assert "/alice/stor/b: AuthenticationError: signature rejected" in result.output

    def test_missing_configuration(self, store_env, archive_file, fake_upload, monkeypatch):
        monkeypatch.delenv("MANTA_URL")
        result = runner.invoke(app, ["upload", str(archive_file), "/alice/stor/b"])

        assert result.exit_code == 1
        assert "store URL is not set" in result.output
        assert "archive" not in fake_upload

    def test_upload_error_exits_nonzero(self, store_env, archive_file, monkeypatch):
        def _raise(*args, **kwargs):
            raise AuthenticationError("private key not found: ~/.ssh/id_rsa")

        monkeypatch.setattr("tarlift.cli.upload.upload_archive", _raise)
        result = runner.invoke(app, ["upload", str(archive_file), "/alice/stor/b"])

        assert result.exit_code == 1
        assert "private key not found" in result.output

    def test_os_error_exits_nonzero(self, store_env, archive_file, monkeypatch):
        def _raise(*args, **kwargs):
            raise PermissionError(13, "Permission denied", str(archive_file))

        monkeypatch.setattr("tarlift.cli.upload.upload_archive", _raise)
        result = runner.invoke(app, ["upload", str(archive_file), "/alice/stor/b"])

        assert result.exit_code == 1
        assert "Permission denied" in result.output

    def test_missing_archive(self, store_env, tmp_path, fake_upload):
        result = runner.invoke(app, ["upload", str(tmp_path / "nope.tar"), "/alice/stor/b"])
        assert result.exit_code != 0
        assert "archive" not in fake_upload

    def test_invalid_concurrency(self, store_env, archive_file, fake_upload):
        result = runner.invoke(app, ["upload", str(archive_file), "/alice/stor/b", "-c", "0"])
        assert result.exit_code != 0
        assert "archive" not in fake_upload
