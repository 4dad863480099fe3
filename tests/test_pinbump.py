"""Tests for the command line: argument parsing, rendering and exit codes."""

import json
import pytest
import requests
from unittest.mock import patch

import pinbump
from dependency import Dependency, RepositoryHandle, SourceKind, UpdateOutcome
from updater_config import UpdaterConfig, save_config
from tests.conftest import SCRIPT_A


def _dep(name, current, latest):
    return Dependency(
        name=name, current_version=current, latest_version=latest,
        file="/srv/ns8-demo/build-images.sh", source_kind=SourceKind.IMAGE_REFERENCE,
    )


@pytest.fixture
def base_dir(tmp_path):
    base = tmp_path / "apps"
    repo = base / "ns8-demo"
    (repo / ".git").mkdir(parents=True)
    (repo / "build-images.sh").write_text(SCRIPT_A)
    return base


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.json"
    save_config(UpdaterConfig.default(), str(path))
    return path


class TestRenderOutcomes:

    def test_success_with_updates(self):
        outcome = UpdateOutcome(
            repository="ns8-demo",
            dependencies=[_dep("postgres", "15", "16")],
            success=True,
            message="Updated 1 dependencies and pushed to branch updater-20261019-120000",
            branch="updater-20261019-120000",
            commit="abc123",
            state="done",
        )
        text = pinbump.render_outcomes([outcome])
        assert "[OK] ns8-demo: Updated 1 dependencies" in text
        assert "branch: updater-20261019-120000" in text
        assert "commit: abc123" in text
        assert "postgres: 15 -> 16" in text
        assert text.splitlines()[-1] == "1 repositories, 1 outdated dependencies, 0 failed"

    def test_failure_and_up_to_date(self):
        outcomes = [
            UpdateOutcome(repository="ns8-a", success=False, message="Failed to push", state="failed"),
            UpdateOutcome(repository="ns8-b", dependencies=[_dep("redis", "7", "7")],
                          success=True, message="Found 1 dependencies", state="diffing"),
        ]
        text = pinbump.render_outcomes(outcomes)
        assert "[FAILED] ns8-a: Failed to push" in text
        assert "redis: 7 (up to date)" in text
        assert text.endswith("2 repositories, 0 outdated dependencies, 1 failed")

    def test_render_repositories_marks_eligible(self):
        config = UpdaterConfig.from_dict({"exclude_repos": ["ns8-old"]})
        repos = [RepositoryHandle("ns8-demo", "/x", "git@host:ns8-demo.git"),
                 RepositoryHandle("ns8-old", "/y")]
        assert pinbump.render_repositories(repos, config).splitlines() == [
            "* ns8-demo  git@host:ns8-demo.git",
            "  ns8-old",
        ]


class TestParser:

    def test_update_arguments(self):
        args = pinbump.build_parser().parse_args(
            ["update", "ns8-demo", "--branch", "deps", "--only", "postgres", "redis"]
        )
        assert args.repository == "ns8-demo"
        assert args.branch == "deps"
        assert args.only == ["postgres", "redis"]
        assert args.func is pinbump.cmd_update

    def test_environment_defaults(self, monkeypatch):
        monkeypatch.setenv("PINBUMP_BASE_DIR", "/srv/apps")
        monkeypatch.setenv("DRY_RUN", "true")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        args = pinbump.build_parser().parse_args(["scan"])
        assert args.base_dir == "/srv/apps"
        assert args.dry_run is True
        assert args.log_level == "DEBUG"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            pinbump.build_parser().parse_args([])


class TestMain:

    @patch("registry_api.requests.get", side_effect=requests.ConnectionError("offline"))
    def test_json_scan_offline(self, mock_get, base_dir, config_path, capsys):
        code = pinbump.main(["--config", str(config_path), "--base-dir", str(base_dir), "json"])

        assert code == 0
        data = json.loads(capsys.readouterr().out)
        assert data[0]["repository"] == "ns8-demo"
        assert [d["name"] for d in data[0]["dependencies"]] == [
            "demo_version", "postgres", "redis", "nginx",
        ]
        assert all(d["latest_version"] == d["current_version"] for d in data[0]["dependencies"])

    def test_invalid_config_exits_1(self, tmp_path, base_dir):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"git": {"author_email": "nope"}}))
        assert pinbump.main(["--config", str(path), "--base-dir", str(base_dir), "scan"]) == 1

    def test_unknown_repository_exits_1(self, base_dir, config_path):
        argv = ["--config", str(config_path), "--base-dir", str(base_dir), "update", "ns8-missing"]
        assert pinbump.main(argv) == 1

    def test_failed_update_exits_1(self, base_dir, config_path):
        failed = UpdateOutcome(repository="ns8-demo", success=False, message="boom", state="failed")
        with patch("pinbump.RepositoryWorkflow") as workflow_cls:
            workflow_cls.return_value.update_all.return_value = [failed]
            code = pinbump.main(["--config", str(config_path), "--base-dir", str(base_dir), "update"])
        assert code == 1
        repos = workflow_cls.return_value.update_all.call_args.args[0]
        assert [r.name for r in repos] == ["ns8-demo"]

    def test_author_override(self, base_dir, config_path):
        with patch("pinbump.RepositoryWorkflow") as workflow_cls:
            workflow_cls.return_value.update_all.return_value = []
            pinbump.main(["--config", str(config_path), "--base-dir", str(base_dir),
                          "--author-name", "Release Bot", "--author-email", "release@example.com",
                          "update", "--branch", "deps"])
        config = workflow_cls.call_args.args[0]
        assert config.git.author_name == "Release Bot"
        assert config.git.author_email == "release@example.com"
        assert config.git.default_branch == "deps"

    def test_config_init_and_show(self, tmp_path, capsys):
        path = tmp_path / "conf" / "config.json"
        assert pinbump.main(["--config", str(path), "config", "init"]) == 0
        assert path.exists()
        assert pinbump.main(["--config", str(path), "config", "init"]) == 1

        capsys.readouterr()
        assert pinbump.main(["--config", str(path), "config", "show"]) == 0
        shown = json.loads(capsys.readouterr().out)
        assert shown["repo_patterns"] == ["ns8-*"]

    def test_list(self, base_dir, config_path, capsys):
        assert pinbump.main(["--config", str(config_path), "--base-dir", str(base_dir), "list"]) == 0
        assert capsys.readouterr().out.strip() == "* ns8-demo"
