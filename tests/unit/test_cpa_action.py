#!/usr/bin/env python3
"""Tests for cpa_action.py - the full pipeline with fake collaborators."""

import io
import json
from pathlib import Path

import pytest

import cpa_action
from cpa_action import main, run_action
from cpa_common import ActionConfig, ActionError, ActionLogger, ActionOutputs, ConfigError

GOOD = {
    "name": "plugin",
    "version": "1.0.0",
    "commands": [{"name": "plugin", "type": "executable"}],
    "metadata": {"author": "Jane", "license": "MIT", "repository": "https://github.com/acme/tools"},
}


def write_package(directory: Path, manifest: dict) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "manifest.mf").write_text(json.dumps(manifest), encoding="utf-8")
    return directory


def quiet_logger() -> ActionLogger:
    return ActionLogger(stream=io.StringIO(), color=False)


class TestRunAction:
    """Step ordering and gating."""

    def test_validate_only_creates_nothing(self, tmp_path: Path) -> None:
        write_package(tmp_path, GOOD)
        outputs = ActionOutputs()

        packages = run_action(ActionConfig(validate_only=True), log=quiet_logger(), outputs=outputs, root=tmp_path)

        assert packages == []
        assert not (tmp_path / "build").exists()
        assert outputs.values["valid-count"] == "1"

    def test_invalid_package_fails_before_packaging(self, tmp_path: Path) -> None:
        write_package(tmp_path / "a", GOOD)
        write_package(tmp_path / "b", {**GOOD, "version": "v2.0.0"})

        with pytest.raises(ActionError, match=r"Validation failed for 1 package\(s\): b"):
            run_action(ActionConfig(), log=quiet_logger(), root=tmp_path)
        assert not (tmp_path / "build").exists()

    def test_zip_format_packages_without_releases(self, tmp_path: Path) -> None:
        write_package(tmp_path, GOOD)
        outputs = ActionOutputs()

        packages = run_action(ActionConfig(), log=quiet_logger(), outputs=outputs, root=tmp_path)

        assert [p.archive_path.name for p in packages] == ["plugin-1.0.0.pkg"]
        assert (tmp_path / "build" / "packages" / "plugin-1.0.0.pkg").is_file()
        assert outputs.values["package-count"] == "1"

    def test_invalid_format(self, tmp_path: Path) -> None:
        write_package(tmp_path, GOOD)
        with pytest.raises(ConfigError):
            run_action(ActionConfig(package_format="tar"), log=quiet_logger(), root=tmp_path)

    def test_oci_requires_credentials(self, tmp_path: Path) -> None:
        write_package(tmp_path, GOOD)
        with pytest.raises(ConfigError, match="OCI registry credentials required"):
            run_action(ActionConfig(package_format="oci"), log=quiet_logger(), root=tmp_path)

    def test_oci_push_receives_output_directory(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        write_package(tmp_path, GOOD)
        calls = []
        monkeypatch.setattr(cpa_action, "push_to_oci", lambda *args, **kwargs: calls.append((args, kwargs)))
        config = ActionConfig(
            package_format="both",
            oci_username="bot",
            oci_token="tok",
            packages_namespace="acme/tools",
            github_repository="acme/tools",
        )

        run_action(config, log=quiet_logger(), root=tmp_path)

        args, kwargs = calls[0]
        assert args == (tmp_path / "build/packages", "ghcr.io", "acme/tools", "bot", "tok")
        assert kwargs["repository"] == "acme/tools"

    def test_releases_need_repository(self, tmp_path: Path) -> None:
        write_package(tmp_path, GOOD)
        with pytest.raises(ConfigError, match="GITHUB_REPOSITORY"):
            run_action(ActionConfig(github_token="t"), log=quiet_logger(), root=tmp_path)

    def test_releases_run_with_token(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        write_package(tmp_path, GOOD)
        calls = []
        monkeypatch.setattr(cpa_action, "create_plugin_releases", lambda *args, **kwargs: calls.append(args))

        run_action(
            ActionConfig(github_token="t", github_repository="acme/tools"),
            log=quiet_logger(),
            root=tmp_path,
        )

        packages, token, repository = calls[0]
        assert [p.name for p in packages] == ["plugin"]
        assert (token, repository) == ("t", "acme/tools")


class TestMain:
    """Entry point exit codes."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for key in ("GITHUB_OUTPUT", "GITHUB_REPOSITORY", "INPUT_GITHUB_TOKEN", "INPUT_PACKAGE_FORMAT"):
            monkeypatch.delenv(key, raising=False)

    def test_success(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        write_package(tmp_path / "packages" / "plugin", GOOD)
        assert main(["--packages-directory", "packages", "--validate-only", "--root", str(tmp_path)]) == 0
        assert "Validation completed" in capsys.readouterr().out

    def test_failure_is_reported_as_error(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["--root", str(tmp_path)]) == 1
        assert "::error::No packages found" in capsys.readouterr().out

    def test_outputs_written(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        write_package(tmp_path, GOOD)
        output_file = tmp_path / "github_output"
        monkeypatch.setenv("GITHUB_OUTPUT", str(output_file))
        monkeypatch.setenv("INPUT_VALIDATE_ONLY", "true")

        assert main(["--root", str(tmp_path)]) == 0
        assert "valid-count=1" in output_file.read_text().splitlines()
