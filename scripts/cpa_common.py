#!/usr/bin/env python3
"""
Cola Package Action - Common Module

Shared infrastructure for every step of the package action.
This module contains:
- Exception hierarchy (ActionError and the per-step errors)
- ActionLogger (workflow-command aware console logger)
- ActionOutputs (step outputs written to $GITHUB_OUTPUT)
- ActionConfig (typed action inputs, built once from the environment)
- Utility functions (subprocess runner, byte formatting, secret masking)

All step modules import from here so logging and error reporting stay consistent.
"""

from __future__ import annotations

import os
import subprocess
import sys
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

# =============================================================================
# Constants
# =============================================================================

MANIFEST_FILENAME = "manifest.mf"
ARCHIVE_SUFFIX = ".pkg"
DEFAULT_OUTPUT_DIRECTORY = "build/packages"
DEFAULT_OCI_REGISTRY = "ghcr.io"

# Accepted values for the package-format input
PACKAGE_FORMATS = ("zip", "oci", "both")

# Values of packages-directory that mean "auto-detect from the working directory"
AUTO_DETECT_VALUES = ("", ".")

# =============================================================================
# Exceptions
# =============================================================================


class ActionError(Exception):
    """Base class for every failure that should fail the action run."""


class ConfigError(ActionError):
    """Missing or invalid action input."""


class PackagesDirectoryError(ActionError):
    """The configured packages directory could not be listed."""


class NoPackagesFoundError(ActionError):
    """No directory containing a manifest.mf was found."""


class ManifestReadError(ActionError):
    """A manifest.mf file is missing, unreadable or unparseable."""

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Failed to read manifest at {path}: {reason}")


class ValidationFailure(ActionError):
    """A manifest broke one or more validation rules."""

    def __init__(self, package: str, errors: list[str]) -> None:
        self.package = package
        self.errors = list(errors)
        super().__init__(f"Manifest for {package} has {len(self.errors)} error(s)")


class PackagingError(ActionError):
    """Archive creation failed."""


class RegistryError(ActionError):
    """Pushing to the OCI registry failed."""


class ReleaseError(ActionError):
    """Creating a GitHub release or its git tag failed."""


class GitHubAPIError(ActionError):
    """The GitHub REST API answered with an unexpected status."""

    def __init__(self, status: int | None, message: str) -> None:
        self.status = status
        super().__init__(message if status is None else f"GitHub API error ({status}): {message}")


# =============================================================================
# Console Logging (GitHub Actions workflow commands)
# =============================================================================

# ANSI color codes
COLORS = {
    "INFO": "\033[36m",  # Cyan
    "OK": "\033[32m",  # Green
    "WARN": "\033[33m",  # Yellow
    "ERR": "\033[31m",  # Red
    "BOLD": "\033[1m",
    "RESET": "\033[0m",
}


def escape_command_data(message: str) -> str:
    """Escape a message so it survives inside a ::command:: line."""
    return message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


class ActionLogger:
    """Logger for action steps.

    Plain messages go to the stream with a colored level tag. Warnings, errors
    and debug lines use workflow commands so the runner turns them into
    annotations. Pass an instance explicitly into every step; tests use one
    backed by io.StringIO.
    """

    def __init__(
        self,
        stream: TextIO | None = None,
        debug_enabled: bool | None = None,
        color: bool | None = None,
    ) -> None:
        self.stream = stream if stream is not None else sys.stdout
        if debug_enabled is None:
            debug_enabled = os.environ.get("RUNNER_DEBUG") == "1"
        if color is None:
            color = "NO_COLOR" not in os.environ
        self.debug_enabled = debug_enabled
        self.color = color

    def _emit(self, line: str) -> None:
        print(line, file=self.stream, flush=True)

    def _tag(self, tag: str) -> str:
        if not self.color:
            return f"[{tag}]"
        return f"{COLORS[tag]}[{tag}]{COLORS['RESET']}"

    def info(self, message: str) -> None:
        self._emit(f"{self._tag('INFO')} {message}")

    def success(self, message: str) -> None:
        self._emit(f"{self._tag('OK')}   {message}")

    def warning(self, message: str) -> None:
        self._emit(f"::warning::{escape_command_data(message)}")

    def error(self, message: str | BaseException) -> None:
        self._emit(f"::error::{escape_command_data(str(message))}")

    def debug(self, message: str) -> None:
        if self.debug_enabled:
            self._emit(f"::debug::{escape_command_data(message)}")

    def header(self, message: str) -> None:
        separator = "=" * 50
        self._emit("")
        self._emit(separator)
        self._emit(message)
        self._emit(separator)

    def section(self, message: str) -> None:
        self._emit("")
        self._emit(message)
        self._emit("=" * len(message))

    def start_group(self, name: str) -> None:
        self._emit(f"::group::{escape_command_data(name)}")

    def end_group(self) -> None:
        self._emit("::endgroup::")

    @contextmanager
    def group(self, name: str) -> Iterator[None]:
        """Fold everything logged inside the block under one collapsible group."""
        self.start_group(name)
        try:
            yield
        finally:
            self.end_group()

    def mask(self, secret: str) -> None:
        """Ask the runner to redact a secret from all later log lines."""
        if secret:
            self._emit(f"::add-mask::{escape_command_data(secret)}")


# =============================================================================
# Step Outputs
# =============================================================================


class ActionOutputs:
    """Collects step outputs and appends them to the $GITHUB_OUTPUT file.

    Values are always kept in ``values`` so callers (and tests) can read them
    back even when the action runs outside a workflow.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path) if path else None
        self.values: dict[str, str] = {}

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ActionOutputs:
        env = os.environ if environ is None else environ
        return cls(env.get("GITHUB_OUTPUT") or None)

    def set(self, name: str, value: object) -> None:
        text = value if isinstance(value, str) else str(value)
        self.values[name] = text
        if self.path is None:
            return
        with open(self.path, "a", encoding="utf-8") as f:
            if "\n" in text:
                delimiter = f"ghadelimiter_{uuid.uuid4()}"
                f.write(f"{name}<<{delimiter}\n{text}\n{delimiter}\n")
            else:
                f.write(f"{name}={text}\n")


# =============================================================================
# Configuration
# =============================================================================


def get_input(name: str, environ: Mapping[str, str] | None = None) -> str:
    """Read an action input the way the runner exports it (INPUT_<NAME>).

    The runner keeps hyphens (INPUT_PACKAGES-DIRECTORY); composite actions
    usually export the underscore form, so both are accepted.
    """
    env = os.environ if environ is None else environ
    key = f"INPUT_{name.replace(' ', '_').upper()}"
    value = env.get(key)
    if value is None:
        value = env.get(key.replace("-", "_"), "")
    return value.strip()


def get_bool_input(name: str, environ: Mapping[str, str] | None = None) -> bool:
    """Boolean inputs are true only for the literal string 'true'."""
    return get_input(name, environ) == "true"


@dataclass
class ActionConfig:
    """Action inputs, resolved once at the process boundary."""

    packages_directory: str = ""
    validate_only: bool = False
    package_format: str = "zip"
    oci_registry: str = DEFAULT_OCI_REGISTRY
    packages_namespace: str = ""
    oci_username: str = ""
    oci_token: str = ""
    github_token: str = ""
    github_repository: str = ""
    force_release: bool = False
    output_directory: str = DEFAULT_OUTPUT_DIRECTORY

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ActionConfig:
        env = os.environ if environ is None else environ
        github_repository = env.get("GITHUB_REPOSITORY", "")
        return cls(
            packages_directory=get_input("packages-directory", env),
            validate_only=get_bool_input("validate-only", env),
            package_format=get_input("package-format", env) or "zip",
            oci_registry=get_input("oci-registry", env) or DEFAULT_OCI_REGISTRY,
            packages_namespace=get_input("packages-namespace", env) or github_repository,
            oci_username=get_input("oci-username", env),
            oci_token=get_input("oci-token", env),
            github_token=get_input("github-token", env),
            github_repository=github_repository,
            force_release=get_bool_input("force-release", env),
        )

    @property
    def auto_detect(self) -> bool:
        return is_auto_detect(self.packages_directory)

    @property
    def display_directory(self) -> str:
        return display_packages_directory(self.packages_directory)

    @property
    def needs_zip_packages(self) -> bool:
        return self.package_format in ("zip", "both")

    @property
    def needs_oci_push(self) -> bool:
        return self.package_format in ("oci", "both") and bool(self.oci_registry)

    def validate(self) -> None:
        """Raise ConfigError for inputs the action cannot act on."""
        if self.package_format not in PACKAGE_FORMATS:
            raise ConfigError(
                f"Invalid package-format: {self.package_format}. Expected one of: {', '.join(PACKAGE_FORMATS)}"
            )


def is_auto_detect(packages_directory: str) -> bool:
    """Empty string and '.' both select auto-detection."""
    return packages_directory in AUTO_DETECT_VALUES


def display_packages_directory(packages_directory: str) -> str:
    return "(auto-detect)" if is_auto_detect(packages_directory) else packages_directory


def no_packages_message(packages_directory: str) -> str:
    location = "current directory or subdirectories" if is_auto_detect(packages_directory) else packages_directory
    return (
        f"No packages found in {location}. "
        "Ensure manifest.mf exists in root (single-package) or in subdirectories (multi-package)."
    )


# =============================================================================
# Utility Functions
# =============================================================================


def run(
    cmd: list[str],
    cwd: Path | str | None = None,
    input_text: str | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a subprocess command and return the result (check=False).

    Raises FileNotFoundError when the executable is not installed.
    """
    return subprocess.run(
        cmd,
        cwd=cwd,
        input=input_text,
        capture_output=True,
        text=True,
        check=False,
    )


def format_bytes(size: int) -> str:
    """Human readable size: 0 Bytes, 512 Bytes, 1.5 KB, 2 MB."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {units[index]}"


def mask_secret(secret: str, visible: int = 4) -> str:
    """Keep the first characters of a secret and star out the rest."""
    if len(secret) <= visible:
        return "*" * len(secret)
    return secret[:visible] + "*" * (len(secret) - visible)


def package_label(package_dir: Path) -> str:
    """Name used to report a package directory ('.' reports the directory's own name)."""
    return package_dir.name or package_dir.resolve().name
