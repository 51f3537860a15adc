#!/usr/bin/env python3
"""
Cola Package Action - Manifest Module

Reading, validating and locating command launcher package manifests.

A package is a directory that directly contains a ``manifest.mf`` file. The
manifest may be written as JSON or YAML. JSON is tried first, so JSON that
YAML 1.1 cannot read (tab indentation, for one) is still accepted:

    name: my-plugin
    version: 1.0.0
    commands:
      - name: hello
        type: executable
        executable: "{{.PackageDir}}/bin/hello"
    metadata:
      author: Jane Doe
      license: MIT
      repository: https://github.com/acme/my-plugin

The legacy command launcher keys (pkgName, cmds, _metadata) are accepted too.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from cpa_common import (
    MANIFEST_FILENAME,
    ActionLogger,
    ManifestReadError,
    PackagesDirectoryError,
    ValidationFailure,
    is_auto_detect,
)

# =============================================================================
# Validation Patterns
# =============================================================================

# Package and command names: lowercase alphanumeric words joined by single hyphens
NAME_PATTERN = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")

# Strict semantic version: MAJOR.MINOR.PATCH[-PRERELEASE], no leading zeros, no build metadata
_SEMVER_IDENT = r"(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
SEMVER_PATTERN = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)" rf"(?:-{_SEMVER_IDENT}(?:\.{_SEMVER_IDENT})*)?$"
)

VALID_COMMAND_TYPES = ("executable", "alias", "group")

# Archive file names: <name>-<version>.pkg
ARCHIVE_NAME_PATTERN = re.compile(r"^(.+)-(\d+\.\d+\.\d+.*)$")


# =============================================================================
# Manifest Model
# =============================================================================


def _text(value: Any) -> str:
    """Coerce a scalar manifest value to str ('' for missing)."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _optional_text(value: Any) -> str | None:
    return None if value is None else _text(value)


def _first(data: dict[str, Any], *keys: str) -> Any:
    """Value of the first key present in data (current key first, legacy keys after)."""
    for key in keys:
        if key in data:
            return data[key]
    return None


def _loose_list(value: Any) -> list[Any]:
    """Free-form list field: a scalar becomes a one-item list, a mapping is dropped."""
    if value is None or isinstance(value, dict):
        return []
    if isinstance(value, list):
        return value
    return [value]


def _list(value: Any, what: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{what}' must be a list, got {type(value).__name__}")
    return value


def _mapping(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"{what} must be a mapping, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class Flag:
    """A declared option of a command."""

    name: str
    short: str | None = None
    type: str = "string"
    description: str | None = None
    required: bool = False
    default: Any = None

    @classmethod
    def from_dict(cls, data: Any, what: str = "flag") -> Flag:
        data = _mapping(data, what)
        return cls(
            name=_text(data.get("name")),
            short=_optional_text(data.get("short")),
            type=_text(data.get("type")) or "string",
            description=_optional_text(_first(data, "description", "desc")),
            required=data.get("required") is True,
            default=data.get("default"),
        )


@dataclass(frozen=True)
class Command:
    """One invocable entry point of a package."""

    name: str
    type: str
    executable: str | None = None
    short: str | None = None
    long: str | None = None
    group: str | None = None
    args: list[str] = field(default_factory=list)
    flags: list[Flag] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any, what: str = "command") -> Command:
        data = _mapping(data, what)
        return cls(
            name=_text(data.get("name")),
            type=_text(data.get("type")),
            executable=_optional_text(data.get("executable")),
            short=_optional_text(data.get("short")),
            long=_optional_text(data.get("long")),
            group=_optional_text(data.get("group")),
            args=[_text(arg) for arg in _loose_list(data.get("args"))],
            flags=[
                Flag.from_dict(flag, f"{what} flag at index {i}")
                for i, flag in enumerate(_list(data.get("flags"), "flags"))
            ],
        )


@dataclass(frozen=True)
class Metadata:
    """Optional descriptive fields of a package."""

    author: str | None = None
    license: str | None = None
    homepage: str | None = None
    repository: str | None = None
    description: str | None = None
    tags: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> Metadata:
        data = _mapping(data, "metadata")
        return cls(
            author=_optional_text(data.get("author")),
            license=_optional_text(data.get("license")),
            homepage=_optional_text(data.get("homepage")),
            repository=_optional_text(data.get("repository")),
            description=_optional_text(data.get("description")),
            tags=[_text(tag) for tag in _loose_list(data.get("tags"))],
        )


@dataclass(frozen=True)
class Manifest:
    """Parsed manifest.mf of one package."""

    name: str
    version: str
    commands: list[Command] = field(default_factory=list)
    metadata: Metadata | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Manifest:
        """Build a typed manifest from a parsed document.

        Raises:
            ValueError: if the document shape cannot be mapped onto the model
        """
        data = _mapping(data, "Manifest")
        raw_metadata = _first(data, "metadata", "_metadata")
        return cls(
            name=_text(_first(data, "name", "pkgName")),
            version=_text(data.get("version")),
            commands=[
                Command.from_dict(cmd, f"Command at index {i}")
                for i, cmd in enumerate(_list(_first(data, "commands", "cmds"), "commands"))
            ],
            # Metadata problems only ever produce warnings
            metadata=Metadata.from_dict(raw_metadata) if isinstance(raw_metadata, dict) else None,
        )


# =============================================================================
# Validation Result
# =============================================================================


@dataclass
class ValidationResult:
    """Outcome of validating one manifest.

    Errors make the manifest invalid; warnings never do.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def error(self, message: str) -> None:
        self.errors.append(message)

    def warning(self, message: str) -> None:
        self.warnings.append(message)

    def raise_for_errors(self, package: str) -> None:
        """Raise ValidationFailure when the manifest has errors."""
        if self.errors:
            raise ValidationFailure(package, self.errors)

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for JSON serialization."""
        return {"valid": self.valid, "errors": list(self.errors), "warnings": list(self.warnings)}


# =============================================================================
# Reader
# =============================================================================


def read_manifest(package_dir: Path | str) -> Manifest:
    """Read and parse <package_dir>/manifest.mf.

    Raises:
        ManifestReadError: file missing or unreadable, YAML/JSON syntax error,
            empty document, or a document that does not fit the manifest model
    """
    manifest_path = Path(package_dir) / MANIFEST_FILENAME
    try:
        content = manifest_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestReadError(manifest_path, str(e)) from e

    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ManifestReadError(manifest_path, str(e)) from e

    if not data:
        raise ManifestReadError(manifest_path, "Empty manifest file")

    try:
        return Manifest.from_dict(data)
    except ValueError as e:
        raise ManifestReadError(manifest_path, str(e)) from e


# =============================================================================
# Validator
# =============================================================================


def validate_manifest(manifest: Manifest) -> ValidationResult:
    """Apply the manifest rules and collect every error and warning.

    Rules run in a fixed order so messages are reproducible; nothing stops
    early, so a manifest with three defects yields three errors.
    """
    result = ValidationResult()

    if not manifest.name:
        result.error("Missing required field: name")

    # Only one version error can fire for a given value
    version = manifest.version
    if not version:
        result.error("Missing required field: version")
    elif version.startswith("v"):
        result.error(
            f"Invalid version format: {version}. Remove 'v' prefix (e.g., use 1.0.0 instead of v1.0.0)"
        )
    elif not SEMVER_PATTERN.match(version):
        result.error(f"Invalid version format: {version}. Must be valid semver (e.g., 1.0.0)")

    if not manifest.commands:
        result.error("Missing required field: commands (must have at least one)")

    for index, command in enumerate(manifest.commands):
        if not command.name:
            result.error(f"Command at index {index} is missing 'name' field")

        label = command.name or f"#{index}"
        if not command.type:
            result.error(f"Command '{label}' is missing 'type' field")
        elif command.type not in VALID_COMMAND_TYPES:
            result.error(f"Command '{label}' has invalid type: {command.type}")

        if command.name and not NAME_PATTERN.match(command.name):
            result.error(
                f"Command name '{command.name}' contains invalid characters. "
                "Use lowercase letters, numbers, and hyphens only."
            )

    metadata = manifest.metadata or Metadata()
    if not metadata.author:
        result.warning("Missing recommended field: metadata.author")
    if not metadata.license:
        result.warning("Missing recommended field: metadata.license")
    if not metadata.repository:
        result.warning("Missing recommended field: metadata.repository")

    return result


# =============================================================================
# Package Directory Resolver
# =============================================================================


def has_manifest(directory: Path) -> bool:
    """True when the directory directly contains a manifest.mf file."""
    return (directory / MANIFEST_FILENAME).is_file()


def _scan_subdirectories(parent: Path, log: ActionLogger) -> list[Path]:
    """Immediate subdirectories of parent that contain a manifest.mf.

    Entries are visited in name order. Plain files and symlinked directories
    are skipped; manifests nested deeper than one level are not discovered.
    """
    try:
        entries = sorted(parent.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise PackagesDirectoryError(f"Failed to read packages directory {parent}: {e}") from e

    found: list[Path] = []
    for entry in entries:
        if entry.is_symlink() or not entry.is_dir():
            continue
        if has_manifest(entry):
            found.append(entry)
        else:
            log.debug(f"Skipping {entry.name} - no {MANIFEST_FILENAME} found")
    return found


def find_package_directories(
    packages_dir: str,
    root: Path | str | None = None,
    log: ActionLogger | None = None,
) -> list[Path]:
    """Resolve which directories hold packages.

    Precedence, first match wins:
      1. packages_dir names a directory: its subdirectories with a manifest.mf
      2. packages_dir is '' or '.', and root has a manifest.mf: [root]
      3. otherwise: root's subdirectories with a manifest.mf

    Args:
        packages_dir: Configured packages directory ('' or '.' auto-detects)
        root: Directory treated as the working directory (default: '.')
        log: Logger for mode and skip messages

    Returns:
        Package directories in name order; empty when nothing was found
        (the caller decides that this is fatal).
    """
    log = log or ActionLogger()
    base = Path(root) if root is not None else Path(".")

    if not is_auto_detect(packages_dir):
        log.info(f"📦 Multi-package mode: scanning {packages_dir}")
        return _scan_subdirectories(base / packages_dir, log)

    if has_manifest(base):
        log.info(f"📦 Single-package mode detected ({MANIFEST_FILENAME} found in root)")
        return [base]

    log.info("📦 Multi-package mode: scanning subdirectories")
    return _scan_subdirectories(base, log)


# =============================================================================
# Naming Helpers
# =============================================================================


def sanitize_name(name: str) -> str:
    """Lowercase a name and replace anything outside [a-z0-9-] with '-'."""
    return re.sub(r"[^a-z0-9-]", "-", name.lower())


def archive_name(manifest: Manifest) -> str:
    return f"{manifest.name}-{manifest.version}.pkg"


def parse_package_archive_name(filename: str) -> tuple[str, str] | None:
    """Split '<name>-<version>.pkg' into (name, version), or None if it does not match."""
    basename = filename.replace(".pkg", "", 1)
    match = ARCHIVE_NAME_PATTERN.match(basename)
    if not match:
        return None
    return match.group(1), match.group(2)
