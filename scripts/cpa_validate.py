#!/usr/bin/env python3
"""
Cola Package Action - Manifest Validation Pass

Finds every package directory, reads and validates its manifest.mf, and
reports per-package errors and warnings plus a summary. Every directory is
checked even when an earlier one fails; the pass as a whole fails if any
package is invalid.

Usage:
    python scripts/cpa_validate.py                  # auto-detect from the current directory
    python scripts/cpa_validate.py packages         # multi-package: packages/*/manifest.mf
    python scripts/cpa_validate.py --root repo      # treat repo/ as the working directory
    python scripts/cpa_validate.py --json           # print the result as JSON

Exit codes:
    0 - All packages are valid (warnings allowed)
    1 - At least one package is invalid, or no packages were found
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path

from cpa_common import (
    ActionError,
    ActionLogger,
    ActionOutputs,
    ManifestReadError,
    NoPackagesFoundError,
    ValidationFailure,
    display_packages_directory,
    no_packages_message,
    package_label,
)
from cpa_manifest import Manifest, find_package_directories, read_manifest, validate_manifest


@dataclass
class ValidateResult:
    """Aggregated outcome of a validation pass."""

    valid_packages: list[str] = field(default_factory=list)
    invalid_packages: list[str] = field(default_factory=list)
    total_errors: int = 0
    total_warnings: int = 0

    @property
    def success(self) -> bool:
        return not self.invalid_packages

    @property
    def total_packages(self) -> int:
        return len(self.valid_packages) + len(self.invalid_packages)

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for JSON serialization."""
        return {
            "valid": self.success,
            "valid_packages": self.valid_packages,
            "invalid_packages": self.invalid_packages,
            "total_errors": self.total_errors,
            "total_warnings": self.total_warnings,
        }


def _log_manifest(manifest: Manifest, log: ActionLogger) -> None:
    log.info(f"Package: {manifest.name}")
    log.info(f"Version: {manifest.version}")
    log.info(f"Commands: {len(manifest.commands)}")
    if manifest.metadata:
        if manifest.metadata.author:
            log.info(f"Author: {manifest.metadata.author}")
        if manifest.metadata.license:
            log.info(f"License: {manifest.metadata.license}")
        if manifest.metadata.repository:
            log.info(f"Repository: {manifest.metadata.repository}")


def validate_packages(
    packages_directory: str,
    root: Path | str | None = None,
    log: ActionLogger | None = None,
    outputs: ActionOutputs | None = None,
) -> ValidateResult:
    """Validate every package found under packages_directory.

    Args:
        packages_directory: Configured directory ('' or '.' auto-detects)
        root: Directory treated as the working directory
        log: Logger for progress and findings
        outputs: Step outputs (validated-packages, valid-count, invalid-count)

    Returns:
        ValidateResult with packages in directory enumeration order

    Raises:
        NoPackagesFoundError: if no package directory exists
    """
    log = log or ActionLogger()
    log.header("Validating Package Manifests")
    log.info(f"Packages directory: {display_packages_directory(packages_directory)}")

    package_dirs = find_package_directories(packages_directory, root=root, log=log)
    if not package_dirs:
        raise NoPackagesFoundError(no_packages_message(packages_directory))

    log.info(f"Found {len(package_dirs)} package(s)")

    result = ValidateResult()
    for package_dir in package_dirs:
        label = package_label(package_dir)
        with log.group(f"Validating: {label}"):
            try:
                manifest = read_manifest(package_dir)
                _log_manifest(manifest, log)

                validation = validate_manifest(manifest)
                if validation.warnings:
                    log.warning(f"Found {len(validation.warnings)} warning(s):")
                    for warning in validation.warnings:
                        log.warning(f"  - {warning}")
                    result.total_warnings += len(validation.warnings)

                validation.raise_for_errors(label)
                result.valid_packages.append(label)
                log.success("Manifest is valid")
            except ValidationFailure as e:
                log.error(f"Found {len(e.errors)} error(s):")
                for error in e.errors:
                    log.error(f"  - {error}")
                result.invalid_packages.append(label)
                result.total_errors += len(e.errors)
            except ManifestReadError as e:
                log.error(f"Failed to validate {label}: {e}")
                result.invalid_packages.append(label)
                result.total_errors += 1

    log.header("Validation Summary")
    log.info(f"Total packages: {result.total_packages}")
    log.info(f"Valid: {len(result.valid_packages)}")
    log.info(f"Invalid: {len(result.invalid_packages)}")
    log.info(f"Total errors: {result.total_errors}")
    log.info(f"Total warnings: {result.total_warnings}")

    if result.success:
        log.success("✅ All packages are valid!")
    else:
        log.error("❌ Validation failed")
        log.error(f"Invalid packages: {', '.join(result.invalid_packages)}")

    if outputs is not None:
        outputs.set("validated-packages", json.dumps(result.valid_packages))
        outputs.set("valid-count", len(result.valid_packages))
        outputs.set("invalid-count", len(result.invalid_packages))

    return result


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Validate command launcher package manifests")
    parser.add_argument(
        "packages_directory",
        nargs="?",
        default="",
        help="Directory whose subdirectories hold packages (default: auto-detect)",
    )
    parser.add_argument("--root", default=None, help="Directory to treat as the working directory")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    args = parser.parse_args(argv)

    if args.root and not Path(args.root).is_dir():
        print(f"Error: {args.root} is not a directory", file=sys.stderr)
        return 1

    # JSON mode keeps stdout clean for the result document
    log = ActionLogger(stream=sys.stderr) if args.json else ActionLogger()
    try:
        result = validate_packages(args.packages_directory, root=args.root, log=log)
    except ActionError as e:
        log.error(str(e))
        return 1

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))

    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
