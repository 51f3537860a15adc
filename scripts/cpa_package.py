#!/usr/bin/env python3
"""
Cola Package Action - Package Archives

Packs every package directory into <name>-<version>.pkg, a zip archive whose
entries are relative to the package directory (no wrapper folder), so the
archive can be installed directly by command launcher.
"""

from __future__ import annotations

import json
import os
import zipfile
from dataclasses import dataclass
from pathlib import Path

from cpa_common import (
    ActionError,
    ActionLogger,
    ActionOutputs,
    NoPackagesFoundError,
    PackagingError,
    display_packages_directory,
    format_bytes,
    no_packages_message,
    package_label,
)
from cpa_manifest import archive_name, find_package_directories, read_manifest


@dataclass(frozen=True)
class PackagedPackage:
    """An archive produced from one package directory."""

    name: str
    version: str
    archive_path: Path
    size: int
    source_directory: Path

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "version": self.version,
            "archive": self.archive_path.name,
            "size": self.size,
        }


def _is_within(path: Path, parent: Path) -> bool:
    try:
        path.relative_to(parent)
    except ValueError:
        return False
    return True


def _holds_content(dir_arcname: str, entries: list[tuple[Path, str]], wrappers: set[Path]) -> bool:
    """True when something other than another wrapper directory is archived below dir_arcname."""
    return any(
        arcname.startswith(dir_arcname) and arcname != dir_arcname and path.resolve() not in wrappers
        for path, arcname in entries
    )


def create_zip(source_dir: Path | str, output_path: Path | str, log: ActionLogger | None = None) -> int:
    """Zip the contents of source_dir into output_path.

    Entries are stored relative to source_dir, directories included, in
    sorted order. When output_path lies inside source_dir its directory is
    left out of the archive, and so are parent directories that would only
    have held it.

    Returns:
        Size of the archive in bytes

    Raises:
        PackagingError: if the archive cannot be written
    """
    log = log or ActionLogger()
    source = Path(source_dir).resolve()
    output = Path(output_path).resolve()
    excluded = output.parent if _is_within(output.parent, source) and output.parent != source else None

    # Directories between the package root and the excluded output directory
    wrappers = {p for p in excluded.parents if p != source and _is_within(p, source)} if excluded else set()

    log.info(f"Creating ZIP archive: {output_path}")
    try:
        entries: list[tuple[Path, str]] = []
        for dirpath, dirnames, filenames in os.walk(source):
            current = Path(dirpath)
            dirnames[:] = sorted(d for d in dirnames if excluded is None or (current / d).resolve() != excluded)
            for dirname in dirnames:
                entries.append((current / dirname, (current / dirname).relative_to(source).as_posix() + "/"))
            for filename in sorted(filenames):
                file_path = current / filename
                if file_path.resolve() == output:
                    continue
                entries.append((file_path, file_path.relative_to(source).as_posix()))

        with zipfile.ZipFile(output, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for path, arcname in entries:
                if path.resolve() in wrappers and not _holds_content(arcname, entries, wrappers):
                    continue
                archive.write(path, arcname)
    except (OSError, zipfile.BadZipFile) as e:
        raise PackagingError(f"Failed to create ZIP archive: {e}") from e

    size = output.stat().st_size
    log.success(f"Created ZIP archive: {output_path} ({format_bytes(size)})")
    return size


def create_packages(
    packages_directory: str,
    output_directory: Path | str,
    root: Path | str | None = None,
    log: ActionLogger | None = None,
    outputs: ActionOutputs | None = None,
) -> list[PackagedPackage]:
    """Create one archive per package directory.

    Args:
        packages_directory: Configured directory ('' or '.' auto-detects)
        output_directory: Where the .pkg archives are written
        root: Directory treated as the working directory
        log: Logger for progress
        outputs: Step outputs (packaged-artifacts, package-count)

    Raises:
        NoPackagesFoundError: if no package directory exists
        PackagingError: on the first package that cannot be archived
    """
    log = log or ActionLogger()
    base = Path(root) if root is not None else Path(".")
    output_dir = base / output_directory

    log.header("Creating Packages")
    log.info(f"Packages directory: {display_packages_directory(packages_directory)}")
    log.info(f"Output directory: {output_directory}")
    log.info("Archive format: zip")

    output_dir.mkdir(parents=True, exist_ok=True)

    package_dirs = find_package_directories(packages_directory, root=root, log=log)
    if not package_dirs:
        raise NoPackagesFoundError(no_packages_message(packages_directory))

    log.info(f"Found {len(package_dirs)} package(s) to create")

    packages: list[PackagedPackage] = []
    for package_dir in package_dirs:
        label = package_label(package_dir)
        with log.group(f"Creating package: {label}"):
            try:
                manifest = read_manifest(package_dir)
                log.info(f"Package: {manifest.name}")
                log.info(f"Version: {manifest.version}")

                name = archive_name(manifest)
                archive_path = output_dir / name
                size = create_zip(package_dir, archive_path, log=log)

                log.success(f"✅ Packaged: {name}")
                log.info(f"   Size: {format_bytes(size)}")
                packages.append(
                    PackagedPackage(
                        name=manifest.name,
                        version=manifest.version,
                        archive_path=archive_path,
                        size=size,
                        source_directory=package_dir,
                    )
                )
            except ActionError as e:
                log.error(f"Failed to create package {label}: {e}")
                if isinstance(e, PackagingError):
                    raise
                raise PackagingError(f"Failed to create package {label}: {e}") from e

    log.header("Package Creation Summary")
    log.info(f"Total packages created: {len(packages)}")
    log.info(f"Total size: {format_bytes(sum(p.size for p in packages))}")

    if outputs is not None:
        outputs.set("packaged-artifacts", json.dumps([p.to_dict() for p in packages]))
        outputs.set("package-count", len(packages))

    return packages
