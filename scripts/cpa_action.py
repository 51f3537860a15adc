#!/usr/bin/env python3
"""
Cola Package Action - Entry Point

Runs the whole pipeline for command launcher packages:
validate -> (stop if validate-only) -> zip archives -> OCI push -> GitHub releases.

Inputs are read from the INPUT_* environment variables the runner exports;
command-line flags override them for local runs.

Usage:
    cola-package-action                               # inputs from the environment
    cola-package-action --packages-directory packages --validate-only
    cola-package-action --package-format both --force-release

Exit codes:
    0 - Pipeline completed
    1 - Validation failed, configuration is invalid, or a step failed
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from cpa_common import (
    PACKAGE_FORMATS,
    ActionConfig,
    ActionError,
    ActionLogger,
    ActionOutputs,
    ConfigError,
    run,
)
from cpa_github_api import GitHubClient
from cpa_oci import OrasClient, push_to_oci
from cpa_package import PackagedPackage, create_packages
from cpa_release import Runner, create_plugin_releases
from cpa_validate import validate_packages


def _log_settings(config: ActionConfig, log: ActionLogger) -> None:
    log.info(f"Packages Directory: {config.display_directory}")
    log.info(f"Validate Only: {str(config.validate_only).lower()}")
    log.info(f"Package Format: {config.package_format}")
    if config.package_format in ("oci", "both"):
        log.info(f"OCI Registry: {config.oci_registry}")
        log.info(f"Packages Namespace: {config.packages_namespace}")
    log.info(f"Force Release: {str(config.force_release).lower()}")


def run_action(
    config: ActionConfig,
    log: ActionLogger | None = None,
    outputs: ActionOutputs | None = None,
    root: Path | str | None = None,
    oras_client: OrasClient | None = None,
    github_client: GitHubClient | None = None,
    runner: Runner = run,
) -> list[PackagedPackage]:
    """Run every configured step in order.

    Args:
        config: Resolved action inputs
        log: Logger shared by all steps
        outputs: Step outputs sink
        root: Directory treated as the working directory (default: cwd)
        oras_client: ORAS wrapper used for the OCI push
        github_client: GitHub client used for releases
        runner: Subprocess runner used for git

    Returns:
        The archives that were created (empty for validate-only runs)

    Raises:
        ActionError: on the first failing step
    """
    log = log or ActionLogger()
    outputs = outputs if outputs is not None else ActionOutputs()
    base = Path(root) if root is not None else Path(".")

    log.header("Cola Package Action")
    _log_settings(config, log)
    config.validate()

    validation = validate_packages(config.packages_directory, root=root, log=log, outputs=outputs)
    if not validation.success:
        invalid = validation.invalid_packages
        raise ActionError(f"Validation failed for {len(invalid)} package(s): {', '.join(invalid)}")

    if config.validate_only:
        log.success("✅ Validation completed (validate-only mode)")
        return []

    packages: list[PackagedPackage] = []
    if config.needs_zip_packages or config.needs_oci_push:
        packages = create_packages(
            config.packages_directory,
            config.output_directory,
            root=root,
            log=log,
            outputs=outputs,
        )

    if config.needs_oci_push:
        if not config.oci_username or not config.oci_token:
            raise ConfigError("OCI registry credentials required (oci-username and oci-token)")
        push_to_oci(
            base / config.output_directory,
            config.oci_registry,
            config.packages_namespace,
            config.oci_username,
            config.oci_token,
            repository=config.github_repository or None,
            force_release=config.force_release,
            log=log,
            client=oras_client,
        )

    if packages and config.github_token:
        if not config.github_repository:
            raise ConfigError("GITHUB_REPOSITORY environment variable not set")
        create_plugin_releases(
            packages,
            config.github_token,
            config.github_repository,
            force_release=config.force_release,
            oci_registry=config.oci_registry if config.needs_oci_push else None,
            log=log,
            client=github_client,
            root=root,
            runner=runner,
        )
    elif packages:
        log.info("No github-token provided, skipping GitHub releases")

    log.header("Action Summary")
    log.info(f"Packages validated: {len(validation.valid_packages)}")
    log.info(f"Packages created: {len(packages)}")
    log.success("✅ Action completed successfully")
    return packages


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Validate, package, and publish command launcher packages",
    )
    parser.add_argument("--packages-directory", default=None, help="Packages directory (default: auto-detect)")
    parser.add_argument("--validate-only", action="store_true", default=None, help="Only validate manifests")
    parser.add_argument("--package-format", choices=PACKAGE_FORMATS, default=None, help="zip, oci, or both")
    parser.add_argument("--oci-registry", default=None, help="OCI registry (default: ghcr.io)")
    parser.add_argument("--packages-namespace", default=None, help="Namespace under the registry")
    parser.add_argument("--output-directory", default=None, help="Where archives are written")
    parser.add_argument("--force-release", action="store_true", default=None, help="Overwrite existing releases")
    parser.add_argument("--root", default=None, help="Directory to treat as the working directory")
    args = parser.parse_args(argv)

    config = ActionConfig.from_env()
    for name in (
        "packages_directory",
        "validate_only",
        "package_format",
        "oci_registry",
        "packages_namespace",
        "output_directory",
        "force_release",
    ):
        value = getattr(args, name)
        if value is not None:
            setattr(config, name, value)

    log = ActionLogger()
    try:
        run_action(config, log=log, outputs=ActionOutputs.from_env(), root=args.root)
    except (ActionError, OSError) as e:
        log.error(str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
