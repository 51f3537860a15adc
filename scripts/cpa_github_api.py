#!/usr/bin/env python3
"""
Cola Package Action - GitHub REST Client

Minimal GitHub REST API client over requests. The release step uses the tag,
release and asset calls; the command line below uses release listing, asset
lookup and download to inspect packages already published as release assets.

Usage:
    python scripts/cpa_github_api.py acme/tools                       # list published packages
    python scripts/cpa_github_api.py acme/tools --download dist       # download every package archive
    python scripts/cpa_github_api.py acme/tools --tag package_x_1.0.0 # does the release exist?
    python scripts/cpa_github_api.py acme/tools --tag package_x_1.0.0 --asset x-1.0.0.pkg

The token is read from --token or GITHUB_TOKEN.

Exit codes:
    0 - Listing succeeded, or the checked release / asset exists
    1 - API error, or the checked release / asset is missing
"""

from __future__ import annotations

import argparse
import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import requests

from cpa_common import ActionError, ActionLogger, ConfigError, GitHubAPIError

DEFAULT_API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"
REQUEST_TIMEOUT = 30

# Published archives: <plugin-name>-<version>.pkg
PLUGIN_ASSET_PATTERN = re.compile(r"^(.+)-(\d+\.\d+\.\d+.*)\.pkg$")


@dataclass(frozen=True)
class GitHubAsset:
    name: str
    browser_download_url: str
    size: int


@dataclass(frozen=True)
class GitHubRelease:
    id: int
    tag_name: str
    name: str
    created_at: str
    assets: list[GitHubAsset] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> GitHubRelease:
        return cls(
            id=data["id"],
            tag_name=data["tag_name"],
            name=data.get("name") or data["tag_name"],
            created_at=data.get("created_at") or "",
            assets=[
                GitHubAsset(
                    name=asset["name"],
                    browser_download_url=asset["browser_download_url"],
                    size=asset.get("size", 0),
                )
                for asset in data.get("assets", [])
            ],
        )


class GitHubClient:
    """Repository-scoped GitHub REST client.

    Raises GitHubAPIError for transport failures and unexpected statuses;
    lookups that may legitimately miss return False/None on 404.
    """

    def __init__(
        self,
        token: str,
        repository: str,
        api_url: str | None = None,
        log: ActionLogger | None = None,
    ) -> None:
        owner, _, repo = repository.partition("/")
        if not owner or not repo or "/" in repo:
            raise ConfigError(f"Invalid repository format: {repository}. Expected 'owner/repo'")
        self.token = token
        self.owner = owner
        self.repo = repo
        self.api_url = (api_url or os.environ.get("GITHUB_API_URL") or DEFAULT_API_URL).rstrip("/")
        self.log = log or ActionLogger()

    @property
    def repo_url(self) -> str:
        return f"{self.api_url}/repos/{self.owner}/{self.repo}"

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
        }
        if extra:
            headers.update(extra)
        return headers

    def _request(
        self,
        method: str,
        url: str,
        expected: tuple[int, ...] = (200,),
        **kwargs: Any,
    ) -> requests.Response:
        headers = self._headers(kwargs.pop("headers", None))
        try:
            response = requests.request(method=method, url=url, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs)
        except requests.RequestException as e:
            raise GitHubAPIError(None, f"{method} {url} failed: {e}") from e

        if response.status_code not in expected:
            try:
                message = response.json().get("message", response.text)
            except ValueError:
                message = response.text
            raise GitHubAPIError(response.status_code, f"{method} {url}: {message}")
        return response

    def _request_optional(self, method: str, url: str, **kwargs: Any) -> requests.Response | None:
        """Like _request, but a 404 answer returns None."""
        response = self._request(method, url, expected=(200, 404), **kwargs)
        return None if response.status_code == 404 else response

    # -------------------------------------------------------------------
    # Tags and releases
    # -------------------------------------------------------------------
    def tag_exists(self, tag: str) -> bool:
        return self._request_optional("GET", f"{self.repo_url}/git/ref/tags/{tag}") is not None

    def get_release_by_tag(self, tag: str) -> dict[str, Any] | None:
        response = self._request_optional("GET", f"{self.repo_url}/releases/tags/{tag}")
        return None if response is None else response.json()

    def release_exists(self, tag: str) -> bool:
        return self.get_release_by_tag(tag) is not None

    def asset_exists_in_release(self, tag: str, asset_name: str) -> bool:
        release = self.get_release_by_tag(tag)
        if release is None:
            return False
        return any(asset.get("name") == asset_name for asset in release.get("assets", []))

    def create_release(
        self, tag: str, name: str, body: str, draft: bool = False, prerelease: bool = False
    ) -> dict[str, Any]:
        payload = {"tag_name": tag, "name": name, "body": body, "draft": draft, "prerelease": prerelease}
        response = self._request("POST", f"{self.repo_url}/releases", expected=(201,), json=payload)
        return response.json()

    def upload_release_asset(
        self, release: dict[str, Any], asset_path: Path, name: str | None = None
    ) -> dict[str, Any]:
        """Upload a file to a release, using the release's upload_url template."""
        # "https://uploads.github.com/repos/o/r/releases/1/assets{?name,label}"
        upload_url = release["upload_url"].split("{", 1)[0]
        with open(asset_path, "rb") as f:
            response = self._request(
                "POST",
                upload_url,
                expected=(201,),
                params={"name": name or asset_path.name},
                headers={"Content-Type": "application/octet-stream"},
                data=f.read(),
            )
        return response.json()

    def delete_release(self, release_id: int) -> None:
        self._request("DELETE", f"{self.repo_url}/releases/{release_id}", expected=(204,))

    def list_releases(self) -> list[GitHubRelease]:
        """All releases of the repository, following pagination."""
        self.log.info(f"Fetching releases from {self.owner}/{self.repo}...")
        releases: list[GitHubRelease] = []
        url: str | None = f"{self.repo_url}/releases"
        params: dict[str, Any] | None = {"per_page": 100}
        while url:
            response = self._request("GET", url, params=params)
            releases.extend(GitHubRelease.from_api(item) for item in response.json())
            url = response.links.get("next", {}).get("url")
            # The next link already carries the query string
            params = None
        self.log.success(f"Fetched {len(releases)} releases")
        return releases

    def download_asset(self, url: str, output_path: Path | str) -> Path:
        self.log.info(f"Downloading asset from {url}...")
        output = Path(output_path)
        response = self._request(
            "GET",
            url,
            headers={"Accept": "application/octet-stream"},
            stream=True,
        )
        try:
            with open(output, "wb") as f:
                for chunk in response.iter_content(chunk_size=65536):
                    f.write(chunk)
        except requests.RequestException as e:
            raise GitHubAPIError(None, f"Failed to download asset: {e}") from e
        self.log.success(f"Downloaded to {output}")
        return output

    @staticmethod
    def get_plugin_assets(releases: list[GitHubRelease]) -> dict[str, list[GitHubAsset]]:
        """Group .pkg release assets by plugin name (checksum files excluded)."""
        plugin_assets: dict[str, list[GitHubAsset]] = {}
        for release in releases:
            for asset in release.assets:
                if not asset.name.endswith(".pkg") or asset.name.endswith(".sha256.pkg"):
                    continue
                match = PLUGIN_ASSET_PATTERN.match(asset.name)
                if match:
                    plugin_assets.setdefault(match.group(1), []).append(asset)
        return plugin_assets


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Inspect command launcher packages published as release assets")
    parser.add_argument("repository", help="Repository as owner/repo")
    parser.add_argument("--token", default=os.environ.get("GITHUB_TOKEN", ""), help="GitHub token")
    parser.add_argument("--tag", default=None, help="Check that the release for this tag exists")
    parser.add_argument("--asset", default=None, help="With --tag: check that this asset is attached")
    parser.add_argument("--download", default=None, metavar="DIR", help="Download every package archive into DIR")
    args = parser.parse_args(argv)

    if args.asset and not args.tag:
        parser.error("--asset requires --tag")

    log = ActionLogger()
    try:
        client = GitHubClient(args.token, args.repository, log=log)

        if args.tag:
            if args.asset:
                found = client.asset_exists_in_release(args.tag, args.asset)
                target = f"Asset {args.asset} in release {args.tag}"
            else:
                found = client.release_exists(args.tag)
                target = f"Release {args.tag}"
            if found:
                log.success(f"{target} exists")
                return 0
            log.error(f"{target} not found")
            return 1

        plugin_assets = client.get_plugin_assets(client.list_releases())
        if not plugin_assets:
            log.info("No published packages found")
        for name in sorted(plugin_assets):
            log.info(f"{name}: {', '.join(asset.name for asset in plugin_assets[name])}")

        if args.download:
            output_dir = Path(args.download)
            output_dir.mkdir(parents=True, exist_ok=True)
            for name in sorted(plugin_assets):
                for asset in plugin_assets[name]:
                    client.download_asset(asset.browser_download_url, output_dir / asset.name)
    except (ActionError, OSError) as e:
        log.error(str(e))
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
