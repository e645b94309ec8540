"""
Front-end resource validation.

A server can answer 200 on / while serving a broken build (missing chunks,
empty bundles). The validator fetches the main page, checks the app mount
point, and fetches a small sample of the referenced script assets.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from cutover.common.config import ResourceValidationSettings

from .http import Endpoint, HttpProbe, ProbeResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssetCheck:
    path: str
    ok: bool
    reason: str = ""


def script_pattern(asset_prefix: str) -> "re.Pattern[str]":
    prefix = re.escape(asset_prefix.strip("/"))
    return re.compile(r'<script[^>]+src="(/?\.?/' + prefix + r'/[^"]+)"')


def extract_script_paths(html: str, asset_prefix: str = "_nuxt") -> List[str]:
    """Script asset paths in document order."""
    return [m.group(1) for m in script_pattern(asset_prefix).finditer(html)]


def normalize_asset_path(path: str) -> str:
    if path.startswith("/"):
        return path
    if path.startswith("./"):
        path = path[2:]
    return "/" + path


class ResourceValidator:
    def __init__(self, probe: HttpProbe, settings: Optional[ResourceValidationSettings] = None):
        self.probe = probe
        self.settings = settings or ResourceValidationSettings()

    async def validate(self, endpoint: Endpoint) -> bool:
        """True when the main page and the sampled script assets look healthy."""
        s = self.settings
        page = await self.probe.probe(endpoint.with_path("/"), s.main_page_timeout_ms, keep_body=True)
        if not page.ok:
            logger.error("Main page check failed: %s", page.describe())
            return False

        html = page.text()
        if s.mount_marker not in html:
            logger.error("App mount point %r not found in main page", s.mount_marker)
            return False

        scripts = extract_script_paths(html, s.asset_prefix)
        if not scripts:
            logger.error("No /%s/ script assets referenced by main page", s.asset_prefix)
            return False
        logger.info("Found %d script asset(s) to validate", len(scripts))

        sample = scripts[:s.max_scripts_to_check]
        checks = await asyncio.gather(*(self._check_asset(endpoint, p) for p in sample))
        broken = [c for c in checks if not c.ok]
        for check in broken:
            logger.error("Script asset %s failed: %s", check.path, check.reason)
        if broken:
            return False

        await self._check_static_dir(endpoint)
        logger.info("Resource validation passed (%d script(s) checked)", len(checks))
        return True

    async def _check_asset(self, endpoint: Endpoint, path: str) -> AssetCheck:
        s = self.settings
        result = await self.probe.probe(
            endpoint.with_path(normalize_asset_path(path)), s.script_timeout_ms, keep_body=True,
        )
        problem = self._asset_problem(result)
        return AssetCheck(path=path, ok=not problem, reason=problem)

    def _asset_problem(self, result: ProbeResult) -> str:
        s = self.settings
        if not result.ok:
            return result.describe()
        body = result.body or b""
        if len(body) < s.min_script_size:
            return f"too small ({len(body)} bytes < {s.min_script_size})"
        text = result.text()
        if not _contains_any(text, s.tokens):
            return "does not look like script content"
        return ""

    async def _check_static_dir(self, endpoint: Endpoint) -> None:
        s = self.settings
        result = await self.probe.probe(
            endpoint.with_path(f"/{s.asset_prefix.strip('/')}/"), s.static_dir_timeout_ms,
        )
        if result.failure is not None:
            logger.warning("Static directory check failed: %s", result.describe())
        elif result.status not in (200, 404):
            logger.warning("Static directory returned unexpected HTTP %s", result.status)


def _contains_any(text: str, tokens: Sequence[str]) -> bool:
    return any(token in text for token in tokens)
