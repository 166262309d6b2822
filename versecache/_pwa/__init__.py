"""Progressive Web App assets for the Bible study site.

This package renders the browser-side files from the same configuration the
Python cache manager uses, so both implement one caching policy.

PWA Features:
- Installable on mobile and desktop devices
- Offline support via Service Worker caching
- Cache versioning with cleanup of superseded caches
- Update prompt with a single reload on hand-off
"""

import logging
from pathlib import Path

from ..config import Config
from ._manifest import build_manifest, render_manifest
from ._registration import render_registration
from ._service_worker import glob_to_js_regex, render_service_worker

logger = logging.getLogger(__name__)

SERVICE_WORKER_FILENAME = "sw.js"
MANIFEST_FILENAME = "manifest.webmanifest"
REGISTRATION_FILENAME = "pwa-register.js"

__all__ = [
    "MANIFEST_FILENAME",
    "REGISTRATION_FILENAME",
    "SERVICE_WORKER_FILENAME",
    "build_manifest",
    "glob_to_js_regex",
    "render_manifest",
    "render_registration",
    "render_service_worker",
    "write_assets",
]


def write_assets(config: Config, out_dir: str) -> list[Path]:
    """Write sw.js, manifest.webmanifest and pwa-register.js.

    Args:
        config: Deployment configuration.
        out_dir: Directory to write into; created if missing.

    Returns:
        Paths of the written files.
    """
    target = Path(out_dir)
    target.mkdir(parents=True, exist_ok=True)

    assets = {
        SERVICE_WORKER_FILENAME: render_service_worker(config),
        MANIFEST_FILENAME: render_manifest(config),
        REGISTRATION_FILENAME: render_registration(config, script_url=f"/{SERVICE_WORKER_FILENAME}"),
    }

    written = []
    for filename, content in assets.items():
        path = target / filename
        path.write_text(content, encoding="utf-8")
        logger.info("Wrote %s", path)
        written.append(path)
    return written
