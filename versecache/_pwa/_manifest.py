"""Web App Manifest for PWA installation.

Defines app metadata for installation on home screens. Consumed by the
browser only; the cache manager never reads it.
"""

import json
from typing import Any

from ..config import Config


def build_manifest(config: Config) -> dict[str, Any]:
    """Build the manifest document as a dictionary."""
    manifest = config.manifest
    return {
        "name": manifest.name,
        "short_name": manifest.short_name,
        "start_url": manifest.start_url,
        "display": manifest.display,
        "background_color": manifest.background_color,
        "theme_color": manifest.theme_color,
        "icons": [{"src": icon.src, "sizes": icon.sizes, "type": icon.type} for icon in manifest.icons],
    }


def render_manifest(config: Config) -> str:
    """Render manifest.webmanifest as JSON text."""
    return json.dumps(build_manifest(config), indent=2, ensure_ascii=False) + "\n"
