"""Service Worker JavaScript for offline Bible study.

Handles caching strategy:
- Precache (app shell, commentary, cross references): fetched atomically on install
- Bulk content routes (/bibles/**, /xrefs/**): Stale-while-revalidate
- Everything else same-origin: Cache-first with offline document fallback
- Cross-origin: only precached URLs are served from cache
"""

import json
import re

from ..config import Config
from ..models import RouteRule, Strategy
from ..routing import Router

_STRATEGY_FUNCTIONS = {
    Strategy.CACHE_FIRST: "cacheFirst",
    Strategy.STALE_WHILE_REVALIDATE: "staleWhileRevalidate",
    Strategy.NETWORK_FIRST_WITH_DOCUMENT_FALLBACK: "networkFirst",
}


def glob_to_js_regex(pattern: str) -> str:
    """Translate a route glob into a JavaScript regular expression literal.

    ``*`` spans path separators, matching the Python router.
    """
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char).replace("/", "\\/"))
    # consecutive stars collapse into one wildcard
    body = re.sub(r"(\.\*)+", ".*", "".join(parts))
    return f"/^{body}$/"


def _render_routes(rules: list[RouteRule]) -> str:
    lines = [
        f"    {{ pattern: {glob_to_js_regex(rule.pattern)}, strategy: {_STRATEGY_FUNCTIONS[rule.strategy]} }},"
        for rule in rules
    ]
    return "\n".join(lines)


def render_service_worker(config: Config) -> str:
    """Render sw.js for the configured cache version, precache list and routes."""
    router = Router(config.routes, config.app.origin, config.precache)
    precache_json = json.dumps(config.precache, indent=4)
    cross_origin = "true" if config.cache.cache_cross_origin else "false"

    return f"""// Service Worker for {config.manifest.name} PWA
// Provides offline capability by caching resources

const CACHE_VERSION = {json.dumps(config.cache.version)};
const CACHE_PREFIX = {json.dumps(config.cache.prefix)};
const CACHE_NAME = `${{CACHE_PREFIX}}${{CACHE_VERSION}}`;
const OFFLINE_DOCUMENT = {json.dumps(config.cache.offline_document)};
const CACHE_CROSS_ORIGIN = {cross_origin};

// Fetched and stored unconditionally on install; any failure aborts the install
const PRECACHE_ASSETS = {precache_json};
const PRECACHE_URLS = new Set(PRECACHE_ASSETS.map(asset => new URL(asset, self.location.origin).href));

// Install event - cache essential assets (all or nothing)
self.addEventListener('install', (event) => {{
    console.log('[SW] Installing service worker version:', CACHE_VERSION);
    event.waitUntil(
        caches.open(CACHE_NAME)
            .then((cache) => {{
                console.log('[SW] Precaching app shell and resources');
                return cache.addAll(PRECACHE_ASSETS);
            }})
            .catch((error) => {{
                console.error('[SW] Precaching failed:', error);
                // Rethrow so the install fails and the previous version keeps control
                throw error;
            }})
    );
}});

// Activate event - clean old caches, then take control of open pages
self.addEventListener('activate', (event) => {{
    console.log('[SW] Activating service worker version:', CACHE_VERSION);
    event.waitUntil(
        caches.keys()
            .then((cacheNames) => Promise.all(
                cacheNames
                    .filter((name) => name.startsWith(CACHE_PREFIX) && name !== CACHE_NAME)
                    .map((name) => {{
                        console.log('[SW] Deleting old cache:', name);
                        return caches.delete(name).catch((error) => {{
                            console.error('[SW] Failed to delete old cache:', name, error);
                        }});
                    }})
            ))
            .then(() => self.clients.claim())
    );
}});

function isCacheable(response) {{
    return response && response.status === 200 &&
        (response.type === 'basic' || response.type === 'cors');
}}

function mayStore(request) {{
    const url = new URL(request.url);
    return CACHE_CROSS_ORIGIN || url.origin === self.location.origin || PRECACHE_URLS.has(url.href);
}}

function storeInBackground(event, request, response) {{
    if (!isCacheable(response) || !mayStore(request)) {{
        return;
    }}
    const responseToCache = response.clone();
    event.waitUntil(
        caches.open(CACHE_NAME)
            .then((cache) => cache.put(request, responseToCache))
            .catch((error) => console.log('[SW] Cache write failed:', error))
    );
}}

async function offlineFallback(request, error) {{
    if (request.mode === 'navigate' || request.destination === 'document') {{
        const cache = await caches.open(CACHE_NAME);
        const document = await cache.match(OFFLINE_DOCUMENT);
        if (document) {{
            return document;
        }}
    }}
    throw error;
}}

// Cache-first: stored copy, else network (stored in the background)
async function cacheFirst(event) {{
    const request = event.request;
    const cache = await caches.open(CACHE_NAME);
    const cachedResponse = await cache.match(request);
    if (cachedResponse) {{
        return cachedResponse;
    }}
    try {{
        const response = await fetch(request);
        storeInBackground(event, request, response);
        return response;
    }} catch (error) {{
        console.log('[SW] Network failed, no cache for:', request.url);
        return offlineFallback(request, error);
    }}
}}

// Stale-while-revalidate: stored copy now, refreshed copy next time
async function staleWhileRevalidate(event) {{
    const request = event.request;
    const cache = await caches.open(CACHE_NAME);
    const cachedResponse = await cache.match(request);
    const fetchPromise = fetch(request).then((networkResponse) => {{
        // The write is detached: the caller gets the response whether or not it is stored
        if (isCacheable(networkResponse)) {{
            event.waitUntil(
                cache.put(request, networkResponse.clone())
                    .catch((error) => console.log('[SW] Cache write failed:', error))
            );
        }}
        return networkResponse;
    }});
    event.waitUntil(fetchPromise.catch((error) => {{
        console.log('[SW] Network fetch failed:', error);
    }}));

    return cachedResponse || fetchPromise;
}}

// Network-first: fresh copy, else stored copy, else offline document
async function networkFirst(event) {{
    const request = event.request;
    try {{
        const response = await fetch(request);
        storeInBackground(event, request, response);
        return response;
    }} catch (error) {{
        const cache = await caches.open(CACHE_NAME);
        const cachedResponse = await cache.match(request);
        if (cachedResponse) {{
            return cachedResponse;
        }}
        return offlineFallback(request, error);
    }}
}}

// Most specific pattern first
const ROUTES = [
{_render_routes(router.rules)}
];

// Fetch event - serve from cache with different strategies
self.addEventListener('fetch', (event) => {{
    const url = new URL(event.request.url);

    if (event.request.method !== 'GET') {{
        return;
    }}

    // Cross-origin: only precached URLs (e.g. a CDN script) are served from cache
    if (url.origin !== self.location.origin) {{
        if (PRECACHE_URLS.has(url.href)) {{
            event.respondWith(cacheFirst(event));
        }}
        return;
    }}

    const route = ROUTES.find((candidate) => candidate.pattern.test(url.pathname));
    const strategy = route ? route.strategy : cacheFirst;
    event.respondWith(strategy(event));
}});

// Message event - skip waiting when the page accepts the update
self.addEventListener('message', (event) => {{
    if (event.data && event.data.type === 'SKIP_WAITING') {{
        self.skipWaiting();
    }}
}});
"""
