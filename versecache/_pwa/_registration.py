"""Service Worker registration JavaScript for the study page.

This JavaScript snippet is loaded by index.html to register the service
worker, poll for updates, prompt the user and reload once on hand-off.
"""

from ..config import Config


def render_registration(config: Config, script_url: str = "/sw.js") -> str:
    """Render the registration snippet with the configured polling interval."""
    interval_ms = config.update.check_interval * 1000

    return f"""// ========================================
// PWA: Service Worker Registration
// ========================================
(function () {{
    if (!('serviceWorker' in navigator)) {{
        return;
    }}

    const UPDATE_CHECK_INTERVAL = {interval_ms};

    // Reload once when a new version takes control of an already-controlled page
    let hadController = Boolean(navigator.serviceWorker.controller);
    let refreshing = false;
    navigator.serviceWorker.addEventListener('controllerchange', () => {{
        if (refreshing) return;
        if (!hadController) {{
            hadController = true;
            return;
        }}
        refreshing = true;
        console.log('[PWA] New version activated, refreshing...');
        window.location.reload();
    }});

    function applyUpdate(worker) {{
        worker.postMessage({{ type: 'SKIP_WAITING' }});
    }}

    function showUpdateToast(worker) {{
        if (document.getElementById('updateToast')) return;
        const toast = document.createElement('div');
        toast.id = 'updateToast';
        toast.setAttribute('role', 'status');
        toast.textContent = 'A new version is available. ';
        const button = document.createElement('button');
        button.type = 'button';
        button.textContent = 'Update now';
        button.addEventListener('click', () => {{
            button.disabled = true;
            applyUpdate(worker);
        }});
        toast.appendChild(button);
        document.body.appendChild(toast);
    }}

    function watchInstalling(worker) {{
        worker.addEventListener('statechange', () => {{
            if (worker.state === 'installed' && navigator.serviceWorker.controller) {{
                console.log('[PWA] New version installed and waiting');
                showUpdateToast(worker);
            }}
        }});
    }}

    window.addEventListener('load', () => {{
        navigator.serviceWorker.register('{script_url}')
            .then(registration => {{
                console.log('[PWA] Service Worker registered');

                // An update may have arrived while the page was not focused
                if (registration.waiting && navigator.serviceWorker.controller) {{
                    showUpdateToast(registration.waiting);
                }}

                registration.addEventListener('updatefound', () => {{
                    if (registration.installing) {{
                        watchInstalling(registration.installing);
                    }}
                }});

                // A failed check just means no prompt this cycle
                setInterval(() => {{
                    registration.update().catch(error => {{
                        console.log('[PWA] Update check failed:', error);
                    }});
                }}, UPDATE_CHECK_INTERVAL);
            }})
            .catch(error => {{
                console.error('[PWA] Service Worker registration failed:', error);
            }});
    }});
}})();
"""
