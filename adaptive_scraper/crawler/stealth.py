"""
Browser stealth utilities.

Minimal anti-automation measures applied to every automation context:
- navigator.webdriver and driver marker removal
- realistic plugins/languages/hardware values
- Chromium launch flags that drop the AutomationControlled blink feature
- small viewport jitter per context
"""

import random
from typing import TYPE_CHECKING

from adaptive_scraper.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext

logger = get_logger(__name__)


# =============================================================================
# Stealth JavaScript Injection
# =============================================================================

STEALTH_JS = """
(() => {
    const hide = (target, prop, value) => {
        try {
            Object.defineProperty(target, prop, { get: () => value, configurable: true });
        } catch (e) {}
    };

    hide(navigator, 'webdriver', undefined);

    for (const prop of [
        '__webdriver_script_fn', '__driver_evaluate', '__webdriver_evaluate',
        '__selenium_evaluate', '__driver_unwrapped', '__webdriver_unwrapped',
        '__selenium_unwrapped',
    ]) {
        try { delete navigator[prop]; } catch (e) {}
    }

    const query = navigator.permissions?.query?.bind(navigator.permissions);
    if (query) {
        navigator.permissions.query = (parameters) =>
            parameters.name === 'notifications'
                ? Promise.resolve({ state: Notification.permission })
                : query(parameters);
    }

    window.chrome = window.chrome || {};
    window.chrome.runtime = window.chrome.runtime || {};

    const plugins = [
        { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer' },
        { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai' },
        { name: 'Native Client', filename: 'internal-nacl-plugin' },
    ];
    plugins.item = (i) => plugins[i];
    plugins.namedItem = (name) => plugins.find((p) => p.name === name);
    plugins.refresh = () => {};
    hide(navigator, 'plugins', plugins);
    hide(navigator, 'languages', ['en-US', 'en']);
    hide(navigator, 'hardwareConcurrency', 8);
    hide(navigator, 'deviceMemory', 8);

    delete window.__playwright;
    delete window.__pwInitScripts;
    delete window.callPhantom;
    delete window._phantom;
})();
"""


async def apply_stealth_to_context(context: "BrowserContext") -> None:
    """Register the stealth init script so every page in the context gets it.

    Args:
        context: Playwright browser context.
    """
    try:
        await context.add_init_script(STEALTH_JS)
        logger.debug("Stealth script applied to context")
    except Exception as e:
        logger.warning("Failed to apply stealth to context", error=str(e))


def get_stealth_args(width: int = 1920, height: int = 1080) -> list[str]:
    """Chromium launch arguments that reduce automation detection.

    Args:
        width: Window width.
        height: Window height.

    Returns:
        List of command-line arguments.
    """
    return [
        "--disable-blink-features=AutomationControlled",
        "--disable-infobars",
        "--disable-dev-shm-usage",
        "--disable-extensions",
        "--disable-background-networking",
        "--disable-sync",
        "--disable-translate",
        "--no-first-run",
        "--no-default-browser-check",
        f"--window-size={width},{height}",
    ]


def jitter_viewport(width: int, height: int, max_jitter: int = 20) -> dict[str, int]:
    """Return a viewport a few pixels off the configured size."""
    return {
        "width": width + random.randint(-max_jitter, max_jitter),
        "height": height + random.randint(-max_jitter, max_jitter),
    }
