"""Device fingerprints and stealth Playwright contexts."""
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from playwright.async_api import Browser, BrowserContext


@dataclass
class DeviceFingerprint:
    """Device fingerprint configuration."""

    user_agent: str
    viewport_width: int
    viewport_height: int
    device_scale_factor: float
    locale: str
    timezone_id: str
    platform: str
    webgl_vendor: str
    webgl_renderer: str

    def to_playwright_context(self) -> Dict[str, Any]:
        """Convert to Playwright context kwargs."""
        return {
            "user_agent": self.user_agent,
            "viewport": {
                "width": self.viewport_width,
                "height": self.viewport_height,
            },
            "device_scale_factor": self.device_scale_factor,
            "locale": self.locale,
            "timezone_id": self.timezone_id,
        }


DESKTOP_FINGERPRINTS: List[DeviceFingerprint] = [
    DeviceFingerprint(
        user_agent=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
        ),
        viewport_width=1920,
        viewport_height=1080,
        device_scale_factor=1.0,
        locale="pt-BR",
        timezone_id="America/Sao_Paulo",
        platform="Win32",
        webgl_vendor="Google Inc. (NVIDIA)",
        webgl_renderer="ANGLE (NVIDIA GeForce GTX 1060 6GB Direct3D11 vs_5_0 ps_5_0)",
    ),
    DeviceFingerprint(
        user_agent=(
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
        ),
        viewport_width=1440,
        viewport_height=900,
        device_scale_factor=2.0,
        locale="es-PY",
        timezone_id="America/Asuncion",
        platform="MacIntel",
        webgl_vendor="Google Inc. (Apple)",
        webgl_renderer="ANGLE (Apple, Apple M1 Pro, OpenGL 4.1)",
    ),
]


def _stealth_script(fingerprint: DeviceFingerprint) -> str:
    return f"""
    (() => {{
        Object.defineProperty(navigator, 'webdriver', {{ get: () => undefined }});
        Object.defineProperty(navigator, 'platform', {{ get: () => '{fingerprint.platform}' }});
        Object.defineProperty(navigator, 'hardwareConcurrency', {{ get: () => {random.choice([4, 8, 12])} }});
        Object.defineProperty(navigator, 'languages', {{ get: () => ['{fingerprint.locale}', 'en-US'] }});

        const getParameter = WebGLRenderingContext.prototype.getParameter;
        WebGLRenderingContext.prototype.getParameter = function(parameter) {{
            if (parameter === 37445) return '{fingerprint.webgl_vendor}';
            if (parameter === 37446) return '{fingerprint.webgl_renderer}';
            return getParameter.call(this, parameter);
        }};
    }})();
    """


async def create_stealth_context(
    browser: Browser,
    *,
    fingerprint: Optional[DeviceFingerprint] = None,
    **kwargs: Any,
) -> BrowserContext:
    """Create a browser context painted with a desktop fingerprint.

    Parameters
    ----------
    browser : Browser
        Playwright browser instance
    fingerprint : DeviceFingerprint, optional
        Specific fingerprint to use (random if not provided)
    **kwargs
        Additional context kwargs (e.g. ``proxy``)

    Returns
    -------
    BrowserContext
        Configured browser context
    """
    if fingerprint is None:
        fingerprint = random.choice(DESKTOP_FINGERPRINTS)

    context_kwargs = fingerprint.to_playwright_context()
    context_kwargs.update(kwargs)

    context = await browser.new_context(**context_kwargs)
    await context.add_init_script(_stealth_script(fingerprint))
    return context
