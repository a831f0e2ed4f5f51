"""Anti-bot helpers used by the fetch layer.

- Browser-like headers and user-agent rotation
- Challenge-page fingerprints
- Stealth Playwright contexts
- Proxy configuration
"""

from .challenge import BLOCK_STATUSES, CHALLENGE_MARKERS, find_challenge_marker, is_challenge_page
from .proxy import ProxyConfig
from .user_agent import UserAgentPool

__all__ = [
    "BLOCK_STATUSES",
    "CHALLENGE_MARKERS",
    "find_challenge_marker",
    "is_challenge_page",
    "ProxyConfig",
    "UserAgentPool",
]
