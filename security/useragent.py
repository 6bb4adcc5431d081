"""
security/useragent.py -- Best-effort browser / OS / device extraction.

Wraps the user-agents library. Anything the parser cannot identify is left as
None rather than guessed, so a session record never claims a browser it did
not see.
"""

from __future__ import annotations

from dataclasses import dataclass

from user_agents import parse as parse_user_agent

_UNKNOWN_FAMILIES = {"", "Other"}


@dataclass(frozen=True)
class ClientInfo:
    browser: str | None = None  # "Chrome 120.0.0"
    os: str | None = None  # "Windows 10"
    device: str | None = None  # "mobile" | "tablet" | "desktop" | "bot"


def _label(family: str, version: str) -> str | None:
    if family in _UNKNOWN_FAMILIES:
        return None
    return f"{family} {version}".strip()


def parse_client(user_agent: str | None) -> ClientInfo:
    """Derive ClientInfo from a User-Agent header value. Never raises."""
    if not user_agent or not user_agent.strip():
        return ClientInfo()
    try:
        ua = parse_user_agent(user_agent)
    except Exception:
        return ClientInfo()

    if ua.is_bot:
        device = "bot"
    elif ua.is_tablet:
        device = "tablet"
    elif ua.is_mobile:
        device = "mobile"
    elif ua.is_pc:
        device = "desktop"
    else:
        device = None

    return ClientInfo(
        browser=_label(ua.browser.family, ua.browser.version_string),
        os=_label(ua.os.family, ua.os.version_string),
        device=device,
    )
