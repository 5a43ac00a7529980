"""User-agent parsing for the device descriptor stored on sessions."""

from __future__ import annotations

from typing import Any, Dict, Optional

from user_agents import parse

_MAX_UA_LENGTH = 512
_UNKNOWN_FAMILY = "Other"


def _named(family: Optional[str], version: Optional[str]) -> Dict[str, Optional[str]]:
    if not family or family == _UNKNOWN_FAMILY:
        return {"name": None, "version": None}
    return {"name": family, "version": version or None}


def _device_type(agent) -> str:
    if agent.is_bot:
        return "bot"
    if agent.is_tablet:
        return "tablet"
    if agent.is_mobile:
        return "mobile"
    if agent.is_pc:
        return "desktop"
    return "unknown"


def device_type(user_agent: str) -> str:
    if not user_agent:
        return "unknown"
    return _device_type(parse(user_agent))


def parse_user_agent(user_agent: Optional[str]) -> Dict[str, Any]:
    """Return ``{client, os, device_type, raw}`` for a ``User-Agent`` header.

    Unknown or missing values come back as ``None`` rather than raising; the
    descriptor is informational only.
    """
    raw = (user_agent or "").strip()[:_MAX_UA_LENGTH]
    if not raw:
        return {
            "client": {"name": None, "version": None},
            "os": {"name": None, "version": None},
            "device_type": "unknown",
            "raw": None,
        }
    agent = parse(raw)
    return {
        "client": _named(agent.browser.family, agent.browser.version_string),
        "os": _named(agent.os.family, agent.os.version_string),
        "device_type": _device_type(agent),
        "raw": raw,
    }
