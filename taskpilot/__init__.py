"""TaskPilot — agent session orchestrator for AI-assisted entity creation.

Public entry points::

    from taskpilot import AgentSession, PROJECT_PROFILE
    session = AgentSession(PROJECT_PROFILE, api=AgentApiClient(...), push=channel)
    await session.start()
    await session.send("Create a campaign for Acme, led by Sarah")
"""

from taskpilot.clients.agent_api import AgentApiClient
from taskpilot.config import Settings, configure_logging, get_settings
from taskpilot.session.controller import AgentSession, SessionSnapshot
from taskpilot.session.profiles import (
    AIPM_PROFILE,
    PROFILES,
    PROJECT_PROFILE,
    SOP_PROFILE,
    TICKET_PROFILE,
    EntityProfile,
)

__all__ = [
    "AIPM_PROFILE",
    "PROFILES",
    "PROJECT_PROFILE",
    "SOP_PROFILE",
    "TICKET_PROFILE",
    "AgentApiClient",
    "AgentSession",
    "EntityProfile",
    "SessionSnapshot",
    "Settings",
    "configure_logging",
    "get_settings",
]
