"""HTTP clients for the agent service."""
from __future__ import annotations

from taskpilot.clients.agent_api import AgentApiClient, unwrap_envelope

__all__ = ["AgentApiClient", "unwrap_envelope"]
