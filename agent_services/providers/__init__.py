from agent_services.providers.base import ProviderClient, ProviderError
from agent_services.providers.railway import RailwayClient, ComputeService, ProjectVolume
from agent_services.providers.openrouter import OpenRouterClient, IssuedKey
from agent_services.providers.agentmail import AgentMailClient
from agent_services.providers.telnyx import TelnyxClient, ProvisionedPhone
from agent_services.providers.health import probe_health

__all__ = [
    "ProviderClient",
    "ProviderError",
    # Compute
    "RailwayClient",
    "ComputeService",
    "ProjectVolume",
    # Tools
    "OpenRouterClient",
    "IssuedKey",
    "AgentMailClient",
    "TelnyxClient",
    "ProvisionedPhone",
    # Health
    "probe_health",
]
