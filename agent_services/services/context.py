"""
Explicit per-process context for orchestration calls.

Built once at start-up and handed to every orchestrator, status and
reconciler call, so no provider client or setting lives in module state.
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from agent_services.config import Settings
from agent_services.naming import service_name
from agent_services.providers import AgentMailClient, OpenRouterClient, RailwayClient, TelnyxClient


@dataclass
class ServiceContext:
    settings: Settings
    railway: RailwayClient
    openrouter: OpenRouterClient
    agentmail: AgentMailClient
    telnyx: TelnyxClient
    # Only set in tests, to route health probes through a mock transport
    http_transport: Optional[httpx.AsyncBaseTransport] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ServiceContext":
        timeout = settings.provider_timeout
        return cls(
            settings=settings,
            railway=RailwayClient(
                settings.railway_api_token,
                settings.railway_project_id,
                settings.railway_environment_id,
                runtime_image=settings.railway_runtime_image,
                start_command=settings.railway_start_command,
                cpu_limit=settings.railway_cpu_limit,
                memory_gb=settings.railway_memory_gb,
                volume_mount_path=settings.railway_volume_mount_path,
                timeout=timeout,
                transport=transport,
            ),
            openrouter=OpenRouterClient(
                settings.openrouter_management_key,
                key_limit=settings.openrouter_key_limit,
                limit_reset=settings.openrouter_key_limit_reset,
                timeout=timeout,
                transport=transport,
            ),
            agentmail=AgentMailClient(
                settings.agentmail_api_key,
                domain=settings.agentmail_domain,
                timeout=timeout,
                transport=transport,
            ),
            telnyx=TelnyxClient(
                settings.telnyx_api_key,
                messaging_profile_id=settings.telnyx_messaging_profile_id,
                timeout=timeout,
                transport=transport,
            ),
            http_transport=transport,
        )

    def resource_name(self, instance_id: str) -> str:
        """Managed name for a resource belonging to an instance."""
        return service_name(instance_id, self.settings.agent_name_prefix)
