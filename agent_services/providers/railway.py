"""
Railway compute provider.

Every agent instance is one Railway service running the runtime image. This
client wraps the Railway GraphQL API: service CRUD, env vars, volumes,
domains, redeploys, and project-wide listings normalized to ComputeService.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from agent_services.providers.base import ProviderClient, ProviderError, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

GQL_PATH = "/graphql/v2"
GQL_MAX_RETRIES = 3
GQL_BASE_DELAY = 2.0  # seconds, doubled per retry
VOLUME_ATTEMPTS = 3

_SERVICE_FIELDS = """
    id
    name
    createdAt
    serviceInstances {
      edges {
        node {
          environmentId
          domains { serviceDomains { domain } customDomains { domain } }
          source { image }
        }
      }
    }
    deployments(first: 1) {
      edges { node { id status } }
    }
"""


@dataclass
class ComputeService:
    """Provider-neutral view of a compute service."""
    id: str
    name: str
    created_at: Optional[str] = None
    environment_ids: list[str] = field(default_factory=list)
    deploy_status: Optional[str] = None
    domain: Optional[str] = None
    image: Optional[str] = None


@dataclass
class ProjectVolume:
    id: str
    name: str = ""
    created_at: Optional[str] = None
    service_ids: list[str] = field(default_factory=list)  # Services the volume is attached to


def _edges(node: Optional[dict], key: str) -> list[dict]:
    return [e.get("node") or {} for e in ((node or {}).get(key) or {}).get("edges") or []]


def _to_compute_service(node: dict, environment_id: Optional[str]) -> ComputeService:
    instances = _edges(node, "serviceInstances")
    if environment_id:
        mine = next((i for i in instances if i.get("environmentId") == environment_id), None)
    else:
        mine = instances[0] if instances else None
    domains = (mine or {}).get("domains") or {}
    custom = domains.get("customDomains") or []
    generated = domains.get("serviceDomains") or []
    domain = (custom[0].get("domain") if custom else None) or (generated[0].get("domain") if generated else None)
    deployments = _edges(node, "deployments")
    return ComputeService(
        id=node.get("id", ""),
        name=node.get("name", ""),
        created_at=node.get("createdAt"),
        environment_ids=[i.get("environmentId") for i in instances if i.get("environmentId")],
        deploy_status=deployments[0].get("status") if deployments else None,
        domain=domain,
        image=((mine or {}).get("source") or {}).get("image"),
    )


class RailwayClient(ProviderClient):
    name = "railway"
    base_url = "https://backboard.railway.com"

    def __init__(
        self,
        api_key: Optional[str],
        project_id: str = "",
        environment_id: str = "",
        *,
        runtime_image: str = "",
        start_command: str = "",
        cpu_limit: int = 4,
        memory_gb: int = 8,
        volume_mount_path: str = "/data",
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key, timeout=timeout, transport=transport)
        self.project_id = project_id
        self.environment_id = environment_id
        self.runtime_image = runtime_image
        self.start_command = start_command
        self.cpu_limit = cpu_limit
        self.memory_gb = memory_gb
        self.volume_mount_path = volume_mount_path

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.project_id and self.environment_id)

    async def gql(self, query: str, variables: Optional[dict] = None) -> dict:
        """Run a GraphQL operation, retrying on 429 with exponential backoff."""
        if not self.api_key:
            raise ProviderError(self.name, "RAILWAY_API_TOKEN not set")

        payload = {"query": query, "variables": variables or {}}
        for attempt in range(1, GQL_MAX_RETRIES + 1):
            res = await self._send("POST", GQL_PATH, json=payload)

            if res.status_code == 429 and attempt < GQL_MAX_RETRIES:
                delay = GQL_BASE_DELAY * (2 ** (attempt - 1))
                logger.warning("[railway] 429 rate limited, retry %d/%d in %.0fs", attempt, GQL_MAX_RETRIES, delay)
                await asyncio.sleep(delay)
                continue

            try:
                body = res.json()
            except ValueError:
                suffix = " (rate limited)" if res.status_code == 429 else ""
                raise ProviderError(self.name, f"API error: {res.status_code}{suffix}", res.status_code)
            if body.get("errors"):
                raise ProviderError(self.name, f"API error: {body['errors']}", res.status_code)
            if res.status_code >= 400:
                raise ProviderError(self.name, f"API error: {res.status_code}", res.status_code)
            return body.get("data") or {}

        raise ProviderError(self.name, "exhausted retries", 429)

    # ── Service lifecycle ─────────────────────────────────────────

    async def create_service(self, name: str, variables: Optional[dict[str, str]] = None) -> str:
        """Create a service running the runtime image. Returns the service id."""
        logger.info("[railway] createService: %s, image=%s, env=%s", name, self.runtime_image, self.environment_id)
        data = await self.gql(
            """mutation($input: ServiceCreateInput!) {
              serviceCreate(input: $input) { id }
            }""",
            {"input": {"projectId": self.project_id, "environmentId": self.environment_id, "name": name}},
        )
        service_id = (data.get("serviceCreate") or {}).get("id")
        if not service_id:
            raise ProviderError(self.name, f"serviceCreate returned no id for {name}")

        # Image and start command must be set before variables trigger anything
        try:
            await self.update_service_instance(
                service_id, {"startCommand": self.start_command, "source": {"image": self.runtime_image}}
            )
        except ProviderError as exc:
            logger.warning("[railway] Failed to configure service instance for %s: %s", service_id, exc.message)

        await self.set_resource_limits(service_id)

        if variables:
            try:
                await self.upsert_variables(service_id, variables, skip_deploys=True)
            except ProviderError:
                await self._discard_service(service_id, name)
                raise

        return service_id

    async def _discard_service(self, service_id: str, name: str) -> None:
        """Delete a half-configured service. Best-effort."""
        try:
            await self.delete_service(service_id)
            logger.info("[railway] Discarded half-created service %s (%s)", service_id, name)
        except ProviderError as exc:
            logger.warning("[railway] Failed to discard half-created service %s (%s): %s",
                           service_id, name, exc.message)

    async def delete_service(self, service_id: str) -> None:
        await self.gql(
            """mutation($id: String!) {
              serviceDelete(id: $id)
            }""",
            {"id": service_id},
        )

    async def update_service_instance(self, service_id: str, settings: dict) -> None:
        await self.gql(
            """mutation($serviceId: String!, $environmentId: String!, $input: ServiceInstanceUpdateInput!) {
              serviceInstanceUpdate(serviceId: $serviceId, environmentId: $environmentId, input: $input)
            }""",
            {"serviceId": service_id, "environmentId": self.environment_id, "input": settings},
        )

    async def set_resource_limits(self, service_id: str) -> None:
        """Apply CPU/memory limits. Best-effort."""
        try:
            await self.gql(
                """mutation($environmentId: String!, $patch: EnvironmentConfig!, $commitMessage: String) {
                  environmentPatchCommit(environmentId: $environmentId, patch: $patch, commitMessage: $commitMessage)
                }""",
                {
                    "environmentId": self.environment_id,
                    "patch": {
                        "services": {
                            service_id: {
                                "deploy": {
                                    "limitOverride": {
                                        "containers": {
                                            "cpu": self.cpu_limit,
                                            "memoryBytes": self.memory_gb * 1024 ** 3,
                                        }
                                    }
                                }
                            }
                        }
                    },
                    "commitMessage": f"Set resource limits: {self.cpu_limit} vCPU, {self.memory_gb} GB RAM",
                },
            )
        except ProviderError as exc:
            logger.warning("[railway] Failed to set limits for %s: %s", service_id, exc.message)

    async def upsert_variables(self, service_id: str, variables: dict[str, str], skip_deploys: bool = False) -> None:
        await self.gql(
            """mutation($input: VariableCollectionUpsertInput!) {
              variableCollectionUpsert(input: $input)
            }""",
            {
                "input": {
                    "projectId": self.project_id,
                    "environmentId": self.environment_id,
                    "serviceId": service_id,
                    "variables": variables,
                    "skipDeploys": skip_deploys,
                }
            },
        )

    async def create_domain(self, service_id: str) -> str:
        data = await self.gql(
            """mutation($input: ServiceDomainCreateInput!) {
              serviceDomainCreate(input: $input) { domain }
            }""",
            {"input": {"serviceId": service_id, "environmentId": self.environment_id}},
        )
        domain = (data.get("serviceDomainCreate") or {}).get("domain")
        if not domain:
            raise ProviderError(self.name, f"serviceDomainCreate returned no domain for {service_id}")
        return domain

    async def redeploy_service(self, service_id: str) -> None:
        """Redeploy the latest deployment of a service."""
        data = await self.gql(
            """query($id: String!) {
              service(id: $id) {
                deployments(first: 1) { edges { node { id } } }
              }
            }""",
            {"id": service_id},
        )
        deployments = _edges(data.get("service"), "deployments")
        if not deployments:
            raise ProviderError(self.name, "No deployment found to redeploy")
        await self.gql(
            """mutation($id: String!, $environmentId: String!) {
              deploymentRedeploy(id: $id, environmentId: $environmentId)
            }""",
            {"id": deployments[0]["id"], "environmentId": self.environment_id},
        )

    # ── Volumes ───────────────────────────────────────────────────

    async def create_volume(self, service_id: str) -> dict:
        data = await self.gql(
            """mutation($input: VolumeCreateInput!) {
              volumeCreate(input: $input) { id name }
            }""",
            {
                "input": {
                    "projectId": self.project_id,
                    "serviceId": service_id,
                    "mountPath": self.volume_mount_path,
                    "environmentId": self.environment_id,
                }
            },
        )
        return data.get("volumeCreate") or {}

    async def ensure_volume(self, service_id: str) -> Optional[str]:
        """Try to attach a volume. Returns the volume id, or None after 3 failed attempts."""
        for attempt in range(1, VOLUME_ATTEMPTS + 1):
            try:
                volume = await self.create_volume(service_id)
                logger.info("[railway] Created volume: %s", volume.get("id"))
                return volume.get("id")
            except ProviderError as exc:
                logger.warning("[railway] Volume attempt %d/%d failed for %s: %s",
                               attempt, VOLUME_ATTEMPTS, service_id, exc.message)
                if attempt < VOLUME_ATTEMPTS:
                    await asyncio.sleep(GQL_BASE_DELAY)
        return None

    async def list_volumes(self) -> list[ProjectVolume]:
        """Every volume in the project with the services it is attached to."""
        data = await self.gql(
            """query($id: String!) {
              project(id: $id) {
                volumes {
                  edges {
                    node {
                      id
                      name
                      createdAt
                      volumeInstances { edges { node { serviceId } } }
                    }
                  }
                }
              }
            }""",
            {"id": self.project_id},
        )
        project = data.get("project")
        if not project:
            raise ProviderError(self.name, f"project {self.project_id} returned no volumes")
        return [
            ProjectVolume(
                id=volume["id"],
                name=volume.get("name") or "",
                created_at=volume.get("createdAt"),
                service_ids=[vi["serviceId"] for vi in _edges(volume, "volumeInstances") if vi.get("serviceId")],
            )
            for volume in _edges(project, "volumes")
            if volume.get("id")
        ]

    async def list_volumes_by_service(self) -> dict[str, list[str]]:
        """All project volumes grouped by the service they are attached to."""
        by_service: dict[str, list[str]] = {}
        for volume in await self.list_volumes():
            for sid in volume.service_ids:
                by_service.setdefault(sid, []).append(volume.id)
        return by_service

    async def delete_volume(self, volume_id: str, service_id: str) -> None:
        """Delete one volume, retrying with linear backoff. Raises after the last attempt."""
        for attempt in range(1, VOLUME_ATTEMPTS + 1):
            try:
                await self.gql(
                    "mutation($volumeId: String!) { volumeDelete(volumeId: $volumeId) }",
                    {"volumeId": volume_id},
                )
                logger.info("[railway] Deleted volume %s (was attached to %s)", volume_id, service_id)
                return
            except ProviderError as exc:
                logger.warning("[railway] Failed to delete volume %s (attempt %d/%d): %s",
                               volume_id, attempt, VOLUME_ATTEMPTS, exc.message)
                if attempt == VOLUME_ATTEMPTS:
                    raise
                await asyncio.sleep(GQL_BASE_DELAY * attempt)

    # ── Status ────────────────────────────────────────────────────

    async def fetch_service_status(self, service_id: str) -> Optional[ComputeService]:
        """Live status of a single service, or None if Railway does not know it."""
        data = await self.gql(
            f"""query($id: String!) {{
              service(id: $id) {{ {_SERVICE_FIELDS} }}
            }}""",
            {"id": service_id},
        )
        node = data.get("service")
        if not node:
            return None
        return _to_compute_service(node, self.environment_id)

    async def list_project_services(self) -> list[ComputeService]:
        """Every service in the project with deploy status, domain and image."""
        data = await self.gql(
            f"""query($id: String!) {{
              project(id: $id) {{
                services(first: 500) {{
                  edges {{ node {{ {_SERVICE_FIELDS} }} }}
                }}
              }}
            }}""",
            {"id": self.project_id},
        )
        project = data.get("project")
        if not project or project.get("services") is None:
            raise ProviderError(self.name, f"project {self.project_id} returned no services")
        return [_to_compute_service(node, self.environment_id) for node in _edges(project, "services")]
