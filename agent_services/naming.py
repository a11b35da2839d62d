"""
Naming convention for agent resources.

Every resource this system creates carries `<prefix><instanceId>` in its
name, client id or customer reference. That is how the reconciler tells
managed resources apart and recovers the owning instance id.
"""

from typing import Optional

AGENT_PREFIX = "convos-agent-"
POOL_MANAGER = "convos-agent-pool-manager"


def service_name(instance_id: str, prefix: str = AGENT_PREFIX) -> str:
    """Canonical resource name for an instance."""
    return f"{prefix}{instance_id}"


def is_agent_service(name: Optional[str], prefix: str = AGENT_PREFIX, pool_manager: str = POOL_MANAGER) -> bool:
    """True if `name` looks like an agent resource (not the pool manager)."""
    return bool(name) and name.startswith(prefix) and name != pool_manager


def parse_instance_id(name: Optional[str], prefix: str = AGENT_PREFIX) -> Optional[str]:
    """Instance id embedded in a managed name, or None if the name is not managed."""
    if not name or not name.startswith(prefix):
        return None
    return name[len(prefix):] or None
