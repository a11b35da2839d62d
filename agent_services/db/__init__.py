from agent_services.db.models import (
    Base, InstanceInfra, InstanceService, ToolId, ResourceStatus,
)
from agent_services.db.database import get_db, init_db, drop_db, async_session_maker, engine

__all__ = [
    "Base",
    # Resource store
    "InstanceInfra",
    "InstanceService",
    "ToolId",
    "ResourceStatus",
    # Database
    "get_db",
    "init_db",
    "drop_db",
    "async_session_maker",
    "engine",
]
