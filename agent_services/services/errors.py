"""Orchestrator error taxonomy. Each error knows the HTTP status it maps to."""


class OrchestratorError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequestError(OrchestratorError):
    status_code = 400


class UnknownToolError(OrchestratorError):
    status_code = 400

    def __init__(self, tool_id: str):
        super().__init__(f"Unknown tool: {tool_id}")
        self.tool_id = tool_id


class ToolNotConfiguredError(OrchestratorError):
    """The provider credential for a tool is missing."""
    status_code = 400

    def __init__(self, tool_id: str, credential: str):
        super().__init__(f"{credential} not configured")
        self.tool_id = tool_id


class InstanceNotFoundError(OrchestratorError):
    status_code = 404

    def __init__(self, instance_id: str):
        super().__init__(f"Instance {instance_id} not found")
        self.instance_id = instance_id


class InstanceExistsError(OrchestratorError):
    status_code = 409

    def __init__(self, instance_id: str):
        super().__init__(f"Instance {instance_id} already exists")
        self.instance_id = instance_id


class ToolAlreadyProvisionedError(OrchestratorError):
    status_code = 409

    def __init__(self, instance_id: str, tool_id: str):
        super().__init__(f"Tool {tool_id} already provisioned for {instance_id}")
        self.instance_id = instance_id
        self.tool_id = tool_id


class ProvisioningError(OrchestratorError):
    """Creation failed upstream; already-created resources were rolled back."""
    status_code = 500


class UpstreamUnavailableError(OrchestratorError):
    status_code = 502
