"""Engine-level exception types.

Node handlers never raise these past the driver; they surface as
``StepResult(status=error)``. They are raised at the edges of the engine:
flow loading, graph integrity checks inside the driver, and persistence.
"""


class FlowEngineError(Exception):
    """Base class for all flowengine errors."""


class FlowValidationError(FlowEngineError):
    """A flow definition is structurally invalid or has malformed node config."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Invalid flow: " + "; ".join(self.errors))


class GraphIntegrityError(FlowEngineError):
    """A transition points at a node id that does not exist in the flow."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class FlowNotFoundError(FlowEngineError):
    """The requested flow id is unknown to the flow store."""

    def __init__(self, flow_id: str):
        self.flow_id = flow_id
        super().__init__(f"Flow not found: {flow_id}")


class PersistenceError(FlowEngineError):
    """Loading or saving conversation state failed."""


class InvalidRequestError(FlowEngineError):
    """A chat request is missing required fields or is malformed."""

    def __init__(self, message: str, code: str = "invalid_request"):
        self.code = code
        super().__init__(message)


class ConversationNotFoundError(FlowEngineError):
    """The requested conversation id has no saved state."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")
