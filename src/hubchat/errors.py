"""Application-level exception types for hubchat."""

from __future__ import annotations


class HubchatError(Exception):
    """Base exception for hubchat."""


class ConfigurationError(HubchatError):
    """Raised when required configuration is missing or malformed."""


class ModelUnavailableError(HubchatError):
    """Raised for network, auth or quota failures from the model collaborator."""


class ConversationBusyError(HubchatError):
    """Raised when a turn is started while another is in flight on the same conversation."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation '{conversation_id}' already has a turn in flight")
        self.conversation_id = conversation_id


class SchemaValidationError(HubchatError):
    """Raised by an input schema when raw arguments do not match."""

    def __init__(self, field_path: str, message: str) -> None:
        super().__init__(f"{field_path}: {message}")
        self.field_path = field_path
        self.message = message


class CapabilityError(HubchatError):
    """Base exception for capability lookup, validation and execution."""


class UnknownCapabilityError(CapabilityError):
    """Raised when the model requests a capability that is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown capability: {name}")
        self.name = name


class InvalidArgumentsError(CapabilityError):
    """Raised when capability arguments fail schema validation."""

    def __init__(self, name: str, field_path: str, message: str) -> None:
        super().__init__(f"Invalid arguments for '{name}' at {field_path}: {message}")
        self.name = name
        self.field_path = field_path


class CapabilityExecutionError(CapabilityError):
    """Raised when a capability handler fails; the original error is the cause."""

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(f"Capability '{name}' failed: {cause!s}")
        self.name = name


class DispatchError(HubchatError):
    """Single failure kind reported by the dispatcher to the orchestrator."""

    def __init__(self, cause: CapabilityError) -> None:
        super().__init__(str(cause))
        self.cause = cause


class StreamContractError(HubchatError):
    """Base exception for misuse of a streamable value. Never recovered."""


class ClosedStreamError(StreamContractError):
    """Raised when a value is pushed into a stream that is already done."""


class StreamAlreadySubscribedError(StreamContractError):
    """Raised when a second subscriber attaches to a single-subscriber stream."""
