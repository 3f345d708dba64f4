"""Custom exception hierarchy for the copilot runtime.

Provider and tool failures are normally converted into events or tool results
before they reach a caller; these exceptions carry them until that point. Only
programming errors (bad tool registration, malformed requests) are expected to
propagate out of the public API.
"""


class CopilotRuntimeError(Exception):
    """Base exception for all copilot runtime errors."""


class ProviderError(CopilotRuntimeError):
    """Raised when a model vendor call fails."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        code: str | None = None,
    ):
        self.provider = provider
        self.status_code = status_code
        self.code = code or (f"{provider.upper()}_ERROR" if provider else "PROVIDER_ERROR")
        self.detail = message
        status_info = f" (status: {status_code})" if status_code else ""
        prefix = f"{provider} " if provider else ""
        super().__init__(f"{prefix}API error{status_info}: {message}")


class ProviderAuthenticationError(ProviderError):
    """Raised when the vendor rejects the configured credentials."""


class ProviderRateLimitError(ProviderError):
    """Raised when the vendor answers 429."""

    retryable = True


class ProviderUnavailableError(ProviderError):
    """Raised on 5xx answers and connection failures."""

    retryable = True


class ProviderResponseError(ProviderError):
    """Raised when a vendor response or stream frame cannot be interpreted."""


class ToolRegistrationError(CopilotRuntimeError, ValueError):
    """Raised when a tool definition is malformed or collides with another."""

    def __init__(self, message: str, tool_name: str | None = None):
        self.tool_name = tool_name
        tool_info = f" [{tool_name}]" if tool_name else ""
        super().__init__(f"Invalid tool{tool_info}: {message}")


class ToolNotFoundError(CopilotRuntimeError, KeyError):
    """Raised when a tool lookup fails."""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"Tool not found: {tool_name}")

    def __str__(self) -> str:
        return self.args[0]


class InvalidRequestError(CopilotRuntimeError):
    """Raised when a chat request is malformed."""


class StreamConsumedError(CopilotRuntimeError):
    """Raised when a StreamResult is consumed more than once."""

    def __init__(self):
        super().__init__(
            "StreamResult has already been consumed. Each StreamResult can only be consumed once."
        )


class ApprovalNotFoundError(CopilotRuntimeError, LookupError):
    """Raised when approving or rejecting an execution that is not awaiting approval."""

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"No pending approval for execution: {execution_id}")
