"""Custom exceptions for Gravity Claw."""


class GravityClawError(Exception):
    """Base exception for Gravity Claw."""

    pass


class ConfigurationError(GravityClawError):
    """Configuration-related errors."""

    pass


class LLMError(GravityClawError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (rate limit, auth, network, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderTransientError(LLMAPIError):
    """Retryable provider failure (network class or retryable status)."""

    pass


class ProviderAuthError(LLMAPIError):
    """Provider rejected the credentials."""

    pass


class ProviderOverloadedError(ProviderTransientError):
    """Provider is temporarily unavailable or overloaded."""

    pass


class ToolError(GravityClawError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f'Tool "{tool_name}" failed: {message}')
        self.tool_name = tool_name


class ToolTimeoutError(ToolError):
    """Tool did not settle within its timeout."""

    def __init__(self, tool_name: str, timeout_seconds: float):
        label = int(timeout_seconds) if float(timeout_seconds).is_integer() else timeout_seconds
        super().__init__(f'Tool "{tool_name}" timed out after {label}s')
        self.tool_name = tool_name
        self.timeout_seconds = timeout_seconds


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class ToolValidationError(ToolError):
    """Tool arguments do not match the tool's parameter schema."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f'Invalid arguments for tool "{tool_name}": {message}')
        self.tool_name = tool_name


class BudgetExceededError(GravityClawError):
    """A run-scoped tool budget tripped. Used to steer the model, not to fail the run."""

    def __init__(self, kind: str, tool_name: str, instruction: str):
        super().__init__(instruction)
        self.kind = kind
        self.tool_name = tool_name
        self.instruction = instruction


class MaxIterationsExceededError(GravityClawError):
    """The agent loop ran out of iterations without a final answer."""

    def __init__(self, iterations: int):
        super().__init__(f"Agent reached {iterations} iterations without a final answer")
        self.iterations = iterations


class MemoryWriteError(GravityClawError):
    """Background memory write failed."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"Memory write failed during {stage}: {message}")
        self.stage = stage
