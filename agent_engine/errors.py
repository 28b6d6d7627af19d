"""Exception types for the agent execution engine."""


class EngineError(Exception):
    """Base class for engine errors."""


class UpstreamUnavailable(EngineError):
    """A read-only signal feed failed or timed out."""


class ExecutionFailed(EngineError):
    """The swap collaborator rejected or failed a trade."""


class PersistenceError(EngineError):
    """A mutation batch could not be written."""


class InvariantViolation(EngineError):
    """Internal state would break an engine invariant (fatal for one agent evaluation)."""


class DeadlineExceeded(EngineError):
    """An agent evaluation ran past its per-cycle deadline."""


class AgentNotFound(EngineError):
    """Control surface was asked about an unknown agent."""


class InvalidAgentState(EngineError):
    """Control operation not allowed in the agent's current state."""


class AgentValidationError(EngineError, ValueError):
    """Agent creation parameters are out of range."""
