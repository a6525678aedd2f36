"""Exception types raised by Taleweave services.

Lookups of unknown agents, relationships, memories, locations or items never raise:
they log a warning and return ``None``/``False``. The classes below cover the
remaining cases, which callers are expected to catch:

- validation failures (bad game phase, malformed snapshot, unknown prompt template)
- text-generation failures after retries are exhausted
- requests rejected because the request queue was closed
"""

from typing import List, Sequence

from pydantic import ValidationError


def validation_issues(error: ValidationError) -> List[str]:
    """Flatten a pydantic ValidationError into `field.path: message` lines."""
    issues = []
    for err in error.errors(include_url=False):
        loc = ".".join(str(part) for part in err.get("loc", ())) or "root"
        issues.append(f"{loc}: {err.get('msg', 'validation error')}")
    return issues or ["root: input did not match the expected schema"]


class TaleweaveError(Exception):
    """Base class for all Taleweave errors."""


class AgentNotFoundError(TaleweaveError, LookupError):
    """Raised inside the response policy when an agent id does not resolve."""

    def __init__(self, agent_id: str) -> None:
        self.agent_id = agent_id
        super().__init__(f"Agent not found: {agent_id}")


class UnsupportedAgentTypeError(TaleweaveError):
    """Raised when the response policy is asked to answer for a player agent."""

    def __init__(self, agent_id: str, agent_type: str) -> None:
        self.agent_id = agent_id
        self.agent_type = agent_type
        super().__init__(f"Agent {agent_id} of type '{agent_type}' cannot generate responses")


class InvalidPhaseError(TaleweaveError, ValueError):
    """Raised when a game phase outside the known set is requested."""

    def __init__(self, phase: object, allowed: Sequence[str]) -> None:
        self.phase = phase
        super().__init__(
            f"Invalid game phase: {phase!r}. Expected one of: {', '.join(allowed)}"
        )


class UnknownPromptTemplateError(TaleweaveError, KeyError):
    """Raised when a prompt template name is not registered."""

    def __init__(self, name: str, available: Sequence[str]) -> None:
        self.name = name
        self.available = list(available)
        super().__init__(
            f"Unknown prompt template '{name}'. Available: {', '.join(self.available)}"
        )

    def __str__(self) -> str:  # KeyError would otherwise repr() the message
        return self.args[0]


class SnapshotValidationError(TaleweaveError, ValueError):
    """Raised when a snapshot fails validation; live state is left untouched.

    The ``issues`` list holds one line per failing field so the caller can show a
    precise message instead of a generic "invalid file".
    """

    def __init__(self, message: str, issues: Sequence[str] = ()) -> None:
        self.issues = list(issues)
        lines = [message]
        lines.extend(f"  - {issue}" for issue in self.issues)
        super().__init__("\n".join(lines))


class ProviderError(TaleweaveError, RuntimeError):
    """Raised when a text-generation provider fails (HTTP error, timeout, empty reply)."""


class LocalLLMError(ProviderError):
    """Raised when a local Ollama invocation fails."""


class QueueClosedError(TaleweaveError, RuntimeError):
    """Raised for requests that were pending, or submitted, after the queue closed."""


__all__ = [
    "TaleweaveError",
    "AgentNotFoundError",
    "UnsupportedAgentTypeError",
    "InvalidPhaseError",
    "UnknownPromptTemplateError",
    "SnapshotValidationError",
    "ProviderError",
    "LocalLLMError",
    "QueueClosedError",
    "validation_issues",
]
