"""Abstract base for all AI model providers."""

from abc import ABC, abstractmethod

from party.models import Completion

TIMEOUT = "timeout"
NETWORK = "network"
AUTH = "auth"
RATE_LIMIT = "rate_limit"
UNKNOWN = "unknown"

CATEGORIES = (TIMEOUT, NETWORK, AUTH, RATE_LIMIT, UNKNOWN)
RETRYABLE = frozenset({TIMEOUT, NETWORK, RATE_LIMIT})


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str, category: str = UNKNOWN) -> None:
        self.provider_name = provider_name
        self.category = category if category in CATEGORIES else UNKNOWN
        super().__init__(f"[{provider_name}] {message}")


def categorize_error(exc: BaseException) -> str:
    """Map an SDK or transport exception to a normalized category."""
    if isinstance(exc, ProviderError):
        return exc.category
    if isinstance(exc, TimeoutError):
        return TIMEOUT

    status = getattr(exc, "status_code", None) or getattr(exc, "code", None)
    if isinstance(status, int):
        if status in (401, 403):
            return AUTH
        if status == 429:
            return RATE_LIMIT
        if status in (408, 504):
            return TIMEOUT
        if status >= 500:
            return NETWORK

    text = f"{type(exc).__name__} {exc}".lower()
    if "timeout" in text or "timed out" in text:
        return TIMEOUT
    if "unauthorized" in text or "authentication" in text or "api key" in text:
        return AUTH
    if "rate limit" in text or "ratelimit" in text or "too many requests" in text:
        return RATE_LIMIT
    if "connect" in text or "network" in text or "proxy" in text:
        return NETWORK
    return UNKNOWN


class AIProvider(ABC):
    """Abstract base for all AI model providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the participant id this provider serves."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Completion:
        """Generate a completion.

        Args:
            system_prompt: Persona and rules for the model.
            prompt: The transcript and turn instruction.
            temperature: Overrides the participant's configured temperature.
            max_tokens: Overrides the participant's configured limit.

        Returns:
            Completion with content and usage.

        Raises:
            ProviderError: On API failure, timeout, or invalid response.
        """
        ...
