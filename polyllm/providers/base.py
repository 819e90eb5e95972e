"""Abstract base for chat-completion transports."""

from abc import ABC, abstractmethod

from polyllm.models import ModelDescriptor, ModelResponse


class ProviderError(Exception):
    """Raised when a chat-completion call fails."""

    def __init__(self, model_name: str, message: str) -> None:
        self.model_name = model_name
        self.message = message
        super().__init__(f"[{model_name}] {message}")


class ChatProvider(ABC):
    """One endpoint that serves many models, addressed by ModelDescriptor.id."""

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'openrouter')."""
        ...

    @abstractmethod
    async def generate(self, model: ModelDescriptor, prompt: str, max_tokens: int) -> ModelResponse:
        """Send a single-user-message chat completion for ``model``.

        Args:
            model: The model to address.
            prompt: The full prompt text to send.
            max_tokens: Output token limit, already clamped by the caller.

        Returns:
            ModelResponse with non-empty content and usage metadata.

        Raises:
            ProviderError: On timeout, non-2xx status, malformed body or empty content.
        """
        ...
