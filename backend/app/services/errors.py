"""Errors that abort webhook processing."""

from typing import Optional


class WebhookProcessingError(Exception):
    """Fatal pipeline error, reported to the provider as a failed acknowledgement."""

    def __init__(self, message: str, conversation_id: Optional[str] = None):
        super().__init__(message)
        self.conversation_id = conversation_id


class MalformedPayload(WebhookProcessingError):
    """The notification matches none of the known payload shapes."""


class AgentNotFound(WebhookProcessingError):
    """The provider agent id does not resolve to a known agent."""

    def __init__(self, agent_provider_id: str, conversation_id: Optional[str] = None):
        super().__init__(
            f"Agent not found for ElevenLabs agent ID: {agent_provider_id}",
            conversation_id=conversation_id,
        )
        self.agent_provider_id = agent_provider_id
