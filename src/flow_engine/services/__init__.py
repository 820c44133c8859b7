"""Collaborator capabilities and their in-memory and Redis implementations."""
from flow_engine.services.capabilities import (
    AIGenerator,
    AuditStore,
    Capabilities,
    CapabilityUnavailableError,
    ChatHistoryStore,
    ChatTurn,
    ContentQueryClient,
    FlagCache,
    MessagingClient,
    RateLimiter,
    SendResult,
    SenderAction,
    SheetsExporter,
)
from flow_engine.services.memory import (
    InMemoryAuditStore,
    InMemoryChatHistory,
    InMemoryFlagCache,
    InMemoryRateLimiter,
    InMemorySheetsExporter,
    OutboundCall,
    RecordingMessenger,
    ScriptedAIGenerator,
    StaticContentQuery,
)

__all__ = [
    "AIGenerator",
    "AuditStore",
    "Capabilities",
    "CapabilityUnavailableError",
    "ChatHistoryStore",
    "ChatTurn",
    "ContentQueryClient",
    "FlagCache",
    "MessagingClient",
    "RateLimiter",
    "SendResult",
    "SenderAction",
    "SheetsExporter",
    "InMemoryAuditStore",
    "InMemoryChatHistory",
    "InMemoryFlagCache",
    "InMemoryRateLimiter",
    "InMemorySheetsExporter",
    "OutboundCall",
    "RecordingMessenger",
    "ScriptedAIGenerator",
    "StaticContentQuery",
]
