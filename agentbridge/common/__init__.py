from .enums import (
    AccessLevel,
    AnalysisType,
    ChannelType,
    EventType,
    PostRole,
    ServiceType,
    StreamControl,
    StreamOutcome,
    ToolCallStatus,
)

__all__ = [
    "AccessLevel",
    "AnalysisType",
    "ChannelType",
    "EventType",
    "PostRole",
    "ServiceType",
    "StreamControl",
    "StreamOutcome",
    "ToolCallStatus",
]
