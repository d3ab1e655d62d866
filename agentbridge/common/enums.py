from enum import IntEnum, StrEnum


class PostRole(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class EventType(StrEnum):
    TEXT = "text"
    END = "end"
    ERROR = "error"
    TOOL_CALLS = "tool_calls"


class ServiceType(StrEnum):
    OPENAI = "openai"
    OPENAI_COMPATIBLE = "openaicompatible"
    AZURE = "azure"
    ANTHROPIC = "anthropic"
    BEDROCK = "bedrock"
    ASKSAGE = "asksage"


class ToolCallStatus(IntEnum):
    """Wire values are stored in post props, keep them stable."""
    PENDING = 0
    ACCEPTED = 1
    REJECTED = 2
    ERROR = 3
    SUCCESS = 4


class AccessLevel(IntEnum):
    ALL = 0
    ALLOW = 1
    BLOCK = 2
    NONE = 3


class ChannelType(StrEnum):
    OPEN = "O"
    PRIVATE = "P"
    DIRECT = "D"
    GROUP = "G"


class StreamControl(StrEnum):
    START = "start"
    END = "end"
    CANCEL = "cancel"
    TOOL_CALL = "tool_call"


class AnalysisType(StrEnum):
    SUMMARIZE_THREAD = "summarize_thread"
    ACTION_ITEMS = "action_items"
    OPEN_QUESTIONS = "open_questions"


class StreamOutcome(StrEnum):
    """How a streaming writer finished a post."""
    DONE = "done"
    TOOL_CALLS = "tool_calls"
    ERROR = "error"
    CANCELLED = "cancelled"
