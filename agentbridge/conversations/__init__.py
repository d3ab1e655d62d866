from .builder import ConversationBuilder
from .context_builder import ContextBuilder, format_time_for_user
from .service import ConversationsService
from .threads import ThreadAnalyzer

__all__ = [
    "ConversationBuilder",
    "ContextBuilder",
    "ConversationsService",
    "ThreadAnalyzer",
    "format_time_for_user",
]
