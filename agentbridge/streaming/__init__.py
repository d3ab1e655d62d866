from .service import PostStreamWriter, StreamingService, modify_post_for_bot

__all__ = ["PostStreamWriter", "StreamingService", "modify_post_for_bot"]
