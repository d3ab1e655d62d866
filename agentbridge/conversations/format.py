"""Plain-text rendering of posts and threads for prompts."""

import json

from ..platform.models import Post, ThreadData


def format_post_body(post: Post) -> str:
    """Post message followed by any message attachments flattened to text."""
    attachments = post.attachments()
    if not attachments:
        return post.message

    lines = [post.message]
    for attachment in attachments:
        parts: list[str] = []
        for key in ("pretext", "title", "text"):
            if attachment.get(key):
                parts.append(attachment[key])
        for field in attachment.get("fields") or []:
            try:
                value = json.dumps(field.get("value"))
            except (TypeError, ValueError):
                continue
            parts.append(f"{field.get('title', '')}: {value}")
        if attachment.get("footer"):
            parts.append(attachment["footer"])
        lines.append("\n".join(parts))
    return "\n".join(lines)


def format_thread(thread: ThreadData) -> str:
    """``username: body`` blocks separated by blank lines."""
    blocks = []
    for post in thread.posts:
        user = thread.users_by_id.get(post.user_id)
        username = user.username if user else post.user_id
        blocks.append(f"{username}: {format_post_body(post)}\n\n")
    return "".join(blocks)
