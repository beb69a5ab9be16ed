"""Translate an EmailFilter into Gmail search syntax."""

from src.gmail.types import EmailFilter


def build_query(email_filter: EmailFilter) -> str:
    """Return the Gmail ``q`` string for a filter.

    Terms are emitted in a fixed order (sender, then unread).  An empty
    string matches every message.
    """
    parts: list[str] = []
    if email_filter.sender_email:
        parts.append(f"from:{email_filter.sender_email}")
    if email_filter.only_unread:
        parts.append("is:unread")
    return " ".join(parts)
