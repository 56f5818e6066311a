from .types import (
    Message,
    Role,
    Usage,
    assistant_message,
    system_message,
    tool_call_message,
    tool_result_message,
    user_message,
)

__all__ = [
    "Message",
    "Role",
    "Usage",
    "assistant_message",
    "system_message",
    "tool_call_message",
    "tool_result_message",
    "user_message",
]
