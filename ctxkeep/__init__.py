__version__ = "0.1.0"

from .agents.runner import ConversationRunner, StepResult
from .checkpoint import (
    BaseCheckpointStore,
    Checkpoint,
    FileCheckpointStore,
    HttpCheckpointStore,
    MemoryCheckpointStore,
    SqliteCheckpointStore,
    keep_last,
)
from .errors import (
    CheckpointConflictError,
    CheckpointError,
    CheckpointWriteError,
    CompactionError,
    ConcurrentCompactionError,
    ContextLengthExceededError,
    CtxKeepError,
    OutOfOrderCheckpointError,
    PolicyMisconfigurationError,
    SummarizationError,
)
from .features.tracing import initialize_otel
from .llm import FunctionInvoker, LiteLLMInvoker, ModelInvoker, ModelResponse
from .memory import (
    CompactionDecision,
    CompactionPolicy,
    CompactionPolicyConfig,
    CompactionResult,
    CompactionScheduler,
    CompactionTrigger,
    ContextManager,
    SummarizationConfig,
    TokenBudget,
    TokenCounter,
    compact_history,
    decide,
    estimate_message_tokens,
    estimate_messages_tokens,
    estimate_tokens,
)
from .types import (
    Message,
    Usage,
    assistant_message,
    system_message,
    tool_call_message,
    tool_result_message,
    user_message,
)
from .utils.config import ContextSettings, configure_file_logging, load_settings

__all__ = [
    "BaseCheckpointStore",
    "Checkpoint",
    "CheckpointConflictError",
    "CheckpointError",
    "CheckpointWriteError",
    "CompactionDecision",
    "CompactionError",
    "CompactionPolicy",
    "CompactionPolicyConfig",
    "CompactionResult",
    "CompactionScheduler",
    "CompactionTrigger",
    "ConcurrentCompactionError",
    "ContextLengthExceededError",
    "ContextManager",
    "ContextSettings",
    "ConversationRunner",
    "CtxKeepError",
    "FileCheckpointStore",
    "FunctionInvoker",
    "HttpCheckpointStore",
    "LiteLLMInvoker",
    "MemoryCheckpointStore",
    "Message",
    "ModelInvoker",
    "ModelResponse",
    "OutOfOrderCheckpointError",
    "PolicyMisconfigurationError",
    "SqliteCheckpointStore",
    "StepResult",
    "SummarizationConfig",
    "SummarizationError",
    "TokenBudget",
    "TokenCounter",
    "Usage",
    "assistant_message",
    "compact_history",
    "configure_file_logging",
    "decide",
    "estimate_message_tokens",
    "estimate_messages_tokens",
    "estimate_tokens",
    "initialize_otel",
    "keep_last",
    "load_settings",
    "system_message",
    "tool_call_message",
    "tool_result_message",
    "user_message",
]
