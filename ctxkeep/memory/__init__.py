"""Memory module - token budgeting and compaction for long-running conversations."""

from .compaction import (
    DEFAULT_SUMMARY_PROMPT,
    STRUCTURED_SUMMARY_PROMPT,
    SUMMARY_PREFIX,
    build_summary_message,
    compact_history,
    format_messages_for_summary,
    format_structured_summary,
    is_summary_message,
    parse_structured_summary,
)
from .context_manager import ContextManager
from .history import (
    ToolResultRef,
    count_messages_by_role,
    extract_tool_results,
    find_last_user_message,
)
from .policy import (
    BuiltInEvaluator,
    CustomEvaluator,
    PolicyEvaluator,
    create_token_budget,
    decide,
    resolve_policy,
    resolve_summarization,
    select_evaluator,
)
from .scheduler import CompactionScheduler, CompactionTask, SchedulerShutdownError
from .tokens import TokenCounter, estimate_message_tokens, estimate_messages_tokens, estimate_tokens
from .types import (
    DEFAULT_COMPACTION_POLICY,
    DEFAULT_SUMMARIZATION_CONFIG,
    NO_COMPACTION,
    CompactionDecision,
    CompactionPolicy,
    CompactionPolicyConfig,
    CompactionResult,
    CompactionTrigger,
    ProcessResult,
    StructuredSummary,
    SummarizationConfig,
    TokenBudget,
)

__all__ = [
    "BuiltInEvaluator",
    "CompactionDecision",
    "CompactionPolicy",
    "CompactionPolicyConfig",
    "CompactionResult",
    "CompactionScheduler",
    "CompactionTask",
    "CompactionTrigger",
    "ContextManager",
    "CustomEvaluator",
    "DEFAULT_COMPACTION_POLICY",
    "DEFAULT_SUMMARIZATION_CONFIG",
    "DEFAULT_SUMMARY_PROMPT",
    "NO_COMPACTION",
    "PolicyEvaluator",
    "ProcessResult",
    "STRUCTURED_SUMMARY_PROMPT",
    "SUMMARY_PREFIX",
    "SchedulerShutdownError",
    "StructuredSummary",
    "SummarizationConfig",
    "TokenBudget",
    "TokenCounter",
    "ToolResultRef",
    "build_summary_message",
    "compact_history",
    "count_messages_by_role",
    "create_token_budget",
    "decide",
    "estimate_message_tokens",
    "estimate_messages_tokens",
    "estimate_tokens",
    "extract_tool_results",
    "find_last_user_message",
    "format_messages_for_summary",
    "format_structured_summary",
    "is_summary_message",
    "parse_structured_summary",
    "resolve_policy",
    "resolve_summarization",
    "select_evaluator",
]
