"""Core compaction logic.

Folds an older prefix of the conversation into a single summary message via a
model call, keeping the last N messages verbatim (plus any tool results that
must stay paired with their calls).
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

from ..errors import SummarizationError
from ..llm.invoker import ModelInvoker
from ..types.types import Message, Usage
from .policy import resolve_summarization
from .tokens import TokenCounter
from .types import (
    CompactionResult,
    CompactionTrigger,
    StructuredSummary,
    SummarizationConfig,
)

logger = logging.getLogger(__name__)

# -- Constants ----------------------------------------------------------------

DEFAULT_SUMMARY_PROMPT = (
    "You are summarizing a conversation for context management. "
    "Create a concise summary that:\n"
    "\n"
    "1. Preserves key decisions, facts, and user preferences\n"
    "2. Maintains important technical details and code references\n"
    "3. Notes any pending tasks or unresolved questions\n"
    "4. Captures references to images, files, and media "
    '(e.g., "discussed screenshot of X", "analyzed document Y")\n'
    "5. Uses bullet points for clarity\n"
    "6. Is approximately 200-500 words\n"
    "\n"
    "Do not include:\n"
    "- Pleasantries or greetings\n"
    "- Redundant information\n"
    "- Tool call details (just outcomes)\n"
    "- Verbose explanations\n"
    "- Full image/file contents (just references and context)\n"
    "\n"
    "Format:\n"
    "## Conversation Summary\n"
    "[Your summary here]"
)

STRUCTURED_SUMMARY_PROMPT = (
    "You are summarizing a conversation for context management. "
    "Generate a structured summary in JSON format with the following sections:\n"
    "\n"
    "{\n"
    '  "decisions": ["Key decision 1", "Key decision 2", ...],\n'
    '  "preferences": ["User preference 1", ...],\n'
    '  "current_state": ["Current state fact 1", ...],\n'
    '  "open_questions": ["Unresolved question 1", ...],\n'
    '  "references": ["file.py:123", "user_id: abc123", "URL: https://...", ...]\n'
    "}\n"
    "\n"
    "Guidelines:\n"
    "- decisions: important choices made (architecture, approach, tools)\n"
    "- preferences: user requirements, constraints, style preferences\n"
    "- current_state: what has been implemented, current progress, known issues\n"
    "- open_questions: unresolved issues, pending decisions, items to revisit\n"
    "- references: file paths, identifiers, URLs, config values, images, documents\n"
    "\n"
    "Keep each item concise (1-2 sentences). "
    "Respond ONLY with valid JSON, no additional text."
)

SUMMARY_PREFIX = "[Previous conversation summary]"
SUMMARY_REQUEST = "Please summarize this conversation history:\n\n"
TOOL_RESULT_PREVIEW_CHARS = 200

# Accept the camelCase keys some models insist on producing.
_STRUCTURED_KEY_ALIASES = {
    "currentState": "current_state",
    "openQuestions": "open_questions",
}

_STRUCTURED_SECTIONS = (
    ("decisions", "Decisions"),
    ("preferences", "Preferences"),
    ("current_state", "Current State"),
    ("open_questions", "Open Questions"),
    ("references", "References"),
)

# -- Helpers ------------------------------------------------------------------


def is_summary_message(message: Message) -> bool:
    """Detect a summary message produced by a previous compaction."""
    if message.metadata.get("compaction_summary"):
        return True
    return message.text().startswith(SUMMARY_PREFIX)


def build_summary_message(
    summary: str, trigger: CompactionTrigger, fallback: bool = False
) -> Message:
    """Wrap summary text as the synthetic message that replaces the folded prefix."""
    metadata: dict[str, Any] = {"compaction_summary": True, "trigger": trigger.value}
    if fallback:
        metadata["fallback"] = True
    return Message(role="assistant", content=f"{SUMMARY_PREFIX}\n{summary}", metadata=metadata)


def _describe_image(block: dict[str, Any]) -> str:
    image = block.get("image")
    if isinstance(image, str):
        if image.startswith(("http://", "https://")):
            return f"[Image: {image}]"
        if image.startswith("data:"):
            mime_type = image[5:].split(";", 1)[0].split(",", 1)[0] or "unknown"
            return f"[Image: {mime_type}, base64 data]"
    return "[Image: embedded data]"


def _describe_file(block: dict[str, Any]) -> str:
    mime_type = block.get("mime_type") or "unknown"
    data = block.get("data")
    if isinstance(data, str) and data.startswith(("http://", "https://")):
        return f"[File: {mime_type}, URL: {data}]"
    return f"[File: {mime_type}, embedded data]"


def _preview(output: Any) -> str:
    text = output if isinstance(output, str) else json.dumps(output, default=str)
    return text[:TOOL_RESULT_PREVIEW_CHARS]


def format_messages_for_summary(messages: Sequence[Message]) -> str:
    """Format messages as text for inclusion in the summarization request."""
    lines = []
    for message in messages:
        role = message.role.upper()
        if isinstance(message.content, str):
            lines.append(f"{role}: {message.content}")
            continue

        parts = []
        for block in message.content:
            block_type = block.get("type")
            if block_type == "text":
                parts.append(block.get("text", ""))
            elif block_type == "tool_call":
                parts.append(f"[Tool call: {block.get('tool_name', 'unknown')}]")
            elif block_type == "tool_result":
                parts.append(f"[Tool result: {_preview(block.get('output', ''))}...]")
            elif block_type == "image":
                parts.append(_describe_image(block))
            elif block_type == "file":
                parts.append(_describe_file(block))
        if parts:
            lines.append(f"{role}: " + "\n".join(parts))
    return "\n\n".join(lines)


def parse_structured_summary(text: str) -> StructuredSummary | None:
    """Parse a JSON summary, tolerating a surrounding markdown code fence."""
    body = text.strip()
    if body.startswith("```"):
        body = body.split("\n", 1)[1] if "\n" in body else ""
        body = body.rsplit("```", 1)[0]
    try:
        data = json.loads(body)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None

    fields = {}
    for key, value in data.items():
        name = _STRUCTURED_KEY_ALIASES.get(key, key)
        if name in StructuredSummary.model_fields and isinstance(value, list):
            fields[name] = [str(item) for item in value]
    return StructuredSummary(**fields)


def format_structured_summary(summary: StructuredSummary) -> str:
    """Render a structured summary as markdown sections, skipping empty ones."""
    sections = []
    for field, title in _STRUCTURED_SECTIONS:
        items = getattr(summary, field)
        if items:
            sections.append(f"## {title}\n" + "\n".join(f"- {item}" for item in items))
    return "\n\n".join(sections)


def _partition(
    history: Sequence[Message], config: SummarizationConfig
) -> tuple[list[Message], list[Message]]:
    """Split history into (to_summarize, surviving), keeping original order."""
    n = len(history)
    split = max(0, n - config.keep_message_count)

    keep = set(range(split, n))
    # System messages are never folded.
    keep.update(i for i in range(split) if history[i].role == "system")

    if config.keep_tool_result_count > 0:
        tool_result_indices = [i for i, m in enumerate(history) if m.is_tool_result]
        keep.update(tool_result_indices[-config.keep_tool_result_count :])

    # A surviving result keeps the call that produced it.
    surviving_result_ids = {cid for i in keep for cid in history[i].tool_result_ids()}
    for i in range(split):
        if i not in keep and surviving_result_ids.intersection(history[i].tool_call_ids()):
            keep.add(i)

    to_summarize = [m for i, m in enumerate(history) if i not in keep]
    surviving = [m for i, m in enumerate(history) if i in keep]
    return to_summarize, surviving


def _noop_result(
    history: Sequence[Message], trigger: CompactionTrigger, tokens: int, strategy: str
) -> CompactionResult:
    return CompactionResult(
        trigger=trigger,
        compacted=False,
        messages_before=len(history),
        messages_after=len(history),
        tokens_before=tokens,
        tokens_after=tokens,
        messages=list(history),
        surviving_messages=list(history),
        strategy=strategy,
    )


# -- Main function ------------------------------------------------------------


async def compact_history(
    history: Sequence[Message],
    invoker: ModelInvoker,
    config: SummarizationConfig | dict | None = None,
    trigger: CompactionTrigger = CompactionTrigger.TOKEN_THRESHOLD,
    *,
    enable_error_fallback: bool = True,
    token_counter: TokenCounter | None = None,
) -> CompactionResult:
    """Compact ``history`` into ``[summary_message] + surviving_messages``.

    1. Keep the last ``keep_message_count`` messages and every system message
       verbatim
    2. Also keep the most recent ``keep_tool_result_count`` tool results, and the
       assistant messages that issued any surviving tool call
    3. If nothing is left to fold (or only a previous summary) -> no-op
    4. Otherwise summarize the folded prefix with one model call
    5. On failure -> placeholder summary when ``enable_error_fallback`` is set,
       ``SummarizationError`` otherwise

    The input sequence is never modified; callers swap in ``result.messages``.
    """
    config = resolve_summarization(config)
    counter = token_counter or TokenCounter()
    trigger = CompactionTrigger(trigger)
    tokens_before = counter.count_messages(history)

    to_summarize, surviving = _partition(history, config)

    if not to_summarize or (len(to_summarize) == 1 and is_summary_message(to_summarize[0])):
        logger.debug("Nothing to compact (%d messages)", len(history))
        return _noop_result(history, trigger, tokens_before, config.strategy)

    structured = config.strategy == "structured"
    if structured:
        instruction = STRUCTURED_SUMMARY_PROMPT
    else:
        instruction = config.summary_prompt or DEFAULT_SUMMARY_PROMPT

    request = [
        Message(role="user", content=SUMMARY_REQUEST + format_messages_for_summary(to_summarize))
    ]

    structured_summary = None
    fallback = False
    usage = Usage()
    try:
        response = await invoker.invoke(
            request, instruction=instruction, max_tokens=config.max_summary_tokens
        )
        usage = response.usage
        if response.stop_reason == "error":
            raise SummarizationError("Model returned an error stop reason")
        summary = response.text.strip()
        if structured:
            structured_summary = parse_structured_summary(summary)
            if structured_summary is not None:
                summary = format_structured_summary(structured_summary)
    except Exception as err:
        if not enable_error_fallback:
            raise SummarizationError(f"Summarization failed: {err}") from err
        logger.warning("Summarization failed, falling back to placeholder summary: %s", err)
        summary = f"[{len(to_summarize)} earlier messages were removed without a summary]"
        fallback = True

    summary_message = build_summary_message(summary, trigger, fallback=fallback)
    messages = [summary_message, *surviving]
    tokens_after = counter.count_messages(messages)

    logger.info(
        "Compacted %d -> %d messages (%d -> %d tokens, trigger=%s)",
        len(history),
        len(messages),
        tokens_before,
        tokens_after,
        trigger.value,
    )

    return CompactionResult(
        trigger=trigger,
        compacted=True,
        messages_before=len(history),
        messages_after=len(messages),
        tokens_before=tokens_before,
        tokens_after=tokens_after,
        messages=messages,
        summary_message=summary_message,
        surviving_messages=surviving,
        compacted_messages=to_summarize,
        summary=summary,
        strategy=config.strategy,
        structured_summary=structured_summary,
        fallback=fallback,
        usage=usage,
    )
