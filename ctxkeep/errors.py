"""Exceptions raised by the compaction engine and checkpoint stores."""


class CtxKeepError(Exception):
    """Base class for all ctxkeep errors."""


class PolicyMisconfigurationError(CtxKeepError):
    """
    Raised when a compaction policy or summarization config cannot be built.

    Covers out-of-range ratios, non-positive budgets and unknown fields.
    """

    def __init__(self, reason: str | None = None, field: str | None = None):
        self.reason = reason
        self.field = field
        message = reason or "Invalid compaction policy"
        if field:
            message = f"{message} (field: {field})"
        super().__init__(message)


class CompactionError(CtxKeepError):
    """Raised when compaction cannot produce a usable history."""

    def __init__(self, reason: str | None = None, thread_id: str | None = None):
        self.reason = reason
        self.thread_id = thread_id
        super().__init__(reason)


class SummarizationError(CompactionError):
    """Raised when the model call behind a summary fails and fallback is disabled."""


class ConcurrentCompactionError(CompactionError):
    """Raised when a compaction is requested while another one runs for the same thread."""

    def __init__(self, thread_id: str | None = None):
        super().__init__(f"Compaction already in progress for thread {thread_id!r}", thread_id)


class ContextLengthExceededError(CtxKeepError):
    """Raised by model invokers when a request does not fit the model's context window."""


class CheckpointError(CtxKeepError):
    """Base class for checkpoint store failures."""

    def __init__(
        self,
        reason: str | None = None,
        thread_id: str | None = None,
        step: int | None = None,
    ):
        self.reason = reason
        self.thread_id = thread_id
        self.step = step
        message = reason or "Checkpoint operation failed"
        if thread_id is not None:
            message += f" (thread_id: {thread_id}, step: {step})"
        super().__init__(message)


class CheckpointWriteError(CheckpointError):
    """
    Raised when a checkpoint could not be durably written.

    Callers decide whether to retry; the store never drops a failed write silently.
    """


class CheckpointConflictError(CheckpointError):
    """Raised when a different checkpoint is saved under an existing (thread_id, step)."""


class OutOfOrderCheckpointError(CheckpointError):
    """Raised by stores configured to reject saves older than the latest step."""
