"""Log context propagated through contextvars (safe across asyncio tasks)."""

from contextvars import ContextVar
from typing import Dict, Optional

_source: ContextVar[Optional[str]] = ContextVar("log_source", default=None)
_stage: ContextVar[Optional[str]] = ContextVar("log_stage", default=None)
_run_id: ContextVar[Optional[str]] = ContextVar("log_run_id", default=None)


def set_log_context(
    source: Optional[str] = None,
    stage: Optional[str] = None,
    run_id: Optional[str] = None,
) -> None:
    """
    Set log context values. Only non-None arguments are applied.

    Args:
        source: Publisher source id (e.g., united_health)
        stage: Pipeline stage (discover, download)
        run_id: Identifier for this invocation
    """
    if source is not None:
        _source.set(source)
    if stage is not None:
        _stage.set(stage)
    if run_id is not None:
        _run_id.set(run_id)


def get_log_context() -> Dict[str, Optional[str]]:
    """Return the current log context."""
    return {
        "source": _source.get(),
        "stage": _stage.get(),
        "run_id": _run_id.get(),
    }


def clear_log_context() -> None:
    """Reset all log context values."""
    _source.set(None)
    _stage.set(None)
    _run_id.set(None)
