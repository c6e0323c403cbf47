"""Span helpers operating on a run's execution trace."""
from __future__ import annotations

from typing import Any, Dict, Optional

from .models import Span, Trace, TraceEvent, utcnow


def current_span(trace: Trace) -> Optional[Span]:
    """Return the most recently opened span that has not been closed yet."""
    for span in reversed(trace.spans):
        if span.is_open:
            return span
    return None


def create_span(
    trace: Trace,
    *,
    agent_id: str,
    operation: str,
    attributes: Optional[Dict[str, Any]] = None,
) -> Span:
    """Open a span, parent it to the current open span and append it to the trace."""
    parent = current_span(trace)
    span = Span(
        agent_id=agent_id,
        operation=operation,
        parent_span_id=parent.span_id if parent else None,
        attributes=dict(attributes or {}),
    )
    trace.spans.append(span)
    return span


def end_span(span: Span) -> None:
    """Stamp the end time. Closing an already closed span keeps the first stamp."""
    if span.end_time is None:
        span.end_time = utcnow()


def add_event(span: Optional[Span], name: str, attributes: Optional[Dict[str, Any]] = None) -> None:
    if span is None:
        return
    span.events.append(TraceEvent(name=name, attributes=dict(attributes or {})))


def open_span_count(trace: Trace) -> int:
    return sum(1 for span in trace.spans if span.is_open)
