"""
Correlation-id tracing for the ledger service

Spans nest through context variables: a span opened while another is active
joins its trace and records it as parent. Closed spans are written to the log
as one `TRACE: {json}` line each.
"""
import json
import logging
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

from fastapi import Request

logger = logging.getLogger(__name__)

trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)
span_id_var: ContextVar[Optional[str]] = ContextVar("span_id", default=None)

class TraceSpan:
    def __init__(self, name: str, trace_id: str = None, parent_span_id: str = None):
        self.name = name
        self.span_id = uuid.uuid4().hex[:8]
        self.trace_id = trace_id or trace_id_var.get() or uuid.uuid4().hex[:16]
        self.parent_span_id = parent_span_id or span_id_var.get()
        self.tags: Dict[str, Any] = {}
        self.status = "ok"
        self.started = time.time()
        self.ended: Optional[float] = None

        # Restored in finish() so the enclosing span becomes current again
        self._tokens = (trace_id_var.set(self.trace_id), span_id_var.set(self.span_id))

    def add_tag(self, key: str, value) -> "TraceSpan":
        self.tags[key] = value
        return self

    def set_error(self, error: BaseException) -> "TraceSpan":
        self.status = "error"
        return self.add_tag("error.type", type(error).__name__).add_tag("error.message", str(error))

    def as_dict(self) -> Dict[str, Any]:
        ended = self.ended if self.ended is not None else time.time()
        return {
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "parent_span_id": self.parent_span_id,
            "operation": self.name,
            "duration_ms": round((ended - self.started) * 1000, 2),
            "status": self.status,
            "tags": self.tags,
        }

    def finish(self) -> "TraceSpan":
        self.ended = time.time()
        logger.info(f"TRACE: {json.dumps(self.as_dict(), default=str)}")

        trace_token, span_token = self._tokens
        span_id_var.reset(span_token)
        trace_id_var.reset(trace_token)
        return self

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_val is not None:
            self.set_error(exc_val)
        self.finish()

class Tracer:
    """Opens spans tagged with the owning service"""

    def __init__(self, service_name: str):
        self.service_name = service_name

    def start_span(self, name: str, trace_id: str = None, parent_span_id: str = None) -> TraceSpan:
        return TraceSpan(name, trace_id, parent_span_id).add_tag("service.name", self.service_name)

    def start_span_from_request(self, request: Request, name: str) -> TraceSpan:
        """Continue the caller's trace when it sent X-Trace-ID / X-Span-ID"""
        span = self.start_span(name, request.headers.get("X-Trace-ID"), request.headers.get("X-Span-ID"))
        return span.add_tag("http.method", request.method).add_tag("http.path", request.url.path)

ledger_tracer = Tracer("ledger-service")

async def tracing_middleware(request: Request, call_next, tracer: Tracer):
    with tracer.start_span_from_request(request, f"{request.method} {request.url.path}") as span:
        request.state.trace_id = span.trace_id
        request.state.request_id = span.span_id

        response = await call_next(request)
        span.add_tag("http.status_code", response.status_code)
        if response.status_code >= 500:
            span.status = "error"

        response.headers["X-Trace-ID"] = span.trace_id
        response.headers["X-Span-ID"] = span.span_id
        return response
