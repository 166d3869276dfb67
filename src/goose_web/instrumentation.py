"""Optional OpenTelemetry tracing for Goose Web requests.

``instrument()`` turns on one ``chat`` span per request.  Without
``opentelemetry-api`` installed nothing is traced and nothing changes.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "goose_web", tracer_provider=None) -> None:
    """Start tracing Goose Web requests.

    Uses the global TracerProvider unless *tracer_provider* is given::

        from opentelemetry.sdk.trace import TracerProvider
        from goose_web.instrumentation import instrument

        instrument(tracer_provider=TracerProvider())

    Raises:
        ImportError: ``opentelemetry-api`` is missing
            (``pip install goose-web[otel]``).
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "Tracing needs opentelemetry-api: pip install goose-web[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name, tracer_provider=tracer_provider)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info("Tracing enabled but no TracerProvider is set; spans are dropped")
    else:
        logger.info(f"Tracing Goose Web requests as {tracer_name!r}")


def uninstrument() -> None:
    global _tracer
    _tracer = None


@asynccontextmanager
async def request_span(operation: str, model: str, session_id: str, ws_url: str):
    """Wrap one request to the Goose server in a ``chat`` span.

    *operation* is ``"generate"`` or ``"stream"``.
    """
    if _tracer is None:
        yield None
        return
    from opentelemetry.trace import SpanKind

    with _tracer.start_as_current_span(
        f"chat {model}",
        kind=SpanKind.CLIENT,
        attributes={
            "gen_ai.operation.name": "chat",
            "gen_ai.provider.name": "goose-web",
            "gen_ai.request.model": model,
            "gen_ai.conversation.id": session_id,
            "goose_web.operation": operation,
            "server.address": ws_url,
        },
    ) as span:
        yield span


def record_usage(span, usage):
    """Set token-usage attributes on a span."""
    if span is None or usage is None:
        return
    if getattr(usage, "prompt_tokens", None) is not None:
        span.set_attribute("gen_ai.usage.input_tokens", usage.prompt_tokens)
    if getattr(usage, "completion_tokens", None) is not None:
        span.set_attribute(
            "gen_ai.usage.output_tokens", usage.completion_tokens,
        )


def record_error(span, exception: BaseException) -> None:
    """Record an exception and set ERROR status on a span.

    No-ops when *span* is ``None`` (tracing disabled).
    """
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(exception))
    span.record_exception(exception)
    span.set_attribute("error.type", type(exception).__qualname__)
