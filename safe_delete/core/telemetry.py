"""OpenTelemetry tracing helpers.

Only the API package is required: spans are no-ops until the host process
installs a TracerProvider (route layer, CLI wrapper, or tests).
"""

from collections.abc import Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

if TYPE_CHECKING:
    from opentelemetry.trace.span import Span

# OpenTelemetry attribute values can be primitives or lists of primitives
AttributeValue = str | int | float | bool | list[str] | list[int] | list[float] | list[bool]


@contextmanager
def service_span(
    name: str,
    service: str,
    kind: SpanKind = SpanKind.INTERNAL,
    **attributes: AttributeValue,
) -> Generator["Span", None, None]:
    """Context manager for service operation spans with explicit status.

    Creates an OpenTelemetry span with consistent attributes and proper status handling:
    - Sets StatusCode.OK on successful completion
    - SDK automatically records exceptions and sets StatusCode.ERROR on failure

    The tracer is acquired at call time (not module import time) so it uses
    whichever TracerProvider the host process installed.

    Args:
        name: Span name (e.g., "deletion.delete_principal")
        service: Service name for peer.service attribute (e.g., "deletion-service")
        kind: Span kind (default INTERNAL)
        **attributes: Additional span attributes

    Yields:
        Span: The active span for setting additional attributes

    Example:
        with service_span("deletion.scan", "deletion-service", principal_id=pid) as span:
            report = await scanner.scan(keys)
            span.set_attribute("deletion.blocking_tables", len(report))
    """
    tracer = trace.get_tracer(__name__)
    span_attributes = {
        "peer.service": service,
        **attributes,
    }
    with tracer.start_as_current_span(
        name,
        kind=kind,
        attributes=span_attributes,
    ) as span:
        yield span
        span.set_status(Status(StatusCode.OK))
