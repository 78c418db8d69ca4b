"""OpenTelemetry test fixtures."""

from collections.abc import Generator

import pytest
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter


@pytest.fixture
def otel_enabled_provider(
    monkeypatch: pytest.MonkeyPatch,
) -> Generator[tuple[TracerProvider, InMemorySpanExporter], None, None]:
    """Fixture that provides TracerProvider with InMemorySpanExporter for testing.

    SAFE: Uses InMemorySpanExporter - no network calls, spans captured in memory only.

    Yields:
        Tuple of (TracerProvider, InMemorySpanExporter) - use exporter.get_finished_spans()
        to verify span creation in tests.
    """
    # Enable OTEL SDK (disabled by default in conftest.py)
    # monkeypatch automatically restores this after the test
    monkeypatch.delenv("OTEL_SDK_DISABLED", raising=False)

    exporter = InMemorySpanExporter()
    resource = Resource(
        attributes={
            "service.name": "safe-delete-test",
            "deployment.environment": "test",
        }
    )
    provider = TracerProvider(resource=resource)

    # Use SimpleSpanProcessor for synchronous span processing in tests
    provider.add_span_processor(SimpleSpanProcessor(exporter))

    # Set as global tracer provider
    # Bypass set_tracer_provider() which has override protection
    trace._TRACER_PROVIDER = provider  # type: ignore[attr-defined]

    yield provider, exporter

    exporter.clear()
    trace._TRACER_PROVIDER = None  # type: ignore[attr-defined]
