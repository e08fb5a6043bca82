"""
OpenTelemetry Instrumentation Setup for the Change Ticket Analyzer.

Two tiers of tracing:
- Tier 1: LLM provider auto-instrumentation (Google GenAI, Azure OpenAI)
- Tier 2: Business logic spans created by the analyzers
  (batch.similarity_analysis, ticket.similarity_comparison,
  change.conflict_detection)

Traces are exported to Arize AX through the arize-otel convenience wrapper.
Tracing is optional: without credentials the analyzers still create spans
against the no-op tracer provider.
"""

import os
import logging
from opentelemetry import trace

import config


def setup_instrumentation():
    """
    Initialize OpenTelemetry instrumentation with the Arize AX cloud backend.

    Call this ONCE at service startup, before any LLM calls.

    Environment Variables:
        ARIZE_SPACE_ID: Your Arize Space ID (required)
        ARIZE_API_KEY: Your Arize API Key (required)
        ARIZE_PROJECT_NAME: Project name for grouping traces
        ENABLE_TRACING: Set to 'false' to disable tracing (default: 'true')

    Returns:
        TracerProvider instance if successful, None otherwise
    """
    logger = logging.getLogger("change_analyzer.instrumentation")

    enable_tracing = os.getenv("ENABLE_TRACING", "true").lower() == "true"

    if not enable_tracing:
        logger.info("Tracing disabled via ENABLE_TRACING environment variable")
        return None

    if not config.ARIZE_SPACE_ID or not config.ARIZE_API_KEY:
        logger.warning(
            "Arize credentials not configured (ARIZE_SPACE_ID or ARIZE_API_KEY missing). "
            "Skipping instrumentation setup. Analysis will run without observability."
        )
        return None

    try:
        # arize.otel.register() creates the TracerProvider and the OTLP
        # exporter for the Arize endpoint in one call
        from arize.otel import register, Endpoint

        logger.info("Initializing Arize AX instrumentation")

        tracer_provider = register(
            space_id=config.ARIZE_SPACE_ID,
            api_key=config.ARIZE_API_KEY,
            project_name=config.ARIZE_PROJECT_NAME,
            endpoint=Endpoint.ARIZE
        )

        logger.info(f"Arize AX tracer provider registered: project={config.ARIZE_PROJECT_NAME}")

        # Tier 1: LLM SDK instrumentors (installed through the "tracing" extra)
        try:
            from openinference.instrumentation.openai import OpenAIInstrumentor
            OpenAIInstrumentor().instrument(tracer_provider=tracer_provider)
            logger.info("OpenAI/Azure OpenAI auto-instrumented (Tier 1)")
        except ImportError as e:
            logger.warning(f"OpenAI instrumentor not available: {e}")

        try:
            from openinference.instrumentation.google_genai import GoogleGenAIInstrumentor
            GoogleGenAIInstrumentor().instrument(tracer_provider=tracer_provider)
            logger.info("Google GenAI auto-instrumented (Tier 1)")
        except ImportError as e:
            logger.warning(f"Google GenAI instrumentor not available: {e}")

        logger.info(
            f"OpenTelemetry instrumentation initialized "
            f"(environment: {os.getenv('ENVIRONMENT', 'local')})"
        )
        return tracer_provider

    except ImportError as e:
        logger.error(f"Failed to import Arize OTEL package: {e}. Install with: pip install arize-otel")
        return None

    except Exception as e:
        # Tracing problems must not stop the service
        logger.error(f"Failed to initialize OpenTelemetry instrumentation: {e}")
        return None


def get_tracer(name: str):
    """
    Get a tracer instance for creating manual spans (Tier 2).

    Args:
        name: Tracer name (typically __name__ of the calling module)

    Returns:
        Tracer instance
    """
    return trace.get_tracer(name)
