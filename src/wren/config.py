"""Application configuration.

One frozen dataclass holds every knob the pipeline reads. It is passed
to ``App`` once and shared by every request.
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration. Immutable after creation.

    All fields have sensible defaults. Override what you need::

        config = AppConfig(debug=True, run_background_on_error=False)
    """

    # Name the exception in 500 payloads
    debug: bool = False

    # Run background tasks registered before a handler raised.
    # When False they are discarded along with the failed request.
    run_background_on_error: bool = True

    # Number of traceback frames logged for a failing background task
    background_trace_depth: int = 3

    # Payload of the fixed 404 response
    not_found_detail: str = "Not found"
