"""Image generation package.

Scope:
    Provides the FLUX Kontext job client, the submit/poll orchestrator, the
    result materializer and the session facade that ties them to persistence.

Module split:
    - `provider_config`: environment-driven settings and credential lookup.
    - `client`: provider HTTP transport (submit, poll, asset download).
    - `polling`: job state machine and poll loop.
    - `materializer`: resolves Ready results into storable bytes.
    - `service`: `FluxSession`, the end-to-end entry point.
"""
