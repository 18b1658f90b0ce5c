"""Flux Studio: submit FLUX Kontext image jobs, poll them to completion and
persist the results with a durable-first, ephemeral-fallback store."""

__version__ = "0.1.0"
