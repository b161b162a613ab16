"""Ingestion layer.

Adapters that turn raw platform payloads (REST responses, push messages)
into typed telemetry models. Only the state layer merges them.
"""

__all__: list[str] = []
