"""Cross-cutting infrastructure: retries, logging, telemetry."""
