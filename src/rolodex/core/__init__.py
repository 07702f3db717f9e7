"""Cross-cutting infrastructure: logging, telemetry, metrics and expiring caches."""
