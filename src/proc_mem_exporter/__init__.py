"""Per-user process count, RSS and swap exporter for Prometheus."""
