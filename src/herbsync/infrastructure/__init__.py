"""Infrastructure layer: configuration, logging, resilience and monitoring."""
