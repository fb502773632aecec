"""Circuit breaker, health metrics and the key-value state they live in."""
