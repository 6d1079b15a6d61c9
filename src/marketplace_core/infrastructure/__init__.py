"""Event distribution, outbox, feature flags and in-memory adapters."""
