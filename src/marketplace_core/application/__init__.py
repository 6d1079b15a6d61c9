"""Use cases: load an aggregate, apply one operation, save, publish."""
