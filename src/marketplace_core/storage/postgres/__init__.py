"""PostgreSQL storage (SQLAlchemy async + asyncpg) for the outbox and feature flags."""
