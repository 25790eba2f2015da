"""Order-management event bus and event store."""
