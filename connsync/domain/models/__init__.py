"""Domain Models: records, error taxonomy, statistics snapshots and value objects."""
