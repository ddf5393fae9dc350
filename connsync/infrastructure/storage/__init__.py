"""Key/value store adapters (in-memory and disk-backed)."""
