"""Transport adapters for the Transport interface."""
