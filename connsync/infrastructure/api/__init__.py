"""Remote directory API: request descriptors and response parsing."""
