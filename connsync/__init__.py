"""connsync: resilient fetch-and-cache pipeline for paginated remote records.

Layers follow a ports-and-adapters split: `domain` (models, interfaces,
events), `core` (application services) and `infrastructure` (adapters).
"""

__version__ = "0.1.0"
