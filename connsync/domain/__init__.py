"""Domain Layer: models, interfaces (ports) and events.

Has no dependency on the core or infrastructure layers.
"""
