"""Domain Events.

Dataclasses describing what happened inside the request queue, handed to an
optional listener for observation.
"""
