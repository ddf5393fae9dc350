"""Infrastructure Layer: Contains concrete implementations and adapters.

Connects the application to the outside world (HTTP, key/value storage,
configuration, logging, console) by implementing the interfaces defined in
the domain layer. Also includes the resilience services.
"""
