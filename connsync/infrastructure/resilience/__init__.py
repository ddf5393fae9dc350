"""API Resilience Implementations.

Contains the priority request queue with throttling backoff and retries, a
sliding-window rate limiter, and the error classifier.
Bounded Context: API Resilience
"""
