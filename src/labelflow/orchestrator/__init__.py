"""Scheduling, completion, health and heartbeat services over the workflow graph.

Everything here is async and talks to the outside world only through the
protocols in ``contracts``. Each external call is bounded by a timeout; expiry
counts as a failure and is never retried within the same operation.
"""
