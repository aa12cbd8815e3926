"""Job queues, worker pools and the worker runtime."""
