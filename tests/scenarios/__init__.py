"""Conformance test scenarios for the idempotency coordinator.

This package contains end-to-end scenario tests that drive the coordinator
through the ``with_idempotency`` wrapper and the ASGI adapter. Each scenario
tests a specific aspect of idempotency handling.
"""
