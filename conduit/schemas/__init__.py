"""Pydantic schemas for provider payloads, canonical events and jobs."""
