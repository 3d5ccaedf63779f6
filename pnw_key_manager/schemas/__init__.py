"""Pydantic schemas for callers, owners and credential payloads."""
