"""Credential loading for calendar providers."""
