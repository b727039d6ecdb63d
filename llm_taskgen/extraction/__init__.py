"""Structured extraction: recover, validate and retry JSON task arrays from provider text."""
