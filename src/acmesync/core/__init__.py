"""Core types, state machine, error taxonomy and domain helpers."""
