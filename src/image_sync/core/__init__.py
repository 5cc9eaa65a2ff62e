"""Core types, engine client and process helpers."""
