"""Deterministic job analysis and the optional LLM narrator."""
