"""Readiness gating and per-attempt verification."""
