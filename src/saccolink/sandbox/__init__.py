"""Sandbox verifier server."""
