"""Promotion pipeline stages and orchestrator."""
