"""Helpers shared by the depot-cli tools (config, logging, CLI plumbing)."""
