"""Shared helpers for the Claude Agents SDK."""
