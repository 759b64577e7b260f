"""Core service logic."""
