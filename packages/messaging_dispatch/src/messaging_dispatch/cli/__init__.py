"""Dispatch CLI."""
