"""Dispatch API service."""
