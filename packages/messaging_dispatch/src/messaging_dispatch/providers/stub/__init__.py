"""Stub channel provider for development and tests."""

from messaging_dispatch.providers.stub.client import StubChannelProvider

__all__ = ["StubChannelProvider"]
