"""Drivers for external services."""

from shipline.drivers.http_client import HttpClientDriver

__all__ = ["HttpClientDriver"]
