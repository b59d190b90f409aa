"""Clearinghouse Adapter: trip ticket synchronization between a provider and the Clearinghouse."""

__version__ = "0.1.0"
