"""Context model, wire formats and in-process host emulator for proxy filter plugins."""

__version__ = "0.1.0"
__all__ = ["types", "abi", "vmstate", "root", "http", "network", "emulator"]