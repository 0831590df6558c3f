"""ensdns: recursive DNS server that resolves the .eth TLD through ENS."""

__version__ = "0.1.0"
