"""Inbound DNS server, recursive server assembly, and transports."""
