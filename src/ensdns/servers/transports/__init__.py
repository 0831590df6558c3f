"""Async DNS transports used by the delegation resolvers and the server."""

from .errors import TransportError
from .tcp import TCPError, tcp_query
from .udp import UDPError, udp_query

__all__ = ["TCPError", "TransportError", "UDPError", "tcp_query", "udp_query"]
