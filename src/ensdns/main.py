from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from typing import Any, Dict, List, Optional

from .config.config_parser import build_server_config
from .config.config_schema import ConfigError
from .config.logging_config import init_logging
from .servers.recursive import create_recursive_server
from .servers.server import DNSServer

logger = logging.getLogger("ensdns.main")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Recursive DNS server that answers the .eth TLD from ENS"
    )
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument("--host", default=None, help="Listen address (default 127.0.0.1)")
    parser.add_argument("--port", type=int, default=None, help="Listen port (default 5301)")
    parser.add_argument(
        "--stub-host", dest="stub_host", default=None, help="Stub resolver address"
    )
    parser.add_argument(
        "--stub-port", dest="stub_port", type=int, default=None, help="Stub resolver port"
    )
    parser.add_argument(
        "--key", default=None, help="Hex-encoded 32-byte secp256k1 identity key"
    )
    parser.add_argument(
        "--no-unbound",
        dest="no_unbound",
        action="store_const",
        const=True,
        default=None,
        help="Use the non-validating delegation resolver",
    )
    parser.add_argument(
        "--ethurl", dest="eth_url", default=None, help="Ethereum JSON-RPC endpoint"
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default=None,
        help="debug, info, warn, error or crit",
    )
    return parser


def overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    """
    Collect CLI options that map onto ServerConfig fields.

    Inputs:
      - args: Parsed argparse namespace.
    Outputs:
      - dict of option -> value (None for flags that were not given).
    """
    keys = ("host", "port", "stub_host", "stub_port", "key", "no_unbound", "eth_url", "log_level")
    return {k: getattr(args, k, None) for k in keys}


async def run_server(server: DNSServer, stop: Optional[asyncio.Event] = None) -> None:
    """Serve until SIGINT/SIGTERM (or until ``stop`` is set)."""
    stop = stop or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):  # pragma: no cover - non-POSIX loops
            pass
    await server.serve_forever(stop)


def main(argv: List[str] | None = None) -> int:
    """
    Entry point for the ensdns command.

    Inputs:
      - argv: Optional argument list (defaults to sys.argv[1:]).
    Outputs:
      - int exit code: 0 on clean shutdown, 1 on configuration or bind errors.

    Example use:
      ensdns --config config.yaml --port 5301 --ethurl http://127.0.0.1:8545
    """
    args = build_parser().parse_args(argv)

    try:
        config = build_server_config(args.config, overrides_from_args(args))
    except ConfigError as e:
        init_logging({"level": args.log_level or "info"})
        logger.error("%s", e)
        return 1

    init_logging(config.logging.model_dump())
    try:
        server = create_recursive_server(config)
    except ValueError as e:
        logger.error("invalid server identity: %s", e)
        return 1
    try:
        asyncio.run(run_server(server))
    except PermissionError as e:
        logger.error(
            "Permission denied when binding to %s:%d. Try a port >1024 or run with elevated privileges. Original error: %s",
            config.host,
            config.port,
            e,
        )
        return 1
    except OSError as e:
        logger.error("failed to start on %s:%d: %s", config.host, config.port, e)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
