#!/usr/bin/env python3
"""
Startup wrapper for the Resume Parser API with IPv4/IPv6 auto-detection.

Binds to dual-stack (::) when the host supports it, otherwise falls back to
IPv4-only (0.0.0.0).

Supports environment variables:
- BIND_ADDRESS: Explicit bind address (default: auto-detect)
- PORT: HTTP port (default: 3000)
- LOG_LEVEL: uvicorn log level (default: info)
"""

import asyncio
import os
import socket
import sys

import uvicorn

APP_PATH = "resume_parser_api.main:app"


def can_bind_ipv6_dualstack(port: int) -> bool:
    """Test if we can bind to IPv6 with dual-stack support on the given port.

    Returns True only if both IPv6 and IPv4 will work via the :: binding.
    """
    try:
        sock = socket.socket(socket.AF_INET6, socket.SOCK_STREAM)
    except OSError:
        return False

    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
        sock.bind(("::", port))
        return True
    except (AttributeError, OSError):
        return False
    finally:
        sock.close()


def resolve_bind_address(port: int, bind_address: str) -> str:
    """Pick the host to bind: explicit address, or auto-detected dual-stack/IPv4."""
    if bind_address != "auto":
        print(f"Using explicit bind address: {bind_address}:{port}", file=sys.stderr)
        return bind_address

    if can_bind_ipv6_dualstack(port):
        print(f"Auto-detected dual-stack support, binding to [::]:{port}", file=sys.stderr)
        return "::"

    print(f"IPv6 not available, binding to 0.0.0.0:{port}", file=sys.stderr)
    return "0.0.0.0"


def dualstack_socket(port: int) -> socket.socket:
    """Listening socket on [::] with IPV6_V6ONLY disabled."""
    sock = socket.socket(socket.AF_INET6, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
    sock.bind(("::", port))
    sock.listen(128)
    sock.setblocking(False)
    return sock


def main() -> None:
    """Start uvicorn with auto-detected or explicit bind address."""
    port = int(os.getenv("PORT", "3000"))
    log_level = os.getenv("LOG_LEVEL", "info").lower()
    host = resolve_bind_address(port, os.getenv("BIND_ADDRESS", "auto"))

    if host == "::":
        # uvicorn's own bind would leave IPV6_V6ONLY at the OS default
        server = uvicorn.Server(uvicorn.Config(APP_PATH, log_level=log_level))
        asyncio.run(server.serve(sockets=[dualstack_socket(port)]))
    else:
        uvicorn.run(APP_PATH, host=host, port=port, log_level=log_level)


if __name__ == "__main__":
    main()
