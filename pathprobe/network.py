#!/usr/bin/env python3
"""
Socket creation and address parsing utilities.
"""

import socket
from typing import Optional, Tuple


def create_tcp_socket(
    reuse_addr: bool = True,
    nodelay: bool = False,
    timeout: Optional[float] = None,
) -> socket.socket:
    """
    Create a TCP socket with common options.

    Args:
        reuse_addr: Set SO_REUSEADDR (default True)
        nodelay: Set TCP_NODELAY so small control messages go out at once
        timeout: Socket timeout in seconds (None = blocking)

    Returns:
        Configured TCP socket

    Example:
        # Control listener
        sock = create_tcp_socket()
        sock.bind(('0.0.0.0', 4981))
        sock.listen(5)

        # Control client
        sock = create_tcp_socket(nodelay=True, timeout=5.0)
        sock.connect(('10.0.0.1', 4981))
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

    try:
        if reuse_addr:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        if nodelay:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        if timeout is not None:
            sock.settimeout(timeout)
    except OSError:
        sock.close()
        raise

    return sock


def create_udp_socket(
    reuse_addr: bool = True,
    recv_buf: Optional[int] = None,
    send_buf: Optional[int] = None,
    timeout: Optional[float] = None,
) -> socket.socket:
    """
    Create a UDP socket with common options.

    Args:
        reuse_addr: Set SO_REUSEADDR (default True)
        recv_buf: SO_RCVBUF size in bytes
        send_buf: SO_SNDBUF size in bytes
        timeout: Socket timeout in seconds

    Returns:
        Configured UDP socket

    Example:
        # Probe receiver
        sock = create_udp_socket(recv_buf=1 << 20)
        sock.bind(('0.0.0.0', 4981))
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)

    try:
        if reuse_addr:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        if recv_buf is not None:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, recv_buf)

        if send_buf is not None:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_SNDBUF, send_buf)

        if timeout is not None:
            sock.settimeout(timeout)
    except OSError:
        sock.close()
        raise

    return sock


def parse_address(addr_str: str, default_port: int = 4981) -> Tuple[str, int]:
    """
    Parse 'host:port' or just 'host' string into (host, port) tuple.

    Args:
        addr_str: Address string like "localhost:4981" or "192.168.1.1"
        default_port: Port to use if not specified

    Returns:
        Tuple of (host, port)

    Raises:
        ValueError: If the port part is not an integer

    Example:
        >>> parse_address("localhost:8080")
        ('localhost', 8080)
        >>> parse_address("192.168.1.1")
        ('192.168.1.1', 4981)
    """
    if ':' in addr_str:
        host, port_str = addr_str.rsplit(':', 1)
        return host, int(port_str)
    return addr_str, default_port


def format_address(addr: Tuple[str, int]) -> str:
    """Render a socket address as host:port."""
    return f"{addr[0]}:{addr[1]}"
