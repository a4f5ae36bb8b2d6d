"""Low-level network primitives used by the discovery sources."""

import asyncio
import logging
import socket
import time
from typing import List, Tuple

LOG = logging.getLogger(__name__)

BROADCAST_ADDRESS = "255.255.255.255"


async def tcp_probe(host: str, port: int, timeout_ms: int) -> bool:
    """Return True if a TCP connect to host:port succeeds within the timeout.

    Nothing is written or read. Every failure (refused, unreachable, timeout)
    is reported as False.
    """
    writer = None
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=max(0.001, timeout_ms / 1000.0),
        )
        return True
    except (OSError, asyncio.TimeoutError):
        return False
    except Exception as e:
        LOG.debug("tcp_probe %s:%s unexpected error: %s", host, port, e)
        return False
    finally:
        if writer is not None:
            try:
                writer.close()
            except Exception:
                pass


def udp_broadcast(payload: bytes, port: int, timeout_ms: int,
                  address: str = BROADCAST_ADDRESS) -> List[Tuple[str, bytes]]:
    """Send one datagram and collect replies until the timeout expires.

    An empty list is the normal outcome when nobody answers.
    """
    responses: List[Tuple[str, bytes]] = []
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    except OSError as e:
        LOG.warning("UDP socket creation failed: %s", e)
        return responses

    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.sendto(payload, (address, port))
        deadline = time.monotonic() + max(0.0, timeout_ms / 1000.0)
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            sock.settimeout(remaining)
            try:
                data, sender = sock.recvfrom(1024)
            except socket.timeout:
                break
            except ConnectionResetError:
                # Windows reports ICMP port-unreachable this way; keep listening.
                continue
            responses.append((sender[0], data))
    except OSError as e:
        LOG.debug("UDP broadcast to %s:%s failed: %s", address, port, e)
    finally:
        sock.close()
    return responses


def get_local_ip() -> str:
    """Address of the interface that routes to the outside world."""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.connect(('8.8.8.8', 1))
            return s.getsockname()[0]
        finally:
            s.close()
    except Exception:
        return '127.0.0.1'


def subnet_hosts(local_ip: str) -> List[str]:
    """Every .1-.254 address of local_ip's /24, without local_ip itself."""
    prefix = local_ip.rsplit(".", 1)[0]
    hosts = []
    for i in range(1, 255):
        host = f"{prefix}.{i}"
        if host != local_ip:
            hosts.append(host)
    return hosts
