"""Assigning network ports to application instances.

Every worker gets a fixed port, `base_port + worker_index`. Tests reconstruct the instance
address from the worker index alone, so the allocator never searches for an alternative port
and fails instead.

The availability check binds and immediately releases a listener. Another process can still
claim the port before the application binds it; the check is best effort, not a reservation.
"""

import errno
import logging
import socket
import typing as tp

from mahpastes_tests.instance_management import errors
from mahpastes_tests.utils import configuration

LOGGER = logging.getLogger(__name__)

# The application listens on `localhost`, which resolves to both of the loopback addresses
LOOPBACK_HOST = "127.0.0.1"
LOOPBACK_HOST_V6 = "::1"
LOOPBACK_HOSTS = (LOOPBACK_HOST, LOOPBACK_HOST_V6)

# Errors meaning that the address family or address is not configured on this machine
_ADDR_NOT_CONFIGURED = (errno.EADDRNOTAVAIL, errno.EAFNOSUPPORT)


def get_candidate_port(base_port: int, worker_index: int) -> int:
    """Return port number assigned to the given worker."""
    if worker_index < 0:
        msg = f"Invalid worker index: {worker_index}"
        raise ValueError(msg)
    return base_port + worker_index


def _can_listen(host: str, port: int) -> bool:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    try:
        sock = socket.socket(family, socket.SOCK_STREAM)
    except OSError as exc:
        if exc.errno in _ADDR_NOT_CONFIGURED:
            return True
        raise

    with sock:
        # Ignore connections in TIME_WAIT state left by a previous instance
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if family == socket.AF_INET6:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
        try:
            sock.bind((host, port))
            sock.listen(1)
        except OSError as exc:
            if exc.errno in _ADDR_NOT_CONFIGURED:
                # No IPv6 loopback, nothing can listen there
                return True
            LOGGER.debug(f"Port {port} is not available on {host}: {exc}")
            return False
    return True


def is_port_available(port: int, *, hosts: tp.Iterable[str] = LOOPBACK_HOSTS) -> bool:
    """Check that it is possible to listen on the port on all the hosts right now.

    A listener on any of the hosts, or on a wildcard address, makes the port unavailable.
    """
    return all(_can_listen(host, port) for host in hosts)


class PortAllocator:
    """Assign verified ports to workers."""

    def __init__(
        self,
        base_port: int = configuration.BASE_PORT,
        *,
        hosts: tp.Iterable[str] = LOOPBACK_HOSTS,
    ) -> None:
        self.base_port = base_port
        self.hosts = tuple(hosts)

    def allocate(self, worker_index: int) -> int:
        port = get_candidate_port(base_port=self.base_port, worker_index=worker_index)
        if not is_port_available(port, hosts=self.hosts):
            raise errors.PortUnavailable(port=port, worker_index=worker_index)
        LOGGER.debug(f"Worker {worker_index}: allocated port {port}")
        return port
