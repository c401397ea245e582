import logging
import socket
from urllib.parse import urlsplit

from jellyfpga.conduit.base import Conduit
from jellyfpga.conduit.socket_conduit import SocketConduit
from jellyfpga.connector.base import AbstractConnector, ConnectorError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8051


class TCPServerEndpoint:
    """
    Describes a TCP server endpoint.
    At least one of name or ip_address should be given. If both are given, the ip_address is used
    to connect.
    """
    def __init__(self, hostname, ip_address, port):
        self.hostname = hostname
        self.ip_address = ip_address
        self.port = port

    @property
    def address(self):
        return self.ip_address or self.hostname, self.port

    def __eq__(self, other):
        return isinstance(other, TCPServerEndpoint) and (other.hostname, other.ip_address, other.port) == \
            (self.hostname, self.ip_address, self.port)

    def __hash__(self):
        return hash(self.address)

    def __str__(self):
        host = self.ip_address or self.hostname
        return "[%s]:%d" % (host, self.port) if ':' in host else "%s:%d" % (host, self.port)


def parse_endpoint(endpoint) -> TCPServerEndpoint:
    """
    Converts the ways of naming a server into a TCPServerEndpoint.

    >>> str(parse_endpoint('localhost:8051'))
    'localhost:8051'
    >>> str(parse_endpoint('tcp://10.0.0.2'))
    '10.0.0.2:8051'
    >>> str(parse_endpoint('[::1]:9000'))
    '[::1]:9000'
    >>> str(parse_endpoint(('fpga', 1234)))
    'fpga:1234'

    :raises ValueError: if the endpoint cannot be parsed.
    """
    if isinstance(endpoint, TCPServerEndpoint):
        return endpoint
    if isinstance(endpoint, tuple):
        host, port = endpoint
        return TCPServerEndpoint(host, None, int(port))
    if not isinstance(endpoint, str) or not endpoint.strip():
        raise ValueError("invalid endpoint %r" % (endpoint,))

    text = endpoint.strip()
    parts = urlsplit(text if '://' in text else '//' + text)
    host = parts.hostname
    if not host:
        raise ValueError("no host in endpoint '%s'" % endpoint)
    port = parts.port     # raises ValueError when out of range
    return TCPServerEndpoint(host, None, DEFAULT_PORT if port is None else port)


class SocketConnector(AbstractConnector):
    """
    A connector that communicates data via a TCP socket.

    :param endpoint: the TCPServerEndpoint to connect to
    :param timeout: seconds allowed for establishing the connection, None to wait indefinitely.
        The timeout stays set on the socket until the protocol handshake has completed.
    """
    def __init__(self, endpoint: TCPServerEndpoint, timeout=None):
        super().__init__()
        self._endpoint = endpoint
        self.timeout = timeout

    @property
    def endpoint(self):
        return self._endpoint

    def _connect(self) -> Conduit:
        try:
            sock = socket.create_connection(self._endpoint.address, self.timeout)
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError as e:
            logger.warning("error opening socket to %s: %s" % (self._endpoint, e))
            raise ConnectorError("unable to connect to %s: %s" % (self._endpoint, e)) from e
        logger.info("opened socket to %s" % self._endpoint)
        return SocketConduit(sock)

    def _disconnect(self):
        logger.info("closing socket to %s" % self._endpoint)

    def _try_available(self):
        # reachability is only known by connecting
        return True
