import logging
import socket

from jellyfpga.conduit import base

logger = logging.getLogger(__name__)


class SocketConduit(base.Conduit):
    """
    A conduit that provides communication via a socket.
    :param sock The open, connected socket
    """
    def __init__(self, sock: socket.socket):
        """
        :param sock: the client socket that represents the connection
        :type sock: socket
        """
        self.sock = sock
        self.read = sock.makefile('rb')
        self.write = sock.makefile('wb')

    @property
    def open(self) -> bool:
        return self.sock.fileno() >= 0

    @property
    def target(self):
        return self.sock

    @property
    def output(self):
        return self.write

    @property
    def input(self):
        return self.read

    def close(self):
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            # the peer may have closed the socket already
            logger.debug("socket shutdown: %s" % e)
        self.read.close()
        try:
            self.write.close()
        except OSError as e:
            logger.debug("discarding unsent output: %s" % e)
        finally:
            self.sock.close()
