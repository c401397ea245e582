"""
Stream helpers shared by the wire codec and the handshake.
"""
import logging

from jellyfpga.conduit.base import Conduit
from jellyfpga.protocol.rpc import UnknownProtocolError

logger = logging.getLogger(__name__)

# the longest greeting line accepted, in bytes
MAX_GREETING = 256


def read_exactly(stream, count) -> bytes:
    """
    Reads count bytes from the stream, blocking until they arrive.
    Raises EOFError if the stream ends first.
    """
    data = stream.read(count)
    if data is None or len(data) < count:
        raise EOFError("stream ended after %d of %d bytes" % (0 if not data else len(data), count))
    return data


def determine_line_protocol(conduit: Conduit, all_sniffers):
    """
    Determines a protocol from the first line read. At most MAX_GREETING bytes are read, and a longer line is
    rejected.
    """
    l = conduit.input.readline(MAX_GREETING)
    if len(l) >= MAX_GREETING and not l.endswith(b"\n"):
        raise UnknownProtocolError("greeting longer than %d bytes" % MAX_GREETING)
    line = l.decode('utf-8', errors='replace').rstrip('\r\n')
    error = None
    for sniffer in all_sniffers:
        try:
            p = sniffer(line, conduit)
            if p:
                return p
        except ValueError as e:
            error = e

    reason = ": %s" % error if error else ''
    raise UnknownProtocolError("unable to determine protocol from '%s'%s" % (line, reason)) from error
