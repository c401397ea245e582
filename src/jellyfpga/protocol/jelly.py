"""
The client side of the FPGA control protocol, version 1.

After the socket is connected the client sends the line ``JFPGA/1``. The server answers with a line that
starts with the same token, after which both sides exchange binary frames (see jellyfpga.protocol.wire).

Each call is identified by a call id chosen by the client. A unary call sends one REQUEST frame. A client
streaming call sends any number of STREAM_MESSAGE frames followed by a STREAM_END frame, all with the same
call id. The server answers each call with exactly one RESPONSE or ERROR frame.
"""
import itertools
import logging
import threading

from jellyfpga.conduit.base import Conduit
from jellyfpga.protocol.io import determine_line_protocol
from jellyfpga.protocol.messages import Message, Method, Methods
from jellyfpga.protocol.rpc import BaseAsyncProtocolHandler, FutureResponse, Request, ResponseSupport, RpcError, \
    StatusCode
from jellyfpga.protocol.wire import FrameKind, HEADER_BODY_SIZE, MAX_FRAME_SIZE, decode_error, encode_frame, \
    read_frame

logger = logging.getLogger(__name__)

PROTOCOL_NAME = 'JFPGA'
PROTOCOL_VERSION = 1
HELLO = ('%s/%d\n' % (PROTOCOL_NAME, PROTOCOL_VERSION)).encode('ascii')


def check_frame_size(payload: bytes):
    if len(payload) + HEADER_BODY_SIZE > MAX_FRAME_SIZE:
        raise RpcError(StatusCode.INVALID_ARGUMENT,
                       "message of %d bytes exceeds the frame limit of %d bytes" % (len(payload), MAX_FRAME_SIZE))


class CallRequest(Request):
    """ A unary call: a single request frame. """

    def __init__(self, call_id, method: Method, message: Message):
        self.call_id = call_id
        self.method = method
        self.payload = message.encode()
        check_frame_size(self.payload)

    def to_stream(self, file):
        file.write(encode_frame(FrameKind.request, self.call_id, self.method.method_id, self.payload))

    @property
    def response_keys(self):
        return [self.call_id]

    def __str__(self):
        return "%s#%d" % (self.method.name, self.call_id)


class StreamingCallRequest(CallRequest):
    """ A client streaming call. Messages are pulled from the iterable one at a time as they are sent,
        so only one message is held in memory at once.
    """

    def __init__(self, call_id, method: Method, messages):
        self.call_id = call_id
        self.method = method
        self.messages = messages
        self.sent = 0

    def to_stream(self, file):
        method_id = self.method.method_id
        for message in self.messages:
            payload = message.encode()
            check_frame_size(payload)
            file.write(encode_frame(FrameKind.stream_message, self.call_id, method_id, payload))
            # each message is handed to the transport before the next one is produced
            file.flush()
            self.sent += 1
        file.write(encode_frame(FrameKind.stream_end, self.call_id, method_id))


class CallResponse(ResponseSupport):
    """ The response to a call. The value is the decoded response message, or an RpcError. """

    def __init__(self, call_id, method_id, value):
        super().__init__(call_id, value)
        self.method_id = method_id

    def __str__(self):
        return "response#%d %s" % (self.response_key, self.value)


class JellyProtocolV1(BaseAsyncProtocolHandler):
    """
    Sends calls to the FPGA control service and pairs the responses with the calling thread.

    Any number of threads may issue calls concurrently. Each frame is written whole under the write lock, and
    a streaming call holds the lock until its final frame has been written.

    :param conduit: the conduit the handshake has completed on.
    :param timeout: the default number of seconds to wait for a response, None to wait indefinitely.
    """

    def __init__(self, conduit: Conduit, timeout=None):
        super().__init__(conduit)
        self.timeout = timeout
        self._call_ids = itertools.count(1)
        self._call_ids_lock = threading.Lock()
        self.add_unmatched_response_handler(self._unmatched_response)

    def next_call_id(self):
        with self._call_ids_lock:
            return next(self._call_ids) & 0xFFFFFFFF

    @property
    def closed(self):
        return self._failure is not None

    def call(self, method: Method, message: Message = None, timeout=None) -> Message:
        """
        Performs a unary call and waits for the response.

        :param method: the method to call.
        :param message: the request message, which must be an instance of the method's request type.
            When None, a request with all fields set to their defaults is sent.
        :param timeout: seconds to wait for the response. Defaults to the protocol timeout.
        :return: the response message
        :raises RpcError: when the call cannot be carried out.
        :raises ValueError: when a request field value cannot be encoded.
        """
        if message is None:
            message = method.request_type()
        self._check_message(method, message)
        future = self.async_request(CallRequest(self.next_call_id(), method, message))
        return self._wait(future, timeout)

    def stream_call(self, method: Method, messages, timeout=None) -> Message:
        """
        Performs a client streaming call: sends each message from the iterable, then ends the stream and
        waits for the single response.
        """
        checked = (self._check_message(method, m) for m in messages)
        future = self.async_request(StreamingCallRequest(self.next_call_id(), method, checked))
        return self._wait(future, timeout)

    def _check_message(self, method, message):
        if not isinstance(message, method.request_type):
            raise TypeError("%s expects %s, not %s" % (method.name, method.request_type.__name__,
                                                       type(message).__name__))
        return message

    def _wait(self, future: FutureResponse, timeout):
        if timeout is None:
            timeout = self.timeout
        try:
            return future.value(timeout)
        except RpcError as e:
            if e.status == StatusCode.DEADLINE_EXCEEDED:
                # a late response is then reported as unmatched
                self.discard_future(future)
            raise

    def _stream_request(self, request):
        try:
            super()._stream_request(request)
        except OSError as e:
            raise RpcError(StatusCode.UNAVAILABLE, "unable to send %s: %s" % (request, e)) from e
        except ValueError as e:
            # writes to a closed stream raise ValueError
            if self.closed or not self._conduit.open:
                raise RpcError(StatusCode.UNAVAILABLE, "unable to send %s: %s" % (request, e)) from e
            raise

    def _stream_request_sent(self, request):
        logger.debug("sent %s" % request)

    def _decode_response(self):
        try:
            frame = read_frame(self._conduit.input)
        except (OSError, EOFError, ValueError) as e:
            if not self.closed:
                logger.warning("connection lost: %s" % e)
            self._connection_lost("connection lost: %s" % e)
            return None

        if frame is None:
            if not self.closed:
                logger.info("connection closed by the server")
            self._connection_lost("connection closed by the server")
            return None

        kind, call_id, method_id, payload = frame
        return CallResponse(call_id, method_id, self._decode_value(kind, method_id, payload))

    def _decode_value(self, kind, method_id, payload):
        if kind == FrameKind.error:
            try:
                status, message = decode_error(payload)
            except ValueError as e:
                return RpcError(StatusCode.INTERNAL, "malformed error frame: %s" % e)
            return RpcError(status, message)

        if kind != FrameKind.response:
            return RpcError(StatusCode.INTERNAL, "unexpected frame kind 0x%02x" % kind)

        method = Methods.by_id(method_id)
        if method is None:
            return RpcError(StatusCode.INTERNAL, "response for unknown method 0x%02x" % method_id)
        try:
            return method.response_type.decode(payload)
        except ValueError as e:
            return RpcError(StatusCode.INTERNAL, "malformed %s response: %s" % (method.name, e))

    def _connection_lost(self, reason):
        self.fail_pending(RpcError(StatusCode.UNAVAILABLE, reason))
        self.async_thread.signal_stop()

    def _unmatched_response(self, response):
        logger.warning("discarding %s, no call is waiting for it" % response)

    def shutdown(self):
        """ Fails any outstanding calls and stops the reader thread once the conduit is closed. """
        self._connection_lost("the connection was closed")


def jelly_protocol_sniffer(line, conduit, timeout=None):
    """ Recognizes the server greeting.

    :raises ValueError: when the server speaks a different version of the protocol.
    """
    name, _, version = line.strip().partition('/')
    if name != PROTOCOL_NAME:
        return None
    try:
        version = int(version.split()[0])
    except (ValueError, IndexError):
        raise ValueError("malformed greeting '%s'" % line)
    if version != PROTOCOL_VERSION:
        raise ValueError("unsupported protocol version %d" % version)
    return JellyProtocolV1(conduit, timeout)


def handshake(conduit: Conduit, timeout=None) -> JellyProtocolV1:
    """
    Performs the greeting on a newly opened conduit and starts the protocol's reader thread.

    :raises UnknownProtocolError: when the server does not answer with a known greeting.
    """
    conduit.output.write(HELLO)
    conduit.output.flush()
    protocol = determine_line_protocol(conduit, [lambda line, c: jelly_protocol_sniffer(line, c, timeout)])
    target = conduit.target
    if hasattr(target, 'settimeout'):
        # the handshake may run under a connect timeout, the reader thread must block
        target.settimeout(None)
    protocol.start_background_thread()
    return protocol
