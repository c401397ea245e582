"""
Provides building blocks for implementing remote procedure call protocols. Requests are streamed to a conduit
and responses are read back on a background thread, where they are paired with the originating request by key.
"""
import logging
import threading
from abc import abstractmethod
from collections import defaultdict
from collections.abc import Callable
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from io import IOBase

from jellyfpga.conduit.base import Conduit

logger = logging.getLogger(__name__)


class UnknownProtocolError(IOError):
    """
    Error raised by a protocol sniffer when it doesn't recognize the stream protocol.
    """


class StatusCode:
    """Status codes carried by an RpcError. The values follow the usual RPC status numbering."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15

    @classmethod
    def name_of(cls, code):
        """
        >>> StatusCode.name_of(14)
        'UNAVAILABLE'
        >>> StatusCode.name_of(99)
        'STATUS_99'
        """
        for name, value in vars(cls).items():
            if name.isupper() and value == code:
                return name
        return 'STATUS_%d' % code


class RpcError(IOError):
    """ A transport or protocol level failure of a remote call.

    This is distinct from a call that completes with a negative result: an RpcError means the
    call itself could not be carried out.
    """

    def __init__(self, status, message=''):
        super().__init__(status, message)
        self.status = status
        self.message = message

    def __str__(self):
        return "%s: %s" % (StatusCode.name_of(self.status), self.message)


class FutureValue(Future):
    """ describes a value that may have not yet been computed. Callers can check if the value has arrived, or chose to
        wait until the value has arrived.
        If an exception is encountered computing the value, it is set."""

    def _value_extractor(self, value):
        """
        The value extractor allows processing of the result to arrive at the
        value returned in `value`.
        """
        return value

    def value(self, timeout=None):
        """ allows the provider to set the result value but provide a different (derived) value to callers.
            Raises RpcError with DEADLINE_EXCEEDED when the value doesn't arrive within timeout seconds.
        """
        try:
            result = self.result(timeout)
        except FutureTimeoutError as e:
            raise RpcError(StatusCode.DEADLINE_EXCEEDED, "no response after %s seconds" % timeout) from e
        value = self._value_extractor(result)
        if isinstance(value, BaseException):
            raise value
        return value


class Request:
    """ Encapsulates the request data.  A request is a message sent from the client to the server. """

    @abstractmethod
    def to_stream(self, file: IOBase):
        """ Encodes the request as bytes in a stream.
        :param file: the file-like instance to stream this request to.
        """
        raise NotImplementedError()

    @property
    def response_keys(self) -> list:
        """ retrieves an iterable over keys that are used to correlate requests with corresponding responses. """
        raise NotImplementedError()


class Response:
    """Represents a response, which has a key and a value.

    A response is a message sent from the server to the client.
    Some responses may be unsolicited - have no originating request from a known client.
    """

    @property
    def response_key(self):
        """
        :return: a key that can be used to pair this response with a previously sent request.
        Will be None if this response is unsolicited.
        """
        raise NotImplementedError()

    @property
    def value(self):
        """
        The decoded representation of the response value.
        """
        raise NotImplementedError()


class FutureResponse(FutureValue):
    """ Relates a request and it's future response."""

    def __init__(self, request: Request):
        """
        :param request: The request this response is for.
        """
        super().__init__()
        self._request = request

    def _value_extractor(self, r):
        return r.value

    @property
    def request(self):
        return self._request


class ResponseSupport(Response):
    """ A simple implementation of Response that
        stores the value attribute and request_key.
    """

    def __init__(self, request_key=None, value=None):
        """
        :param request_key the unique key that is used to identify the request.
        :param the value of the response.  The value is defined by the protocol.
        """
        self._request_key = request_key
        self._value = value

    @property
    def value(self):
        return self._value

    @property
    def response_key(self):
        return self._request_key


class AsyncLoop:
    """ Continually runs a given function on a background thread.
        Exceptions are logged and posted to a given handler
        The background thread is registered as a daemon.
    """

    def __init__(self, fn: Callable = None, args=(), log=logger):
        """
        :param fn the function to run
        :param args arguments to pass to fn
        """
        self.fn = fn
        self.args = args
        self.stop_event = threading.Event()
        self.background_thread = None
        self.logger = log

    def start(self):
        if self.background_thread is None:
            t = threading.Thread(target=self._run, name='jellyfpga-reader')
            t.daemon = True
            self.background_thread = t
            t.start()

    def exception_handler(self, e):
        self.logger.exception(e)

    def _run(self):
        """ The processing loop for the background thread.
             Invokes the callable for as long as the stop signal is not received.
        """
        while self.running():
            try:
                self.loop()
            except Exception as e:
                self.exception_handler(e)
        self.logger.debug("background thread exiting")

    def loop(self):
        self.fn(*self.args)

    def running(self):
        return not self.stop_event.is_set()

    def signal_stop(self):
        """ asks the thread to exit after the current iteration, without waiting for it. """
        self.stop_event.set()

    def stop(self):
        self.signal_stop()
        thread = self.background_thread
        self.background_thread = None
        if thread and thread is not threading.current_thread():
            thread.join()


class BaseAsyncProtocolHandler:
    """
    Wraps a conduit in an asynchronous request/response handler. The format for the requests and responses is not
    defined at this level, but the class takes care of registering requests sent along with a future response and
    associating incoming responses with the originating request.

    The primary method to use is async_request(r:Request) which sends the request and returns a FutureResponse
    that the caller can use to check if the response has arrived or wait for the response.

    Requests may be sent from any thread. Each request is written to the conduit whole, so concurrent callers
    never interleave their bytes.

    Once fail_pending() has been called the handler is failed: outstanding futures complete with the
    exception given, and requests made afterwards raise it.

    :param conduit: The conduit over which the protocol is conducted
    """

    def __init__(self, conduit: Conduit):
        self._conduit = conduit
        self._requests = defaultdict(list)
        self._requests_lock = threading.Lock()
        self._write_lock = threading.RLock()
        self._unmatched = []
        self._failure = None
        self.async_thread = AsyncLoop(self.background_loop)

    def start_background_thread(self):
        self.async_thread.start()

    def add_unmatched_response_handler(self, fn):
        """add a function that is called with unsolicited responses.

        :param fn: A callable that takes a single argument. This function is called with any responses that did not
                originate from a request.
        """
        if fn not in self._unmatched:
            self._unmatched.append(fn)

    def async_request(self, request: Request) -> FutureResponse:
        """ Sends a request to the conduit.
        :param request: The request to send.
        :return: A FutureResponse where the corresponding response to the request can be retrieved when it arrives.
        """
        future = FutureResponse(request)
        self._register_future(future)
        try:
            self._stream_request(request)
        except BaseException:
            self._unregister_future(future)
            raise
        return future

    def discard_future(self, future: FutureResponse):
        self._unregister_future(future)

    def _stream_request(self, request):
        """ arranges for the request to be streamed. This implementation is synchronous, but subclasses may choose
            to send the request asynchronously. """
        with self._write_lock:
            request.to_stream(self._conduit.output)
            self._conduit.output.flush()
        self._stream_request_sent(request)

    def _register_future(self, future: FutureResponse):
        """
        registers a FutureResponse so that it can be later retrieved when the corresponding response arrives.
        :raises: the exception given to fail_pending(), once the handler has failed.
        """
        with self._requests_lock:
            if self._failure is not None:
                raise self._failure
            for key in future.request.response_keys or ():
                self._requests[key].append(future)

    def _unregister_future(self, future: FutureResponse):
        """
        :return: True if the future was still registered. The caller that removes a future is the one that
            completes it.
        """
        removed = False
        with self._requests_lock:
            for key in future.request.response_keys or ():
                l = self._requests.get(key)
                if l and future in l:
                    l.remove(future)
                    removed = True
                    if not l:
                        del self._requests[key]
        return removed

    def fail_pending(self, exception: BaseException):
        """ completes every outstanding future with the given exception, and fails any later request with it.
            Only the first failure is kept. """
        with self._requests_lock:
            if self._failure is None:
                self._failure = exception
            futures = list(dict.fromkeys(f for l in self._requests.values() for f in l))
            self._requests.clear()
        for f in futures:
            f.set_exception(exception)

    @abstractmethod
    def _decode_response(self) -> Response:
        """  Template method for subclasses. reads/decodes the next response from the conduit. """
        raise NotImplementedError()

    def background_loop(self):
        """
        the primary function that pumps messages from the conduit.
        """
        return self.read_response_async()

    def read_response_async(self):
        """called on the background thread to process responses from the conduit.
        If the conduit is closed, the background thread is stopped. Otherwise the read_response() method is called. """
        if not self._conduit.open:
            self.async_thread.stop()
            return None
        else:
            return self.read_response()

    def read_response(self):
        """ synchronously reads the next response from the conduit and processes it. """
        response = self._decode_response()
        return self.process_response(response)

    def process_response(self, response: Response) -> Response:
        """
        Handles the response by associating with any previous request or notifying unmatched response
        listeners.
        """
        if response is not None:
            futures = self._matching_futures(response)
            if futures:
                for f in futures:
                    self._set_future_response(f, response)
            else:
                for callback in self._unmatched:
                    callback(response)
        return response

    def _set_future_response(self, future: FutureResponse, response):
        """ removes the associated request and sets the response on the future, unless the future was
            already completed elsewhere. """
        if self._unregister_future(future):
            future.set_result(response)

    def _matching_futures(self, response):
        """ finds matching futures for the given response """
        with self._requests_lock:
            return list(self._requests.get(response.response_key, ()))

    def _stream_request_sent(self, request):
        """ template method for subclasses to handle when a request has been sent """
        pass
