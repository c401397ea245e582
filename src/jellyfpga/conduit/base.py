from abc import abstractmethod
from functools import wraps
from io import IOBase


class Conduit:
    """
    A two-way byte channel to the server: a readable input stream and a writable output stream.
    """

    @property
    @abstractmethod
    def target(self):
        """ the object the streams were made from, such as the socket. """
        raise NotImplementedError

    @property
    @abstractmethod
    def input(self) -> IOBase:
        """ the stream responses are read from. """
        raise NotImplementedError

    @property
    @abstractmethod
    def output(self) -> IOBase:
        """ the stream requests are written to. Writes are buffered until flushed. """
        raise NotImplementedError

    @property
    @abstractmethod
    def open(self) -> bool:
        """ True while both streams can still be used. """
        raise NotImplementedError

    @abstractmethod
    def close(self):
        """ closes both streams and releases the target. """
        raise NotImplementedError


class ErrorReportingStream:
    """
    Passes attribute access through to a stream. When a method of the stream raises, the handler is called with
    no arguments and the exception is then re-raised.
    """

    def __init__(self, stream, handler):
        self._stream = stream
        self._handler = handler

    def __getattr__(self, name):
        attr = getattr(self._stream, name)
        if not callable(attr):
            return attr

        @wraps(attr)
        def reporting(*args, **kwargs):
            try:
                return attr(*args, **kwargs)
            except Exception:
                self._handler()
                raise
        return reporting


class StreamErrorReportingConduit(Conduit):
    """
    Wraps a conduit so that any exception raised reading or writing its streams is reported to a handler.
    """

    def __init__(self, conduit: Conduit, handler):
        """
        :param handler: a callable taking no arguments, invoked each time a stream operation fails.
        """
        self.conduit = conduit
        self.handler = handler
        self._input = None
        self._output = None

    @property
    def target(self):
        return self.conduit.target

    @property
    def open(self) -> bool:
        return self.conduit.open

    def close(self):
        self.conduit.close()

    @property
    def input(self):
        if self._input is None:
            self._input = ErrorReportingStream(self.conduit.input, self.handler)
        return self._input

    @property
    def output(self):
        if self._output is None:
            self._output = ErrorReportingStream(self.conduit.output, self.handler)
        return self._output
