import logging
from abc import abstractmethod

from jellyfpga.conduit.base import Conduit, StreamErrorReportingConduit
from jellyfpga.protocol.rpc import UnknownProtocolError

logger = logging.getLogger(__name__)


class ConnectorError(ConnectionError):
    """ Indicates an error condition with a connection. """


class ConnectionNotConnectedError(ConnectorError):
    """ Indicates a connection is in the disconnected state when a connection is required. """


class ConnectionNotAvailableError(ConnectorError):
    """ Indicates the connection is not available. """


class ConnectorEvent:
    """ base class for connector events. """
    def __init__(self, connector):
        self.connector = connector


class ConnectorConnectedEvent(ConnectorEvent):
    """ The connector was connected. """


class ConnectorDisconnectedEvent(ConnectorEvent):
    """ The connector was disconnected. """


class ConnectorListeners:
    """ The callables notified of connector events. Each listener is called with the event. """

    def __init__(self):
        self._listeners = []

    def add(self, listener):
        if listener not in self._listeners:
            self._listeners.append(listener)
        return self

    def remove(self, listener):
        if listener in self._listeners:
            self._listeners.remove(listener)
        return self

    __iadd__ = add
    __isub__ = remove

    def fire(self, event: ConnectorEvent):
        # listeners may remove themselves
        for listener in list(self._listeners):
            listener(event)


class Connector:
    """ A connector describes an endpoint to which a conduit can be established. """

    def __init__(self):
        self.events = ConnectorListeners()

    @property
    @abstractmethod
    def endpoint(self):
        """ the endpoint that this connector reaches out to """
        raise NotImplementedError

    @property
    @abstractmethod
    def connected(self) -> bool:
        """
        Determines if this connector is connected to its underlying resource.
        :return: True if this connector is connected to it's underlying resource. False otherwise.
        :rtype: bool
        """
        raise NotImplementedError

    @property
    @abstractmethod
    def conduit(self) -> Conduit:
        """
        Retrieves the conduit for this connection.
        If the connection is not connected, raises ConnectionNotConnectedError
        """
        raise NotImplementedError

    @property
    @abstractmethod
    def available(self) -> bool:
        """ Determines if the underlying resource for this connector is available.
        :return: True if the resource is available and can be connected to.
        :rtype: bool
        """
        raise NotImplementedError

    @abstractmethod
    def connect(self):
        """
        Connects this connector to the underlying resource and determines the protocol.
        If the connection is already connected, this method returns silently.
        Raises ConnectorError if the connection cannot be established.
        """
        raise NotImplementedError

    @abstractmethod
    def disconnect(self):
        raise NotImplementedError


class AbstractConnector(Connector):
    """ Manages the connection cycle to an endpoint."""

    def __init__(self):
        super().__init__()
        self._conduit = None

    @property
    def available(self):
        return False if self.connected else self._try_available()

    @property
    def connected(self):
        return self._conduit is not None and self._connected()

    def connect(self):
        if self.connected:
            return

        if not self.available:
            raise ConnectionNotAvailableError("endpoint %s is not available" % (self.endpoint,))

        self._conduit = self._connect()
        self.events.fire(ConnectorConnectedEvent(self))

    def disconnect(self):
        conduit, self._conduit = self._conduit, None
        if conduit is None:
            return
        self._disconnect()
        conduit.close()
        self.events.fire(ConnectorDisconnectedEvent(self))

    @abstractmethod
    def _connect(self) -> Conduit:
        """ Template method for subclasses to perform the connection.
            If connection is not possible, an exception should be thrown
        """
        raise NotImplementedError

    @abstractmethod
    def _try_available(self):
        """ Determine if this connection is available. This method is only called when
            the connection is disconnected.
        :return: True if the connection is available or False otherwise.
        :rtype: bool
        """
        raise NotImplementedError

    @abstractmethod
    def _disconnect(self):
        """ perform any actions needed on disconnection.
        The base class takes care of closing the conduit, which happens
        after this method has been called.
        """
        raise NotImplementedError

    def _connected(self):
        return self._conduit is not None and self._conduit.open

    @property
    def conduit(self) -> Conduit:
        """
        Retrieves the conduit for this connection.
        raises ConnectionNotConnectedError if not connected
        """
        self.check_connected()
        return self._conduit

    def check_connected(self):
        if not self.connected:
            raise ConnectionNotConnectedError("not connected to %s" % (self.endpoint,))


class DelegateConnector(Connector):
    """
    Delegates methods to the delegate connector, unless they are overridden.
    Events are shared with the delegate so that listeners see the whole chain.
    """
    def __init__(self, delegate):
        super().__init__()
        self.delegate = delegate
        self.events = delegate.events

    @property
    def available(self) -> bool:
        return self.delegate.available

    @property
    def conduit(self) -> Conduit:
        return self.delegate.conduit

    @property
    def endpoint(self):
        return self.delegate.endpoint

    @property
    def connected(self) -> bool:
        return self.delegate.connected

    def connect(self):
        return self.delegate.connect()

    def disconnect(self):
        return self.delegate.disconnect()


class CloseOnErrorConnector(DelegateConnector):
    """
    Detects any exceptions thrown reading/writing to the stream and closes the connector.
    """

    def __init__(self, delegate):
        super().__init__(delegate)
        self._conduit = None

    @property
    def connected(self):
        return self._conduit is not None and super().connected

    def connect(self):
        if self._conduit is None:
            super().connect()
            self._conduit = StreamErrorReportingConduit(super().conduit, self.on_stream_exception)

    @property
    def conduit(self):
        if self._conduit is None:
            raise ConnectionNotConnectedError("not connected to %s" % (self.endpoint,))
        return self._conduit

    def disconnect(self):
        self._conduit = None
        super().disconnect()

    def on_stream_exception(self):
        if self._conduit is not None:
            logger.info("closing connection to %s after a stream error" % (self.endpoint,))
        self.disconnect()


class ProtocolConnector(DelegateConnector):
    """
    A connection that must satisfy protocol requirements before being considered open.

    :param protocol_sniffer: a callable that receives the conduit, negotiates the protocol and
        returns the protocol instance. It raises UnknownProtocolError if the peer doesn't speak a
        known protocol.
    """
    def __init__(self, delegate, protocol_sniffer):
        super().__init__(delegate)
        self._sniffer = protocol_sniffer
        self._protocol = None
        self.events.add(self._delegate_events)

    def _delegate_events(self, event):
        """ closes this connector when the wrapped connector closes. """
        if isinstance(event, ConnectorDisconnectedEvent) and self._protocol is not None:
            self.disconnect()

    def connect(self):
        if self._protocol is None:
            try:
                super().connect()
                self._protocol = self._sniffer(self.conduit)
                if self._protocol is None:
                    raise UnknownProtocolError("Protocol sniffer did not return a protocol.")
            except ConnectorError:
                raise
            except (UnknownProtocolError, OSError, ValueError) as e:
                raise ConnectorError("unable to connect to %s: %s" % (self.endpoint, e)) from e
            finally:  # cleanup connection on protocol error
                if not self._protocol:
                    super().disconnect()

    @property
    def connected(self):
        return self._protocol is not None and super().connected

    def disconnect(self):
        protocol, self._protocol = self._protocol, None
        if protocol is not None:
            if hasattr(protocol, 'shutdown'):
                protocol.shutdown()
        super().disconnect()

    @property
    def protocol(self):
        return self._protocol
