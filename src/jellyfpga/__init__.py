"""
Client for the FPGA control service.

- client: JellyFpgaClient and connect(). The client is the only thing most callers need.
- width: truncation and extension of integers for 1, 2, 4 and 8 byte access.
- protocol: the framed binary protocol. Calls are written by the calling thread and responses
  are read on a background thread, then matched to the waiting call by call id.
- conduit: a pair of streams over a socket.
- connector: opens the socket, performs the greeting and hands back the protocol.
  Connectors are chained, outer connectors wrapping inner ones:

      ProtocolConnector -> CloseOnErrorConnector -> SocketConnector

  On connecting, the inner connector is connected first. On disconnecting, the outer
  connector is disconnected first. A stream error anywhere closes the whole chain, and
  calls still waiting for a response then fail with UNAVAILABLE.
- config: layered configuration files, see jellyfpga.default.cfg.

## Threading

Sending is synchronous, on the calling thread, under a write lock, so concurrent callers never
interleave frames. A single reader thread per connection decodes responses and completes the
futures the callers are blocked on. Disconnecting doesn't join the reader, it exits once the
socket is closed.
"""
