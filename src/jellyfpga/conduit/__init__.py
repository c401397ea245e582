"""
The conduit package provides an abstraction of a bi-directional byte stream to a server endpoint.
The concrete implementation is a TCP socket.
"""
