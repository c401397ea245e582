"""
The connector establishes a conduit to the FPGA control service and negotiates the protocol spoken over it.

A connector can be thought of as a conduit and protocol factory.
"""
