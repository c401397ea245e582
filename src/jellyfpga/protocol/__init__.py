"""
The protocol package defines the messages exchanged with the FPGA control server and the
request/response machinery that carries them over a conduit.
"""
