"""
Binary layout of the FPGA control protocol.

Every message travels in a frame::

    u32 length      number of bytes that follow this field
    u8  kind        FrameKind
    u32 call_id     chosen by the client and echoed by the server
    u16 method      method id from the schema
    ... payload

All integers are little-endian. A payload is the concatenation of the message fields in schema order,
each encoded by its FieldCodec.
"""
import struct
from io import BytesIO

from jellyfpga.protocol.io import read_exactly

HEADER = struct.Struct('<IBIH')
LENGTH = struct.Struct('<I')

# the header fields counted by the length prefix: kind, call_id and method
HEADER_BODY_SIZE = HEADER.size - LENGTH.size

MAX_FRAME_SIZE = 64 * 1024 * 1024


class FrameKind:
    request = 1
    stream_message = 2
    stream_end = 3
    response = 0x81
    error = 0x82

    client_kinds = (request, stream_message, stream_end)
    server_kinds = (response, error)


class FieldCodec:
    """ Encodes and decodes one field value to and from a stream. """

    name = None

    def encode(self, value, stream):
        raise NotImplementedError

    def decode(self, stream):
        raise NotImplementedError

    def default(self):
        raise NotImplementedError

    def __repr__(self):
        return self.name


class StructCodec(FieldCodec):
    """ A fixed size field described by a struct format. """

    def __init__(self, name, fmt, default=0):
        self.name = name
        self._struct = struct.Struct(fmt)
        self._default = default

    def encode(self, value, stream):
        try:
            stream.write(self._struct.pack(value))
        except struct.error as e:
            raise ValueError("%r does not fit a %s field" % (value, self.name)) from e

    def decode(self, stream):
        return self._struct.unpack(read_exactly(stream, self._struct.size))[0]

    def default(self):
        return self._default


class BoolCodec(StructCodec):

    def __init__(self):
        super().__init__('bool', '<B', False)

    def encode(self, value, stream):
        super().encode(1 if value else 0, stream)

    def decode(self, stream):
        return super().decode(stream) != 0


class BytesCodec(FieldCodec):
    """ A u32 length followed by that many bytes. """

    name = 'bytes'

    def encode(self, value, stream):
        data = bytes(value)
        stream.write(LENGTH.pack(len(data)))
        stream.write(data)

    def decode(self, stream):
        size = LENGTH.unpack(read_exactly(stream, LENGTH.size))[0]
        return bytes(read_exactly(stream, size)) if size else b''

    def default(self):
        return b''


class StringCodec(BytesCodec):
    """ UTF-8 text, encoded as bytes. """

    name = 'string'

    def encode(self, value, stream):
        if not isinstance(value, str):
            raise ValueError("%r is not a string" % (value,))
        super().encode(value.encode('utf-8'), stream)

    def decode(self, stream):
        return super().decode(stream).decode('utf-8')

    def default(self):
        return ''


boolean = BoolCodec()
uint32 = StructCodec('uint32', '<I')
uint64 = StructCodec('uint64', '<Q')
int32 = StructCodec('int32', '<i')
int64 = StructCodec('int64', '<q')
float32 = StructCodec('float', '<f', 0.0)
float64 = StructCodec('double', '<d', 0.0)
string = StringCodec()
byte_string = BytesCodec()


def encode_fields(fields, values: dict) -> bytes:
    """
    Encodes the named values in field order. Fields missing from values take their default.

    >>> encode_fields((('id', uint32), ('ok', boolean)), {'id': 2, 'ok': True})
    b'\\x02\\x00\\x00\\x00\\x01'
    """
    stream = BytesIO()
    for name, codec in fields:
        value = values.get(name)
        codec.encode(codec.default() if value is None else value, stream)
    return stream.getvalue()


def decode_fields(fields, payload: bytes) -> dict:
    """
    Decodes a payload into a dictionary of field values. The payload must be consumed exactly.

    >>> decode_fields((('id', uint32), ('ok', boolean)), b'\\x02\\x00\\x00\\x00\\x01')
    {'id': 2, 'ok': True}
    """
    stream = BytesIO(payload)
    try:
        values = {name: codec.decode(stream) for name, codec in fields}
    except EOFError as e:
        raise ValueError("payload too short: %s" % e) from e
    except UnicodeDecodeError as e:
        raise ValueError("invalid text field: %s" % e) from e
    remaining = len(payload) - stream.tell()
    if remaining:
        raise ValueError("%d unexpected bytes after the last field" % remaining)
    return values


def encode_frame(kind, call_id, method, payload=b'') -> bytes:
    """
    >>> encode_frame(FrameKind.request, 1, 2, b'x')
    b'\\x08\\x00\\x00\\x00\\x01\\x01\\x00\\x00\\x00\\x02\\x00x'
    """
    return HEADER.pack(HEADER_BODY_SIZE + len(payload), kind, call_id, method) + payload


def read_frame(stream):
    """
    Reads the next frame from a stream.

    :return: a tuple (kind, call_id, method, payload), or None if the stream ended cleanly before a frame started.
    :raises EOFError: if the stream ends part way through a frame.
    :raises ValueError: if the length prefix is invalid.
    """
    prefix = stream.read(LENGTH.size)
    if not prefix:
        return None
    if len(prefix) < LENGTH.size:
        prefix += read_exactly(stream, LENGTH.size - len(prefix))
    length = LENGTH.unpack(prefix)[0]
    if length < HEADER_BODY_SIZE or length > MAX_FRAME_SIZE:
        raise ValueError("invalid frame length %d" % length)
    body = read_exactly(stream, length)
    kind, call_id, method = HEADER.unpack(prefix + body[:HEADER_BODY_SIZE])[1:]
    return kind, call_id, method, body[HEADER_BODY_SIZE:]


def encode_error(status, message) -> bytes:
    return encode_fields(ERROR_FIELDS, {'status': status, 'message': message})


def decode_error(payload):
    values = decode_fields(ERROR_FIELDS, payload)
    return values['status'], values['message']


ERROR_FIELDS = (('status', int32), ('message', string))
