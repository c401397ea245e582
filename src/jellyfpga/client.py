"""
The client for the FPGA control service.

    with connect('fpga-board:8051') as fpga:
        ok, slot = fpga.load('blinky')
        ok, mem = fpga.open_mmap('/dev/mem', 0xa0000000, 0x1000, 8)
        fpga.write_mem_u64(mem, 0, 1)
        fpga.close(mem)
        fpga.unload(slot)

Every operation returns the server's result flag. A result of False is a failure reported by the server,
for example an unknown firmware name or a closed handle. Failures to carry out the call at all raise
RpcError.
"""
import logging
import sys

from jellyfpga.config.config import configure_module
from jellyfpga.connector.base import CloseOnErrorConnector, ConnectorError, ProtocolConnector
from jellyfpga.connector.socketconn import SocketConnector, parse_endpoint
from jellyfpga.protocol.jelly import JellyProtocolV1, handshake
from jellyfpga.protocol.messages import Methods, UploadFirmwareRequest
from jellyfpga.width import check_width, sign_extend, truncate, zero_extend

logger = logging.getLogger(__name__)

# defaults, overridden by the jellyfpga configuration files
default_endpoint = 'localhost:8051'
connect_timeout = 5.0
response_timeout = None

configure_module(sys.modules[__name__], 'jellyfpga')

CHUNK_SIZE = 2 * 1024 * 1024


class FirmwareFileError(IOError):
    """ A firmware file could not be read. Raised before anything is sent to the server. """


def iter_upload_chunks(name, data, chunk_size=CHUNK_SIZE):
    """
    Produces the upload messages for a payload, in order. Each carries at most chunk_size bytes.
    An empty payload produces no messages.

    >>> [len(m.data) for m in iter_upload_chunks('fw', bytes(5), 2)]
    [2, 2, 1]
    """
    view = memoryview(data).cast('B')
    for start in range(0, len(view), chunk_size):
        yield UploadFirmwareRequest(name=name, data=view[start:start + chunk_size])


class JellyFpgaClient:
    """
    Remote access to the FPGA resources of one server.

    The client holds no state besides the connection. Handles and slots are plain integers assigned by
    the server, and are only meaningful to it. The client may be shared between threads.

    :param protocol: the protocol handler for an established connection.
    :param connector: the connector that owns the connection, disconnected when the client is closed.
    :param timeout: seconds to wait for each response, None to wait indefinitely.
    """

    def __init__(self, protocol: JellyProtocolV1, connector=None, timeout=None):
        self._protocol = protocol
        self._connector = connector
        self.timeout = timeout

    @property
    def connected(self):
        return not self._protocol.closed

    def disconnect(self):
        if self._connector is not None:
            self._connector.disconnect()
        else:
            self._protocol.shutdown()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()

    def _call(self, method, **fields):
        return self._protocol.call(method, method.request_type(**fields), self.timeout)

    # firmware

    def reset(self):
        return self._call(Methods.reset).result

    def load(self, name):
        """ Loads registered firmware. Returns (result, slot), where slot is needed to unload it again. """
        r = self._call(Methods.load, name=name)
        return r.result, r.slot

    def unload(self, slot):
        return self._call(Methods.unload, slot=slot).result

    def unload_all(self):
        """ Unloads slot 0. The server has no operation that lists or unloads every slot. """
        return self.unload(0)

    def upload_firmware(self, name, data):
        """
        Stores a firmware image on the server under the given name. The data is sent in chunks of
        at most CHUNK_SIZE bytes, and a single result is returned once the server has received them all.
        """
        logger.debug("uploading %d bytes as %s" % (len(data), name))
        return self._protocol.stream_call(Methods.upload_firmware, iter_upload_chunks(name, data),
                                          self.timeout).result

    def upload_firmware_file(self, name, path):
        try:
            with open(path, 'rb') as f:
                data = f.read()
        except OSError as e:
            raise FirmwareFileError("unable to read firmware file %s: %s" % (path, e)) from e
        return self.upload_firmware(name, data)

    def remove_firmware(self, name):
        return self._call(Methods.remove_firmware, name=name).result

    def load_bitstream(self, name):
        return self._call(Methods.load_bitstream, name=name).result

    def load_dtbo(self, name):
        return self._call(Methods.load_dtbo, name=name).result

    def dts_to_dtb(self, dts):
        """ Compiles device tree source on the server. Returns (result, dtb). """
        r = self._call(Methods.dts_to_dtb, dts=dts)
        return r.result, r.dtb

    def bitstream_to_bin(self, bitstream_name, bin_name, arch):
        return self._call(Methods.bitstream_to_bin, bitstream_name=bitstream_name, bin_name=bin_name,
                          arch=arch).result

    def register_accel(self, accel_name, bin_name, dtbo_name, json_name=None, overwrite=False):
        """ Groups a bitstream binary, an overlay and an optional descriptor under one name for load(). """
        return self._call(Methods.register_accel, accel_name=accel_name, bin_name=bin_name, dtbo_name=dtbo_name,
                          json_name=json_name or '', overwrite=overwrite).result

    def unregister_accel(self, accel_name):
        return self._call(Methods.unregister_accel, accel_name=accel_name).result

    # resources

    def open_mmap(self, path, offset, size, unit=0):
        r = self._call(Methods.open_mmap, path=path, offset=offset, size=size, unit=unit)
        return r.result, r.id

    def open_uio(self, name, unit=0):
        r = self._call(Methods.open_uio, name=name, unit=unit)
        return r.result, r.id

    def open_udmabuf(self, name, cache_enable=False, unit=0):
        r = self._call(Methods.open_udmabuf, name=name, cache_enable=cache_enable, unit=unit)
        return r.result, r.id

    def subclone(self, handle, offset, size, unit=0):
        r = self._call(Methods.subclone, id=handle, offset=offset, size=size, unit=unit)
        return r.result, r.id

    def close(self, handle):
        return self._call(Methods.close, id=handle).result

    def get_addr(self, handle):
        r = self._call(Methods.get_addr, id=handle)
        return r.result, r.addr

    def get_size(self, handle):
        r = self._call(Methods.get_size, id=handle)
        return r.result, r.size

    def get_phys_addr(self, handle):
        r = self._call(Methods.get_phys_addr, id=handle)
        return r.result, r.phys_addr

    # integer access. size is the access width in bytes.

    def write_mem_u(self, handle, offset, value, size):
        data = truncate(value, size)
        return self._call(Methods.write_mem_u, id=handle, offset=offset, data=data, size=size).result

    def write_mem_i(self, handle, offset, value, size):
        data = sign_extend(value, size)
        return self._call(Methods.write_mem_i, id=handle, offset=offset, data=data, size=size).result

    def read_mem_u(self, handle, offset, size):
        r = self._call(Methods.read_mem_u, id=handle, offset=offset, size=check_width(size))
        return r.result, zero_extend(r.data, size)

    def read_mem_i(self, handle, offset, size):
        r = self._call(Methods.read_mem_i, id=handle, offset=offset, size=check_width(size))
        return r.result, sign_extend(r.data, size)

    def write_reg_u(self, handle, reg, value, size):
        data = truncate(value, size)
        return self._call(Methods.write_reg_u, id=handle, reg=reg, data=data, size=size).result

    def write_reg_i(self, handle, reg, value, size):
        data = sign_extend(value, size)
        return self._call(Methods.write_reg_i, id=handle, reg=reg, data=data, size=size).result

    def read_reg_u(self, handle, reg, size):
        r = self._call(Methods.read_reg_u, id=handle, reg=reg, size=check_width(size))
        return r.result, zero_extend(r.data, size)

    def read_reg_i(self, handle, reg, size):
        r = self._call(Methods.read_reg_i, id=handle, reg=reg, size=check_width(size))
        return r.result, sign_extend(r.data, size)

    # floating point access

    def write_mem_f32(self, handle, offset, value):
        return self._call(Methods.write_mem_f32, id=handle, offset=offset, data=value).result

    def write_mem_f64(self, handle, offset, value):
        return self._call(Methods.write_mem_f64, id=handle, offset=offset, data=value).result

    def read_mem_f32(self, handle, offset):
        r = self._call(Methods.read_mem_f32, id=handle, offset=offset, size=4)
        return r.result, r.data

    def read_mem_f64(self, handle, offset):
        r = self._call(Methods.read_mem_f64, id=handle, offset=offset, size=8)
        return r.result, r.data

    def write_reg_f32(self, handle, reg, value):
        return self._call(Methods.write_reg_f32, id=handle, reg=reg, data=value).result

    def write_reg_f64(self, handle, reg, value):
        return self._call(Methods.write_reg_f64, id=handle, reg=reg, data=value).result

    def read_reg_f32(self, handle, reg):
        r = self._call(Methods.read_reg_f32, id=handle, reg=reg, size=4)
        return r.result, r.data

    def read_reg_f64(self, handle, reg):
        r = self._call(Methods.read_reg_f64, id=handle, reg=reg, size=8)
        return r.result, r.data

    # bulk transfer

    def mem_copy_to(self, handle, offset, data):
        return self._call(Methods.mem_copy_to, id=handle, offset=offset, data=data).result

    def mem_copy_from(self, handle, offset, size):
        r = self._call(Methods.mem_copy_from, id=handle, offset=offset, size=size)
        return r.result, r.data

    # fixed width access

    def write_mem_u8(self, handle, offset, value):
        return self.write_mem_u(handle, offset, value, 1)

    def write_mem_u16(self, handle, offset, value):
        return self.write_mem_u(handle, offset, value, 2)

    def write_mem_u32(self, handle, offset, value):
        return self.write_mem_u(handle, offset, value, 4)

    def write_mem_u64(self, handle, offset, value):
        return self.write_mem_u(handle, offset, value, 8)

    def write_mem_i8(self, handle, offset, value):
        return self.write_mem_i(handle, offset, value, 1)

    def write_mem_i16(self, handle, offset, value):
        return self.write_mem_i(handle, offset, value, 2)

    def write_mem_i32(self, handle, offset, value):
        return self.write_mem_i(handle, offset, value, 4)

    def write_mem_i64(self, handle, offset, value):
        return self.write_mem_i(handle, offset, value, 8)

    def read_mem_u8(self, handle, offset):
        return self.read_mem_u(handle, offset, 1)

    def read_mem_u16(self, handle, offset):
        return self.read_mem_u(handle, offset, 2)

    def read_mem_u32(self, handle, offset):
        return self.read_mem_u(handle, offset, 4)

    def read_mem_u64(self, handle, offset):
        return self.read_mem_u(handle, offset, 8)

    def read_mem_i8(self, handle, offset):
        return self.read_mem_i(handle, offset, 1)

    def read_mem_i16(self, handle, offset):
        return self.read_mem_i(handle, offset, 2)

    def read_mem_i32(self, handle, offset):
        return self.read_mem_i(handle, offset, 4)

    def read_mem_i64(self, handle, offset):
        return self.read_mem_i(handle, offset, 8)

    def write_reg_u8(self, handle, reg, value):
        return self.write_reg_u(handle, reg, value, 1)

    def write_reg_u16(self, handle, reg, value):
        return self.write_reg_u(handle, reg, value, 2)

    def write_reg_u32(self, handle, reg, value):
        return self.write_reg_u(handle, reg, value, 4)

    def write_reg_u64(self, handle, reg, value):
        return self.write_reg_u(handle, reg, value, 8)

    def write_reg_i8(self, handle, reg, value):
        return self.write_reg_i(handle, reg, value, 1)

    def write_reg_i16(self, handle, reg, value):
        return self.write_reg_i(handle, reg, value, 2)

    def write_reg_i32(self, handle, reg, value):
        return self.write_reg_i(handle, reg, value, 4)

    def write_reg_i64(self, handle, reg, value):
        return self.write_reg_i(handle, reg, value, 8)

    def read_reg_u8(self, handle, reg):
        return self.read_reg_u(handle, reg, 1)

    def read_reg_u16(self, handle, reg):
        return self.read_reg_u(handle, reg, 2)

    def read_reg_u32(self, handle, reg):
        return self.read_reg_u(handle, reg, 4)

    def read_reg_u64(self, handle, reg):
        return self.read_reg_u(handle, reg, 8)

    def read_reg_i8(self, handle, reg):
        return self.read_reg_i(handle, reg, 1)

    def read_reg_i16(self, handle, reg):
        return self.read_reg_i(handle, reg, 2)

    def read_reg_i32(self, handle, reg):
        return self.read_reg_i(handle, reg, 4)

    def read_reg_i64(self, handle, reg):
        return self.read_reg_i(handle, reg, 8)


def connect(endpoint=None, timeout=None, call_timeout=None) -> JellyFpgaClient:
    """
    Connects to an FPGA control server.

    :param endpoint: "host:port", "tcp://host:port", "[::1]:8051", a (host, port) tuple or a TCPServerEndpoint.
        Defaults to the configured default_endpoint. The port defaults to 8051.
    :param timeout: seconds allowed to open the socket and complete the handshake. Defaults to the configured
        connect_timeout.
    :param call_timeout: seconds to wait for each response. Defaults to the configured response_timeout.
    :raises ConnectorError: when the endpoint is invalid, unreachable, or does not speak the protocol.
    """
    endpoint = default_endpoint if endpoint is None else endpoint
    timeout = connect_timeout if timeout is None else timeout
    try:
        server = parse_endpoint(endpoint)
    except ValueError as e:
        raise ConnectorError("invalid endpoint %r: %s" % (endpoint, e)) from e

    connector = ProtocolConnector(CloseOnErrorConnector(SocketConnector(server, timeout)), handshake)
    connector.connect()
    logger.info("connected to %s" % server)
    return JellyFpgaClient(connector.protocol, connector, response_timeout if call_timeout is None else call_timeout)
