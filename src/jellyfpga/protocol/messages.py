"""
The message schema of the FPGA control service: one request and one response type per method.

A message is a flat sequence of typed fields. The field order given here is the order on the wire.
"""
from jellyfpga.protocol.wire import boolean, byte_string, decode_fields, encode_fields, float32, float64, int32, \
    int64, string, uint32, uint64


class Message:
    """ Base class for messages. Subclasses list their fields as (name, codec) pairs. """

    fields = ()

    def __init__(self, **values):
        for name, codec in self.fields:
            setattr(self, name, values.pop(name, codec.default()))
        if values:
            raise TypeError("%s has no fields %s" % (type(self).__name__, ', '.join(sorted(values))))

    def encode(self) -> bytes:
        return encode_fields(self.fields, self.__dict__)

    @classmethod
    def decode(cls, payload: bytes):
        return cls(**decode_fields(cls.fields, payload))

    def _field_values(self):
        return tuple(getattr(self, name) for name, _ in self.fields)

    def __eq__(self, other):
        return type(other) is type(self) and other._field_values() == self._field_values()

    def __repr__(self):
        return "%s(%s)" % (type(self).__name__,
                           ", ".join("%s=%r" % (name, getattr(self, name)) for name, _ in self.fields))


class EmptyRequest(Message):
    fields = ()


class ResultResponse(Message):
    fields = (('result', boolean),)


class NameRequest(Message):
    fields = (('name', string),)


class HandleRequest(Message):
    fields = (('id', uint32),)


# firmware management

class LoadResponse(Message):
    fields = (('result', boolean), ('slot', int32))


class UnloadRequest(Message):
    fields = (('slot', int32),)


class UploadFirmwareRequest(Message):
    """ One chunk of a firmware upload. The same name is repeated in every chunk. """
    fields = (('name', string), ('data', byte_string))


class DtsToDtbRequest(Message):
    fields = (('dts', string),)


class DtsToDtbResponse(Message):
    fields = (('result', boolean), ('dtb', byte_string))


class BitstreamToBinRequest(Message):
    fields = (('bitstream_name', string), ('bin_name', string), ('arch', string))


class RegisterAccelRequest(Message):
    fields = (('accel_name', string), ('bin_name', string), ('dtbo_name', string), ('json_name', string),
              ('overwrite', boolean))


class UnregisterAccelRequest(Message):
    fields = (('accel_name', string),)


# resources

class OpenMmapRequest(Message):
    fields = (('path', string), ('offset', uint64), ('size', uint64), ('unit', uint64))


class OpenUioRequest(Message):
    fields = (('name', string), ('unit', uint64))


class OpenUdmabufRequest(Message):
    fields = (('name', string), ('cache_enable', boolean), ('unit', uint64))


class OpenResponse(Message):
    fields = (('result', boolean), ('id', uint32))


class SubcloneRequest(Message):
    fields = (('id', uint32), ('offset', uint64), ('size', uint64), ('unit', uint64))


class GetAddrResponse(Message):
    fields = (('result', boolean), ('addr', uint64))


class GetSizeResponse(Message):
    fields = (('result', boolean), ('size', uint64))


class GetPhysAddrResponse(Message):
    fields = (('result', boolean), ('phys_addr', uint64))


# typed access: memory is addressed by byte offset, registers by register number

class WriteMemURequest(Message):
    fields = (('id', uint32), ('offset', uint64), ('data', uint64), ('size', uint64))


class WriteMemIRequest(Message):
    fields = (('id', uint32), ('offset', uint64), ('data', int64), ('size', uint64))


class ReadMemRequest(Message):
    fields = (('id', uint32), ('offset', uint64), ('size', uint64))


class WriteRegURequest(Message):
    fields = (('id', uint32), ('reg', uint64), ('data', uint64), ('size', uint64))


class WriteRegIRequest(Message):
    fields = (('id', uint32), ('reg', uint64), ('data', int64), ('size', uint64))


class ReadRegRequest(Message):
    fields = (('id', uint32), ('reg', uint64), ('size', uint64))


class ReadUResponse(Message):
    fields = (('result', boolean), ('data', uint64))


class ReadIResponse(Message):
    fields = (('result', boolean), ('data', int64))


class WriteMemF32Request(Message):
    fields = (('id', uint32), ('offset', uint64), ('data', float32))


class WriteMemF64Request(Message):
    fields = (('id', uint32), ('offset', uint64), ('data', float64))


class WriteRegF32Request(Message):
    fields = (('id', uint32), ('reg', uint64), ('data', float32))


class WriteRegF64Request(Message):
    fields = (('id', uint32), ('reg', uint64), ('data', float64))


class ReadF32Response(Message):
    fields = (('result', boolean), ('data', float32))


class ReadF64Response(Message):
    fields = (('result', boolean), ('data', float64))


class MemCopyToRequest(Message):
    fields = (('id', uint32), ('offset', uint64), ('data', byte_string))


class MemCopyFromRequest(Message):
    fields = (('id', uint32), ('offset', uint64), ('size', uint64))


class MemCopyFromResponse(Message):
    fields = (('result', boolean), ('data', byte_string))


class Method:
    """Describes a remote method: its id on the wire, and the types of its request and response."""

    def __init__(self, method_id, name, request_type, response_type, client_streaming=False):
        self.method_id = method_id
        self.name = name
        self.request_type = request_type
        self.response_type = response_type
        self.client_streaming = client_streaming

    def __repr__(self):
        return "Method(%s, 0x%02x)" % (self.name, self.method_id)


class Methods:
    """Describes the method name and the corresponding ID"""

    reset = Method(0x01, 'Reset', EmptyRequest, ResultResponse)
    load = Method(0x02, 'Load', NameRequest, LoadResponse)
    unload = Method(0x03, 'Unload', UnloadRequest, ResultResponse)
    upload_firmware = Method(0x04, 'UploadFirmware', UploadFirmwareRequest, ResultResponse, client_streaming=True)
    remove_firmware = Method(0x05, 'RemoveFirmware', NameRequest, ResultResponse)
    load_bitstream = Method(0x06, 'LoadBitstream', NameRequest, ResultResponse)
    load_dtbo = Method(0x07, 'LoadDtbo', NameRequest, ResultResponse)
    dts_to_dtb = Method(0x08, 'DtsToDtb', DtsToDtbRequest, DtsToDtbResponse)
    bitstream_to_bin = Method(0x09, 'BitstreamToBin', BitstreamToBinRequest, ResultResponse)
    register_accel = Method(0x0A, 'RegisterAccel', RegisterAccelRequest, ResultResponse)
    unregister_accel = Method(0x0B, 'UnregisterAccel', UnregisterAccelRequest, ResultResponse)

    open_mmap = Method(0x20, 'OpenMmap', OpenMmapRequest, OpenResponse)
    open_uio = Method(0x21, 'OpenUio', OpenUioRequest, OpenResponse)
    open_udmabuf = Method(0x22, 'OpenUdmabuf', OpenUdmabufRequest, OpenResponse)
    subclone = Method(0x23, 'Subclone', SubcloneRequest, OpenResponse)
    close = Method(0x24, 'Close', HandleRequest, ResultResponse)
    get_addr = Method(0x25, 'GetAddr', HandleRequest, GetAddrResponse)
    get_size = Method(0x26, 'GetSize', HandleRequest, GetSizeResponse)
    get_phys_addr = Method(0x27, 'GetPhysAddr', HandleRequest, GetPhysAddrResponse)

    write_mem_u = Method(0x40, 'WriteMemU', WriteMemURequest, ResultResponse)
    write_mem_i = Method(0x41, 'WriteMemI', WriteMemIRequest, ResultResponse)
    read_mem_u = Method(0x42, 'ReadMemU', ReadMemRequest, ReadUResponse)
    read_mem_i = Method(0x43, 'ReadMemI', ReadMemRequest, ReadIResponse)
    write_reg_u = Method(0x44, 'WriteRegU', WriteRegURequest, ResultResponse)
    write_reg_i = Method(0x45, 'WriteRegI', WriteRegIRequest, ResultResponse)
    read_reg_u = Method(0x46, 'ReadRegU', ReadRegRequest, ReadUResponse)
    read_reg_i = Method(0x47, 'ReadRegI', ReadRegRequest, ReadIResponse)

    write_mem_f32 = Method(0x50, 'WriteMemF32', WriteMemF32Request, ResultResponse)
    write_mem_f64 = Method(0x51, 'WriteMemF64', WriteMemF64Request, ResultResponse)
    read_mem_f32 = Method(0x52, 'ReadMemF32', ReadMemRequest, ReadF32Response)
    read_mem_f64 = Method(0x53, 'ReadMemF64', ReadMemRequest, ReadF64Response)
    write_reg_f32 = Method(0x54, 'WriteRegF32', WriteRegF32Request, ResultResponse)
    write_reg_f64 = Method(0x55, 'WriteRegF64', WriteRegF64Request, ResultResponse)
    read_reg_f32 = Method(0x56, 'ReadRegF32', ReadRegRequest, ReadF32Response)
    read_reg_f64 = Method(0x57, 'ReadRegF64', ReadRegRequest, ReadF64Response)

    mem_copy_to = Method(0x60, 'MemCopyTo', MemCopyToRequest, ResultResponse)
    mem_copy_from = Method(0x61, 'MemCopyFrom', MemCopyFromRequest, MemCopyFromResponse)

    @classmethod
    def all(cls):
        return [m for m in vars(cls).values() if isinstance(m, Method)]

    @classmethod
    def by_id(cls, method_id):
        for m in cls.all():
            if m.method_id == method_id:
                return m
        return None
