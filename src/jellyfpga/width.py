"""
Integer width arithmetic for typed register and memory access.

Values travel over the wire as 64-bit integers together with the access width in bytes. The client
truncates values to the access width before writing, and extends what it reads back to 64 bits,
with zero fill for unsigned access and sign fill for signed access.
"""

WIDTHS = (1, 2, 4, 8)


def check_width(width):
    """
    >>> check_width(4)
    4
    >>> check_width(3)
    Traceback (most recent call last):
    ...
    ValueError: invalid access width 3, expected one of 1, 2, 4, 8
    """
    if isinstance(width, bool) or not isinstance(width, int) or width not in WIDTHS:
        raise ValueError("invalid access width %r, expected one of %s" % (width, ', '.join(map(str, WIDTHS))))
    return width


def mask(width):
    """
    >>> hex(mask(2))
    '0xffff'
    """
    return (1 << (8 * check_width(width))) - 1


def truncate(value, width):
    """ Keeps the low width bytes of value, as a non-negative integer.

    >>> hex(truncate(0x12345678, 2))
    '0x5678'
    >>> truncate(-1, 1)
    255
    """
    return int(value) & mask(width)


def zero_extend(value, width):
    """
    >>> zero_extend(0xff, 1)
    255
    """
    return truncate(value, width)


def sign_extend(value, width):
    """ Interprets the low width bytes of value as a two's complement number.

    >>> sign_extend(0xff, 1)
    -1
    >>> sign_extend(0x7f, 1)
    127
    >>> sign_extend(0xfffffffe, 4)
    -2
    """
    value = truncate(value, width)
    sign_bit = 1 << (8 * width - 1)
    return value - (sign_bit << 1) if value & sign_bit else value
