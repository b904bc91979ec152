"""Reverse run-length codec for sparse almanac images.

The encoded buffer is a sequence of segments, each terminated by a
single control byte, and is decoded from its *last* byte backwards:

* ``0xxx xxxx`` (1-127) - a run of that many zero bytes.  No literal
  bytes precede it.
* ``0x80`` - a run of 128 zero bytes.  A literal run of length zero is
  never written, so this value is unambiguous.
* ``1xxx xxxx`` (0x81-0xFF) - a literal run of ``x`` bytes, which are the
  ``x`` bytes immediately preceding the control byte.

Decoding backwards lets a device expand the image in place, which is why
the control byte trails its segment.
"""

from __future__ import annotations

from pyvsm.exceptions import CodecIntegrityError

_LITERAL_FLAG = 0x80
_MAX_ZERO_RUN = 128
_MAX_LITERAL_RUN = 127
_FULL_ZERO_RUN = 0x80


def _flush_literal(out: bytearray, count: int) -> None:
    if count:
        out.append(_LITERAL_FLAG | count)


def encode(data: bytes) -> bytes:
    """Compress *data*.

    Runs of two or more zero bytes (up to 128 per segment) become a single
    control byte; everything else is copied into literal runs of at most
    127 bytes.  Incompressible input grows by one byte per 127 bytes.
    """
    out = bytearray()
    size = len(data)
    pos = 0
    literals = 0
    while pos < size:
        zeros = 0
        while zeros < _MAX_ZERO_RUN and pos + zeros < size and data[pos + zeros] == 0:
            zeros += 1

        if zeros >= 2:
            _flush_literal(out, literals)
            literals = 0
            out.append(zeros)  # 128 lands on 0x80, the full-run marker
            pos += zeros
            continue

        out.append(data[pos])
        literals += 1
        pos += 1
        if literals == _MAX_LITERAL_RUN:
            _flush_literal(out, literals)
            literals = 0

    _flush_literal(out, literals)
    return bytes(out)


def decode(data: bytes, size: int) -> bytes:
    """Expand *data* into exactly *size* bytes.

    Raises
    ------
    CodecIntegrityError
        If a control byte claims more output or input than remains, a
        control byte is ``0x00``, or the buffers are not fully consumed.
    """
    if size < 0:
        raise CodecIntegrityError(f"Negative output size {size}")

    result = bytearray(size)
    in_pos = len(data)
    out_pos = size
    while in_pos > 0:
        in_pos -= 1
        control = data[in_pos]

        if control == _FULL_ZERO_RUN:
            length, literal = _MAX_ZERO_RUN, False
        elif control & _LITERAL_FLAG:
            length, literal = control & 0x7F, True
        else:
            length, literal = control, False

        if length == 0:
            raise CodecIntegrityError(f"Empty run at input position {in_pos}")
        if length > out_pos:
            raise CodecIntegrityError(
                f"Run of {length} at input position {in_pos} would underrun output (remaining {out_pos})"
            )

        out_pos -= length
        if not literal:
            # Output is zero-filled already.
            continue

        if length > in_pos:
            raise CodecIntegrityError(
                f"Literal run of {length} at input position {in_pos} exceeds remaining input"
            )
        in_pos -= length
        result[out_pos : out_pos + length] = data[in_pos : in_pos + length]

    if out_pos != 0 or in_pos != 0:
        raise CodecIntegrityError(f"Input and output did not end at zero (output position {out_pos})")
    return bytes(result)
