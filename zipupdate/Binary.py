#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# ZipUpdate - Incremental archive updates over HTTP byte ranges
# Copyright (C) 2024-2025 ZipUpdate contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import struct
import zlib

BIG_ENDIAN = '>'
LITTLE_ENDIAN = '<'

MAX_UTF_LENGTH = 0xFFFF


def readExactly(stream, size):
    """
    Read exactly size bytes from stream.

    Raises:
        EOFError: The stream ended before size bytes were read.
    """
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            raise EOFError(f"Expected {size} bytes, stream ended after {size - remaining}")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b''.join(chunks)


class BinaryReader:
    """
    Fixed width field reader over a byte stream.

    With checked=True every byte passing through updates a running CRC-32 available as checksum,
    so a trailer can be compared with what has been consumed so far.
    """

    def __init__(self, stream, order=BIG_ENDIAN, checked=False):
        self.stream = stream
        self.order = order
        self.checked = checked
        self.checksum = 0

    def readFully(self, size):
        data = readExactly(self.stream, size)
        if self.checked:
            self.checksum = zlib.crc32(data, self.checksum)
        return data

    def skipBytes(self, size):
        self.readFully(size)

    def _unpack(self, fmt):
        fmt = self.order + fmt
        return struct.unpack(fmt, self.readFully(struct.calcsize(fmt)))[0]

    def readUnsignedShort(self):
        return self._unpack('H')

    def readUnsignedInt(self):
        return self._unpack('I')

    def readLong(self):
        return self._unpack('q')

    def readUTF(self):
        """Read a u16 length prefixed UTF-8 string."""
        return self.readFully(self.readUnsignedShort()).decode('utf-8')


class BinaryWriter:

    def __init__(self, stream, order=BIG_ENDIAN, checked=False):
        self.stream = stream
        self.order = order
        self.checked = checked
        self.checksum = 0

    def write(self, data):
        if self.checked:
            self.checksum = zlib.crc32(data, self.checksum)
        self.stream.write(data)

    def _pack(self, fmt, value):
        self.write(struct.pack(self.order + fmt, value))

    def writeShort(self, value):
        self._pack('H', value)

    def writeInt(self, value):
        self._pack('I', value)

    def writeLong(self, value):
        self._pack('q', value)

    def writeUTF(self, text):
        data = text.encode('utf-8')
        if len(data) > MAX_UTF_LENGTH:
            raise ValueError(f"Encoded string too long: {len(data)} bytes")
        self.writeShort(len(data))
        self.write(data)
