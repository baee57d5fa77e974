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

import io
import struct
import unittest
import zlib

from zipupdate.Binary import BinaryReader, BinaryWriter, LITTLE_ENDIAN, readExactly


class TrickleStream(io.RawIOBase):
    """Returns at most one byte per read()."""

    def __init__(self, data):
        super().__init__()
        self.data = io.BytesIO(data)

    def readable(self):
        return True

    def readinto(self, b):
        chunk = self.data.read(min(1, len(b)))
        b[:len(chunk)] = chunk
        return len(chunk)


class ReadExactlyTest(unittest.TestCase):

    def testShortReadsAreJoined(self):
        self.assertEqual(readExactly(TrickleStream(b'abcdef'), 4), b'abcd')

    def testEndOfStream(self):
        with self.assertRaises(EOFError):
            readExactly(io.BytesIO(b'abc'), 4)

    def testZeroBytes(self):
        self.assertEqual(readExactly(io.BytesIO(b''), 0), b'')


class BinaryReaderWriterTest(unittest.TestCase):

    def testBigEndianFields(self):
        buffer = io.BytesIO()
        writer = BinaryWriter(buffer)
        writer.writeShort(0x0102)
        writer.writeInt(0x03040506)
        writer.writeLong(-2)
        writer.writeUTF('név')

        self.assertEqual(buffer.getvalue()[:6], b'\x01\x02\x03\x04\x05\x06')
        self.assertEqual(buffer.getvalue()[6:14], b'\xff' * 7 + b'\xfe')

        reader = BinaryReader(io.BytesIO(buffer.getvalue()))
        self.assertEqual(reader.readUnsignedShort(), 0x0102)
        self.assertEqual(reader.readUnsignedInt(), 0x03040506)
        self.assertEqual(reader.readLong(), -2)
        self.assertEqual(reader.readUTF(), 'név')

    def testLittleEndian(self):
        reader = BinaryReader(io.BytesIO(struct.pack('<HI', 7, 0x06054B50)), order=LITTLE_ENDIAN)
        self.assertEqual(reader.readUnsignedShort(), 7)
        self.assertEqual(reader.readUnsignedInt(), 0x06054B50)

    def testChecksumTracksConsumedBytes(self):
        data = b'\x00\x03abc' + b'tail'
        reader = BinaryReader(io.BytesIO(data), checked=True)
        reader.readUTF()
        self.assertEqual(reader.checksum, zlib.crc32(b'\x00\x03abc'))

        reader.checked = False
        reader.skipBytes(4)
        self.assertEqual(reader.checksum, zlib.crc32(b'\x00\x03abc'))

    def testWriterChecksum(self):
        buffer = io.BytesIO()
        writer = BinaryWriter(buffer, checked=True)
        writer.writeUTF('x')
        self.assertEqual(writer.checksum, zlib.crc32(buffer.getvalue()))

    def testUTFTooLong(self):
        writer = BinaryWriter(io.BytesIO())
        with self.assertRaises(ValueError):
            writer.writeUTF('a' * 0x10000)

    def testTruncatedField(self):
        reader = BinaryReader(io.BytesIO(b'\x00\x05ab'))
        with self.assertRaises(EOFError):
            reader.readUTF()


if __name__ == '__main__':
    unittest.main()
