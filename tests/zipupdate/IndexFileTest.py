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
import unittest
import zlib

from zipupdate.Errors import CorruptIndexError, CorruptInputError
from zipupdate.IndexFile import decodeIndex, encodeIndex, readIndexFile, recordRanges, writeIndexFile
from zipupdate.Resource import IndexRecord, Range

from tests.ZipUpdateTestBase import ZipUpdateTestBase

RECORDS = [
    IndexRecord('META-INF/MANIFEST.MF', 0x1234ABCD, 99),
    IndexRecord('com/example/Main.class', 0xFFFFFFFF, 450),
    IndexRecord('dir/', 0, 500),
    IndexRecord('données/é.txt', 42, 777),
]


class IndexFileTest(ZipUpdateTestBase):

    def testRoundTrip(self):
        self.assertEqual(decodeIndex(encodeIndex(RECORDS)), RECORDS)

    def testOffsetsPastFourGigabytes(self):
        records = [IndexRecord('small.txt', 7, 10), IndexRecord('large.bin', 8, 2**31 + 90),
                   IndexRecord('huge.bin', 9, 2**32 + 50)]

        decoded = decodeIndex(encodeIndex(records))

        self.assertEqual(decoded, records)
        self.assertEqual(
            [byteRange for _, byteRange in recordRanges(decoded)],
            [Range(-1, 10), Range(10, 2**31 + 90), Range(2**31 + 90, 2**32 + 50)]
        )

    def testEmptyIndex(self):
        self.assertEqual(decodeIndex(encodeIndex([])), [])

    def testLayout(self):
        raw = zlib.decompress(encodeIndex([IndexRecord('a', 5, 9)]))

        body = b'\x00\x01a' + struct.pack('>qq', 5, 9) + b'\x00\x00'
        self.assertEqual(raw, body + struct.pack('>q', zlib.crc32(body)))

    def testChecksumMismatch(self):
        raw = bytearray(zlib.decompress(encodeIndex(RECORDS)))
        raw[3] ^= 0x20 # first character of the first name
        with self.assertRaises(CorruptIndexError):
            decodeIndex(zlib.compress(bytes(raw)))

    def testTruncated(self):
        raw = zlib.decompress(encodeIndex(RECORDS))
        with self.assertRaises(CorruptIndexError):
            decodeIndex(zlib.compress(raw[:-3]))

    def testNotZlib(self):
        with self.assertRaises(CorruptIndexError) as context:
            decodeIndex(b'definitely not an index')
        self.assertIsInstance(context.exception, CorruptInputError)

    def testEmptyNameRejected(self):
        with self.assertRaises(ValueError):
            encodeIndex([IndexRecord('', 0, 10)])

    def testFile(self):
        path = self.path('archive.zip.idx')
        size = writeIndexFile(RECORDS, path)

        self.assertGreater(size, 0)
        self.assertEqual(readIndexFile(path), RECORDS)


class RecordRangesTest(unittest.TestCase):

    def testConsecutiveRanges(self):
        ranges = [byteRange for _, byteRange in recordRanges(RECORDS)]

        self.assertEqual(ranges[0], Range(-1, 99))
        self.assertEqual(ranges[1], Range(99, 450))
        self.assertEqual(ranges[0].key, '0-99')
        self.assertEqual(ranges[1].key, '100-450')
        self.assertEqual(sum(r.length for r in ranges), RECORDS[-1].endOffset + 1)

    def testFromKey(self):
        self.assertEqual(Range.fromKey('100-450'), Range(99, 450))
        self.assertEqual(Range.fromKey(Range(99, 450).key), Range(99, 450))
        with self.assertRaises(ValueError):
            Range.fromKey('100')

    def testCovers(self):
        block = Range(99, 500)
        self.assertTrue(block.covers(Range(99, 450)))
        self.assertTrue(block.covers(Range(450, 500)))
        self.assertFalse(block.covers(Range(-1, 99)))


if __name__ == '__main__':
    unittest.main()
