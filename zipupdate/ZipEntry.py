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
import zlib

from zipupdate.Binary import readExactly
from zipupdate.Errors import CorruptInputError, UnsupportedFormatError
from zipupdate.Kernel import getLogger
from zipupdate.ZipHeaders import (
    LocalFileHeader, LOCAL_FILE_HEADER_LENGTH, METHOD_STORED, METHOD_DEFLATED, decodeEntryName
)

logger = getLogger(__name__)


class ZipEntryReader(io.RawIOBase):
    """
    Decompressing view of a raw archive entry: a local file header followed by the entry data,
    exactly as it sits in the archive.

    The header is consumed on construction. Stored data is passed through (bounded by the header
    size unless a data descriptor follows), deflated data is inflated with a raw inflater.
    """

    def __init__(self, source, bufferSize=io.DEFAULT_BUFFER_SIZE):
        super().__init__()
        self.source = source
        self.bufferSize = bufferSize

        try:
            self.header = LocalFileHeader.fromBytes(readExactly(source, LOCAL_FILE_HEADER_LENGTH))
            rawName = readExactly(source, self.header.nameLength)
            readExactly(source, self.header.extraLength)
            self.name = decodeEntryName(rawName, self.header.flags)
        except EOFError as e:
            raise CorruptInputError("Entry data ended inside its local file header") from e
        except UnicodeDecodeError as e:
            raise CorruptInputError("Local file header holds an invalid UTF-8 name") from e

        if self.header.isEncrypted():
            raise UnsupportedFormatError(f"Entry '{self.name}' is encrypted")

        self.decompressor = None
        self.remaining = None
        self.paddingFed = False

        if self.header.method == METHOD_DEFLATED:
            self.decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
        elif self.header.method == METHOD_STORED:
            if not self.header.hasDataDescriptor():
                self.remaining = self.header.compressedSize
        else:
            raise UnsupportedFormatError(
                f"Entry '{self.name}' uses unsupported compression method {self.header.method}"
            )

        logger.debug(f"Decoding entry '{self.name}' (method {self.header.method})")

    @property
    def dateTime(self):
        return self.header.dateTime

    @property
    def method(self):
        return self.header.method

    def readable(self):
        return True

    def readinto(self, b):
        if len(b) == 0:
            return 0

        data = self._readDeflated(len(b)) if self.decompressor else self._readStored(len(b))
        n = len(data)
        b[:n] = data
        return n

    def _readStored(self, size):
        if self.remaining is None:
            return self.source.read(size)

        if self.remaining <= 0:
            return b''

        data = self.source.read(min(size, self.remaining))
        if not data:
            raise CorruptInputError(f"Stored entry '{self.name}' is missing {self.remaining} bytes")
        self.remaining -= len(data)
        return data

    def _readDeflated(self, size):
        decompressor = self.decompressor
        try:
            while not decompressor.eof:
                if decompressor.unconsumed_tail:
                    data = decompressor.decompress(decompressor.unconsumed_tail, size)
                else:
                    chunk = self.source.read(self.bufferSize)
                    if not chunk:
                        if self.paddingFed:
                            raise CorruptInputError(f"Deflated entry '{self.name}' is truncated")
                        # Raw inflate may need one byte past the compressed data to finish.
                        chunk = b'\0'
                        self.paddingFed = True
                    data = decompressor.decompress(chunk, size)

                if data:
                    return data
        except zlib.error as e:
            raise CorruptInputError(f"Deflated entry '{self.name}' is corrupt: {e}") from e

        return b''
