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

from typing import List, Tuple

from zipupdate.Binary import BinaryReader, BinaryWriter, BIG_ENDIAN
from zipupdate.Errors import CorruptIndexError
from zipupdate.Kernel import getLogger
from zipupdate.Resource import IndexRecord, Range

# Index file layout, zlib compressed as a whole (all integers big-endian):
#
#   repeated:   u16 nameLength | name (UTF-8) | i64 checksum | i64 endOffset
#   terminator: u16 0
#   trailer:    i64 CRC-32 of every byte above
COMPRESSION_LEVEL = 9

logger = getLogger(__name__)


def encodeIndex(records: List[IndexRecord]) -> bytes:
    buffer = io.BytesIO()
    writer = BinaryWriter(buffer, order=BIG_ENDIAN, checked=True)

    for record in records:
        if not record.name:
            raise ValueError("Index records need a non-empty name, an empty name terminates the list")
        writer.writeUTF(record.name)
        writer.writeLong(record.checksum)
        writer.writeLong(record.endOffset)

    writer.writeUTF('') # terminator

    # The trailer itself must not be part of the checksum.
    writer.checked = False
    writer.writeLong(writer.checksum)

    return zlib.compress(buffer.getvalue(), COMPRESSION_LEVEL)


def decodeIndex(data: bytes) -> List[IndexRecord]:
    """
    Decode an index file.

    Raises:
        CorruptIndexError: data is not a zlib stream, ends early or fails the checksum.
    """
    try:
        raw = zlib.decompress(data)
    except zlib.error as e:
        raise CorruptIndexError(f"Index is not a valid zlib stream: {e}") from e

    reader = BinaryReader(io.BytesIO(raw), order=BIG_ENDIAN, checked=True)
    records = []

    try:
        while True:
            name = reader.readUTF()
            if not name:
                break
            checksum = reader.readLong()
            endOffset = reader.readLong()
            records.append(IndexRecord(name, checksum, endOffset))

        computed = reader.checksum
        reader.checked = False
        stored = reader.readLong()
    except EOFError as e:
        raise CorruptIndexError(f"Index ended unexpectedly after {len(records)} records") from e
    except UnicodeDecodeError as e:
        raise CorruptIndexError(f"Index holds an invalid entry name after {len(records)} records") from e

    if stored != computed:
        raise CorruptIndexError(f"Index checksum mismatch, stored {stored:08x} computed {computed:08x}")

    logger.debug(f"Decoded index with {len(records)} records")
    return records


def recordRanges(records: List[IndexRecord]) -> List[Tuple[IndexRecord, Range]]:
    """Pair every record with its byte range, each record starting where the previous one ended."""
    result = []
    previousEnd = -1
    for record in records:
        result.append((record, Range(previousEnd, record.endOffset)))
        previousEnd = record.endOffset
    return result


def writeIndexFile(records, path):
    data = encodeIndex(records)
    with open(path, 'wb') as f:
        f.write(data)
    return len(data)


def readIndexFile(path):
    with open(path, 'rb') as f:
        return decodeIndex(f.read())
