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

import os
import struct

from typing import List, Tuple

from zipupdate.Binary import BinaryReader, LITTLE_ENDIAN, readExactly
from zipupdate.Errors import CorruptArchiveError, CorruptInputError, UnsupportedFormatError
from zipupdate.IndexFile import writeIndexFile
from zipupdate.Kernel import getLogger, ZipUpdateEvent
from zipupdate.Resource import IndexRecord
from zipupdate.Settings import INDEX_SUFFIX, ARCHIVE_EXTENSIONS
from zipupdate.Utils import formatSize
from zipupdate.ZipHeaders import (
    CentralDirectoryRecord, EndOfCentralDirectory, CENTRAL_DIRECTORY_LENGTH, END_OF_CENTRAL_DIRECTORY_LENGTH,
    END_OF_CENTRAL_DIRECTORY_SIGNATURE, decodeEntryName
)

# The EOCD can be followed by an archive comment of up to 65535 bytes.
MAX_COMMENT_LENGTH = 0xFFFF

# Backward scan: read two records worth of bytes, move back by one record each step.
SCAN_STEP = END_OF_CENTRAL_DIRECTORY_LENGTH
SCAN_WINDOW = 2 * END_OF_CENTRAL_DIRECTORY_LENGTH

logger = getLogger(__name__)


def findEndOfCentralDirectory(f, fileSize) -> Tuple[int, EndOfCentralDirectory]:
    """
    Locate the end of central directory record by scanning backwards from the end of the file.

    Returns:
        tuple: (offset of the record, decoded record)

    Raises:
        CorruptArchiveError: No record signature within the last 22 + 65535 bytes.
    """
    if fileSize < END_OF_CENTRAL_DIRECTORY_LENGTH:
        raise CorruptArchiveError(f"File is too small to be an archive ({fileSize} bytes)")

    signature = struct.pack('<I', END_OF_CENTRAL_DIRECTORY_SIGNATURE)

    # A full record must fit between the signature and the end of the file.
    lastCandidate = fileSize - END_OF_CENTRAL_DIRECTORY_LENGTH
    lowest = max(0, lastCandidate - MAX_COMMENT_LENGTH)

    windowEnd = fileSize
    while True:
        windowStart = max(lowest, windowEnd - SCAN_WINDOW)
        f.seek(windowStart)
        window = f.read(windowEnd - windowStart)

        position = window.rfind(signature, 0, lastCandidate - windowStart + len(signature))
        if position != -1:
            offset = windowStart + position
            f.seek(offset)
            try:
                return offset, EndOfCentralDirectory.fromBytes(readExactly(f, END_OF_CENTRAL_DIRECTORY_LENGTH))
            except (EOFError, CorruptInputError) as e:
                raise CorruptArchiveError(f"Unreadable end of central directory at {offset}: {e}") from e

        if windowStart <= lowest:
            raise CorruptArchiveError("End of central directory record not found")

        windowEnd -= SCAN_STEP


def readCentralDirectory(f, eocd) -> List[Tuple[str, CentralDirectoryRecord]]:
    f.seek(eocd.centralDirectoryOffset)
    reader = BinaryReader(f, order=LITTLE_ENDIAN)

    entries = []
    for i in range(eocd.totalEntries):
        try:
            record = CentralDirectoryRecord.fromBytes(reader.readFully(CENTRAL_DIRECTORY_LENGTH))
            variable = reader.readFully(record.variableLength)
            name = decodeEntryName(variable[:record.nameLength], record.flags)
        except EOFError as e:
            raise CorruptArchiveError(f"Central directory truncated at record {i} of {eocd.totalEntries}") from e
        except CorruptInputError as e:
            raise CorruptArchiveError(f"Central directory record {i}: {e}") from e
        except UnicodeDecodeError as e:
            raise CorruptArchiveError(f"Central directory record {i} has an invalid UTF-8 name") from e

        entries.append((name, record))

    return entries


def buildRecords(entries, centralDirectoryOffset) -> List[IndexRecord]:
    """
    Turn central directory records into index records. Entry i ends one byte before the local
    header of entry i + 1, the last entry ends one byte before the central directory.
    """
    if entries and entries[0][1].localHeaderOffset != 0:
        raise UnsupportedFormatError(
            f"First local header is at offset {entries[0][1].localHeaderOffset}, prefixed archives are not supported"
        )

    records = []
    for i, (name, record) in enumerate(entries):
        if i + 1 < len(entries):
            nextOffset = entries[i + 1][1].localHeaderOffset
            if nextOffset <= record.localHeaderOffset:
                raise UnsupportedFormatError(
                    f"Central directory is not in local header order at '{entries[i + 1][0]}'"
                )
        else:
            nextOffset = centralDirectoryOffset
            if nextOffset <= record.localHeaderOffset:
                raise CorruptArchiveError(f"Local header of '{name}' lies inside the central directory")

        records.append(IndexRecord(name, record.crc, nextOffset - 1))

    return records


def parseZipFile(archivePath) -> List[IndexRecord]:
    """
    Scan the central directory of archivePath.

    Returns:
        list: IndexRecord per entry in central directory order. The byte ranges of the records
              partition [0, central directory offset).

    Raises:
        CorruptArchiveError: Missing or damaged end record or central directory.
        UnsupportedFormatError: ZIP64, split archives, or entries out of local header order.
    """
    with open(archivePath, 'rb') as f:
        fileSize = f.seek(0, os.SEEK_END)
        offset, eocd = findEndOfCentralDirectory(f, fileSize)

        if eocd.isZip64():
            raise UnsupportedFormatError(f"{archivePath} is a ZIP64 archive")
        if eocd.isSplit():
            raise UnsupportedFormatError(f"{archivePath} is a split archive")
        if eocd.centralDirectoryOffset + eocd.centralDirectorySize > offset:
            raise CorruptArchiveError(
                f"Central directory ({eocd.centralDirectoryOffset}+{eocd.centralDirectorySize}) "
                f"overlaps its end record at {offset}"
            )

        entries = readCentralDirectory(f, eocd)

    records = buildRecords(entries, eocd.centralDirectoryOffset)
    logger.debug(f"Parsed {len(records)} entries from {archivePath}")
    return records


def getIndexPath(archivePath):
    return archivePath + INDEX_SUFFIX


def index(archivePath, indexPath=None):
    """Write the index file of archivePath, next to it unless indexPath is given."""
    indexPath = indexPath or getIndexPath(archivePath)

    records = parseZipFile(archivePath)
    size = writeIndexFile(records, indexPath)

    logger.info(f"Indexed {len(records)} entries of {archivePath} into {indexPath} ({formatSize(size)})")
    ZipUpdateEvent.indexWritten.trigger(archivePath=archivePath, indexPath=indexPath, records=records)
    return indexPath


def isArchiveFile(path):
    return os.path.isfile(path) and path.lower().endswith(ARCHIVE_EXTENSIONS)


def findArchives(directory):
    """Archives (.zip/.jar) directly inside directory, sorted by name."""
    return [
        os.path.join(directory, name)
        for name in sorted(os.listdir(directory))
        if isArchiveFile(os.path.join(directory, name))
    ]


def indexDirectory(directory):
    return [index(archivePath) for archivePath in findArchives(directory)]
