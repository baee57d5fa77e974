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

from dataclasses import dataclass

from zipupdate.Errors import CorruptInputError

LOCAL_FILE_HEADER_SIGNATURE = 0x04034B50
CENTRAL_DIRECTORY_SIGNATURE = 0x02014B50
END_OF_CENTRAL_DIRECTORY_SIGNATURE = 0x06054B50

LOCAL_FILE_HEADER_FORMAT = (
    '<'
    'I' # signature
    'H' # version needed to extract
    'H' # general purpose bit flag
    'H' # compression method
    'H' # last mod file time
    'H' # last mod file date
    'I' # crc-32
    'I' # compressed size
    'I' # uncompressed size
    'H' # file name length
    'H' # extra field length
) # yapf: disable

CENTRAL_DIRECTORY_FORMAT = (
    '<'
    'I' # signature
    'H' # version made by
    'H' # version needed to extract
    'H' # general purpose bit flag
    'H' # compression method
    'H' # last mod file time
    'H' # last mod file date
    'I' # crc-32
    'I' # compressed size
    'I' # uncompressed size
    'H' # file name length
    'H' # extra field length
    'H' # file comment length
    'H' # disk number start
    'H' # internal file attributes
    'I' # external file attributes
    'I' # relative offset of local header
) # yapf: disable

END_OF_CENTRAL_DIRECTORY_FORMAT = (
    '<'
    'I' # signature
    'H' # number of this disk
    'H' # disk where central directory starts
    'H' # number of central directory records on this disk
    'H' # total number of central directory records
    'I' # size of central directory
    'I' # offset of start of central directory
    'H' # comment length
) # yapf: disable

LOCAL_FILE_HEADER_LENGTH = struct.calcsize(LOCAL_FILE_HEADER_FORMAT) # 30
CENTRAL_DIRECTORY_LENGTH = struct.calcsize(CENTRAL_DIRECTORY_FORMAT) # 46
END_OF_CENTRAL_DIRECTORY_LENGTH = struct.calcsize(END_OF_CENTRAL_DIRECTORY_FORMAT) # 22

METHOD_STORED = 0
METHOD_DEFLATED = 8

FLAG_ENCRYPTED = 0x0001
FLAG_DATA_DESCRIPTOR = 0x0008
FLAG_UTF8 = 0x0800

ZIP64_COUNT_MARKER = 0xFFFF
ZIP64_OFFSET_MARKER = 0xFFFFFFFF


def _unpackBlock(name, fmt, length, signature, data):
    if len(data) != length:
        raise CorruptInputError(f"{name} must be {length} bytes, got {len(data)}")

    fields = struct.unpack(fmt, data)
    if fields[0] != signature:
        raise CorruptInputError(f"Bad {name} signature 0x{fields[0]:08X}, expected 0x{signature:08X}")

    return fields[1:]


def decodeEntryName(raw, flags):
    """Entry names are UTF-8 when bit 11 is set and cp437 otherwise, same as the zipfile module."""
    if flags & FLAG_UTF8:
        return raw.decode('utf-8')
    return raw.decode('cp437')


def dosDateTime(dosDate, dosTime):
    """Convert MS-DOS date and time fields to a zipfile style (Y, M, D, h, m, s) tuple."""
    return (
        (dosDate >> 9) + 1980,
        max((dosDate >> 5) & 0x0F, 1),
        max(dosDate & 0x1F, 1),
        dosTime >> 11,
        (dosTime >> 5) & 0x3F,
        (dosTime & 0x1F) * 2,
    )


@dataclass
class LocalFileHeader:
    versionNeeded: int
    flags: int
    method: int
    modTime: int
    modDate: int
    crc: int
    compressedSize: int
    uncompressedSize: int
    nameLength: int
    extraLength: int

    @classmethod
    def fromBytes(cls, data):
        return cls(
            *_unpackBlock(
                'local file header', LOCAL_FILE_HEADER_FORMAT, LOCAL_FILE_HEADER_LENGTH, LOCAL_FILE_HEADER_SIGNATURE,
                data
            )
        )

    @property
    def dateTime(self):
        return dosDateTime(self.modDate, self.modTime)

    def isEncrypted(self):
        return bool(self.flags & FLAG_ENCRYPTED)

    def hasDataDescriptor(self):
        return bool(self.flags & FLAG_DATA_DESCRIPTOR)


@dataclass
class CentralDirectoryRecord:
    versionMadeBy: int
    versionNeeded: int
    flags: int
    method: int
    modTime: int
    modDate: int
    crc: int
    compressedSize: int
    uncompressedSize: int
    nameLength: int
    extraLength: int
    commentLength: int
    diskNumberStart: int
    internalAttributes: int
    externalAttributes: int
    localHeaderOffset: int

    @classmethod
    def fromBytes(cls, data):
        return cls(
            *_unpackBlock(
                'central directory record', CENTRAL_DIRECTORY_FORMAT, CENTRAL_DIRECTORY_LENGTH,
                CENTRAL_DIRECTORY_SIGNATURE, data
            )
        )

    @property
    def variableLength(self):
        """Bytes of name, extra field and comment following the fixed block."""
        return self.nameLength + self.extraLength + self.commentLength


@dataclass
class EndOfCentralDirectory:
    diskNumber: int
    centralDirectoryDisk: int
    diskEntries: int
    totalEntries: int
    centralDirectorySize: int
    centralDirectoryOffset: int
    commentLength: int

    @classmethod
    def fromBytes(cls, data):
        return cls(
            *_unpackBlock(
                'end of central directory', END_OF_CENTRAL_DIRECTORY_FORMAT, END_OF_CENTRAL_DIRECTORY_LENGTH,
                END_OF_CENTRAL_DIRECTORY_SIGNATURE, data
            )
        )

    def isSplit(self):
        return self.diskNumber != 0 or self.centralDirectoryDisk != 0 or self.diskEntries != self.totalEntries

    def isZip64(self):
        return self.totalEntries == ZIP64_COUNT_MARKER or self.centralDirectoryOffset == ZIP64_OFFSET_MARKER
