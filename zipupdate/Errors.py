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


class ZipUpdateError(Exception):
    """Base class of every failure raised by zipupdate."""


class CorruptInputError(ZipUpdateError):
    """Input bytes (archive, index, range response) are structurally invalid."""


class CorruptArchiveError(CorruptInputError):
    pass


class CorruptIndexError(CorruptInputError):
    pass


class MalformedMultipartError(CorruptInputError):
    pass


class UnsupportedFormatError(ZipUpdateError):
    """Valid ZIP data using a feature that is not handled (method, encryption, ZIP64, split archive)."""


class TransportError(ZipUpdateError):
    """HTTP level failure while fetching the index or the byte ranges."""

    def __init__(self, message, statusCode=None, headers=None):
        super().__init__(message)
        self.statusCode = statusCode
        self.headers = dict(headers) if headers else {}


class FileSystemError(ZipUpdateError):
    pass


class ArchiveReplaceError(FileSystemError):
    """The original archive could not be moved aside. It is still intact."""

    def __init__(self, message, archivePath):
        super().__init__(message)
        self.archivePath = archivePath


class InconsistentArchiveStateError(FileSystemError):
    """
    The original archive was moved to its backup but the patched archive could not be moved into
    place. Recover by renaming backupPath (or tempPath) to archivePath.
    """

    def __init__(self, message, archivePath, backupPath, tempPath):
        super().__init__(message)
        self.archivePath = archivePath
        self.backupPath = backupPath
        self.tempPath = tempPath
