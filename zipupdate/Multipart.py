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

from zipupdate.Errors import MalformedMultipartError
from zipupdate.Kernel import getLogger
from zipupdate.Streams import LimitedReader

CR = b'\r'
LF = b'\n'

logger = getLogger(__name__)


def contentRangeKey(contentRange):
    """The 'FIRST-LAST' span of a 'bytes FIRST-LAST/TOTAL' Content-Range value."""
    space = contentRange.find(' ')
    slash = contentRange.find('/', space + 1)
    if space == -1 or slash == -1:
        raise MalformedMultipartError(f"Invalid Content-Range: {contentRange!r}")
    return contentRange[space + 1:slash].strip()


def parseContentRange(contentRange):
    """
    Returns:
        tuple: (first, last) inclusive byte positions
    """
    first, sep, last = contentRangeKey(contentRange).partition('-')
    try:
        if not sep:
            raise ValueError(contentRange)
        first, last = int(first), int(last)
    except ValueError as e:
        raise MalformedMultipartError(f"Invalid Content-Range: {contentRange!r}") from e

    if last < first:
        raise MalformedMultipartError(f"Invalid Content-Range: {contentRange!r}")
    return first, last


class Part:
    """One body part. Headers are keyed by lower case name, the payload is read through read()."""

    def __init__(self, headers, stream):
        self.headers = headers
        self.stream = stream

    @property
    def size(self):
        return self.stream.limit

    @property
    def contentRange(self):
        return self.headers.get('content-range')

    def read(self, size=-1):
        return self.stream.read(size)


class MultipartReader:
    """
    Forward-only iterator over the parts of a multipart body.

    Only one part is readable at a time. Advancing to the next part discards whatever is left of
    the previous payload, so an earlier part reads as empty afterwards. The source stream is
    closed once the closing delimiter has been read.
    """

    def __init__(self, stream, boundary):
        self.stream = stream
        self.delimiter = b'--' + boundary.encode('latin-1')
        self.current = None
        self.finished = False

    def __iter__(self):
        return self

    def __next__(self):
        if self.finished:
            raise StopIteration

        if self.current is not None:
            self.current.stream.skipRemaining()
            self.current = None

        if self._skipToDelimiter():
            self.close()
            raise StopIteration

        headers = self._readHeaders()
        size = self._payloadSize(headers)
        logger.debug(f"Multipart part {headers.get('content-range', '')} with {size} bytes")

        self.current = Part(headers, LimitedReader(self.stream, size, MalformedMultipartError))
        return self.current

    def close(self):
        self.finished = True
        self.stream.close()

    def _readLine(self):
        """
        Read one CRLF terminated line without its terminator.

        Returns:
            bytes: The line, or None at end of stream with nothing read.
        """
        line = bytearray()
        while True:
            b = self.stream.read(1)
            if not b:
                return bytes(line) if line else None

            if b == CR:
                if self.stream.read(1) != LF:
                    raise MalformedMultipartError("Carriage return not followed by line feed")
                return bytes(line)

            line += b

    def _skipToDelimiter(self):
        """
        Discard lines up to the next delimiter line.

        Returns:
            bool: True for the closing delimiter.
        """
        while True:
            line = self._readLine()
            if line is None:
                raise MalformedMultipartError("Multipart body ended before the closing boundary")

            if line.startswith(self.delimiter):
                return line[len(self.delimiter):].startswith(b'--')

    def _readHeaders(self):
        headers = {}
        while True:
            line = self._readLine()
            if line is None:
                raise MalformedMultipartError("Multipart body ended inside part headers")
            if not line:
                return headers

            name, sep, value = line.decode('latin-1').partition(':')
            if not sep:
                raise MalformedMultipartError(f"Invalid part header line: {line!r}")
            headers[name.strip().lower()] = value.strip()

    def _payloadSize(self, headers):
        contentLength = headers.get('content-length')
        if contentLength is not None:
            try:
                size = int(contentLength)
            except ValueError as e:
                raise MalformedMultipartError(f"Invalid part Content-Length: {contentLength!r}") from e
            if size < 0:
                raise MalformedMultipartError(f"Invalid part Content-Length: {contentLength!r}")
            return size

        contentRange = headers.get('content-range')
        if contentRange is not None:
            first, last = parseContentRange(contentRange)
            return last - first + 1

        raise MalformedMultipartError("Part has neither Content-Length nor Content-Range")
