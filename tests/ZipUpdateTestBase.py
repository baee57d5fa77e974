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
import shutil
import tempfile
import threading
import unittest
import zipfile

from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import quote, unquote, urlparse

from zipupdate.IndexFile import encodeIndex
from zipupdate.Indexer import parseZipFile
from zipupdate.Settings import INDEX_SUFFIX

MULTIPART_BOUNDARY = 'ZIPUPDATE_TEST_BOUNDARY'


# ---------------------------
# Archive helpers
# ---------------------------
def buildArchive(path, entries, compression=zipfile.ZIP_DEFLATED):
    """Write entries, a list of (name, bytes), in that order."""
    with zipfile.ZipFile(path, 'w', compression) as archive:
        for name, data in entries:
            archive.writestr(name, data)
    return path


def readEntries(path):
    with zipfile.ZipFile(path) as archive:
        return {info.filename: archive.read(info) for info in archive.infolist()}


def entryNames(path):
    with zipfile.ZipFile(path) as archive:
        return [info.filename for info in archive.infolist()]


def readBytes(path):
    with open(path, 'rb') as f:
        return f.read()


# ---------------------------
# Range responses
# ---------------------------
def buildMultipartBody(parts, boundary=MULTIPART_BOUNDARY, preamble=b''):
    """parts is a list of (headers dict, payload)."""
    body = bytearray(preamble)
    for headers, payload in parts:
        body += b'--' + boundary.encode('latin-1') + b'\r\n'
        for name, value in headers.items():
            body += f'{name}: {value}\r\n'.encode('latin-1')
        body += b'\r\n' + payload + b'\r\n'
    body += b'--' + boundary.encode('latin-1') + b'--\r\n'
    return bytes(body)


def parseRangeHeader(value):
    """'bytes=A-B,C-D' to [(A, B), (C, D)]"""
    ranges = []
    for rangeSpec in value.split('=', 1)[1].split(','):
        first, last = rangeSpec.strip().split('-')
        ranges.append((int(first), int(last)))
    return ranges


def mergeAdjacentRanges(ranges):
    merged = []
    for first, last in sorted(ranges):
        if merged and first <= merged[-1][1] + 1:
            merged[-1] = (merged[-1][0], max(last, merged[-1][1]))
        else:
            merged.append((first, last))
    return merged


class RangeRequestHandler(BaseHTTPRequestHandler):
    """Serves server.files, answering Range requests like a static file server does."""

    def log_message(self, format, *args):
        pass

    def do_GET(self):
        server = self.server
        path = unquote(urlparse(self.path).path)
        rangeHeader = self.headers.get('Range')
        server.requestLog.append((path, rangeHeader))

        data = server.files.get(path)
        if data is None:
            self._send(404, b'Not Found', 'text/plain')
            return

        if not rangeHeader or server.ignoreRanges:
            self._send(200, data, 'application/octet-stream')
            return

        ranges = parseRangeHeader(rangeHeader)
        if server.mergeRanges:
            ranges = mergeAdjacentRanges(ranges)

        total = len(data)
        if len(ranges) == 1:
            first, last = ranges[0]
            self._send(
                206, data[first:last + 1], 'application/octet-stream',
                {'Content-Range': f'bytes {first}-{last}/{total}'}
            )
            return

        parts = [
            ({
                'Content-Type': 'application/octet-stream',
                'Content-Range': f'bytes {first}-{last}/{total}'
            }, data[first:last + 1]) for first, last in ranges
        ]
        self._send(206, buildMultipartBody(parts), f'multipart/byteranges; boundary={MULTIPART_BOUNDARY}')

    def _send(self, status, body, contentType, headers=None):
        self.send_response(status)
        self.send_header('Content-Type', contentType)
        self.send_header('Content-Length', str(len(body)))
        for name, value in (headers or {}).items():
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(body)


class RangeServer:

    def __init__(self, ignoreRanges=False, mergeRanges=False):
        self.httpd = ThreadingHTTPServer(('127.0.0.1', 0), RangeRequestHandler)
        self.httpd.files = {}
        self.httpd.requestLog = []
        self.httpd.ignoreRanges = ignoreRanges
        self.httpd.mergeRanges = mergeRanges
        self.thread = threading.Thread(target=self.httpd.serve_forever, daemon=True)

    @property
    def files(self):
        return self.httpd.files

    @property
    def requestLog(self):
        return self.httpd.requestLog

    def url(self, name=''):
        return f'http://127.0.0.1:{self.httpd.server_address[1]}/{quote(name)}'

    def start(self):
        self.thread.start()
        return self

    def stop(self):
        self.httpd.shutdown()
        self.httpd.server_close()
        self.thread.join(timeout=5)


class ZipUpdateTestBase(unittest.TestCase):
    """Temporary directory per test plus an optional local range server."""

    def setUp(self):
        self.tempDir = tempfile.mkdtemp(prefix='zipupdate_test_')
        self.server = None

    def tearDown(self):
        if self.server is not None:
            self.server.stop()
        shutil.rmtree(self.tempDir, ignore_errors=True)

    def path(self, name):
        return os.path.join(self.tempDir, name)

    def createArchive(self, name, entries, compression=zipfile.ZIP_DEFLATED):
        return buildArchive(self.path(name), entries, compression)

    def startServer(self, **kwargs):
        self.server = RangeServer(**kwargs).start()
        return self.server

    def publishArchive(self, archivePath, name=None, records=None):
        """Serve archivePath and its index, returns the archive URL."""
        name = name or os.path.basename(archivePath)
        if records is None:
            records = parseZipFile(archivePath)

        self.server.files['/' + name] = readBytes(archivePath)
        self.server.files['/' + name + INDEX_SUFFIX] = encodeIndex(records)
        return self.server.url(name)
