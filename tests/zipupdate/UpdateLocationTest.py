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
import unittest

from zipupdate.Diff import diff
from zipupdate.Errors import CorruptIndexError, MalformedMultipartError, TransportError
from zipupdate.Progress import ProgressListener, UNIT_BYTES
from zipupdate.Resource import Range, Resource, ResourceFlag
from zipupdate.UpdateLocation import UpdateLocation

from tests.ZipUpdateTestBase import ZipUpdateTestBase, readEntries

REMOTE_ENTRIES = [
    ('META-INF/MANIFEST.MF', b'Manifest-Version: 1.0\r\nCreated-By: zipupdate\r\n'),
    ('a.txt', b'alpha ' * 500),
    ('b.txt', b'bravo ' * 300),
    ('c/', b''),
    ('c/d.bin', os.urandom(3000)),
]


class RangeHeaderTest(unittest.TestCase):

    def testSortedByStart(self):
        header = UpdateLocation.buildRangeHeader([Range(10, 20), Range(50, 60), Range(1, 5)])
        self.assertEqual(header, 'bytes=2-5,11-20,51-60')

    def testOffsetsPastFourGigabytes(self):
        ranges = [Range(2**32 + 1, 2**32 + 50), Range(10, 20), Range(2**31 + 5, 2**31 + 90)]
        self.assertEqual(
            UpdateLocation.buildRangeHeader(ranges),
            f'bytes=11-20,{2**31 + 6}-{2**31 + 90},{2**32 + 2}-{2**32 + 50}'
        )

    def testSelectRangesPastFourGigabytes(self):
        location = UpdateLocation('http://127.0.0.1:1/big.zip')
        self.addCleanup(location.close)
        location.namedRanges = {
            'huge.bin': Range(2**32 + 1, 2**32 + 50),
            'small.txt': Range(10, 20),
            'large.bin': Range(2**31 + 5, 2**31 + 90),
        }
        changes = {
            Resource('huge.bin', 1): ResourceFlag.ADD,
            Resource('small.txt', 2): ResourceFlag.UPDATE,
            Resource('large.bin', 3): ResourceFlag.ADD,
        }

        starts = [r.start for r in location.selectRanges(changes)]
        self.assertEqual(starts, [10, 2**31 + 5, 2**32 + 1])

    def testFirstEntry(self):
        self.assertEqual(UpdateLocation.buildRangeHeader([Range(-1, 99)]), 'bytes=0-99')

    def testParseBoundary(self):
        self.assertEqual(UpdateLocation.parseBoundary('multipart/byteranges; boundary=3d6b6a416f9b5'), '3d6b6a416f9b5')
        self.assertEqual(
            UpdateLocation.parseBoundary('multipart/byteranges; boundary="quoted"; charset=UTF-8'), 'quoted'
        )
        with self.assertRaises(MalformedMultipartError):
            UpdateLocation.parseBoundary('multipart/byteranges')


class UpdateLocationTest(ZipUpdateTestBase):

    def setUp(self):
        super().setUp()
        self.startServer()
        self.remotePath = self.createArchive('remote.jar', REMOTE_ENTRIES)
        self.location = UpdateLocation(self.publishArchive(self.remotePath, 'app.jar'))
        self.addCleanup(self.location.close)

    def _fetchAll(self, changes):
        """Download changes, returns {name: data} of the delivered resources."""
        cacheEntry = self.location.fetchData(changes)
        self.assertIsNotNone(cacheEntry)
        try:
            delivered = {}
            for resource in self.location.getData(changes, cacheEntry):
                delivered[resource.name] = resource.data.read()
                self.assertEqual(resource.checksum, self.location.checksums[resource.name])
            return delivered
        finally:
            cacheEntry.discard()
            self.assertFalse(os.path.exists(cacheEntry.path))

    def _rangeHeaders(self):
        return [rangeHeader for path, rangeHeader in self.server.requestLog if rangeHeader]

    def testGetResources(self):
        resources = self.location.getResources()

        self.assertEqual([r.name for r in resources], [name for name, _ in REMOTE_ENTRIES])
        self.assertEqual(self.location.namedRanges['META-INF/MANIFEST.MF'].start, -1)
        for name, byteRange in self.location.namedRanges.items():
            self.assertEqual(self.location.rangedNames[byteRange.key], name)

    def testMultipartResponse(self):
        changes = diff([], self.location.getResources())

        self.assertEqual(self._fetchAll(changes), readEntries(self.remotePath))
        self.assertEqual(
            self._rangeHeaders(), [UpdateLocation.buildRangeHeader(self.location.selectRanges(changes))]
        )

    def testSingleRange(self):
        remote = self.location.getResources()
        local = [Resource(r.name, r.checksum) for r in remote if r.name != 'b.txt']
        changes = diff(local, remote)

        self.assertEqual(self._fetchAll(changes), {'b.txt': b'bravo ' * 300})
        self.assertEqual(self._rangeHeaders(), [f"bytes={self.location.namedRanges['b.txt'].key}"])

    def testUpdatedEntries(self):
        remote = self.location.getResources()
        local = [Resource(r.name, r.checksum ^ 1 if r.name in ('a.txt', 'c/d.bin') else r.checksum) for r in remote]
        changes = diff(local, remote)

        self.assertEqual(set(changes.values()), {ResourceFlag.UPDATE})
        delivered = self._fetchAll(changes)
        self.assertEqual(sorted(delivered), ['a.txt', 'c/d.bin'])

    def testNothingToFetch(self):
        remote = self.location.getResources()
        changes = diff(remote + [Resource('old.txt', 1)], remote)

        self.assertEqual(list(changes.values()), [ResourceFlag.REMOVE])
        self.assertIsNone(self.location.fetchData(changes))
        self.assertEqual(list(self.location.getData(changes, None)), [])

    def testUnknownResource(self):
        self.location.getResources()
        with self.assertRaises(ValueError):
            self.location.selectRanges({Resource('unknown.txt', 1): ResourceFlag.ADD})

    def testDownloadProgress(self):
        listener = ProgressListener()
        self.location.addProgressListener(listener)

        changes = diff([], self.location.getResources())
        cacheEntry = self.location.fetchData(changes)
        try:
            self.assertEqual(listener.message, 'Downloading new resources...')
            self.assertEqual(listener.unit, UNIT_BYTES)
            # The multipart body is longer than the entries it carries.
            self.assertEqual(listener.progress, os.path.getsize(cacheEntry.path))
            self.assertEqual(listener.maximum, listener.progress)
            self.assertGreater(listener.maximum, sum(r.length for r in cacheEntry.ranges))
        finally:
            cacheEntry.discard()


class CoalescingServerTest(ZipUpdateTestBase):
    """Servers may merge adjacent ranges into one part or one plain 206 response."""

    def setUp(self):
        super().setUp()
        self.startServer(mergeRanges=True)
        self.remotePath = self.createArchive('remote.jar', REMOTE_ENTRIES)
        self.location = UpdateLocation(self.publishArchive(self.remotePath))
        self.addCleanup(self.location.close)

    def _fetchAll(self, changes):
        cacheEntry = self.location.fetchData(changes)
        try:
            return {resource.name: resource.data.read() for resource in self.location.getData(changes, cacheEntry)}
        finally:
            cacheEntry.discard()

    def testWholeArchiveInOneRange(self):
        changes = diff([], self.location.getResources())
        self.assertEqual(self._fetchAll(changes), readEntries(self.remotePath))

    def testMergedPartNextToSinglePart(self):
        remote = self.location.getResources()
        local = [Resource(r.name, r.checksum) for r in remote if r.name in ('b.txt', 'c/')]
        changes = diff(local, remote)

        expected = {name: data for name, data in REMOTE_ENTRIES if name not in ('b.txt', 'c/')}
        self.assertEqual(self._fetchAll(changes), expected)


class FailingServerTest(ZipUpdateTestBase):

    def testRangesIgnored(self):
        self.startServer(ignoreRanges=True)
        location = UpdateLocation(self.publishArchive(self.createArchive('remote.zip', REMOTE_ENTRIES)))
        self.addCleanup(location.close)

        changes = diff([], location.getResources())
        with self.assertRaises(TransportError) as context:
            location.fetchData(changes)
        self.assertEqual(context.exception.statusCode, 200)

    def testMissingIndex(self):
        self.startServer()
        location = UpdateLocation(self.server.url('missing.zip'))
        self.addCleanup(location.close)

        with self.assertRaises(TransportError) as context:
            location.getResources()
        self.assertEqual(context.exception.statusCode, 404)

    def testCorruptIndex(self):
        self.startServer()
        self.server.files['/broken.zip.idx'] = b'garbage'
        location = UpdateLocation(self.server.url('broken.zip'))
        self.addCleanup(location.close)

        with self.assertRaises(CorruptIndexError):
            location.getResources()

    def testConnectionRefused(self):
        location = UpdateLocation('http://127.0.0.1:1/app.zip', timeout=2)
        self.addCleanup(location.close)

        with self.assertRaises(TransportError) as context:
            location.getResources()
        self.assertIsNone(context.exception.statusCode)


if __name__ == '__main__':
    unittest.main()
