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
import tempfile

from http import HTTPStatus
from typing import Dict, Iterator, List, Optional

import requests

from requests.structures import CaseInsensitiveDict

from zipupdate.Errors import CorruptInputError, MalformedMultipartError, TransportError
from zipupdate.IndexFile import decodeIndex, recordRanges
from zipupdate.Kernel import getLogger
from zipupdate.Multipart import MultipartReader, contentRangeKey
from zipupdate.Progress import ProgressListenerManager, UNIT_BYTES
from zipupdate.Resource import Range, Resource, ResourceFlag
from zipupdate.Settings import INDEX_SUFFIX, SettingsGetter
from zipupdate.Streams import LimitedReader, throttle
from zipupdate.Utils import createHTTPSession, formatSize, removeFile
from zipupdate.ZipEntry import ZipEntryReader

logger = getLogger(__name__)


class CacheEntry:
    """
    Downloaded range response of one fetch, kept in a scratch file until the patch using it is
    done. Pass it from fetchData() to getData() and discard() it afterwards.
    """

    def __init__(self, path, headers, ranges):
        self.path = path
        self.headers = headers
        self.ranges = ranges

    def discard(self):
        removeFile(self.path, "download cache")


class UpdateLocation:
    """
    Remote archive published with its index file (<url>.idx).

    getResources() loads the index, fetchData() downloads the entries a diff needs with a single
    byte range request and getData() decodes them.
    """

    def __init__(self, url, session=None, bufferSize=None, downloadSpeed=None, timeout=None):
        settingsGetter = SettingsGetter.getInstance()

        self.url = url
        self.indexUrl = url + INDEX_SUFFIX
        self.session = session or createHTTPSession()
        self.bufferSize = bufferSize or settingsGetter.bufferSize
        self.downloadSpeed = settingsGetter.downloadSpeed if downloadSpeed is None else downloadSpeed
        self.timeout = timeout or settingsGetter.httpTimeout

        self.listeners = ProgressListenerManager()

        # Rebuilt by every getResources()
        self.namedRanges: Dict[str, Range] = {}
        self.rangedNames: Dict[str, str] = {}
        self.checksums: Dict[str, int] = {}

    def __repr__(self):
        return f'UpdateLocation({self.url})'

    def addProgressListener(self, listener):
        self.listeners.addListener(listener)

    def removeProgressListener(self, listener):
        self.listeners.removeListener(listener)

    def close(self):
        self.session.close()

    def _logResponseHeaders(self, response):
        if response is None:
            return

        logger.info(f"Response from {response.url}: {response.status_code} {response.reason}")
        for name, value in response.headers.items():
            logger.info(f"{name}: {value}")

    def _transportError(self, message, error, response=None):
        if response is None:
            response = getattr(error, 'response', None)

        self._logResponseHeaders(response)

        if response is None:
            return TransportError(f"{message}: {error}")
        return TransportError(f"{message}: {error}", statusCode=response.status_code, headers=response.headers)

    def getResources(self) -> List[Resource]:
        """
        Download and decode the remote index.

        Returns:
            list: Resource per remote entry, in archive order.

        Raises:
            TransportError: The index could not be downloaded.
            CorruptIndexError: The index is damaged.
        """
        response = None
        try:
            response = self.session.get(self.indexUrl, timeout=self.timeout)
            response.raise_for_status()
            data = response.content
        except requests.RequestException as e:
            raise self._transportError(f"Unable to download index {self.indexUrl}", e, response) from e

        records = decodeIndex(data)

        namedRanges = {}
        rangedNames = {}
        checksums = {}
        resources = []
        for record, byteRange in recordRanges(records):
            namedRanges[record.name] = byteRange
            rangedNames[byteRange.key] = record.name
            checksums[record.name] = record.checksum
            resources.append(Resource(record.name, record.checksum))

        self.namedRanges = namedRanges
        self.rangedNames = rangedNames
        self.checksums = checksums

        logger.debug(f"Remote index {self.indexUrl} lists {len(resources)} entries")
        return resources

    def selectRanges(self, diff) -> List[Range]:
        """Byte ranges of every added or updated resource of diff, ascending."""
        ranges = []
        for resource, flag in diff.items():
            if flag not in (ResourceFlag.ADD, ResourceFlag.UPDATE):
                continue

            byteRange = self.namedRanges.get(resource.name)
            if byteRange is None:
                raise ValueError(f"'{resource.name}' is not in the index of {self.url}, call getResources() first")
            ranges.append(byteRange)

        return sorted(ranges, key=lambda r: r.start)

    @staticmethod
    def buildRangeHeader(ranges):
        """Range header value asking for every range, ascending by start."""
        return 'bytes=' + ','.join(r.key for r in sorted(ranges, key=lambda r: r.start))

    @staticmethod
    def parseBoundary(contentType):
        index = contentType.find('boundary=')
        if index == -1:
            raise MalformedMultipartError(f"No boundary in Content-Type: {contentType!r}")

        boundary = contentType[index + len('boundary='):].split(';', 1)[0].strip().strip('"')
        if not boundary:
            raise MalformedMultipartError(f"Empty boundary in Content-Type: {contentType!r}")
        return boundary

    def fetchData(self, diff) -> Optional[CacheEntry]:
        """
        Download the added and updated resources of diff into a scratch file.

        Returns:
            CacheEntry: To be passed to getData(), None when diff needs nothing from the server.

        Raises:
            TransportError: The request failed or the server ignored the Range header.
        """
        ranges = self.selectRanges(diff)
        if not ranges:
            return None

        rangeHeader = self.buildRangeHeader(ranges)
        estimatedSize = sum(r.length for r in ranges)
        logger.debug(f"Requesting {len(ranges)} ranges ({formatSize(estimatedSize)}) of {self.url}: {rangeHeader}")

        response = None
        cacheFile = None
        try:
            response = self.session.get(
                self.url,
                headers={'Range': rangeHeader, 'Accept-Encoding': 'identity'},
                stream=True,
                timeout=self.timeout,
            )
            response.raise_for_status()

            if response.status_code != HTTPStatus.PARTIAL_CONTENT:
                self._logResponseHeaders(response)
                raise TransportError(
                    f"{self.url} answered {response.status_code} instead of 206, byte ranges are not supported",
                    statusCode=response.status_code,
                    headers=response.headers,
                )

            # Multipart framing makes the body longer than the ranges it carries.
            contentLength = response.headers.get('Content-Length')
            expectedSize = int(contentLength) if contentLength and contentLength.isdigit() else estimatedSize
            self.listeners.init("Downloading new resources...", 0, expectedSize, UNIT_BYTES)

            cacheFile = tempfile.NamedTemporaryFile(delete=False, prefix='zipupdate_', suffix='.part')
            bytesRead = 0
            with cacheFile:
                for chunk in throttle(response.iter_content(chunk_size=self.bufferSize), self.downloadSpeed):
                    cacheFile.write(chunk)
                    bytesRead += len(chunk)
                    self.listeners.update(bytesRead)

            self.listeners.finish()
            headers = CaseInsensitiveDict(response.headers)

        except requests.RequestException as e:
            self._discardFile(cacheFile)
            raise self._transportError(f"Unable to download ranges of {self.url}", e, response) from e
        except OSError:
            self._logResponseHeaders(response)
            self._discardFile(cacheFile)
            raise
        finally:
            if response is not None:
                response.close()

        logger.debug(f"Downloaded {formatSize(bytesRead)} into {cacheFile.name}")
        return CacheEntry(cacheFile.name, headers, ranges)

    def _discardFile(self, cacheFile):
        if cacheFile is not None:
            cacheFile.close()
            removeFile(cacheFile.name, "download cache")

    def getData(self, diff, cacheEntry) -> Iterator[Resource]:
        """
        Decode the resources of a fetched response, in the order the server sent them.

        The result is a forward-only, single pass iterator: read the data of each resource before
        advancing, skipped data is discarded. Closing the iterator closes the scratch file.
        """
        if cacheEntry is None:
            return

        with open(cacheEntry.path, 'rb') as f:
            contentType = cacheEntry.headers.get('Content-Type', '')

            if contentType.lower().startswith('multipart/'):
                for part in MultipartReader(f, self.parseBoundary(contentType)):
                    if part.contentRange is None:
                        raise MalformedMultipartError("Response part without Content-Range")
                    yield from self._resourcesInBlock(contentRangeKey(part.contentRange), part.stream, cacheEntry)

            elif len(cacheEntry.ranges) == 1:
                yield self._createResource(self.rangedNames[cacheEntry.ranges[0].key], f)

            else:
                # Several ranges requested, the server merged them into one.
                contentRange = cacheEntry.headers.get('Content-Range')
                if not contentRange:
                    raise CorruptInputError(
                        f"Requested {len(cacheEntry.ranges)} ranges but the response has neither parts "
                        f"nor a Content-Range"
                    )
                yield from self._resourcesInBlock(contentRangeKey(contentRange), f, cacheEntry)

    def _resourcesInBlock(self, key, stream, cacheEntry):
        name = self.rangedNames.get(key)
        if name is not None:
            yield self._createResource(name, stream)
            return

        try:
            blockRange = Range.fromKey(key)
        except ValueError as e:
            raise CorruptInputError(f"Invalid byte range {key!r} in response") from e

        covered = [r for r in cacheEntry.ranges if blockRange.covers(r)]
        if not covered:
            raise CorruptInputError(f"Response range {key} matches no requested range")

        logger.debug(f"Response range {key} holds {len(covered)} merged ranges")

        position = blockRange.start
        for byteRange in covered:
            if byteRange.start > position:
                LimitedReader(stream, byteRange.start - position).skipRemaining(self.bufferSize)

            block = LimitedReader(stream, byteRange.length)
            yield self._createResource(self.rangedNames[byteRange.key], block)
            block.skipRemaining(self.bufferSize)

            position = byteRange.end

    def _createResource(self, name, stream):
        return Resource(name, self.checksums.get(name, 0), ZipEntryReader(stream, self.bufferSize))
