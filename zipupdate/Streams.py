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
import time

from zipupdate.Errors import CorruptInputError
from zipupdate.Kernel import getLogger
from zipupdate.Utils import ONE_KB

logger = getLogger(__name__)


class LimitedReader(io.RawIOBase):
    """
    Read-only view of the next limit bytes of a shared source stream.

    Closing the view never closes the source. A source that ends before the limit is reached
    raises errorClass, a part of a byte range response is never silently short.
    """

    def __init__(self, source, limit, errorClass=CorruptInputError):
        super().__init__()
        self.source = source
        self.limit = limit
        self.remaining = limit
        self.errorClass = errorClass

    def readable(self):
        return True

    def readinto(self, b):
        if self.remaining <= 0:
            return 0

        size = min(len(b), self.remaining)
        data = self.source.read(size)
        if not data:
            raise self.errorClass(f"Stream ended {self.remaining} bytes before the end of a {self.limit} byte block")

        n = len(data)
        b[:n] = data
        self.remaining -= n
        return n

    def skipRemaining(self, bufferSize=io.DEFAULT_BUFFER_SIZE):
        """Discard the unread rest of the block, works on a closed view too."""
        skipped = 0
        while self.remaining > 0:
            data = self.source.read(min(bufferSize, self.remaining))
            if not data:
                raise self.errorClass(
                    f"Stream ended {self.remaining} bytes before the end of a {self.limit} byte block"
                )
            self.remaining -= len(data)
            skipped += len(data)
        return skipped


def throttle(chunks, kiloBytesPerSecond, sleep=time.sleep):
    """
    Delay iteration over chunks so that the average rate stays at kiloBytesPerSecond.
    None, 0 or -1 disables throttling.
    """
    if not kiloBytesPerSecond or kiloBytesPerSecond < 0:
        yield from chunks
        return

    bytesPerSecond = kiloBytesPerSecond * ONE_KB
    logger.debug(f"Throttling download to {kiloBytesPerSecond} KB/s")

    for chunk in chunks:
        yield chunk
        sleep(len(chunk) / bytesPerSecond)
