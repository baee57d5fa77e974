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
import platform

from zipupdate.Kernel import Singleton, getLogger

# Copy/download buffer size in bytes
DEFAULT_BUFFER_SIZE = 8192

# Download speed limit in KB/s, -1 or 0 means unlimited
DEFAULT_DOWNLOAD_SPEED = -1

# Socket timeout in seconds for index and range requests
DEFAULT_HTTP_TIMEOUT = 30

INDEX_SUFFIX = os.getenv('ZIPUPDATE_INDEX_SUFFIX', '.idx')

ARCHIVE_EXTENSIONS = ('.zip', '.jar')

SUPPORT_URL = 'https://github.com/zipupdate/zipupdate/issues'

logger = getLogger(__name__)


class SettingsGetter(Singleton):
    """Process-wide settings resolved from ZIPUPDATE_* environment variables."""

    def initialize(self, platform=platform.system()):
        self.platform = platform
        self.load()

    def load(self):
        """(Re)read the environment. Out of range values fall back to the defaults."""
        # Import here to avoid circular dependency, Utils reads SUPPORT_URL from this module.
        from zipupdate.Utils import getEnv

        self.bufferSize = getEnv('ZIPUPDATE_BUFFER_SIZE', DEFAULT_BUFFER_SIZE)
        if self.bufferSize <= 0:
            logger.warning(f"Invalid buffer size {self.bufferSize}, using default {DEFAULT_BUFFER_SIZE}")
            self.bufferSize = DEFAULT_BUFFER_SIZE

        self.downloadSpeed = getEnv('ZIPUPDATE_DOWNLOAD_SPEED', DEFAULT_DOWNLOAD_SPEED)
        if self.downloadSpeed < -1:
            logger.warning(f"Invalid download speed {self.downloadSpeed} KB/s, download throttling is disabled")
            self.downloadSpeed = DEFAULT_DOWNLOAD_SPEED

        self.httpTimeout = getEnv('ZIPUPDATE_HTTP_TIMEOUT', DEFAULT_HTTP_TIMEOUT)

    def isLinux(self):
        return self.platform == 'Linux'

    def getSupportURL(self):
        return SUPPORT_URL
