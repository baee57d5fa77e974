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
import zipfile
import zlib

from typing import List

from zipupdate.Diff import diff, logDiff
from zipupdate.Errors import (
    ArchiveReplaceError, CorruptArchiveError, CorruptInputError, FileSystemError, InconsistentArchiveStateError
)
from zipupdate.Kernel import getLogger, ZipUpdateEvent
from zipupdate.Progress import MultiProgressListener, ProgressListenerManager
from zipupdate.Resource import Resource, ResourceFlag
from zipupdate.Settings import SettingsGetter
from zipupdate.Utils import removeFile, timed
from zipupdate.ZipHeaders import METHOD_STORED

MANIFEST_NAME = 'META-INF/MANIFEST.MF'

TEMP_SUFFIX = '.tmp'
BACKUP_SUFFIX = '.bck'

# drwxrwxr-x plus the MS-DOS directory bit
DIRECTORY_ATTRIBUTES = (0o40775 << 16) | 0x10
FILE_ATTRIBUTES = 0o644 << 16

logger = getLogger(__name__)


def createEmptyArchive(path):
    """Write an archive without entries, updating it adds every remote entry."""
    with zipfile.ZipFile(path, 'w'):
        pass
    logger.debug(f"Created empty archive {path}")


def openArchive(path, mode='r'):
    try:
        return zipfile.ZipFile(path, mode)
    except zipfile.BadZipFile as e:
        raise CorruptArchiveError(f"{path} is not a valid archive: {e}") from e


class UpdateEngine:
    """
    Brings local archives in line with their UpdateLocation.

    An update compares the local entries with the remote index, downloads what was added or
    changed, writes a new archive next to the original and swaps the two. Unchanged entries are
    copied from the local archive, in their original order.
    """

    def __init__(self, bufferSize=None):
        self.bufferSize = bufferSize or SettingsGetter.getInstance().bufferSize

        # Progress of the archive being updated
        self.listeners = ProgressListenerManager()
        # Progress over all archives of updateAll()
        self.multiListeners = ProgressListenerManager()

    def addProgressListener(self, listener):
        self.listeners.addListener(listener)
        if isinstance(listener, MultiProgressListener):
            self.multiListeners.addListener(listener.overallListener)

    def removeProgressListener(self, listener):
        self.listeners.removeListener(listener)
        if isinstance(listener, MultiProgressListener):
            self.multiListeners.removeListener(listener.overallListener)

    @staticmethod
    def init(archive: zipfile.ZipFile) -> List[Resource]:
        """Resources of an open archive, in entry order. Only the first of duplicated names counts."""
        resources = []
        seen = set()
        for info in archive.infolist():
            if info.filename in seen:
                logger.warning(f"Ignoring duplicate entry '{info.filename}' in {archive.filename}")
                continue
            seen.add(info.filename)
            resources.append(Resource(info.filename, info.CRC))
        return resources

    @staticmethod
    def isRemoteFirst(changes):
        """
        Remote entries are written first only when the manifest is added, so that a new manifest
        leads the archive. An updated manifest keeps the local ordering and lands after the
        copied entries.
        """
        for resource, flag in changes.items():
            if resource.name == MANIFEST_NAME:
                return flag == ResourceFlag.ADD
        return False

    def update(self, archivePath, location) -> bool:
        """
        Update one archive from location.

        Returns:
            bool: False when the archive was already up to date.
        """
        logger.info(f"Updating {archivePath} from {location.url}")
        location.addProgressListener(self.listeners)

        try:
            self.listeners.init('Initializing...')

            with openArchive(archivePath) as archive:
                local = self.init(archive)

            with timed('Loading remote index', logger):
                remote = location.getResources()

            changes = diff(local, remote)
            kept = sum(1 for resource in local if resource not in changes)
            summary = logDiff(changes, kept=kept, log=logger)

            self.listeners.finish()

            with timed(f'Patching {archivePath}', logger):
                patched = self.patch(archivePath, changes, location)
        finally:
            location.removeProgressListener(self.listeners)

        ZipUpdateEvent.archiveUpdated.trigger(
            archivePath=archivePath, url=location.url, patched=patched, summary=summary
        )
        return patched

    def updateAll(self, archivePaths, locations, messages=None) -> int:
        """
        Update several archives one after the other.

        Returns:
            int: Number of archives that were patched.
        """
        if len(archivePaths) != len(locations):
            raise ValueError(f"Got {len(archivePaths)} archives but {len(locations)} locations")

        if messages is None:
            messages = [f'Updating {os.path.basename(path)}' for path in archivePaths]
        elif len(messages) != len(archivePaths):
            raise ValueError(f"Got {len(archivePaths)} archives but {len(messages)} messages")

        patchedCount = 0
        self.multiListeners.init(f'Updating {len(archivePaths)} archives...', 0, len(archivePaths))
        try:
            for i, (archivePath, location, message) in enumerate(zip(archivePaths, locations, messages)):
                self.multiListeners.label(message)
                if self.update(archivePath, location):
                    patchedCount += 1
                self.multiListeners.update(i + 1)
        finally:
            self.multiListeners.finish()

        logger.info(f"{patchedCount} of {len(archivePaths)} archives patched")
        return patchedCount

    def patch(self, archivePath, changes, location) -> bool:
        """
        Rewrite archivePath according to changes.

        Returns:
            bool: False for an empty diff, the archive is left untouched.

        Raises:
            ArchiveReplaceError: The original could not be moved aside, it is still intact.
            InconsistentArchiveStateError: The original was moved to its backup but the patched
                archive could not take its place.
        """
        if not changes:
            logger.info(f"{archivePath} is up to date")
            return False

        remoteFirst = self.isRemoteFirst(changes)

        tempPath = archivePath + TEMP_SUFFIX
        if os.path.exists(tempPath):
            try:
                os.remove(tempPath)
            except OSError as e:
                raise FileSystemError(f"Unable to delete stale temporary archive {tempPath}: {e}") from e

        cacheEntry = location.fetchData(changes)
        try:
            self._build(archivePath, tempPath, changes, location, cacheEntry, remoteFirst)
        except Exception:
            removeFile(tempPath, 'temporary archive')
            raise
        finally:
            if cacheEntry is not None:
                cacheEntry.discard()

        self.listeners.init('Finalizing...')
        self._replaceArchive(archivePath, tempPath)
        self.listeners.finish()
        return True

    def _build(self, archivePath, tempPath, changes, location, cacheEntry, remoteFirst):
        flags = {resource.name: flag for resource, flag in changes.items()}
        remoteResources = location.getData(changes, cacheEntry)

        try:
            with openArchive(archivePath) as archive, zipfile.ZipFile(tempPath, 'w', zipfile.ZIP_DEFLATED) as output:
                self.listeners.init('Patching...', 0, len(archive.infolist()) + len(changes))

                if remoteFirst:
                    self._patchRemotely(output, remoteResources)
                    self._patchLocally(archive, output, flags)
                else:
                    self._patchLocally(archive, output, flags)
                    self._patchRemotely(output, remoteResources)

            self.listeners.finish()
        finally:
            remoteResources.close()

    def _advance(self):
        self.listeners.update(self.listeners.getProgress() + 1)

    def _patchLocally(self, archive, output, flags):
        """Copy the entries absent from the diff, ADD/UPDATE entries come from the server."""
        seen = set()
        for info in archive.infolist():
            self._advance()

            if flags.get(info.filename, ResourceFlag.NOOP) != ResourceFlag.NOOP or info.filename in seen:
                continue
            seen.add(info.filename)

            target = zipfile.ZipInfo(info.filename, date_time=info.date_time)
            target.compress_type = info.compress_type
            target.external_attr = info.external_attr
            target.create_system = info.create_system
            target.comment = info.comment

            try:
                with archive.open(info) as source, output.open(target, 'w') as sink:
                    shutil.copyfileobj(source, sink, self.bufferSize)
            except zipfile.BadZipFile as e:
                raise CorruptArchiveError(f"Entry '{info.filename}' of {archive.filename} is damaged: {e}") from e

    def _patchRemotely(self, output, resources):
        for resource in resources:
            self._advance()

            entry = resource.data
            info = zipfile.ZipInfo(resource.name, date_time=entry.dateTime)
            if resource.name.endswith('/'):
                info.external_attr = DIRECTORY_ATTRIBUTES
                info.compress_type = zipfile.ZIP_STORED
            else:
                info.external_attr = FILE_ATTRIBUTES
                info.compress_type = zipfile.ZIP_STORED if entry.method == METHOD_STORED else zipfile.ZIP_DEFLATED

            checksum = 0
            with output.open(info, 'w') as sink:
                while True:
                    chunk = entry.read(self.bufferSize)
                    if not chunk:
                        break
                    checksum = zlib.crc32(chunk, checksum)
                    sink.write(chunk)

            if checksum != resource.checksum:
                raise CorruptInputError(
                    f"Downloaded '{resource.name}' has checksum {checksum:08x}, index says {resource.checksum:08x}"
                )

            logger.debug(f"Wrote remote entry {resource!r}")

    def _replaceArchive(self, archivePath, tempPath):
        backupPath = archivePath + BACKUP_SUFFIX

        try:
            os.replace(archivePath, backupPath)
        except OSError as e:
            removeFile(tempPath, 'temporary archive')
            raise ArchiveReplaceError(f"Unable to move {archivePath} to {backupPath}: {e}", archivePath) from e

        try:
            os.replace(tempPath, archivePath)
        except OSError as e:
            logger.error(f"Patched archive {tempPath} could not replace {archivePath}, original saved as {backupPath}")
            raise InconsistentArchiveStateError(
                f"Unable to move {tempPath} to {archivePath}: {e}. The original archive is saved as {backupPath}",
                archivePath,
                backupPath,
                tempPath,
            ) from e

        removeFile(backupPath, 'backup archive')
