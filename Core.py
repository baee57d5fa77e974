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
import signal
import sys

from urllib.parse import quote, urljoin

import requests

from zipupdate.CLI import (
    EXIT_OK, EXIT_BAD_ARGUMENTS, EXIT_NO_FILES, EXIT_FAILED, configureCLIParser, configureLogging,
    createProgressListener
)
from zipupdate.Errors import InconsistentArchiveStateError, ZipUpdateError
from zipupdate.Indexer import findArchives, index, isArchiveFile
from zipupdate.Kernel import getLogger, ZipUpdateEvent
from zipupdate.Settings import SettingsGetter
from zipupdate.UpdateEngine import UpdateEngine, createEmptyArchive
from zipupdate.UpdateLocation import UpdateLocation
from zipupdate.Utils import flushPrint, reportException

logger = getLogger(__name__)


def installInterruptHandler():
    """First Ctrl+C raises KeyboardInterrupt so that cleanup runs, a second one exits at once."""
    interrupts = []

    def onInterrupt(signum, frame):
        interrupts.append(signum)
        if len(interrupts) > 1:
            os._exit(EXIT_OK)
        raise KeyboardInterrupt()

    signal.signal(signal.SIGINT, onInterrupt)


def archiveURL(baseURL, archivePath):
    """URL of a directory member, baseURL is treated as a directory."""
    if not baseURL.endswith('/'):
        baseURL += '/'
    return urljoin(baseURL, quote(os.path.basename(archivePath)))


def printUpdateSummary(archivePath, patched, summary, **kwargs):
    if patched:
        changes = ', '.join(f"{count} {action}" for action, count in summary.items())
        flushPrint(f'{archivePath}: patched ({changes})')
    else:
        flushPrint(f'{archivePath}: up to date')


def processUpdate(args):
    """
    Returns:
        int: Exit code
    """
    if os.path.isdir(args.target):
        archives = findArchives(args.target)
        if not archives:
            flushPrint(f'No .zip or .jar archives found in "{args.target}"')
            return EXIT_NO_FILES
        urls = [archiveURL(args.url, archivePath) for archivePath in archives]
    else:
        if not os.path.exists(args.target):
            flushPrint(f'"{args.target}" does not exist, creating it')
            createEmptyArchive(args.target)
        archives = [args.target]
        urls = [args.url]

    locations = [UpdateLocation(url, downloadSpeed=args.downloadSpeed) for url in urls]

    engine = UpdateEngine()
    engine.addProgressListener(createProgressListener(args.useBar, len(archives)))
    ZipUpdateEvent.archiveUpdated.subscribe(printUpdateSummary)

    try:
        patchedCount = engine.updateAll(archives, locations)
    except InconsistentArchiveStateError as e:
        reportException(
            logger,
            e,
            action=f'Restore the original archive by renaming "{e.backupPath}" to "{e.archivePath}".',
            errorPrefix='Update failed'
        )
        return EXIT_FAILED
    except ZipUpdateError as e:
        reportException(logger, e, errorPrefix='Update failed')
        return EXIT_FAILED
    finally:
        ZipUpdateEvent.archiveUpdated.unsubscribe(printUpdateSummary)
        for location in locations:
            location.close()

    flushPrint(f'{patchedCount} of {len(archives)} archives patched')
    return EXIT_OK


def processIndex(args):
    if os.path.isdir(args.target):
        archives = findArchives(args.target)
    elif isArchiveFile(args.target):
        archives = [args.target]
    else:
        archives = []

    if not archives:
        flushPrint(f'No .zip or .jar archives found at "{args.target}"')
        return EXIT_NO_FILES

    for archivePath in archives:
        try:
            flushPrint(f'Indexed {archivePath} into {index(archivePath)}')
        except (ZipUpdateError, OSError) as e:
            reportException(logger, e, errorPrefix=f'Unable to index {archivePath}')
            return EXIT_FAILED

    return EXIT_OK


def main(argv=None):
    SettingsGetter(platform=platform.system())

    parser = configureCLIParser()
    args = parser.parse_args(argv)

    configureLogging(args.logLevel)

    if args.command == 'update':
        return processUpdate(args)
    elif args.command == 'index':
        return processIndex(args)

    parser.print_help()
    return EXIT_BAD_ARGUMENTS


def run():
    """Console script entry point."""
    installInterruptHandler()

    try:
        code = main()
    except KeyboardInterrupt:
        flushPrint('\nExiting on user request (Ctrl+C)...')
        code = EXIT_OK
    except (requests.exceptions.ConnectionError, ConnectionError) as e:
        reportException(logger, e, errorPrefix='Failed to connect server')
        code = EXIT_FAILED
    except PermissionError as e:
        reportException(logger, e, errorPrefix='Permission denied')
        code = EXIT_FAILED
    except Exception as e:
        reportException(logger, e)
        code = EXIT_FAILED

    sys.exit(code)


if __name__ == '__main__':
    run()
