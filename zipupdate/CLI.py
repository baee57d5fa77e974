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

import argparse
import json
import logging
import logging.config
import os

from zipupdate.Kernel import PUBLIC_VERSION, LOG_LEVEL_MAPPING, getLogger, configureGlobalLogLevel
from zipupdate.Progress import LoggingProgressListener, MultiProgressListener, ProgressBarListener
from zipupdate.Utils import flushPrint, getEnv

EXIT_OK = 0
EXIT_BAD_ARGUMENTS = 2 # same code argparse exits with
EXIT_NO_FILES = 3
EXIT_FAILED = 4

# Capped at INFO even when DEBUG is requested
NOISY_LOGGERS = ('urllib3', 'urllib3.connectionpool', 'sentry_sdk')

logger = getLogger(__name__)


def loadLoggingConfig(path):
    """
    Apply a logging.config.dictConfig JSON file.

    Returns:
        bool: False when the file holds no valid configuration.
    """
    try:
        with open(path, 'r') as configFile:
            logging.config.dictConfig(json.load(configFile))
    except (ValueError, KeyError, TypeError) as e:
        flushPrint(f"Failed to load logging config from {path}: {e}")
        return False

    logger.info(f"Logging configured from file: {path}")
    return True


def configureLogging(logLevel):
    """
    Configure logging from --log-level, or else from ZIPUPDATE_LOGGING_LEVEL. Either one is a
    level name (DEBUG, INFO, WARNING, ERROR) or the path of a logging configuration JSON file.

    Returns:
        str: The setting that was applied, None when there was none.
    """
    setting = logLevel if logLevel is not None else getEnv('ZIPUPDATE_LOGGING_LEVEL', None)

    try:
        if setting is None:
            return None

        if os.path.isfile(setting):
            if loadLoggingConfig(setting):
                return setting
            flushPrint("Falling back to the WARNING level")
            setting = 'WARNING'

        level = LOG_LEVEL_MAPPING.get(setting.upper())
        if level is None:
            logger.warning(f"Invalid logging level '{setting}', using WARNING")
            level = logging.WARNING

        configureGlobalLogLevel(level)
        logger.info(f"Logging level set to {logging.getLevelName(level)}")
        return setting
    finally:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.INFO)


def createProgressListener(useBar=True, archiveCount=1):
    """Progress display of the CLI, a second bar tracks the archives of a directory update."""
    if not useBar:
        return LoggingProgressListener()

    if archiveCount > 1:
        return MultiProgressListener(ProgressBarListener(position=1, leave=False), ProgressBarListener(position=0))

    return ProgressBarListener()


def parseLogLevel(value):
    """--log-level accepts a level name or an existing configuration file."""
    if os.path.exists(value):
        return value

    if value.upper() not in LOG_LEVEL_MAPPING:
        raise argparse.ArgumentTypeError(
            f"Invalid log level '{value}'. Valid levels are: {', '.join(LOG_LEVEL_MAPPING)}"
        )
    return value.upper()


def parseDownloadSpeed(value):
    """KB/s, -1 or 0 for unlimited"""
    try:
        speed = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid download speed: {value}") from None

    if speed < -1:
        raise argparse.ArgumentTypeError(f"Download speed {speed} cannot be below -1")
    return speed


def addCommonArguments(parser, default=None):
    parser.add_argument(
        "--log-level",
        type=parseLogLevel,
        dest="logLevel",
        default=default,
        metavar="LEVEL_OR_FILE",
        help="Logging level (DEBUG, INFO, WARNING, ERROR) or path of a logging config JSON file",
    )
    parser.add_argument(
        "--no-progress",
        action="store_false",
        dest="useBar",
        default=default,
        help="Log progress periodically instead of drawing progress bars",
    )


def configureCLIParser():
    """
    Returns:
        argparse.ArgumentParser: Parser with the 'update' and 'index' commands.
    """
    parser = argparse.ArgumentParser(
        prog='zipupdate',
        description="Update ZIP/JAR archives in place by downloading only the entries that changed.",
    )
    addCommonArguments(parser)
    parser.set_defaults(logLevel=None, useBar=True)

    # Accepted after the command name too, without overriding what was given before it.
    common = argparse.ArgumentParser(add_help=False)
    addCommonArguments(common, default=argparse.SUPPRESS)
    parser.add_argument("--version", action="version", version=f"ZipUpdate v{PUBLIC_VERSION}")

    commands = parser.add_subparsers(dest='command', metavar='COMMAND')

    update = commands.add_parser(
        'update', parents=[common], help='Update an archive, or every archive of a directory'
    )
    update.add_argument(
        "target",
        metavar="ARCHIVE_OR_DIRECTORY",
        help="Archive to update (created when missing), or a directory of .zip/.jar archives",
    )
    update.add_argument(
        "url",
        metavar="URL",
        help="URL of the up to date archive, or for a directory the base URL of its archives",
    )
    update.add_argument(
        "--download-speed",
        type=parseDownloadSpeed,
        dest="downloadSpeed",
        metavar="KBPS",
        help="Download speed limit in KB/s, -1 or 0 for unlimited (default: ZIPUPDATE_DOWNLOAD_SPEED)",
    )

    index = commands.add_parser('index', parents=[common], help='Write the .idx file the update command needs')
    index.add_argument("target", metavar="ARCHIVE_OR_DIRECTORY", help="Archive or directory of .zip/.jar archives")

    return parser
