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
import socket
import sys
import time

import bitmath
import requests

from contextlib import contextmanager

from requests.adapters import HTTPAdapter
from urllib3 import PoolManager
from urllib3.connection import HTTPConnection
from urllib3.util.retry import Retry

from zipupdate.Kernel import getLogger, PUBLIC_VERSION
from zipupdate.Settings import SettingsGetter

ONE_KB = bitmath.KiB(1).bytes
ONE_GB = bitmath.GiB(1).bytes
ONE_TB = bitmath.TiB(1).bytes

USER_AGENT = f'ZipUpdate/{PUBLIC_VERSION}'

# Unacknowledged data timeout of a connection, Linux only
KEEPALIVE_USER_TIMEOUT_MS = 120 * 1000

logger = getLogger(__name__)


def flushPrint(text):
    """print() flushed at once, falling back to UTF-8 bytes on consoles that cannot encode text."""
    try:
        print(text, flush=True)
        return
    except UnicodeEncodeError as e:
        logger.debug(f"Console encoding {sys.stdout.encoding} cannot print text: {e}")

    buffer = getattr(sys.stdout, 'buffer', None)
    if buffer is None:
        encoding = sys.stdout.encoding or 'ascii'
        print(text.encode(encoding, errors='replace').decode(encoding), flush=True)
    else:
        buffer.write(text.encode('utf-8', errors='replace') + b'\n')
        buffer.flush()


def formatSize(size, decimal=None, plural=None):
    """
    Size with an SI prefix: '512 Bytes', '20K', '1.2G'.

    Args:
        decimal: Fraction digits, by default 0 below 1 GB, 1 below 1 TB and 2 above
        plural: Unit plural for sizes in bytes, by default for anything up to 1 KB
    """
    if decimal is None:
        decimal = 0 if size < ONE_GB else 1 if size < ONE_TB else 2

    if plural is None:
        plural = size <= ONE_KB

    best = bitmath.Byte(size).best_prefix(system=bitmath.SI)

    if type(best) is bitmath.Byte:
        return f'{best.value:.{decimal}f} {best.unit_plural if plural else best.unit}'
    return f'{best.value:.{decimal}f}{best.unit[0].upper()}'


def formatDuration(seconds):
    if seconds < 1:
        return f'{seconds * 1000:.0f} ms'
    return f'{seconds:.2f} s'


@contextmanager
def timed(phase, log=None):
    """Log how long the enclosed phase took."""
    log = log or logger
    startTime = time.monotonic()
    try:
        yield
    finally:
        log.info(f"{phase} took {formatDuration(time.monotonic() - startTime)}")


def removeFile(path, description='file'):
    """Delete path. Failing to do so is only logged, callers use it for leftovers."""
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Unable to delete {description} {path}: {e}")
        return False
    return True


def getEnv(envVar, default):
    """
    Value of envVar converted to the type of default, default when unset or not convertible.
    Booleans are true for 'True' only, a None default returns the raw string.
    """
    value = os.getenv(envVar)
    if value is None:
        return default
    if default is None:
        return value
    if isinstance(default, bool):
        return value == 'True'

    try:
        return type(default)(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid value {value!r} of {envVar}, using {default!r}")
        return default


def reportException(log, e, action=None, errorPrefix='Oops, something went wrong'):
    """
    Show e to the user with an optional suggested action, and log its traceback. With
    RAISE_EXCEPTION=True it is raised again, for debugging.
    """
    flushPrint(f'{errorPrefix}: {e}' if errorPrefix else f'{e}')
    if action:
        flushPrint(action)

    supportURL = SettingsGetter.getInstance().getSupportURL()
    flushPrint(f'\nIf you still get the same problem, please report it at {supportURL}.')

    log.exception(e)

    if getEnv('RAISE_EXCEPTION', False):
        raise e


def keepAliveSocketOptions(isLinux):
    """Socket options turning on TCP keepalive, so that a stalled range download fails."""
    options = list(HTTPConnection.default_socket_options)
    options.append((socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1))

    for name, value in (('TCP_KEEPIDLE', 30), ('TCP_KEEPINTVL', 10), ('TCP_KEEPCNT', 3)):
        if hasattr(socket, name):
            options.append((socket.IPPROTO_TCP, getattr(socket, name), value))

    if isLinux and hasattr(socket, 'TCP_USER_TIMEOUT'):
        options.append((socket.IPPROTO_TCP, socket.TCP_USER_TIMEOUT, KEEPALIVE_USER_TIMEOUT_MS))

    return options


class KeepAliveAdapter(HTTPAdapter):
    """
    Adapter whose pooled connections use keepAliveSocketOptions(). urllib3 retries are off, a
    failed request surfaces at once and the caller turns it into a TransportError.
    """

    def __init__(self, **kwargs):
        # init_poolmanager() runs inside HTTPAdapter.__init__
        self.socketOptions = keepAliveSocketOptions(SettingsGetter.getInstance().isLinux())
        super().__init__(max_retries=Retry(total=0), **kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **kwargs):
        self.poolmanager = PoolManager(
            num_pools=connections, maxsize=maxsize, block=block, socket_options=self.socketOptions, **kwargs
        )


def createHTTPSession():
    session = requests.Session()
    adapter = KeepAliveAdapter()
    session.mount('http://', adapter)
    session.mount('https://', adapter)
    session.headers['User-Agent'] = USER_AGENT
    return session
