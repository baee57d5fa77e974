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
import logging
import threading

# Error reporting stays off unless ZIPUPDATE_SENTRY_DSN is set.
import sentry_sdk

from enum import Enum

from signalslot import Signal

from sentry_sdk.integrations import atexit as sentryAtexit
from sentry_sdk.integrations.logging import LoggingIntegration, SentryHandler

PUBLIC_VERSION = '1.2.0'

LOG_LEVEL_MAPPING = {'DEBUG': logging.DEBUG, 'INFO': logging.INFO, 'WARNING': logging.WARNING, 'ERROR': logging.ERROR}

CONSOLE_LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
SENTRY_LOG_FORMAT = '%(asctime)s version[%(version)s] : %(message)s'


def configureGlobalLogLevel(logLevel):
    """
    Apply logLevel to the root logger and its console handlers, installing a console handler
    first when the root logger has none. Loggers of getLogger() inherit the level.
    """
    rootLogger = logging.getLogger()
    rootLogger.setLevel(logLevel)

    if not rootLogger.handlers:
        rootLogger.addHandler(logging.StreamHandler())

    for handler in rootLogger.handlers:
        if isinstance(handler, logging.StreamHandler):
            handler.setLevel(logLevel)
            handler.setFormatter(logging.Formatter(CONSOLE_LOG_FORMAT))


_environmentLogLevel = LOG_LEVEL_MAPPING.get(os.getenv('ZIPUPDATE_LOGGING_LEVEL', '').upper())
if _environmentLogLevel is not None:
    configureGlobalLogLevel(_environmentLogLevel)


def initSentry(version=PUBLIC_VERSION):
    """
    Returns:
        bool: True when a Sentry client is active, started here from ZIPUPDATE_SENTRY_DSN if needed.
    """
    if sentry_sdk.get_client().is_active():
        return True

    dsn = os.getenv('ZIPUPDATE_SENTRY_DSN')
    if not dsn:
        return False

    # No "sentry is attempting to send pending events..." banner on exit
    sentryAtexit.default_callback = lambda pending, timeout: None

    sentry_sdk.init(
        dsn=dsn,
        release=version,
        default_integrations=False,
        integrations=[LoggingIntegration(), sentryAtexit.AtexitIntegration()],
    )
    return True


def getLogger(name, version=PUBLIC_VERSION):
    """
    Logger of a module, adapted to carry the version as the 'version' record attribute. With
    error reporting on, the logger also forwards to Sentry.
    """
    logger = logging.getLogger(name)

    try:
        if initSentry(version) and not any(isinstance(h, SentryHandler) for h in logger.handlers):
            sentryHandler = SentryHandler()
            sentryHandler.setFormatter(logging.Formatter(SENTRY_LOG_FORMAT))
            logger.addHandler(sentryHandler)
    except Exception as e:
        logger.warning(f"Failed to initialize Sentry: {e}")
        return logger

    return logging.LoggerAdapter(logger, {'version': version or 'unknown'})


class Singleton:
    """
    One instance per subclass, created on first use. initialize() runs once, with the arguments
    of that first construction; later constructions return the same object untouched.
    """

    _lock = threading.Lock()

    def __new__(cls, *args, **kwargs):
        with Singleton._lock:
            instance = cls.__dict__.get('_instance')
            if instance is None:
                instance = super().__new__(cls)
                instance._initialized = False
                cls._instance = instance
        return instance

    def __init__(self, *args, **kwargs):
        if not self._initialized:
            self._initialized = True
            self.initialize(*args, **kwargs)

    def initialize(self, *args, **kwargs):
        pass

    @classmethod
    def getInstance(cls):
        instance = cls.__dict__.get('_instance')
        return cls() if instance is None else instance


class EventTiming(Enum):
    BEFORE = "BEFORE"
    AFTER = "AFTER"

    @classmethod
    def of(cls, timing):
        """Member for an EventTiming or its name in any case."""
        if isinstance(timing, cls):
            return timing

        if isinstance(timing, str):
            try:
                return cls(timing.upper())
            except ValueError:
                raise ValueError(f"Invalid timing '{timing}', expected BEFORE or AFTER") from None

        raise ValueError(f"Timing must be an EventTiming or a string, got {type(timing).__name__}")


def _timings(timing):
    return list(EventTiming) if timing is None else [EventTiming.of(timing)]


class EventService(Singleton):
    """
    Named events. Every event holds one signalslot Signal per EventTiming, observers receive the
    trigger's keyword arguments and so must accept **kwargs.
    """

    def initialize(self):
        self.signals = {}

    def reset(self):
        """Drop every event, test suites only."""
        self.signals.clear()

    def isRegistered(self, event):
        return event in self.signals

    def register(self, event):
        """
        Returns:
            bool: False when event was already registered.
        """
        if event in self.signals:
            return False
        self.signals[event] = {timing: Signal() for timing in EventTiming}
        return True

    def unregister(self, event):
        signals = self.signals.pop(event, None)
        if signals is None:
            return False

        for signal in signals.values():
            for slot in list(signal.slots):
                signal.disconnect(slot)
        return True

    def subscribe(self, event, observer, timing=EventTiming.AFTER, index=-1):
        """Connect observer once. An index other than -1 is its position among the observers."""
        if event not in self.signals:
            raise KeyError(f"Event '{event}' must be registered before subscribing to it")

        signal = self.signals[event][EventTiming.of(timing)]
        if observer in signal._slots:
            return

        if index == -1:
            signal.connect(observer)
        else:
            signal._slots.insert(index, observer)

    def unsubscribe(self, event, observer, timing=None):
        signals = self.signals.get(event)
        if signals is None:
            return

        for t in _timings(timing):
            if observer in signals[t]._slots:
                signals[t].disconnect(observer)

    def find(self, event, observer, timing=EventTiming.AFTER):
        """Position of observer, -1 when it is not subscribed."""
        if event not in self.signals:
            return -1

        slots = self.signals[event][EventTiming.of(timing)]._slots
        return slots.index(observer) if observer in slots else -1

    def trigger(self, event, timing=None, **kwargs):
        """Emit the BEFORE then the AFTER signal of event, or only the one of timing."""
        timings = _timings(timing)

        signals = self.signals.get(event)
        if signals is None:
            return

        for t in timings:
            signals[t].emit(**kwargs)


class Event:
    """Handle on one registered event of the EventService."""

    def __init__(self, key):
        self.key = key
        self.eventService = EventService.getInstance()

    def subscribe(self, observer, timing=EventTiming.AFTER, index=-1):
        self.eventService.subscribe(self.key, observer, timing=timing, index=index)

    def unsubscribe(self, observer, timing=None):
        self.eventService.unsubscribe(self.key, observer, timing=timing)

    def trigger(self, **kwargs):
        self.eventService.trigger(self.key, **kwargs)


class ZipUpdateEvent:
    # Once per archive with archivePath, url, patched and summary.
    archiveUpdated = Event('/archive/updated')
    # After an index file is written, with archivePath, indexPath and records.
    indexWritten = Event('/index/written')


for _event in (ZipUpdateEvent.archiveUpdated, ZipUpdateEvent.indexWritten):
    _event.eventService.register(_event.key)
