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

import time

from tqdm import tqdm

from zipupdate.Kernel import getLogger
from zipupdate.Utils import formatSize

# Unit of phases whose progress values are byte counts.
UNIT_BYTES = 'B'

logger = getLogger(__name__)


class ProgressListener:
    """
    Observer of a long running operation. A phase starts with init(), reports with update()
    (values never decrease within a phase) and label(), and ends with finish().

    This base class only records the state, subclasses present it.
    """

    def __init__(self):
        self.message = None
        self.minimum = 0
        self.maximum = None
        self.unit = None
        self.text = None
        self.progress = 0

    def init(self, message, minimum=None, maximum=None, unit=None):
        """
        Start a phase. Without maximum the phase is indeterminate.

        Args:
            message: Phase description
            minimum: First progress value, 0 by default
            maximum: Last progress value
            unit: UNIT_BYTES when progress values are byte counts
        """
        self.message = message
        self.minimum = minimum or 0
        self.maximum = maximum
        self.unit = unit
        self.text = None
        self.progress = self.minimum

    def update(self, value):
        self.progress = value

    def label(self, text):
        self.text = text

    def getProgress(self):
        return self.progress

    def finish(self):
        pass


class ProgressListenerManager(ProgressListener):
    """Broadcasts every call to the registered listeners."""

    def __init__(self):
        super().__init__()
        self.listeners = []

    def addListener(self, listener):
        if listener not in self.listeners:
            self.listeners.append(listener)

    def removeListener(self, listener):
        if listener in self.listeners:
            self.listeners.remove(listener)

    def __len__(self):
        return len(self.listeners)

    def init(self, message, minimum=None, maximum=None, unit=None):
        super().init(message, minimum, maximum, unit)
        for listener in self.listeners:
            listener.init(message, minimum, maximum, unit)

    def update(self, value):
        super().update(value)
        for listener in self.listeners:
            listener.update(value)

    def label(self, text):
        super().label(text)
        for listener in self.listeners:
            listener.label(text)

    def getProgress(self):
        """Progress of the first listener, all listeners see the same calls."""
        if self.listeners:
            return self.listeners[0].getProgress()
        return self.progress

    def finish(self):
        for listener in self.listeners:
            listener.finish()


class MultiProgressListener(ProgressListener):
    """
    Listener of a multi archive update. Calls about the current archive go to listener, calls
    about the archive sequence as a whole go to overallListener.
    """

    def __init__(self, listener, overallListener):
        super().__init__()
        self.listener = listener
        self.overallListener = overallListener

    def init(self, message, minimum=None, maximum=None, unit=None):
        super().init(message, minimum, maximum, unit)
        self.listener.init(message, minimum, maximum, unit)

    def update(self, value):
        super().update(value)
        self.listener.update(value)

    def label(self, text):
        super().label(text)
        self.listener.label(text)

    def getProgress(self):
        return self.listener.getProgress()

    def finish(self):
        self.listener.finish()


class BitmathTqdm(tqdm):
    """tqdm bar showing sizes and speed with formatSize."""

    def __init__(self, *args, sizeFormatter=None, **kwargs):
        self.sizeFormatter = sizeFormatter or formatSize

        if 'bar_format' not in kwargs:
            kwargs['bar_format'] = (
                '{desc}: {percentage:3.0f}%|{bar}| '
                '{n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}]'
            )

        super().__init__(*args, unit=UNIT_BYTES, unit_scale=False, **kwargs)

    @property
    def format_dict(self):
        d = super().format_dict

        rate = d.get('rate', 0) or 0
        d['rate_fmt'] = f'{self.sizeFormatter(int(rate))}/sec' if rate > 0 else '0/sec'
        d['n_fmt'] = self.sizeFormatter(d.get('n', 0))

        total = d.get('total')
        d['total_fmt'] = self.sizeFormatter(total) if total is not None else '?'

        return d

    def __bool__(self):
        # tqdm raises on bool() of a bar with total=None.
        return hasattr(self, 'n')


class ProgressBarListener(ProgressListener):
    """Terminal progress bar, one tqdm bar per phase."""

    def __init__(self, position=None, leave=True, file=None):
        super().__init__()
        self.position = position
        self.leave = leave
        self.file = file
        self.bar = None

    def init(self, message, minimum=None, maximum=None, unit=None):
        super().init(message, minimum, maximum, unit)
        self._closeBar()

        total = None if maximum is None else maximum - self.minimum
        options = dict(total=total, desc=message, position=self.position, leave=self.leave, file=self.file)

        if unit == UNIT_BYTES:
            self.bar = BitmathTqdm(ncols=100, **options)
        else:
            self.bar = tqdm(unit=unit or 'it', **options)

    def update(self, value):
        increment = value - self.progress
        super().update(value)

        if self.bar is not None and increment > 0:
            self.bar.update(increment)

    def label(self, text):
        super().label(text)
        if self.bar is not None:
            self.bar.set_postfix_str(text)

    def finish(self):
        if self.bar is not None and self.bar.total:
            remaining = self.bar.total - self.bar.n
            if remaining > 0:
                self.bar.update(remaining)
        self._closeBar()

    def _closeBar(self):
        if self.bar is not None:
            try:
                self.bar.refresh()
                self.bar.close()
            except (ValueError, AttributeError) as e:
                logger.debug(f"Exception during progress bar cleanup: {e}")
            finally:
                self.bar = None


class LoggingProgressListener(ProgressListener):
    """Logs progress every logInterval seconds, for non interactive runs."""

    def __init__(self, loggerCallback=None, logInterval=2.0, sizeFormatter=None):
        super().__init__()
        self.loggerCallback = loggerCallback or logger.info
        self.logInterval = logInterval
        self.sizeFormatter = sizeFormatter or formatSize
        self.lastLogTime = time.monotonic()
        self.lastLogProgress = 0

    def _format(self, value):
        if self.unit == UNIT_BYTES:
            return self.sizeFormatter(value)
        return str(value)

    def init(self, message, minimum=None, maximum=None, unit=None):
        super().init(message, minimum, maximum, unit)
        self.lastLogTime = time.monotonic()
        self.lastLogProgress = self.progress
        self.loggerCallback(message)

    def update(self, value):
        super().update(value)

        currentTime = time.monotonic()
        if currentTime - self.lastLogTime >= self.logInterval:
            self._logProgress(currentTime)

    def label(self, text):
        super().label(text)
        self.loggerCallback(text)

    def finish(self):
        self._logProgress(time.monotonic())

    def _logProgress(self, currentTime):
        progressMsg = f'{self.message}: {self._format(self.progress - self.minimum)}'

        if self.maximum:
            total = self.maximum - self.minimum
            percentage = (self.progress - self.minimum) * 100.0 / total if total > 0 else 100.0
            progressMsg += f'/{self._format(total)} ({percentage:.2f}%)'

        timeDelta = currentTime - self.lastLogTime
        if self.unit == UNIT_BYTES and timeDelta > 0:
            speed = (self.progress - self.lastLogProgress) / timeDelta
            progressMsg += f', {self.sizeFormatter(int(speed))}/sec'

        self.loggerCallback(progressMsg)

        self.lastLogTime = currentTime
        self.lastLogProgress = self.progress
