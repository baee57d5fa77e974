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

from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Optional


class ResourceFlag(Enum):
    ADD = '+++'
    UPDATE = '!!!'
    REMOVE = '---'
    # Only used while replaying local entries, never stored in a diff.
    NOOP = '==='


@dataclass(eq=False)
class Resource:
    """
    A named archive entry. Resources are dict keys of a diff and compare by identity, two
    archives may both hold an entry with the same name.
    """
    name: str
    checksum: int = 0
    data: Optional[BinaryIO] = None

    def __repr__(self):
        return f'{self.name}[{self.checksum:08x}]'


@dataclass(frozen=True)
class IndexRecord:
    name: str
    checksum: int
    endOffset: int


@dataclass(frozen=True)
class Range:
    """
    Byte span of one entry inside the remote archive. start is the end offset of the previous
    entry (-1 for the first), so the requested bytes are start + 1 through end inclusive.
    """
    start: int
    end: int

    @property
    def key(self):
        """Same form as the span of a Content-Range value, used to map a response part back to a name."""
        return f'{self.start + 1}-{self.end}'

    @property
    def length(self):
        return self.end - self.start

    def covers(self, other):
        return self.start <= other.start and other.end <= self.end

    @classmethod
    def fromKey(cls, key):
        """Parse 'FIRST-LAST' (inclusive byte positions)."""
        first, sep, last = key.strip().partition('-')
        if not sep:
            raise ValueError(f"Invalid byte range: {key!r}")
        return cls(int(first) - 1, int(last))
