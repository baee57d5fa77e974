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

import logging

from collections import Counter
from typing import Dict, Iterable

from zipupdate.Kernel import getLogger
from zipupdate.Resource import Resource, ResourceFlag

logger = getLogger(__name__)


def diff(local: Iterable[Resource], remote: Iterable[Resource]) -> Dict[Resource, ResourceFlag]:
    """
    Compare the local resource set with the remote one.

    Every local resource starts out as REMOVE. A remote resource without a local namesake is an
    ADD, a namesake with a different checksum becomes UPDATE (keyed by the local resource) and
    an identical namesake is dropped from the result. Kept resources are therefore absent.

    Args:
        local: Resources of the local archive, in archive order
        remote: Resources of the remote index, in index order

    Returns:
        dict: Resource -> ResourceFlag, local resources first then additions
    """
    result = {resource: ResourceFlag.REMOVE for resource in local}

    localByName = {}
    for resource in result:
        localByName.setdefault(resource.name, resource)

    for remoteResource in remote:
        localResource = localByName.get(remoteResource.name)
        if localResource is None:
            result[remoteResource] = ResourceFlag.ADD
        elif localResource.checksum == remoteResource.checksum:
            result.pop(localResource, None)
        else:
            result[localResource] = ResourceFlag.UPDATE

    return result


def summarizeDiff(diff, kept=None):
    """Count the flags of a diff, kept is the number of unchanged entries when known."""
    counts = Counter(diff.values())
    summary = {
        flag.name.lower(): counts.get(flag, 0)
        for flag in (ResourceFlag.ADD, ResourceFlag.UPDATE, ResourceFlag.REMOVE)
    }
    if kept is not None:
        summary['keep'] = kept
    return summary


def logDiff(diff, kept=None, log=None):
    log = log or logger

    summary = summarizeDiff(diff, kept)
    log.info(', '.join(f'{count} to {action}' for action, count in summary.items()))

    if log.isEnabledFor(logging.DEBUG):
        for resource, flag in diff.items():
            log.debug(f'{flag.value} {resource!r}')

    return summary
