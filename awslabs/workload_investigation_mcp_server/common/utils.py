# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
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

"""Utility functions for the Workload Investigation MCP Server."""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, TypeVar


T = TypeVar('T')


def remove_null_values(d: Dict) -> Dict:
    """Return a new dictionary with the key-value pair of any null value removed."""
    return {k: v for k, v in d.items() if v is not None}


def prefixed_error(prefix: str, message: str) -> str:
    """Tag an error message with the investigation phase that produced it."""
    return f'{prefix}: {message}'


def to_epoch_seconds(value: datetime) -> int:
    """Convert a datetime to whole seconds since the epoch (naive values are UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def newest_first(
    records: Iterable[T],
    key: Callable[[T], Hashable],
    timestamp: Callable[[T], Optional[datetime]],
) -> List[T]:
    """Deduplicate records by key, keeping the first occurrence, and sort newest first.

    Records without a timestamp sort after every timestamped record.
    """
    seen = set()
    unique: List[T] = []
    for record in records:
        record_key = key(record)
        if record_key in seen:
            continue
        seen.add(record_key)
        unique.append(record)

    def sort_key(record: T) -> Any:
        value = timestamp(record)
        if value is None:
            return (1, 0.0)
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return (0, -value.timestamp())

    return sorted(unique, key=sort_key)
