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

"""Time range parsing and defaulting for investigation queries."""

from .exceptions import InvestigationConfigurationError
from datetime import datetime, timedelta, timezone
from dateutil import parser as dateutil_parser
from loguru import logger
from pydantic import BaseModel, Field
from typing import Optional, Union


class TimeRange(BaseModel):
    """A closed time window for metric and log queries."""

    start_time: datetime = Field(..., description='Start of the window (UTC)')
    end_time: datetime = Field(..., description='End of the window (UTC)')


def parse_timestamp(value: Union[str, datetime], field_name: str) -> datetime:
    """Parse an ISO 8601 timestamp into a timezone-aware UTC datetime.

    Raises:
        InvestigationConfigurationError: If the value is not a valid ISO 8601 timestamp
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = dateutil_parser.isoparse(value)
        except (ValueError, OverflowError):
            raise InvestigationConfigurationError(
                f"Invalid {field_name}: '{value}' is not a valid ISO 8601 date"
            ) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_time_range(
    start_time: Optional[Union[str, datetime]], end_time: Optional[Union[str, datetime]]
) -> Optional[TimeRange]:
    """Validate an explicit time range supplied by the caller.

    Both bounds must be given for the range to apply. A single bound is ignored
    with a warning and the query-specific default window is used instead.

    Returns:
        The explicit TimeRange, or None when the defaults should apply

    Raises:
        InvestigationConfigurationError: If a bound is unparsable or start is not before end
    """
    if start_time and end_time:
        start = parse_timestamp(start_time, 'start_time')
        end = parse_timestamp(end_time, 'end_time')
        if start >= end:
            raise InvestigationConfigurationError(
                f'start_time must be before end_time (received start: {start_time}, end: {end_time})'
            )
        return TimeRange(start_time=start, end_time=end)

    if start_time:
        logger.warning(
            f'start_time {start_time} provided without end_time, falling back to default time range'
        )
    elif end_time:
        logger.warning(
            f'end_time {end_time} provided without start_time, falling back to default time range'
        )
    return None


def resolve_time_range(
    explicit: Optional[TimeRange], lookback_hours: float, now: Optional[datetime] = None
) -> TimeRange:
    """Return the explicit range verbatim, or a lookback window ending now."""
    if explicit is not None:
        return explicit
    end = now or datetime.now(timezone.utc)
    return TimeRange(start_time=end - timedelta(hours=lookback_hours), end_time=end)
