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

"""ECS service events and historical task state change events."""

import asyncio
import json
from ..common.time_range import TimeRange
from ..common.utils import newest_first
from ..constants import HISTORICAL_EVENTS_QUERY_LIMIT
from ..metrics.logs_insights import run_insights_query
from .models import EcsTaskInfo, HistoricalTaskEvent, ServiceEvent, ServiceReference
from datetime import datetime, timezone
from dateutil import parser as dateutil_parser
from loguru import logger
from mypy_boto3_ecs import ECSClient
from mypy_boto3_logs import CloudWatchLogsClient
from typing import Dict, Iterable, List, Optional


def unique_services(tasks: Iterable[EcsTaskInfo]) -> List[ServiceReference]:
    """Return the distinct services owning the given tasks, in order of first appearance."""
    services: Dict[str, ServiceReference] = {}
    for task in tasks:
        if not task.service_name:
            continue
        service = ServiceReference(
            region=task.region, cluster_name=task.cluster_name, service_name=task.service_name
        )
        services.setdefault(service.key, service)
    return list(services.values())


async def get_service_events(
    client: ECSClient, service: ServiceReference
) -> List[ServiceEvent]:
    """Fetch the recent events of an ECS service, newest first.

    Args:
        client: ECS boto3 client for the service's region
        service: The service to describe

    Returns:
        List of events, deduplicated by id
    """
    response = await asyncio.to_thread(
        client.describe_services, cluster=service.cluster_name, services=[service.service_name]
    )
    services = response.get('services', [])
    if not services:
        logger.warning(f'Service {service.key} was not returned by DescribeServices')
        return []

    events = [
        ServiceEvent(
            id=event.get('id', ''),
            created_at=event.get('createdAt'),
            message=event.get('message', ''),
        )
        for event in services[0].get('events', [])
    ]
    return newest_first(events, key=lambda e: e.id, timestamp=lambda e: e.created_at)


def build_historical_events_query(task_id: str) -> str:
    """Build the Logs Insights query finding state change events of one task."""
    return (
        'fields @timestamp, @message'
        f' | filter @message like /{task_id}/'
        ' | sort @timestamp desc'
        f' | limit {HISTORICAL_EVENTS_QUERY_LIMIT}'
    )


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = dateutil_parser.parse(value)
    except (ValueError, OverflowError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_historical_event(row: Dict[str, str]) -> HistoricalTaskEvent:
    """Parse one state change event row.

    The message is the EventBridge event as JSON; task fields are read from its
    detail. A message that is not JSON yields an event carrying only the timestamp.
    """
    timestamp = _parse_timestamp(row.get('@timestamp'))
    try:
        message = json.loads(row.get('@message', ''))
    except ValueError:
        return HistoricalTaskEvent(timestamp=timestamp)
    if not isinstance(message, dict):
        return HistoricalTaskEvent(timestamp=timestamp)

    detail = message.get('detail')
    if not isinstance(detail, dict):
        detail = message
    return HistoricalTaskEvent(
        timestamp=_parse_timestamp(message.get('time')) or timestamp,
        task_arn=detail.get('taskArn'),
        last_status=detail.get('lastStatus'),
        desired_status=detail.get('desiredStatus'),
        stopped_reason=detail.get('stoppedReason'),
        stop_code=detail.get('stopCode'),
        cluster_arn=detail.get('clusterArn'),
    )


async def get_historical_task_events(
    client: CloudWatchLogsClient,
    log_group_name: str,
    task_id: str,
    time_range: TimeRange,
    max_wait: float,
    poll_interval: float,
) -> Optional[List[HistoricalTaskEvent]]:
    """Query EventBridge state change events of a task that ECS no longer reports.

    Returns:
        Events newest first, or None when the log group does not exist
    """
    rows = await run_insights_query(
        client,
        log_group_name,
        build_historical_events_query(task_id),
        time_range,
        max_wait=max_wait,
        poll_interval=poll_interval,
    )
    if rows is None:
        return None

    events = [
        event
        for event in (parse_historical_event(row) for row in rows)
        if not event.task_arn or task_id in event.task_arn
    ]
    return newest_first(
        events,
        key=lambda e: (e.timestamp, e.task_arn, e.last_status, e.desired_status),
        timestamp=lambda e: e.timestamp,
    )
