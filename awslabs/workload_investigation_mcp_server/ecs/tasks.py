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

"""Batched ECS DescribeTasks lookups grouped by region and cluster."""

import asyncio
import re
from ..common.clients import ClientRegistry
from ..common.exceptions import get_error_message
from ..common.fanout import settle_all
from ..constants import DESCRIBE_TASKS_BATCH_SIZE
from .models import (
    ContainerInfo,
    DescribeTasksResult,
    EcsTaskInfo,
    ParsedTaskArn,
    TaskFailure,
)
from loguru import logger
from mypy_boto3_ecs import ECSClient
from typing import Any, Dict, List, Optional, Sequence, Tuple


SERVICE_GROUP_REGEX = re.compile(r'^service:(.+)$')
MISSING_REASON = 'MISSING'

FOUND = 'found'
NOT_FOUND = 'not_found'
FAILED = 'failed'

# arn -> (bucket, task info or failure reason)
Classification = Dict[str, Tuple[str, Any]]


def extract_service_name(group: Optional[str]) -> Optional[str]:
    """Return the service name from a task group such as 'service:my-service'."""
    if not group:
        return None
    match = SERVICE_GROUP_REGEX.match(group)
    return match.group(1) if match else None


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def format_container_info(container: Dict[str, Any]) -> ContainerInfo:
    """Format a container from a DescribeTasks response."""
    return ContainerInfo(
        name=container.get('name', ''),
        image=container.get('image'),
        last_status=container.get('lastStatus'),
        exit_code=container.get('exitCode'),
        reason=container.get('reason'),
        health_status=container.get('healthStatus'),
        cpu=_optional_str(container.get('cpu')),
        memory=_optional_str(container.get('memory')),
        memory_reservation=_optional_str(container.get('memoryReservation')),
    )


def format_task_info(task: Dict[str, Any], parsed: ParsedTaskArn) -> EcsTaskInfo:
    """Format a task from a DescribeTasks response.

    Args:
        task: Raw task dictionary from ECS
        parsed: The requested ARN, supplying region and cluster

    Returns:
        EcsTaskInfo: Formatted task snapshot
    """
    group = task.get('group')
    return EcsTaskInfo(
        task_arn=task.get('taskArn', parsed.full_arn),
        task_id=parsed.task_id,
        cluster_name=parsed.cluster_name,
        region=parsed.region,
        task_definition_arn=task.get('taskDefinitionArn'),
        group=group,
        service_name=extract_service_name(group),
        last_status=task.get('lastStatus'),
        desired_status=task.get('desiredStatus'),
        health_status=task.get('healthStatus'),
        stop_code=task.get('stopCode'),
        stopped_reason=task.get('stoppedReason'),
        launch_type=task.get('launchType'),
        platform_version=task.get('platformVersion'),
        cpu=task.get('cpu'),
        memory=task.get('memory'),
        availability_zone=task.get('availabilityZone'),
        connectivity=task.get('connectivity'),
        created_at=task.get('createdAt'),
        started_at=task.get('startedAt'),
        stopping_at=task.get('stoppingAt'),
        stopped_at=task.get('stoppedAt'),
        pull_started_at=task.get('pullStartedAt'),
        pull_stopped_at=task.get('pullStoppedAt'),
        containers=[format_container_info(c) for c in task.get('containers', [])],
        tags={tag['key']: tag.get('value', '') for tag in task.get('tags', []) if 'key' in tag},
    )


def _classify(classification: Classification, arn: str, bucket: str, detail: Any = None) -> None:
    # first classification wins so every ARN lands in exactly one bucket
    classification.setdefault(arn, (bucket, detail))


async def _describe_cluster_tasks(
    client: ECSClient,
    cluster_name: str,
    tasks: Sequence[ParsedTaskArn],
    classification: Classification,
) -> None:
    requested = {task.full_arn: task for task in tasks}
    arns = list(requested)

    # batches run one after another within a cluster
    for start in range(0, len(arns), DESCRIBE_TASKS_BATCH_SIZE):
        batch = arns[start : start + DESCRIBE_TASKS_BATCH_SIZE]
        logger.debug(f'Describing {len(batch)} task(s) in cluster {cluster_name}')
        try:
            response = await asyncio.to_thread(
                client.describe_tasks, cluster=cluster_name, tasks=batch, include=['TAGS']
            )
        except Exception as e:
            reason = get_error_message(e)
            logger.error(f'DescribeTasks failed for cluster {cluster_name}: {reason}')
            for arn in batch:
                _classify(classification, arn, FAILED, reason)
            continue

        for task in response.get('tasks', []):
            arn = task.get('taskArn')
            if arn in requested:
                _classify(classification, arn, FOUND, format_task_info(task, requested[arn]))

        for failure in response.get('failures', []):
            arn = failure.get('arn')
            if arn not in requested:
                continue
            reason = failure.get('reason', 'Unknown')
            if reason == MISSING_REASON:
                _classify(classification, arn, NOT_FOUND)
            else:
                detail = failure.get('detail')
                _classify(classification, arn, FAILED, f'{reason}: {detail}' if detail else reason)

        for arn in batch:
            _classify(classification, arn, NOT_FOUND)


async def describe_ecs_tasks(
    tasks: Sequence[ParsedTaskArn], ecs_clients: ClientRegistry, timeout: float
) -> DescribeTasksResult:
    """Look up the status of tasks, issuing the fewest DescribeTasks calls possible.

    Tasks are grouped by region, then by cluster. Clusters are described
    concurrently; batches within a cluster run sequentially.

    Args:
        tasks: Parsed task ARNs to describe
        ecs_clients: ECS client registry
        timeout: Budget in seconds for each cluster

    Returns:
        DescribeTasksResult: Every requested ARN in exactly one of tasks, not_found or failures
    """
    by_region: Dict[str, Dict[str, List[ParsedTaskArn]]] = {}
    for task in tasks:
        by_region.setdefault(task.region, {}).setdefault(task.cluster_name, []).append(task)

    partitions: Dict[Tuple[str, str], List[ParsedTaskArn]] = {
        (region, cluster_name): cluster_tasks
        for region, clusters in by_region.items()
        for cluster_name, cluster_tasks in clusters.items()
    }
    classifications: Dict[Tuple[str, str], Classification] = {key: {} for key in partitions}

    def describe(key: Tuple[str, str]):
        region, cluster_name = key
        return lambda: _describe_cluster_tasks(
            ecs_clients.get_client(region),
            cluster_name,
            partitions[key],
            classifications[key],
        )

    outcomes = await settle_all(
        {key: describe(key) for key in partitions}, timeout, 'describeTasks'
    )

    result = DescribeTasksResult()
    seen = set()
    for key, partition_tasks in partitions.items():
        outcome = outcomes.get(key)
        classification = classifications[key]
        for task in partition_tasks:
            arn = task.full_arn
            if arn in seen:
                continue
            seen.add(arn)
            if outcome is not None and not outcome.success:
                _classify(classification, arn, FAILED, outcome.error)
            _classify(classification, arn, NOT_FOUND)
            bucket, detail = classification[arn]
            if bucket == FOUND:
                result.tasks.append(detail)
            elif bucket == NOT_FOUND:
                result.not_found.append(arn)
            else:
                result.failures.append(TaskFailure(task_arn=arn, reason=detail))

    logger.info(
        f'Described {len(seen)} task(s): {len(result.tasks)} found, '
        f'{len(result.not_found)} not found, {len(result.failures)} failed'
    )
    return result
