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

"""Container Insights utilization for ECS tasks.

Two strategies are available. The Logs Insights strategy lets CloudWatch compute
utilization for every performance log event before aggregating. The CloudWatch
metrics strategy fetches the utilized and reserved series and computes
utilization per sample on the client.
"""

from ..common.time_range import TimeRange
from ..constants import (
    CONTAINER_INSIGHTS_LOG_GROUP_TEMPLATE,
    CONTAINER_INSIGHTS_NAMESPACE,
    METRICS_PERIOD_SECONDS,
)
from ..metrics.cloudwatch import (
    MetricQuery,
    build_metric_data_queries,
    query_cloudwatch_metrics,
)
from ..metrics.logs_insights import run_insights_query
from ..metrics.statistics import (
    StatisticSummary,
    bounded_summary,
    pair_with_reserved,
    summarize_utilization,
)
from .models import ContainerMetricsSummary, EcsTaskInfo, ParsedTaskArn
from datetime import datetime, timezone
from dateutil import parser as dateutil_parser
from mypy_boto3_cloudwatch import CloudWatchClient
from mypy_boto3_logs import CloudWatchLogsClient
from typing import Dict, Optional


CONTAINER_INSIGHTS_QUERIES = [
    MetricQuery(id='cpuUtilized', metric_name='CpuUtilized'),
    MetricQuery(id='cpuReserved', metric_name='CpuReserved'),
    MetricQuery(id='memoryUtilized', metric_name='MemoryUtilized'),
    MetricQuery(id='memoryReserved', metric_name='MemoryReserved'),
]


def container_insights_log_group(cluster_name: str) -> str:
    """Return the Container Insights performance log group of a cluster."""
    return CONTAINER_INSIGHTS_LOG_GROUP_TEMPLATE.format(cluster_name=cluster_name)


def build_utilization_query(task_id: str) -> str:
    """Build the Logs Insights query summarizing the utilization of one task.

    Utilization is computed on every performance event before stats aggregates it.
    """
    return (
        'fields @timestamp, CpuUtilized, CpuReserved, MemoryUtilized, MemoryReserved'
        f' | filter Type = "Task" and TaskId = "{task_id}"'
        ' | filter CpuReserved > 0 and MemoryReserved > 0'
        ' | fields CpuUtilized / CpuReserved * 100 as cpuUtilization,'
        ' MemoryUtilized / MemoryReserved * 100 as memoryUtilization'
        ' | stats count(*) as sampleCount,'
        ' min(@timestamp) as firstTimestamp,'
        ' max(@timestamp) as lastTimestamp,'
        ' avg(cpuUtilization) as avgCpu,'
        ' max(cpuUtilization) as maxCpu,'
        ' min(cpuUtilization) as minCpu,'
        ' avg(memoryUtilization) as avgMemory,'
        ' max(memoryUtilization) as maxMemory,'
        ' min(memoryUtilization) as minMemory'
    )


def _to_float(value: Optional[str]) -> Optional[float]:
    if value is None or value == '':
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _to_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = dateutil_parser.parse(value)
    except (ValueError, OverflowError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _rounded(summary: StatisticSummary) -> StatisticSummary:
    if not summary.has_data:
        return summary
    return StatisticSummary(
        avg=round(summary.avg, 2), max=round(summary.max, 2), min=round(summary.min, 2)
    )


def parse_utilization_row(
    row: Optional[Dict[str, str]], task: ParsedTaskArn
) -> ContainerMetricsSummary:
    """Turn the single stats row of the utilization query into a summary."""
    summary = ContainerMetricsSummary(
        task_id=task.task_id, cluster_name=task.cluster_name, region=task.region
    )
    sample_count = int(_to_float((row or {}).get('sampleCount')) or 0)
    if row is None or sample_count == 0:
        return summary

    summary.sample_count = sample_count
    summary.first_timestamp = _to_datetime(row.get('firstTimestamp'))
    summary.last_timestamp = _to_datetime(row.get('lastTimestamp'))
    summary.cpu_utilization = _rounded(
        bounded_summary(
            _to_float(row.get('avgCpu')),
            _to_float(row.get('maxCpu')),
            _to_float(row.get('minCpu')),
        )
    )
    summary.memory_utilization = _rounded(
        bounded_summary(
            _to_float(row.get('avgMemory')),
            _to_float(row.get('maxMemory')),
            _to_float(row.get('minMemory')),
        )
    )
    return summary


async def get_container_insights_summary(
    client: CloudWatchLogsClient,
    task: ParsedTaskArn,
    time_range: TimeRange,
    max_wait: float,
    poll_interval: float,
) -> Optional[ContainerMetricsSummary]:
    """Summarize task utilization with a Logs Insights query over performance events.

    Returns:
        The summary, or None when Container Insights is not enabled for the cluster
    """
    rows = await run_insights_query(
        client,
        container_insights_log_group(task.cluster_name),
        build_utilization_query(task.task_id),
        time_range,
        max_wait=max_wait,
        poll_interval=poll_interval,
    )
    if rows is None:
        return None
    return parse_utilization_row(rows[0] if rows else None, task)


def task_definition_family(task_definition_arn: Optional[str]) -> Optional[str]:
    """Return the family of a task definition ARN such as '...:task-definition/web:12'."""
    if not task_definition_arn or '/' not in task_definition_arn:
        return None
    return task_definition_arn.rsplit('/', 1)[1].split(':', 1)[0] or None


def container_insights_dimensions(task: EcsTaskInfo) -> Optional[Dict[str, str]]:
    """Dimensions of the task-level Container Insights metrics, None if they cannot be built."""
    dimensions = {'ClusterName': task.cluster_name}
    if task.service_name:
        dimensions['ServiceName'] = task.service_name
    else:
        family = task_definition_family(task.task_definition_arn)
        if family is None:
            return None
        dimensions['TaskDefinitionFamily'] = family
    dimensions['TaskId'] = task.task_id
    return dimensions


async def get_container_insights_metrics(
    client: CloudWatchClient, task: EcsTaskInfo, time_range: TimeRange
) -> Optional[ContainerMetricsSummary]:
    """Summarize task utilization from Container Insights CloudWatch metrics.

    Returns:
        The summary, or None when the task's metric dimensions cannot be determined
    """
    dimensions = container_insights_dimensions(task)
    if dimensions is None:
        return None

    series = await query_cloudwatch_metrics(
        client,
        build_metric_data_queries(
            CONTAINER_INSIGHTS_NAMESPACE,
            dimensions,
            CONTAINER_INSIGHTS_QUERIES,
            METRICS_PERIOD_SECONDS,
        ),
        time_range,
    )

    def points(query_id: str):
        return series[query_id].points() if query_id in series else []

    cpu_pairs = pair_with_reserved(points('cpuUtilized'), points('cpuReserved'), 'CPU')
    memory_pairs = pair_with_reserved(
        points('memoryUtilized'), points('memoryReserved'), 'memory'
    )

    summary = ContainerMetricsSummary(
        task_id=task.task_id, cluster_name=task.cluster_name, region=task.region
    )
    sample_count = max(len(cpu_pairs), len(memory_pairs))
    if sample_count == 0:
        return summary

    timestamps = [
        timestamp
        for query_id in ('cpuUtilized', 'memoryUtilized')
        for timestamp, _ in points(query_id)
    ]
    summary.sample_count = sample_count
    summary.first_timestamp = min(timestamps)
    summary.last_timestamp = max(timestamps)
    summary.cpu_utilization = summarize_utilization(cpu_pairs)
    summary.memory_utilization = summarize_utilization(memory_pairs)
    return summary
