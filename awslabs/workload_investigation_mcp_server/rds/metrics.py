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

"""CloudWatch metrics summaries for RDS DB instances."""

from ..common.time_range import TimeRange
from ..constants import METRICS_PERIOD_SECONDS, RDS_METRICS_NAMESPACE
from ..metrics.cloudwatch import (
    MetricQuery,
    build_metric_data_queries,
    get_timestamp_range,
    query_cloudwatch_metrics,
    summarize_measure,
)
from .models import RdsMetricsSummary
from mypy_boto3_cloudwatch import CloudWatchClient


RDS_METRIC_QUERIES = [
    # Compute and memory
    MetricQuery(id='cpuUtilization', metric_name='CPUUtilization', stat='Average'),
    MetricQuery(id='cpuUtilizationMax', metric_name='CPUUtilization', stat='Maximum'),
    MetricQuery(id='freeableMemory', metric_name='FreeableMemory', stat='Average'),
    MetricQuery(id='freeableMemoryMin', metric_name='FreeableMemory', stat='Minimum'),
    MetricQuery(id='databaseConnections', metric_name='DatabaseConnections', stat='Average'),
    MetricQuery(id='databaseConnectionsMax', metric_name='DatabaseConnections', stat='Maximum'),
    # Transactions
    MetricQuery(id='commitThroughput', metric_name='CommitThroughput', stat='Average'),
    MetricQuery(id='commitThroughputMax', metric_name='CommitThroughput', stat='Maximum'),
    MetricQuery(id='deadlocks', metric_name='Deadlocks', stat='Average'),
    MetricQuery(id='deadlocksMax', metric_name='Deadlocks', stat='Maximum'),
    # Storage I/O
    MetricQuery(id='readIOPS', metric_name='ReadIOPS', stat='Average'),
    MetricQuery(id='readIOPSMax', metric_name='ReadIOPS', stat='Maximum'),
    MetricQuery(id='writeIOPS', metric_name='WriteIOPS', stat='Average'),
    MetricQuery(id='writeIOPSMax', metric_name='WriteIOPS', stat='Maximum'),
    MetricQuery(id='readLatency', metric_name='ReadLatency', stat='Average'),
    MetricQuery(id='readLatencyMax', metric_name='ReadLatency', stat='Maximum'),
    MetricQuery(id='writeLatency', metric_name='WriteLatency', stat='Average'),
    MetricQuery(id='writeLatencyMax', metric_name='WriteLatency', stat='Maximum'),
    # Network
    MetricQuery(id='networkReceive', metric_name='NetworkReceiveThroughput', stat='Average'),
    MetricQuery(id='networkTransmit', metric_name='NetworkTransmitThroughput', stat='Average'),
    # Aurora
    MetricQuery(id='auroraReplicaLag', metric_name='AuroraReplicaLag', stat='Average'),
    MetricQuery(id='auroraReplicaLagMax', metric_name='AuroraReplicaLag', stat='Maximum'),
    MetricQuery(id='bufferCacheHitRatio', metric_name='BufferCacheHitRatio', stat='Average'),
    # Disk and swap
    MetricQuery(id='diskQueueDepth', metric_name='DiskQueueDepth', stat='Average'),
    MetricQuery(id='diskQueueDepthMax', metric_name='DiskQueueDepth', stat='Maximum'),
    MetricQuery(id='swapUsage', metric_name='SwapUsage', stat='Average'),
    MetricQuery(id='swapUsageMax', metric_name='SwapUsage', stat='Maximum'),
]

# summary field -> (average query id, maximum query id, minimum query id)
MEASURES = {
    'cpu_utilization': ('cpuUtilization', 'cpuUtilizationMax', None),
    'freeable_memory': ('freeableMemory', None, 'freeableMemoryMin'),
    'database_connections': ('databaseConnections', 'databaseConnectionsMax', None),
    'commit_throughput': ('commitThroughput', 'commitThroughputMax', None),
    'deadlocks': ('deadlocks', 'deadlocksMax', None),
    'read_iops': ('readIOPS', 'readIOPSMax', None),
    'write_iops': ('writeIOPS', 'writeIOPSMax', None),
    'read_latency': ('readLatency', 'readLatencyMax', None),
    'write_latency': ('writeLatency', 'writeLatencyMax', None),
    'network_receive_throughput': ('networkReceive', None, None),
    'network_transmit_throughput': ('networkTransmit', None, None),
    'replica_lag': ('auroraReplicaLag', 'auroraReplicaLagMax', None),
    'buffer_cache_hit_ratio': ('bufferCacheHitRatio', None, None),
    'disk_queue_depth': ('diskQueueDepth', 'diskQueueDepthMax', None),
    'swap_usage': ('swapUsage', 'swapUsageMax', None),
}


async def get_rds_metrics(
    client: CloudWatchClient, instance_identifier: str, time_range: TimeRange
) -> RdsMetricsSummary:
    """Summarize the CloudWatch metrics of a DB instance over a time range.

    Args:
        client: CloudWatch boto3 client in the instance's region
        instance_identifier: DB instance identifier
        time_range: Window to summarize

    Returns:
        RdsMetricsSummary: Statistics per measure; every statistic is None without samples
    """
    queries = build_metric_data_queries(
        RDS_METRICS_NAMESPACE,
        {'DBInstanceIdentifier': instance_identifier},
        RDS_METRIC_QUERIES,
        METRICS_PERIOD_SECONDS,
    )
    series = await query_cloudwatch_metrics(client, queries, time_range)
    sample_count, first, last = get_timestamp_range(series.values())

    summary = RdsMetricsSummary(instance_identifier=instance_identifier)
    if sample_count == 0:
        return summary

    summary.sample_count = sample_count
    summary.first_timestamp = first
    summary.last_timestamp = last
    for field_name, (avg_id, max_id, min_id) in MEASURES.items():
        setattr(summary, field_name, summarize_measure(series, avg_id, max_id, min_id))
    return summary
