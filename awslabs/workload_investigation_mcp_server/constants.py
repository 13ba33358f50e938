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

"""Constants for the Workload Investigation MCP Server."""

from typing import Dict, Optional


# Identifier limits per investigation
MAX_ECS_TASKS = 100
MAX_RDS_IDENTIFIERS = 20

# Lookback windows used when no explicit time range is provided
ECS_METRICS_DEFAULT_LOOKBACK_HOURS = 24
ECS_HISTORICAL_EVENTS_DEFAULT_LOOKBACK_HOURS = 24
RDS_METRICS_DEFAULT_LOOKBACK_HOURS = 24
PERFORMANCE_INSIGHTS_DEFAULT_LOOKBACK_HOURS = 1
MIN_LOOKBACK_HOURS = 1
MAX_LOOKBACK_HOURS = 168

# Metric sampling period (1-minute granularity)
METRICS_PERIOD_SECONDS = 60

# ECS DescribeTasks accepts up to 100 tasks per call; smaller batches keep responses compact
DESCRIBE_TASKS_BATCH_SIZE = 50

# Step budgets
DEFAULT_STEP_TIMEOUT_SECONDS = 30.0
HISTORICAL_EVENTS_MIN_TIMEOUT_SECONDS = 60.0
DEFAULT_QUERY_MAX_WAIT_SECONDS = 20.0
# Share of a step budget a Logs Insights query may wait, leaving time to stop it
QUERY_WAIT_BUDGET_FRACTION = 0.8
DEFAULT_QUERY_POLL_INTERVAL_SECONDS = 1.0

# ECS log sources
DEFAULT_ECS_EVENTS_LOG_GROUP = '/aws/events/ecs-task-state-change'
CONTAINER_INSIGHTS_LOG_GROUP_TEMPLATE = '/aws/ecs/containerinsights/{cluster_name}/performance'
CONTAINER_INSIGHTS_NAMESPACE = 'ECS/ContainerInsights'
HISTORICAL_EVENTS_QUERY_LIMIT = 100

# Performance Insights
DEFAULT_TOP_SQL_LIMIT = 10
MAX_TOP_SQL_LIMIT = 50
PI_NOT_ENABLED_NOTE = 'Performance Insights is not enabled for this instance'

# RDS CloudWatch metrics
RDS_METRICS_NAMESPACE = 'AWS/RDS'

# Error prefixes for per-phase error strings
ERROR_PREFIX_TASK_STATUS = 'Task status'
ERROR_PREFIX_INSTANCE_STATUS = 'Instance status'
ERROR_PREFIX_METRICS = 'Metrics'
ERROR_PREFIX_HISTORICAL = 'Historical'
ERROR_PREFIX_SERVICE_EVENTS = 'Service events'
ERROR_PREFIX_TOP_SQL = 'Top SQL'

# Error messages returned by MCP tools
ERROR_INVALID_OPTIONS = 'Invalid investigation options: {}'
ERROR_UNEXPECTED = 'Unexpected error: {}'

# RDS health thresholds used when flagging formatted metrics
RDS_THRESHOLDS = {
    'cpu_warning_percent': 80,
    'cpu_critical_percent': 95,
    # freeable memory as a percentage of instance memory
    'memory_warning_percent': 25,
    'memory_critical_percent': 10,
    'replica_lag_warning_ms': 100,
    'replica_lag_critical_ms': 1000,
    'buffer_cache_hit_warning_percent': 95,
    'buffer_cache_hit_critical_percent': 90,
    'disk_queue_depth_warning': 10,
    'disk_queue_depth_critical': 50,
    'deadlocks_warning': 0,
    'deadlocks_critical_per_second': 1,
}

# Approximate memory of common memory-optimized instance classes.
# Not exhaustive; unknown classes resolve to None.
INSTANCE_CLASS_MEMORY_GB: Dict[str, int] = {
    'db.r5.large': 16,
    'db.r5.xlarge': 32,
    'db.r5.2xlarge': 64,
    'db.r5.4xlarge': 128,
    'db.r5.8xlarge': 256,
    'db.r5.12xlarge': 384,
    'db.r5.16xlarge': 512,
    'db.r5.24xlarge': 768,
    'db.r6g.large': 16,
    'db.r6g.xlarge': 32,
    'db.r6g.2xlarge': 64,
    'db.r6g.4xlarge': 128,
    'db.r6g.8xlarge': 256,
    'db.r6g.12xlarge': 384,
    'db.r6g.16xlarge': 512,
    'db.r6i.large': 16,
    'db.r6i.xlarge': 32,
    'db.r6i.2xlarge': 64,
    'db.r6i.4xlarge': 128,
    'db.r6i.8xlarge': 256,
    'db.r6i.12xlarge': 384,
    'db.r6i.16xlarge': 512,
    'db.r6i.24xlarge': 768,
    'db.r6i.32xlarge': 1024,
}


def get_instance_memory_gb(instance_class: Optional[str]) -> Optional[int]:
    """Return the approximate memory in GB for an instance class, or None if unknown."""
    if not instance_class:
        return None
    return INSTANCE_CLASS_MEMORY_GB.get(instance_class)
