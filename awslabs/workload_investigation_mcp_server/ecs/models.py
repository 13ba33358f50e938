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

"""Data models for ECS task investigations."""

from ..constants import (
    ECS_HISTORICAL_EVENTS_DEFAULT_LOOKBACK_HOURS,
    MAX_LOOKBACK_HOURS,
    MIN_LOOKBACK_HOURS,
)
from ..metrics.statistics import StatisticSummary
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional


class ParsedTaskArn(BaseModel):
    """Structured form of an ECS task ARN."""

    model_config = ConfigDict(frozen=True)

    region: str = Field(..., description='AWS region')
    account_id: str = Field(..., description='AWS account id')
    cluster_name: str = Field(..., description='ECS cluster name')
    task_id: str = Field(..., description='ECS task id')
    full_arn: str = Field(..., description='The ARN exactly as parsed')

    def to_arn(self) -> str:
        """Rebuild the task ARN from its parts."""
        return f'arn:aws:ecs:{self.region}:{self.account_id}:task/{self.cluster_name}/{self.task_id}'


class ContainerInfo(BaseModel):
    """A container of an ECS task."""

    name: str = Field(..., description='Container name')
    image: Optional[str] = Field(None, description='Container image')
    last_status: Optional[str] = Field(None, description='Last known container status')
    exit_code: Optional[int] = Field(None, description='Exit code, if stopped')
    reason: Optional[str] = Field(None, description='Reason the container stopped')
    health_status: Optional[str] = Field(None, description='Container health status')
    cpu: Optional[str] = Field(None, description='CPU units reserved')
    memory: Optional[str] = Field(None, description='Hard memory limit (MiB)')
    memory_reservation: Optional[str] = Field(None, description='Soft memory limit (MiB)')


class EcsTaskInfo(BaseModel):
    """Snapshot of an ECS task's current state."""

    task_arn: str = Field(..., description='Task ARN')
    task_id: str = Field(..., description='Task id')
    cluster_name: str = Field(..., description='Cluster name')
    region: str = Field(..., description='AWS region')
    task_definition_arn: Optional[str] = Field(None, description='Task definition ARN')
    group: Optional[str] = Field(None, description='Task group, e.g. service:my-service')
    service_name: Optional[str] = Field(None, description='Owning service, parsed from the group')
    last_status: Optional[str] = Field(None, description='Last known task status')
    desired_status: Optional[str] = Field(None, description='Desired task status')
    health_status: Optional[str] = Field(None, description='Task health status')
    stop_code: Optional[str] = Field(None, description='Stop code, if stopped')
    stopped_reason: Optional[str] = Field(None, description='Reason the task stopped')
    launch_type: Optional[str] = Field(None, description='Launch type')
    platform_version: Optional[str] = Field(None, description='Fargate platform version')
    cpu: Optional[str] = Field(None, description='Task CPU units')
    memory: Optional[str] = Field(None, description='Task memory (MiB)')
    availability_zone: Optional[str] = Field(None, description='Availability zone')
    connectivity: Optional[str] = Field(None, description='Connectivity status')
    created_at: Optional[datetime] = Field(None, description='Creation time')
    started_at: Optional[datetime] = Field(None, description='Start time')
    stopping_at: Optional[datetime] = Field(None, description='Time the task began stopping')
    stopped_at: Optional[datetime] = Field(None, description='Stop time')
    pull_started_at: Optional[datetime] = Field(None, description='Image pull start time')
    pull_stopped_at: Optional[datetime] = Field(None, description='Image pull stop time')
    containers: List[ContainerInfo] = Field(default_factory=list, description='Containers')
    tags: Dict[str, str] = Field(default_factory=dict, description='Task tags')


class TaskFailure(BaseModel):
    """A task whose status could not be retrieved."""

    task_arn: str = Field(..., description='Task ARN')
    reason: str = Field(..., description='Failure reason')


class DescribeTasksResult(BaseModel):
    """Batch status lookup outcome. Every requested ARN lands in exactly one list."""

    tasks: List[EcsTaskInfo] = Field(default_factory=list, description='Tasks found')
    not_found: List[str] = Field(default_factory=list, description='ARNs reported missing')
    failures: List[TaskFailure] = Field(default_factory=list, description='ARNs that failed')


class ServiceEvent(BaseModel):
    """An ECS service event."""

    id: str = Field(..., description='Event id')
    created_at: Optional[datetime] = Field(None, description='Event time')
    message: str = Field('', description='Event message')


class ServiceReference(BaseModel):
    """An ECS service identified by region, cluster and name."""

    model_config = ConfigDict(frozen=True)

    region: str = Field(..., description='AWS region')
    cluster_name: str = Field(..., description='Cluster name')
    service_name: str = Field(..., description='Service name')

    @property
    def key(self) -> str:
        """Unique key of the service."""
        return f'{self.region}:{self.cluster_name}:{self.service_name}'


class ServiceInvestigationResult(BaseModel):
    """Recent events of one service."""

    service: ServiceReference = Field(..., description='The service')
    events: List[ServiceEvent] = Field(default_factory=list, description='Events, newest first')


class HistoricalTaskEvent(BaseModel):
    """A task state change event recorded by EventBridge."""

    timestamp: Optional[datetime] = Field(None, description='Event time')
    task_arn: Optional[str] = Field(None, description='Task ARN')
    last_status: Optional[str] = Field(None, description='Task status at the time')
    desired_status: Optional[str] = Field(None, description='Desired status at the time')
    stopped_reason: Optional[str] = Field(None, description='Reason the task stopped')
    stop_code: Optional[str] = Field(None, description='Stop code')
    cluster_arn: Optional[str] = Field(None, description='Cluster ARN')


class ContainerMetricsSummary(BaseModel):
    """Container Insights utilization summary for a task."""

    task_id: str = Field(..., description='Task id')
    cluster_name: str = Field(..., description='Cluster name')
    region: str = Field(..., description='AWS region')
    sample_count: int = Field(0, description='Number of samples')
    first_timestamp: Optional[datetime] = Field(None, description='First observed sample')
    last_timestamp: Optional[datetime] = Field(None, description='Last observed sample')
    cpu_utilization: StatisticSummary = Field(
        default_factory=StatisticSummary, description='CPU utilization (%)'
    )
    memory_utilization: StatisticSummary = Field(
        default_factory=StatisticSummary, description='Memory utilization (%)'
    )


class MetricsSource(str, Enum):
    """Strategy used to compute Container Insights utilization."""

    LOGS_INSIGHTS = 'logs_insights'
    CLOUDWATCH_METRICS = 'cloudwatch_metrics'


class EcsInvestigationOptions(BaseModel):
    """Options for an ECS task investigation."""

    include_metrics: bool = Field(True, description='Gather Container Insights utilization')
    include_events: bool = Field(True, description='Gather service and historical events')
    start_time: Optional[str] = Field(None, description='Explicit window start (ISO 8601)')
    end_time: Optional[str] = Field(None, description='Explicit window end (ISO 8601)')
    lookback_hours: int = Field(
        ECS_HISTORICAL_EVENTS_DEFAULT_LOOKBACK_HOURS,
        ge=MIN_LOOKBACK_HOURS,
        le=MAX_LOOKBACK_HOURS,
        description='Historical event lookback when no explicit window is given',
    )
    metrics_source: MetricsSource = Field(
        MetricsSource.LOGS_INSIGHTS, description='Utilization strategy'
    )


class TaskInvestigationResult(BaseModel):
    """Everything gathered for one task."""

    task: ParsedTaskArn = Field(..., description='The parsed task ARN')
    status: Optional[EcsTaskInfo] = Field(None, description='Current status, None if not found')
    not_found: bool = Field(False, description='Whether ECS reported the task missing')
    metrics: Optional[ContainerMetricsSummary] = Field(None, description='Utilization summary')
    historical_events: List[HistoricalTaskEvent] = Field(
        default_factory=list, description='State change events, newest first'
    )
    notes: List[str] = Field(default_factory=list, description='Informational notes')
    errors: List[str] = Field(default_factory=list, description='Errors from individual phases')


class EcsRunSummary(BaseModel):
    """Counts folded from the per-task results."""

    total_requested: int = 0
    found: int = 0
    not_found: int = 0
    failed: int = 0
    with_metrics: int = 0
    with_events: int = 0
    services_queried: int = 0
    total_errors: int = 0


class EcsInvestigationReport(BaseModel):
    """Result of an ECS task investigation."""

    results: List[TaskInvestigationResult] = Field(default_factory=list)
    services: List[ServiceInvestigationResult] = Field(default_factory=list)
    unparsed_identifiers: List[str] = Field(
        default_factory=list, description='Inputs without a parseable task ARN'
    )
    errors: List[str] = Field(default_factory=list, description='Run-level errors')
    summary: EcsRunSummary = Field(default_factory=EcsRunSummary)
