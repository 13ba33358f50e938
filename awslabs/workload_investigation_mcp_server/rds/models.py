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

"""Data models for RDS instance investigations."""

from ..constants import (
    DEFAULT_TOP_SQL_LIMIT,
    MAX_LOOKBACK_HOURS,
    MAX_TOP_SQL_LIMIT,
    MIN_LOOKBACK_HOURS,
    RDS_METRICS_DEFAULT_LOOKBACK_HOURS,
)
from ..metrics.statistics import StatisticSummary
from datetime import datetime
from pydantic import BaseModel, Field
from typing import Annotated, Any, List, Literal, Optional, Union


class RdsIdentifierInput(BaseModel):
    """An RDS DB instance or cluster identifier and its region."""

    identifier: str = Field(..., min_length=1, description='DB instance or cluster identifier')
    region: str = Field(..., min_length=1, description='AWS region')


class RdsInstanceInfo(BaseModel):
    """Snapshot of an RDS DB instance."""

    instance_identifier: str = Field(..., description='DB instance identifier')
    instance_arn: str = Field(..., description='DB instance ARN')
    dbi_resource_id: Optional[str] = Field(
        None, description='Resource id used by Performance Insights'
    )
    cluster_identifier: Optional[str] = Field(None, description='Owning DB cluster, if any')
    instance_class: Optional[str] = Field(None, description='Instance class, e.g. db.r6g.large')
    engine: Optional[str] = Field(None, description='Database engine')
    engine_version: Optional[str] = Field(None, description='Engine version')
    status: Optional[str] = Field(None, description='Instance status')
    is_cluster_writer: Optional[bool] = Field(
        None,
        description='Writer (True) or reader (False) within its cluster; None outside a cluster',
    )
    availability_zone: Optional[str] = Field(None, description='Availability zone')
    endpoint: Optional[str] = Field(None, description='Endpoint address')
    port: Optional[int] = Field(None, description='Endpoint port')
    performance_insights_enabled: bool = Field(False, description='Performance Insights enabled')
    performance_insights_retention_period: Optional[int] = Field(
        None, description='Performance Insights retention (days)'
    )
    created_at: Optional[datetime] = Field(None, description='Creation time')
    region: str = Field(..., description='AWS region')


class RdsClusterMember(BaseModel):
    """A member of an RDS DB cluster."""

    instance_identifier: str = Field(..., description='DB instance identifier')
    is_cluster_writer: bool = Field(False, description='Whether the member is the writer')


class RdsClusterInfo(BaseModel):
    """Snapshot of an RDS DB cluster."""

    cluster_identifier: str = Field(..., description='DB cluster identifier')
    cluster_arn: Optional[str] = Field(None, description='DB cluster ARN')
    engine: Optional[str] = Field(None, description='Database engine')
    engine_version: Optional[str] = Field(None, description='Engine version')
    status: Optional[str] = Field(None, description='Cluster status')
    endpoint: Optional[str] = Field(None, description='Writer endpoint')
    reader_endpoint: Optional[str] = Field(None, description='Reader endpoint')
    members: List[RdsClusterMember] = Field(default_factory=list, description='Member instances')
    region: str = Field(..., description='AWS region')


class MemberFailure(BaseModel):
    """A cluster member whose instance record could not be retrieved."""

    instance_identifier: str = Field(..., description='DB instance identifier')
    reason: str = Field(..., description='Failure reason')


class ResolvedAsInstance(BaseModel):
    """The identifier named a DB instance."""

    kind: Literal['instance'] = 'instance'
    identifier: str
    instance: RdsInstanceInfo


class ResolvedAsCluster(BaseModel):
    """The identifier named a DB cluster; its members were resolved to instances."""

    kind: Literal['cluster'] = 'cluster'
    identifier: str
    cluster: RdsClusterInfo
    instances: List[RdsInstanceInfo] = Field(default_factory=list)
    failed_members: List[MemberFailure] = Field(default_factory=list)


class Unresolved(BaseModel):
    """Neither a DB instance nor a DB cluster matched the identifier."""

    kind: Literal['unresolved'] = 'unresolved'
    identifier: str


def _measure(description: str) -> Any:
    return Field(default_factory=StatisticSummary, description=description)


Resolution = Annotated[
    Union[ResolvedAsInstance, ResolvedAsCluster, Unresolved], Field(discriminator='kind')
]


class RdsMetricsSummary(BaseModel):
    """CloudWatch metrics summary for one DB instance."""

    instance_identifier: str = Field(..., description='DB instance identifier')
    sample_count: int = Field(0, description='Number of distinct sample timestamps')
    first_timestamp: Optional[datetime] = Field(None, description='First observed sample')
    last_timestamp: Optional[datetime] = Field(None, description='Last observed sample')
    cpu_utilization: StatisticSummary = _measure('CPU (%)')
    freeable_memory: StatisticSummary = _measure('Freeable memory (bytes)')
    database_connections: StatisticSummary = _measure('Connections')
    commit_throughput: StatisticSummary = _measure('Commits per second')
    deadlocks: StatisticSummary = _measure('Deadlocks per second')
    read_iops: StatisticSummary = _measure('Read IOPS')
    write_iops: StatisticSummary = _measure('Write IOPS')
    read_latency: StatisticSummary = _measure('Read latency (seconds)')
    write_latency: StatisticSummary = _measure('Write latency (seconds)')
    network_receive_throughput: StatisticSummary = _measure('Bytes per second')
    network_transmit_throughput: StatisticSummary = _measure('Bytes per second')
    replica_lag: StatisticSummary = _measure('Aurora replica lag (ms)')
    buffer_cache_hit_ratio: StatisticSummary = _measure('Buffer cache hit ratio (%)')
    disk_queue_depth: StatisticSummary = _measure('Disk queue depth')
    swap_usage: StatisticSummary = _measure('Swap usage (bytes)')


class TopSqlQuery(BaseModel):
    """A SQL statement ranked by its contribution to database load."""

    sql_id: str = Field(..., description='SQL id')
    sql_text: str = Field('', description='SQL statement, possibly truncated')
    avg_db_load: float = Field(0.0, description='Average active sessions')
    load_percentage: float = Field(
        0.0, description='Share of the load of the returned statements (%)'
    )


class PerformanceInsightsSummary(BaseModel):
    """Top SQL by database load for one DB instance."""

    instance_identifier: str = Field(..., description='DB instance identifier')
    start_time: datetime = Field(..., description='Window start')
    end_time: datetime = Field(..., description='Window end')
    top_sql_queries: List[TopSqlQuery] = Field(
        default_factory=list, description='Top SQL, heaviest first'
    )
    note: Optional[str] = Field(None, description='Why no data is available, if so')


class RdsInvestigationOptions(BaseModel):
    """Options for an RDS investigation."""

    include_metrics: bool = Field(True, description='Gather CloudWatch metrics')
    include_events: bool = Field(True, description='Gather Performance Insights top SQL')
    start_time: Optional[str] = Field(None, description='Explicit window start (ISO 8601)')
    end_time: Optional[str] = Field(None, description='Explicit window end (ISO 8601)')
    lookback_hours: int = Field(
        RDS_METRICS_DEFAULT_LOOKBACK_HOURS,
        ge=MIN_LOOKBACK_HOURS,
        le=MAX_LOOKBACK_HOURS,
        description='CloudWatch metrics lookback when no explicit window is given',
    )
    top_sql_limit: int = Field(
        DEFAULT_TOP_SQL_LIMIT,
        ge=1,
        le=MAX_TOP_SQL_LIMIT,
        description='Number of top SQL statements',
    )


class RdsInvestigationResult(BaseModel):
    """Everything gathered for one DB instance, or for one identifier that did not resolve."""

    identifier: str = Field(..., description='Instance identifier, or the unresolved input')
    region: str = Field(..., description='AWS region')
    requested_by: List[str] = Field(
        default_factory=list, description='Input identifiers that resolved to this instance'
    )
    instance: Optional[RdsInstanceInfo] = Field(None, description='Instance, None if unresolved')
    metrics: Optional[RdsMetricsSummary] = Field(None, description='CloudWatch metrics summary')
    performance_insights: Optional[PerformanceInsightsSummary] = Field(None, description='Top SQL')
    notes: List[str] = Field(default_factory=list, description='Informational notes')
    not_found: bool = Field(
        False, description='Whether the identifier matched no instance or cluster'
    )
    errors: List[str] = Field(default_factory=list, description='Errors from individual phases')


class RdsRunSummary(BaseModel):
    """Counts folded from the per-instance results."""

    total_requested: int = 0
    found: int = 0
    not_found: int = 0
    with_metrics: int = 0
    with_events: int = 0
    total_errors: int = 0


class RdsInvestigationReport(BaseModel):
    """Result of an RDS investigation."""

    results: List[RdsInvestigationResult] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list, description='Run-level errors')
    notes: List[str] = Field(default_factory=list, description='Run-level notes')
    summary: RdsRunSummary = Field(default_factory=RdsRunSummary)
