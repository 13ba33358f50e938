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

"""Compact, analysis-ready views of investigation reports.

The full reports carry every field gathered. These views keep what an analyst,
human or model, needs to judge health: paired statistics, flags against the RDS
health thresholds, and the most recent events.
"""

from .constants import RDS_THRESHOLDS, get_instance_memory_gb
from .ecs.models import EcsInvestigationReport, TaskInvestigationResult
from .metrics.statistics import StatisticSummary
from .rds.models import RdsInvestigationReport, RdsInvestigationResult
from typing import Any, Dict, List, Optional


BYTES_PER_GB = 1024**3
MAX_SQL_TEXT_LENGTH = 200
MAX_RECENT_EVENTS = 5


def format_metric_pair(
    summary: Optional[StatisticSummary], unit: str = '', scale: float = 1.0, precision: int = 1
) -> str:
    """Format a summary as 'avg X (max Y)', or 'n/a' without data."""
    if summary is None or not summary.has_data:
        return 'n/a'
    avg = summary.avg * scale
    maximum = summary.max * scale
    return f'avg {avg:.{precision}f}{unit} (max {maximum:.{precision}f}{unit})'


def format_bytes_pair(summary: Optional[StatisticSummary]) -> str:
    """Format a byte summary in GB."""
    return format_metric_pair(summary, ' GB', scale=1 / BYTES_PER_GB, precision=2)


def format_latency_pair(summary: Optional[StatisticSummary]) -> str:
    """Format a latency summary given in seconds as milliseconds."""
    return format_metric_pair(summary, ' ms', scale=1000.0, precision=2)


def threshold_level(
    value: Optional[float], warning: float, critical: float, higher_is_worse: bool = True
) -> Optional[str]:
    """Classify a value against warning and critical thresholds."""
    if value is None:
        return None
    if higher_is_worse:
        if value >= critical:
            return 'critical'
        if value > warning:
            return 'warning'
        return None
    if value <= critical:
        return 'critical'
    if value < warning:
        return 'warning'
    return None


def _flag(flags: List[str], level: Optional[str], message: str) -> None:
    if level:
        flags.append(f'{level}: {message}')


def rds_health_flags(result: RdsInvestigationResult) -> List[str]:
    """Flag metrics of an instance that cross the RDS health thresholds."""
    metrics = result.metrics
    if metrics is None or metrics.sample_count == 0:
        return []
    flags: List[str] = []

    cpu_max = metrics.cpu_utilization.max
    _flag(
        flags,
        threshold_level(
            cpu_max, RDS_THRESHOLDS['cpu_warning_percent'], RDS_THRESHOLDS['cpu_critical_percent']
        ),
        f'CPU peaked at {cpu_max:.1f}%' if cpu_max is not None else '',
    )

    memory_gb = get_instance_memory_gb(result.instance.instance_class if result.instance else None)
    freeable_min = metrics.freeable_memory.min
    if memory_gb and freeable_min is not None:
        free_percent = freeable_min / (memory_gb * BYTES_PER_GB) * 100
        _flag(
            flags,
            threshold_level(
                free_percent,
                RDS_THRESHOLDS['memory_warning_percent'],
                RDS_THRESHOLDS['memory_critical_percent'],
                higher_is_worse=False,
            ),
            f'freeable memory dropped to {free_percent:.1f}% of {memory_gb} GB',
        )

    lag_max = metrics.replica_lag.max
    _flag(
        flags,
        threshold_level(
            lag_max,
            RDS_THRESHOLDS['replica_lag_warning_ms'],
            RDS_THRESHOLDS['replica_lag_critical_ms'],
        ),
        f'replica lag peaked at {lag_max:.0f} ms' if lag_max is not None else '',
    )

    cache_avg = metrics.buffer_cache_hit_ratio.avg
    _flag(
        flags,
        threshold_level(
            cache_avg,
            RDS_THRESHOLDS['buffer_cache_hit_warning_percent'],
            RDS_THRESHOLDS['buffer_cache_hit_critical_percent'],
            higher_is_worse=False,
        ),
        f'buffer cache hit ratio averaged {cache_avg:.1f}%' if cache_avg is not None else '',
    )

    queue_max = metrics.disk_queue_depth.max
    _flag(
        flags,
        threshold_level(
            queue_max,
            RDS_THRESHOLDS['disk_queue_depth_warning'],
            RDS_THRESHOLDS['disk_queue_depth_critical'],
        ),
        f'disk queue depth peaked at {queue_max:.1f}' if queue_max is not None else '',
    )

    deadlocks_max = metrics.deadlocks.max
    _flag(
        flags,
        threshold_level(
            deadlocks_max,
            RDS_THRESHOLDS['deadlocks_warning'],
            RDS_THRESHOLDS['deadlocks_critical_per_second'],
        ),
        f'deadlocks reached {deadlocks_max:.2f}/s' if deadlocks_max is not None else '',
    )
    return flags


def _role(result: RdsInvestigationResult) -> str:
    if result.instance is None or result.instance.is_cluster_writer is None:
        return 'standalone'
    return 'writer' if result.instance.is_cluster_writer else 'reader'


def format_rds_result(result: RdsInvestigationResult) -> Dict[str, Any]:
    """Compact view of one RDS result."""
    view: Dict[str, Any] = {'identifier': result.identifier, 'region': result.region}
    if result.instance is None:
        view['status'] = 'not found' if result.not_found else 'unavailable'
    else:
        instance = result.instance
        view.update(
            {
                'role': _role(result),
                'cluster': instance.cluster_identifier,
                'instance_class': instance.instance_class,
                'engine': f'{instance.engine} {instance.engine_version}',
                'status': instance.status,
            }
        )
    metrics = result.metrics
    if metrics is not None and metrics.sample_count > 0:
        view['metrics'] = {
            'cpu': format_metric_pair(metrics.cpu_utilization, '%'),
            'freeable_memory': format_bytes_pair(metrics.freeable_memory),
            'connections': format_metric_pair(metrics.database_connections, precision=0),
            'read_latency': format_latency_pair(metrics.read_latency),
            'write_latency': format_latency_pair(metrics.write_latency),
            'replica_lag': format_metric_pair(metrics.replica_lag, ' ms', precision=0),
            'buffer_cache_hit_ratio': format_metric_pair(metrics.buffer_cache_hit_ratio, '%'),
            'disk_queue_depth': format_metric_pair(metrics.disk_queue_depth),
            'deadlocks': format_metric_pair(metrics.deadlocks, '/s', precision=2),
        }
        view['flags'] = rds_health_flags(result)
    if result.performance_insights is not None and result.performance_insights.top_sql_queries:
        view['top_sql'] = [
            {
                'sql_id': query.sql_id,
                'load_percentage': query.load_percentage,
                'avg_db_load': round(query.avg_db_load, 3),
                'sql_text': query.sql_text[:MAX_SQL_TEXT_LENGTH],
            }
            for query in result.performance_insights.top_sql_queries
        ]
    if result.notes:
        view['notes'] = result.notes
    if result.errors:
        view['errors'] = result.errors
    return view


def format_rds_report(report: RdsInvestigationReport) -> Dict[str, Any]:
    """Compact view of an RDS investigation report."""
    return {
        'summary': report.summary.model_dump(),
        'instances': [format_rds_result(result) for result in report.results],
        'notes': report.notes,
        'errors': report.errors,
    }


def format_task_result(result: TaskInvestigationResult) -> Dict[str, Any]:
    """Compact view of one ECS task result."""
    view: Dict[str, Any] = {'task_arn': result.task.full_arn}
    status = result.status
    if status is not None:
        view.update(
            {
                'service': status.service_name,
                'last_status': status.last_status,
                'desired_status': status.desired_status,
                'stop_code': status.stop_code,
                'stopped_reason': status.stopped_reason,
                'containers': [
                    {
                        'name': container.name,
                        'last_status': container.last_status,
                        'exit_code': container.exit_code,
                        'reason': container.reason,
                    }
                    for container in status.containers
                ],
            }
        )
    elif result.not_found:
        view['last_status'] = 'not found'
    if result.metrics is not None and result.metrics.sample_count > 0:
        view['cpu'] = format_metric_pair(result.metrics.cpu_utilization, '%')
        view['memory'] = format_metric_pair(result.metrics.memory_utilization, '%')
    if result.historical_events:
        view['historical_events'] = [
            {
                'timestamp': event.timestamp.isoformat() if event.timestamp else None,
                'last_status': event.last_status,
                'stopped_reason': event.stopped_reason,
                'stop_code': event.stop_code,
            }
            for event in result.historical_events[:MAX_RECENT_EVENTS]
        ]
    if result.notes:
        view['notes'] = result.notes
    if result.errors:
        view['errors'] = result.errors
    return view


def format_ecs_report(report: EcsInvestigationReport) -> Dict[str, Any]:
    """Compact view of an ECS investigation report."""
    return {
        'summary': report.summary.model_dump(),
        'tasks': [format_task_result(result) for result in report.results],
        'services': [
            {
                'service': service.service.key,
                'recent_events': [event.message for event in service.events[:MAX_RECENT_EVENTS]],
            }
            for service in report.services
        ],
        'unparsed_identifiers': report.unparsed_identifiers,
        'errors': report.errors,
    }
