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

"""RDS investigation: resolution, CloudWatch metrics and top SQL merged per instance."""

import asyncio
from ..common.clients import AwsClients
from ..common.config import InvestigationSettings
from ..common.exceptions import InvestigationConfigurationError
from ..common.fanout import Outcome, settle_all
from ..common.time_range import TimeRange, parse_time_range, resolve_time_range
from ..common.utils import prefixed_error
from ..constants import (
    ERROR_PREFIX_INSTANCE_STATUS,
    ERROR_PREFIX_METRICS,
    ERROR_PREFIX_TOP_SQL,
    MAX_RDS_IDENTIFIERS,
    PERFORMANCE_INSIGHTS_DEFAULT_LOOKBACK_HOURS,
)
from .metrics import get_rds_metrics
from .models import (
    RdsIdentifierInput,
    RdsInstanceInfo,
    RdsInvestigationOptions,
    RdsInvestigationReport,
    RdsInvestigationResult,
    RdsRunSummary,
    ResolvedAsCluster,
    Unresolved,
)
from .performance_insights import get_top_sql
from .resolver import batch_resolve, identifier_key, instance_key, unique_instances
from functools import partial
from loguru import logger
from typing import Dict, List, Sequence


UNRESOLVED_ERROR = 'not found as a DB instance or DB cluster'


def summarize_rds_investigation(
    results: Sequence[RdsInvestigationResult], run_errors: Sequence[str]
) -> RdsRunSummary:
    """Fold the per-instance results into run-level counts."""
    requested = {
        (result.region, identifier) for result in results for identifier in result.requested_by
    }
    return RdsRunSummary(
        total_requested=len(requested),
        found=sum(1 for r in results if r.instance is not None),
        not_found=sum(1 for r in results if r.not_found),
        with_metrics=sum(
            1 for r in results if r.metrics is not None and r.metrics.sample_count > 0
        ),
        with_events=sum(
            1
            for r in results
            if r.performance_insights is not None and r.performance_insights.top_sql_queries
        ),
        total_errors=sum(len(r.errors) for r in results) + len(run_errors),
    )


def cluster_role_notes(resolution: ResolvedAsCluster) -> List[str]:
    """Notes for clusters whose membership does not name exactly one writer."""
    writers = [m.instance_identifier for m in resolution.cluster.members if m.is_cluster_writer]
    if len(writers) == 1:
        return []
    cluster = resolution.cluster.cluster_identifier
    if not writers:
        message = f'Cluster {cluster} reports no writer instance'
    else:
        message = f'Cluster {cluster} reports multiple writer instances: {", ".join(writers)}'
    logger.warning(message)
    return [message]


async def gather_rds_metrics(
    instances: Dict[str, RdsInstanceInfo],
    clients: AwsClients,
    settings: InvestigationSettings,
    time_range: TimeRange,
) -> Dict[str, Outcome]:
    """Summarize CloudWatch metrics of every instance, keyed by instance ARN."""

    async def metrics(instance: RdsInstanceInfo):
        return await get_rds_metrics(
            clients.cloudwatch.get_client(instance.region),
            instance.instance_identifier,
            time_range,
        )

    return await settle_all(
        {key: partial(metrics, instance) for key, instance in instances.items()},
        settings.step_timeout,
        'getMetricData',
    )


async def gather_top_sql(
    instances: Dict[str, RdsInstanceInfo],
    clients: AwsClients,
    settings: InvestigationSettings,
    time_range: TimeRange,
    limit: int,
) -> Dict[str, Outcome]:
    """Fetch Performance Insights top SQL of every instance, keyed by instance ARN."""

    async def top_sql(instance: RdsInstanceInfo):
        return await get_top_sql(
            clients.pi.get_client(instance.region), instance, time_range, limit
        )

    return await settle_all(
        {key: partial(top_sql, instance) for key, instance in instances.items()},
        settings.step_timeout,
        'describeDimensionKeys',
    )


async def investigate_rds_instances(
    identifiers: Sequence[RdsIdentifierInput],
    options: RdsInvestigationOptions,
    clients: AwsClients,
    settings: InvestigationSettings,
) -> RdsInvestigationReport:
    """Investigate RDS DB instances and clusters.

    Identifiers are resolved to instances first. CloudWatch metrics and
    Performance Insights top SQL are then gathered concurrently per instance.

    Args:
        identifiers: DB instance or cluster identifiers with their regions
        options: Investigation options
        clients: Client registries
        settings: Server settings

    Returns:
        RdsInvestigationReport: One result per resolved instance and per unresolved identifier

    Raises:
        InvestigationConfigurationError: If the options are invalid; raised before any AWS call
    """
    explicit_range = parse_time_range(options.start_time, options.end_time)
    if len(identifiers) > MAX_RDS_IDENTIFIERS:
        raise InvestigationConfigurationError(
            f'At most {MAX_RDS_IDENTIFIERS} identifiers can be investigated at once, '
            f'received {len(identifiers)}'
        )
    if not identifiers:
        return RdsInvestigationReport()

    log = logger.bind(function='investigate_rds_instances', identifier_count=len(identifiers))
    log.info(
        f'Starting investigation of {len(identifiers)} identifier(s) '
        f'(metrics: {options.include_metrics}, top SQL: {options.include_events})'
    )

    outcomes = await batch_resolve(identifiers, clients.rds, settings.step_timeout)

    results: List[RdsInvestigationResult] = []
    run_errors: List[str] = []
    run_notes: List[str] = []
    resolutions = {}
    for identifier in {identifier_key(i): i for i in identifiers}.values():
        outcome = outcomes[identifier_key(identifier)]
        if not outcome.success:
            results.append(
                RdsInvestigationResult(
                    identifier=identifier.identifier,
                    region=identifier.region,
                    requested_by=[identifier.identifier],
                    errors=[prefixed_error(ERROR_PREFIX_INSTANCE_STATUS, outcome.error)],
                )
            )
            continue
        resolution = outcome.value
        if isinstance(resolution, Unresolved):
            results.append(
                RdsInvestigationResult(
                    identifier=identifier.identifier,
                    region=identifier.region,
                    requested_by=[identifier.identifier],
                    not_found=True,
                    errors=[
                        prefixed_error(
                            ERROR_PREFIX_INSTANCE_STATUS,
                            f'{identifier.identifier} {UNRESOLVED_ERROR}',
                        )
                    ],
                )
            )
            continue
        if isinstance(resolution, ResolvedAsCluster):
            run_notes.extend(cluster_role_notes(resolution))
            for failure in resolution.failed_members:
                run_errors.append(
                    prefixed_error(
                        ERROR_PREFIX_INSTANCE_STATUS,
                        f'member {failure.instance_identifier} of cluster '
                        f'{resolution.cluster.cluster_identifier}: {failure.reason}',
                    )
                )
            if not resolution.instances:
                results.append(
                    RdsInvestigationResult(
                        identifier=identifier.identifier,
                        region=identifier.region,
                        requested_by=[identifier.identifier],
                        notes=[
                            f'Cluster {identifier.identifier} has no resolvable member instances'
                        ],
                    )
                )
        resolutions[identifier_key(identifier)] = resolution

    instances: Dict[str, RdsInstanceInfo] = {}
    by_instance: Dict[str, RdsInvestigationResult] = {}
    for instance, requested_by in unique_instances(resolutions):
        result = RdsInvestigationResult(
            identifier=instance.instance_identifier,
            region=instance.region,
            requested_by=requested_by,
            instance=instance,
        )
        key = instance_key(instance)
        instances[key] = instance
        by_instance[key] = result
        results.append(result)

    phases = {}
    if options.include_metrics and instances:
        metrics_range = resolve_time_range(explicit_range, options.lookback_hours)
        phases['metrics'] = gather_rds_metrics(instances, clients, settings, metrics_range)
    if options.include_events and instances:
        top_sql_range = resolve_time_range(
            explicit_range, PERFORMANCE_INSIGHTS_DEFAULT_LOOKBACK_HOURS
        )
        phases['top_sql'] = gather_top_sql(
            instances, clients, settings, top_sql_range, options.top_sql_limit
        )

    phase_results = dict(zip(phases, await asyncio.gather(*phases.values())))

    for key, outcome in phase_results.get('metrics', {}).items():
        result = by_instance[key]
        if outcome.success:
            result.metrics = outcome.value
        else:
            result.errors.append(prefixed_error(ERROR_PREFIX_METRICS, outcome.error))

    for key, outcome in phase_results.get('top_sql', {}).items():
        result = by_instance[key]
        if outcome.success:
            result.performance_insights = outcome.value
            if outcome.value.note:
                result.notes.append(outcome.value.note)
        else:
            result.errors.append(prefixed_error(ERROR_PREFIX_TOP_SQL, outcome.error))

    summary = summarize_rds_investigation(results, run_errors)
    log.info(
        f'Investigation complete: {summary.found} instance(s) resolved, '
        f'{summary.not_found} not found, {summary.total_errors} error(s)'
    )
    return RdsInvestigationReport(
        results=results, errors=run_errors, notes=run_notes, summary=summary
    )
