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

"""ECS task investigation: status, utilization and events merged per task."""

import asyncio
from ..common.clients import AwsClients
from ..common.config import InvestigationSettings
from ..common.exceptions import InvestigationConfigurationError, get_error_message
from ..common.fanout import Outcome, settle_all
from ..common.time_range import TimeRange, parse_time_range, resolve_time_range
from ..common.utils import prefixed_error
from ..constants import (
    ECS_METRICS_DEFAULT_LOOKBACK_HOURS,
    ERROR_PREFIX_HISTORICAL,
    ERROR_PREFIX_METRICS,
    ERROR_PREFIX_SERVICE_EVENTS,
    ERROR_PREFIX_TASK_STATUS,
    HISTORICAL_EVENTS_MIN_TIMEOUT_SECONDS,
    MAX_ECS_TASKS,
    QUERY_WAIT_BUDGET_FRACTION,
)
from .arns import extract_task_arns_from_text
from .container_insights import get_container_insights_metrics, get_container_insights_summary
from .events import get_historical_task_events, get_service_events, unique_services
from .models import (
    ContainerMetricsSummary,
    DescribeTasksResult,
    EcsInvestigationOptions,
    EcsInvestigationReport,
    EcsRunSummary,
    EcsTaskInfo,
    MetricsSource,
    ParsedTaskArn,
    ServiceInvestigationResult,
    TaskInvestigationResult,
)
from .tasks import describe_ecs_tasks
from functools import partial
from loguru import logger
from typing import Dict, List, Optional, Sequence, Tuple


NO_CONTAINER_INSIGHTS_NOTE = 'Container Insights data not available for this cluster'
NO_METRICS_DATA_NOTE = 'No Container Insights samples in the time range'
NO_METRIC_DIMENSIONS_NOTE = 'Task has neither a service nor a task definition family for metrics'
NO_HISTORY_LOG_GROUP_NOTE = 'Historical event log group not found'


def parse_identifiers(identifiers: Sequence[str]) -> Tuple[List[ParsedTaskArn], List[str]]:
    """Extract distinct task ARNs from raw identifiers.

    Returns:
        The parsed tasks in order of first appearance, and the inputs that held no task ARN
    """
    tasks: List[ParsedTaskArn] = []
    unparsed: List[str] = []
    seen = set()
    for identifier in identifiers:
        parsed = extract_task_arns_from_text(identifier)
        if not parsed:
            unparsed.append(identifier)
        for task in parsed:
            if task.full_arn not in seen:
                seen.add(task.full_arn)
                tasks.append(task)
    return tasks, unparsed


def summarize_ecs_investigation(
    results: Sequence[TaskInvestigationResult],
    services: Sequence[ServiceInvestigationResult],
    run_errors: Sequence[str],
) -> EcsRunSummary:
    """Fold the per-task results into run-level counts."""
    return EcsRunSummary(
        total_requested=len(results),
        found=sum(1 for r in results if r.status is not None),
        not_found=sum(1 for r in results if r.not_found),
        failed=sum(1 for r in results if r.status is None and not r.not_found),
        with_metrics=sum(
            1 for r in results if r.metrics is not None and r.metrics.sample_count > 0
        ),
        with_events=sum(1 for r in results if r.historical_events),
        services_queried=len(services),
        total_errors=sum(len(r.errors) for r in results) + len(run_errors),
    )


async def gather_task_status(
    tasks: Sequence[ParsedTaskArn], clients: AwsClients, settings: InvestigationSettings
) -> Tuple[Optional[DescribeTasksResult], Optional[str]]:
    """Describe every task. Returns the batch result, or None and the reason it failed."""
    try:
        return await describe_ecs_tasks(tasks, clients.ecs, settings.step_timeout), None
    except Exception as e:
        logger.exception('Failed to gather task status')
        return None, get_error_message(e)


async def gather_container_insights_summaries(
    tasks: Sequence[ParsedTaskArn],
    clients: AwsClients,
    settings: InvestigationSettings,
    time_range: TimeRange,
) -> Dict[str, Outcome[Optional[ContainerMetricsSummary]]]:
    """Summarize utilization of every task with Logs Insights, keyed by task ARN."""

    async def summarize(task: ParsedTaskArn) -> Optional[ContainerMetricsSummary]:
        return await get_container_insights_summary(
            clients.logs.get_client(task.region),
            task,
            time_range,
            max_wait=settings.query_wait(settings.step_timeout),
            poll_interval=settings.query_poll_interval,
        )

    return await settle_all(
        {task.full_arn: partial(summarize, task) for task in tasks},
        settings.step_timeout,
        'containerInsightsQuery',
    )


async def gather_container_insights_metrics(
    tasks: Dict[str, EcsTaskInfo],
    clients: AwsClients,
    settings: InvestigationSettings,
    time_range: TimeRange,
) -> Dict[str, Outcome[Optional[ContainerMetricsSummary]]]:
    """Summarize utilization of found tasks from CloudWatch metrics, keyed by requested ARN."""

    async def summarize(task: EcsTaskInfo) -> Optional[ContainerMetricsSummary]:
        return await get_container_insights_metrics(
            clients.cloudwatch.get_client(task.region), task, time_range
        )

    return await settle_all(
        {arn: partial(summarize, task) for arn, task in tasks.items()},
        settings.step_timeout,
        'getMetricData',
    )


async def gather_historical_events(
    tasks: Sequence[ParsedTaskArn],
    clients: AwsClients,
    settings: InvestigationSettings,
    time_range: TimeRange,
) -> Dict[str, Outcome]:
    """Query state change events of tasks ECS no longer reports, keyed by task ARN.

    History scans a day-scale window, so it gets at least the minimum history budget
    and its query may wait for most of that budget.
    """
    history_budget = max(settings.step_timeout, HISTORICAL_EVENTS_MIN_TIMEOUT_SECONDS)

    async def history(task: ParsedTaskArn):
        return await get_historical_task_events(
            clients.logs.get_client(task.region),
            settings.ecs_events_log_group,
            task.task_id,
            time_range,
            max_wait=history_budget * QUERY_WAIT_BUDGET_FRACTION,
            poll_interval=settings.query_poll_interval,
        )

    return await settle_all(
        {task.full_arn: partial(history, task) for task in tasks},
        history_budget,
        'historicalEventsQuery',
    )


async def gather_service_events(
    tasks: Sequence[EcsTaskInfo], clients: AwsClients, settings: InvestigationSettings
) -> Tuple[List[ServiceInvestigationResult], List[str]]:
    """Fetch events of every distinct service owning the given tasks."""
    services = {service.key: service for service in unique_services(tasks)}

    async def events(key: str):
        service = services[key]
        return await get_service_events(clients.ecs.get_client(service.region), service)

    outcomes = await settle_all(
        {key: partial(events, key) for key in services}, settings.step_timeout, 'describeServices'
    )

    results = []
    errors = []
    for key, service in services.items():
        outcome = outcomes[key]
        if outcome.success:
            results.append(ServiceInvestigationResult(service=service, events=outcome.value))
        else:
            errors.append(prefixed_error(ERROR_PREFIX_SERVICE_EVENTS, f'{key}: {outcome.error}'))
    return results, errors


def _apply_metrics(
    results: Dict[str, TaskInvestigationResult],
    outcomes: Dict[str, Outcome[Optional[ContainerMetricsSummary]]],
    missing_note: str,
) -> None:
    for arn, outcome in outcomes.items():
        result = results.get(arn)
        if result is None:
            continue
        if not outcome.success:
            result.errors.append(prefixed_error(ERROR_PREFIX_METRICS, outcome.error))
        elif outcome.value is None:
            result.notes.append(missing_note)
        else:
            result.metrics = outcome.value
            if outcome.value.sample_count == 0:
                result.notes.append(NO_METRICS_DATA_NOTE)


def _apply_status(
    results: Dict[str, TaskInvestigationResult], status: DescribeTasksResult
) -> Dict[str, EcsTaskInfo]:
    found = {}
    for task in status.tasks:
        result = results.get(task.task_arn)
        if result is not None:
            result.status = task
            found[result.task.full_arn] = task
    for arn in status.not_found:
        if arn in results:
            results[arn].not_found = True
    for failure in status.failures:
        if failure.task_arn in results:
            results[failure.task_arn].errors.append(
                prefixed_error(ERROR_PREFIX_TASK_STATUS, failure.reason)
            )
    return found


async def investigate_ecs_tasks(
    identifiers: Sequence[str],
    options: EcsInvestigationOptions,
    clients: AwsClients,
    settings: InvestigationSettings,
) -> EcsInvestigationReport:
    """Investigate ECS tasks given their ARNs or free text containing them.

    Status lookup and Logs Insights utilization run concurrently. Historical events
    are then queried for tasks ECS reports missing, service events for services
    owning found tasks, and CloudWatch metrics utilization for found tasks.

    Args:
        identifiers: Task ARNs or text containing task ARNs
        options: Investigation options
        clients: Client registries
        settings: Server settings

    Returns:
        EcsInvestigationReport: Per-task results, service events and the run summary

    Raises:
        InvestigationConfigurationError: If the options are invalid; raised before any AWS call
    """
    explicit_range = parse_time_range(options.start_time, options.end_time)
    tasks, unparsed = parse_identifiers(identifiers)
    if len(tasks) > MAX_ECS_TASKS:
        raise InvestigationConfigurationError(
            f'At most {MAX_ECS_TASKS} tasks can be investigated at once, received {len(tasks)}'
        )
    if unparsed:
        logger.warning(f'{len(unparsed)} identifier(s) contained no task ARN')
    if not tasks:
        return EcsInvestigationReport(unparsed_identifiers=unparsed)

    log = logger.bind(function='investigate_ecs_tasks', task_count=len(tasks))
    log.info(
        f'Starting investigation of {len(tasks)} task(s) '
        f'(metrics: {options.include_metrics}, events: {options.include_events})'
    )

    results = {task.full_arn: TaskInvestigationResult(task=task) for task in tasks}
    run_errors: List[str] = []
    metrics_range = resolve_time_range(explicit_range, ECS_METRICS_DEFAULT_LOOKBACK_HOURS)
    use_logs_insights = (
        options.include_metrics and options.metrics_source == MetricsSource.LOGS_INSIGHTS
    )

    # status and Logs Insights utilization are independent
    if use_logs_insights:
        (status, status_error), metrics_outcomes = await asyncio.gather(
            gather_task_status(tasks, clients, settings),
            gather_container_insights_summaries(tasks, clients, settings, metrics_range),
        )
        _apply_metrics(results, metrics_outcomes, NO_CONTAINER_INSIGHTS_NOTE)
    else:
        status, status_error = await gather_task_status(tasks, clients, settings)

    found: Dict[str, EcsTaskInfo] = {}
    not_found: List[ParsedTaskArn] = []
    if status is None:
        run_errors.append(prefixed_error(ERROR_PREFIX_TASK_STATUS, status_error))
    else:
        found = _apply_status(results, status)
        not_found = [results[arn].task for arn in status.not_found if arn in results]

    services: List[ServiceInvestigationResult] = []
    phases = {}
    if options.include_events and not_found:
        history_range = resolve_time_range(explicit_range, options.lookback_hours)
        phases['history'] = gather_historical_events(not_found, clients, settings, history_range)
    if options.include_events and found:
        phases['services'] = gather_service_events(list(found.values()), clients, settings)
    if options.include_metrics and not use_logs_insights and found:
        phases['metrics'] = gather_container_insights_metrics(
            found, clients, settings, metrics_range
        )

    phase_results = dict(zip(phases, await asyncio.gather(*phases.values())))

    for arn, outcome in phase_results.get('history', {}).items():
        result = results[arn]
        if not outcome.success:
            result.errors.append(prefixed_error(ERROR_PREFIX_HISTORICAL, outcome.error))
        elif outcome.value is None:
            result.notes.append(NO_HISTORY_LOG_GROUP_NOTE)
        else:
            result.historical_events = outcome.value

    if 'services' in phase_results:
        services, service_errors = phase_results['services']
        run_errors.extend(service_errors)

    if 'metrics' in phase_results:
        _apply_metrics(results, phase_results['metrics'], NO_METRIC_DIMENSIONS_NOTE)

    ordered = [results[task.full_arn] for task in tasks]
    summary = summarize_ecs_investigation(ordered, services, run_errors)
    log.info(
        f'Investigation complete: {summary.found} found, {summary.not_found} not found, '
        f'{summary.total_errors} error(s)'
    )
    return EcsInvestigationReport(
        results=ordered,
        services=services,
        unparsed_identifiers=unparsed,
        errors=run_errors,
        summary=summary,
    )
