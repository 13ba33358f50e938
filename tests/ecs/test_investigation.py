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

"""Tests for the ECS task investigation."""

import json
import pytest
from awslabs.workload_investigation_mcp_server.common.config import InvestigationSettings
from awslabs.workload_investigation_mcp_server.common.exceptions import (
    InvestigationConfigurationError,
)
from awslabs.workload_investigation_mcp_server.constants import (
    ECS_HISTORICAL_EVENTS_DEFAULT_LOOKBACK_HOURS,
    MAX_LOOKBACK_HOURS,
)
from awslabs.workload_investigation_mcp_server.ecs.investigation import (
    NO_CONTAINER_INSIGHTS_NOTE,
    NO_HISTORY_LOG_GROUP_NOTE,
    investigate_ecs_tasks,
    parse_identifiers,
)
from awslabs.workload_investigation_mcp_server.ecs.models import (
    EcsInvestigationOptions,
    MetricsSource,
)
from tests.conftest import TASK_ARN_1, TASK_ARN_2, TASK_ARN_OTHER_REGION, make_client_error, utc


CI_ROW = [
    {'field': 'sampleCount', 'value': '60'},
    {'field': 'avgCpu', 'value': '40'},
    {'field': 'maxCpu', 'value': '95'},
    {'field': 'minCpu', 'value': '10'},
    {'field': 'avgMemory', 'value': '50'},
    {'field': 'maxMemory', 'value': '55'},
    {'field': 'minMemory', 'value': '45'},
]


def stopped_event(timestamp: str, arn: str) -> list:
    """Build a Logs Insights row with a STOPPED state change event."""
    detail = {'taskArn': arn, 'lastStatus': 'STOPPED', 'stopCode': 'TaskFailedToStart'}
    return [
        {'field': '@timestamp', 'value': timestamp},
        {'field': '@message', 'value': json.dumps({'time': timestamp, 'detail': detail})},
    ]


def found_task(arn: str) -> dict:
    """Build a DescribeTasks entry for a running service task."""
    return {
        'taskArn': arn,
        'lastStatus': 'RUNNING',
        'desiredStatus': 'RUNNING',
        'group': 'service:web',
        'taskDefinitionArn': 'arn:aws:ecs:us-east-1:123456789012:task-definition/web:3',
    }


def route_logs(mock_logs_client, ci_rows=None, history_rows=None, history_error=None):
    """Answer Container Insights and history queries differently."""

    def start_query(**kwargs):
        if 'containerinsights' in kwargs['logGroupName']:
            return {'queryId': 'ci'}
        if history_error is not None:
            raise history_error
        return {'queryId': 'history'}

    def get_query_results(queryId):
        rows = ci_rows if queryId == 'ci' else history_rows
        return {'status': 'Complete', 'results': rows or []}

    mock_logs_client.start_query.side_effect = start_query
    mock_logs_client.get_query_results.side_effect = get_query_results


class TestParseIdentifiers:
    """Tests for parse_identifiers."""

    def test_parses_and_dedupes(self):
        """ARNs are extracted from text and deduplicated; inputs without ARNs are listed."""
        tasks, unparsed = parse_identifiers(
            [TASK_ARN_1, f'alert: {TASK_ARN_2} and {TASK_ARN_1}', 'no arn here']
        )

        assert [task.full_arn for task in tasks] == [TASK_ARN_1, TASK_ARN_2]
        assert unparsed == ['no arn here']


class TestInvestigationValidation:
    """Tests for option validation before any AWS call."""

    def test_default_history_lookback(self):
        """Options default to the historical events lookback and cap it at a week."""
        options = EcsInvestigationOptions()
        assert options.lookback_hours == ECS_HISTORICAL_EVENTS_DEFAULT_LOOKBACK_HOURS

        with pytest.raises(ValueError):
            EcsInvestigationOptions(lookback_hours=MAX_LOOKBACK_HOURS + 1)

    @pytest.mark.asyncio
    async def test_bad_time_range_makes_no_calls(self, aws_clients, client_factories, settings):
        """A start after the end is rejected before any client is created."""
        options = EcsInvestigationOptions(
            start_time='2024-01-15T12:00:00Z', end_time='2024-01-15T10:00:00Z'
        )

        with pytest.raises(InvestigationConfigurationError):
            await investigate_ecs_tasks([TASK_ARN_1], options, aws_clients, settings)

        for factory in client_factories.values():
            factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_too_many_tasks(self, aws_clients, client_factories, settings):
        """More than 100 tasks are rejected."""
        arns = [f'arn:aws:ecs:us-east-1:123456789012:task/c/t{i}' for i in range(101)]

        with pytest.raises(InvestigationConfigurationError, match='100'):
            await investigate_ecs_tasks(arns, EcsInvestigationOptions(), aws_clients, settings)

        client_factories['ecs'].assert_not_called()

    @pytest.mark.asyncio
    async def test_zero_identifiers(self, aws_clients, client_factories, settings):
        """No tasks gives an empty, well-formed report without AWS calls."""
        report = await investigate_ecs_tasks(
            ['nothing useful'], EcsInvestigationOptions(), aws_clients, settings
        )

        assert report.results == []
        assert report.services == []
        assert report.unparsed_identifiers == ['nothing useful']
        assert report.summary.total_requested == 0
        assert report.summary.total_errors == 0
        for factory in client_factories.values():
            factory.assert_not_called()


class TestInvestigateEcsTasks:
    """Tests for investigate_ecs_tasks."""

    @pytest.mark.asyncio
    async def test_found_and_missing_tasks(
        self, aws_clients, settings, mock_ecs_client, mock_logs_client
    ):
        """Found tasks get status and service events; missing tasks get history."""
        mock_ecs_client.describe_tasks.return_value = {
            'tasks': [found_task(TASK_ARN_1)],
            'failures': [{'arn': TASK_ARN_2, 'reason': 'MISSING'}],
        }
        mock_ecs_client.describe_services.return_value = {
            'services': [
                {
                    'serviceName': 'web',
                    'events': [{'id': 'e1', 'createdAt': utc(2024, 1, 15), 'message': 'steady'}],
                }
            ]
        }
        route_logs(
            mock_logs_client,
            ci_rows=[CI_ROW],
            history_rows=[stopped_event('2024-01-15T10:00:00Z', TASK_ARN_2)],
        )

        report = await investigate_ecs_tasks(
            [TASK_ARN_1, TASK_ARN_2], EcsInvestigationOptions(), aws_clients, settings
        )

        found, missing = report.results
        assert found.task.full_arn == TASK_ARN_1
        assert found.status.last_status == 'RUNNING'
        assert found.metrics.cpu_utilization.max == 95.0
        assert found.historical_events == []
        assert missing.not_found
        assert missing.status is None
        assert missing.historical_events[0].stop_code == 'TaskFailedToStart'
        assert [service.service.service_name for service in report.services] == ['web']
        assert report.services[0].events[0].message == 'steady'
        assert report.summary.total_requested == 2
        assert report.summary.found == 1
        assert report.summary.not_found == 1
        assert report.summary.with_events == 1
        assert report.summary.services_queried == 1
        assert report.summary.total_errors == 0

    @pytest.mark.asyncio
    async def test_phase_failures_are_isolated(
        self, aws_clients, settings, mock_ecs_client, mock_logs_client
    ):
        """A failing history query is recorded on its task; service failures are run-level."""
        mock_ecs_client.describe_tasks.return_value = {
            'tasks': [found_task(TASK_ARN_1)],
            'failures': [{'arn': TASK_ARN_2, 'reason': 'MISSING'}],
        }
        mock_ecs_client.describe_services.side_effect = make_client_error(
            'AccessDeniedException', 'denied'
        )
        route_logs(
            mock_logs_client,
            ci_rows=[CI_ROW],
            history_error=make_client_error('ThrottlingException', 'slow down'),
        )

        report = await investigate_ecs_tasks(
            [TASK_ARN_1, TASK_ARN_2], EcsInvestigationOptions(), aws_clients, settings
        )

        found, missing = report.results
        assert found.status is not None
        assert found.errors == []
        assert missing.errors == ['Historical: ThrottlingException: slow down']
        assert len(report.errors) == 1
        assert report.errors[0].startswith('Service events: us-east-1:my-cluster:web')
        assert report.summary.total_errors == 2

    @pytest.mark.asyncio
    async def test_status_failures_recorded_per_task(
        self, aws_clients, settings, mock_ecs_client
    ):
        """Tasks whose status lookup failed carry the reason."""
        mock_ecs_client.describe_tasks.side_effect = make_client_error(
            'ThrottlingException', 'Rate exceeded'
        )
        options = EcsInvestigationOptions(include_metrics=False)

        report = await investigate_ecs_tasks([TASK_ARN_1], options, aws_clients, settings)

        assert report.results[0].errors == ['Task status: ThrottlingException: Rate exceeded']
        assert report.summary.failed == 1
        assert report.summary.found == 0

    @pytest.mark.asyncio
    async def test_container_insights_not_enabled(
        self, aws_clients, settings, mock_ecs_client, mock_logs_client
    ):
        """A missing performance log group becomes a note, not an error."""
        mock_ecs_client.describe_tasks.return_value = {'tasks': [found_task(TASK_ARN_1)]}
        mock_logs_client.start_query.side_effect = make_client_error('ResourceNotFoundException')
        options = EcsInvestigationOptions(include_events=False)

        report = await investigate_ecs_tasks([TASK_ARN_1], options, aws_clients, settings)

        assert report.results[0].metrics is None
        assert report.results[0].notes == [NO_CONTAINER_INSIGHTS_NOTE]
        assert report.results[0].errors == []

    @pytest.mark.asyncio
    async def test_slow_container_insights_query_is_stopped(
        self, aws_clients, mock_ecs_client, mock_logs_client
    ):
        """A query outlasting its wait is stopped and reported before the step budget ends."""
        settings = InvestigationSettings(
            step_timeout=0.5, query_max_wait=2.0, query_poll_interval=0.01
        )
        mock_ecs_client.describe_tasks.return_value = {'tasks': [found_task(TASK_ARN_1)]}
        mock_logs_client.get_query_results.return_value = {'status': 'Running'}
        options = EcsInvestigationOptions(include_events=False)

        report = await investigate_ecs_tasks([TASK_ARN_1], options, aws_clients, settings)

        assert report.results[0].errors == ['Metrics: Query timed out after 0.4s']
        mock_logs_client.stop_query.assert_called_once_with(queryId='query-1')

    @pytest.mark.asyncio
    async def test_history_log_group_missing(
        self, aws_clients, settings, mock_ecs_client, mock_logs_client
    ):
        """A missing history log group is noted on the missing task."""
        mock_ecs_client.describe_tasks.return_value = {
            'failures': [{'arn': TASK_ARN_2, 'reason': 'MISSING'}]
        }
        mock_logs_client.start_query.side_effect = make_client_error('ResourceNotFoundException')
        options = EcsInvestigationOptions(include_metrics=False)

        report = await investigate_ecs_tasks([TASK_ARN_2], options, aws_clients, settings)

        assert report.results[0].notes == [NO_HISTORY_LOG_GROUP_NOTE]

    @pytest.mark.asyncio
    async def test_cloudwatch_metrics_source(
        self, aws_clients, settings, mock_ecs_client, mock_logs_client, mock_cloudwatch_client
    ):
        """The CloudWatch strategy only runs for found tasks and skips Logs Insights."""
        mock_ecs_client.describe_tasks.return_value = {'tasks': [found_task(TASK_ARN_1)]}
        mock_cloudwatch_client.get_metric_data.return_value = {
            'MetricDataResults': [
                {'Id': 'cpuUtilized', 'Timestamps': [utc(2024, 1, 15)], 'Values': [128.0]},
                {'Id': 'cpuReserved', 'Timestamps': [utc(2024, 1, 15)], 'Values': [256.0]},
            ]
        }
        options = EcsInvestigationOptions(
            include_events=False, metrics_source=MetricsSource.CLOUDWATCH_METRICS
        )

        report = await investigate_ecs_tasks([TASK_ARN_1], options, aws_clients, settings)

        assert report.results[0].metrics.cpu_utilization.avg == 50.0
        assert report.summary.with_metrics == 1
        mock_logs_client.start_query.assert_not_called()

    @pytest.mark.asyncio
    async def test_nothing_optional(self, aws_clients, client_factories, settings):
        """With metrics and events disabled only the status lookup runs."""
        options = EcsInvestigationOptions(include_metrics=False, include_events=False)

        report = await investigate_ecs_tasks(
            [TASK_ARN_1, TASK_ARN_OTHER_REGION], options, aws_clients, settings
        )

        assert report.summary.total_requested == 2
        assert report.summary.not_found == 2
        assert sorted(call.args[0] for call in client_factories['ecs'].call_args_list) == [
            'eu-west-1',
            'us-east-1',
        ]
        client_factories['logs'].assert_not_called()
        client_factories['cloudwatch'].assert_not_called()
