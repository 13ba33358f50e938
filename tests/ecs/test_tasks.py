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

"""Tests for batched ECS task status lookups."""

import pytest
import time
from awslabs.workload_investigation_mcp_server.common.clients import ClientRegistry
from awslabs.workload_investigation_mcp_server.ecs.arns import parse_task_arn
from awslabs.workload_investigation_mcp_server.ecs.tasks import (
    describe_ecs_tasks,
    extract_service_name,
    format_task_info,
)
from tests.conftest import TASK_ARN_1, TASK_ARN_2, TASK_ARN_OTHER_REGION, make_client_error, utc
from unittest.mock import MagicMock


def task_arn(index: int, cluster: str = 'my-cluster', region: str = 'us-east-1') -> str:
    """Build a task ARN with a numbered id."""
    return f'arn:aws:ecs:{region}:123456789012:task/{cluster}/task{index:04d}'


def running_task(arn: str, group: str = 'service:web') -> dict:
    """Build a DescribeTasks task entry."""
    return {
        'taskArn': arn,
        'lastStatus': 'RUNNING',
        'desiredStatus': 'RUNNING',
        'group': group,
        'taskDefinitionArn': 'arn:aws:ecs:us-east-1:123456789012:task-definition/web:3',
        'cpu': '256',
        'memory': '512',
        'createdAt': utc(2024, 1, 15, 9),
        'containers': [{'name': 'app', 'lastStatus': 'RUNNING', 'cpu': 128, 'memory': 256}],
        'tags': [{'key': 'team', 'value': 'payments'}],
    }


def echo_describe_tasks(**kwargs):
    """DescribeTasks that finds every requested task."""
    return {'tasks': [running_task(arn) for arn in kwargs['tasks']], 'failures': []}


class TestHelpers:
    """Tests for the formatting helpers."""

    def test_extract_service_name(self):
        """Service names come from service groups only."""
        assert extract_service_name('service:web') == 'web'
        assert extract_service_name('family:web') is None
        assert extract_service_name(None) is None

    def test_format_task_info(self):
        """Raw task fields are mapped and region and cluster come from the ARN."""
        info = format_task_info(running_task(TASK_ARN_1), parse_task_arn(TASK_ARN_1))

        assert info.task_id == 'abc123def456'
        assert info.cluster_name == 'my-cluster'
        assert info.region == 'us-east-1'
        assert info.service_name == 'web'
        assert info.containers[0].cpu == '128'
        assert info.tags == {'team': 'payments'}


class TestDescribeEcsTasks:
    """Tests for describe_ecs_tasks."""

    @pytest.mark.asyncio
    async def test_batches_of_fifty(self, mock_ecs_client):
        """120 tasks in one cluster take three sequential calls."""
        mock_ecs_client.describe_tasks.side_effect = echo_describe_tasks
        tasks = [parse_task_arn(task_arn(i)) for i in range(120)]
        registry = ClientRegistry(lambda region: mock_ecs_client)

        result = await describe_ecs_tasks(tasks, registry, 5.0)

        calls = mock_ecs_client.describe_tasks.call_args_list
        batch_sizes = [len(c.kwargs['tasks']) for c in calls]
        assert batch_sizes == [50, 50, 20]
        assert len(result.tasks) == 120
        assert result.not_found == []
        assert result.failures == []
        assert mock_ecs_client.describe_tasks.call_args.kwargs['include'] == ['TAGS']

    @pytest.mark.asyncio
    async def test_groups_by_region_and_cluster(self):
        """Each region and cluster gets its own calls with the right client."""
        clients = {'us-east-1': MagicMock(), 'eu-west-1': MagicMock()}
        for client in clients.values():
            client.describe_tasks.side_effect = echo_describe_tasks
        registry = ClientRegistry(lambda region: clients[region])
        tasks = [
            parse_task_arn(TASK_ARN_1),
            parse_task_arn(task_arn(1, cluster='other')),
            parse_task_arn(TASK_ARN_OTHER_REGION),
        ]

        result = await describe_ecs_tasks(tasks, registry, 5.0)

        east_clusters = sorted(
            c.kwargs['cluster'] for c in clients['us-east-1'].describe_tasks.call_args_list
        )
        assert east_clusters == ['my-cluster', 'other']
        clients['eu-west-1'].describe_tasks.assert_called_once()
        assert clients['eu-west-1'].describe_tasks.call_args.kwargs['cluster'] == 'eu-cluster'
        assert len(result.tasks) == 3

    @pytest.mark.asyncio
    async def test_classifies_failures(self, mock_ecs_client):
        """MISSING is not found, other reasons fail, and absent ARNs are not found."""
        missing = task_arn(2)
        absent = task_arn(3)
        mock_ecs_client.describe_tasks.return_value = {
            'tasks': [running_task(TASK_ARN_1)],
            'failures': [
                {'arn': missing, 'reason': 'MISSING'},
                {'arn': TASK_ARN_2, 'reason': 'ACCESS_DENIED', 'detail': 'no permission'},
                {'arn': 'arn:aws:ecs:us-east-1:123456789012:task/my-cluster/unrelated'},
            ],
        }
        tasks = [parse_task_arn(arn) for arn in (TASK_ARN_1, missing, TASK_ARN_2, absent)]
        registry = ClientRegistry(lambda region: mock_ecs_client)

        result = await describe_ecs_tasks(tasks, registry, 5.0)

        assert [task.task_arn for task in result.tasks] == [TASK_ARN_1]
        assert sorted(result.not_found) == sorted([missing, absent])
        assert len(result.failures) == 1
        assert result.failures[0].task_arn == TASK_ARN_2
        assert result.failures[0].reason == 'ACCESS_DENIED: no permission'

    @pytest.mark.asyncio
    async def test_failed_batch_does_not_affect_others(self, mock_ecs_client):
        """An error on one batch fails only that batch's tasks."""
        responses = [make_client_error('ThrottlingException', 'Rate exceeded')]

        def describe(**kwargs):
            if responses:
                raise responses.pop()
            return echo_describe_tasks(**kwargs)

        mock_ecs_client.describe_tasks.side_effect = describe
        tasks = [parse_task_arn(task_arn(i)) for i in range(60)]
        registry = ClientRegistry(lambda region: mock_ecs_client)

        result = await describe_ecs_tasks(tasks, registry, 5.0)

        assert len(result.failures) == 50
        assert result.failures[0].reason == 'ThrottlingException: Rate exceeded'
        assert len(result.tasks) == 10

    @pytest.mark.asyncio
    async def test_cluster_timeout_marks_tasks_failed(self):
        """A cluster exceeding its budget fails its tasks without losing other clusters."""
        slow = MagicMock()
        fast = MagicMock()

        def slow_describe(**kwargs):
            time.sleep(0.5)
            return echo_describe_tasks(**kwargs)

        slow.describe_tasks.side_effect = slow_describe
        fast.describe_tasks.side_effect = echo_describe_tasks
        registry = ClientRegistry(lambda region: slow if region == 'eu-west-1' else fast)
        tasks = [parse_task_arn(TASK_ARN_1), parse_task_arn(TASK_ARN_OTHER_REGION)]

        result = await describe_ecs_tasks(tasks, registry, 0.1)

        assert [task.task_arn for task in result.tasks] == [TASK_ARN_1]
        assert [failure.task_arn for failure in result.failures] == [TASK_ARN_OTHER_REGION]
        assert 'timed out' in result.failures[0].reason

    @pytest.mark.asyncio
    async def test_every_task_classified_once(self, mock_ecs_client):
        """Duplicated input ARNs are reported once."""
        registry = ClientRegistry(lambda region: mock_ecs_client)
        tasks = [parse_task_arn(TASK_ARN_1), parse_task_arn(TASK_ARN_1)]

        result = await describe_ecs_tasks(tasks, registry, 5.0)

        assert result.not_found == [TASK_ARN_1]
