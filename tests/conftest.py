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

"""Test fixtures for the workload-investigation-mcp-server tests."""

import pytest
from awslabs.workload_investigation_mcp_server.common.clients import AwsClients
from awslabs.workload_investigation_mcp_server.common.config import InvestigationSettings
from botocore.exceptions import ClientError
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock


TASK_ARN_1 = 'arn:aws:ecs:us-east-1:123456789012:task/my-cluster/abc123def456'
TASK_ARN_2 = 'arn:aws:ecs:us-east-1:123456789012:task/my-cluster/0f1e2d3c4b5a'
TASK_ARN_OTHER_REGION = 'arn:aws:ecs:eu-west-1:123456789012:task/eu-cluster/77aa88bb99cc'


def make_client_error(code: str, message: str = 'error', operation: str = 'Operation'):
    """Build a botocore ClientError carrying an AWS error code."""
    return ClientError({'Error': {'Code': code, 'Message': message}}, operation)


def utc(*args) -> datetime:
    """Build a UTC datetime."""
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def mock_context():
    """Create a mock MCP context."""
    context = MagicMock()
    context.info = AsyncMock()
    context.error = AsyncMock()
    return context


@pytest.fixture
def settings():
    """Settings with short budgets so tests run quickly."""
    return InvestigationSettings(
        step_timeout=2.0,
        query_max_wait=2.0,
        query_poll_interval=0.01,
    )


@pytest.fixture
def mock_ecs_client():
    """Create a mock ECS client."""
    client = MagicMock()
    client.describe_tasks.return_value = {'tasks': [], 'failures': []}
    client.describe_services.return_value = {'services': [], 'failures': []}
    return client


@pytest.fixture
def mock_logs_client():
    """Create a mock CloudWatch Logs client whose queries complete with no rows."""
    client = MagicMock()
    client.start_query.return_value = {'queryId': 'query-1'}
    client.get_query_results.return_value = {'status': 'Complete', 'results': []}
    return client


@pytest.fixture
def mock_cloudwatch_client():
    """Create a mock CloudWatch client returning no metric data."""
    client = MagicMock()
    client.get_metric_data.return_value = {'MetricDataResults': []}
    return client


@pytest.fixture
def mock_rds_client():
    """Create a mock RDS client."""
    client = MagicMock()
    client.meta.region_name = 'us-east-1'
    return client


@pytest.fixture
def mock_pi_client():
    """Create a mock Performance Insights client."""
    client = MagicMock()
    client.describe_dimension_keys.return_value = {'Keys': []}
    return client


@pytest.fixture
def client_factories(
    mock_ecs_client, mock_logs_client, mock_cloudwatch_client, mock_rds_client, mock_pi_client
):
    """One factory per service, each returning the service's mock for any region."""
    clients = {
        'ecs': mock_ecs_client,
        'logs': mock_logs_client,
        'cloudwatch': mock_cloudwatch_client,
        'rds': mock_rds_client,
        'pi': mock_pi_client,
    }
    return {service: MagicMock(return_value=client) for service, client in clients.items()}


@pytest.fixture
def aws_clients(client_factories):
    """Client registries backed by the mock factories."""
    return AwsClients(client_factories)


def sample_rds_instance(
    identifier: str,
    cluster: str = None,
    pi_enabled: bool = True,
    instance_class: str = 'db.r6g.large',
):
    """Build a DescribeDBInstances entry."""
    instance = {
        'DBInstanceIdentifier': identifier,
        'DBInstanceArn': f'arn:aws:rds:us-east-1:123456789012:db:{identifier}',
        'DbiResourceId': f'db-{identifier.upper()}',
        'DBInstanceClass': instance_class,
        'Engine': 'aurora-postgresql',
        'EngineVersion': '15.4',
        'DBInstanceStatus': 'available',
        'AvailabilityZone': 'us-east-1a',
        'Endpoint': {'Address': f'{identifier}.abc123.us-east-1.rds.amazonaws.com', 'Port': 5432},
        'PerformanceInsightsEnabled': pi_enabled,
        'PerformanceInsightsRetentionPeriod': 7 if pi_enabled else None,
        'InstanceCreateTime': utc(2024, 1, 1),
    }
    if cluster:
        instance['DBClusterIdentifier'] = cluster
    return instance


def sample_rds_cluster(identifier: str, members):
    """Build a DescribeDBClusters entry from (instance id, is writer) pairs."""
    return {
        'DBClusterIdentifier': identifier,
        'DBClusterArn': f'arn:aws:rds:us-east-1:123456789012:cluster:{identifier}',
        'Engine': 'aurora-postgresql',
        'EngineVersion': '15.4',
        'Status': 'available',
        'Endpoint': f'{identifier}.cluster-abc123.us-east-1.rds.amazonaws.com',
        'ReaderEndpoint': f'{identifier}.cluster-ro-abc123.us-east-1.rds.amazonaws.com',
        'DBClusterMembers': [
            {'DBInstanceIdentifier': member, 'IsClusterWriter': writer}
            for member, writer in members
        ],
    }


def rds_backend(mock_rds_client, instances=(), clusters=(), instance_errors=None):
    """Serve DescribeDBInstances and DescribeDBClusters from fixtures."""
    instances_by_id = {instance['DBInstanceIdentifier']: instance for instance in instances}
    clusters_by_id = {cluster['DBClusterIdentifier']: cluster for cluster in clusters}
    instance_errors = instance_errors or {}

    def describe_db_instances(DBInstanceIdentifier):
        if DBInstanceIdentifier in instance_errors:
            raise instance_errors[DBInstanceIdentifier]
        if DBInstanceIdentifier not in instances_by_id:
            raise make_client_error('DBInstanceNotFound', f'{DBInstanceIdentifier} not found')
        return {'DBInstances': [instances_by_id[DBInstanceIdentifier]]}

    def describe_db_clusters(DBClusterIdentifier):
        if DBClusterIdentifier not in clusters_by_id:
            raise make_client_error('DBClusterNotFoundFault', f'{DBClusterIdentifier} not found')
        return {'DBClusters': [clusters_by_id[DBClusterIdentifier]]}

    mock_rds_client.describe_db_instances.side_effect = describe_db_instances
    mock_rds_client.describe_db_clusters.side_effect = describe_db_clusters
