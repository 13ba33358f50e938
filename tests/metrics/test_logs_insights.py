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

"""Tests for Logs Insights query execution."""

import pytest
from awslabs.workload_investigation_mcp_server.common.exceptions import (
    QueryFailedError,
    QueryTimeoutError,
)
from awslabs.workload_investigation_mcp_server.common.time_range import TimeRange
from awslabs.workload_investigation_mcp_server.metrics.logs_insights import (
    rows_to_dicts,
    run_insights_query,
)
from tests.conftest import make_client_error, utc


@pytest.fixture
def time_range():
    """A one hour window."""
    return TimeRange(start_time=utc(2024, 1, 15, 10), end_time=utc(2024, 1, 15, 11))


def test_rows_to_dicts():
    """Result rows become field dictionaries."""
    rows = [[{'field': 'a', 'value': '1'}, {'field': 'b', 'value': '2'}], [{'field': 'a'}]]
    assert rows_to_dicts(rows) == [{'a': '1', 'b': '2'}, {'a': ''}]


class TestRunInsightsQuery:
    """Tests for run_insights_query."""

    @pytest.mark.asyncio
    async def test_polls_until_complete(self, mock_logs_client, time_range):
        """Running queries are polled until they complete."""
        mock_logs_client.get_query_results.side_effect = [
            {'status': 'Running'},
            {'status': 'Complete', 'results': [[{'field': 'avgCpu', 'value': '12.5'}]]},
        ]

        rows = await run_insights_query(
            mock_logs_client, '/log/group', 'stats count(*)', time_range, 2.0, 0.01, limit=5
        )

        assert rows == [{'avgCpu': '12.5'}]
        mock_logs_client.start_query.assert_called_once_with(
            logGroupName='/log/group',
            startTime=1705312800,
            endTime=1705316400,
            queryString='stats count(*)',
            limit=5,
        )
        assert mock_logs_client.get_query_results.call_count == 2

    @pytest.mark.asyncio
    async def test_missing_log_group(self, mock_logs_client, time_range):
        """A missing log group means no data rather than a failure."""
        mock_logs_client.start_query.side_effect = make_client_error(
            'ResourceNotFoundException', 'Log group does not exist'
        )

        assert await run_insights_query(mock_logs_client, '/x', 'q', time_range, 1, 0.01) is None
        mock_logs_client.get_query_results.assert_not_called()

    @pytest.mark.asyncio
    async def test_other_start_errors_propagate(self, mock_logs_client, time_range):
        """Other start errors reach the caller."""
        mock_logs_client.start_query.side_effect = make_client_error('AccessDeniedException')

        with pytest.raises(Exception) as exc_info:
            await run_insights_query(mock_logs_client, '/x', 'q', time_range, 1, 0.01)
        assert 'AccessDeniedException' in str(exc_info.value)

    @pytest.mark.asyncio
    @pytest.mark.parametrize('status', ['Failed', 'Cancelled', 'Timeout'])
    async def test_failed_query(self, mock_logs_client, time_range, status):
        """Terminal failure statuses raise QueryFailedError."""
        mock_logs_client.get_query_results.return_value = {'status': status}

        with pytest.raises(QueryFailedError, match=status):
            await run_insights_query(mock_logs_client, '/x', 'q', time_range, 1, 0.01)

    @pytest.mark.asyncio
    async def test_query_timeout(self, mock_logs_client, time_range):
        """A query that never completes times out."""
        mock_logs_client.get_query_results.return_value = {'status': 'Running'}

        with pytest.raises(QueryTimeoutError):
            await run_insights_query(mock_logs_client, '/x', 'q', time_range, 0.05, 0.01)

        mock_logs_client.stop_query.assert_called_once_with(queryId='query-1')

    @pytest.mark.asyncio
    async def test_query_timeout_when_stop_fails(self, mock_logs_client, time_range):
        """A query that cannot be stopped still reports the timeout."""
        mock_logs_client.get_query_results.return_value = {'status': 'Running'}
        mock_logs_client.stop_query.side_effect = make_client_error(
            'InvalidParameterException', 'Query is not running'
        )

        with pytest.raises(QueryTimeoutError, match='0.05s'):
            await run_insights_query(mock_logs_client, '/x', 'q', time_range, 0.05, 0.01)
