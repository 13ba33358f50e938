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

"""Server-side aggregation with CloudWatch Logs Insights queries."""

import asyncio
from ..common.exceptions import (
    QueryFailedError,
    QueryTimeoutError,
    get_error_message,
    is_error_code,
)
from ..common.time_range import TimeRange
from ..common.utils import remove_null_values, to_epoch_seconds
from botocore.exceptions import ClientError
from loguru import logger
from mypy_boto3_logs import CloudWatchLogsClient
from timeit import default_timer as timer
from typing import Dict, List, Optional


TERMINAL_FAILURE_STATUSES = {'Failed', 'Cancelled', 'Timeout'}


def rows_to_dicts(results: List[List[Dict[str, str]]]) -> List[Dict[str, str]]:
    """Convert Logs Insights result rows into plain field-to-value dictionaries."""
    return [
        {field['field']: field.get('value', '') for field in row if 'field' in field}
        for row in results
    ]


async def run_insights_query(
    client: CloudWatchLogsClient,
    log_group_name: str,
    query_string: str,
    time_range: TimeRange,
    max_wait: float,
    poll_interval: float,
    limit: Optional[int] = None,
) -> Optional[List[Dict[str, str]]]:
    """Start a Logs Insights query and poll until it completes.

    Args:
        client: CloudWatch Logs boto3 client
        log_group_name: Log group to query
        query_string: Logs Insights query
        time_range: Window to query
        max_wait: Maximum time to wait for completion in seconds
        poll_interval: Delay between status polls in seconds
        limit: Optional maximum number of rows

    Returns:
        The result rows, or None when the log group does not exist

    Raises:
        QueryFailedError: If the query ends as Failed, Cancelled or Timeout
        QueryTimeoutError: If the query does not complete within max_wait; the query is
            stopped first
    """
    kwargs = remove_null_values(
        {
            'logGroupName': log_group_name,
            'startTime': to_epoch_seconds(time_range.start_time),
            'endTime': to_epoch_seconds(time_range.end_time),
            'queryString': query_string,
            'limit': limit,
        }
    )
    try:
        start_response = await asyncio.to_thread(client.start_query, **kwargs)
    except ClientError as e:
        if is_error_code(e, 'ResourceNotFoundException'):
            logger.info(f'Log group {log_group_name} not found, no data available')
            return None
        raise

    query_id = start_response['queryId']
    logger.debug(f'Started Logs Insights query {query_id} on {log_group_name}')

    poll_start = timer()
    while poll_start + max_wait > timer():
        response = await asyncio.to_thread(client.get_query_results, queryId=query_id)
        status = response.get('status')

        if status == 'Complete':
            rows = rows_to_dicts(response.get('results', []))
            logger.debug(f'Query {query_id} completed with {len(rows)} row(s)')
            return rows
        if status in TERMINAL_FAILURE_STATUSES:
            raise QueryFailedError(status)

        await asyncio.sleep(poll_interval)

    await stop_query(client, query_id)
    raise QueryTimeoutError(query_id, max_wait)


async def stop_query(client: CloudWatchLogsClient, query_id: str) -> None:
    """Stop a running query. A failure to stop it is logged, not raised."""
    try:
        await asyncio.to_thread(client.stop_query, queryId=query_id)
        logger.info(f'Stopped Logs Insights query {query_id}')
    except ClientError as e:
        logger.warning(f'Could not stop Logs Insights query {query_id}: {get_error_message(e)}')
