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

"""Performance Insights top SQL for RDS DB instances."""

import asyncio
from ..common.exceptions import is_error_code
from ..common.time_range import TimeRange
from ..constants import METRICS_PERIOD_SECONDS, PI_NOT_ENABLED_NOTE
from .models import PerformanceInsightsSummary, RdsInstanceInfo, TopSqlQuery
from botocore.exceptions import ClientError
from loguru import logger
from mypy_boto3_pi import PIClient
from typing import Any, Dict, Optional


DB_LOAD_METRIC = 'db.load.avg'
SQL_GROUP = 'db.sql'
SQL_DIMENSIONS = ['db.sql.id', 'db.sql.statement']
UNAVAILABLE_ERROR_CODES = ('InvalidArgumentException', 'NotAuthorizedException')
MISSING_RESOURCE_ID_NOTE = 'Instance has no DbiResourceId; Performance Insights cannot be queried'


def format_top_sql(key: Dict[str, Any], total_load: float) -> TopSqlQuery:
    """Format one DescribeDimensionKeys entry as a top SQL record."""
    dimensions = key.get('Dimensions', {})
    load = float(key.get('Total', 0.0) or 0.0)
    return TopSqlQuery(
        sql_id=dimensions.get('db.sql.id') or dimensions.get('db.sql_tokenized.id') or 'unknown',
        sql_text=dimensions.get('db.sql.statement')
        or dimensions.get('db.sql_tokenized.statement')
        or '',
        avg_db_load=load,
        load_percentage=round(load / total_load * 100, 2) if total_load > 0 else 0.0,
    )


async def get_top_sql(
    client: PIClient, instance: RdsInstanceInfo, time_range: TimeRange, limit: int
) -> PerformanceInsightsSummary:
    """Return the SQL statements contributing most to database load.

    Instances without Performance Insights, and Performance Insights refusing the
    request, yield an empty list with a note instead of an error.

    Args:
        client: Performance Insights boto3 client in the instance's region
        instance: The DB instance
        time_range: Window to rank statements over
        limit: Maximum number of statements

    Returns:
        PerformanceInsightsSummary: Top SQL ordered by load, heaviest first
    """
    summary = PerformanceInsightsSummary(
        instance_identifier=instance.instance_identifier,
        start_time=time_range.start_time,
        end_time=time_range.end_time,
    )
    if not instance.performance_insights_enabled:
        summary.note = PI_NOT_ENABLED_NOTE
        return summary
    if not instance.dbi_resource_id:
        logger.warning(f'No DbiResourceId for {instance.instance_identifier}')
        summary.note = MISSING_RESOURCE_ID_NOTE
        return summary

    try:
        response = await asyncio.to_thread(
            client.describe_dimension_keys,
            ServiceType='RDS',
            Identifier=instance.dbi_resource_id,
            StartTime=time_range.start_time,
            EndTime=time_range.end_time,
            Metric=DB_LOAD_METRIC,
            GroupBy={'Group': SQL_GROUP, 'Dimensions': SQL_DIMENSIONS, 'Limit': limit},
            PeriodInSeconds=METRICS_PERIOD_SECONDS,
        )
    except ClientError as e:
        if is_error_code(e, *UNAVAILABLE_ERROR_CODES):
            logger.info(
                f'Performance Insights unavailable for {instance.instance_identifier}: {e}'
            )
            summary.note = f'Performance Insights unavailable: {e.response["Error"]["Code"]}'
            return summary
        raise

    keys = response.get('Keys', [])
    total_load = sum(float(key.get('Total', 0.0) or 0.0) for key in keys)
    summary.top_sql_queries = sorted(
        (format_top_sql(key, total_load) for key in keys),
        key=lambda query: query.avg_db_load,
        reverse=True,
    )
    return summary


async def get_full_sql_text(client: PIClient, dbi_resource_id: str, sql_id: str) -> Optional[str]:
    """Fetch the complete text of a SQL statement, which top SQL may truncate."""
    try:
        response = await asyncio.to_thread(
            client.get_dimension_key_details,
            ServiceType='RDS',
            Identifier=dbi_resource_id,
            Group=SQL_GROUP,
            GroupIdentifier=sql_id,
            RequestedDimensions=['statement'],
        )
    except ClientError as e:
        if is_error_code(e, *UNAVAILABLE_ERROR_CODES):
            logger.info(f'SQL text unavailable for {sql_id}: {e}')
            return None
        raise

    for dimension in response.get('Dimensions', []):
        if (
            dimension.get('Dimension') == 'db.sql.statement'
            and dimension.get('Status') != 'UNAVAILABLE'
        ):
            return dimension.get('Value')
    return None
