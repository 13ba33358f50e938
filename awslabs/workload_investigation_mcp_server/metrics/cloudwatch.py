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

"""Client-side statistic extraction over paginated CloudWatch GetMetricData results."""

import asyncio
from ..common.time_range import TimeRange
from ..common.utils import remove_null_values
from .statistics import StatisticSummary, bounded_summary, summarize_values
from datetime import datetime
from loguru import logger
from mypy_boto3_cloudwatch import CloudWatchClient
from mypy_boto3_cloudwatch.type_defs import MetricDataQueryTypeDef
from pydantic import BaseModel, Field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple


class MetricQuery(BaseModel):
    """A named metric and the statistic to request for it."""

    id: str = Field(..., description='Query id, unique within one GetMetricData call')
    metric_name: str = Field(..., description='CloudWatch metric name')
    stat: str = Field('Average', description='CloudWatch statistic, e.g. Average or Maximum')


class MetricSeries(BaseModel):
    """All samples returned for one query id, merged across pages."""

    id: str = Field(..., description='Query id')
    label: Optional[str] = Field(None, description='Label returned by CloudWatch')
    timestamps: List[datetime] = Field(default_factory=list, description='Sample timestamps')
    values: List[float] = Field(default_factory=list, description='Sample values')

    def points(self) -> List[Tuple[datetime, float]]:
        """Return (timestamp, value) pairs."""
        return list(zip(self.timestamps, self.values))


def build_metric_data_queries(
    namespace: str,
    dimensions: Dict[str, str],
    queries: Iterable[MetricQuery],
    period: int,
) -> List[MetricDataQueryTypeDef]:
    """Build GetMetricData queries sharing a namespace, dimensions and period."""
    cw_dimensions = [{'Name': name, 'Value': value} for name, value in dimensions.items()]
    return [
        {
            'Id': query.id,
            'MetricStat': {
                'Metric': {
                    'Namespace': namespace,
                    'MetricName': query.metric_name,
                    'Dimensions': cw_dimensions,
                },
                'Period': period,
                'Stat': query.stat,
            },
            'ReturnData': True,
        }
        for query in queries
    ]


async def query_cloudwatch_metrics(
    client: CloudWatchClient,
    queries: Sequence[MetricDataQueryTypeDef],
    time_range: TimeRange,
) -> Dict[str, MetricSeries]:
    """Fetch every page of a GetMetricData request and merge the pages by query id.

    Values and timestamps of later pages are appended to the series of the same
    id, keeping each timestamp paired with its value.

    Args:
        client: CloudWatch boto3 client
        queries: The metric data queries
        time_range: Window to query

    Returns:
        Dict mapping query id to its merged series
    """
    merged: Dict[str, MetricSeries] = {}
    next_token: Optional[str] = None
    pages = 0

    while True:
        kwargs = remove_null_values(
            {
                'MetricDataQueries': list(queries),
                'StartTime': time_range.start_time,
                'EndTime': time_range.end_time,
                'ScanBy': 'TimestampAscending',
                'NextToken': next_token,
            }
        )
        response = await asyncio.to_thread(client.get_metric_data, **kwargs)
        pages += 1

        for result in response.get('MetricDataResults', []):
            query_id = result.get('Id', '')
            series = merged.get(query_id)
            if series is None:
                series = MetricSeries(id=query_id, label=result.get('Label'))
                merged[query_id] = series
            for timestamp, value in zip(result.get('Timestamps', []), result.get('Values', [])):
                series.timestamps.append(timestamp)
                series.values.append(value)

        next_token = response.get('NextToken')
        if not next_token:
            break

    logger.debug(f'Fetched {len(merged)} metric series over {pages} page(s)')
    return merged


def extract_statistic(series: Optional[MetricSeries], statistic: str) -> Optional[float]:
    """Compute avg, max or min over a merged series. None when the series has no samples."""
    if series is None or not series.values:
        return None
    if statistic == 'avg':
        return sum(series.values) / len(series.values)
    if statistic == 'max':
        return max(series.values)
    if statistic == 'min':
        return min(series.values)
    raise ValueError(f'Unsupported statistic: {statistic}')


def summarize_measure(
    series: Dict[str, MetricSeries],
    avg_id: str,
    max_id: Optional[str] = None,
    min_id: Optional[str] = None,
) -> StatisticSummary:
    """Summarize one measure from its Average series and optional Maximum/Minimum series.

    Without a dedicated Maximum or Minimum series the extreme is taken over the
    Average samples.
    """
    average = series.get(avg_id)
    if average is None or not average.values:
        return StatisticSummary()
    if max_id is None and min_id is None:
        return summarize_values(average.values)
    avg = extract_statistic(average, 'avg')
    maximum = extract_statistic(series.get(max_id), 'max') if max_id else None
    minimum = extract_statistic(series.get(min_id), 'min') if min_id else None
    if maximum is None:
        maximum = extract_statistic(average, 'max')
    if minimum is None:
        minimum = extract_statistic(average, 'min')
    return bounded_summary(avg, maximum, minimum)


def get_timestamp_range(
    series: Iterable[MetricSeries],
) -> Tuple[int, Optional[datetime], Optional[datetime]]:
    """Return the number of distinct sample timestamps and the first and last of them."""
    timestamps = {timestamp for item in series for timestamp in item.timestamps}
    if not timestamps:
        return 0, None, None
    return len(timestamps), min(timestamps), max(timestamps)
