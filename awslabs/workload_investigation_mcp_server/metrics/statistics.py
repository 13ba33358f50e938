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

"""Pure statistics helpers for metric summaries.

Derived ratios such as utilization are computed for every sample first and only
then summarized. Dividing aggregated utilized values by aggregated reserved values
gives a different, and for peaks misleading, answer.
"""

from loguru import logger
from pydantic import BaseModel, Field
from typing import Dict, Hashable, Iterable, List, Optional, Sequence, Tuple


class StatisticSummary(BaseModel):
    """Average, maximum and minimum of one measure. All None when there were no samples."""

    avg: Optional[float] = Field(None, description='Average value')
    max: Optional[float] = Field(None, description='Maximum value')
    min: Optional[float] = Field(None, description='Minimum value')

    @property
    def has_data(self) -> bool:
        """Whether at least one sample contributed to the summary."""
        return self.avg is not None


def bounded_summary(
    avg: Optional[float], maximum: Optional[float], minimum: Optional[float]
) -> StatisticSummary:
    """Build a summary from separately computed statistics, keeping min <= avg <= max.

    A missing maximum or minimum falls back to the average. When the average
    itself is missing there is no data and every field is None.
    """
    if avg is None:
        return StatisticSummary()
    high = avg if maximum is None else maximum
    low = avg if minimum is None else minimum
    low = min(low, avg)
    high = max(high, avg)
    return StatisticSummary(avg=avg, max=high, min=low)


def summarize_values(values: Sequence[float]) -> StatisticSummary:
    """Summarize raw samples. Returns an empty summary for an empty input."""
    if not values:
        return StatisticSummary()
    low = min(values)
    high = max(values)
    avg = sum(values) / len(values)
    # float rounding can push the mean of identical samples past them
    return StatisticSummary(avg=min(max(avg, low), high), max=high, min=low)


def utilization_percent(utilized: float, reserved: float) -> float:
    """Utilization of one sample as a percentage, 0 when nothing is reserved."""
    if reserved <= 0:
        return 0.0
    return round(utilized / reserved * 100, 2)


def per_sample_utilization(pairs: Iterable[Tuple[float, float]]) -> List[float]:
    """Compute utilization for every (utilized, reserved) pair, preserving order."""
    return [utilization_percent(utilized, reserved) for utilized, reserved in pairs]


def summarize_utilization(pairs: Iterable[Tuple[float, float]]) -> StatisticSummary:
    """Summarize utilization computed per sample before aggregating."""
    return summarize_values(per_sample_utilization(pairs))


def pair_with_reserved(
    utilized: Sequence[Tuple[Hashable, float]],
    reserved: Sequence[Tuple[Hashable, float]],
    measure: str = 'metric',
) -> List[Tuple[float, float]]:
    """Pair each utilized sample with the reserved sample of the same timestamp.

    When a timestamp has no reserved sample, the first reserved sample is used
    instead. This is an approximation: reservations rarely change within a task's
    lifetime, but the value is not exact if they did. Without any reserved
    samples no pair can be formed and the result is empty.

    Args:
        utilized: (timestamp, value) samples of the utilized measure
        reserved: (timestamp, value) samples of the reserved measure
        measure: Measure name used in warnings

    Returns:
        List of (utilized, reserved) pairs in the order of the utilized samples
    """
    if not utilized:
        return []
    if not reserved:
        logger.warning(
            f'No reserved samples for {measure}; skipping {len(utilized)} utilization samples'
        )
        return []

    reserved_by_timestamp: Dict[Hashable, float] = {}
    for timestamp, value in reserved:
        reserved_by_timestamp.setdefault(timestamp, value)
    fallback = reserved[0][1]

    pairs = []
    fallback_count = 0
    for timestamp, value in utilized:
        reserved_value = reserved_by_timestamp.get(timestamp)
        if reserved_value is None:
            reserved_value = fallback
            fallback_count += 1
        pairs.append((value, reserved_value))

    if fallback_count:
        logger.warning(
            f'Used the first reserved sample for {fallback_count} of {len(utilized)} '
            f'{measure} samples without a matching reserved sample'
        )
    return pairs
