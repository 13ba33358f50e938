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

"""Parsing and extraction of ECS task ARNs."""

import re
from .models import ParsedTaskArn
from typing import Any, Iterable, List, Mapping, Optional


TASK_ARN_PATTERN = r'arn:aws:ecs:([^:]+):(\d+):task/([^/]+)/([a-zA-Z0-9-]+)'
TASK_ARN_REGEX = re.compile(TASK_ARN_PATTERN)
TASK_ARN_SEARCH_REGEX = re.compile(r'arn:aws:ecs:[^:\s]+:\d+:task/[^/\s]+/[a-zA-Z0-9-]+')

LOG_RECORD_TASK_ARN_FIELD = 'ecs_task_arn'


def parse_task_arn(arn: Any) -> Optional[ParsedTaskArn]:
    """Parse a task ARN. Returns None for anything that is not a well-formed task ARN."""
    if not isinstance(arn, str):
        return None
    match = TASK_ARN_REGEX.fullmatch(arn)
    if match is None:
        return None
    region, account_id, cluster_name, task_id = match.groups()
    return ParsedTaskArn(
        region=region,
        account_id=account_id,
        cluster_name=cluster_name,
        task_id=task_id,
        full_arn=arn,
    )


def _parse_unique(candidates: Iterable[str]) -> List[ParsedTaskArn]:
    seen = set()
    parsed = []
    for candidate in candidates:
        if candidate in seen:
            continue
        seen.add(candidate)
        task = parse_task_arn(candidate)
        if task is not None:
            parsed.append(task)
    return parsed


def extract_task_arns_from_text(text: str) -> List[ParsedTaskArn]:
    """Find every task ARN in free text, deduplicated in order of first appearance."""
    if not text:
        return []
    return _parse_unique(TASK_ARN_SEARCH_REGEX.findall(text))


def extract_task_arns_from_logs(records: Iterable[Mapping[str, Any]]) -> List[ParsedTaskArn]:
    """Collect task ARNs from the ecs_task_arn field of structured log records."""
    candidates = (
        record[LOG_RECORD_TASK_ARN_FIELD]
        for record in records
        if isinstance(record.get(LOG_RECORD_TASK_ARN_FIELD), str)
    )
    return _parse_unique(candidates)
