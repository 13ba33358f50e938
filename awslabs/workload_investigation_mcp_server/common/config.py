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

"""Runtime configuration for the Workload Investigation MCP Server."""

import os
from ..constants import (
    DEFAULT_ECS_EVENTS_LOG_GROUP,
    DEFAULT_QUERY_MAX_WAIT_SECONDS,
    DEFAULT_QUERY_POLL_INTERVAL_SECONDS,
    DEFAULT_STEP_TIMEOUT_SECONDS,
    QUERY_WAIT_BUDGET_FRACTION,
)
from pydantic import BaseModel, Field
from typing import Mapping, Optional


ENV_PREFIX = 'WORKLOAD_INVESTIGATION'


class InvestigationSettings(BaseModel):
    """Settings shared by every investigation run by this server."""

    profile_name: Optional[str] = Field(None, description='AWS profile used for boto3 sessions')
    max_retries: int = Field(3, ge=0, description='Maximum botocore retry attempts')
    retry_mode: str = Field('standard', description='botocore retry mode')
    connect_timeout: int = Field(5, gt=0, description='Connection timeout in seconds')
    read_timeout: int = Field(10, gt=0, description='Read timeout in seconds')
    step_timeout: float = Field(
        DEFAULT_STEP_TIMEOUT_SECONDS, gt=0, description='Time budget for a single step in seconds'
    )
    query_max_wait: float = Field(
        DEFAULT_QUERY_MAX_WAIT_SECONDS,
        gt=0,
        description='Maximum time to wait for a Logs Insights query in seconds',
    )
    query_poll_interval: float = Field(
        DEFAULT_QUERY_POLL_INTERVAL_SECONDS,
        gt=0,
        description='Interval between Logs Insights query status polls in seconds',
    )
    ecs_events_log_group: str = Field(
        DEFAULT_ECS_EVENTS_LOG_GROUP,
        description='Log group holding EventBridge ECS task state change events',
    )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'InvestigationSettings':
        """Build settings from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        values = {
            'profile_name': env.get('AWS_PROFILE'),
            'max_retries': env.get(f'{ENV_PREFIX}_MAX_RETRIES'),
            'retry_mode': env.get(f'{ENV_PREFIX}_RETRY_MODE'),
            'connect_timeout': env.get(f'{ENV_PREFIX}_CONNECT_TIMEOUT'),
            'read_timeout': env.get(f'{ENV_PREFIX}_READ_TIMEOUT'),
            'step_timeout': env.get(f'{ENV_PREFIX}_STEP_TIMEOUT'),
            'query_max_wait': env.get(f'{ENV_PREFIX}_QUERY_MAX_WAIT'),
            'query_poll_interval': env.get(f'{ENV_PREFIX}_QUERY_POLL_INTERVAL'),
            'ecs_events_log_group': env.get(f'{ENV_PREFIX}_ECS_EVENTS_LOG_GROUP'),
        }
        return cls(**{key: value for key, value in values.items() if value})

    def query_wait(self, step_budget: float) -> float:
        """Wait budget of a Logs Insights query run inside a step with the given budget.

        The wait always ends before the step budget, so the query times out and is
        stopped before its step is cancelled.
        """
        return min(self.query_max_wait, step_budget * QUERY_WAIT_BUDGET_FRACTION)
