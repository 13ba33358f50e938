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

"""ECS investigation tools for the MCP server."""

from ..common.clients import AwsClients
from ..common.config import InvestigationSettings
from ..common.exceptions import InvestigationConfigurationError, handle_exceptions
from ..reports import format_ecs_report
from . import investigation
from .arns import extract_task_arns_from_text
from .models import EcsInvestigationOptions
from mcp.server.fastmcp import Context
from pydantic import Field, ValidationError
from typing import Any, Dict, List, Optional


class EcsInvestigationTools:
    """ECS task investigation tools for the MCP server."""

    def __init__(self, clients: AwsClients, settings: InvestigationSettings):
        """Initialize the tools with shared client registries and settings."""
        self.clients = clients
        self.settings = settings

    def register(self, mcp):
        """Register all ECS investigation tools with the MCP server."""
        mcp.tool(name='investigate_ecs_tasks')(self.investigate_ecs_tasks)
        mcp.tool(name='extract_ecs_task_arns')(self.extract_ecs_task_arns)

    @handle_exceptions
    async def investigate_ecs_tasks(
        self,
        ctx: Context,
        task_arns: List[str] = Field(
            ...,
            description='ECS task ARNs, or text containing them (e.g. alert messages). At most 100 tasks.',
        ),
        include_metrics: bool = Field(
            True, description='Whether to gather Container Insights CPU and memory utilization'
        ),
        include_events: bool = Field(
            True,
            description='Whether to gather service events and, for stopped tasks, state change history',
        ),
        start_time: Optional[str] = Field(
            None,
            description='Start of the query window in ISO 8601 format. Must be provided together with end_time.',
        ),
        end_time: Optional[str] = Field(
            None,
            description='End of the query window in ISO 8601 format. Must be provided together with start_time.',
        ),
        lookback_hours: int = Field(
            24,
            description='Hours of state change history to search when no explicit window is given (1-168)',
        ),
        metrics_source: str = Field(
            'logs_insights',
            description="Utilization source: 'logs_insights' (performance log events) or 'cloudwatch_metrics'",
        ),
    ) -> Dict[str, Any]:
        """Investigates ECS tasks: status, containers, utilization and recent events.

        Usage: Use this tool when tasks are failing, restarting or were reported by an
        alert. Tasks ECS no longer knows about are looked up in the EventBridge state
        change history.

        Returns:
            Dict with 'analysis' (a compact view for assessing health) and 'report'
            (every field gathered, including the run summary)
        """
        try:
            options = EcsInvestigationOptions(
                include_metrics=include_metrics,
                include_events=include_events,
                start_time=start_time,
                end_time=end_time,
                lookback_hours=lookback_hours,
                metrics_source=metrics_source,
            )
        except ValidationError as e:
            raise InvestigationConfigurationError(str(e)) from e

        await ctx.info(f'Investigating {len(task_arns)} ECS task identifier(s)')
        report = await investigation.investigate_ecs_tasks(
            task_arns, options, self.clients, self.settings
        )
        return {
            'analysis': format_ecs_report(report),
            'report': report.model_dump(mode='json'),
        }

    @handle_exceptions
    async def extract_ecs_task_arns(
        self,
        ctx: Context,
        text: str = Field(..., description='Free text such as an alert or log excerpt'),
    ) -> Dict[str, Any]:
        """Extracts the distinct ECS task ARNs found in free text.

        Returns:
            Dict with the parsed tasks (region, account, cluster, task id and ARN)
        """
        tasks = extract_task_arns_from_text(text)
        return {'tasks': [task.model_dump() for task in tasks]}
