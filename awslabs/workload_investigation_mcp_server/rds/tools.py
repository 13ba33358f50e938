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

"""RDS investigation tools for the MCP server."""

from ..common.clients import AwsClients
from ..common.config import InvestigationSettings
from ..common.exceptions import InvestigationConfigurationError, handle_exceptions
from ..reports import format_rds_report
from . import investigation
from .models import RdsIdentifierInput, RdsInvestigationOptions
from .performance_insights import get_full_sql_text
from mcp.server.fastmcp import Context
from pydantic import Field, ValidationError
from typing import Any, Dict, List, Optional


class RdsInvestigationTools:
    """RDS instance investigation tools for the MCP server."""

    def __init__(self, clients: AwsClients, settings: InvestigationSettings):
        """Initialize the tools with shared client registries and settings."""
        self.clients = clients
        self.settings = settings

    def register(self, mcp):
        """Register all RDS investigation tools with the MCP server."""
        mcp.tool(name='investigate_rds_instances')(self.investigate_rds_instances)
        mcp.tool(name='get_full_sql_text')(self.get_full_sql_text)

    @handle_exceptions
    async def investigate_rds_instances(
        self,
        ctx: Context,
        db_identifiers: List[RdsIdentifierInput] = Field(
            ...,
            description='RDS DB instance or cluster identifiers with their regions. At most 20.',
        ),
        include_metrics: bool = Field(True, description='Whether to gather CloudWatch metrics'),
        include_top_sql: bool = Field(
            True, description='Whether to gather top SQL from Performance Insights'
        ),
        start_time: Optional[str] = Field(
            None,
            description='Start of the query window in ISO 8601 format. Must be provided together with end_time. '
            'When not provided: CloudWatch metrics cover the last lookback_hours, top SQL the last hour.',
        ),
        end_time: Optional[str] = Field(
            None,
            description='End of the query window in ISO 8601 format. Must be provided together with start_time.',
        ),
        lookback_hours: int = Field(
            24, description='Hours of CloudWatch metrics when no explicit window is given (1-168)'
        ),
        top_sql_limit: int = Field(
            10, description='Number of top SQL statements to return (1-50)'
        ),
    ) -> Dict[str, Any]:
        """Investigates RDS DB instances and clusters: status, key metrics and top SQL.

        Usage: Use this tool to assess database health. Cluster identifiers expand to
        every member instance with its writer or reader role.

        Returns:
            Dict with 'analysis' (a compact view with threshold flags) and 'report'
            (every field gathered, including the run summary)
        """
        try:
            options = RdsInvestigationOptions(
                include_metrics=include_metrics,
                include_events=include_top_sql,
                start_time=start_time,
                end_time=end_time,
                lookback_hours=lookback_hours,
                top_sql_limit=top_sql_limit,
            )
        except ValidationError as e:
            raise InvestigationConfigurationError(str(e)) from e

        await ctx.info(f'Investigating {len(db_identifiers)} RDS identifier(s)')
        report = await investigation.investigate_rds_instances(
            db_identifiers, options, self.clients, self.settings
        )
        return {
            'analysis': format_rds_report(report),
            'report': report.model_dump(mode='json'),
        }

    @handle_exceptions
    async def get_full_sql_text(
        self,
        ctx: Context,
        region: str = Field(..., description='AWS region of the DB instance'),
        dbi_resource_id: str = Field(..., description='DbiResourceId of the DB instance'),
        sql_id: str = Field(..., description='SQL id reported by investigate_rds_instances'),
    ) -> Dict[str, Any]:
        """Retrieves the complete text of a SQL statement from Performance Insights.

        Returns:
            Dict with the SQL id and its full text, or None when unavailable
        """
        sql_text = await get_full_sql_text(
            self.clients.pi.get_client(region), dbi_resource_id, sql_id
        )
        return {'sql_id': sql_id, 'sql_text': sql_text}
