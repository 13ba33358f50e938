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

"""awslabs workload-investigation MCP Server implementation."""

import argparse
import os
import sys
from awslabs.workload_investigation_mcp_server import MCP_SERVER_VERSION
from awslabs.workload_investigation_mcp_server.common.clients import AwsClients
from awslabs.workload_investigation_mcp_server.common.config import InvestigationSettings
from awslabs.workload_investigation_mcp_server.ecs.tools import EcsInvestigationTools
from awslabs.workload_investigation_mcp_server.rds.tools import RdsInvestigationTools
from loguru import logger
from mcp.server.fastmcp import FastMCP


SERVER_INSTRUCTIONS = """
This server investigates the health of Amazon ECS tasks and Amazon RDS databases.

Key capabilities:
- Investigate ECS tasks from their ARNs or from alert text: status, containers,
  Container Insights CPU and memory utilization, service events, and state change
  history for tasks that have already stopped
- Investigate RDS DB instances and clusters: status, writer/reader roles,
  CloudWatch metrics summaries with health threshold flags, and top SQL by load

Every investigation is read-only and returns partial results when some lookups fail.
"""

SERVER_DEPENDENCIES = ['pydantic', 'loguru', 'boto3', 'python-dateutil']


def create_mcp_server(clients: AwsClients, settings: InvestigationSettings) -> FastMCP:
    """Create the FastMCP server and register the investigation tools.

    Args:
        clients: Client registries shared by every tool call
        settings: Server settings

    Returns:
        Configured FastMCP instance
    """
    mcp = FastMCP(
        'awslabs.workload-investigation-mcp-server',
        instructions=SERVER_INSTRUCTIONS,
        dependencies=SERVER_DEPENDENCIES,
    )
    EcsInvestigationTools(clients, settings).register(mcp)
    RdsInvestigationTools(clients, settings).register(mcp)
    logger.info('Investigation tools registered')
    return mcp


def main():
    """Run the MCP server with CLI argument support."""
    parser = argparse.ArgumentParser(
        description='An AWS Labs MCP server for investigating ECS tasks and RDS databases'
    )
    parser.add_argument(
        '--log-level',
        default=os.getenv('FASTMCP_LOG_LEVEL', 'WARNING'),
        help='Log level (default: WARNING, can be set via FASTMCP_LOG_LEVEL env var)',
    )
    parser.add_argument(
        '--step-timeout',
        type=float,
        default=None,
        help='Time budget in seconds for each investigation step',
    )
    args = parser.parse_args()

    logger.remove()
    logger.add(sys.stderr, level=args.log_level)

    settings = InvestigationSettings.from_env()
    if args.step_timeout:
        settings = settings.model_copy(update={'step_timeout': args.step_timeout})

    logger.info(f'Starting Workload Investigation MCP Server v{MCP_SERVER_VERSION}')
    logger.info(f'Step timeout: {settings.step_timeout}s')

    clients = AwsClients.from_settings(settings)
    mcp = create_mcp_server(clients, settings)
    try:
        mcp.run()
    finally:
        failures = clients.clear()
        logger.info(f'Closed AWS clients ({len(failures)} close failure(s))')


if __name__ == '__main__':
    main()
