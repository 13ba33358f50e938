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

"""Tests for the MCP server entry point."""

import pytest
from awslabs.workload_investigation_mcp_server.server import create_mcp_server, main
from unittest.mock import MagicMock, patch


class TestServer:
    """Tests for server creation and startup."""

    @pytest.mark.asyncio
    async def test_tools_registered(self, aws_clients, settings):
        """Every investigation tool is exposed."""
        mcp = create_mcp_server(aws_clients, settings)

        tools = await mcp.list_tools()

        assert {tool.name for tool in tools} == {
            'investigate_ecs_tasks',
            'extract_ecs_task_arns',
            'investigate_rds_instances',
            'get_full_sql_text',
        }

    @patch('awslabs.workload_investigation_mcp_server.server.create_mcp_server')
    @patch('awslabs.workload_investigation_mcp_server.server.AwsClients')
    def test_main_applies_step_timeout_and_closes_clients(self, mock_clients, mock_create):
        """The step timeout flag reaches the settings and clients are closed on exit."""
        clients = MagicMock()
        clients.clear.return_value = []
        mock_clients.from_settings.return_value = clients
        mcp = MagicMock()
        mock_create.return_value = mcp

        with patch('sys.argv', ['server', '--step-timeout', '12', '--log-level', 'ERROR']):
            main()

        settings = mock_clients.from_settings.call_args.args[0]
        assert settings.step_timeout == 12.0
        mcp.run.assert_called_once()
        clients.clear.assert_called_once()

    @patch('awslabs.workload_investigation_mcp_server.server.create_mcp_server')
    @patch('awslabs.workload_investigation_mcp_server.server.AwsClients')
    def test_main_closes_clients_on_failure(self, mock_clients, mock_create):
        """Clients are closed even when the server stops with an error."""
        clients = MagicMock()
        clients.clear.return_value = ['Failed to close ecs client for us-east-1: boom']
        mock_clients.from_settings.return_value = clients
        mock_create.return_value.run.side_effect = KeyboardInterrupt

        with patch('sys.argv', ['server']):
            with pytest.raises(KeyboardInterrupt):
                main()

        clients.clear.assert_called_once()
