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

"""Per-region AWS client registries for the Workload Investigation MCP Server."""

import boto3
from .. import MCP_SERVER_VERSION
from .config import InvestigationSettings
from botocore.config import Config
from loguru import logger
from typing import Any, Callable, Dict, List, Optional


ClientFactory = Callable[[str], Any]


def build_client_config(settings: InvestigationSettings) -> Config:
    """Build the botocore configuration shared by every client.

    Args:
        settings: The server settings carrying retry and timeout values

    Returns:
        Config: botocore configuration with retries, timeouts and a custom user agent
    """
    return Config(
        retries={'max_attempts': settings.max_retries, 'mode': settings.retry_mode},
        connect_timeout=settings.connect_timeout,
        read_timeout=settings.read_timeout,
        # Configure custom user agent to identify requests from LLM/MCP
        user_agent_extra=f'awslabs/mcp/workload-investigation-mcp-server/{MCP_SERVER_VERSION}',
    )


def boto3_client_factory(
    service_name: str, config: Config, profile_name: Optional[str] = None
) -> ClientFactory:
    """Return a factory that creates a boto3 client for one service in a given region.

    No network call is made when the client is created; credentials are resolved
    lazily by the standard boto3 credential chain on first use.
    """

    def create(region: str) -> Any:
        if profile_name:
            session = boto3.Session(profile_name=profile_name, region_name=region)
        else:
            session = boto3.Session(region_name=region)
        return session.client(service_name=service_name, config=config)

    return create


class ClientRegistry:
    """Lazily creates and caches one client per region for a single AWS service."""

    def __init__(self, factory: ClientFactory, service_name: str = 'aws'):
        """Initialize the registry.

        Args:
            factory: Callable creating a client for a region
            service_name: Service name used in log messages
        """
        self._factory = factory
        self._service_name = service_name
        self._clients: Dict[str, Any] = {}

    def get_client(self, region: str) -> Any:
        """Return the cached client for a region, creating and caching it on first use."""
        client = self._clients.get(region)
        if client is None:
            logger.debug(f'Creating {self._service_name} client for region {region}')
            client = self._factory(region)
            # a concurrent duplicate creation simply replaces an equivalent client
            self._clients[region] = client
        return client

    def clear(self) -> List[str]:
        """Close every cached client and empty the cache.

        Closing continues past individual failures.

        Returns:
            List[str]: One message per client that failed to close
        """
        failures = []
        for region, client in list(self._clients.items()):
            try:
                client.close()
            except Exception as e:
                message = f'Failed to close {self._service_name} client for {region}: {e}'
                logger.warning(message)
                failures.append(message)
        self._clients.clear()
        return failures

    @property
    def size(self) -> int:
        """Number of cached clients."""
        return len(self._clients)

    def __len__(self) -> int:
        """Number of cached clients."""
        return self.size


class AwsClients:
    """The set of per-service client registries used by investigations."""

    SERVICES = ('ecs', 'logs', 'cloudwatch', 'rds', 'pi')

    def __init__(self, factories: Dict[str, ClientFactory]):
        """Initialize one registry per service.

        Args:
            factories: Client factory for each service in SERVICES
        """
        missing = [service for service in self.SERVICES if service not in factories]
        if missing:
            raise ValueError(f'Missing client factories for: {", ".join(missing)}')
        self._registries = {
            service: ClientRegistry(factories[service], service) for service in self.SERVICES
        }

    @classmethod
    def from_settings(cls, settings: InvestigationSettings) -> 'AwsClients':
        """Create registries backed by boto3 sessions configured from the settings."""
        config = build_client_config(settings)
        return cls(
            {
                service: boto3_client_factory(service, config, settings.profile_name)
                for service in cls.SERVICES
            }
        )

    @property
    def ecs(self) -> ClientRegistry:
        """Amazon ECS client registry."""
        return self._registries['ecs']

    @property
    def logs(self) -> ClientRegistry:
        """CloudWatch Logs client registry."""
        return self._registries['logs']

    @property
    def cloudwatch(self) -> ClientRegistry:
        """CloudWatch client registry."""
        return self._registries['cloudwatch']

    @property
    def rds(self) -> ClientRegistry:
        """Amazon RDS client registry."""
        return self._registries['rds']

    @property
    def pi(self) -> ClientRegistry:
        """Performance Insights client registry."""
        return self._registries['pi']

    def clear(self) -> List[str]:
        """Close every client of every registry, collecting failures."""
        failures: List[str] = []
        for registry in self._registries.values():
            failures.extend(registry.clear())
        return failures
