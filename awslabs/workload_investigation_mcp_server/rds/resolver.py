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

"""Resolution of RDS identifiers into DB instances.

An identifier is first looked up as a DB instance, then as a DB cluster. A
cluster resolves to its member instances, each tagged with its writer/reader role.
"""

import asyncio
from ..common.clients import ClientRegistry
from ..common.exceptions import is_error_code
from ..common.fanout import Outcome, settle_all, with_timeout
from .models import (
    MemberFailure,
    RdsClusterInfo,
    RdsClusterMember,
    RdsIdentifierInput,
    RdsInstanceInfo,
    Resolution,
    ResolvedAsCluster,
    ResolvedAsInstance,
    Unresolved,
)
from botocore.exceptions import ClientError
from functools import partial
from loguru import logger
from mypy_boto3_rds import RDSClient
from typing import Any, Dict, List, Optional, Sequence, Tuple


INSTANCE_NOT_FOUND_CODES = ('DBInstanceNotFound', 'DBInstanceNotFoundFault')
CLUSTER_NOT_FOUND_CODES = ('DBClusterNotFound', 'DBClusterNotFoundFault')

# Instance lookup, cluster lookup and member fan-out, plus one step of slack
RESOLUTION_BUDGET_STEPS = 4


def format_instance_info(
    instance: Dict[str, Any], region: str, is_cluster_writer: Optional[bool] = None
) -> RdsInstanceInfo:
    """Format instance information from an AWS API response.

    Args:
        instance: Raw instance dictionary from AWS
        region: Region the instance was described in
        is_cluster_writer: Role within the owning cluster, when known

    Returns:
        RdsInstanceInfo: Formatted instance information
    """
    endpoint = instance.get('Endpoint') or {}
    return RdsInstanceInfo(
        instance_identifier=instance.get('DBInstanceIdentifier', ''),
        instance_arn=instance.get('DBInstanceArn', ''),
        dbi_resource_id=instance.get('DbiResourceId'),
        cluster_identifier=instance.get('DBClusterIdentifier'),
        instance_class=instance.get('DBInstanceClass'),
        engine=instance.get('Engine'),
        engine_version=instance.get('EngineVersion'),
        status=instance.get('DBInstanceStatus'),
        is_cluster_writer=is_cluster_writer,
        availability_zone=instance.get('AvailabilityZone'),
        endpoint=endpoint.get('Address'),
        port=endpoint.get('Port'),
        performance_insights_enabled=bool(instance.get('PerformanceInsightsEnabled', False)),
        performance_insights_retention_period=instance.get('PerformanceInsightsRetentionPeriod'),
        created_at=instance.get('InstanceCreateTime'),
        region=region,
    )


def format_cluster_info(cluster: Dict[str, Any], region: str) -> RdsClusterInfo:
    """Format cluster information from an AWS API response."""
    return RdsClusterInfo(
        cluster_identifier=cluster.get('DBClusterIdentifier', ''),
        cluster_arn=cluster.get('DBClusterArn'),
        engine=cluster.get('Engine'),
        engine_version=cluster.get('EngineVersion'),
        status=cluster.get('Status'),
        endpoint=cluster.get('Endpoint'),
        reader_endpoint=cluster.get('ReaderEndpoint'),
        members=[
            RdsClusterMember(
                instance_identifier=member.get('DBInstanceIdentifier', ''),
                is_cluster_writer=bool(member.get('IsClusterWriter', False)),
            )
            for member in cluster.get('DBClusterMembers', [])
        ],
        region=region,
    )


async def describe_db_instance(
    client: RDSClient, identifier: str, region: str
) -> Optional[RdsInstanceInfo]:
    """Describe a DB instance. Returns None when no instance has the identifier."""
    try:
        response = await asyncio.to_thread(
            client.describe_db_instances, DBInstanceIdentifier=identifier
        )
    except ClientError as e:
        if is_error_code(e, *INSTANCE_NOT_FOUND_CODES):
            return None
        raise
    instances = response.get('DBInstances', [])
    return format_instance_info(instances[0], region) if instances else None


async def describe_db_cluster(
    client: RDSClient, identifier: str, region: str
) -> Optional[RdsClusterInfo]:
    """Describe a DB cluster. Returns None when no cluster has the identifier."""
    try:
        response = await asyncio.to_thread(
            client.describe_db_clusters, DBClusterIdentifier=identifier
        )
    except ClientError as e:
        if is_error_code(e, *CLUSTER_NOT_FOUND_CODES):
            return None
        raise
    clusters = response.get('DBClusters', [])
    return format_cluster_info(clusters[0], region) if clusters else None


async def resolve_cluster_members(
    client: RDSClient, cluster: RdsClusterInfo, timeout: float
) -> Tuple[List[RdsInstanceInfo], List[MemberFailure]]:
    """Describe every member of a cluster concurrently, tagging each with its role.

    Members that cannot be described are logged and reported as failures.
    """
    outcomes = await settle_all(
        {
            member.instance_identifier: partial(
                describe_db_instance, client, member.instance_identifier, cluster.region
            )
            for member in cluster.members
        },
        timeout,
        'describeDBInstances',
    )

    instances = []
    failures = []
    for member in cluster.members:
        outcome = outcomes[member.instance_identifier]
        if outcome.success and outcome.value is not None:
            instance = outcome.value.model_copy(
                update={'is_cluster_writer': member.is_cluster_writer}
            )
            instances.append(instance)
            continue
        reason = outcome.error if not outcome.success else 'DB instance not found'
        logger.warning(
            f'Dropping member {member.instance_identifier} of cluster '
            f'{cluster.cluster_identifier}: {reason}'
        )
        failures.append(
            MemberFailure(instance_identifier=member.instance_identifier, reason=reason)
        )
    return instances, failures


async def resolve_identifier(
    identifier: RdsIdentifierInput, rds_clients: ClientRegistry, timeout: float
) -> Resolution:
    """Resolve an identifier as a DB instance, else as a DB cluster, else unresolved.

    Each lookup and each cluster member gets its own timeout budget.
    """
    log = logger.bind(
        function='resolve_identifier', identifier=identifier.identifier, region=identifier.region
    )
    client = rds_clients.get_client(identifier.region)

    log.debug('Trying as instance identifier')
    instance = await with_timeout(
        partial(describe_db_instance, client, identifier.identifier, identifier.region),
        timeout,
        'describeDBInstances',
    )
    if instance is not None:
        log.info(f'Resolved {identifier.identifier} as a single instance')
        return ResolvedAsInstance(identifier=identifier.identifier, instance=instance)

    log.debug('Trying as cluster identifier')
    cluster = await with_timeout(
        partial(describe_db_cluster, client, identifier.identifier, identifier.region),
        timeout,
        'describeDBClusters',
    )
    if cluster is None:
        log.info(f'{identifier.identifier} is neither an instance nor a cluster')
        return Unresolved(identifier=identifier.identifier)

    instances, failures = await resolve_cluster_members(client, cluster, timeout)
    log.info(
        f'Resolved cluster {identifier.identifier} to {len(instances)} instance(s), '
        f'{len(failures)} member(s) failed'
    )
    return ResolvedAsCluster(
        identifier=identifier.identifier,
        cluster=cluster,
        instances=instances,
        failed_members=failures,
    )


def identifier_key(identifier: RdsIdentifierInput) -> str:
    """Stable key of an identifier input."""
    return f'{identifier.region}:{identifier.identifier}'


async def batch_resolve(
    identifiers: Sequence[RdsIdentifierInput], rds_clients: ClientRegistry, timeout: float
) -> Dict[str, Outcome[Resolution]]:
    """Resolve every identifier concurrently, keyed by identifier_key.

    The budget of an identifier spans all of its sequential lookups, so a slow
    cluster member only fails that member.
    """
    unique = {identifier_key(identifier): identifier for identifier in identifiers}
    return await settle_all(
        {
            key: partial(resolve_identifier, identifier, rds_clients, timeout)
            for key, identifier in unique.items()
        },
        timeout * RESOLUTION_BUDGET_STEPS,
        'resolveIdentifier',
    )


def resolved_instances(resolution: Resolution) -> List[RdsInstanceInfo]:
    """Instances an identifier resolved to."""
    if isinstance(resolution, ResolvedAsInstance):
        return [resolution.instance]
    if isinstance(resolution, ResolvedAsCluster):
        return list(resolution.instances)
    return []


def instance_key(instance: RdsInstanceInfo) -> str:
    """Stable unique key of an instance: its ARN, else region and identifier."""
    return instance.instance_arn or f'{instance.region}:{instance.instance_identifier}'


def unique_instances(
    resolutions: Dict[str, Resolution],
) -> List[Tuple[RdsInstanceInfo, List[str]]]:
    """Deduplicate resolved instances by ARN.

    Returns:
        Each distinct instance with the input identifiers that resolved to it
    """
    instances: Dict[str, Tuple[RdsInstanceInfo, List[str]]] = {}
    for resolution in resolutions.values():
        for instance in resolved_instances(resolution):
            key = instance_key(instance)
            entry = instances.get(key)
            if entry is None:
                instances[key] = (instance, [resolution.identifier])
                continue
            if resolution.identifier not in entry[1]:
                entry[1].append(resolution.identifier)
            # a direct instance lookup carries no role; keep the role learned from a cluster
            if entry[0].is_cluster_writer is None and instance.is_cluster_writer is not None:
                instances[key] = (instance, entry[1])
    return list(instances.values())
