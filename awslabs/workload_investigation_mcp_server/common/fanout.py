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

"""Settle-all fan-out execution with per-item time budgets."""

import asyncio
from .exceptions import StepTimeoutError, get_error_message
from dataclasses import dataclass
from loguru import logger
from typing import Awaitable, Callable, Dict, Generic, Hashable, Mapping, Optional, TypeVar


T = TypeVar('T')
K = TypeVar('K', bound=Hashable)


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of one fan-out item: either a value or a failure reason."""

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, value: T) -> 'Outcome[T]':
        """Build a successful outcome."""
        return cls(success=True, value=value)

    @classmethod
    def failed(cls, error: str) -> 'Outcome[T]':
        """Build a failed outcome."""
        return cls(success=False, error=error)


async def with_timeout(
    operation: Callable[[], Awaitable[T]], timeout: float, operation_name: str
) -> T:
    """Await an operation, raising StepTimeoutError when it exceeds its budget.

    Args:
        operation: Zero-argument callable returning the awaitable to run
        timeout: Budget in seconds
        operation_name: Name used in the timeout message

    Returns:
        The operation's result
    """
    try:
        return await asyncio.wait_for(operation(), timeout=timeout)
    except asyncio.TimeoutError:
        raise StepTimeoutError(operation_name, timeout) from None


async def settle_all(
    work: Mapping[K, Callable[[], Awaitable[T]]],
    timeout: float,
    operation_name: str,
) -> Dict[K, Outcome[T]]:
    """Run every work item concurrently and collect one outcome per item.

    Each item gets its own timeout. A failing or timed out item is recorded as a
    failed outcome and never cancels its siblings.

    Args:
        work: Mapping of item key to a zero-argument callable returning an awaitable
        timeout: Budget in seconds for each item
        operation_name: Name used in log and timeout messages

    Returns:
        Dict mapping every item key to its Outcome
    """
    keys = list(work)
    if not keys:
        return {}

    async def run(key: K) -> Outcome[T]:
        try:
            value = await with_timeout(work[key], timeout, operation_name)
        except Exception as e:
            reason = get_error_message(e)
            logger.error(f'{operation_name} failed for {key}: {reason}')
            return Outcome.failed(reason)
        return Outcome.ok(value)

    settled = await asyncio.gather(*(run(key) for key in keys), return_exceptions=True)

    outcomes: Dict[K, Outcome[T]] = {}
    for key, result in zip(keys, settled):
        if isinstance(result, BaseException):
            # raised outside the per-item wrapper, e.g. cancellation of the item task
            logger.error(f'{operation_name} was aborted for {key}: {result!r}')
            outcomes[key] = Outcome.failed(f'{operation_name} aborted: {type(result).__name__}')
        else:
            outcomes[key] = result
    return outcomes
