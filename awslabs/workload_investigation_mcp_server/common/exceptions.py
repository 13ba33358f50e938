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

"""Custom exceptions and exception handling for the Workload Investigation MCP Server."""

import json
from ..constants import ERROR_INVALID_OPTIONS, ERROR_UNEXPECTED
from botocore.exceptions import ClientError
from functools import wraps
from inspect import iscoroutinefunction
from loguru import logger
from typing import Any, Callable, Optional


class WorkloadInvestigationError(Exception):
    """Base exception for the Workload Investigation MCP Server."""

    pass


class InvestigationConfigurationError(WorkloadInvestigationError):
    """Raised when caller-supplied investigation options are invalid.

    This is the only error that aborts an investigation. It is always raised
    before any AWS API call is made.
    """

    pass


class QueryFailedError(WorkloadInvestigationError):
    """Raised when a CloudWatch Logs Insights query ends as Failed or Cancelled."""

    def __init__(self, status: str):
        """Initialize the QueryFailedError.

        Args:
            status: The terminal status reported by CloudWatch Logs
        """
        self.status = status
        super().__init__(f'Query {status}')


class QueryTimeoutError(WorkloadInvestigationError):
    """Raised when a CloudWatch Logs Insights query does not complete within its wait budget."""

    def __init__(self, query_id: str, max_wait: float):
        """Initialize the QueryTimeoutError.

        Args:
            query_id: The Logs Insights query id
            max_wait: The wait budget in seconds
        """
        self.query_id = query_id
        self.max_wait = max_wait
        super().__init__(f'Query timed out after {max_wait:g}s')


class StepTimeoutError(WorkloadInvestigationError):
    """Raised when a single investigation step exceeds its time budget."""

    def __init__(self, operation: str, timeout: float):
        """Initialize the StepTimeoutError.

        Args:
            operation: Name of the operation that timed out
            timeout: The step budget in seconds
        """
        self.operation = operation
        self.timeout = timeout
        super().__init__(f'{operation} timed out after {timeout:g}s')


def get_error_code(error: BaseException) -> Optional[str]:
    """Return the AWS error code of a botocore ClientError, or None for any other error."""
    if isinstance(error, ClientError):
        return error.response.get('Error', {}).get('Code')
    return None


def is_error_code(error: BaseException, *codes: str) -> bool:
    """Check whether an error is a ClientError carrying one of the given codes."""
    return get_error_code(error) in codes


def get_error_message(error: BaseException) -> str:
    """Turn any exception into the reason string recorded on investigation results."""
    if isinstance(error, ClientError):
        error_code = error.response.get('Error', {}).get('Code', 'Unknown')
        error_message = error.response.get('Error', {}).get('Message', str(error))
        return f'{error_code}: {error_message}'
    message = str(error)
    return message if message else type(error).__name__


def handle_exceptions(func: Callable) -> Callable:
    """Decorator to handle exceptions in MCP tool operations.

    Wraps the function in a try-catch block and returns any exception
    in a standardized JSON error format.

    Args:
        func: The function to wrap

    Returns:
        The wrapped function that handles exceptions
    """

    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any):
        try:
            if iscoroutinefunction(func):
                return await func(*args, **kwargs)
            return func(*args, **kwargs)
        except Exception as error:
            if isinstance(error, InvestigationConfigurationError):
                logger.warning(f'Rejected investigation options: {error}')
                return json.dumps(
                    {
                        'error': ERROR_INVALID_OPTIONS.format(str(error)),
                        'do_not_retry': True,
                        'operation': func.__name__,
                    },
                    indent=2,
                )

            logger.exception(f'Failed with unexpected error: {str(error)}')
            return json.dumps(
                {
                    'error': ERROR_UNEXPECTED.format(get_error_message(error)),
                    'error_type': type(error).__name__,
                    'operation': func.__name__,
                },
                indent=2,
            )

    return wrapper
