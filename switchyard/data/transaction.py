"""Compensating transactions for test data setup.

A TransactionLedger runs forward operations in order. When one fails,
the rollbacks of the operations that already succeeded run in reverse
order and the original failure is re-raised unchanged.

Example:
    >>> ledger = TransactionLedger()
    >>> ledger.add_operation(create_user, delete_user)
    >>> ledger.add_operation(create_order, delete_order)
    >>> await ledger.execute()
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from switchyard.errors import ErrorContext, RollbackError

logger = logging.getLogger(__name__)

Operation = Callable[[], "Awaitable[Any] | Any"]


async def _call(operation: Operation) -> Any:
    value = operation()
    if inspect.isawaitable(value):
        value = await value
    return value


@dataclass(frozen=True)
class LedgerEntry:
    forward: Operation
    rollback: Operation


class TransactionLedger:
    """Ordered forward operations paired with their rollbacks.

    Not safe for concurrent use; give each flow its own ledger.
    """

    def __init__(self) -> None:
        self._entries: list[LedgerEntry] = []
        self.rollback_errors: list[RollbackError] = []

    def __len__(self) -> int:
        return len(self._entries)

    def add_operation(self, forward: Operation, rollback: Operation) -> TransactionLedger:
        self._entries.append(LedgerEntry(forward, rollback))
        return self

    async def execute(self) -> list[Any]:
        """Run every forward operation in append order.

        Returns:
            The forward operations' return values, in order.

        Raises:
            Exception: The first forward failure, unmodified, after the
                rollbacks of all previously succeeded operations ran.
        """
        self.rollback_errors = []
        succeeded: list[LedgerEntry] = []
        results: list[Any] = []

        for index, entry in enumerate(self._entries):
            try:
                results.append(await _call(entry.forward))
            except Exception as e:
                logger.error(
                    f"Transaction operation {index + 1}/{len(self._entries)} failed: {e}; "
                    f"rolling back {len(succeeded)} operation(s)"
                )
                await self._rollback(succeeded)
                raise
            succeeded.append(entry)

        logger.debug(f"Transaction committed {len(results)} operation(s)")
        return results

    async def _rollback(self, succeeded: list[LedgerEntry]) -> None:
        for position, entry in reversed(list(enumerate(succeeded))):
            try:
                await _call(entry.rollback)
            except Exception as e:
                error = RollbackError(
                    f"Rollback of operation {position + 1} failed: {e}",
                    context=ErrorContext(extra={"operation_index": position}),
                    cause=e,
                )
                self.rollback_errors.append(error)
                logger.warning(str(error))

    def clear(self) -> None:
        self._entries.clear()
        self.rollback_errors = []
