"""
In-memory Key-Value Store with Nested Transactions

Every SET/UNSET is applied directly to the store. While a transaction is open,
the store records the compensating command that undoes the mutation, so a
ROLLBACK can replay the innermost block backwards and restore its state.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Union
from enum import Enum
import logging


logger = logging.getLogger(__name__)

NULL = "NULL"
NO_TRANSACTION = "NO TRANSACTION"


class TxnResult(Enum):
    """Outcome of ROLLBACK and COMMIT"""
    OK = "ok"
    NO_TRANSACTION = "no transaction"


# Commands
@dataclass(frozen=True)
class SetCommand:
    key: str
    value: str


@dataclass(frozen=True)
class GetCommand:
    key: str


@dataclass(frozen=True)
class UnsetCommand:
    key: str


@dataclass(frozen=True)
class NumEqualToCommand:
    value: str


@dataclass(frozen=True)
class BeginCommand:
    pass


@dataclass(frozen=True)
class RollbackCommand:
    pass


@dataclass(frozen=True)
class CommitCommand:
    pass


@dataclass(frozen=True)
class EndCommand:
    pass


Command = Union[
    SetCommand, GetCommand, UnsetCommand, NumEqualToCommand,
    BeginCommand, RollbackCommand, CommitCommand, EndCommand,
]

# A compensation restores the state right before one mutation.
Compensation = Union[SetCommand, UnsetCommand]


# Custom Exceptions
class SimpleDBError(Exception):
    """Base class for store errors"""
    pass


class InvalidCommandError(SimpleDBError):
    """Raised when a command is malformed or cannot be executed by the store"""
    pass


class KeyValueIndex:
    """
    Forward mapping (key -> value) plus the derived reverse mapping
    (value -> number of keys holding it).

    The index knows nothing about transactions. Mutations return the value
    they replaced (None if the key was absent) so the caller can build a
    compensation.
    """

    def __init__(self) -> None:
        self._values: Dict[str, str] = {}
        self._counts: Dict[str, int] = {}

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> Optional[str]:
        """Store value under key and return the prior value"""
        prior = self._values.get(key)
        self._values[key] = value
        self._increment(value)
        if prior is not None:
            self._decrement(prior)
        return prior

    def unset(self, key: str) -> Optional[str]:
        """Remove key and return the value it held (None if it was absent)"""
        prior = self._values.pop(key, None)
        if prior is not None:
            self._decrement(prior)
        return prior

    def count_equal_to(self, value: str) -> int:
        return self._counts.get(value, 0)

    def _increment(self, value: str) -> None:
        self._counts[value] = self._counts.get(value, 0) + 1

    def _decrement(self, value: str) -> None:
        count = self._counts[value]
        if count > 1:
            self._counts[value] = count - 1
        else:
            del self._counts[value]

    def items(self) -> Iterator[Tuple[str, str]]:
        """Iterate over (key, value) pairs in key order"""
        for key in sorted(self._values):
            yield key, self._values[key]

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, key: object) -> bool:
        return key in self._values


class TransactionLog:
    """
    Stack of transaction blocks.

    Each block lists the compensations for the mutations made since its
    BEGIN, oldest first. The top of the stack is the innermost block.
    """

    def __init__(self) -> None:
        self._blocks: List[List[Compensation]] = []
        self._rolling_back = False

    @property
    def depth(self) -> int:
        """Number of open transaction blocks"""
        return len(self._blocks)

    @property
    def in_transaction(self) -> bool:
        return bool(self._blocks)

    @property
    def rolling_back(self) -> bool:
        return self._rolling_back

    def begin(self) -> None:
        self._blocks.append([])
        logger.info("BEGIN (depth %d)", self.depth)

    def record_if_open(self, compensation: Compensation) -> None:
        """Append compensation to the innermost block, if there is one"""
        if not self._blocks or self._rolling_back:
            return
        self._blocks[-1].append(compensation)
        logger.debug("Recorded %r at depth %d", compensation, self.depth)

    def rollback(self, replay: Callable[[Compensation], object]) -> TxnResult:
        """
        Undo the innermost block.

        Compensations are fed to ``replay`` newest first, so a key touched
        several times ends at the value it held before the block began.
        Nothing is recorded while the replay runs.
        """
        if not self._blocks:
            logger.warning("ROLLBACK with no open transaction")
            return TxnResult.NO_TRANSACTION

        block = self._blocks.pop()
        self._rolling_back = True
        try:
            for compensation in reversed(block):
                replay(compensation)
        finally:
            self._rolling_back = False

        logger.info("ROLLBACK undid %d mutation(s) (depth %d)", len(block), self.depth)
        return TxnResult.OK

    def commit(self) -> TxnResult:
        """Make every pending mutation permanent by closing all open blocks"""
        if not self._blocks:
            logger.warning("COMMIT with no open transaction")
            return TxnResult.NO_TRANSACTION

        closed = self.depth
        self._blocks.clear()
        logger.info("COMMIT closed %d block(s)", closed)
        return TxnResult.OK


class SimpleDatabase:
    """
    Dispatches parsed commands to the index and the transaction log.

    ``execute`` is the single entry point. It returns the line of output the
    command produces, or None for commands that print nothing.
    """

    def __init__(self) -> None:
        self.index = KeyValueIndex()
        self.transactions = TransactionLog()

    def execute(self, command: Command, replaying: bool = False) -> Optional[str]:
        """Apply a command; ``replaying`` suppresses recording compensations"""
        if isinstance(command, GetCommand):
            value = self.index.get(command.key)
            return NULL if value is None else value

        if isinstance(command, SetCommand):
            self._set(command.key, command.value, replaying)
            return None

        if isinstance(command, UnsetCommand):
            self._unset(command.key, replaying)
            return None

        if isinstance(command, NumEqualToCommand):
            return str(self.index.count_equal_to(command.value))

        if isinstance(command, BeginCommand):
            self.transactions.begin()
            return None

        if isinstance(command, RollbackCommand):
            result = self.transactions.rollback(self._replay)
            return NO_TRANSACTION if result is TxnResult.NO_TRANSACTION else None

        if isinstance(command, CommitCommand):
            result = self.transactions.commit()
            return NO_TRANSACTION if result is TxnResult.NO_TRANSACTION else None

        raise InvalidCommandError(f"Cannot execute {command!r}")

    def _replay(self, compensation: Compensation) -> None:
        self.execute(compensation, replaying=True)

    def _set(self, key: str, value: str, replaying: bool) -> None:
        prior = self.index.set(key, value)
        logger.debug("SET %s = %s (was %s)", key, value, prior)
        if replaying:
            return
        if prior is None:
            self.transactions.record_if_open(UnsetCommand(key))
        else:
            self.transactions.record_if_open(SetCommand(key, prior))

    def _unset(self, key: str, replaying: bool) -> None:
        prior = self.index.unset(key)
        logger.debug("UNSET %s (was %s)", key, prior)
        # Nothing to undo when the key was already absent
        if prior is None or replaying:
            return
        self.transactions.record_if_open(SetCommand(key, prior))
