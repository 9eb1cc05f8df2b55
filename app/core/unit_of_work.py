from contextvars import ContextVar
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tortoise.transactions import in_transaction

from app.core.exceptions import NestedUnitOfWorkError

T = TypeVar("T")

# Tracks the transaction opened by UnitOfWork.execute for the running task
_active_tx: ContextVar[Optional["TransactionContext"]] = ContextVar("active_tx", default=None)


class TransactionContext:
    """
    Opaque handle for "the current database transaction".

    Business code only passes it along; persistence code unwraps it with
    `connection` to run queries through `using_db=`.
    """
    __slots__ = ("_connection",)

    def __init__(self, connection: Any):
        self._connection = connection

    @property
    def connection(self) -> Any:
        return self._connection

    def __repr__(self) -> str:
        return f"<TransactionContext {id(self._connection):#x}>"


class UnitOfWork:
    """
    Runs a callback inside one database transaction.

    Commits when the callback returns, rolls back and re-raises the original
    exception when it fails. Anything that cannot be rolled back (queue jobs,
    HTTP calls) belongs after `execute` returns.
    """

    def __init__(self, connection_name: Optional[str] = None):
        self._connection_name = connection_name

    async def execute(self, work: Callable[[TransactionContext], Awaitable[T]]) -> T:
        if _active_tx.get() is not None:
            raise NestedUnitOfWorkError(
                "A unit of work is already active; pass its TransactionContext instead of opening another."
            )

        async with in_transaction(self._connection_name) as conn:
            tx = TransactionContext(conn)
            token = _active_tx.set(tx)
            try:
                return await work(tx)
            finally:
                _active_tx.reset(token)


def connection_of(tx: Optional[TransactionContext]) -> Any:
    """Returns the connection behind `tx`, or None to let the ORM pick its default."""
    return tx.connection if tx is not None else None
