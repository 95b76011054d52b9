"""
The interface we expect from the store's RPC client library,
and helpers for classifying the errors it raises.

We don't implement the client here: the stress run loads it by name
(see `load_client_factory`), so that any client that speaks this
interface can be soaked.
"""

from __future__ import annotations

import importlib
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Iterable,
    Optional,
    Protocol,
    Union,
)

from store_rpc_stress import UnexpectedSuccess


class ErrorKind(Enum):
    """
    Value to indicate the kind of an error returned by the RPC client.

    This may or may not correspond to an error from the RPC server.
    The values are the error names that the server and client report.

    Returned by StoreRpcError.kind()
    """

    NO_BACKENDS = "NoBackendsError"
    TRANSPORT = "TransportError"
    PROTOCOL = "ProtocolError"
    TIMEOUT = "TimeoutError"
    BUCKET_NOT_FOUND = "BucketNotFoundError"
    INVALID_BUCKET_NAME = "InvalidBucketNameError"
    OBJECT_NOT_FOUND = "ObjectNotFoundError"
    FIELD_UPDATE = "FieldUpdateError"
    NOT_SUPPORTED = "NotSupportedError"
    QUERY_FAILED = "QueryError"


def _error_kind_from_name(name: str) -> Union[ErrorKind, str]:
    """
    If `name` is a recognized member of `ErrorKind`, return that member.
    Otherwise, return `name`.
    """
    try:
        return ErrorKind(name)
    except ValueError:
        return name


class StoreRpcError(Exception):
    """
    An error returned by the RPC client library.
    """

    _kind: Union[ErrorKind, str]

    def __init__(self, kind: Union[ErrorKind, str], message: str = ""):
        if isinstance(kind, str):
            kind = _error_kind_from_name(kind)
        self._kind = kind
        self.message = message
        Exception.__init__(self, kind, message)

    def __str__(self):
        name = self._kind.value if isinstance(self._kind, ErrorKind) else self._kind
        if not self.message:
            return name
        return f"{name}: {self.message}"

    def kind(self) -> Union[ErrorKind, str]:
        """
        Return the kind of this error.

        Unrecognized kinds are returned as their raw names.
        """
        return self._kind


# Store operations that produce a stream of records.
Records = AsyncIterator[dict]


class StoreClient(Protocol):
    """
    An RPC client for the store, as used by the stress commands.

    Every method raises StoreRpcError on failure.  The two streaming
    operations (`find_objects` and `sql`) return async iterators that
    yield zero or more records, then either stop or raise.
    """

    async def wait_connected(self) -> None: ...

    async def close(self) -> None: ...

    async def ping(self, timeout: Optional[float] = None) -> None: ...

    async def version(self) -> int: ...

    async def create_bucket(self, bucket: str, config: dict) -> None: ...

    async def get_bucket(self, bucket: str) -> dict: ...

    async def list_buckets(self) -> list: ...

    async def update_bucket(self, bucket: str, config: dict) -> None: ...

    async def delete_bucket(self, bucket: str) -> None: ...

    async def put_object(self, bucket: str, key: str, value: dict) -> dict: ...

    async def get_object(self, bucket: str, key: str) -> dict: ...

    async def del_object(self, bucket: str, key: str) -> None: ...

    async def batch(self, requests: list) -> dict: ...

    def find_objects(self, bucket: str, filter: str) -> Records: ...

    async def update_objects(self, bucket: str, fields: dict, filter: str) -> dict: ...

    async def reindex_objects(self, bucket: str, count: int) -> dict: ...

    async def delete_many(self, bucket: str, filter: str) -> dict: ...

    async def get_tokens(self) -> list: ...

    def sql(self, statement: str) -> Records: ...


ClientFactory = Callable[..., StoreClient]


def load_client_factory(name: str) -> ClientFactory:
    """
    Find the client factory called `name`, given as "module:attribute".

    The factory is called with keyword arguments: `host` and `port`
    (or `url` for a remote server), `log`, and any options a command
    asks for.
    """
    modname, sep, attr = name.partition(":")
    if not sep or not modname or not attr:
        raise ValueError(f"Client factory {name!r} is not of the form module:attribute")
    module = importlib.import_module(modname)
    factory = module
    for part in attr.split("."):
        factory = getattr(factory, part)
    if not callable(factory):
        raise ValueError(f"Client factory {name!r} is not callable")
    return factory


def _causes(err: BaseException) -> Iterable[BaseException]:
    """Yield `err`, then every exception in its chain of causes."""
    seen = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        err = err.__cause__ or err.__context__


def find_error_kind(
    err: Optional[BaseException], kinds: Iterable[ErrorKind]
) -> Optional[StoreRpcError]:
    """
    Return the first StoreRpcError in the cause chain of `err` whose kind
    is one of `kinds`, or None if there isn't one.
    """
    if err is None:
        return None
    kinds = frozenset(kinds)
    for cause in _causes(err):
        if isinstance(cause, StoreRpcError) and cause.kind() in kinds:
            return cause
    return None


async def expect_error(
    call: Awaitable[Any], kinds: Iterable[ErrorKind], what: str = "RPC call"
) -> StoreRpcError:
    """
    Wait for `call`, which must fail with an error of one of `kinds`.

    Return that error.  If `call` succeeds, raise UnexpectedSuccess;
    if it fails some other way, let that error propagate.
    """
    kinds = tuple(kinds)
    try:
        await call
    except Exception as e:
        found = find_error_kind(e, kinds)
        if found is None:
            raise
        return found
    raise UnexpectedSuccess(f"{what}: expected one of {_kind_names(kinds)}")


async def ignore_errors(call: Awaitable[Any], kinds: Iterable[ErrorKind]) -> Any:
    """
    Wait for `call`, treating an error of one of `kinds` as success.

    Return the result of `call`, or None if it failed in an ignored way.
    """
    kinds = tuple(kinds)
    try:
        return await call
    except Exception as e:
        if find_error_kind(e, kinds) is None:
            raise
        return None


async def drain(records: Records) -> list:
    """Consume a stream of records until it ends, and return them all."""
    return [r async for r in records]


def _kind_names(kinds: Iterable[ErrorKind]) -> str:
    return ", ".join(k.value for k in kinds)
