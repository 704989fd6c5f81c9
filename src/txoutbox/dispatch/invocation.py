"""Invocations: what an outbox entry does when it is processed.

An :class:`Invocation` is a serializable description of a call, a
registered handler name plus arguments, stored in the ``invocation``
column and executed later by an :class:`InvocationExecutor`.

ARCHITECTURE
────────────
::

    Invocation (pydantic)            stored as JSON in TXNO_OUTBOX.invocation
      ├── target   "orders.send_confirmation"
      ├── args / kwargs
      └── context  log context captured at submit time

    InvocationRegistry
      ├── .register(name, handler, inject_transaction=...)
      ├── .get(name)                 ─ HandlerNotFoundError if missing
      └── .list_handlers()

    @handler(name)                   ─ decorator, default registry
    RegistryInvocationExecutor       ─ registry lookup + log-context rebinding

Example:
    >>> @handler("orders.send_confirmation")
    ... def send_confirmation(order_id: int) -> None:
    ...     ...
    >>> inv = Invocation.of("orders.send_confirmation", 42)
    >>> RegistryInvocationExecutor().execute(inv, transaction)

Tags:
    invocation, registry, handler, serialization, executor
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from txoutbox.core.errors import HandlerNotFoundError, InvocationError, OutboxError
from txoutbox.core.logging import LogContext, current_context, get_logger

if TYPE_CHECKING:
    from txoutbox.core.transactions import Transaction

logger = get_logger(__name__)

_SCALARS = (str, int, float, bool, type(None))


class Invocation(BaseModel):
    """A deferred call to a registered handler."""

    model_config = ConfigDict(frozen=True)

    target: str = Field(min_length=1)
    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def of(cls, target: str | Callable[..., Any], /, *args: Any, **kwargs: Any) -> Invocation:
        """Build an invocation, capturing the current log context.

        ``target`` is a handler name or a function decorated with
        :func:`handler`.
        """
        name = target if isinstance(target, str) else getattr(target, "__outbox_target__", None)
        if not name:
            raise HandlerNotFoundError(getattr(target, "__qualname__", repr(target)))
        context = {
            k: v if isinstance(v, _SCALARS) else str(v) for k, v in current_context().items()
        }
        return cls(target=name, args=args, kwargs=kwargs, context=context)

    def describe(self) -> str:
        parts = [repr(a) for a in self.args]
        parts += [f"{k}={v!r}" for k, v in self.kwargs.items()]
        return f"{self.target}({', '.join(parts)})"


class InvocationSerializer(Protocol):
    """Converts invocations to and from the text stored in the database."""

    def serialize(self, invocation: Invocation) -> str: ...

    def deserialize(self, text: str) -> Invocation: ...


class JsonInvocationSerializer:
    """JSON via pydantic; arguments must be JSON-compatible."""

    def serialize(self, invocation: Invocation) -> str:
        return invocation.model_dump_json()

    def deserialize(self, text: str) -> Invocation:
        return Invocation.model_validate_json(text)


# === REGISTRY ===


@dataclass(frozen=True)
class RegisteredHandler:
    name: str
    func: Callable[..., Any]
    inject_transaction: bool = False
    description: str | None = None


class InvocationRegistry:
    """Injectable name → handler registry.

    Example:
        >>> registry = InvocationRegistry()
        >>>
        >>> @handler("send_email", registry=registry)
        ... def send_email(to):
        ...     return {"sent": True}
        >>>
        >>> registry.get("send_email").func("user@example.com")
        {'sent': True}
    """

    def __init__(self) -> None:
        self._handlers: dict[str, RegisteredHandler] = {}

    def register(
        self,
        name: str,
        func: Callable[..., Any],
        *,
        inject_transaction: bool = False,
        description: str | None = None,
    ) -> None:
        """Register a handler.

        Args:
            name: Target name stored in invocations
            func: Callable to execute
            inject_transaction: Pass the processing transaction as
                ``transaction=`` so the handler's writes commit atomically
                with the ``processed`` flag
            description: Optional description for documentation
        """
        self._handlers[name] = RegisteredHandler(name, func, inject_transaction, description)

    def get(self, name: str) -> RegisteredHandler:
        """Get a handler.

        Raises:
            HandlerNotFoundError: If no handler is registered under ``name``
        """
        try:
            return self._handlers[name]
        except KeyError:
            raise HandlerNotFoundError(name) from None

    def has(self, name: str) -> bool:
        return name in self._handlers

    def list_handlers(self) -> list[str]:
        return sorted(self._handlers)

    def unregister(self, name: str) -> bool:
        return self._handlers.pop(name, None) is not None

    def clear(self) -> None:
        """Clear all handlers (for testing)."""
        self._handlers.clear()


# === GLOBAL DEFAULT REGISTRY ===

_default_registry: InvocationRegistry | None = None


def get_default_registry() -> InvocationRegistry:
    """Get the global default registry, creating it on first access."""
    global _default_registry
    if _default_registry is None:
        _default_registry = InvocationRegistry()
    return _default_registry


def reset_default_registry() -> None:
    """Reset the global registry (for testing)."""
    global _default_registry
    _default_registry = None


def handler(
    name: str | None = None,
    *,
    registry: InvocationRegistry | None = None,
    inject_transaction: bool = False,
    description: str | None = None,
):
    """Decorator to register an outbox handler.

    Args:
        name: Target name (defaults to ``module.qualname``)
        registry: Optional registry (uses global if None)
        inject_transaction: See :meth:`InvocationRegistry.register`
        description: Optional description (defaults to the docstring)

    Example:
        >>> @handler("orders.send_confirmation", inject_transaction=True)
        ... def send_confirmation(order_id, *, transaction):
        ...     transaction.connection.execute(...)
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        target = registry or get_default_registry()
        resolved = name or f"{func.__module__}.{func.__qualname__}"
        target.register(
            resolved,
            func,
            inject_transaction=inject_transaction,
            description=description or func.__doc__,
        )
        func.__outbox_target__ = resolved  # type: ignore[attr-defined]
        return func

    return decorator


# === EXECUTION ===


@runtime_checkable
class InvocationExecutor(Protocol):
    """Runs an invocation inside the entry's processing transaction."""

    def execute(self, invocation: Invocation, transaction: Transaction) -> Any: ...


class RegistryInvocationExecutor:
    """Resolves ``invocation.target`` in a registry and calls it.

    The log context captured at submit time is rebound for the duration of
    the call.  Handler exceptions are wrapped in :class:`InvocationError`.
    """

    def __init__(self, registry: InvocationRegistry | None = None) -> None:
        self._registry = registry

    @property
    def registry(self) -> InvocationRegistry:
        # Resolved lazily so reset_default_registry() in tests takes effect
        return self._registry or get_default_registry()

    def execute(self, invocation: Invocation, transaction: Transaction) -> Any:
        registered = self.registry.get(invocation.target)
        kwargs = dict(invocation.kwargs)
        if registered.inject_transaction:
            kwargs["transaction"] = transaction

        with LogContext(**invocation.context):
            logger.debug("invocation.executing", target=invocation.target)
            try:
                return registered.func(*invocation.args, **kwargs)
            except OutboxError:
                raise
            except Exception as e:
                raise InvocationError(
                    f"{invocation.target} failed: {e}", cause=e
                ) from e


__all__ = [
    "Invocation",
    "InvocationSerializer",
    "JsonInvocationSerializer",
    "RegisteredHandler",
    "InvocationRegistry",
    "get_default_registry",
    "reset_default_registry",
    "handler",
    "InvocationExecutor",
    "RegistryInvocationExecutor",
]
