"""Client-side synchronization store for the gym users list.

The store owns an immutable :class:`UsersState` that only changes through
:func:`users_reducer`. Repository calls are the only suspension points; every
dispatch is applied synchronously, so concurrent completions never interleave
mid-update but apply in the order they resolve (last writer wins).

Lifecycle::

    store = UsersStore(repository, persistence=persistence)
    async with store:
        await store.wait_until_hydrated()
        await store.create(CreateUserInput("John Smith", UserRole.STAFF))
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    TypeVar,
    Union,
)

import anyio
from anyio.abc import TaskGroup

from .models import CreateUserInput, UpdateUserInput, User
from .persistence import UsersPersistence
from .repository import UsersRepository
from .triggers import RevalidationTrigger

logger = logging.getLogger("gymusers.store")

T = TypeVar("T")

_SHUTDOWN_FLUSH_TIMEOUT = 5.0


@dataclass(frozen=True)
class UsersState:
    users: Tuple[User, ...] = ()
    is_hydrated: bool = False


@dataclass(frozen=True)
class Hydrate:
    users: Tuple[User, ...]


@dataclass(frozen=True)
class Create:
    user: User


@dataclass(frozen=True)
class Update:
    user: User


@dataclass(frozen=True)
class Remove:
    user_id: str


UsersAction = Union[Hydrate, Create, Update, Remove]


def users_reducer(state: UsersState, action: UsersAction) -> UsersState:
    """Return the state after ``action``; the same object when nothing changed."""

    if isinstance(action, Hydrate):
        return UsersState(users=tuple(action.users), is_hydrated=True)
    if isinstance(action, Create):
        return UsersState(users=(action.user, *state.users), is_hydrated=state.is_hydrated)
    if isinstance(action, Update):
        if not any(user.id == action.user.id for user in state.users):
            return state
        users = tuple(action.user if user.id == action.user.id else user for user in state.users)
        return UsersState(users=users, is_hydrated=state.is_hydrated)
    if isinstance(action, Remove):
        users = tuple(user for user in state.users if user.id != action.user_id)
        if len(users) == len(state.users):
            return state
        return UsersState(users=users, is_hydrated=state.is_hydrated)
    raise TypeError(f"Unsupported users action: {action!r}")


def have_users_changed(previous: Sequence[User], current: Sequence[User]) -> bool:
    """Cheap change detection keyed on ``id`` and ``updated_at``."""

    if previous is current:
        return False
    if len(previous) != len(current):
        return True
    stamps: Dict[str, str] = {user.id: user.updated_at for user in previous}
    for user in current:
        stamp = stamps.get(user.id)
        if stamp is None or stamp != user.updated_at:
            return True
    return False


class TaskHandle(Generic[T]):
    """Completion channel for a background task spawned by the store."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._finished = anyio.Event()
        self._result: Optional[T] = None
        self._error: Optional[BaseException] = None
        self._cancelled = False

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    async def settled(self) -> None:
        await self._finished.wait()

    async def wait(self) -> Optional[T]:
        """Return the task's result, re-raise its error, or ``None`` if cancelled."""

        await self._finished.wait()
        if self._error is not None:
            raise self._error
        return self._result

    async def _execute(self, func: Callable[..., Awaitable[T]], *args: Any) -> None:
        try:
            self._result = await func(*args)
        except anyio.get_cancelled_exc_class():
            self._cancelled = True
            raise
        except Exception as exc:
            self._error = exc
            logger.warning("Store task %s failed: %s", self.name, exc, exc_info=True)
        finally:
            self._finished.set()

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "done" if self.done else "pending"
        return f"<TaskHandle {self.name} {state}>"


Listener = Callable[[UsersState], None]


class UsersStore:
    """Reducer-managed users list reconciled against a repository."""

    def __init__(
        self,
        repository: UsersRepository,
        *,
        persistence: Optional[UsersPersistence] = None,
        triggers: Sequence[RevalidationTrigger] = (),
    ) -> None:
        self._repository = repository
        self._persistence = persistence
        self._triggers = tuple(triggers)
        self._state = UsersState()
        self._listeners: List[Listener] = []
        self._pending: Set[TaskHandle[Any]] = set()
        self._saves: Set[TaskHandle[Any]] = set()
        self._exit_stack: Optional[AsyncExitStack] = None
        self._task_group: Optional[TaskGroup] = None
        self._save_lock: Optional[anyio.Lock] = None
        self._hydrated: Optional[anyio.Event] = None
        self._initial_load: Optional[TaskHandle[bool]] = None
        self._last_save: Optional[TaskHandle[None]] = None
        self._closed = False

    # Read state -------------------------------------------------------------

    @property
    def state(self) -> UsersState:
        return self._state

    @property
    def users(self) -> Tuple[User, ...]:
        return self._state.users

    @property
    def is_hydrated(self) -> bool:
        return self._state.is_hydrated

    @property
    def is_local_authoritative(self) -> bool:
        return self._persistence is not None

    @property
    def triggers(self) -> Tuple[RevalidationTrigger, ...]:
        return self._triggers

    @property
    def initial_load(self) -> Optional[TaskHandle[bool]]:
        return self._initial_load

    @property
    def last_save(self) -> Optional[TaskHandle[None]]:
        return self._last_save

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every new state; returns an unsubscribe callable."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # Lifecycle --------------------------------------------------------------

    async def __aenter__(self) -> "UsersStore":
        if self._closed:
            raise RuntimeError("UsersStore cannot be restarted once closed")
        if self._task_group is not None:
            raise RuntimeError("UsersStore is already running")

        stack = AsyncExitStack()
        self._task_group = await stack.enter_async_context(anyio.create_task_group())
        self._exit_stack = stack
        self._save_lock = anyio.Lock()
        self._hydrated = anyio.Event()
        if self._state.is_hydrated:
            self._hydrated.set()

        self._initial_load = self._spawn("initial-load", self._load_initial)
        for trigger in self._triggers:
            self._task_group.start_soon(
                self._run_trigger, trigger, name=f"trigger:{type(trigger).__name__}"
            )
        logger.debug("Users store started with %d trigger(s)", len(self._triggers))
        return self

    async def __aexit__(self, *exc_info: Any) -> Optional[bool]:
        stack, task_group = self._exit_stack, self._task_group
        if stack is None or task_group is None:
            return None
        self._closed = True

        with anyio.move_on_after(_SHUTDOWN_FLUSH_TIMEOUT, shield=True) as scope:
            while self._saves:
                await next(iter(self._saves)).settled()
        if scope.cancelled_caught:
            logger.warning("Timed out flushing %d pending save(s) on shutdown", len(self._saves))

        # Errors from the caller's block propagate unwrapped; background tasks
        # never raise into the group.
        task_group.cancel_scope.cancel()
        try:
            await stack.aclose()
        finally:
            self._exit_stack = None
            self._task_group = None
            logger.debug("Users store closed")
        return None

    def _ensure_running(self) -> TaskGroup:
        if self._closed:
            raise RuntimeError("UsersStore has been closed")
        if self._task_group is None:
            raise RuntimeError("UsersStore must be entered with 'async with' before use")
        return self._task_group

    def _spawn(self, name: str, func: Callable[..., Awaitable[T]], *args: Any) -> TaskHandle[T]:
        task_group = self._ensure_running()
        handle: TaskHandle[T] = TaskHandle(name)
        self._pending.add(handle)
        task_group.start_soon(self._run_handle, handle, func, *args, name=name)
        return handle

    async def _run_handle(
        self, handle: TaskHandle[Any], func: Callable[..., Awaitable[Any]], *args: Any
    ) -> None:
        try:
            await handle._execute(func, *args)
        finally:
            self._pending.discard(handle)
            self._saves.discard(handle)

    async def _run_trigger(self, trigger: RevalidationTrigger) -> None:
        try:
            await trigger.run(self.revalidate)
        except Exception:
            logger.exception("Revalidation trigger %s stopped unexpectedly", type(trigger).__name__)

    async def wait_until_hydrated(self) -> None:
        self._ensure_running()
        assert self._hydrated is not None
        await self._hydrated.wait()

    async def wait_idle(self) -> None:
        """Wait until every outstanding load, revalidation and save has settled."""

        while self._pending:
            await next(iter(self._pending)).settled()

    # Dispatch ---------------------------------------------------------------

    def dispatch(self, action: UsersAction) -> UsersState:
        previous = self._state
        state = users_reducer(previous, action)
        if state is previous:
            return state

        self._state = state
        logger.debug("Applied %s; %d user(s) held", type(action).__name__, len(state.users))

        if state.is_hydrated and self._hydrated is not None and not self._hydrated.is_set():
            self._hydrated.set()
        if self._persistence is not None and state.is_hydrated and not self._closed:
            self._schedule_save(state.users)

        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Users store listener %r failed", listener)
        return state

    def _schedule_save(self, users: Tuple[User, ...]) -> None:
        if self._task_group is None:
            return
        handle = self._spawn("save", self._save, users)
        self._saves.add(handle)
        self._last_save = handle

    async def _save(self, users: Tuple[User, ...]) -> None:
        assert self._persistence is not None and self._save_lock is not None
        async with self._save_lock:
            await self._persistence.save(users)

    # Hydration --------------------------------------------------------------

    async def _load_initial(self) -> bool:
        users = await self._repository.hydrate()
        if self._closed:
            logger.debug("Discarding initial load that finished after teardown")
            return False
        if self._state.is_hydrated and not have_users_changed(self._state.users, users):
            return False
        self.dispatch(Hydrate(tuple(users)))
        return True

    async def revalidate(self) -> bool:
        """Re-run hydration and apply the result if it differs; never raises."""

        try:
            users = await self._repository.hydrate()
        except Exception as exc:
            logger.warning("Revalidation failed: %s", exc)
            return False
        if self._closed:
            return False
        if not have_users_changed(self._state.users, users):
            return False
        logger.info("Revalidation picked up %d user(s)", len(users))
        self.dispatch(Hydrate(tuple(users)))
        return True

    def schedule_revalidation(self) -> TaskHandle[bool]:
        return self._spawn("revalidate", self.revalidate)

    # Mutations --------------------------------------------------------------

    async def create(self, data: CreateUserInput) -> User:
        self._ensure_running()
        created = await self._repository.create(data)
        if not self._closed:
            self.dispatch(Create(created))
        return created

    async def update(self, user_id: str, changes: UpdateUserInput) -> User:
        self._ensure_running()
        updated = await self._repository.update(user_id, changes, self._state.users)
        if not self._closed:
            self.dispatch(Update(updated))
        return updated

    async def remove(self, user_id: str) -> None:
        """Remove locally once the repository call settles, whatever its outcome.

        A repository failure is re-raised after the local removal; it is not
        rolled back.
        """

        self._ensure_running()
        try:
            await self._repository.remove(user_id)
        finally:
            if not self._closed:
                self.dispatch(Remove(user_id))


__all__ = [
    "Create",
    "Hydrate",
    "Remove",
    "TaskHandle",
    "Update",
    "UsersAction",
    "UsersState",
    "UsersStore",
    "have_users_changed",
    "users_reducer",
]
