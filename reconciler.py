# reconciler.py
import asyncio
import logging
import weakref
from typing import Callable, List, Optional

from errors import ConflictError, NotFoundError, StorageError
from models import LiveSession, PresenceSignal, SummaryEntry, Transition
from state_store import PlaytimeStore
from time_utils import now_ts

log = logging.getLogger(__name__)

DEFAULT_SUMMARY_LIMIT = 10


class SessionReconciler:
    """
    Turns presence signals into sessions and playtime.

    Per user the state is either Idle (no live session) or Active(activity,
    start). The live session lives only in the store, so a signal that failed
    halfway can simply be delivered again.

    Signals for the same user are applied one at a time in arrival order;
    different users run concurrently.
    """

    def __init__(
        self,
        store: PlaytimeStore,
        clock: Callable[[], int] = now_ts,
        max_session_seconds: Optional[int] = None,
    ):
        self.store = store
        self.clock = clock
        self.max_session_seconds = max_session_seconds or None
        self._user_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: int) -> asyncio.Lock:
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._user_locks[user_id] = lock
        return lock

    def elapsed(self, session: LiveSession, observed_at: int) -> int:
        """Seconds to credit for ``session`` closed at ``observed_at``. Never negative."""
        seconds = observed_at - session.start_time
        if seconds < 0:
            log.warning(
                "[SESSION] user %s: %r started %ss in the future, crediting 0",
                session.user_id, session.activity_name, -seconds,
            )
            return 0
        if self.max_session_seconds is not None and seconds > self.max_session_seconds:
            log.warning(
                "[SESSION] user %s: %r ran %ss (cap %ss), crediting 0",
                session.user_id, session.activity_name, seconds, self.max_session_seconds,
            )
            return 0
        return seconds

    async def _close(self, user_id: int, observed_at: int) -> Optional[LiveSession]:
        credited = {}

        def settle(session: LiveSession) -> int:
            credited["seconds"] = self.elapsed(session, observed_at)
            return credited["seconds"]

        session = await self.store.close_session(user_id, settle=settle)
        if session is not None:
            log.info(
                "[SESSION] user %s stopped %r after %ss",
                user_id, session.activity_name, credited.get("seconds", 0),
            )
        return session

    async def _open(self, user_id: int, name: str, start_time: int) -> bool:
        activity_id = await self.store.ensure_activity(name)
        try:
            try:
                await self.store.open_session(user_id, activity_id, start_time)
            except NotFoundError:
                # catalog was rebuilt between ensure and open
                log.warning("[SESSION] activity %r vanished before opening, registering again", name)
                activity_id = await self.store.ensure_activity(name)
                await self.store.open_session(user_id, activity_id, start_time)
        except ConflictError:
            # someone else filled the slot between our read and insert
            log.warning("[SESSION] user %s already has a live session, not opening %r", user_id, name)
            return False
        log.info("[SESSION] user %s started %r at %s", user_id, name, start_time)
        return True

    async def handle(self, signal: PresenceSignal) -> Transition:
        """
        Apply one presence signal.

        Raises StorageError if the database fails; nothing is cached in memory,
        so the same signal may be retried.
        """
        user_id = signal.user_id
        async with self._lock_for(user_id):
            now = self.clock()
            live = await self.store.get_live_session(user_id)
            activity = signal.activity

            # 1. not playing
            if activity is None:
                if live is None:
                    log.debug("[SESSION] user %s idle, nothing to close", user_id)
                    return Transition.IGNORED
                await self._close(user_id, now)
                return Transition.CLOSED

            start_time = activity.start_time

            # 2. same activity still running
            if live is not None and live.activity_name == activity.name:
                if start_time is None or start_time == live.start_time:
                    log.debug("[SESSION] user %s still on %r", user_id, activity.name)
                    return Transition.UNCHANGED

            if start_time is None:
                start_time = now

            # 3. idle -> playing
            if live is None:
                opened = await self._open(user_id, activity.name, start_time)
                return Transition.OPENED if opened else Transition.UNCHANGED

            # 4. switched activity, or the same one restarted
            await self._close(user_id, now)
            opened = await self._open(user_id, activity.name, start_time)
            return Transition.SWITCHED if opened else Transition.CLOSED

    async def get_summary(self, user_id: int, limit: int = DEFAULT_SUMMARY_LIMIT) -> List[SummaryEntry]:
        return await self.store.get_top_entries(user_id, limit)

    # ----- admin -----

    async def reset_user(self, user_id: int) -> bool:
        async with self._lock_for(user_id):
            try:
                sessions = await self.store.clear_sessions_for_user(user_id)
                entries = await self.store.clear_playtime_for_user(user_id)
            except StorageError:
                log.exception("[ADMIN] reset of user %s failed", user_id)
                return False
        log.info("[ADMIN] reset user %s (%s session, %s entries)", user_id, sessions, entries)
        return True

    async def reset_all(self) -> bool:
        try:
            sessions = await self.store.clear_sessions()
            entries = await self.store.clear_playtime()
        except StorageError:
            log.exception("[ADMIN] reset of all users failed")
            return False
        log.info("[ADMIN] reset all users (%s sessions, %s entries)", sessions, entries)
        return True

    async def hard_reset(self) -> bool:
        try:
            await self.store.rebuild_schema()
        except StorageError:
            log.exception("[ADMIN] hard reset failed")
            return False
        log.info("[ADMIN] hard reset done")
        return True
