# presence.py
from typing import Iterable, Optional

import discord

from models import ActivitySignal, PresenceSignal
from time_utils import to_ts


def playing_activity(activities: Iterable) -> Optional[ActivitySignal]:
    """First activity of type *playing*, or None. Custom statuses, music and streams don't count."""
    for activity in activities or ():
        if getattr(activity, "type", None) != discord.ActivityType.playing:
            continue
        name = getattr(activity, "name", None)
        if not name:
            continue
        start = getattr(activity, "start", None)
        return ActivitySignal(name=name, start_time=to_ts(start) if start else None)
    return None


def signal_from_member(member) -> Optional[PresenceSignal]:
    """Build the presence signal for a member, or None for bot accounts."""
    if getattr(member, "bot", False):
        return None
    return PresenceSignal(user_id=member.id, activity=playing_activity(member.activities))
