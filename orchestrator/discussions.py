"""
Per-step agent discussion history.

Entries accumulate during a run (e.g. conflict resolutions) and are fed
into the Build phase of the step they concern.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, List


@dataclass
class DiscussionEntry:
    agent_role: str
    message: str
    timestamp: float = field(default_factory=time.time)


class DiscussionBoard:
    """Discussion histories keyed by 'discussion-<id>[-<id>...]'."""

    def __init__(self):
        self._discussions: Dict[str, List[DiscussionEntry]] = {}

    @staticmethod
    def discussion_id(step_ids: List[str]) -> str:
        return "discussion-" + "-".join(step_ids)

    def add_entry(self, discussion_id: str, agent_role: str, message: str) -> DiscussionEntry:
        entry = DiscussionEntry(agent_role=agent_role, message=message)
        self._discussions.setdefault(discussion_id, []).append(entry)
        return entry

    def add_for_step(self, step_id: str, agent_role: str, message: str) -> DiscussionEntry:
        return self.add_entry(self.discussion_id([step_id]), agent_role, message)

    def history(self, discussion_id: str) -> List[DiscussionEntry]:
        return list(self._discussions.get(discussion_id, []))

    def history_for(self, step_id: str) -> List[DiscussionEntry]:
        return self.history(self.discussion_id([step_id]))

    def clear(self):
        self._discussions.clear()

    def __len__(self) -> int:
        return len(self._discussions)
