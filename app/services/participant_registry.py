from __future__ import annotations

import threading
from collections import OrderedDict
from collections.abc import Sequence
from functools import lru_cache

from app.schemas.zoom import MeetingParticipant, RecordingFile

DEFAULT_DISPATCHED_HISTORY_SIZE = 1000


class MeetingParticipantRegistry:
    """In-memory record of who is in each meeting and which meetings were processed.

    Meetings are keyed by Zoom meeting UUID. All access goes through a single lock so
    webhook requests handled on worker threads see consistent snapshots.
    """

    def __init__(self, dispatched_history_size: int = DEFAULT_DISPATCHED_HISTORY_SIZE) -> None:
        self._participants: dict[str, OrderedDict[str, MeetingParticipant]] = {}
        self._recording_files: dict[str, list[RecordingFile]] = {}
        self._in_flight: set[str] = set()
        self._dispatched: OrderedDict[str, None] = OrderedDict()
        self._dispatched_history_size = max(dispatched_history_size, 1)
        self._lock = threading.Lock()

    def add_participant(self, meeting_uuid: str, participant: MeetingParticipant) -> bool:
        with self._lock:
            participants = self._participants.setdefault(meeting_uuid, OrderedDict())
            if participant.id in participants:
                return False
            participants[participant.id] = participant
            return True

    def remove_participant(self, meeting_uuid: str, participant_id: str) -> bool:
        with self._lock:
            participants = self._participants.get(meeting_uuid)
            if not participants or participant_id not in participants:
                return False
            del participants[participant_id]
            return True

    def get_participants(self, meeting_uuid: str) -> list[MeetingParticipant]:
        with self._lock:
            return list(self._participants.get(meeting_uuid, {}).values())

    def participant_count(self, meeting_uuid: str) -> int:
        with self._lock:
            return len(self._participants.get(meeting_uuid, {}))

    def remember_recording_files(self, meeting_uuid: str, files: Sequence[RecordingFile]) -> None:
        with self._lock:
            self._recording_files[meeting_uuid] = list(files)

    def get_recording_files(self, meeting_uuid: str) -> list[RecordingFile]:
        with self._lock:
            return list(self._recording_files.get(meeting_uuid, []))

    def try_begin_processing(self, meeting_uuid: str) -> bool:
        with self._lock:
            if meeting_uuid in self._in_flight or meeting_uuid in self._dispatched:
                return False
            self._in_flight.add(meeting_uuid)
            return True

    def finish_processing(self, meeting_uuid: str, *, dispatched: bool) -> None:
        with self._lock:
            self._in_flight.discard(meeting_uuid)
            if not dispatched:
                return
            self._participants.pop(meeting_uuid, None)
            self._recording_files.pop(meeting_uuid, None)
            self._dispatched[meeting_uuid] = None
            while len(self._dispatched) > self._dispatched_history_size:
                self._dispatched.popitem(last=False)

    def is_dispatched(self, meeting_uuid: str) -> bool:
        with self._lock:
            return meeting_uuid in self._dispatched


@lru_cache
def get_participant_registry() -> MeetingParticipantRegistry:
    return MeetingParticipantRegistry()


def clear_participant_registry_cache() -> None:
    get_participant_registry.cache_clear()
