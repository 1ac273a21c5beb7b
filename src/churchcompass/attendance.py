import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from churchcompass.attendees import resolve_attendees
from churchcompass.data import Repository
from churchcompass.errors import NotFound
from churchcompass.locking import write_lock
from churchcompass.models import ATTENDANCE_RECORDS, AttendanceRecord, new_id
from churchcompass.statistics import summarize_attendance

logger = logging.getLogger(__name__)


@dataclass
class AttendanceEntry:
    member_id: str
    attended: bool
    notes: Optional[str] = None   # None = vorhandene Notiz behalten


class AttendanceLedger:
    """Anwesenheit pro (Meeting, Mitglied). Kein Eintrag heißt: unbestimmt."""

    def __init__(self, repo: Repository):
        self.repo = repo

    def _require_meeting(self, meeting_id: str):
        meeting = next((m for m in self.repo.meetings() if m.id == meeting_id), None)
        if meeting is None:
            raise NotFound("Meeting", meeting_id)
        return meeting

    def save_attendance(self, meeting_id: str, entries: Iterable[AttendanceEntry]) -> List[AttendanceRecord]:
        """Upsert: pro Mitglied höchstens ein Datensatz je Meeting."""
        entries = list(entries)
        with write_lock:
            self._require_meeting(meeting_id)
            known = {m.id for m in self.repo.members()}
            for e in entries:
                if e.member_id not in known:
                    raise NotFound("Member", e.member_id)

            records = self.repo.attendance()
            index: Dict[str, AttendanceRecord] = {
                r.member_id: r for r in records if r.meeting_id == meeting_id
            }
            saved = []
            for e in entries:
                rec = index.get(e.member_id)
                if rec is None:
                    rec = AttendanceRecord(new_id(), meeting_id, e.member_id, e.attended, e.notes or "")
                    records.append(rec)
                    index[e.member_id] = rec
                else:
                    rec.attended = e.attended
                    if e.notes is not None:
                        rec.notes = e.notes
                saved.append(rec)
            self.repo.save(ATTENDANCE_RECORDS, records)
        logger.info(f"Attendance saved for meeting {meeting_id}: {len(saved)} entries")
        return saved

    def clear_attendance(self, meeting_id: str, member_ids: Iterable[str] = None) -> int:
        """Einträge löschen (zurück auf unbestimmt); ohne member_ids alle des Meetings."""
        wanted = set(member_ids) if member_ids is not None else None
        with write_lock:
            records = self.repo.attendance()
            kept = [
                r for r in records
                if r.meeting_id != meeting_id or (wanted is not None and r.member_id not in wanted)
            ]
            removed = len(records) - len(kept)
            if removed:
                self.repo.save(ATTENDANCE_RECORDS, kept)
        return removed

    def attendance_for_meeting(self, meeting_id: str) -> List[AttendanceRecord]:
        return [r for r in self.repo.attendance() if r.meeting_id == meeting_id]

    def attendance_status(self, meeting_id: str, member_id: str) -> Optional[bool]:
        for r in self.repo.attendance():
            if r.meeting_id == meeting_id and r.member_id == member_id:
                return r.attended
        return None

    def summarize(self, meeting_id: str) -> Dict[str, int]:
        meeting = self._require_meeting(meeting_id)
        expected = resolve_attendees(
            meeting, self.repo.members(), self.repo.series(),
            self.repo.small_groups(), self.repo.ministry_areas(),
        )
        return summarize_attendance(expected, self.attendance_for_meeting(meeting_id))
