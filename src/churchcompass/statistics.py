from typing import Dict, Iterable, List

from churchcompass.models import AttendanceRecord, Member


def summarize_attendance(expected: Iterable[Member], records: List[AttendanceRecord]) -> Dict[str, int]:
    """
    Zusammenfassung eines Meetings:
      expected     : Anzahl erwarteter Teilnehmer
      attended     : erwartet und anwesend
      absent       : erwartet und als abwesend erfasst
      undetermined : erwartet, aber noch kein Eintrag
      extra        : Einträge für nicht erwartete Personen
    """
    expected_ids = {m.id for m in expected}
    by_member = {r.member_id: r for r in records}

    attended = sum(1 for mid in expected_ids if mid in by_member and by_member[mid].attended)
    absent = sum(1 for mid in expected_ids if mid in by_member and not by_member[mid].attended)
    return {
        'expected': len(expected_ids),
        'attended': attended,
        'absent': absent,
        'undetermined': len(expected_ids) - attended - absent,
        'extra': sum(1 for mid in by_member if mid not in expected_ids),
    }
