"""
Wer wird zu einem Meeting erwartet?

General-Serien mit Rollen-Zielgruppe (workers/leaders) verwenden ausschließlich
den beim Erzeugen eingefrorenen Snapshot ``attendee_uids``; eine spätere
Rollenänderung ändert vergangene Erwartungen nicht. Gruppen-Serien (gdi,
ministryArea) werden dagegen immer live aus dem heutigen Kader der Gruppe
aufgelöst, auch für vergangene Termine.
"""
from typing import Iterable, List, Optional

from churchcompass.models import (
    Meeting, MeetingSeries, Member, MinistryArea, Role, SeriesType, SmallGroup, TargetGroup,
)
from churchcompass.roles import compute_roles

_TARGET_ROLE = {
    TargetGroup.WORKERS: Role.WORKER,
    TargetGroup.LEADERS: Role.LEADER,
}


def _sorted(members: Iterable[Member]) -> List[Member]:
    return sorted(members, key=lambda m: (m.display_name.lower(), m.id))


def _pick(member_ids: Iterable[str], all_members: Iterable[Member]) -> List[Member]:
    wanted = set(member_ids)
    return _sorted(m for m in all_members if m.id in wanted)


def group_roster(
    series: MeetingSeries,
    all_groups: Iterable[SmallGroup],
    all_areas: Iterable[MinistryArea],
) -> List[str]:
    """Office-Holder plus Mitgliederliste der Besitzer-Gruppe (leer, wenn es sie nicht gibt)."""
    if series.series_type == SeriesType.GDI:
        for g in all_groups:
            if g.id == series.owner_group_id:
                return [g.guide_id] + [mid for mid in g.member_ids if mid != g.guide_id]
    elif series.series_type == SeriesType.MINISTRY_AREA:
        for a in all_areas:
            if a.id == series.owner_group_id:
                return [a.leader_id] + [mid for mid in a.member_ids if mid != a.leader_id]
    return []


def snapshot_attendees(
    series: MeetingSeries,
    all_members: Iterable[Member],
    all_groups: Iterable[SmallGroup],
    all_areas: Iterable[MinistryArea],
) -> Optional[List[str]]:
    """Attendee-Snapshot für ein neues Meeting einer general-Serie; None für Gruppen-Serien."""
    if series.series_type != SeriesType.GENERAL:
        return None
    all_members = list(all_members)
    if TargetGroup.ALL_MEMBERS in series.target_attendee_groups:
        return [m.id for m in _sorted(all_members)]

    all_groups = list(all_groups)
    all_areas = list(all_areas)
    wanted_roles = {_TARGET_ROLE[t] for t in series.target_attendee_groups if t in _TARGET_ROLE}
    chosen = [
        m for m in all_members
        if compute_roles(m, all_groups, all_areas) & wanted_roles
    ]
    return [m.id for m in _sorted(chosen)]


def resolve_attendees(
    meeting: Meeting,
    all_members: Iterable[Member],
    all_series: Iterable[MeetingSeries],
    all_groups: Iterable[SmallGroup],
    all_areas: Iterable[MinistryArea],
) -> List[Member]:
    """Liste der erwarteten Teilnehmer, sortiert nach Anzeigename. Keine Seiteneffekte."""
    all_members = list(all_members)
    series = next((s for s in all_series if s.id == meeting.series_id), None)
    stored = meeting.attendee_uids or []

    if series is None:
        return _pick(stored, all_members)

    if series.series_type == SeriesType.GENERAL:
        if TargetGroup.ALL_MEMBERS in series.target_attendee_groups:
            return _sorted(all_members)
        return _pick(stored, all_members)

    if series.series_type in (SeriesType.GDI, SeriesType.MINISTRY_AREA):
        return _pick(group_roster(series, all_groups, all_areas), all_members)

    return _pick(stored, all_members)

