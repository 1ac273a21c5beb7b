from typing import Iterable, Optional, Set

from churchcompass.models import Member, MinistryArea, Role, SmallGroup


def compute_roles(
    member: Member,
    all_groups: Iterable[SmallGroup],
    all_areas: Iterable[MinistryArea],
) -> Set[Role]:
    """
    Leite die Rollen eines Mitglieds aus dem aktuellen Gruppen-Graph ab.
      GeneralAttendee : Mitglied einer GDI
      Worker          : Guide, Bereichsleiter oder Bereichsmitglied
      Leader          : Guide oder Bereichsleiter
    Rollen sind additiv.
    """
    all_areas = list(all_areas)
    is_group_member = bool(member.assigned_group_id)
    is_guide = any(g.guide_id == member.id for g in all_groups)
    is_area_leader = any(a.leader_id == member.id for a in all_areas)
    is_area_participant = any(
        member.id in a.member_ids and a.leader_id != member.id for a in all_areas
    )

    roles = set()
    if is_group_member:
        roles.add(Role.GENERAL_ATTENDEE)
    if is_guide or is_area_leader or is_area_participant:
        roles.add(Role.WORKER)
    if is_guide or is_area_leader:
        roles.add(Role.LEADER)
    return roles


def recompute_roles(
    members: Iterable[Member],
    all_groups: Iterable[SmallGroup],
    all_areas: Iterable[MinistryArea],
    member_ids: Optional[Iterable[str]] = None,
) -> Set[str]:
    """Aktualisiert ``roles`` in-place; gibt die Ids mit geänderten Rollen zurück."""
    all_groups = list(all_groups)
    all_areas = list(all_areas)
    wanted = set(member_ids) if member_ids is not None else None
    changed = set()
    for m in members:
        if wanted is not None and m.id not in wanted:
            continue
        roles = compute_roles(m, all_groups, all_areas)
        if roles != m.roles:
            m.roles = roles
            changed.add(m.id)
    return changed
