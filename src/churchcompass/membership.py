"""
Konsistenz des Mitgliedschafts-Graphen.

Invariante: eine Person hat das Amt (Guide einer GDI, Leiter eines
Dienstbereichs) in höchstens einer Gruppe derselben Art. Amt und einfache
Mitgliedschaft schließen sich innerhalb einer Gruppe aus; einfache
GDI-Mitgliedschaft gibt es nur in einer GDI. Dienstbereiche erlauben mehrere
einfache Mitgliedschaften.

Jede Operation lädt Members, GDIs und Bereiche, rechnet im Speicher und
schreibt die drei Collections als ein Batch zurück. Rollen werden für alle
berührten Personen neu berechnet.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Union

from churchcompass.data import Repository
from churchcompass.errors import InvariantViolation, NotFound
from churchcompass.locking import write_lock
from churchcompass.models import (
    MEMBERS, MINISTRY_AREAS, SMALL_GROUPS,
    Member, MinistryArea, SmallGroup, is_vacant, new_id, vacant_office,
)
from churchcompass.roles import recompute_roles

logger = logging.getLogger(__name__)

Group = Union[SmallGroup, MinistryArea]

_UNSET = object()


@dataclass(frozen=True)
class _Kind:
    label: str
    office: str
    vacant_prefix: str
    single_membership: bool


GDI = _Kind("SmallGroup", "guide_id", "GUIDE", True)
AREA = _Kind("MinistryArea", "leader_id", "LEADER", False)


@dataclass
class MembershipChange:
    group: Optional[Group] = None
    affected_member_ids: Set[str] = field(default_factory=set)
    roles_changed: Set[str] = field(default_factory=set)


class _Graph:
    """Ein geladener Stand von Members, GDIs und Bereichen."""

    def __init__(self, repo: Repository):
        self.members: Dict[str, Member] = {m.id: m for m in repo.members()}
        self.groups: List[SmallGroup] = repo.small_groups()
        self.areas: List[MinistryArea] = repo.ministry_areas()
        self.touched: Set[str] = set()

    def of(self, kind: _Kind) -> list:
        return self.groups if kind is GDI else self.areas

    def find(self, kind: _Kind, group_id: str) -> Group:
        for g in self.of(kind):
            if g.id == group_id:
                return g
        raise NotFound(kind.label, group_id)

    def member(self, member_id: str) -> Member:
        try:
            return self.members[member_id]
        except KeyError:
            raise NotFound("Member", member_id) from None

    def require_members(self, member_ids: Iterable[str]):
        for mid in member_ids:
            self.member(mid)

    # --- Member-Zeiger -----------------------------------------------------

    def point(self, kind: _Kind, member_id: str, group_id: str):
        m = self.members.get(member_id)
        if m is None:
            return
        if kind is GDI:
            m.assigned_group_id = group_id
        else:
            m.assigned_area_ids.add(group_id)
        self.touched.add(member_id)

    def unpoint(self, kind: _Kind, member_id: str, group_id: str):
        """Zeiger nur löschen, wenn er noch auf diese Gruppe zeigt."""
        m = self.members.get(member_id)
        if m is None:
            return
        if kind is GDI:
            if m.assigned_group_id == group_id:
                m.assigned_group_id = None
        else:
            m.assigned_area_ids.discard(group_id)
        self.touched.add(member_id)

    # --- Ämter -------------------------------------------------------------

    def vacate(self, kind: _Kind, group: Group):
        holder = getattr(group, kind.office)
        setattr(group, kind.office, vacant_office(kind.vacant_prefix, group.id))
        if not is_vacant(holder):
            self.unpoint(kind, holder, group.id)
        logger.info(f"{kind.label} {group.id}: office vacated (was {holder})")

    def install_office(self, kind: _Kind, group: Group, member_id: str):
        old = getattr(group, kind.office)

        # 1) bisherigen Amtsinhaber abziehen
        if old != member_id and not is_vacant(old):
            self.unpoint(kind, old, group.id)

        for other in self.of(kind):
            if other.id == group.id:
                continue
            held = getattr(other, kind.office) == member_id
            # 2) gleiches Amt in anderer Gruppe → Platzhalter
            if held:
                setattr(other, kind.office, vacant_office(kind.vacant_prefix, other.id))
                self.unpoint(kind, member_id, other.id)
                logger.info(f"{kind.label} {other.id}: office vacated, {member_id} moved to {group.id}")
            # 3) einfache Mitgliedschaft in anderer GDI entfernen
            if member_id in other.member_ids and (kind.single_membership or held):
                other.member_ids = [mid for mid in other.member_ids if mid != member_id]
                self.unpoint(kind, member_id, other.id)

        # 4) neuen Amtsinhaber einsetzen
        setattr(group, kind.office, member_id)
        group.member_ids = [mid for mid in group.member_ids if mid != member_id]
        self.point(kind, member_id, group.id)

    # --- einfache Mitglieder -----------------------------------------------

    def offices_held(self, kind: _Kind, member_id: str, exclude: str = None) -> List[Group]:
        return [g for g in self.of(kind) if getattr(g, kind.office) == member_id and g.id != exclude]

    def add_plain(self, kind: _Kind, group: Group, member_ids: Iterable[str], vacate_offices: bool = False):
        office = getattr(group, kind.office)
        for mid in member_ids:
            if mid == office or mid in group.member_ids:
                continue
            if kind.single_membership:
                held = self.offices_held(kind, mid, exclude=group.id)
                if held and not vacate_offices:
                    raise InvariantViolation(
                        f"Member {mid} is guide of {held[0].id}; reassign that office first "
                        f"or pass vacate_offices=True."
                    )
                for other in held:
                    self.vacate(kind, other)
                for other in self.of(kind):
                    if other.id != group.id and mid in other.member_ids:
                        other.member_ids = [x for x in other.member_ids if x != mid]
            group.member_ids.append(mid)
            self.point(kind, mid, group.id)

    def remove_plain(self, kind: _Kind, group: Group, member_ids: Iterable[str]):
        gone = set(member_ids) - {getattr(group, kind.office)}
        group.member_ids = [mid for mid in group.member_ids if mid not in gone]
        for mid in gone:
            self.unpoint(kind, mid, group.id)

    def set_plain(self, kind: _Kind, group: Group, member_ids: Iterable[str], vacate_offices: bool = False):
        office = getattr(group, kind.office)
        wanted = [mid for mid in dict.fromkeys(member_ids) if mid != office]
        removed = [mid for mid in group.member_ids if mid not in wanted]
        self.remove_plain(kind, group, removed)
        self.add_plain(kind, group, wanted, vacate_offices)

    # --- Schreiben ---------------------------------------------------------

    def commit(self, repo: Repository) -> Set[str]:
        members = list(self.members.values())
        changed = recompute_roles(members, self.groups, self.areas, self.touched)
        repo.save_many({
            MEMBERS: members,
            SMALL_GROUPS: self.groups,
            MINISTRY_AREAS: self.areas,
        })
        return changed


class MembershipEngine:
    """Einziger Weg, Gruppenzuordnungen zu ändern."""

    def __init__(self, repo: Repository):
        self.repo = repo

    def _run(self, fn) -> MembershipChange:
        with write_lock:
            graph = _Graph(self.repo)
            group = fn(graph)
            changed = graph.commit(self.repo)
            touched = {mid for mid in graph.touched if mid in graph.members}
            logger.debug(f"membership change touched {sorted(touched)}, roles changed {sorted(changed)}")
            return MembershipChange(group, touched, changed)

    # --- Gruppen anlegen / löschen -----------------------------------------

    def create_small_group(self, name: str, guide_id: str, member_ids: Iterable[str] = ()) -> MembershipChange:
        return self._create(GDI, SmallGroup(new_id(), name, guide_id, []), guide_id, list(member_ids))

    def create_ministry_area(self, name: str, leader_id: str, member_ids: Iterable[str] = (),
                             description: str = "") -> MembershipChange:
        area = MinistryArea(new_id(), name, leader_id, [], description)
        return self._create(AREA, area, leader_id, list(member_ids))

    def _create(self, kind: _Kind, group: Group, holder_id: str, member_ids: List[str]) -> MembershipChange:
        def op(graph):
            graph.require_members([holder_id, *member_ids])
            setattr(group, kind.office, vacant_office(kind.vacant_prefix, group.id))
            graph.of(kind).append(group)
            graph.install_office(kind, group, holder_id)
            graph.add_plain(kind, group, member_ids)
            logger.info(f"{kind.label} {group.id} ({group.name}) created")
            return group
        return self._run(op)

    def delete_small_group(self, group_id: str) -> MembershipChange:
        return self._delete(GDI, group_id)

    def delete_ministry_area(self, area_id: str) -> MembershipChange:
        return self._delete(AREA, area_id)

    def _delete(self, kind: _Kind, group_id: str) -> MembershipChange:
        def op(graph):
            group = graph.find(kind, group_id)
            holder = getattr(group, kind.office)
            for mid in [holder, *group.member_ids]:
                if not is_vacant(mid):
                    graph.unpoint(kind, mid, group.id)
            graph.of(kind).remove(group)
            logger.info(f"{kind.label} {group_id} deleted")
            return group
        return self._run(op)

    # --- Ämter -------------------------------------------------------------

    def assign_guide(self, group_id: str, member_id: str) -> MembershipChange:
        return self._assign(GDI, group_id, member_id)

    def assign_leader(self, area_id: str, member_id: str) -> MembershipChange:
        return self._assign(AREA, area_id, member_id)

    def _assign(self, kind: _Kind, group_id: str, member_id: str) -> MembershipChange:
        def op(graph):
            group = graph.find(kind, group_id)
            graph.member(member_id)
            graph.install_office(kind, group, member_id)
            return group
        return self._run(op)

    def vacate_guide(self, group_id: str) -> MembershipChange:
        """Guide explizit entfernen; die GDI erhält den Platzhalter."""
        return self._vacate(GDI, group_id)

    def vacate_leader(self, area_id: str) -> MembershipChange:
        return self._vacate(AREA, area_id)

    def _vacate(self, kind: _Kind, group_id: str) -> MembershipChange:
        def op(graph):
            group = graph.find(kind, group_id)
            graph.vacate(kind, group)
            return group
        return self._run(op)

    # --- einfache Mitglieder -----------------------------------------------

    def set_group_members(self, group_id: str, member_ids: Iterable[str],
                          vacate_offices: bool = False) -> MembershipChange:
        return self._set_members(GDI, group_id, list(member_ids), vacate_offices)

    def set_area_members(self, area_id: str, member_ids: Iterable[str]) -> MembershipChange:
        return self._set_members(AREA, area_id, list(member_ids), False)

    def _set_members(self, kind, group_id, member_ids, vacate_offices) -> MembershipChange:
        def op(graph):
            group = graph.find(kind, group_id)
            graph.require_members(mid for mid in member_ids if mid not in group.member_ids)
            graph.set_plain(kind, group, member_ids, vacate_offices)
            return group
        return self._run(op)

    def add_group_members(self, group_id: str, member_ids: Iterable[str],
                          vacate_offices: bool = False) -> MembershipChange:
        member_ids = list(member_ids)

        def op(graph):
            group = graph.find(GDI, group_id)
            graph.require_members(member_ids)
            graph.add_plain(GDI, group, member_ids, vacate_offices)
            return group
        return self._run(op)

    def remove_group_members(self, group_id: str, member_ids: Iterable[str]) -> MembershipChange:
        member_ids = list(member_ids)

        def op(graph):
            group = graph.find(GDI, group_id)
            graph.remove_plain(GDI, group, member_ids)
            return group
        return self._run(op)

    # --- kombinierte Bearbeitung (Formular einer Gruppe) --------------------

    def update_small_group(self, group_id: str, name: str = None, guide_id=_UNSET,
                           member_ids: Iterable[str] = None) -> MembershipChange:
        return self._update(GDI, group_id, name, guide_id, member_ids)

    def update_ministry_area(self, area_id: str, name: str = None, description: str = None,
                             leader_id=_UNSET, member_ids: Iterable[str] = None) -> MembershipChange:
        return self._update(AREA, area_id, name, leader_id, member_ids, description)

    def _update(self, kind, group_id, name, holder_id, member_ids, description=None) -> MembershipChange:
        if holder_id is None:
            raise InvariantViolation(
                f"{kind.label} {group_id} cannot be left without an office holder; "
                f"assign a replacement or vacate the office explicitly."
            )
        member_ids = list(member_ids) if member_ids is not None else None

        def op(graph):
            group = graph.find(kind, group_id)
            if holder_id is not _UNSET:
                graph.member(holder_id)
            if member_ids is not None:
                graph.require_members(mid for mid in member_ids if mid not in group.member_ids)
            if name is not None:
                group.name = name
            if description is not None:
                group.description = description
            if holder_id is not _UNSET and holder_id != getattr(group, kind.office):
                graph.install_office(kind, group, holder_id)
            if member_ids is not None:
                graph.set_plain(kind, group, member_ids)
            return group
        return self._run(op)

    # --- Member-Seite ------------------------------------------------------

    def register_member(self, member: Member) -> MembershipChange:
        """Neues Mitglied speichern und in die angegebenen Gruppen eintragen."""
        group_id = member.assigned_group_id
        area_ids = set(member.assigned_area_ids)

        def op(graph):
            if member.id in graph.members:
                raise InvariantViolation(f"Member {member.id} already exists.")
            group = graph.find(GDI, group_id) if group_id else None
            areas = [graph.find(AREA, aid) for aid in sorted(area_ids)]
            member.assigned_group_id = None
            member.assigned_area_ids = set()
            member.roles = set()
            graph.members[member.id] = member
            graph.touched.add(member.id)
            if group is not None:
                graph.add_plain(GDI, group, [member.id])
            for area in areas:
                graph.add_plain(AREA, area, [member.id])
            return None
        return self._run(op)

    def update_member_assignments(self, member_id: str, group_id=_UNSET,
                                  area_ids: Iterable[str] = None,
                                  vacate_offices: bool = False) -> MembershipChange:
        """
        GDI und/oder Dienstbereiche eines Mitglieds ändern. Wer dabei ein Amt
        verlassen würde, braucht ``vacate_offices=True``.
        """
        area_ids = set(area_ids) if area_ids is not None else None

        def op(graph):
            m = graph.member(member_id)
            if group_id is not _UNSET:
                self._move_group(graph, m, group_id, vacate_offices)
            if area_ids is not None:
                self._move_areas(graph, m, area_ids, vacate_offices)
            return None
        return self._run(op)

    @staticmethod
    def _move_group(graph: _Graph, m: Member, group_id: Optional[str], vacate_offices: bool):
        target = graph.find(GDI, group_id) if group_id else None
        old_id = m.assigned_group_id
        if old_id == group_id:
            return
        if old_id:
            for g in graph.groups:
                if g.id != old_id:
                    continue
                if g.guide_id == m.id:
                    if not vacate_offices:
                        raise InvariantViolation(f"Member {m.id} is guide of {g.id}.")
                    graph.vacate(GDI, g)
                graph.remove_plain(GDI, g, [m.id])
        if target is not None:
            graph.add_plain(GDI, target, [m.id], vacate_offices)
            graph.point(GDI, m.id, target.id)
        else:
            m.assigned_group_id = None
            graph.touched.add(m.id)

    @staticmethod
    def _move_areas(graph: _Graph, m: Member, area_ids: Set[str], vacate_offices: bool):
        targets = [graph.find(AREA, aid) for aid in sorted(area_ids)]
        for area in graph.areas:
            if area.id in area_ids:
                continue
            if area.leader_id == m.id:
                if not vacate_offices:
                    raise InvariantViolation(f"Member {m.id} is leader of {area.id}.")
                graph.vacate(AREA, area)
            if m.id in area.member_ids or area.id in m.assigned_area_ids:
                graph.remove_plain(AREA, area, [m.id])
        for area in targets:
            graph.add_plain(AREA, area, [m.id])

    # --- Abgleich ----------------------------------------------------------

    def recompute_all_roles(self) -> Set[str]:
        """Rollen-Cache aller Mitglieder neu schreiben; liefert geänderte Ids."""
        with write_lock:
            members = self.repo.members()
            changed = recompute_roles(members, self.repo.small_groups(), self.repo.ministry_areas())
            if changed:
                self.repo.save(MEMBERS, members)
                logger.info(f"Roles refreshed for {len(changed)} members")
            return changed


def find_violations(groups: Iterable[SmallGroup], areas: Iterable[MinistryArea]) -> List[str]:
    """Beschreibungen aller verletzten Invarianten (leer = konsistent)."""
    problems = []
    for kind, items in ((GDI, list(groups)), (AREA, list(areas))):
        seen = {}
        for g in items:
            holder = getattr(g, kind.office)
            if holder in g.member_ids:
                problems.append(f"{kind.label} {g.id}: office holder {holder} also listed as member")
            if is_vacant(holder):
                continue
            if holder in seen:
                problems.append(f"{holder} holds the office of {kind.label} {seen[holder]} and {g.id}")
            seen[holder] = g.id
        if kind.single_membership:
            where = {}
            for g in items:
                for mid in g.member_ids:
                    if mid in where:
                        problems.append(f"{mid} is a member of {kind.label} {where[mid]} and {g.id}")
                    where[mid] = g.id
    return problems
