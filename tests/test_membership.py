import random

import pytest

from churchcompass.data import MemoryStore, Repository
from churchcompass.errors import InvariantViolation, NotFound, StoreError
from churchcompass.membership import MembershipEngine, find_violations
from churchcompass.models import (
    MEMBERS, MINISTRY_AREAS, SMALL_GROUPS, Member, MinistryArea, Role, SmallGroup, is_vacant, vacant_office,
)


def _groups(repo):
    return {g.id: g for g in repo.small_groups()}


def _areas(repo):
    return {a.id: a for a in repo.ministry_areas()}


def _members(repo):
    return {m.id: m for m in repo.members()}


def _raw(repo):
    return {c: repo.store.load_all(c) for c in (MEMBERS, SMALL_GROUPS, MINISTRY_AREAS)}


def test_reassign_guide_to_guideless_group(church):
    change = MembershipEngine(church).assign_guide("beta", "A")

    groups = _groups(church)
    assert groups["alpha"].guide_id == vacant_office("GUIDE", "alpha")
    assert "A" not in groups["alpha"].member_ids
    assert groups["alpha"].member_ids == ["B", "C"]
    assert groups["beta"].guide_id == "A"
    assert "A" not in groups["beta"].member_ids
    # B und C bleiben unberührt
    assert change.affected_member_ids == {"A"}

    members = _members(church)
    assert members["A"].assigned_group_id == "beta"
    assert members["A"].roles == {Role.GENERAL_ATTENDEE, Role.WORKER, Role.LEADER}
    assert members["B"].assigned_group_id == "alpha"


def test_plain_member_of_other_group_becomes_guide(church):
    change = MembershipEngine(church).assign_guide("alpha", "D")

    groups = _groups(church)
    assert groups["alpha"].guide_id == "D"
    assert groups["beta"].member_ids == []
    members = _members(church)
    assert members["D"].assigned_group_id == "alpha"
    # alter Guide verliert Zeiger und Rollen
    assert members["A"].assigned_group_id is None
    assert members["A"].roles == set()
    assert change.affected_member_ids == {"A", "D"}


def test_member_of_same_group_promoted_leaves_member_list(church):
    MembershipEngine(church).assign_guide("alpha", "B")
    alpha = _groups(church)["alpha"]
    assert alpha.guide_id == "B"
    assert alpha.member_ids == ["C"]


def test_demotion_keeps_pointer_that_moved_elsewhere(church):
    members = church.members()
    for m in members:
        if m.id == "A":
            m.assigned_group_id = "beta"
    church.save(MEMBERS, members)

    MembershipEngine(church).assign_guide("alpha", "B")
    assert _members(church)["A"].assigned_group_id == "beta"


@pytest.mark.parametrize("group_id,member_id", [
    ("nope", "A"),
    ("alpha", "nobody"),
])
def test_unknown_ids_abort_without_writes(church, group_id, member_id):
    before = _raw(church)
    with pytest.raises(NotFound):
        MembershipEngine(church).assign_guide(group_id, member_id)
    assert _raw(church) == before


def test_failed_batch_write_leaves_collections_untouched():
    class FlakyStore(MemoryStore):
        fail = False

        def save_many(self, batch):
            if self.fail:
                raise StoreError("disk full")
            super().save_many(batch)

    store = FlakyStore()
    repo = Repository(store)
    repo.save_many({
        MEMBERS: [Member("A", "Ana", assigned_group_id="alpha"), Member("B", "Bruno")],
        SMALL_GROUPS: [SmallGroup("alpha", "Alpha", "A", [])],
        MINISTRY_AREAS: [],
    })
    before = _raw(repo)
    store.fail = True
    with pytest.raises(StoreError):
        MembershipEngine(repo).assign_guide("alpha", "B")
    assert _raw(repo) == before


def test_set_group_members_moves_member_between_groups(church):
    change = MembershipEngine(church).set_group_members("beta", ["D", "B"])
    groups = _groups(church)
    assert groups["beta"].member_ids == ["D", "B"]
    assert groups["alpha"].member_ids == ["C"]
    assert _members(church)["B"].assigned_group_id == "beta"
    assert change.affected_member_ids == {"B"}


def test_removed_members_lose_pointer(church):
    MembershipEngine(church).set_group_members("alpha", ["B"])
    members = _members(church)
    assert members["C"].assigned_group_id is None
    assert _groups(church)["alpha"].member_ids == ["B"]


def test_guide_listed_as_member_is_ignored(church):
    MembershipEngine(church).set_group_members("alpha", ["A", "B", "C"])
    alpha = _groups(church)["alpha"]
    assert alpha.guide_id == "A"
    assert alpha.member_ids == ["B", "C"]


def test_adding_a_guide_elsewhere_needs_explicit_vacate(church):
    engine = MembershipEngine(church)
    with pytest.raises(InvariantViolation):
        engine.add_group_members("beta", ["A"])
    assert _groups(church)["alpha"].guide_id == "A"

    engine.add_group_members("beta", ["A"], vacate_offices=True)
    groups = _groups(church)
    assert groups["alpha"].guide_id == vacant_office("GUIDE", "alpha")
    assert groups["beta"].member_ids == ["D", "A"]
    assert _members(church)["A"].assigned_group_id == "beta"


def test_remove_group_members_skips_guide(church):
    MembershipEngine(church).remove_group_members("alpha", ["A", "B"])
    members = _members(church)
    assert members["A"].assigned_group_id == "alpha"
    assert members["B"].assigned_group_id is None
    assert _groups(church)["alpha"].member_ids == ["C"]


def test_clearing_guide_without_replacement_is_rejected(church):
    with pytest.raises(InvariantViolation):
        MembershipEngine(church).update_small_group("alpha", guide_id=None)


def test_update_small_group_swaps_guide_and_members(church):
    MembershipEngine(church).update_small_group("alpha", name="Alfa", guide_id="B", member_ids=["A", "C"])
    alpha = _groups(church)["alpha"]
    assert (alpha.name, alpha.guide_id, alpha.member_ids) == ("Alfa", "B", ["C", "A"])
    members = _members(church)
    assert members["A"].assigned_group_id == "alpha"
    assert members["A"].roles == {Role.GENERAL_ATTENDEE}
    assert Role.LEADER in members["B"].roles


def test_vacate_guide_uses_placeholder(church):
    engine = MembershipEngine(church)
    engine.recompute_all_roles()
    change = engine.vacate_guide("alpha")
    assert _groups(church)["alpha"].guide_id == vacant_office("GUIDE", "alpha")
    assert "A" in change.roles_changed
    a = _members(church)["A"]
    assert a.assigned_group_id is None
    assert a.roles == set()


def test_leader_moves_to_other_area(church):
    engine = MembershipEngine(church)
    media = engine.create_ministry_area("Media", leader_id="G", description="Sonido y video").group
    change = engine.assign_leader(media.id, "E")

    areas = _areas(church)
    assert areas["music"].leader_id == vacant_office("LEADER", "music")
    assert areas[media.id].leader_id == "E"
    assert areas[media.id].description == "Sonido y video"
    members = _members(church)
    assert members["E"].assigned_area_ids == {media.id}
    assert members["G"].assigned_area_ids == set()
    assert change.affected_member_ids == {"E", "G"}


def test_area_members_may_serve_in_several_areas(church):
    engine = MembershipEngine(church)
    media = engine.create_ministry_area("Media", leader_id="C", member_ids=["F"]).group
    assert _members(church)["F"].assigned_area_ids == {"music", media.id}
    assert _areas(church)["music"].member_ids == ["F"]

    engine.set_area_members("music", [])
    f = _members(church)["F"]
    assert f.assigned_area_ids == {media.id}
    assert f.roles == {Role.WORKER}


def test_create_small_group_takes_guide_from_other_group(church):
    change = MembershipEngine(church).create_small_group("Gamma", guide_id="A", member_ids=["G"])
    gamma = change.group
    groups = _groups(church)
    assert groups[gamma.id].guide_id == "A"
    assert groups[gamma.id].member_ids == ["G"]
    assert groups["alpha"].guide_id == vacant_office("GUIDE", "alpha")
    members = _members(church)
    assert members["A"].assigned_group_id == gamma.id
    assert members["G"].assigned_group_id == gamma.id


def test_register_member_joins_groups(church):
    engine = MembershipEngine(church)
    engine.register_member(Member("H", "Hugo", "Herrera", assigned_group_id="beta", assigned_area_ids={"music"}))
    assert _groups(church)["beta"].member_ids == ["D", "H"]
    assert _areas(church)["music"].member_ids == ["F", "H"]
    h = _members(church)["H"]
    assert h.roles == {Role.GENERAL_ATTENDEE, Role.WORKER}


def test_register_member_with_unknown_group(church):
    before = _raw(church)
    with pytest.raises(NotFound):
        MembershipEngine(church).register_member(Member("H", "Hugo", assigned_group_id="nope"))
    assert _raw(church) == before


def test_member_side_group_change(church):
    MembershipEngine(church).update_member_assignments("B", group_id="beta")
    groups = _groups(church)
    assert groups["alpha"].member_ids == ["C"]
    assert groups["beta"].member_ids == ["D", "B"]
    assert _members(church)["B"].assigned_group_id == "beta"


def test_member_side_change_of_guide_needs_vacate(church):
    engine = MembershipEngine(church)
    with pytest.raises(InvariantViolation):
        engine.update_member_assignments("A", group_id=None)
    engine.update_member_assignments("A", group_id=None, vacate_offices=True)
    assert _groups(church)["alpha"].guide_id == vacant_office("GUIDE", "alpha")
    assert _members(church)["A"].assigned_group_id is None


def test_member_side_area_change(church):
    engine = MembershipEngine(church)
    engine.update_member_assignments("F", area_ids=[])
    assert _areas(church)["music"].member_ids == []
    with pytest.raises(InvariantViolation):
        engine.update_member_assignments("E", area_ids=[])


def test_delete_small_group_clears_pointers(church):
    change = MembershipEngine(church).delete_small_group("alpha")
    assert list(_groups(church)) == ["beta"]
    members = _members(church)
    assert all(members[mid].assigned_group_id is None for mid in "ABC")
    assert change.affected_member_ids == {"A", "B", "C"}


def test_recompute_all_roles_refreshes_stale_cache(church):
    changed = MembershipEngine(church).recompute_all_roles()
    assert changed == {"A", "B", "C", "D", "E", "F"}
    assert MembershipEngine(church).recompute_all_roles() == set()


def test_invariants_hold_after_random_operations(church):
    engine = MembershipEngine(church)
    rng = random.Random(20261019)
    people = list("ABCDEFG")
    for _ in range(80):
        op = rng.choice(["guide", "leader", "members", "vacate"])
        try:
            if op == "guide":
                engine.assign_guide(rng.choice(["alpha", "beta"]), rng.choice(people))
            elif op == "leader":
                engine.assign_leader("music", rng.choice(people))
            elif op == "members":
                engine.set_group_members(rng.choice(["alpha", "beta"]), rng.sample(people, 3),
                                         vacate_offices=True)
            else:
                engine.vacate_guide(rng.choice(["alpha", "beta"]))
        except InvariantViolation:
            pass

    groups = church.small_groups()
    areas = church.ministry_areas()
    guides = [g.guide_id for g in groups if not is_vacant(g.guide_id)]
    assert len(guides) == len(set(guides))
    assert find_violations(groups, areas) == []

    # Member-Zeiger passen zum Graphen
    members = _members(church)
    for g in groups:
        for mid in [g.guide_id] + g.member_ids:
            if not is_vacant(mid):
                assert members[mid].assigned_group_id == g.id
    for a in areas:
        for mid in [a.leader_id] + a.member_ids:
            if not is_vacant(mid):
                assert a.id in members[mid].assigned_area_ids


def test_find_violations_reports_double_office():
    groups = [SmallGroup("g1", "G1", "A", []), SmallGroup("g2", "G2", "A", ["A"])]
    problems = find_violations(groups, [MinistryArea("m", "M", vacant_office("LEADER", "m"), [])])
    assert len(problems) == 2


def test_update_ministry_area_and_vacate_leader(church):
    engine = MembershipEngine(church)
    engine.update_ministry_area("music", name="Alabanza y Adoración", description="Domingo 9:00",
                                leader_id="F", member_ids=["E", "G"])
    music = _areas(church)["music"]
    assert (music.name, music.description, music.leader_id) == ("Alabanza y Adoración", "Domingo 9:00", "F")
    assert music.member_ids == ["E", "G"]
    assert Role.LEADER not in _members(church)["E"].roles

    engine.vacate_leader("music")
    assert _areas(church)["music"].leader_id == vacant_office("LEADER", "music")
    assert _members(church)["F"].assigned_area_ids == set()


def test_delete_ministry_area(church):
    change = MembershipEngine(church).delete_ministry_area("music")
    assert church.ministry_areas() == []
    members = _members(church)
    assert members["E"].assigned_area_ids == set()
    assert members["F"].roles == set()
    assert change.affected_member_ids == {"E", "F"}
