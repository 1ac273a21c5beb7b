from datetime import date

import pytest

from churchcompass.data import MemoryStore, Repository
from churchcompass.models import (
    MEMBERS, MINISTRY_AREAS, SMALL_GROUPS, Member, MinistryArea, SmallGroup, vacant_office,
)

MONDAY = date(2026, 10, 19)


@pytest.fixture
def repo():
    return Repository(MemoryStore())


@pytest.fixture
def today():
    return MONDAY


@pytest.fixture
def church(repo):
    """
    GDI alpha: Guide A, Mitglieder B, C
    GDI beta : ohne Guide (Platzhalter), Mitglied D
    Bereich music: Leiter E, Mitglied F
    G gehört nirgends dazu.
    """
    members = [
        Member("A", "Ana", "Alvarez", assigned_group_id="alpha"),
        Member("B", "Bruno", "Bravo", assigned_group_id="alpha"),
        Member("C", "Carla", "Castro", assigned_group_id="alpha"),
        Member("D", "Diego", "Duran", assigned_group_id="beta"),
        Member("E", "Elena", "Espinoza", assigned_area_ids={"music"}),
        Member("F", "Felipe", "Flores", assigned_area_ids={"music"}),
        Member("G", "Gloria", "Gomez"),
    ]
    groups = [
        SmallGroup("alpha", "Alpha", "A", ["B", "C"]),
        SmallGroup("beta", "Beta", vacant_office("GUIDE", "beta"), ["D"]),
    ]
    areas = [MinistryArea("music", "Alabanza", "E", ["F"])]
    repo.save_many({MEMBERS: members, SMALL_GROUPS: groups, MINISTRY_AREAS: areas})
    return repo
