# src/churchcompass/models.py
import uuid
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Set


class MemberStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    NEW = "New"


class Role(str, Enum):
    LEADER = "Leader"
    WORKER = "Worker"
    GENERAL_ATTENDEE = "GeneralAttendee"


class SeriesType(str, Enum):
    GENERAL = "general"
    GDI = "gdi"
    MINISTRY_AREA = "ministryArea"


class TargetGroup(str, Enum):
    ALL_MEMBERS = "allMembers"
    WORKERS = "workers"
    LEADERS = "leaders"


class Frequency(str, Enum):
    ONE_TIME = "OneTime"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"


class MonthlyRuleType(str, Enum):
    DAY_OF_MONTH = "DayOfMonth"
    DAY_OF_WEEK_OF_MONTH = "DayOfWeekOfMonth"


class WeekOrdinal(str, Enum):
    FIRST = "First"
    SECOND = "Second"
    THIRD = "Third"
    FOURTH = "Fourth"
    FIFTH = "Fifth"
    LAST = "Last"


# Collection names in the record store
MEMBERS = "members"
SMALL_GROUPS = "smallGroups"
MINISTRY_AREAS = "ministryAreas"
MEETING_SERIES = "meetingSeries"
MEETINGS = "meetings"
ATTENDANCE_RECORDS = "attendanceRecords"

_VACANT_PREFIX = "NEEDS_"


def new_id() -> str:
    return uuid.uuid4().hex


def vacant_office(prefix: str, group_id: str) -> str:
    """Platzhalter-Id für ein unbesetztes Amt, z.B. ``NEEDS_GUIDE_<gdi>``."""
    return f"{_VACANT_PREFIX}{prefix}_{group_id}"


def is_vacant(office_id: Optional[str]) -> bool:
    return not office_id or office_id.startswith(_VACANT_PREFIX)


@dataclass
class Member:
    """Eine Person der Gemeinde. ``roles`` ist ein Cache, keine Quelle."""
    id: str
    first_name: str
    last_name: str = ""
    status: MemberStatus = MemberStatus.ACTIVE
    assigned_group_id: Optional[str] = None
    assigned_area_ids: Set[str] = field(default_factory=set)
    roles: Set[Role] = field(default_factory=set)
    email: str = ""
    phone: str = ""

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class SmallGroup:
    """GDI: kleine Gruppe mit genau einem Guide."""
    id: str
    name: str
    guide_id: str
    member_ids: List[str] = field(default_factory=list)


@dataclass
class MinistryArea:
    """Dienstbereich mit genau einem Leiter."""
    id: str
    name: str
    leader_id: str
    member_ids: List[str] = field(default_factory=list)
    description: str = ""


@dataclass
class MeetingSeries:
    """Wiederkehrende Vorlage, aus der konkrete Meetings erzeugt werden."""
    id: str
    name: str
    series_type: SeriesType
    frequency: Frequency
    default_time: str
    default_location: str
    description: str = ""
    owner_group_id: Optional[str] = None
    target_attendee_groups: Set[TargetGroup] = field(default_factory=set)
    one_time_date: Optional[date] = None
    weekly_days: List[int] = field(default_factory=list)      # 0=Montag … 6=Sonntag
    monthly_rule_type: Optional[MonthlyRuleType] = None
    monthly_day_of_month: Optional[int] = None
    monthly_week_ordinal: Optional[WeekOrdinal] = None
    monthly_day_of_week: Optional[int] = None


@dataclass
class Meeting:
    """Konkretes, datiertes Treffen einer Serie."""
    id: str
    series_id: str
    name: str
    date: date
    time: str
    location: str
    description: str = ""
    minute: Optional[str] = None
    attendee_uids: Optional[List[str]] = None   # nur bei general-Serien
    occasional: bool = False                    # außerhalb der Regel angelegt oder verschoben


@dataclass
class MeetingDraft:
    """Noch nicht gespeichertes Meeting, wie es der Generator liefert."""
    series_id: str
    name: str
    date: date
    time: str
    location: str
    description: str = ""
    attendee_uids: Optional[List[str]] = None

    def materialize(self, meeting_id: Optional[str] = None) -> Meeting:
        return Meeting(
            id=meeting_id or new_id(),
            series_id=self.series_id,
            name=self.name,
            date=self.date,
            time=self.time,
            location=self.location,
            description=self.description,
            attendee_uids=list(self.attendee_uids) if self.attendee_uids is not None else None,
        )


@dataclass
class AttendanceRecord:
    id: str
    meeting_id: str
    member_id: str
    attended: bool
    notes: str = ""


# --- Record (de)serialization -------------------------------------------------

def _iso(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


def _from_iso(s: Optional[str]) -> Optional[date]:
    return date.fromisoformat(s) if s else None


def member_to_record(m: Member) -> Dict:
    return {
        "id": m.id,
        "firstName": m.first_name,
        "lastName": m.last_name,
        "status": m.status.value,
        "assignedGDIId": m.assigned_group_id,
        "assignedAreaIds": sorted(m.assigned_area_ids),
        "roles": sorted(r.value for r in m.roles),
        "email": m.email,
        "phone": m.phone,
    }


def member_from_record(rec: Dict) -> Member:
    return Member(
        id=rec["id"],
        first_name=rec.get("firstName", ""),
        last_name=rec.get("lastName", ""),
        status=MemberStatus(rec.get("status", MemberStatus.ACTIVE.value)),
        assigned_group_id=rec.get("assignedGDIId"),
        assigned_area_ids=set(rec.get("assignedAreaIds") or []),
        roles={Role(r) for r in rec.get("roles") or []},
        email=rec.get("email", ""),
        phone=rec.get("phone", ""),
    )


def group_to_record(g: SmallGroup) -> Dict:
    return {"id": g.id, "name": g.name, "guideId": g.guide_id, "memberIds": list(g.member_ids)}


def group_from_record(rec: Dict) -> SmallGroup:
    return SmallGroup(rec["id"], rec.get("name", ""), rec["guideId"], list(rec.get("memberIds") or []))


def area_to_record(a: MinistryArea) -> Dict:
    return {
        "id": a.id,
        "name": a.name,
        "description": a.description,
        "leaderId": a.leader_id,
        "memberIds": list(a.member_ids),
    }


def area_from_record(rec: Dict) -> MinistryArea:
    return MinistryArea(
        rec["id"], rec.get("name", ""), rec["leaderId"],
        list(rec.get("memberIds") or []), rec.get("description", ""),
    )


def series_to_record(s: MeetingSeries) -> Dict:
    return {
        "id": s.id,
        "name": s.name,
        "description": s.description,
        "seriesType": s.series_type.value,
        "ownerGroupId": s.owner_group_id,
        "targetAttendeeGroups": sorted(t.value for t in s.target_attendee_groups),
        "frequency": s.frequency.value,
        "defaultTime": s.default_time,
        "defaultLocation": s.default_location,
        "oneTimeDate": _iso(s.one_time_date),
        "weeklyDays": list(s.weekly_days),
        "monthlyRuleType": s.monthly_rule_type.value if s.monthly_rule_type else None,
        "monthlyDayOfMonth": s.monthly_day_of_month,
        "monthlyWeekOrdinal": s.monthly_week_ordinal.value if s.monthly_week_ordinal else None,
        "monthlyDayOfWeek": s.monthly_day_of_week,
    }


def series_from_record(rec: Dict) -> MeetingSeries:
    mrt = rec.get("monthlyRuleType")
    ordinal = rec.get("monthlyWeekOrdinal")
    return MeetingSeries(
        id=rec["id"],
        name=rec.get("name", ""),
        description=rec.get("description", ""),
        series_type=SeriesType(rec["seriesType"]),
        owner_group_id=rec.get("ownerGroupId"),
        target_attendee_groups={TargetGroup(t) for t in rec.get("targetAttendeeGroups") or []},
        frequency=Frequency(rec["frequency"]),
        default_time=rec.get("defaultTime", ""),
        default_location=rec.get("defaultLocation", ""),
        one_time_date=_from_iso(rec.get("oneTimeDate")),
        weekly_days=list(rec.get("weeklyDays") or []),
        monthly_rule_type=MonthlyRuleType(mrt) if mrt else None,
        monthly_day_of_month=rec.get("monthlyDayOfMonth"),
        monthly_week_ordinal=WeekOrdinal(ordinal) if ordinal else None,
        monthly_day_of_week=rec.get("monthlyDayOfWeek"),
    )


def meeting_to_record(m: Meeting) -> Dict:
    return {
        "id": m.id,
        "seriesId": m.series_id,
        "name": m.name,
        "date": m.date.isoformat(),
        "time": m.time,
        "location": m.location,
        "description": m.description,
        "minute": m.minute,
        "attendeeUids": list(m.attendee_uids) if m.attendee_uids is not None else None,
        "occasional": m.occasional,
    }


def meeting_from_record(rec: Dict) -> Meeting:
    uids = rec.get("attendeeUids")
    return Meeting(
        id=rec["id"],
        series_id=rec["seriesId"],
        name=rec.get("name", ""),
        date=date.fromisoformat(rec["date"]),
        time=rec.get("time", ""),
        location=rec.get("location", ""),
        description=rec.get("description", ""),
        minute=rec.get("minute"),
        attendee_uids=list(uids) if uids is not None else None,
        occasional=bool(rec.get("occasional", False)),
    )


def attendance_to_record(r: AttendanceRecord) -> Dict:
    return {
        "id": r.id,
        "meetingId": r.meeting_id,
        "memberId": r.member_id,
        "attended": r.attended,
        "notes": r.notes,
    }


def attendance_from_record(rec: Dict) -> AttendanceRecord:
    return AttendanceRecord(
        rec["id"], rec["meetingId"], rec["memberId"], bool(rec["attended"]), rec.get("notes") or ""
    )


CODECS = {
    MEMBERS: (member_to_record, member_from_record),
    SMALL_GROUPS: (group_to_record, group_from_record),
    MINISTRY_AREAS: (area_to_record, area_from_record),
    MEETING_SERIES: (series_to_record, series_from_record),
    MEETINGS: (meeting_to_record, meeting_from_record),
    ATTENDANCE_RECORDS: (attendance_to_record, attendance_from_record),
}
