"""
Lebenszyklus von Serien und Meetings.

Serien werden angelegt, bearbeitet und gelöscht; jede Bearbeitung erzeugt die
Termine ab heute neu. Vergangene Meetings und Meetings mit Anwesenheit bleiben
dabei unangetastet.
"""
import logging
import math
from dataclasses import dataclass, field, fields, replace
from datetime import date, timedelta
from typing import Callable, List, Optional, Tuple

from churchcompass.attendees import resolve_attendees, snapshot_attendees
from churchcompass.calendar_logic import TIME_RE, generate, occurrence_dates, validate_series
from churchcompass.data import Repository
from churchcompass.errors import ImmutableHistory, InvalidSeries, NotFound
from churchcompass.locking import write_lock
from churchcompass.models import (
    ATTENDANCE_RECORDS, MEETING_SERIES, MEETINGS,
    Frequency, Meeting, MeetingDraft, MeetingSeries, Member, MonthlyRuleType, SeriesType, new_id,
)

logger = logging.getLogger(__name__)

_FIXED_FIELDS = {'id', 'series_type', 'owner_group_id'}
_MEETING_FIELDS = {'name', 'date', 'time', 'location', 'description'}


@dataclass
class SeriesUpdate:
    series: MeetingSeries
    created: List[Meeting] = field(default_factory=list)
    removed: List[Meeting] = field(default_factory=list)
    moved: List[Meeting] = field(default_factory=list)
    retained: List[Meeting] = field(default_factory=list)   # passen nicht mehr, haben aber Anwesenheit


@dataclass
class Page:
    items: List[Meeting]
    total_count: int
    total_pages: int


def normalize_series(series: MeetingSeries) -> MeetingSeries:
    """Felder, die zur gewählten Frequenz nicht passen, leeren."""
    s = replace(series, weekly_days=list(series.weekly_days),
                target_attendee_groups=set(series.target_attendee_groups))
    if s.frequency != Frequency.ONE_TIME:
        s.one_time_date = None
    if s.frequency != Frequency.WEEKLY:
        s.weekly_days = []
    if s.frequency != Frequency.MONTHLY:
        s.monthly_rule_type = None
    if s.monthly_rule_type != MonthlyRuleType.DAY_OF_MONTH:
        s.monthly_day_of_month = None
    if s.monthly_rule_type != MonthlyRuleType.DAY_OF_WEEK_OF_MONTH:
        s.monthly_week_ordinal = None
        s.monthly_day_of_week = None
    return s


class MeetingService:
    def __init__(self, repo: Repository, horizon_days: int = 90,
                 clock: Callable[[], date] = date.today):
        self.repo = repo
        self.horizon_days = horizon_days
        self.clock = clock

    # --- Hilfen ------------------------------------------------------------

    def _horizon(self, horizon_end: Optional[date]) -> date:
        return horizon_end or self.clock() + timedelta(days=self.horizon_days)

    def _find_series(self, all_series: List[MeetingSeries], series_id: str) -> MeetingSeries:
        for s in all_series:
            if s.id == series_id:
                return s
        raise NotFound("MeetingSeries", series_id)

    def _find_meeting(self, meetings: List[Meeting], meeting_id: str) -> Meeting:
        for m in meetings:
            if m.id == meeting_id:
                return m
        raise NotFound("Meeting", meeting_id)

    def _check_owner(self, series: MeetingSeries):
        if series.series_type == SeriesType.GDI:
            ids = {g.id for g in self.repo.small_groups()}
            label = "SmallGroup"
        elif series.series_type == SeriesType.MINISTRY_AREA:
            ids = {a.id for a in self.repo.ministry_areas()}
            label = "MinistryArea"
        else:
            return
        if series.owner_group_id not in ids:
            raise NotFound(label, series.owner_group_id)

    def _snapshot(self, series: MeetingSeries) -> Optional[List[str]]:
        if series.series_type != SeriesType.GENERAL:
            return None
        return snapshot_attendees(
            series, self.repo.members(), self.repo.small_groups(), self.repo.ministry_areas()
        )

    def _history(self) -> set:
        return {r.meeting_id for r in self.repo.attendance()}

    def _drafts(self, series: MeetingSeries, horizon: date, taken: set, today: date) -> List[MeetingDraft]:
        # OneTime hat genau ein Meeting, auch wenn es verschoben wurde
        if series.frequency == Frequency.ONE_TIME and taken:
            return []
        return generate(series, horizon, taken, today, self._snapshot(series))

    # --- Serien ------------------------------------------------------------

    def get_series(self, series_id: str) -> MeetingSeries:
        return self._find_series(self.repo.series(), series_id)

    def series_for_group(self, series_type: SeriesType, group_id: str) -> List[MeetingSeries]:
        return [s for s in self.repo.series()
                if s.series_type == series_type and s.owner_group_id == group_id]

    def create_series(self, series: MeetingSeries,
                      horizon_end: date = None) -> Tuple[MeetingSeries, List[Meeting]]:
        series = normalize_series(series)
        if not series.id:
            series.id = new_id()
        validate_series(series)
        with write_lock:
            self._check_owner(series)
            all_series = self.repo.series()
            if any(s.id == series.id for s in all_series):
                raise InvalidSeries(f"Series {series.id} already exists.")
            drafts = generate(series, self._horizon(horizon_end), (), self.clock(), self._snapshot(series))
            created = [d.materialize() for d in drafts]
            self.repo.save_many({
                MEETING_SERIES: all_series + [series],
                MEETINGS: self.repo.meetings() + created,
            })
        logger.info(f"Series {series.id} ({series.name}) created with {len(created)} meetings")
        return series, created

    def update_series(self, series_id: str, horizon_end: date = None, **changes) -> SeriesUpdate:
        """
        Serie bearbeiten und zukünftige Termine neu erzeugen. Nicht mehr
        passende Zukunftstermine ohne Anwesenheit werden gelöscht; bei OneTime
        wird der bestehende Termin auf das neue Datum verschoben.
        """
        known = {f.name for f in fields(MeetingSeries)}
        bad = set(changes) - known
        if bad:
            raise InvalidSeries(f"Unknown series fields: {sorted(bad)}")
        fixed = set(changes) & _FIXED_FIELDS
        if fixed:
            raise InvalidSeries(f"Series fields cannot be changed: {sorted(fixed)}")

        with write_lock:
            all_series = self.repo.series()
            current = self._find_series(all_series, series_id)
            updated = normalize_series(replace(current, **changes))
            validate_series(updated)

            result, meetings = self._regenerate(updated, self._horizon(horizon_end))
            all_series = [updated if s.id == series_id else s for s in all_series]
            self.repo.save_many({
                MEETING_SERIES: all_series,
                MEETINGS: meetings,
            })
        logger.info(
            f"Series {series_id} updated: {len(result.created)} created, {len(result.removed)} removed, "
            f"{len(result.moved)} moved, {len(result.retained)} kept with attendance"
        )
        return result

    def _regenerate(self, series: MeetingSeries, horizon: date) -> Tuple[SeriesUpdate, List[Meeting]]:
        today = self.clock()
        meetings = self.repo.meetings()
        history = self._history()
        # Einzeltermine gehören nicht zur Regel und bleiben unberührt
        own = sorted((m for m in meetings if m.series_id == series.id and not m.occasional),
                     key=lambda m: m.date)

        if series.frequency == Frequency.ONE_TIME:
            desired = {series.one_time_date}
        else:
            window_end = max([horizon] + [m.date for m in own])
            desired = set(occurrence_dates(series, today, window_end))

        result = SeriesUpdate(series)
        for m in own:
            if m.date < today or m.date in desired:
                continue
            if m.id in history:
                result.retained.append(m)
            else:
                result.removed.append(m)

        removed_ids = {m.id for m in result.removed}
        # belegte Daten der Serie, Einzeltermine eingeschlossen
        taken = {m.date for m in meetings if m.series_id == series.id and m.id not in removed_ids}
        if (series.frequency == Frequency.ONE_TIME and result.removed
                and series.one_time_date not in taken):
            m = result.removed.pop(0)
            removed_ids.discard(m.id)
            m.date = series.one_time_date
            result.moved.append(m)
            taken.add(m.date)

        drafts = self._drafts(series, horizon, taken, today)
        result.created = [d.materialize() for d in drafts]
        return result, [m for m in meetings if m.id not in removed_ids] + result.created

    def generate_all(self, horizon_end: date = None) -> List[Meeting]:
        """Generierung für alle Serien erneut laufen lassen (idempotent)."""
        horizon = self._horizon(horizon_end)
        with write_lock:
            meetings = self.repo.meetings()
            created = []
            for series in self.repo.series():
                taken = {m.date for m in meetings if m.series_id == series.id}
                drafts = self._drafts(series, horizon, taken, self.clock())
                created += [d.materialize() for d in drafts]
            if created:
                self.repo.save(MEETINGS, meetings + created)
        logger.info(f"Generated {len(created)} meetings up to {horizon}")
        return created

    def delete_series(self, series_id: str) -> int:
        """Serie samt aller Meetings und deren Anwesenheit löschen."""
        with write_lock:
            all_series = self.repo.series()
            self._find_series(all_series, series_id)
            meetings = self.repo.meetings()
            gone = {m.id for m in meetings if m.series_id == series_id}
            records = self.repo.attendance()
            self.repo.save_many({
                MEETING_SERIES: [s for s in all_series if s.id != series_id],
                MEETINGS: [m for m in meetings if m.id not in gone],
                ATTENDANCE_RECORDS: [r for r in records if r.meeting_id not in gone],
            })
        logger.info(f"Series {series_id} deleted with {len(gone)} meetings")
        return len(gone)

    # --- Meetings ----------------------------------------------------------

    def get_meeting(self, meeting_id: str) -> Meeting:
        return self._find_meeting(self.repo.meetings(), meeting_id)

    def meetings_for_series(self, series_id: str) -> List[Meeting]:
        return sorted((m for m in self.repo.meetings() if m.series_id == series_id),
                      key=lambda m: m.date)

    def add_occasional_meeting(self, series_id: str, on: date, time: str = None,
                               location: str = None, name: str = None,
                               description: str = None) -> Meeting:
        """Einzeltermin außerhalb der Regel; übernimmt fehlende Angaben von der Serie."""
        with write_lock:
            series = self.get_series(series_id)
            draft = MeetingDraft(
                series_id=series.id,
                name=name or series.name,
                date=on,
                time=time or series.default_time,
                location=location or series.default_location,
                description=series.description if description is None else description,
                attendee_uids=self._snapshot(series),
            )
            if not TIME_RE.match(draft.time):
                raise InvalidSeries(f"Invalid time {draft.time!r}, expected HH:MM.")
            meeting = draft.materialize()
            meeting.occasional = True
            self.repo.save(MEETINGS, self.repo.meetings() + [meeting])
        logger.info(f"Occasional meeting {meeting.id} added to series {series_id} on {on}")
        return meeting

    def update_meeting(self, meeting_id: str, **changes) -> Meeting:
        """Name, Datum, Zeit, Ort oder Beschreibung ändern. Datum bleibt fest, sobald Anwesenheit existiert."""
        bad = set(changes) - _MEETING_FIELDS
        if bad:
            raise InvalidSeries(f"Meeting fields cannot be changed: {sorted(bad)}")
        if 'time' in changes and not TIME_RE.match(changes['time'] or ""):
            raise InvalidSeries(f"Invalid time {changes['time']!r}, expected HH:MM.")
        if 'date' in changes and not isinstance(changes['date'], date):
            raise InvalidSeries(f"Invalid date {changes['date']!r}, expected a date.")
        with write_lock:
            meetings = self.repo.meetings()
            meeting = self._find_meeting(meetings, meeting_id)
            if 'date' in changes and changes['date'] != meeting.date and meeting_id in self._history():
                raise ImmutableHistory(meeting_id, f"Meeting {meeting_id} has attendance; its date cannot change.")
            if 'date' in changes and changes['date'] != meeting.date:
                meeting.occasional = True
            for key, value in changes.items():
                setattr(meeting, key, value)
            self.repo.save(MEETINGS, meetings)
        return meeting

    def update_minute(self, meeting_id: str, minute: Optional[str]) -> Meeting:
        with write_lock:
            meetings = self.repo.meetings()
            meeting = self._find_meeting(meetings, meeting_id)
            meeting.minute = minute
            self.repo.save(MEETINGS, meetings)
        return meeting

    def delete_meeting(self, meeting_id: str, force: bool = False):
        """Ein Meeting löschen. Mit Anwesenheit nur mit ``force=True`` (löscht die Einträge mit)."""
        with write_lock:
            meetings = self.repo.meetings()
            self._find_meeting(meetings, meeting_id)
            records = self.repo.attendance()
            has_history = any(r.meeting_id == meeting_id for r in records)
            if has_history and not force:
                raise ImmutableHistory(meeting_id)
            batch = {MEETINGS: [m for m in meetings if m.id != meeting_id]}
            if has_history:
                batch[ATTENDANCE_RECORDS] = [r for r in records if r.meeting_id != meeting_id]
            self.repo.save_many(batch)
        logger.info(f"Meeting {meeting_id} deleted")

    def group_meetings(self, series_type: SeriesType, group_id: str, series_id: str = None,
                       start: date = None, end: date = None,
                       page: int = 1, page_size: int = 10) -> Page:
        """Meetings einer Gruppe, neueste zuerst, optional nach Zeitraum gefiltert."""
        series_ids = {s.id for s in self.series_for_group(series_type, group_id)
                      if series_id is None or s.id == series_id}
        items = [m for m in self.repo.meetings() if m.series_id in series_ids]
        if start:
            items = [m for m in items if m.date >= start]
        if end:
            items = [m for m in items if m.date <= end]
        items.sort(key=lambda m: m.date, reverse=True)

        total = len(items)
        page = max(page, 1)
        offset = (page - 1) * page_size
        return Page(items[offset:offset + page_size], total, math.ceil(total / page_size) if page_size else 0)

    def expected_attendees(self, meeting_id: str) -> List[Member]:
        meeting = self.get_meeting(meeting_id)
        return resolve_attendees(
            meeting, self.repo.members(), self.repo.series(),
            self.repo.small_groups(), self.repo.ministry_areas(),
        )
