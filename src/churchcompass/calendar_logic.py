import logging
import re
from datetime import date, datetime
from typing import Iterable, List, Optional

from dateutil.rrule import rrule, WEEKLY, MONTHLY, MO, TU, WE, TH, FR, SA, SU

from churchcompass.errors import InvalidSeries
from churchcompass.models import (
    Frequency, MeetingDraft, MeetingSeries, MonthlyRuleType, SeriesType, WeekOrdinal,
)

logger = logging.getLogger(__name__)

WEEKDAYS = (MO, TU, WE, TH, FR, SA, SU)   # 0=Montag … 6=Sonntag

ORDINALS = {
    WeekOrdinal.FIRST: 1,
    WeekOrdinal.SECOND: 2,
    WeekOrdinal.THIRD: 3,
    WeekOrdinal.FOURTH: 4,
    WeekOrdinal.FIFTH: 5,
    WeekOrdinal.LAST: -1,
}

TIME_RE = re.compile(r"^([01][0-9]|2[0-3]):[0-5][0-9]$")


def validate_series(series: MeetingSeries):
    """Wirft InvalidSeries, wenn Regel oder Serientyp unvollständig sind."""
    if not TIME_RE.match(series.default_time or ""):
        raise InvalidSeries(f"Invalid default time {series.default_time!r}, expected HH:MM.")
    if series.series_type == SeriesType.GENERAL:
        if not series.target_attendee_groups:
            raise InvalidSeries("General series needs at least one target attendee group.")
    elif not series.owner_group_id:
        raise InvalidSeries(f"{series.series_type.value} series needs an owner group.")

    if series.frequency == Frequency.ONE_TIME:
        if series.one_time_date is None:
            raise InvalidSeries("OneTime series needs a date.")
    elif series.frequency == Frequency.WEEKLY:
        if not series.weekly_days:
            raise InvalidSeries("Weekly series needs at least one weekday.")
        if any(d not in range(7) for d in series.weekly_days):
            raise InvalidSeries(f"Invalid weekdays {series.weekly_days}.")
    elif series.frequency == Frequency.MONTHLY:
        if series.monthly_rule_type == MonthlyRuleType.DAY_OF_MONTH:
            if series.monthly_day_of_month not in range(1, 32):
                raise InvalidSeries(f"Invalid day of month {series.monthly_day_of_month}.")
        elif series.monthly_rule_type == MonthlyRuleType.DAY_OF_WEEK_OF_MONTH:
            if series.monthly_week_ordinal is None:
                raise InvalidSeries("Monthly day-of-week rule needs an ordinal.")
            if series.monthly_day_of_week not in range(7):
                raise InvalidSeries(f"Invalid weekday {series.monthly_day_of_week}.")
        else:
            raise InvalidSeries("Monthly series needs a rule type.")


def _as_dt(d: date) -> datetime:
    return datetime(d.year, d.month, d.day)


def occurrence_dates(series: MeetingSeries, start: date, end: date) -> List[date]:
    """
    Alle Termine der Regel im Fenster [start, end].
    OneTime liefert sein Datum unabhängig vom Fenster.
    Monatstage, die es im Monat nicht gibt (31. April, fünfter Dienstag),
    werden übersprungen, nicht verschoben.
    """
    if series.frequency == Frequency.ONE_TIME:
        return [series.one_time_date]
    if end < start:
        return []

    if series.frequency == Frequency.WEEKLY:
        rule = rrule(
            WEEKLY, dtstart=_as_dt(start), until=_as_dt(end),
            byweekday=[WEEKDAYS[d] for d in sorted(set(series.weekly_days))],
        )
    elif series.monthly_rule_type == MonthlyRuleType.DAY_OF_MONTH:
        rule = rrule(
            MONTHLY, dtstart=_as_dt(start), until=_as_dt(end),
            bymonthday=series.monthly_day_of_month,
        )
    else:
        n = ORDINALS[series.monthly_week_ordinal]
        rule = rrule(
            MONTHLY, dtstart=_as_dt(start), until=_as_dt(end),
            byweekday=WEEKDAYS[series.monthly_day_of_week](n),
        )
    return [dt.date() for dt in rule]


def generate(
    series: MeetingSeries,
    horizon_end: date,
    existing_instance_dates: Iterable[date],
    today: Optional[date] = None,
    attendee_uids: Optional[List[str]] = None,
) -> List[MeetingDraft]:
    """
    Erzeuge Entwürfe für alle Termine in [today, horizon_end], die für diese
    Serie noch nicht existieren. Zweiter Lauf mit den Daten des ersten → [].
    Zeit, Ort und Beschreibung werden zum Erzeugungszeitpunkt übernommen;
    ``attendee_uids`` ist der Snapshot für general-Serien (sonst None).
    """
    today = today or date.today()
    existing = set(existing_instance_dates)
    snapshot = attendee_uids if series.series_type == SeriesType.GENERAL else None

    drafts = []
    for d in occurrence_dates(series, today, horizon_end):
        if d in existing:
            continue
        existing.add(d)
        drafts.append(MeetingDraft(
            series_id=series.id,
            name=series.name,
            date=d,
            time=series.default_time,
            location=series.default_location,
            description=series.description,
            attendee_uids=list(snapshot) if snapshot is not None else None,
        ))
    logger.debug(f"Series {series.id}: {len(drafts)} new drafts up to {horizon_end}")
    return drafts
