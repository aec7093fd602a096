"""
Pattern detection rules for household coordination.

Each detector is a pure function of (events, context, now) and returns
DetectedInsight values. Detectors that compare the two parents return
nothing for a single-parent household. `now` is injectable so rules that
look at "today" and "tomorrow" are deterministic under test.
"""

from collections.abc import Callable, Iterable
from datetime import date, datetime, time, timedelta

from familyos.models.domain.calendar_domain import HouseholdEvent
from familyos.models.domain.insight_domain import (
    Child,
    DetectedInsight,
    HouseholdContext,
    InsightType,
    Severity,
)

Detector = Callable[[list[HouseholdEvent], HouseholdContext, datetime], list[DetectedInsight]]

CHILD_KEYWORDS = (
    "school",
    "pickup",
    "dropoff",
    "practice",
    "lesson",
    "recital",
    "game",
    "match",
    "tournament",
    "birthday",
    "playdate",
    "doctor",
    "dentist",
    "pediatric",
    "dance",
    "soccer",
    "basketball",
    "swim",
    "gymnastics",
    "piano",
    "violin",
    "tutoring",
    "daycare",
    "camp",
)

# First match wins
PREP_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("soccer", "game", "practice"), "Gear packed?"),
    (("swim",), "Swimsuit and towel ready?"),
    (("dance", "recital"), "Costume and shoes ready?"),
    (("birthday", "party"), "Gift wrapped?"),
    (("doctor", "dentist"), "Insurance card ready?"),
    (("camp", "overnight"), "Bag packed?"),
)

PICKUP_WINDOW_START = time(15, 0)
PICKUP_WINDOW_END = time(16, 30)
PICKUP_WINDOW_LABEL = "3-4:30pm"
COVERAGE_LOOKAHEAD_DAYS = 7

IMBALANCE_RATIO = 2
IMBALANCE_MIN_EVENTS = 5


# ============================================
# Detectors
# ============================================


def detect_calendar_gaps(
    events: list[HouseholdEvent], context: HouseholdContext, now: datetime
) -> list[DetectedInsight]:
    """Child-related events that only one parent has on their calendar."""
    if not context.has_two_parents():
        return []

    parent_a, parent_b = context.parent_a, context.parent_b
    a_events = [e for e in events if e.owner_id == parent_a.id]
    b_events = [e for e in events if e.owner_id == parent_b.id]

    insights: list[DetectedInsight] = []
    for owner, missing, own, other in (
        (parent_a, parent_b, a_events, b_events),
        (parent_b, parent_a, b_events, a_events),
    ):
        for event in own:
            if any(_is_similar(event, candidate, context) for candidate in other):
                continue
            if not is_child_related(event.summary, context.children):
                continue
            insights.append(
                DetectedInsight(
                    type=InsightType.CALENDAR_GAP,
                    severity=Severity.MEDIUM,
                    title=f"{event.summary} missing from {missing.name}'s calendar",
                    description=f"This event is only on {owner.name}'s calendar",
                    template_data={
                        "eventName": event.summary,
                        "partnerName": owner.name,
                        "day": format_day(event.start, now, context),
                    },
                    event_ids=[event.id],
                    target_user_id=missing.user_id,
                )
            )
    return insights


def detect_conflicts(
    events: list[HouseholdEvent], context: HouseholdContext, now: datetime
) -> list[DetectedInsight]:
    """
    Overlapping events where one belongs to each parent. Shared events are excluded.

    A pair carrying the same event id is one invite sitting on both calendars,
    so it is skipped even though the two parents overlap.
    """
    if not context.has_two_parents():
        return []

    a_events = [e for e in events if e.owner_id == context.parent_a.id]
    b_events = [e for e in events if e.owner_id == context.parent_b.id]

    insights: list[DetectedInsight] = []
    for event_a in a_events:
        for event_b in b_events:
            # The same invite on both calendars is not a conflict
            if event_a.id == event_b.id or not events_overlap(event_a, event_b):
                continue
            insights.append(
                DetectedInsight(
                    type=InsightType.CONFLICT,
                    severity=Severity.HIGH,
                    title=f"Schedule overlap: {event_a.summary} vs {event_b.summary}",
                    description="Both parents have events at the same time",
                    template_data={
                        "time": format_time(event_a.start, context),
                        "day": format_day(event_a.start, now, context),
                        "partnerName": context.parent_b.name,
                    },
                    event_ids=[event_a.id, event_b.id],
                    target_user_id=context.parent_a.user_id,
                )
            )
    return insights


def detect_coverage_gaps(
    events: list[HouseholdEvent], context: HouseholdContext, now: datetime
) -> list[DetectedInsight]:
    """Weekdays in the coming week where both parents are busy at school pickup."""
    if not context.has_two_parents() or not context.children:
        return []

    tz = context.tz
    insights: list[DetectedInsight] = []
    for day in weekdays_ahead(now.astimezone(tz).date(), COVERAGE_LOOKAHEAD_DAYS):
        window_start = datetime.combine(day, PICKUP_WINDOW_START, tzinfo=tz)
        window_end = datetime.combine(day, PICKUP_WINDOW_END, tzinfo=tz)

        a_busy = [
            e
            for e in events
            if e.owner_id == context.parent_a.id and overlaps_range(e, window_start, window_end)
        ]
        b_busy = [
            e
            for e in events
            if e.owner_id == context.parent_b.id and overlaps_range(e, window_start, window_end)
        ]
        if not (a_busy and b_busy):
            continue

        day_label = format_day(window_start, now, context)
        insights.append(
            DetectedInsight(
                type=InsightType.COVERAGE_GAP,
                severity=Severity.HIGH,
                title=f"No coverage for pickup {day_label}",
                description="Both parents have events during typical pickup time",
                template_data={
                    "time": PICKUP_WINDOW_LABEL,
                    "day": day_label,
                    "childName": context.children[0].name,
                },
                event_ids=[e.id for e in a_busy + b_busy],
                target_user_id=context.parent_a.user_id,
            )
        )
    return insights


def detect_load_imbalance(
    events: list[HouseholdEvent], context: HouseholdContext, now: datetime
) -> list[DetectedInsight]:
    """One parent carrying more than twice the other's events (and more than five)."""
    if not context.has_two_parents():
        return []

    counts = {
        context.parent_a.id: sum(1 for e in events if e.owner_id == context.parent_a.id),
        context.parent_b.id: sum(1 for e in events if e.owner_id == context.parent_b.id),
    }
    for busy, other in (
        (context.parent_a, context.parent_b),
        (context.parent_b, context.parent_a),
    ):
        busy_count, other_count = counts[busy.id], counts[other.id]
        if busy_count > other_count * IMBALANCE_RATIO and busy_count > IMBALANCE_MIN_EVENTS:
            return [
                DetectedInsight(
                    type=InsightType.LOAD_IMBALANCE,
                    severity=Severity.LOW,
                    title=f"{busy.name} has {busy_count} events, {other.name} has {other_count}",
                    description="Significant imbalance in scheduled events",
                    template_data={
                        "count": busy_count,
                        "partnerName": other.name,
                        "partnerCount": other_count,
                    },
                    event_ids=[],
                    target_user_id=busy.user_id,
                )
            ]
    return []


def detect_prep_reminders(
    events: list[HouseholdEvent], context: HouseholdContext, now: datetime
) -> list[DetectedInsight]:
    """Events starting tomorrow whose title implies something to get ready."""
    tz = context.tz
    tomorrow = now.astimezone(tz).date() + timedelta(days=1)
    start = datetime.combine(tomorrow, time.min, tzinfo=tz)
    end = start + timedelta(days=1)

    insights: list[DetectedInsight] = []
    for event in events:
        if not (start <= event.start < end):
            continue
        prep = prep_for(event.summary)
        if prep is None:
            continue

        if context.parent_b is not None and event.owner_id == context.parent_b.id:
            target = context.parent_b.user_id
        else:
            target = context.parent_a.user_id

        insights.append(
            DetectedInsight(
                type=InsightType.PREP_REMINDER,
                severity=Severity.MEDIUM,
                title=f"Prep for {event.summary} tomorrow",
                description=prep,
                template_data={"eventName": event.summary, "day": "tomorrow", "action": prep},
                event_ids=[event.id],
                target_user_id=target,
            )
        )
    return insights


DETECTORS: tuple[Detector, ...] = (
    detect_calendar_gaps,
    detect_conflicts,
    detect_coverage_gaps,
    detect_load_imbalance,
    detect_prep_reminders,
)


def detect_all(
    events: list[HouseholdEvent],
    context: HouseholdContext,
    now: datetime,
    detectors: Iterable[Detector] = DETECTORS,
) -> list[DetectedInsight]:
    """
    Union of every detector's output, with duplicates within this run removed.

    Conflicts are keyed by the unordered pair of event ids so A/B and B/A
    count once; everything else is keyed by (type, title).
    """
    seen: set[tuple] = set()
    insights: list[DetectedInsight] = []
    for detector in detectors:
        for insight in detector(events, context, now):
            key = run_key(insight)
            if key in seen:
                continue
            seen.add(key)
            insights.append(insight)
    return insights


def run_key(insight: DetectedInsight) -> tuple:
    if insight.type == InsightType.CONFLICT:
        return (insight.type, tuple(sorted(insight.event_ids)))
    return (insight.type, insight.title)


# ============================================
# Helpers
# ============================================


def is_child_related(summary: str, children: Iterable[Child]) -> bool:
    lower = summary.lower()
    if any(child.name and child.name.lower() in lower for child in children):
        return True
    return any(keyword in lower for keyword in CHILD_KEYWORDS)


def prep_for(summary: str) -> str | None:
    lower = summary.lower()
    for keywords, prep in PREP_RULES:
        if any(keyword in lower for keyword in keywords):
            return prep
    return None


def events_overlap(a: HouseholdEvent, b: HouseholdEvent) -> bool:
    return a.start < b.end and b.start < a.end


def overlaps_range(event: HouseholdEvent, start: datetime, end: datetime) -> bool:
    return event.start < end and event.end > start


def weekdays_ahead(start: date, days: int) -> list[date]:
    """Monday-Friday dates in [start, start + days)."""
    candidates = (start + timedelta(days=offset) for offset in range(days))
    return [day for day in candidates if day.weekday() < 5]


def _is_similar(a: HouseholdEvent, b: HouseholdEvent, context: HouseholdContext) -> bool:
    """Same local day and one title contains the other (case-insensitive)."""
    tz = context.tz
    if a.start.astimezone(tz).date() != b.start.astimezone(tz).date():
        return False
    a_title, b_title = a.summary.lower(), b.summary.lower()
    return a_title in b_title or b_title in a_title


def format_day(moment: datetime, now: datetime, context: HouseholdContext) -> str:
    tz = context.tz
    day = moment.astimezone(tz).date()
    today = now.astimezone(tz).date()
    if day == today:
        return "today"
    if day == today + timedelta(days=1):
        return "tomorrow"
    return day.strftime("%A")


def format_time(moment: datetime, context: HouseholdContext) -> str:
    local = moment.astimezone(context.tz)
    hour = local.hour % 12 or 12
    return f"{hour}:{local.minute:02d} {'AM' if local.hour < 12 else 'PM'}"
