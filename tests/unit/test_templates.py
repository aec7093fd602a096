import pytest

from familyos.models.domain.insight_domain import InsightType
from familyos.services.intelligence.templates import UNKNOWN_ACTION, parse_reply, render_message


def test_render_conflict_uses_partner_first_name():
    message = render_message(
        InsightType.CONFLICT, {"time": "3:00 PM", "day": "Tuesday", "partnerName": "Sam Rivera"}
    )

    assert "You both have things at 3:00 PM on Tuesday" in message
    assert message.endswith("Reply ME, SAM, or HELP")


def test_render_load_imbalance_includes_partner_count():
    message = render_message(
        InsightType.LOAD_IMBALANCE, {"count": 8, "partnerName": "Sam", "partnerCount": 3}
    )

    assert "you've got 8 things this week vs Sam's 3" in message


def test_render_coverage_gap_without_child_name():
    message = render_message(InsightType.COVERAGE_GAP, {"time": "3-4:30pm", "day": "Friday"})

    assert "the kids' pickup at 3-4:30pm on Friday" in message


@pytest.mark.parametrize(
    ("insight_type", "reply", "action"),
    [
        (InsightType.CALENDAR_GAP, " yes ", "add_to_calendar"),
        (InsightType.CALENDAR_GAP, "n", "dismiss"),
        (InsightType.COVERAGE_GAP, "got   it", "will_handle"),
        (InsightType.LOAD_IMBALANCE, "fine", "acknowledge"),
        (InsightType.PREP_REMINDER, "Remind me", "remind_later"),
        (InsightType.CONFLICT, "me", "assign_self"),
    ],
)
def test_parse_known_replies(insight_type, reply, action):
    parsed = parse_reply(insight_type, reply)

    assert parsed.valid is True
    assert parsed.action == action


def test_conflict_reply_accepts_partner_first_name():
    parsed = parse_reply(InsightType.CONFLICT, "sam", {"partnerName": "Sam Rivera"})

    assert parsed.valid is True
    assert parsed.action == "assign_partner"


def test_unrecognized_reply_is_invalid():
    parsed = parse_reply(InsightType.CONFLICT, "maybe later", {"partnerName": "Sam"})

    assert parsed.valid is False
    assert parsed.action == UNKNOWN_ACTION


def test_partner_update_has_no_replies():
    assert parse_reply(InsightType.PARTNER_UPDATE, "OK").valid is False
