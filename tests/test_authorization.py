import pytest

from apps.backend.services.points.authorization import can_award, can_manage_roster, require_organizer
from apps.backend.services.points.models import Member


def member(id_, role, clan_id=None):
    return Member(id=id_, external_username=id_, display_name=id_, role=role, clan_id=clan_id)


ORGANIZER = member("org", "organizer")
CAPTAIN_X = member("cap-x", "captain", clan_id="X")
ROOKIE_X = member("rookie-x", "rookie", clan_id="X")
ROOKIE_X2 = member("rookie-x2", "rookie", clan_id="X")
ROOKIE_Y = member("rookie-y", "rookie", clan_id="Y")
CAPTAIN_Y = member("cap-y", "captain", clan_id="Y")


def test_rookie_cannot_award():
    decision = can_award(ROOKIE_X, [ROOKIE_X2], 5)
    assert not decision.allowed
    assert decision.reason == "role"


def test_role_is_checked_before_amount():
    assert can_award(ROOKIE_X, [], 0).reason == "role"


def test_captain_awards_own_clan_rookies():
    assert can_award(CAPTAIN_X, [ROOKIE_X, ROOKIE_X2], 5).allowed


def test_captain_cannot_award_other_clan_rookie():
    decision = can_award(CAPTAIN_X, [ROOKIE_X, ROOKIE_Y], 5)
    assert not decision.allowed
    assert decision.reason == "scope"
    assert decision.message


def test_captain_cannot_award_non_rookie_in_own_clan():
    other_captain = member("cap-x2", "captain", clan_id="X")
    assert can_award(CAPTAIN_X, [other_captain], 5).reason == "scope"


def test_captain_without_clan_has_no_scope():
    lone = member("cap-none", "captain")
    clanless = member("rookie-none", "rookie")
    assert can_award(lone, [clanless], 5).reason == "scope"


def test_organizer_awards_any_clan_rookie():
    assert can_award(ORGANIZER, [ROOKIE_X, ROOKIE_Y], -3).allowed


def test_organizer_cannot_award_captains():
    assert can_award(ORGANIZER, [CAPTAIN_Y], 5).reason == "scope"


@pytest.mark.parametrize("actor", [ORGANIZER, CAPTAIN_X])
def test_zero_amount_is_invalid(actor):
    assert can_award(actor, [ROOKIE_X], 0).reason == "invalid-amount"


@pytest.mark.parametrize("actor", [ORGANIZER, CAPTAIN_X])
def test_empty_targets_are_invalid(actor):
    assert can_award(actor, [], 10).reason == "invalid-amount"


def test_scope_is_checked_before_amount():
    assert can_award(CAPTAIN_X, [ROOKIE_Y], 0).reason == "scope"


def test_roster_and_admin_permissions():
    assert can_manage_roster(CAPTAIN_X).allowed
    assert can_manage_roster(ORGANIZER).allowed
    assert can_manage_roster(ROOKIE_X).reason == "role"

    assert require_organizer(ORGANIZER).allowed
    denied = require_organizer(CAPTAIN_X)
    assert denied.reason == "role"
    assert "Organizer" in denied.message
