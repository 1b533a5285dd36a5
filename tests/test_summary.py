from __future__ import annotations

from label_mail.summary import ActionsSummary


def test_empty_summary_has_nothing_to_do() -> None:
    assert str(ActionsSummary()) == "Nothing to do.\n"
    assert str(ActionsSummary({"Labeled Alerts": 0})) == "Nothing to do.\n"


def test_summary_table_is_sorted_and_right_aligned() -> None:
    actions = ActionsSummary()
    actions.record(["Moved Projects.X"] * 12)
    actions.record(["Labeled Alerts"])

    assert actions.total_actions() == 13
    assert str(actions) == (
        " Labeled Alerts   :  1\n"
        " Moved Projects.X : 12\n"
        "------------------ ----\n"
        " Total            : 13\n"
    )


def test_short_keys_use_minimum_width() -> None:
    actions = ActionsSummary({"A": 2})

    assert str(actions) == (
        " A     : 2\n"
        "------- ---\n"
        " Total : 2\n"
    )
