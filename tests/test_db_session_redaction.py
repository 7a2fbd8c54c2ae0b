from __future__ import annotations

from datetime import date, datetime, time

from db.session import redact_sql_parameters


def test_redact_sql_parameters_for_mapping_values():
    out = redact_sql_parameters(
        {
            "member_id": 12345,
            "member_display_name": "SecretName",
            "active": True,
            "joined_at": datetime(2026, 2, 13, 12, 0, 0),
            "birthday": date(2026, 2, 13),
            "alarm": time(12, 15),
            "none_value": None,
        }
    )
    assert out == {
        "member_id": "<int>",
        "member_display_name": "<redacted>",
        "active": "<bool>",
        "joined_at": "<datetime>",
        "birthday": "<date>",
        "alarm": "<time>",
        "none_value": None,
    }


def test_redact_sql_parameters_for_nested_sequence_payloads():
    out = redact_sql_parameters(
        [
            {"a": "text", "b": 42},
            ("token", 9.5, None),
        ]
    )
    assert out == [
        {"a": "<redacted>", "b": "<int>"},
        ("<redacted>", "<float>", None),
    ]


def test_redact_sql_parameters_caps_long_collections():
    out = redact_sql_parameters(list(range(25)))

    assert len(out) == 21
    assert out[-1] == "... +5 more"
