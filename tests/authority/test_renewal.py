"""Tests for the renewal-request annotation protocol."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from dynauth.authority.constants import (
    ISSUED_AT_ANNOTATION,
    RENEW_HANDLED_AT_ANNOTATION,
    RENEW_REQUESTED_AT_ANNOTATION,
)
from dynauth.authority.renewal import (
    format_timestamp,
    issuance_annotations,
    parse_timestamp,
    renewal_pending,
)

NOW = datetime(2026, 3, 1, 10, 0, tzinfo=UTC)


def _ann(requested=None, handled=None, issued=None) -> dict:
    result = {}
    if requested is not None:
        result[RENEW_REQUESTED_AT_ANNOTATION] = requested
    if handled is not None:
        result[RENEW_HANDLED_AT_ANNOTATION] = handled
    if issued is not None:
        result[ISSUED_AT_ANNOTATION] = issued
    return result


class TestTimestamps:
    def test_parse_zulu(self):
        assert parse_timestamp("2026-03-01T10:00:00Z") == NOW

    def test_parse_offset_normalised_to_utc(self):
        parsed = parse_timestamp("2026-03-01T12:00:00+02:00")
        assert parsed == NOW
        assert parsed.tzinfo == UTC

    @pytest.mark.parametrize("value", [None, "", "yesterday", "2026-13-01T00:00:00Z"])
    def test_parse_invalid(self, value):
        assert parse_timestamp(value) is None

    def test_parse_naive_rejected(self):
        assert parse_timestamp("2026-03-01T10:00:00") is None

    def test_format_uses_z_suffix(self):
        assert format_timestamp(NOW) == "2026-03-01T10:00:00Z"

    def test_format_converts_to_utc(self):
        local = NOW.astimezone(timezone(timedelta(hours=-5)))
        assert format_timestamp(local) == "2026-03-01T10:00:00Z"


class TestRenewalPending:
    def test_no_request(self):
        assert not renewal_pending({})
        assert not renewal_pending(_ann(issued="2026-03-01T10:00:00Z"))

    def test_request_without_issued_at(self):
        assert renewal_pending(_ann(requested="2026-03-01T10:00:00Z"))

    def test_request_after_issue(self):
        assert renewal_pending(
            _ann(requested="2026-03-01T11:00:00Z", issued="2026-03-01T10:00:00Z"),
        )

    def test_request_equal_to_issue_is_pending(self):
        assert renewal_pending(
            _ann(requested="2026-03-01T10:00:00Z", issued="2026-03-01T10:00:00Z"),
        )

    def test_issued_after_request(self):
        assert not renewal_pending(
            _ann(requested="2026-03-01T09:00:00Z", issued="2026-03-01T10:00:00Z"),
        )

    def test_already_handled(self):
        assert not renewal_pending(
            _ann(
                requested="2026-03-01T11:00:00Z",
                handled="2026-03-01T11:00:00Z",
                issued="2026-03-01T10:00:00Z",
            ),
        )

    def test_handled_compares_raw_strings(self):
        assert renewal_pending(
            _ann(
                requested="2026-03-01T13:00:00+02:00",
                handled="2026-03-01T11:00:00Z",
                issued="2026-03-01T10:00:00Z",
            ),
        )

    def test_malformed_request_ignored(self, caplog):
        assert not renewal_pending(_ann(requested="soon"))
        assert "malformed" in caplog.text

    def test_malformed_issued_at_ignored(self):
        assert not renewal_pending(_ann(requested="2026-03-01T11:00:00Z", issued="bogus"))


class TestIssuanceAnnotations:
    def test_without_request(self):
        assert issuance_annotations({}, NOW) == {ISSUED_AT_ANNOTATION: "2026-03-01T10:00:00Z"}

    def test_past_request_is_handled(self):
        result = issuance_annotations(_ann(requested="2026-03-01T09:00:00Z"), NOW)
        assert result == {
            ISSUED_AT_ANNOTATION: "2026-03-01T10:00:00Z",
            RENEW_HANDLED_AT_ANNOTATION: "2026-03-01T09:00:00Z",
        }

    def test_future_request_moves_issued_at(self):
        result = issuance_annotations(_ann(requested="2026-03-01T10:05:00Z"), NOW)
        assert result[ISSUED_AT_ANNOTATION] == "2026-03-01T10:05:00Z"
        assert not renewal_pending({**_ann(requested="2026-03-01T10:05:00Z"), **result})

    def test_malformed_request_not_copied(self):
        result = issuance_annotations(_ann(requested="bogus"), NOW)
        assert RENEW_HANDLED_AT_ANNOTATION not in result

    def test_result_satisfies_request(self):
        annotations = _ann(requested="2026-03-01T10:00:00Z")
        assert renewal_pending(annotations)
        annotations.update(issuance_annotations(annotations, NOW))
        assert not renewal_pending(annotations)
