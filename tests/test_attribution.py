"""Tests for UTM grouping, deal timing and identity resolution."""

from datetime import datetime, timedelta

import pytest

from models.history_models import EntityKind
from scripts.lib.attribution import (
    analyze_entity,
    conversion_days,
    find_deal_created_at,
    first_touch,
    group_by_entity,
    group_utm_touches,
    parse_records,
    pre_deal_touch,
    records_for_entity,
    resolve_identity,
)


def _ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _parse(raw):
    return parse_records(raw, EntityKind.PEOPLE)


class TestParseRecords:
    def test_maps_people_id_to_entity_id(self, make_record):
        records = _parse([make_record("이름", "홍길동", "2024-03-29T11:16:26.207Z")])
        assert records[0].entity_id == "person-1"
        assert records[0].field_name == "이름"
        assert records[0].created_at == _ts("2024-03-29T11:16:26.207Z")

    def test_organization_records_use_organization_id(self, make_record):
        raw = make_record("이름", "Acme", "2024-03-29T11:16:26Z", "org-1", id_key="organizationId")
        records = parse_records([raw], EntityKind.ORGANIZATION)
        assert records[0].entity_id == "org-1"

    def test_skips_records_without_entity_or_timestamp(self, make_record):
        good = make_record("이름", "a", "2024-01-01T00:00:00Z")
        no_entity = make_record("이름", "b", "2024-01-01T00:00:00Z", entity_id=None)
        bad_ts = make_record("이름", "c", "yesterday")
        assert len(_parse([good, no_entity, bad_ts, "junk"])) == 1

    def test_non_string_owner_is_coerced(self, make_record):
        raw = make_record("이름", "a", "2024-01-01T00:00:00Z")
        raw["ownerId"] = 42
        raw["type"] = {"kind": "edit"}
        record = _parse([raw])[0]
        assert record.owner_id == "42"
        assert record.type == '{"kind": "edit"}'

    def test_offset_timestamps_are_normalised_to_utc(self, make_record):
        record = _parse([make_record("이름", "a", "2024-02-01T19:15:30+09:00")])[0]
        assert record.created_at.utcoffset() == timedelta(0)
        assert record.created_at.hour == 10

    def test_records_are_immutable(self, make_record):
        record = _parse([make_record("이름", "a", "2024-01-01T00:00:00Z")])[0]
        with pytest.raises(Exception):
            record.field_value = "b"


class TestUTMGrouping:
    def test_same_minute_fields_form_one_touch(self, utm_session):
        touches = group_utm_touches(_parse(utm_session("ad", "2024-02-01T10:15")))

        assert len(touches) == 1
        touch = touches[0]
        assert (touch.source, touch.medium, touch.campaign, touch.content) == (
            "ad-source", "ad-medium", "ad-campaign", "ad-content",
        )
        assert touch.created_at == _ts("2024-02-01T10:15:01.100Z")

    def test_sessions_one_minute_apart_stay_separate(self, utm_session):
        raw = utm_session("first", "2024-02-01T10:15") + utm_session("second", "2024-02-01T10:16")
        touches = group_utm_touches(_parse(raw))

        assert len(touches) == 2
        # newest first
        assert touches[0].source == "second-source"
        assert touches[0].campaign == "second-campaign"
        assert touches[1].source == "first-source"
        assert touches[1].content == "first-content"

    def test_lane_member_without_source_is_dropped(self, make_record, utm_session):
        raw = utm_session("ad", "2024-02-01T10:15") + [
            make_record("utm_medium", "orphan", "2024-02-01T11:00:00Z"),
        ]
        touches = group_utm_touches(_parse(raw))
        assert len(touches) == 1
        assert touches[0].medium == "ad-medium"

    def test_seconds_do_not_matter_within_minute(self, make_record):
        raw = [
            make_record("utm_source", "naver", "2024-02-01T10:15:59.999Z"),
            make_record("utm_medium", "cpc", "2024-02-01T10:15:00.000Z"),
        ]
        touch = group_utm_touches(_parse(raw))[0]
        assert touch.medium == "cpc"

    def test_mixed_offsets_share_a_minute_bucket(self, make_record):
        raw = [
            make_record("utm_source", "google", "2024-02-01T10:15:01Z"),
            make_record("utm_medium", "cpc", "2024-02-01T19:15:30+09:00"),
        ]
        touches = group_utm_touches(_parse(raw))
        assert len(touches) == 1
        assert touches[0].medium == "cpc"

    def test_other_entities_do_not_leak(self, utm_session, make_record):
        raw = utm_session("mine", "2024-02-01T10:15", entity_id="person-1") + [
            make_record("utm_campaign", "theirs", "2024-02-01T10:15:30Z", entity_id="person-2"),
        ]
        records = records_for_entity(_parse(raw), "person-1")
        touch = group_utm_touches(records)[0]
        assert touch.campaign == "mine-campaign"

    def test_no_utm_records_means_no_touches(self, make_record):
        records = _parse([make_record("이름", "홍길동", "2024-01-01T00:00:00Z")])
        assert group_utm_touches(records) == []
        assert first_touch(records) is None


class TestFirstTouch:
    def test_earliest_source_expanded_with_companions(self, utm_session):
        raw = utm_session("late", "2024-03-01T09:00") + utm_session("early", "2024-01-05T09:00")
        touch = first_touch(_parse(raw))
        assert touch.source == "early-source"
        assert touch.medium == "early-medium"
        assert touch.content == "early-content"
        assert touch.created_at == _ts("2024-01-05T09:00:01.100Z")


class TestDealCreatedAt:
    def test_first_positive_in_received_order(self, make_record):
        raw = [
            make_record("딜 개수", 0, "2024-01-01T00:00:00Z"),
            make_record("딜 개수", 2, "2024-01-02T00:00:00Z"),
        ]
        assert find_deal_created_at(_parse(raw)) == _ts("2024-01-02T00:00:00Z")

    def test_scan_is_not_resorted(self, make_record):
        raw = [
            make_record("딜 개수", "3", "2024-05-01T00:00:00Z"),
            make_record("딜 개수", "1", "2024-04-01T00:00:00Z"),
        ]
        assert find_deal_created_at(_parse(raw)) == _ts("2024-05-01T00:00:00Z")

    def test_all_zero_means_no_deal(self, make_record):
        raw = [
            make_record("딜 개수", 0, "2024-01-01T00:00:00Z"),
            make_record("딜 개수", "0", "2024-01-02T00:00:00Z"),
        ]
        assert find_deal_created_at(_parse(raw)) is None

    def test_non_numeric_values_are_ignored(self, make_record):
        raw = [
            make_record("딜 개수", {"count": 2}, "2024-01-01T00:00:00Z"),
            make_record("딜 개수", "n/a", "2024-01-02T00:00:00Z"),
        ]
        assert find_deal_created_at(_parse(raw)) is None


class TestPreDealTouch:
    def test_latest_value_per_lane_before_deal(self, utm_session, make_record):
        raw = (
            utm_session("old", "2024-01-01T09:00")
            + utm_session("recent", "2024-01-10T09:00")
            + utm_session("after", "2024-02-01T09:00")
        )
        deal = _ts("2024-01-15T00:00:00Z")
        touch = pre_deal_touch(_parse(raw), deal)
        assert touch.source == "recent-source"
        assert touch.content == "recent-content"

    def test_lanes_are_chosen_independently(self, make_record):
        raw = [
            make_record("utm_source", "google", "2024-01-01T09:00:00Z"),
            make_record("utm_medium", "cpc", "2024-01-01T09:00:10Z"),
            make_record("utm_source", "naver", "2024-01-05T12:00:00Z"),
        ]
        touch = pre_deal_touch(_parse(raw), _ts("2024-01-10T00:00:00Z"))
        assert touch.source == "naver"
        assert touch.medium == "cpc"
        assert touch.campaign is None
        assert touch.created_at == _ts("2024-01-05T12:00:00Z")

    def test_record_at_deal_time_is_excluded(self, make_record):
        raw = [make_record("utm_source", "google", "2024-01-10T00:00:00Z")]
        assert pre_deal_touch(_parse(raw), _ts("2024-01-10T00:00:00Z")) is None

    def test_no_deal_means_no_pre_deal_touch(self, utm_session):
        assert pre_deal_touch(_parse(utm_session("x", "2024-01-01T09:00")), None) is None


class TestConversionDays:
    def test_three_days(self):
        assert conversion_days(_ts("2024-01-01T00:00:00Z"), _ts("2024-01-04T00:00:00Z")) == 3

    def test_partial_days_are_floored(self):
        assert conversion_days(_ts("2024-01-01T00:00:00Z"), _ts("2024-01-04T23:59:00Z")) == 3

    def test_negative_is_passed_through(self):
        assert conversion_days(_ts("2024-01-04T00:00:00Z"), _ts("2024-01-01T00:00:00Z")) == -3

    def test_missing_endpoint(self):
        assert conversion_days(None, _ts("2024-01-01T00:00:00Z")) is None
        assert conversion_days(_ts("2024-01-01T00:00:00Z"), None) is None


class TestAnalyzeEntity:
    def test_full_summary(self, utm_session, make_record):
        raw = utm_session("ad", "2024-01-01T00:00", seconds=("00.000", "00.500", "01.000", "01.500")) + [
            make_record("딜 개수", 1, "2024-01-04T00:00:00Z"),
        ]
        summary = analyze_entity(_parse(raw))

        assert len(summary.utm_touches) == 1
        assert summary.first_touch.source == "ad-source"
        assert summary.deal_created_at == _ts("2024-01-04T00:00:00Z")
        assert summary.pre_deal_touch.campaign == "ad-campaign"
        assert summary.conversion_days == 3

    def test_no_deal_leaves_deal_fields_empty(self, utm_session):
        summary = analyze_entity(_parse(utm_session("ad", "2024-01-01T00:00")))
        assert summary.deal_created_at is None
        assert summary.pre_deal_touch is None
        assert summary.conversion_days is None
        assert summary.first_touch is not None


class TestIdentity:
    def test_latest_name_and_email_win(self, make_record):
        raw = [
            make_record("이름", "홍길동", "2024-03-29T11:16:26Z"),
            make_record("이름", "홍길순", "2024-03-30T11:16:26Z"),
            make_record("이메일", "new@example.com", "2024-03-28T10:00:00Z"),
            make_record("이메일", "old@example.com", "2024-03-01T10:00:00Z"),
        ]
        identity = resolve_identity("person-1", _parse(raw))
        assert identity.name == "홍길순"
        assert identity.email == "new@example.com"

    def test_missing_fields_are_none(self, make_record):
        identity = resolve_identity("person-1", _parse([make_record("utm_source", "x", "2024-01-01T00:00:00Z")]))
        assert identity.name is None
        assert identity.email is None


class TestGroupByEntity:
    def test_keeps_first_seen_order(self, make_record):
        raw = [
            make_record("이름", "b", "2024-01-01T00:00:00Z", entity_id="b"),
            make_record("이름", "a", "2024-01-01T00:00:00Z", entity_id="a"),
            make_record("이메일", "b@x", "2024-01-01T00:00:00Z", entity_id="b"),
        ]
        grouped = group_by_entity(_parse(raw))
        assert list(grouped) == ["b", "a"]
        assert len(grouped["b"]) == 2
