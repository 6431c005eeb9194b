"""Shared fixtures for Salesmap Attribution Hub tests."""

import itertools

import pytest


@pytest.fixture
def make_record():
    """Factory for raw upstream people-history records."""
    counter = itertools.count(1)

    def _make(field_name, field_value, created_at, entity_id="person-1", id_key="peopleId"):
        return {
            "id": f"hist-{next(counter)}",
            id_key: entity_id,
            "type": "editField",
            "fieldName": field_name,
            "fieldValue": field_value,
            "ownerId": "owner-1",
            "createdAt": created_at,
        }

    return _make


@pytest.fixture
def utm_session(make_record):
    """Four UTM field changes fired by one user action."""

    def _make(prefix, minute_ts, entity_id="person-1", seconds=("01.100", "01.400", "02.000", "02.900")):
        fields = ["utm_source", "utm_medium", "utm_campaign", "utm_content"]
        return [
            make_record(field, f"{prefix}-{field[4:]}", f"{minute_ts}:{sec}Z", entity_id)
            for field, sec in zip(fields, seconds)
        ]

    return _make
