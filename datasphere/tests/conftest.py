"""
datasphere/tests/conftest.py: Shared pytest fixtures for the Datasphere test suite.

Hand-built raw payloads, one per data source kind, small enough that every
expected number in the tests can be worked out by hand.

Fixtures:
    brands_payload   Entity-pair source ('flows_brands'), 3 brands, with a
                     reversed duplicate pair (1 → 0) and a 'both' share block.
    markets_payload  Hub/spoke source ('flows_markets'), 3 markets against the
                     synthetic center (id 3).
    legacy_payload   Generic absolute source ('flows_absolute'), with a
                     reversed key that must be skipped.
    payload_file     Writes brands_payload to a temp JSON file, returns path.
"""

import copy
import json

import pytest


_ENTITIES = [
    {"itemID": 0, "itemLabel": "Alpha", "itemSize_absolute": 100.0},
    {"itemID": 1, "itemLabel": "Bravo", "itemSize_absolute": 50.0},
    {"itemID": 2, "itemLabel": "Charlie", "itemSize_absolute": 10.0},
]

_BRANDS = {
    "itemIDs": _ENTITIES,
    "flows_brands": [
        {
            "from": 0,
            "to": 1,
            "churn": [
                {
                    "in": {"abs": 20.0, "perc": 0.40, "index": 110.0},
                    "out": {"abs": 12.0, "perc": 0.24, "index": 90.0},
                    "net": {"abs": 8.0, "perc": 0.16, "index": 100.0},
                    "both": {"in_perc": 0.625, "out_perc": 0.375, "in_index": 120.0, "out_index": 80.0},
                }
            ],
            "switching": [{"in": 6.0, "out": 4.0, "net": 2.0}],
        },
        {
            "from": 1,
            "to": 0,
            "churn": [{"in": 5.0, "out": 3.0, "net": 2.0}],
            "switching": [{"in": 1.0, "out": 1.0, "net": 0.0}],
        },
        {
            "from": 1,
            "to": 2,
            "churn": [{"in": 10.0, "out": 4.0, "net": -6.0}],
            "switching": [{"in": 3.0, "out": 1.0, "net": 2.0}],
        },
        {
            "from": 0,
            "to": 2,
            "churn": [{"in": 2.0, "out": 1.0, "net": 1.0}],
            "switching": [{"in": 1.0, "out": 1.0, "net": 0.0}],
        },
    ],
}

_MARKETS = {
    "itemIDs": [
        {"itemID": 0, "itemLabel": "North", "itemSize_absolute": 300.0},
        {"itemID": 1, "itemLabel": "South", "itemSize_absolute": 200.0},
        {"itemID": 2, "itemLabel": "East", "itemSize_absolute": 100.0},
    ],
    "flows_markets": [
        {
            "itemID": 0,
            "churn": {
                "in": 30.0,
                "out": 10.0,
                "net": 20.0,
                "both": {"in_perc": 75.0, "out_perc": 25.0, "in_index": 130.0, "out_index": 70.0},
            },
            "spend": {"more": 5.0, "less": 2.0},
        },
        {
            "itemID": 1,
            "churn": {"in": 5.0, "out": 15.0, "net": -10.0},
            "spend": {"more": 1.0, "less": 4.0},
        },
        {
            "itemID": 2,
            "churn": {"in": 8.0, "out": 8.0, "net": 0.0},
            "spend": {"more": 3.0, "less": 3.0},
        },
    ],
}

_LEGACY = {
    "itemIDs": _ENTITIES,
    "flows_absolute": {
        "0,1": {"inFlow": 12.0, "outFlow": 7.0},
        "'1','0'": {"inFlow": 99.0, "outFlow": 99.0},
        "1,2": {"inFlow": 3.0, "outFlow": 9.0},
    },
}


@pytest.fixture
def brands_payload():
    return copy.deepcopy(_BRANDS)


@pytest.fixture
def markets_payload():
    return copy.deepcopy(_MARKETS)


@pytest.fixture
def legacy_payload():
    return copy.deepcopy(_LEGACY)


@pytest.fixture
def payload_file(tmp_path, brands_payload):
    path = tmp_path / "payload.json"
    path.write_text(json.dumps(brands_payload), encoding="utf-8")
    return str(path)
