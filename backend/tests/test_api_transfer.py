import uuid

import pytest
from conftest import auth_header
from sqlalchemy import select

from backend.models.entities import LocationQRCode, Membership
from backend.permissions import ROLE_VIEWER


@pytest.fixture
def owner(make_user):
    return make_user("owner@example.com")


@pytest.fixture
def household_id(owner, make_household):
    return make_household(owner)


@pytest.fixture
def headers(owner):
    return auth_header(owner)


def _url(household_id, suffix):
    return f"/api/v1/households/{household_id}{suffix}"


def _post(client, url, headers, payload):
    response = client.post(url, headers=headers, json=payload)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def stocked(client, household_id, headers):
    garage = _post(client, _url(household_id, "/locations"), headers, {"name": "Garage", "code": "G1"})
    shelf = _post(
        client, _url(household_id, "/locations"), headers, {"name": "Shelf", "parent_id": garage["id"]}
    )
    _post(
        client,
        _url(household_id, "/items"),
        headers,
        {"name": "Screws", "location_id": shelf["id"], "quantity": 200, "keywords": ["hardware"]},
    )
    return garage, shelf


def _export(client, household_id, headers):
    response = client.get(_url(household_id, "/export/inventory"), headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


def test_export_lists_the_household_tree(client, household_id, headers, stocked) -> None:
    garage, shelf = stocked
    body = _export(client, household_id, headers)
    assert body["version"] == 1
    assert body["counts"] == {"locations": 2, "items": 1}
    assert [row["name"] for row in body["locations"]] == ["Garage", "Shelf"]
    assert body["locations"][1]["parent_id"] == garage["id"]
    assert body["items"][0]["quantity"] == 200
    assert body["items"][0]["location_id"] == shelf["id"]


def test_replace_import_restores_an_export(client, household_id, headers, stocked, session_factory) -> None:
    exported = _export(client, household_id, headers)
    _post(client, _url(household_id, "/locations"), headers, {"name": "Attic"})

    response = client.post(
        _url(household_id, "/import/inventory"),
        headers=headers,
        json={"locations": exported["locations"], "items": exported["items"]},
    )
    assert response.status_code == 200, response.text
    assert response.json() == {
        "valid": True,
        "imported": True,
        "mode": "replace",
        "counts": {"locations": 2, "items": 1},
    }

    again = _export(client, household_id, headers)
    assert [row["id"] for row in again["locations"]] == [row["id"] for row in exported["locations"]]
    assert again["items"][0]["id"] == exported["items"][0]["id"]
    shelf_id = exported["locations"][1]["id"]
    path = client.get(_url(household_id, f"/locations/{shelf_id}/path"), headers=headers).json()
    assert path["path"] == "Garage > Shelf"
    with session_factory() as session:
        codes = session.execute(
            select(LocationQRCode.location_id).where(LocationQRCode.household_id == household_id)
        ).scalars().all()
    assert {str(code) for code in codes} == {row["id"] for row in exported["locations"]}


def test_remap_import_merges_under_new_ids(client, household_id, headers, stocked) -> None:
    exported = _export(client, household_id, headers)
    response = client.post(
        _url(household_id, "/import/inventory"),
        headers=headers,
        params={"remap_ids": "true"},
        json={"locations": exported["locations"], "items": exported["items"]},
    )
    assert response.status_code == 200, response.text
    assert response.json()["mode"] == "merge-remap"

    merged = _export(client, household_id, headers)
    assert merged["counts"] == {"locations": 4, "items": 2}
    new_ids = {row["id"] for row in merged["locations"]} - {row["id"] for row in exported["locations"]}
    assert len(new_ids) == 2
    copied_shelf = next(row for row in merged["locations"] if row["id"] in new_ids and row["name"] == "Shelf")
    assert copied_shelf["parent_id"] in new_ids
    assert [row["code"] for row in merged["locations"]].count("G1") == 2


def test_validate_only_changes_nothing_and_is_open_to_viewers(
    client, household_id, owner, stocked, make_user, session_factory
) -> None:
    viewer = make_user("viewer@example.com")
    with session_factory() as session:
        session.add(Membership(household_id=household_id, user_id=viewer.id, role=ROLE_VIEWER))
        session.commit()

    exported = _export(client, household_id, auth_header(owner))
    payload = {"locations": exported["locations"][:1], "items": []}
    checked = client.post(
        _url(household_id, "/import/inventory"),
        headers=auth_header(viewer),
        params={"validate_only": "true"},
        json=payload,
    )
    assert checked.status_code == 200, checked.text
    assert checked.json() == {
        "valid": True,
        "imported": False,
        "mode": "validate-replace",
        "counts": {"locations": 1, "items": 0},
    }
    denied = client.post(_url(household_id, "/import/inventory"), headers=auth_header(viewer), json=payload)
    assert denied.status_code == 403
    assert denied.json()["error"]["details"] == {"permission": "INVENTORY_IMPORT"}
    assert _export(client, household_id, auth_header(owner))["counts"] == {"locations": 2, "items": 1}


def _location(name, parent_id=None, location_id=None):
    return {
        "id": str(location_id or uuid.uuid4()),
        "name": name,
        "parent_id": str(parent_id) if parent_id else None,
        "created_at": "2026-01-01T00:00:00Z",
        "updated_at": "2026-01-01T00:00:00Z",
    }


def _item(name, location_id, **extra):
    return {
        "id": str(uuid.uuid4()),
        "name": name,
        "location_id": str(location_id),
        "keywords": [],
        "created_at": "2026-01-01T00:00:00Z",
        "updated_at": "2026-01-01T00:00:00Z",
        **extra,
    }


def test_import_rejects_malformed_payloads(client, household_id, headers, stocked) -> None:
    url = _url(household_id, "/import/inventory")
    first, second = uuid.uuid4(), uuid.uuid4()

    duplicate = client.post(
        url, headers=headers, json={"locations": [_location("A", None, first), _location("B", None, first)], "items": []}
    )
    assert duplicate.status_code == 409

    orphan = client.post(url, headers=headers, json={"locations": [_location("A", uuid.uuid4())], "items": []})
    assert orphan.status_code == 422
    assert orphan.json()["error"]["code"] == "INVALID_OPERATION"

    loop = client.post(
        url,
        headers=headers,
        json={"locations": [_location("A", second, first), _location("B", first, second)], "items": []},
    )
    assert loop.status_code == 422
    assert "cycle" in loop.json()["error"]["message"]

    lost_item = client.post(
        url, headers=headers, json={"locations": [_location("A")], "items": [_item("Rake", uuid.uuid4())]}
    )
    assert lost_item.status_code == 422

    root = _location("A")
    negative = client.post(
        url, headers=headers, json={"locations": [root], "items": [_item("Rake", root["id"], quantity=-1)]}
    )
    assert negative.status_code == 422
    assert negative.json()["error"]["code"] == "VALIDATION_ERROR"

    assert _export(client, household_id, headers)["counts"] == {"locations": 2, "items": 1}


def test_replace_import_refuses_ids_owned_by_another_household(
    client, household_id, headers, owner, make_household, stocked
) -> None:
    exported = _export(client, household_id, headers)
    other = make_household(owner, "Cabin")
    response = client.post(
        _url(other, "/import/inventory"),
        headers=headers,
        json={"locations": exported["locations"], "items": exported["items"]},
    )
    assert response.status_code == 409
    assert "remap_ids" in response.json()["error"]["message"]

    remapped = client.post(
        _url(other, "/import/inventory"),
        headers=headers,
        params={"remap_ids": "true"},
        json={"locations": exported["locations"], "items": exported["items"]},
    )
    assert remapped.status_code == 200
    assert _export(client, other, headers)["counts"] == {"locations": 2, "items": 1}
