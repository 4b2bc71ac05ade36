import pytest
from conftest import auth_header

from backend.permissions import ROLE_EDITOR, ROLE_VIEWER

VIEWER_DENIED = [
    ("post", "/locations", {"name": "Pantry"}, "LOCATION_CREATE"),
    ("patch", "/locations/{shelf}", {"name": "Renamed"}, "LOCATION_UPDATE"),
    ("patch", "/locations/{shelf}", {"parent_id": None}, "LOCATION_UPDATE"),
    ("delete", "/locations/{attic}", None, "LOCATION_DELETE"),
    ("post", "/locations/{shelf}/move-impact", {"parent_id": "{attic}"}, "LOCATION_MOVE"),
    ("post", "/move-previews/{preview}/confirm", None, "LOCATION_MOVE"),
    ("delete", "/move-previews/{preview}", None, "LOCATION_MOVE"),
    ("post", "/items", {"name": "Hammer", "location_id": "{shelf}"}, "ITEM_CREATE"),
    ("patch", "/items/{item}", {"name": "Drill driver"}, "ITEM_UPDATE"),
    ("patch", "/items/{item}", {"location_id": "{attic}"}, "ITEM_UPDATE"),
    ("delete", "/items/{item}", None, "ITEM_DELETE"),
    ("post", "/import/inventory", {"locations": [], "items": []}, "INVENTORY_IMPORT"),
]

OWNER_ONLY = [
    ("patch", "/members/{other}", {"role": "owner"}, "HOUSEHOLD_MEMBER_ROLE_CHANGE"),
    ("delete", "/members/{other}", None, "HOUSEHOLD_MEMBER_REMOVE"),
    ("post", "/invitations", {"email": "guest@example.com", "role": "viewer"}, "HOUSEHOLD_INVITE_CREATE"),
    ("get", "/invitations", None, "HOUSEHOLD_INVITE_VIEW"),
    ("delete", "/invitations/{invitation}", None, "HOUSEHOLD_INVITE_REVOKE"),
]


@pytest.fixture
def members(make_user):
    return {
        "owner": make_user("owner@example.com"),
        ROLE_EDITOR: make_user("editor@example.com"),
        ROLE_VIEWER: make_user("viewer@example.com"),
    }


@pytest.fixture
def household_id(members, make_household):
    return make_household(
        members["owner"],
        members={members[ROLE_EDITOR]: ROLE_EDITOR, members[ROLE_VIEWER]: ROLE_VIEWER},
    )


def _url(household_id, suffix):
    return f"/api/v1/households/{household_id}{suffix}"


def _send(client, method, url, headers, body=None):
    if body is None:
        return client.request(method, url, headers=headers)
    return client.request(method, url, headers=headers, json=body)


@pytest.fixture
def seeded(client, household_id, members):
    headers = auth_header(members["owner"])

    def post(suffix, body):
        response = client.post(_url(household_id, suffix), headers=headers, json=body)
        assert response.status_code in (200, 201), response.text
        return response.json()

    garage = post("/locations", {"name": "Garage"})
    shelf = post("/locations", {"name": "Shelf", "parent_id": garage["id"]})
    attic = post("/locations", {"name": "Attic"})
    item = post("/items", {"name": "Drill", "location_id": shelf["id"]})
    preview = post(f"/locations/{shelf['id']}/move-impact", {"parent_id": attic["id"]})
    invitation = post("/invitations", {"email": "friend@example.com", "role": "viewer"})
    return {
        "shelf": shelf["id"],
        "attic": attic["id"],
        "item": item["id"],
        "preview": preview["preview_id"],
        "invitation": invitation["id"],
    }


def _fill(value, ids):
    if isinstance(value, str):
        return value.format(**ids)
    if isinstance(value, dict):
        return {key: _fill(inner, ids) for key, inner in value.items()}
    if isinstance(value, list):
        return [_fill(inner, ids) for inner in value]
    return value


def _snapshot(client, household_id, headers):
    exported = client.get(_url(household_id, "/export/inventory"), headers=headers).json()
    members = client.get(_url(household_id, "/members"), headers=headers).json()["members"]
    invitations = client.get(_url(household_id, "/invitations"), headers=headers).json()["invitations"]
    return (
        exported["locations"],
        exported["items"],
        sorted((row["user_id"], row["role"]) for row in members),
        sorted(row["id"] for row in invitations),
    )


def _assert_denied(client, household_id, members, seeded, role, other_role, case):
    method, suffix, body, permission = case
    ids = {**seeded, "other": str(members[other_role].id)}
    owner_headers = auth_header(members["owner"])
    before = _snapshot(client, household_id, owner_headers)

    response = _send(
        client, method, _url(household_id, _fill(suffix, ids)), auth_header(members[role]), _fill(body, ids)
    )

    assert response.status_code == 403, response.text
    error = response.json()["error"]
    assert error["code"] == "FORBIDDEN"
    assert error["details"] == {"permission": permission}
    assert _snapshot(client, household_id, owner_headers) == before


@pytest.mark.parametrize("case", VIEWER_DENIED, ids=lambda case: f"{case[0]} {case[1]} {case[3]}")
def test_viewer_cannot_change_inventory(client, household_id, members, seeded, case) -> None:
    _assert_denied(client, household_id, members, seeded, ROLE_VIEWER, ROLE_EDITOR, case)


@pytest.mark.parametrize("role,other_role", [(ROLE_EDITOR, ROLE_VIEWER), (ROLE_VIEWER, ROLE_EDITOR)])
@pytest.mark.parametrize("case", OWNER_ONLY, ids=lambda case: f"{case[0]} {case[1]}")
def test_only_owners_manage_members_and_invitations(
    client, household_id, members, seeded, role, other_role, case
) -> None:
    _assert_denied(client, household_id, members, seeded, role, other_role, case)


def test_preview_survives_denied_attempts(client, household_id, members, seeded) -> None:
    viewer = auth_header(members[ROLE_VIEWER])
    url = _url(household_id, f"/move-previews/{seeded['preview']}")
    assert client.post(f"{url}/confirm", headers=viewer).status_code == 403
    assert client.delete(url, headers=viewer).status_code == 403

    editor = auth_header(members[ROLE_EDITOR])
    confirmed = client.post(f"{url}/confirm", headers=editor)
    assert confirmed.status_code == 200, confirmed.text
    assert confirmed.json()["location"]["path"] == "Attic > Shelf"
