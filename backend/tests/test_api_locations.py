import uuid

import pytest
from conftest import auth_header
from sqlalchemy import delete, select

from backend.models.entities import LocationQRCode
from backend.permissions import ROLE_EDITOR, ROLE_VIEWER


@pytest.fixture
def owner(make_user):
    return make_user("owner@example.com", "Owner")


@pytest.fixture
def household_id(owner, make_household):
    return make_household(owner, "Lake House")


def _url(household_id, suffix=""):
    return f"/api/v1/households/{household_id}{suffix}"


def _create(client, household_id, owner, name, parent_id=None, **extra):
    response = client.post(
        _url(household_id, "/locations"),
        headers=auth_header(owner),
        json={"name": name, "parent_id": str(parent_id) if parent_id else None, **extra},
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_requires_bearer_token(client, household_id) -> None:
    response = client.get(_url(household_id, "/locations"))
    assert response.status_code == 401
    body = response.json()
    assert body["error"]["code"] == "HTTP_ERROR"
    assert body["detail"] == "Not authenticated"
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_rejects_garbage_token(client, household_id) -> None:
    response = client.get(_url(household_id, "/locations"), headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid authentication token"


def test_outsider_gets_not_found(client, household_id, make_user) -> None:
    outsider = make_user("outsider@example.com")
    response = client.get(_url(household_id, "/locations"), headers=auth_header(outsider))
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


def test_location_crud_and_paths(client, household_id, owner) -> None:
    garage = _create(client, household_id, owner, "Garage", code="G", type="room")
    shelf = _create(client, household_id, owner, "Shelf A", garage["id"])
    assert shelf["path"] == "Garage > Shelf A"
    assert garage["code"] == "G"

    fetched = client.get(_url(household_id, f"/locations/{shelf['id']}"), headers=auth_header(owner))
    assert fetched.status_code == 200
    assert fetched.json()["parent_id"] == garage["id"]

    renamed = client.patch(
        _url(household_id, f"/locations/{garage['id']}"),
        headers=auth_header(owner),
        json={"name": "Workshop"},
    )
    assert renamed.status_code == 200
    assert renamed.json()["path"] == "Workshop"

    path = client.get(_url(household_id, f"/locations/{shelf['id']}/path"), headers=auth_header(owner))
    assert path.json() == {"id": shelf["id"], "name": "Shelf A", "path": "Workshop > Shelf A"}

    listing = client.get(_url(household_id, "/locations"), headers=auth_header(owner), params={"limit": 1})
    body = listing.json()
    assert body["total"] == 2
    assert body["limit"] == 1
    assert [entry["name"] for entry in body["items"]] == ["Workshop"]
    again = client.get(_url(household_id, "/locations"), headers=auth_header(owner), params={"limit": 1})
    assert again.json() == body


def test_blank_name_is_a_validation_error(client, household_id, owner) -> None:
    response = client.post(_url(household_id, "/locations"), headers=auth_header(owner), json={"name": ""})
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    whitespace = client.post(_url(household_id, "/locations"), headers=auth_header(owner), json={"name": "   "})
    assert whitespace.status_code == 422
    assert whitespace.json()["error"]["code"] == "INVALID_OPERATION"


def test_cycle_and_dependents_map_to_error_codes(client, household_id, owner) -> None:
    garage = _create(client, household_id, owner, "Garage")
    shelf = _create(client, household_id, owner, "Shelf A", garage["id"])

    cycle = client.patch(
        _url(household_id, f"/locations/{garage['id']}"),
        headers=auth_header(owner),
        json={"parent_id": shelf["id"]},
    )
    assert cycle.status_code == 422
    assert cycle.json()["error"]["code"] == "INVALID_OPERATION"

    blocked = client.delete(_url(household_id, f"/locations/{garage['id']}"), headers=auth_header(owner))
    assert blocked.status_code == 409
    assert blocked.json()["error"]["details"] == {"has_children": True, "has_items": False}

    missing = client.get(_url(household_id, f"/locations/{uuid.uuid4()}"), headers=auth_header(owner))
    assert missing.status_code == 404

    assert client.delete(_url(household_id, f"/locations/{shelf['id']}"), headers=auth_header(owner)).status_code == 204
    assert client.delete(_url(household_id, f"/locations/{garage['id']}"), headers=auth_header(owner)).status_code == 204


def test_reparent_to_root_through_patch(client, household_id, owner) -> None:
    garage = _create(client, household_id, owner, "Garage")
    shelf = _create(client, household_id, owner, "Shelf A", garage["id"])
    moved = client.patch(
        _url(household_id, f"/locations/{shelf['id']}"),
        headers=auth_header(owner),
        json={"parent_id": None},
    )
    assert moved.status_code == 200
    assert moved.json()["parent_id"] is None
    assert moved.json()["path"] == "Shelf A"


def test_viewer_can_read_but_not_write(client, household_id, owner, make_user, make_household) -> None:
    viewer = make_user("viewer@example.com")
    shared = make_household(owner, "Shared", members={viewer: ROLE_VIEWER})
    _create(client, shared, owner, "Closet")

    listing = client.get(_url(shared, "/locations"), headers=auth_header(viewer))
    assert listing.status_code == 200
    denied = client.post(_url(shared, "/locations"), headers=auth_header(viewer), json={"name": "Pantry"})
    assert denied.status_code == 403
    assert denied.json()["error"]["details"] == {"permission": "LOCATION_CREATE"}


def test_location_tree_and_depth_limit(client, household_id, owner) -> None:
    house = _create(client, household_id, owner, "House")
    kitchen = _create(client, household_id, owner, "Kitchen", house["id"])
    _create(client, household_id, owner, "Drawer", kitchen["id"])
    _create(client, household_id, owner, "Attic")

    tree = client.get(_url(household_id, "/locations/tree"), headers=auth_header(owner)).json()
    assert [node["location"]["name"] for node in tree["nodes"]] == ["Attic", "House"]
    house_node = tree["nodes"][1]
    assert house_node["children"][0]["children"][0]["location"]["path"] == "House > Kitchen > Drawer"

    shallow = client.get(
        _url(household_id, "/locations/tree"),
        headers=auth_header(owner),
        params={"root_id": house["id"], "max_depth": 1},
    ).json()
    assert len(shallow["nodes"]) == 1
    assert shallow["nodes"][0]["children"] == []

    too_deep = client.get(
        _url(household_id, "/locations/tree"), headers=auth_header(owner), params={"max_depth": 101}
    )
    assert too_deep.status_code == 422


def test_checklist_covers_subtree(client, household_id, owner) -> None:
    garage = _create(client, household_id, owner, "Garage")
    bin_ = _create(client, household_id, owner, "Bin", garage["id"])
    for name, where in (("Rake", garage), ("Nails", bin_)):
        response = client.post(
            _url(household_id, "/items"),
            headers=auth_header(owner),
            json={"name": name, "location_id": where["id"]},
        )
        assert response.status_code == 201

    body = client.get(_url(household_id, f"/locations/{garage['id']}/checklist"), headers=auth_header(owner)).json()
    assert body["expected_count"] == 2
    assert body["location_path"] == "Garage"
    assert [(entry["location_path"], entry["item"]["name"]) for entry in body["entries"]] == [
        ("Garage", "Rake"),
        ("Garage > Bin", "Nails"),
    ]


def test_preview_confirm_and_stale_flow(client, household_id, owner) -> None:
    garage = _create(client, household_id, owner, "Garage")
    shelf = _create(client, household_id, owner, "Shelf A", garage["id"])
    attic = _create(client, household_id, owner, "Attic")
    client.post(
        _url(household_id, "/items"),
        headers=auth_header(owner),
        json={"name": "Drill", "location_id": shelf["id"]},
    )

    preview = client.post(
        _url(household_id, f"/locations/{shelf['id']}/move-impact"),
        headers=auth_header(owner),
        json={"parent_id": attic["id"]},
    )
    assert preview.status_code == 200
    impact = preview.json()
    assert impact["affected_locations"] == 1
    assert impact["affected_items"] == 1
    assert impact["sample"][0]["after_path"] == "Attic > Shelf A > Drill"
    assert impact["preview_id"]

    confirmed = client.post(
        _url(household_id, f"/move-previews/{impact['preview_id']}/confirm"), headers=auth_header(owner)
    )
    assert confirmed.status_code == 200
    result = confirmed.json()
    assert result["location"]["path"] == "Attic > Shelf A"
    assert result["affected_items"] == impact["affected_items"]

    reused = client.post(
        _url(household_id, f"/move-previews/{impact['preview_id']}/confirm"), headers=auth_header(owner)
    )
    assert reused.status_code == 404

    stale = client.post(
        _url(household_id, f"/locations/{attic['id']}/move-impact"),
        headers=auth_header(owner),
        json={"parent_id": garage["id"]},
    ).json()
    client.patch(
        _url(household_id, f"/locations/{garage['id']}"),
        headers=auth_header(owner),
        json={"parent_id": shelf["id"]},
    )
    conflict = client.post(
        _url(household_id, f"/move-previews/{stale['preview_id']}/confirm"), headers=auth_header(owner)
    )
    assert conflict.status_code == 409
    assert conflict.json()["error"]["code"] == "CONFLICT"


def test_noop_preview_and_cancel(client, household_id, owner) -> None:
    garage = _create(client, household_id, owner, "Garage")
    shelf = _create(client, household_id, owner, "Shelf A", garage["id"])

    noop = client.post(
        _url(household_id, f"/locations/{shelf['id']}/move-impact"),
        headers=auth_header(owner),
        json={"parent_id": garage["id"]},
    ).json()
    assert noop["is_noop"] is True
    assert noop["preview_id"] is None

    preview = client.post(
        _url(household_id, f"/locations/{shelf['id']}/move-impact"),
        headers=auth_header(owner),
        json={"parent_id": None},
    ).json()
    cancelled = client.delete(_url(household_id, f"/move-previews/{preview['preview_id']}"), headers=auth_header(owner))
    assert cancelled.status_code == 204
    gone = client.post(
        _url(household_id, f"/move-previews/{preview['preview_id']}/confirm"), headers=auth_header(owner)
    )
    assert gone.status_code == 404


def test_location_qr_and_scan(client, household_id, owner) -> None:
    garage = _create(client, household_id, owner, "Garage")
    shelf = _create(client, household_id, owner, "Shelf A", garage["id"])

    response = client.get(_url(household_id, f"/locations/{shelf['id']}/qr"), headers=auth_header(owner))
    assert response.status_code == 200, response.text
    qr = response.json()
    assert qr["location_id"] == shelf["id"]
    assert qr["location_name"] == "Shelf A"
    assert qr["scan_path"] == f"/api/v1/households/{household_id}/scan/location/{qr['qr_code']}"
    assert qr["scan_url"].endswith(qr["scan_path"])
    assert qr["payload"] == qr["scan_url"]

    again = client.get(_url(household_id, f"/locations/{shelf['id']}/qr"), headers=auth_header(owner)).json()
    assert again["qr_code"] == qr["qr_code"]

    scanned = client.get(qr["scan_path"], headers=auth_header(owner))
    assert scanned.status_code == 200
    assert scanned.json()["location_id"] == shelf["id"]
    assert scanned.json()["path"] == "Garage > Shelf A"

    redirected = client.get(
        qr["scan_path"], headers=auth_header(owner), params={"format": "redirect"}, follow_redirects=False
    )
    assert redirected.status_code == 302
    location = redirected.headers["location"]
    assert f"location_id={shelf['id']}" in location
    assert f"scan_code={qr['qr_code']}" in location


def test_scan_is_scoped_to_the_household(client, household_id, owner, make_household) -> None:
    garage = _create(client, household_id, owner, "Garage")
    code = client.get(_url(household_id, f"/locations/{garage['id']}/qr"), headers=auth_header(owner)).json()[
        "qr_code"
    ]
    cabin = make_household(owner, "Cabin")

    foreign = client.get(_url(cabin, f"/scan/location/{code}"), headers=auth_header(owner))
    assert foreign.status_code == 404
    unknown = client.get(_url(household_id, f"/scan/location/{uuid.uuid4()}"), headers=auth_header(owner))
    assert unknown.status_code == 404
    malformed = client.get(_url(household_id, "/scan/location/not-a-code"), headers=auth_header(owner))
    assert malformed.status_code == 422
    bad_format = client.get(
        _url(household_id, f"/scan/location/{code}"), headers=auth_header(owner), params={"format": "png"}
    )
    assert bad_format.status_code == 422


def test_missing_qr_code_is_reissued_only_for_editors(
    client, household_id, owner, make_user, make_household, session_factory
) -> None:
    editor = make_user("editor@example.com")
    viewer = make_user("viewer@example.com")
    shared = make_household(owner, "Shared", members={editor: ROLE_EDITOR, viewer: ROLE_VIEWER})
    closet = _create(client, shared, owner, "Closet")
    with session_factory() as session:
        session.execute(delete(LocationQRCode).where(LocationQRCode.location_id == uuid.UUID(closet["id"])))
        session.commit()

    url = _url(shared, f"/locations/{closet['id']}/qr")
    unavailable = client.get(url, headers=auth_header(viewer))
    assert unavailable.status_code == 503
    assert unavailable.json()["error"]["code"] == "SERVICE_UNAVAILABLE"

    issued = client.get(url, headers=auth_header(editor))
    assert issued.status_code == 200
    assert client.get(url, headers=auth_header(viewer)).json()["qr_code"] == issued.json()["qr_code"]


def test_deleting_a_location_drops_its_qr_code(client, household_id, owner, session_factory) -> None:
    attic = _create(client, household_id, owner, "Attic")
    deleted = client.delete(_url(household_id, f"/locations/{attic['id']}"), headers=auth_header(owner))
    assert deleted.status_code == 204
    with session_factory() as session:
        remaining = session.execute(
            select(LocationQRCode).where(LocationQRCode.location_id == uuid.UUID(attic["id"]))
        ).all()
    assert remaining == []
