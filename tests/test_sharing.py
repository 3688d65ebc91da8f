"""Tests for shared map links."""
import pytest

from mapgen.errors import AuthorizationError, ShareNotFound, ShareValidationError
from mapgen.sharing import ShareService, new_share_token, share_state, share_url

OWNER = {"id": "user-1", "is_admin": False}
OTHER = {"id": "user-2", "is_admin": False}
ADMIN = {"id": "admin-1", "is_admin": True}
MAP_DATA = {"type": "FeatureCollection", "features": []}


@pytest.fixture
def service(stores):
    return ShareService(stores.shared_maps)


def test_token_is_url_safe_and_random():
    token = new_share_token()
    assert len(token) >= 22
    assert all(c.isalnum() or c in "-_" for c in token)
    assert token != new_share_token()


def test_share_url():
    assert share_url("abc") == "/map/abc"
    assert share_url("abc", "https://cartes.example.fr/") == "https://cartes.example.fr/map/abc"


def test_create_requires_user_and_title(service):
    with pytest.raises(AuthorizationError):
        service.create_share(None, "Titre", MAP_DATA)
    with pytest.raises(ShareValidationError):
        service.create_share(OWNER, "   ", MAP_DATA)


def test_public_fetch_counts_one_view(service):
    share = service.create_share(OWNER, " Gares ", MAP_DATA, layers=[{"id": "base_departments"}])
    assert share["title"] == "Gares"

    fetched = service.fetch_public(share["share_token"])
    assert fetched["view_count"] == 1
    assert service.fetch_public(share["share_token"])["view_count"] == 2


def test_private_share_is_not_found_and_not_counted(service, stores):
    share = service.create_share(OWNER, "Privée", MAP_DATA, is_public=False)

    with pytest.raises(ShareNotFound):
        service.fetch_public(share["share_token"])

    assert stores.shared_maps.get(share["id"])["view_count"] == 0


def test_unknown_token_is_not_found(service):
    with pytest.raises(ShareNotFound):
        service.fetch_public("does-not-exist")


def test_visibility_transitions(service):
    share = service.create_share(OWNER, "Carte", MAP_DATA)
    assert share_state(share) == "shared"

    unpublished = service.set_visibility(OWNER, share["id"], False)
    assert share_state(unpublished) == "unpublished"
    with pytest.raises(ShareNotFound):
        service.fetch_public(share["share_token"])

    republished = service.set_visibility(ADMIN, share["id"], True)
    assert share_state(republished) == "shared"


def test_only_owner_or_admin_can_modify(service):
    share = service.create_share(OWNER, "Carte", MAP_DATA)

    with pytest.raises(AuthorizationError) as excinfo:
        service.set_visibility(OTHER, share["id"], False)
    assert excinfo.value.status_code == 403

    with pytest.raises(AuthorizationError):
        service.delete_share(OTHER, share["id"])


def test_deleted_share_resolves_to_not_found(service):
    share = service.create_share(OWNER, "Carte", MAP_DATA)

    assert service.delete_share(ADMIN, share["id"]) is True

    with pytest.raises(ShareNotFound):
        service.fetch_public(share["share_token"])
    with pytest.raises(ShareNotFound):
        service.delete_share(OWNER, share["id"])
    assert share_state(None) == "deleted"
