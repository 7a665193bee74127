import pytest

from plantdesk.errors import Forbidden, InvalidArgument
from plantdesk.rbac import actor_from_claims, require_perm, roles_from_claims


def test_default_role_when_token_has_none():
    assert roles_from_claims({"sub": "1"}) == ["operator"]
    assert roles_from_claims({"roles": ["unknown"]}) == ["operator"]


def test_actor_prefers_person_id_claim():
    actor = actor_from_claims({"sub": "abc", "person_id": 12, "name": "Rita Reporter"})
    assert actor.person_id == 12
    assert actor.name == "Rita Reporter"


def test_viewer_cannot_save():
    actor = actor_from_claims({"sub": "3", "roles": ["viewer"]})
    require_perm(actor, "tickets:view")
    with pytest.raises(Forbidden):
        require_perm(actor, "tickets:save")


def test_non_numeric_subject_is_rejected():
    with pytest.raises(InvalidArgument):
        actor_from_claims({"sub": "a1b2-c3"})
