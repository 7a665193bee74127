from plantdesk.approvals import NO_ACCESS, ApprovalResolver
from plantdesk.models import ApprovalGrant, Person


def test_levels_are_per_area(db_session, seed):
    resolver = ApprovalResolver(db_session)

    assert resolver.approval_level(seed.engineer, seed.area) == 2
    assert resolver.approval_level(seed.manager, seed.area) == 3
    assert resolver.approval_level(seed.tech, seed.area) == 1
    assert resolver.approval_level(seed.outsider, seed.area) == NO_ACCESS
    assert resolver.approval_level(seed.outsider, seed.other_area) == 3
    assert resolver.approval_level(seed.reporter, seed.area) == NO_ACCESS


def test_inactive_person_or_grant_gives_no_access(db_session, seed):
    resolver = ApprovalResolver(db_session)
    assert resolver.approval_level(seed.retired, seed.area) == NO_ACCESS

    grant = db_session.query(ApprovalGrant).filter_by(person_id=seed.engineer, area_id=seed.area).one()
    grant.is_active = False
    db_session.commit()
    assert resolver.approval_level(seed.engineer, seed.area) == NO_ACCESS


def test_grant_changes_are_seen_immediately(db_session, seed):
    resolver = ApprovalResolver(db_session)
    assert resolver.approval_level(seed.tech, seed.area) == 1

    grant = db_session.query(ApprovalGrant).filter_by(person_id=seed.tech, area_id=seed.area).one()
    grant.approval_level = 3
    db_session.commit()
    assert resolver.approval_level(seed.tech, seed.area) == 3


def test_list_area_approvers(db_session, seed):
    resolver = ApprovalResolver(db_session)

    assert [p.id for p in resolver.list_area_approvers(seed.area)] == [seed.engineer, seed.manager, seed.engineer2]
    assert [p.id for p in resolver.list_area_approvers(seed.area, min_level=3)] == [seed.manager]
    assert [p.id for p in resolver.list_area_approvers(seed.other_area)] == [seed.outsider]


def test_deactivated_person_drops_out_of_approvers(db_session, seed):
    db_session.get(Person, seed.manager).is_active = False
    db_session.commit()
    ids = [p.id for p in ApprovalResolver(db_session).list_area_approvers(seed.area)]
    assert seed.manager not in ids
