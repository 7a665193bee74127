"""Per-area approval levels.

Grants are owned by the administration tooling and change at any time, so
every call goes to the database. Nothing here is cached.
"""

from typing import List

from sqlalchemy import func
from sqlalchemy.orm import Session

from .models import ApprovalGrant, Person

NO_ACCESS = 0


class ApprovalResolver:
    def __init__(self, db: Session):
        self.db = db

    def approval_level(self, person_id: int, area_id: int) -> int:
        """Highest active grant the person holds in the area, 0 when none."""
        level = (
            self.db.query(func.max(ApprovalGrant.approval_level))
            .join(Person, Person.id == ApprovalGrant.person_id)
            .filter(ApprovalGrant.person_id == person_id)
            .filter(ApprovalGrant.area_id == area_id)
            .filter(ApprovalGrant.is_active.is_(True))
            .filter(Person.is_active.is_(True))
            .scalar()
        )
        return int(level) if level else NO_ACCESS

    def list_area_approvers(self, area_id: int, min_level: int = 2) -> List[Person]:
        return (
            self.db.query(Person)
            .join(ApprovalGrant, ApprovalGrant.person_id == Person.id)
            .filter(ApprovalGrant.area_id == area_id)
            .filter(ApprovalGrant.approval_level >= min_level)
            .filter(ApprovalGrant.is_active.is_(True))
            .filter(Person.is_active.is_(True))
            .distinct()
            .order_by(Person.id)
            .all()
        )
