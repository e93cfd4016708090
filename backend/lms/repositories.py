"""Repository classes encapsulating database operations.

Each repository is small and focused on a single table (users,
categories, courses). Repositories take the shared `Database` handle
and open a session per call, so the page and count queries of a list
request can run side by side. They return SQLModel objects with the
relationships the services need already loaded, and perform
commits/refreshes where appropriate. Constraint violations surface as
`sqlalchemy.exc.IntegrityError` for the services to translate.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from sqlalchemy import asc, desc, func, or_
from sqlalchemy.orm import selectinload
from sqlmodel import SQLModel, select

from . import models
from .database import Database
from .errors import BadRequestError
from .querying import ConditionTree


def compile_conditions(model: type, tree: ConditionTree) -> list:
    """Translate a `ConditionTree` into SQLAlchemy clauses for `model`.

    The returned clauses are meant to be ANDed together; an empty list
    matches every row.
    """
    clauses = []
    if tree.search is not None:
        # autoescape keeps % and _ in the term literal
        term = tree.search.term
        clauses.append(or_(*[getattr(model, f).icontains(term, autoescape=True) for f in tree.search.fields]))
    for name, value in tree.exact.items():
        clauses.append(getattr(model, name) == value)
    for name, bound in tree.ranges.items():
        column = getattr(model, name)
        if bound.min is not None:
            clauses.append(column >= bound.min)
        if bound.max is not None:
            clauses.append(column <= bound.max)
    return clauses


class BaseRepository:
    """Shared list/count/update plumbing for a single table.

    `sort_fields` whitelists the camelCase sort keys accepted from
    clients and maps them to model attributes.
    """
    model: type = SQLModel
    sort_fields: Mapping[str, str] = {}
    load_options: Sequence = ()

    def __init__(self, db: Database):
        self.db = db

    def _order_by(self, order_by: Tuple[str, str]):
        sort_by, direction = order_by
        attr = self.sort_fields.get(sort_by)
        if attr is None:
            raise BadRequestError(f"Cannot sort by '{sort_by}'")
        column = getattr(self.model, attr)
        return desc(column) if direction == "desc" else asc(column)

    def get(self, record_id: str):
        """Fetch a record by primary key with its relationships loaded."""
        with self.db.session() as session:
            stmt = select(self.model).where(self.model.id == record_id).options(*self.load_options)
            return session.exec(stmt).first()

    def find_many(self, where: ConditionTree, skip: int, take: int, order_by: Tuple[str, str]) -> list:
        """Return one page of records matching `where`."""
        stmt = (
            select(self.model)
            .where(*compile_conditions(self.model, where))
            .options(*self.load_options)
            .order_by(self._order_by(order_by))
            .offset(skip)
            .limit(take)
        )
        with self.db.session() as session:
            return list(session.exec(stmt).all())

    def count(self, where: ConditionTree) -> int:
        stmt = select(func.count()).select_from(self.model).where(*compile_conditions(self.model, where))
        with self.db.session() as session:
            return session.exec(stmt).one()

    def create(self, record):
        """Persist a new record and return it reloaded with relationships."""
        with self.db.session() as session:
            session.add(record)
            session.commit()
            record_id = record.id
        return self.get(record_id)

    def update(self, record_id: str, data: Dict[str, Any]):
        """Apply `data` to the stored record, bump `updated_at`, return the fresh copy."""
        with self.db.session() as session:
            record = session.get(self.model, record_id)
            if record is None:
                return None
            for key, value in data.items():
                setattr(record, key, value)
            record.updated_at = datetime.now(timezone.utc)
            session.add(record)
            session.commit()
        return self.get(record_id)

    def delete(self, record_id: str) -> bool:
        with self.db.session() as session:
            record = session.get(self.model, record_id)
            if record is None:
                return False
            session.delete(record)
            session.commit()
            return True


class UserRepository(BaseRepository):
    """CRUD operations for `User` objects."""
    model = models.User
    sort_fields = {
        "createdAt": "created_at",
        "updatedAt": "updated_at",
        "email": "email",
        "firstName": "first_name",
        "lastName": "last_name",
        "role": "role",
    }

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email or `None` if not found."""
        with self.db.session() as session:
            return session.exec(select(models.User).where(models.User.email == email)).first()

    def existing_emails(self, emails: Iterable[str]) -> set:
        """Return the subset of `emails` that already belongs to a user."""
        emails = list(emails)
        if not emails:
            return set()
        with self.db.session() as session:
            stmt = select(models.User.email).where(models.User.email.in_(emails))
            return set(session.exec(stmt).all())


class CategoryRepository(BaseRepository):
    """CRUD operations for `Category` and its course collection."""
    model = models.Category
    sort_fields = {
        "createdAt": "created_at",
        "updatedAt": "updated_at",
        "name": "name",
    }
    load_options = (selectinload(models.Category.courses),)

    def get_by_name(self, name: str) -> Optional[models.Category]:
        with self.db.session() as session:
            return session.exec(select(models.Category).where(models.Category.name == name)).first()

    def count_courses(self, category_id: str) -> int:
        """Return how many courses are filed under `category_id`."""
        stmt = select(func.count()).select_from(models.Course).where(models.Course.category_id == category_id)
        with self.db.session() as session:
            return session.exec(stmt).one()


class CourseRepository(BaseRepository):
    """CRUD operations for `Course` with instructor and category loaded."""
    model = models.Course
    sort_fields = {
        "createdAt": "created_at",
        "updatedAt": "updated_at",
        "title": "title",
        "price": "price",
        "status": "status",
    }
    load_options = (selectinload(models.Course.instructor), selectinload(models.Course.category))
