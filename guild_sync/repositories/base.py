"""
Base repository class for data access layer.

Example:
    class MemberRepository(BaseRepository[GuildMember]):
        def find_by_identity(self, identity: MemberIdentity) -> Optional[GuildMember]:
            return self.where_first(
                GuildMember.character_name == identity.name,
                GuildMember.realm == identity.realm,
            )
"""
import uuid
from abc import ABC
from typing import TypeVar, Generic, Type, Optional

from sqlalchemy.orm import Query, Session

T = TypeVar("T")


class BaseRepository(Generic[T], ABC):
    """
    Base repository class providing common data access methods.

    Repositories never commit; the caller owns the transaction.

    Attributes:
        model_type: The SQLAlchemy model class this repository manages
        db: The database session
    """

    def __init__(self, model_type: Type[T], db: Session):
        self.model_type = model_type
        self.db = db

    def query(self) -> Query:
        return self.db.query(self.model_type)

    def create(self, **kwargs) -> T:
        """Create a new record with a generated UUID (not yet committed)."""
        kwargs.setdefault("id", str(uuid.uuid4()))
        instance = self.model_type(**kwargs)
        self.db.add(instance)
        return instance

    def where_first(self, *criterion) -> Optional[T]:
        return self.query().filter(*criterion).first()

    def count(self, *criterion) -> int:
        query = self.query()
        if criterion:
            query = query.filter(*criterion)
        return query.count()
