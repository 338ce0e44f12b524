"""
SQLAlchemy-backed key-value store.

Hash fields, set members and lock leases each live in their own table. Every
public method runs in one session and commits once, which gives the same
per-call atomicity the mapper expects from Redis.
"""
import time
import logging
from fnmatch import fnmatchcase
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from sqlalchemy import Float, String, Text, create_engine, delete, func, select, update
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from kvrecord.config import LOGGER_PREFIX
from kvrecord.store.base import KeyValueStore, as_members


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""
    pass


class HashFieldSQL(Base):
    """One field of an attribute hash."""
    __tablename__ = "kv_hash_fields"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    field: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


class SetMemberSQL(Base):
    """One member of a set."""
    __tablename__ = "kv_set_members"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    member: Mapped[str] = mapped_column(String(255), primary_key=True)


class LockLeaseSQL(Base):
    """A held lock name; the primary key makes acquisition exclusive."""
    __tablename__ = "kv_lock_leases"

    name: Mapped[str] = mapped_column(String(255), primary_key=True)
    token: Mapped[str] = mapped_column(String(64), nullable=False)
    # wall-clock seconds, shared by every process using the database
    expires_at: Mapped[float] = mapped_column(Float, nullable=False)


def create_sql_engine(url: str):
    """Engine for url; in-memory SQLite gets a single shared connection."""
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url)


_DIALECT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
    "mysql": mysql.insert,
    "mariadb": mysql.insert,
}


def upsert(session: Session, model: Any, rows: List[Dict[str, str]], update_columns: Sequence[str] = ()) -> Any:
    """
    Single-statement insert of rows that tolerates existing primary keys.

    With update_columns the existing row takes the new values (last write
    wins); without, the conflicting row is left alone and not counted in
    the result's rowcount.
    """
    dialect = session.get_bind().dialect.name
    if dialect not in _DIALECT_INSERTS:
        raise NotImplementedError(f"No conflict-tolerant insert for SQL dialect '{dialect}'")
    stmt = _DIALECT_INSERTS[dialect](model).values(rows)
    if dialect in ("mysql", "mariadb"):
        if update_columns:
            return stmt.on_duplicate_key_update({c: stmt.inserted[c] for c in update_columns})
        return stmt.prefix_with("IGNORE")
    keys = [c.name for c in model.__table__.primary_key.columns]
    if update_columns:
        return stmt.on_conflict_do_update(index_elements=keys, set_={c: stmt.excluded[c] for c in update_columns})
    return stmt.on_conflict_do_nothing(index_elements=keys)


class SqlKeyValueStore(KeyValueStore):
    """
    SQLAlchemy-based implementation of the key-value store protocol.
    """
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """
        Initialize SQL storage with a session factory.

        Args:
            session_factory: Factory function to create SQLAlchemy sessions
        """
        self._logger = logging.getLogger(f"{LOGGER_PREFIX}.SqlKeyValueStore")
        self._session_factory = session_factory
        self._logger.info("Initialized SQL key-value store")

    @classmethod
    def from_url(cls, url: str) -> "SqlKeyValueStore":
        """Create the tables if needed and return a store bound to url."""
        engine = create_sql_engine(url)
        Base.metadata.create_all(engine)
        return cls(sessionmaker(bind=engine))

    def _run(self, operation: str, work: Callable[[Session], Any]) -> Any:
        session = self._session_factory()
        try:
            result = work(session)
            session.commit()
            return result
        except Exception as e:
            session.rollback()
            self._logger.error(f"Error during {operation}: {str(e)}")
            raise
        finally:
            session.close()

    # hashes

    def hgetall(self, key: str) -> Dict[str, str]:
        def work(session: Session) -> Dict[str, str]:
            rows = session.execute(
                select(HashFieldSQL.field, HashFieldSQL.value).where(HashFieldSQL.key == key)
            ).all()
            return {field: value for field, value in rows}
        return self._run("hgetall", work)

    def hset(self, key: str, mapping: Mapping[str, str]) -> None:
        if not mapping:
            return

        rows = [{"key": key, "field": str(field), "value": str(value)} for field, value in mapping.items()]
        self._run("hset", lambda session: session.execute(upsert(session, HashFieldSQL, rows, ["value"])))

    def hdel(self, key: str, *fields: str) -> int:
        if not fields:
            return 0

        def work(session: Session) -> int:
            result = session.execute(
                delete(HashFieldSQL).where(HashFieldSQL.key == key, HashFieldSQL.field.in_(fields))
            )
            return result.rowcount or 0
        return self._run("hdel", work)

    # sets

    def sadd(self, key: str, *members: str) -> int:
        to_add = as_members(members)
        if not to_add:
            return 0

        rows = [{"key": key, "member": m} for m in to_add]
        return self._run("sadd", lambda session: session.execute(
            upsert(session, SetMemberSQL, rows)
        ).rowcount or 0)

    def srem(self, key: str, *members: str) -> int:
        to_remove = as_members(members)
        if not to_remove:
            return 0

        def work(session: Session) -> int:
            result = session.execute(
                delete(SetMemberSQL).where(SetMemberSQL.key == key, SetMemberSQL.member.in_(to_remove))
            )
            return result.rowcount or 0
        return self._run("srem", work)

    def smembers(self, key: str) -> Set[str]:
        return self._run("smembers", lambda session: set(session.scalars(
            select(SetMemberSQL.member).where(SetMemberSQL.key == key)
        )))

    def sismember(self, key: str, member: str) -> bool:
        return self._run("sismember", lambda session: session.scalar(
            select(SetMemberSQL.member).where(SetMemberSQL.key == key, SetMemberSQL.member == str(member))
        ) is not None)

    def scard(self, key: str) -> int:
        return self._run("scard", lambda session: session.scalar(
            select(func.count()).select_from(SetMemberSQL).where(SetMemberSQL.key == key)
        ) or 0)

    def sinter(self, *keys: str) -> Set[str]:
        if not keys:
            return set()

        def work(session: Session) -> Set[str]:
            result: Optional[Set[str]] = None
            for key in keys:
                members = set(session.scalars(select(SetMemberSQL.member).where(SetMemberSQL.key == key)))
                result = members if result is None else result & members
                if not result:
                    break
            return result or set()
        return self._run("sinter", work)

    # keyspace

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0

        def work(session: Session) -> int:
            present = self._existing_keys(session, keys)
            session.execute(delete(HashFieldSQL).where(HashFieldSQL.key.in_(keys)))
            session.execute(delete(SetMemberSQL).where(SetMemberSQL.key.in_(keys)))
            return len(present)
        return self._run("delete", work)

    def exists(self, key: str) -> bool:
        return self._run("exists", lambda session: bool(self._existing_keys(session, [key])))

    def keys(self, pattern: str = "*") -> List[str]:
        def work(session: Session) -> List[str]:
            names = set(session.scalars(select(HashFieldSQL.key).distinct()))
            names |= set(session.scalars(select(SetMemberSQL.key).distinct()))
            return sorted(k for k in names if fnmatchcase(k, pattern))
        return self._run("keys", work)

    def clear(self) -> None:
        def work(session: Session) -> None:
            session.execute(delete(HashFieldSQL))
            session.execute(delete(SetMemberSQL))
            session.execute(delete(LockLeaseSQL))
        self._run("clear", work)

    def _existing_keys(self, session: Session, keys: Sequence[str]) -> Set[str]:
        present = set(session.scalars(select(HashFieldSQL.key).where(HashFieldSQL.key.in_(keys)).distinct()))
        present |= set(session.scalars(select(SetMemberSQL.key).where(SetMemberSQL.key.in_(keys)).distinct()))
        return present

    # locks

    def acquire_lock(
        self,
        names: Sequence[str],
        token: str,
        timeout: float,
        expiry: float,
        poll_interval: float,
    ) -> bool:
        """Insert a lease row per name in one transaction; retry until timeout on conflict."""
        deadline = time.monotonic() + timeout
        while True:
            if self._try_acquire(names, token, expiry):
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            time.sleep(min(remaining, poll_interval))

    def _try_acquire(self, names: Sequence[str], token: str, expiry: float) -> bool:
        session = self._session_factory()
        try:
            now = time.time()
            stale = session.execute(
                delete(LockLeaseSQL).where(LockLeaseSQL.name.in_(names), LockLeaseSQL.expires_at <= now)
            ).rowcount
            if stale:
                self._logger.warning(f"Reclaimed {stale} expired lock lease(s) among {list(names)}")
            held: Dict[str, Tuple[str, float]] = {
                row.name: (row.token, row.expires_at)
                for row in session.scalars(select(LockLeaseSQL).where(LockLeaseSQL.name.in_(names)))
            }
            if any(owner != token for owner, _ in held.values()):
                session.rollback()
                return False
            if held:
                session.execute(
                    update(LockLeaseSQL).where(LockLeaseSQL.name.in_(list(held))).values(expires_at=now + expiry)
                )
            # plain inserts so a lease taken after our read fails on the primary key
            session.add_all(
                LockLeaseSQL(name=name, token=token, expires_at=now + expiry) for name in names if name not in held
            )
            session.commit()
            return True
        except IntegrityError:
            # another holder inserted between our read and our commit
            session.rollback()
            return False
        except Exception as e:
            session.rollback()
            self._logger.error(f"Error acquiring lock {list(names)}: {str(e)}")
            raise
        finally:
            session.close()

    def release_lock(self, names: Sequence[str], token: str) -> List[str]:
        """Drop token's leases on names; return the names whose lease had already lapsed."""
        def work(session: Session) -> List[str]:
            live = set(session.scalars(select(LockLeaseSQL.name).where(
                LockLeaseSQL.name.in_(names),
                LockLeaseSQL.token == token,
                LockLeaseSQL.expires_at > time.time(),
            )))
            session.execute(
                delete(LockLeaseSQL).where(LockLeaseSQL.name.in_(names), LockLeaseSQL.token == token)
            )
            return [name for name in names if name not in live]
        return self._run("release_lock", work)

    def get_store_status(self) -> Dict[str, Any]:
        def work(session: Session) -> Dict[str, Any]:
            return {
                "store": "sql",
                "hash_field_count": session.scalar(select(func.count()).select_from(HashFieldSQL)) or 0,
                "set_member_count": session.scalar(select(func.count()).select_from(SetMemberSQL)) or 0,
                "held_locks": sorted(session.scalars(select(LockLeaseSQL.name))),
            }
        return self._run("get_store_status", work)
