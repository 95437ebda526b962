"""
Account document store.

Each signed-in user owns one collection of account documents. Writes go
through SQLAlchemy; every successful write pushes a fresh snapshot of the
owner's collection to that owner's listeners, in write order.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from models import ACCOUNT_FIELDS, Account
from schemas import AccountResponse

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[List[AccountResponse]], None]
ErrorListener = Callable[[Exception], None]


class StoreError(Exception):
    """A read or write against the account store failed."""


class AccountStore:
    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._listeners: Dict[str, list] = {}
        self._lock = threading.RLock()

    def collection(self, owner_id: str) -> "AccountCollection":
        return AccountCollection(self, owner_id)

    # ----- listeners -----
    def _subscribe(self, owner_id, listener, on_error):
        entry = (listener, on_error)
        with self._lock:
            self._listeners.setdefault(owner_id, []).append(entry)

        def unsubscribe():
            with self._lock:
                entries = self._listeners.get(owner_id, [])
                if entry in entries:
                    entries.remove(entry)
                if not entries:
                    self._listeners.pop(owner_id, None)

        return unsubscribe

    def _publish(self, owner_id):
        # Held across the read so snapshots reach listeners in write order.
        with self._lock:
            entries = list(self._listeners.get(owner_id, []))
            if not entries:
                return
            try:
                snapshot = self._read_all(owner_id)
            except StoreError as exc:
                for _, on_error in entries:
                    if on_error is not None:
                        on_error(exc)
                return
            for listener, _ in entries:
                listener(snapshot)

    # ----- queries -----
    def _read_all(self, owner_id) -> List[AccountResponse]:
        db = self.session_factory()
        try:
            rows = db.query(Account).filter(Account.owner_id == owner_id).all()
            return [AccountResponse.model_validate(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error("Failed to read accounts for %s: %s", owner_id, e)
            raise StoreError("Failed to read accounts") from e
        finally:
            db.close()


def _check_fields(fields):
    unknown = set(fields) - ACCOUNT_FIELDS
    if unknown:
        raise StoreError(f"Unknown account fields: {', '.join(sorted(unknown))}")


class AccountCollection:
    """One user's namespace of account documents."""

    def __init__(self, store: AccountStore, owner_id: str):
        self.store = store
        self.owner_id = owner_id

    def on_snapshot(self, listener: SnapshotListener, on_error: Optional[ErrorListener] = None):
        """Subscribe to the collection. The current snapshot is delivered at once.

        Returns a callable that cancels the subscription.
        """
        unsubscribe = self.store._subscribe(self.owner_id, listener, on_error)
        try:
            snapshot = self.list()
        except StoreError as exc:
            if on_error is not None:
                on_error(exc)
        else:
            listener(snapshot)
        return unsubscribe

    def list(self) -> List[AccountResponse]:
        return self.store._read_all(self.owner_id)

    def get(self, account_id: str) -> Optional[AccountResponse]:
        db = self.store.session_factory()
        try:
            row = self._find(db, account_id)
            return AccountResponse.model_validate(row) if row else None
        except SQLAlchemyError as e:
            logger.error("Failed to read account %s: %s", account_id, e)
            raise StoreError("Failed to read account") from e
        finally:
            db.close()

    def add(self, fields: dict) -> str:
        _check_fields(fields)
        db = self.store.session_factory()
        try:
            data = dict(fields)
            data.setdefault("created_at", datetime.utcnow())
            row = Account(owner_id=self.owner_id, **data)
            db.add(row)
            db.commit()
            account_id = row.id
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to add account for %s: %s", self.owner_id, e)
            raise StoreError("Failed to add account") from e
        finally:
            db.close()
        self.store._publish(self.owner_id)
        return account_id

    def update(self, account_id: str, fields: dict):
        """Field-level update: only the given fields change."""
        _check_fields(fields)
        db = self.store.session_factory()
        try:
            row = self._find(db, account_id)
            if row is None:
                raise StoreError(f"No account {account_id} to update")
            for name, value in fields.items():
                setattr(row, name, value)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to update account %s: %s", account_id, e)
            raise StoreError("Failed to update account") from e
        finally:
            db.close()
        self.store._publish(self.owner_id)

    def delete(self, account_id: str):
        db = self.store.session_factory()
        try:
            row = self._find(db, account_id)
            if row is None:
                raise StoreError(f"No account {account_id} to delete")
            db.delete(row)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to delete account %s: %s", account_id, e)
            raise StoreError("Failed to delete account") from e
        finally:
            db.close()
        self.store._publish(self.owner_id)

    def _find(self, db, account_id):
        return (
            db.query(Account)
            .filter(Account.id == account_id, Account.owner_id == self.owner_id)
            .first()
        )
