"""Unit tests for the per-user account document store."""

from datetime import datetime

import pytest

from store import StoreError


class TestAccountCollection:
    """Tests for create, field-level update, delete and user scoping."""

    @pytest.mark.unit
    def test_add_assigns_opaque_id_and_created_at(self, collection):
        account_id = collection.add({"company_name": "Acme", "stage": "New Leads"})
        account = collection.get(account_id)
        assert account.id == account_id
        assert account.company_name == "Acme"
        assert isinstance(account.created_at, datetime)

    @pytest.mark.unit
    def test_update_changes_only_given_fields(self, collection):
        account_id = collection.add({"company_name": "Acme", "stage": "New Leads", "value": 10})
        collection.update(account_id, {"stage": "Negotiation"})
        account = collection.get(account_id)
        assert account.stage == "Negotiation"
        assert account.company_name == "Acme"
        assert account.value == 10

    @pytest.mark.unit
    def test_update_rejects_unknown_fields(self, collection):
        account_id = collection.add({"company_name": "Acme"})
        with pytest.raises(StoreError):
            collection.update(account_id, {"owner_id": "someone-else"})

    @pytest.mark.unit
    def test_update_missing_document_raises(self, collection):
        with pytest.raises(StoreError):
            collection.update("nope", {"stage": "New Leads"})

    @pytest.mark.unit
    def test_delete_removes_document(self, collection):
        account_id = collection.add({"company_name": "Acme"})
        collection.delete(account_id)
        assert collection.get(account_id) is None

    @pytest.mark.unit
    def test_notes_round_trip_as_json(self, collection):
        notes = [{"text": "Called", "timestamp": "2026-01-01T00:00:00Z", "sentiment": "Positive"}]
        account_id = collection.add({"company_name": "Acme", "notes": notes})
        assert collection.get(account_id).notes[0].sentiment == "Positive"

    @pytest.mark.unit
    def test_collections_are_scoped_per_user(self, store, identity, collection):
        other = store.collection(identity.create_user("other@example.com", "secret123").id)
        account_id = collection.add({"company_name": "Acme"})
        assert other.list() == []
        assert other.get(account_id) is None
        with pytest.raises(StoreError):
            other.delete(account_id)


class TestSnapshots:
    """Tests for live-query subscriptions."""

    @pytest.mark.unit
    def test_subscription_gets_current_snapshot_immediately(self, collection):
        collection.add({"company_name": "Acme"})
        snapshots = []
        collection.on_snapshot(snapshots.append)
        assert len(snapshots) == 1
        assert snapshots[0][0].company_name == "Acme"

    @pytest.mark.unit
    def test_each_write_delivers_a_snapshot_in_order(self, collection):
        snapshots = []
        collection.on_snapshot(snapshots.append)
        account_id = collection.add({"company_name": "Acme", "stage": "New Leads"})
        collection.update(account_id, {"stage": "Negotiation"})
        collection.delete(account_id)
        assert [len(s) for s in snapshots] == [0, 1, 1, 0]
        assert snapshots[2][0].stage == "Negotiation"

    @pytest.mark.unit
    def test_unsubscribe_stops_delivery(self, collection):
        snapshots = []
        unsubscribe = collection.on_snapshot(snapshots.append)
        unsubscribe()
        collection.add({"company_name": "Acme"})
        assert len(snapshots) == 1

    @pytest.mark.unit
    def test_other_users_writes_are_not_delivered(self, store, identity, collection):
        snapshots = []
        collection.on_snapshot(snapshots.append)
        other = store.collection(identity.create_user("other@example.com", "secret123").id)
        other.add({"company_name": "Elsewhere"})
        assert len(snapshots) == 1

    @pytest.mark.unit
    def test_failed_write_delivers_nothing(self, collection):
        snapshots = []
        collection.on_snapshot(snapshots.append)
        with pytest.raises(StoreError):
            collection.update("missing", {"stage": "New Leads"})
        assert len(snapshots) == 1
