from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from flowers_api.models import ROLE_CLIENT, User
from flowers_api.services.credential_store import CredentialStore, TenantCredential, TenantNotFoundError


def make_store():
    db = MagicMock()
    return CredentialStore(lambda: db), db


class TestListActive:
    def test_returns_tenant_credentials(self):
        store, db = make_store()
        t1, t2 = uuid4(), uuid4()
        db.query.return_value.filter.return_value.all.return_value = [(t1, "cred-A"), (t2, " cred-B ")]

        result = store.list_active()

        assert result == [
            TenantCredential(tenant_id=t1, credential="cred-A"),
            TenantCredential(tenant_id=t2, credential="cred-B"),
        ]
        db.close.assert_called_once()

    def test_blank_tokens_are_skipped(self):
        store, db = make_store()
        db.query.return_value.filter.return_value.all.return_value = [(uuid4(), "   "), (uuid4(), None)]

        assert store.list_active() == []

    def test_session_closed_on_error(self):
        store, db = make_store()
        db.query.return_value.filter.return_value.all.side_effect = OperationalError("SELECT", {}, Exception("x"))

        with pytest.raises(OperationalError):
            store.list_active()

        db.close.assert_called_once()


class TestUpsert:
    def test_existing_token_is_left_alone(self):
        store, db = make_store()
        user = User(id=uuid4(), telegram_token="cred-A")
        db.query.return_value.filter.return_value.first.return_value = user

        store.upsert(user.id, "cred-A")

        assert user.telegram_token == "cred-A"
        db.add.assert_not_called()
        db.commit.assert_called_once()

    def test_token_recorded_on_tenant(self):
        store, db = make_store()
        tenant_id = uuid4()
        user = User(id=tenant_id, telegram_token=None)
        db.query.return_value.filter.return_value.first.side_effect = [None, user]

        store.upsert(tenant_id, "cred-A")

        assert user.telegram_token == "cred-A"
        db.commit.assert_called_once()

    def test_missing_tenant_is_created(self):
        store, db = make_store()
        tenant_id = uuid4()
        db.query.return_value.filter.return_value.first.side_effect = [None, None]

        store.upsert(tenant_id, "cred-A")

        created = db.add.call_args[0][0]
        assert created.id == tenant_id
        assert created.role == ROLE_CLIENT
        assert created.telegram_token == "cred-A"
        db.commit.assert_called_once()

    def test_rollback_on_failure(self):
        store, db = make_store()
        db.query.return_value.filter.return_value.first.return_value = None
        db.commit.side_effect = OperationalError("INSERT", {}, Exception("x"))

        with pytest.raises(OperationalError):
            store.upsert(uuid4(), "cred-A")

        db.rollback.assert_called_once()
        db.close.assert_called_once()


class TestSetToken:
    def test_sets_token(self):
        store, db = make_store()
        user = User(id=uuid4(), telegram_token=None)
        db.query.return_value.filter.return_value.first.return_value = user

        store.set_token(user.id, "cred-A")

        assert user.telegram_token == "cred-A"
        db.commit.assert_called_once()

    def test_clears_token(self):
        store, db = make_store()
        user = User(id=uuid4(), telegram_token="cred-A")
        db.query.return_value.filter.return_value.first.return_value = user

        store.set_token(user.id, None)

        assert user.telegram_token is None

    def test_unknown_tenant(self):
        store, db = make_store()
        db.query.return_value.filter.return_value.first.return_value = None

        with pytest.raises(TenantNotFoundError):
            store.set_token(uuid4(), "cred-A")

        db.commit.assert_not_called()
        db.close.assert_called_once()
