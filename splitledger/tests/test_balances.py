import threading

import pytest

from splitledger.app.exceptions import ConsistencyError, NotFoundError
from splitledger.app.models.models import UserBalance
from splitledger.app.schemas.splits import ExpenseCreate, SplitTransfer
from splitledger.app.services.balance_service import (
    apply_transfers, get_raw_balances, get_user_balances, group_write_lock, rebuild_balances
)
from splitledger.app.services.split_service import apply_expense, delete_expense

def _pay(db_session, group, payer, amount, pct, currency="USD"):
    return apply_expense(db_session, ExpenseCreate(
        group_id=group.id,
        description="Shared",
        amount=amount,
        currency=currency,
        paid_by_shares={payer.id: amount},
        split_pct_shares=pct,
    ))

def _snapshot(db_session, group_id):
    return sorted(
        (row.user_id, row.owed_to_user_id, row.currency, round(row.balance, 2))
        for row in get_raw_balances(db_session, group_id)
    )

def test_apply_transfers_rejects_other_signs(db_session, test_group):
    transfer = SplitTransfer(debtor_id="a", creditor_id="b", amount=1, currency="USD")
    with pytest.raises(ValueError):
        apply_transfers(db_session, [transfer], test_group.id, sign=2)

def test_directed_rows_are_kept_and_netted_on_read(db_session, test_group, test_user, test_user2):
    half = {test_user.id: 50, test_user2.id: 50}
    _pay(db_session, test_group, test_user, 100, half)
    _pay(db_session, test_group, test_user2, 30, half)

    assert _snapshot(db_session, test_group.id) == sorted([
        (test_user2.id, test_user.id, "USD", 50.0),
        (test_user.id, test_user2.id, "USD", 15.0),
    ])
    assert get_user_balances(db_session, test_group.id, test_user.id) == {test_user2.id: {"USD": 35.0}}
    assert get_user_balances(db_session, test_group.id, test_user2.id) == {test_user.id: {"USD": -35.0}}

def test_currencies_are_never_mixed(db_session, test_group, test_user, test_user2):
    half = {test_user.id: 50, test_user2.id: 50}
    _pay(db_session, test_group, test_user, 100, half, currency="USD")
    _pay(db_session, test_group, test_user, 100, half, currency="EUR")

    assert get_user_balances(db_session, test_group.id, test_user2.id) == {
        test_user.id: {"USD": -50.0, "EUR": -50.0}
    }

def test_self_rows_are_ignored_when_netting(db_session, test_group, test_user):
    db_session.add(UserBalance(
        group_id=test_group.id, user_id=test_user.id, owed_to_user_id=test_user.id, currency="USD", balance=12.0
    ))
    db_session.commit()

    assert get_user_balances(db_session, test_group.id, test_user.id) == {}

def test_create_then_delete_restores_prior_balances(db_session, test_group, test_user, test_user2, test_user3):
    pct = {test_user.id: 40, test_user2.id: 30, test_user3.id: 30}
    _pay(db_session, test_group, test_user, 100, pct)
    before = _snapshot(db_session, test_group.id)

    result = _pay(db_session, test_group, test_user2, 45.5, pct)
    delete_expense(db_session, test_group.id, result.transaction_id)

    after = [row for row in _snapshot(db_session, test_group.id) if row[3] != 0]
    assert after == before

def test_rebuild_matches_incremental_and_is_idempotent(db_session, test_group, test_user, test_user2, test_user3):
    pct = {test_user.id: 40, test_user2.id: 30, test_user3.id: 30}
    _pay(db_session, test_group, test_user, 100, pct)
    _pay(db_session, test_group, test_user2, 60, pct)
    deleted = _pay(db_session, test_group, test_user3, 25, pct)
    delete_expense(db_session, test_group.id, deleted.transaction_id)

    incremental = [row for row in _snapshot(db_session, test_group.id) if row[3] != 0]

    rows = rebuild_balances(db_session, test_group.id)
    first = _snapshot(db_session, test_group.id)
    assert rows == len(first)
    assert first == incremental

    rebuild_balances(db_session, test_group.id)
    assert _snapshot(db_session, test_group.id) == first

def test_rebuild_unknown_group(db_session):
    with pytest.raises(NotFoundError):
        rebuild_balances(db_session, "missing")

def test_rebuild_times_out_while_group_is_being_written(db_session, test_group):
    held = threading.Event()
    release = threading.Event()

    def writer():
        with group_write_lock(test_group.id):
            held.set()
            release.wait(5)

    thread = threading.Thread(target=writer)
    thread.start()
    try:
        assert held.wait(5)
        with pytest.raises(ConsistencyError) as exc_info:
            rebuild_balances(db_session, test_group.id, timeout=0.1)
        assert exc_info.value.status_code == 409
    finally:
        release.set()
        thread.join()

    # lock is free again
    assert rebuild_balances(db_session, test_group.id, timeout=0.1) == 0

def test_balance_endpoints(client, db_session, test_group, test_user, test_user2):
    _pay(db_session, test_group, test_user, 100, {test_user.id: 50, test_user2.id: 50})

    response = client.get(f"/api/v1/balances/?group_id={test_group.id}&user_id={test_user2.id}")
    assert response.status_code == 200
    assert response.json() == {test_user.id: {"USD": -50.0}}

    response = client.get(f"/api/v1/balances/raw?group_id={test_group.id}")
    assert response.status_code == 200
    data = response.json()
    assert len(data) == 1
    assert data[0]["user_id"] == test_user2.id
    assert data[0]["balance"] == 50.0

    response = client.post(f"/api/v1/balances/rebuild?group_id={test_group.id}")
    assert response.status_code == 200
    assert response.json() == {"group_id": test_group.id, "rows": 1}
