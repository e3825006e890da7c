import pytest

from splitledger.app.exceptions import NotFoundError, ValidationError
from splitledger.app.models.models import Transaction, TransactionShare, UserBalance
from splitledger.app.schemas.splits import ExpenseCreate
from splitledger.app.services.split_service import (
    apply_expense, build_transaction_metadata, compute_split, delete_expense, stage_expense,
    validate_paid_amounts, validate_split_percentages
)

def _as_tuples(transfers):
    return [(t.debtor_id, t.creditor_id, t.amount, t.currency) for t in transfers]

def test_compute_split_even_single_payer():
    """One payer, 50/50 split: the other member owes half"""
    transfers = compute_split(100, {"a": 100}, {"a": 50, "b": 50}, "USD")
    assert _as_tuples(transfers) == [("b", "a", 50.0, "USD")]

def test_compute_split_three_way():
    transfers = compute_split(100, {"a": 100}, {"a": 40, "b": 30, "c": 30}, "EUR")
    assert _as_tuples(transfers) == [("b", "a", 30.0, "EUR"), ("c", "a", 30.0, "EUR")]

def test_compute_split_multiple_payers_proportional_to_credit():
    # nets: a +50, b +10, c -60
    transfers = compute_split(100, {"a": 70, "b": 30}, {"a": 20, "b": 20, "c": 60}, "USD")
    assert _as_tuples(transfers) == [("c", "a", 50.0, "USD"), ("c", "b", 10.0, "USD")]

def test_compute_split_user_at_zero_is_neither_side():
    # b paid exactly their share
    transfers = compute_split(90, {"a": 60, "b": 30}, {"a": 100 / 3, "b": 100 / 3, "c": 100 / 3}, "USD")
    assert _as_tuples(transfers) == [("c", "a", 30.0, "USD")]

def test_compute_split_conserves_debt_and_never_self_transfers():
    amount = 257.35
    paid = {"a": 100.0, "b": 157.35}
    pct = {"a": 10, "b": 25, "c": 35, "d": 30}
    transfers = compute_split(amount, paid, pct, "USD")

    assert all(t.debtor_id != t.creditor_id for t in transfers)
    assert all(t.amount > 0 for t in transfers)

    debt = sum(amount * pct[u] / 100 - paid.get(u, 0) for u in pct if amount * pct[u] / 100 - paid.get(u, 0) > 0.01)
    # one cent of rounding per emitted transfer at most
    assert abs(sum(t.amount for t in transfers) - debt) <= 0.01 * len(transfers)

def test_compute_split_payer_covers_only_self():
    assert compute_split(50, {"a": 50}, {"a": 100}, "USD") == []

def test_compute_split_rounds_to_cents():
    transfers = compute_split(10, {"a": 10}, {"a": 33.33, "b": 33.33, "c": 33.34}, "USD")
    assert _as_tuples(transfers) == [("b", "a", 3.33, "USD"), ("c", "a", 3.33, "USD")]

def test_validators_use_cent_tolerance():
    assert validate_split_percentages({"a": 33.333, "b": 33.333, "c": 33.334})
    assert not validate_split_percentages({"a": 50, "b": 49})
    assert validate_paid_amounts({"a": 60, "b": 39.995}, 100)
    assert not validate_paid_amounts({"a": 60}, 100)

def test_build_transaction_metadata():
    metadata = build_transaction_metadata(100, {"a": 100}, {"a": 40, "b": 60})
    assert metadata.paid_by_shares == {"a": 100}
    assert metadata.owed_amounts == {"a": 40.0, "b": 60.0}
    assert metadata.owed_to_amounts == {"a": 60.0}

def _expense(group, paid, pct, amount=100.0, currency="USD", description="Groceries"):
    return ExpenseCreate(
        group_id=group.id,
        description=description,
        amount=amount,
        currency=currency,
        paid_by_shares=paid,
        split_pct_shares=pct,
    )

def test_apply_expense_writes_transaction_shares_and_balances(db_session, test_group, test_user, test_user2):
    expense = _expense(test_group, {test_user.id: 100}, {test_user.id: 50, test_user2.id: 50})
    result = apply_expense(db_session, expense)

    assert result.created
    transaction = db_session.query(Transaction).filter(Transaction.id == result.transaction_id).one()
    assert transaction.transaction_metadata["owed_to_amounts"] == {test_user.id: 50.0}

    shares = db_session.query(TransactionShare).filter(TransactionShare.transaction_id == result.transaction_id).all()
    assert [(s.user_id, s.owed_to_user_id, s.amount) for s in shares] == [(test_user2.id, test_user.id, 50.0)]

    balance = db_session.query(UserBalance).filter(
        UserBalance.group_id == test_group.id,
        UserBalance.user_id == test_user2.id,
        UserBalance.owed_to_user_id == test_user.id,
        UserBalance.currency == "USD",
    ).one()
    assert balance.balance == 50.0

def test_apply_expense_accumulates_on_same_pair(db_session, test_group, test_user, test_user2):
    pct = {test_user.id: 50, test_user2.id: 50}
    apply_expense(db_session, _expense(test_group, {test_user.id: 100}, pct))
    apply_expense(db_session, _expense(test_group, {test_user.id: 40}, pct, amount=40))

    rows = db_session.query(UserBalance).filter(UserBalance.group_id == test_group.id).all()
    assert len(rows) == 1
    assert rows[0].balance == pytest.approx(70.0)

def test_stage_expense_with_existing_id_is_a_no_op(db_session, test_group, test_user, test_user2):
    expense = _expense(test_group, {test_user.id: 100}, {test_user.id: 50, test_user2.id: 50})
    apply_expense(db_session, expense, transaction_id="tx_fixed")

    replay = stage_expense(db_session, expense, transaction_id="tx_fixed")
    db_session.commit()

    assert not replay.created
    assert db_session.query(Transaction).count() == 1
    assert db_session.query(UserBalance).one().balance == 50.0

@pytest.mark.parametrize("paid, pct, currency, message", [
    ({"A": 100}, {"A": 50, "B": 40}, "USD", "Split percentages must total 100%"),
    ({"A": 90}, {"A": 50, "B": 50}, "USD", "Paid amounts must equal total amount"),
    ({"A": 100}, {"A": 50, "B": 50}, "XYZ", "Invalid currency: XYZ"),
])
def test_apply_expense_rejects_invalid_requests(db_session, test_group, test_user, test_user2, paid, pct, currency, message):
    ids = {"A": test_user.id, "B": test_user2.id}
    expense = _expense(
        test_group,
        {ids[k]: v for k, v in paid.items()},
        {ids[k]: v for k, v in pct.items()},
        currency=currency,
    )

    with pytest.raises(ValidationError) as exc_info:
        apply_expense(db_session, expense)

    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == message
    assert db_session.query(Transaction).count() == 0
    assert db_session.query(UserBalance).count() == 0

def test_apply_expense_rejects_non_member(db_session, test_group, test_user, outsider):
    expense = _expense(test_group, {test_user.id: 100}, {test_user.id: 50, outsider.id: 50})

    with pytest.raises(ValidationError) as exc_info:
        apply_expense(db_session, expense)

    assert "is not a member" in exc_info.value.detail
    assert db_session.query(Transaction).count() == 0

def test_apply_expense_unknown_group(db_session):
    expense = ExpenseCreate(
        group_id="missing", description="x", amount=10, currency="USD",
        paid_by_shares={"a": 10}, split_pct_shares={"a": 100},
    )
    with pytest.raises(NotFoundError):
        apply_expense(db_session, expense)

def test_delete_expense_reverses_balances(db_session, test_group, test_user, test_user2):
    result = apply_expense(
        db_session, _expense(test_group, {test_user.id: 100}, {test_user.id: 50, test_user2.id: 50})
    )

    delete_expense(db_session, test_group.id, result.transaction_id)

    transaction = db_session.query(Transaction).filter(Transaction.id == result.transaction_id).one()
    assert transaction.deleted_at is not None
    assert all(share.deleted_at is not None for share in transaction.shares)
    assert db_session.query(UserBalance).one().balance == pytest.approx(0.0)

def test_delete_expense_twice_is_not_found(db_session, test_group, test_user, test_user2):
    result = apply_expense(
        db_session, _expense(test_group, {test_user.id: 100}, {test_user.id: 50, test_user2.id: 50})
    )
    delete_expense(db_session, test_group.id, result.transaction_id)

    with pytest.raises(NotFoundError):
        delete_expense(db_session, test_group.id, result.transaction_id)

    # second attempt must not have reversed anything again
    assert db_session.query(UserBalance).one().balance == pytest.approx(0.0)

def test_delete_expense_wrong_group(db_session, test_group, test_user, test_user2, outsider):
    result = apply_expense(
        db_session, _expense(test_group, {test_user.id: 100}, {test_user.id: 50, test_user2.id: 50})
    )

    with pytest.raises(NotFoundError):
        delete_expense(db_session, outsider.group_id, result.transaction_id)

    assert db_session.query(UserBalance).one().balance == 50.0

def test_compute_endpoint(client):
    response = client.post("/api/v1/splits/compute", json={
        "amount": 100,
        "currency": "USD",
        "paid_by_shares": {"a": 100},
        "split_pct_shares": {"a": 40, "b": 30, "c": 30},
    })

    assert response.status_code == 200
    data = response.json()
    assert [(t["debtor_id"], t["creditor_id"], t["amount"]) for t in data] == [("b", "a", 30.0), ("c", "a", 30.0)]

def test_compute_endpoint_rejects_bad_percentages(client):
    response = client.post("/api/v1/splits/compute", json={
        "amount": 100,
        "currency": "USD",
        "paid_by_shares": {"a": 100},
        "split_pct_shares": {"a": 40},
    })
    assert response.status_code == 400

def test_compute_endpoint_rejects_unknown_currency(client):
    response = client.post("/api/v1/splits/compute", json={
        "amount": 100,
        "currency": "XYZ",
        "paid_by_shares": {"a": 100},
        "split_pct_shares": {"a": 50, "b": 50},
    })
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid currency: XYZ"

def test_expense_endpoints(client, db_session, test_group, test_user, test_user2):
    response = client.post("/api/v1/splits/", json={
        "group_id": test_group.id,
        "description": "Dinner",
        "amount": 80,
        "currency": "USD",
        "paid_by_shares": {test_user.id: 80},
        "split_pct_shares": {test_user.id: 50, test_user2.id: 50},
    })
    assert response.status_code == 200
    transaction_id = response.json()["transaction_id"]

    response = client.get(f"/api/v1/splits/?group_id={test_group.id}")
    assert response.status_code == 200
    data = response.json()
    assert len(data) == 1
    assert data[0]["id"] == transaction_id
    assert data[0]["metadata"]["paid_by_shares"] == {test_user.id: 80.0}
    assert data[0]["shares"][0]["amount"] == 40.0

    response = client.delete(f"/api/v1/splits/{transaction_id}?group_id={test_group.id}")
    assert response.status_code == 200

    response = client.get(f"/api/v1/splits/?group_id={test_group.id}")
    assert response.json() == []

    response = client.delete(f"/api/v1/splits/{transaction_id}?group_id={test_group.id}")
    assert response.status_code == 404
