#!/usr/bin/env python3
"""
Walks a running server through a full group lifecycle:
group and members, expenses, balances, budget entries, and a scheduled action.

    python -m splitledger.app.main      # in another shell
    python smoke_client.py [base_url]
"""
import requests
import json
import sys
from datetime import date

BASE_URL = "http://localhost:8000/api/v1"

# Store created entities for reference in subsequent requests
STORED_IDS = {
    "group": None,
    "users": {},
    "transactions": [],
    "budget_entries": [],
    "scheduled_actions": [],
}

def print_header(title: str):
    print()
    print("=" * 50)
    print(f" {title} ".center(50, "="))
    print("=" * 50)

def make_request(method, endpoint, data=None, params=None):
    """Helper function to make requests to the API"""
    url = f"{BASE_URL}{endpoint}"

    print(f"\nMaking {method.upper()} request to {url}")
    if data:
        print(f"Request data: {json.dumps(data, indent=2)}")
    if params:
        print(f"Query params: {params}")

    try:
        response = requests.request(method.upper(), url, json=data, params=params)

        if 200 <= response.status_code < 300:
            if response.text:
                result = response.json()
                print(f"Response: {json.dumps(result, indent=2)}")
                return result
            return {}
        else:
            print(f"Error {response.status_code}: {response.text}")
            return None

    except requests.exceptions.RequestException as e:
        print(f"Request error: {str(e)}")
        return None
    except json.JSONDecodeError:
        print(f"Warning: Response was not valid JSON: {response.text}")
        return {}

def setup_group():
    print_header("Group and Members")

    group = make_request("post", "/groups/", {"name": "Smoke Test Flat", "budgets": ["house"]})
    if not group:
        return False
    STORED_IDS["group"] = group["id"]

    for name in ("Alice", "Bob", "Carol"):
        member = make_request("post", f"/groups/{group['id']}/members", {"display_name": name})
        if not member:
            return False
        STORED_IDS["users"][name] = member["id"]

    user_ids = list(STORED_IDS["users"].values())
    make_request("put", f"/groups/{group['id']}", {
        "budgets": ["house", "groceries"],
        "default_share": {user_ids[0]: 40, user_ids[1]: 30, user_ids[2]: 30},
        "default_currency": "USD",
    })
    return True

def record_expenses():
    print_header("Expenses")
    users = STORED_IDS["users"]
    group_id = STORED_IDS["group"]

    split = {users["Alice"]: 40, users["Bob"]: 30, users["Carol"]: 30}
    make_request("post", "/splits/compute", {
        "amount": 120,
        "currency": "USD",
        "paid_by_shares": {users["Alice"]: 120},
        "split_pct_shares": split,
    })

    for payer, amount, description in (("Alice", 120, "Groceries"), ("Bob", 45, "Cleaning supplies")):
        result = make_request("post", "/splits/", {
            "group_id": group_id,
            "description": description,
            "amount": amount,
            "currency": "USD",
            "paid_by_shares": {users[payer]: amount},
            "split_pct_shares": split,
        })
        if result:
            STORED_IDS["transactions"].append(result["transaction_id"])

    make_request("get", "/splits/", params={"group_id": group_id})

def check_balances():
    print_header("Balances")
    group_id = STORED_IDS["group"]

    for name, user_id in STORED_IDS["users"].items():
        print(f"\n-- {name} --")
        make_request("get", "/balances/", params={"group_id": group_id, "user_id": user_id})

    if STORED_IDS["transactions"]:
        make_request("delete", f"/splits/{STORED_IDS['transactions'][-1]}", params={"group_id": group_id})

    make_request("post", "/balances/rebuild", params={"group_id": group_id})
    make_request("get", "/balances/raw", params={"group_id": group_id})

def record_budget():
    print_header("Budget")
    group_id = STORED_IDS["group"]

    for description, amount in (("Monthly contribution", 1500), ("Rent", -1200), ("Power bill", -85.4)):
        result = make_request("post", "/budgets/", {
            "group_id": group_id,
            "name": "house",
            "description": description,
            "amount": amount,
            "currency": "USD",
        })
        if result:
            STORED_IDS["budget_entries"].append(result["entry_id"])

    make_request("get", "/budgets/totals", params={"group_id": group_id, "name": "house"})
    make_request("get", "/budgets/monthly", params={"group_id": group_id, "name": "house"})

def schedule_actions():
    print_header("Scheduled Actions")
    users = STORED_IDS["users"]
    group_id = STORED_IDS["group"]

    action = make_request("post", "/scheduled-actions/", {
        "user_id": users["Alice"],
        "action_type": "add_budget",
        "frequency": "monthly",
        "start_date": date.today().isoformat(),
        "action_data": {
            "description": "Internet",
            "amount": 60,
            "currency": "USD",
            "budget_name": "house",
            "type": "Debit",
        },
    })
    if not action:
        return
    STORED_IDS["scheduled_actions"].append(action["id"])

    make_request("post", f"/scheduled-actions/{action['id']}/run-now", params={"group_id": group_id})
    make_request("post", "/scheduled-actions/run-due")
    make_request("get", "/scheduled-actions/history", params={"group_id": group_id})

def main():
    if not setup_group():
        print("Could not create the group, stopping.")
        return 1

    record_expenses()
    check_balances()
    record_budget()
    schedule_actions()

    print_header("Created")
    print(json.dumps(STORED_IDS, indent=2))
    return 0

if __name__ == "__main__":
    if len(sys.argv) > 1:
        BASE_URL = sys.argv[1].rstrip("/")
    try:
        # Check if server is running
        requests.get(f"{BASE_URL}/scheduled-actions/", params={"group_id": "ping"}, timeout=5)
    except requests.ConnectionError:
        print(f"Error: Cannot connect to the API at {BASE_URL}")
        print("Make sure your FastAPI server is running.")
        sys.exit(1)
    sys.exit(main())
