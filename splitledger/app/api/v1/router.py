from fastapi import APIRouter
from splitledger.app.api.v1 import groups, splits, balances, budgets, scheduled_actions

api_router = APIRouter()
api_router.include_router(groups.router, prefix="/groups", tags=["groups"])
api_router.include_router(splits.router, prefix="/splits", tags=["splits"])
api_router.include_router(balances.router, prefix="/balances", tags=["balances"])
api_router.include_router(budgets.router, prefix="/budgets", tags=["budgets"])
api_router.include_router(scheduled_actions.router, prefix="/scheduled-actions", tags=["scheduled-actions"])
