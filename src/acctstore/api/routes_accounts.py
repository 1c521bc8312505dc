# src/acctstore/api/routes_accounts.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Request

from acctstore.accounts import get_account_meta_for_name, list_accounts
from acctstore.api.schemas import AccountListResponse, AccountOut, AccountResponse
from acctstore.config import StoreConfig

router = APIRouter()

_log = logging.getLogger("acctstore.api")


def _cfg(request: Request) -> StoreConfig:
    return request.app.state.cfg


@router.get("/health")
def v1_health():
    return {"ok": True}


@router.get("/accounts", response_model=AccountListResponse)
def v1_accounts_list(request: Request) -> AccountListResponse:
    metas = list_accounts(_cfg(request).store_dir, logger=_log)
    return AccountListResponse(accounts=[AccountOut.from_meta(m) for m in metas])


@router.get("/accounts/{account_id}", response_model=AccountResponse)
def v1_account_get(account_id: str, request: Request) -> AccountResponse:
    meta = get_account_meta_for_name(_cfg(request).store_dir, account_id, logger=_log)
    return AccountResponse(account=AccountOut.from_meta(meta))
