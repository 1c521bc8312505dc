# src/acctstore/api/schemas.py
"""Pydantic response schemas for the accounts API."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from acctstore.accounts import AccountMetadata


class AccountOut(BaseModel):
    account_id: str = Field(..., description="Account directory name")
    name: str = ""
    avatar_cid: str = ""
    public_key: str = ""
    last_opened: int = Field(default=0, description="Unix ms")
    creation_date: int = Field(default=0, description="Unix ms")
    error: str = Field(default="", description="Set when the account metadata could not be loaded")

    @classmethod
    def from_meta(cls, meta: AccountMetadata) -> "AccountOut":
        return cls(
            account_id=meta.account_id,
            name=meta.name,
            avatar_cid=meta.avatar_cid,
            public_key=meta.public_key,
            last_opened=meta.last_opened,
            creation_date=meta.creation_date,
            error=meta.error,
        )


class AccountListResponse(BaseModel):
    ok: bool = True
    accounts: List[AccountOut]


class AccountResponse(BaseModel):
    ok: bool = True
    account: AccountOut
