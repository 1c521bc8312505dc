# src/acctstore/api/errors.py
from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from acctstore.errors import ErrorCode, StorageError

_STATUS_BY_CODE = {
    ErrorCode.ACCOUNT_DATA_NOT_FOUND: 404,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.DESERIALIZATION: 422,
}


def status_for(err: StorageError) -> int:
    return _STATUS_BY_CODE.get(err.code, 500)


async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(exc),
        content={"ok": False, "error": {"code": exc.code, "message": exc.reason, "details": exc.details}},
    )
