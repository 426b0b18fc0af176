from fastapi.responses import JSONResponse

from apps.backend.services.points.models import Result

RESULT_STATUS = {
    "role": 403,
    "scope": 403,
    "unauthorized": 403,
    "invalid-amount": 400,
    "validation": 400,
    "not-found": 404,
}


def ok(data=None, meta=None, message=None):
    content = {
        "ok": True,
        "data": data,
        "meta": meta or {},
    }
    if message:
        content["message"] = message
    return JSONResponse(content=content)


def error(message: str, code: str = "error", status: int = 400, **extra):
    return JSONResponse(
        status_code=status,
        content={
            "ok": False,
            "error": code,
            "message": message,
            **extra,
        },
    )


def from_result(result: Result):
    if result.ok:
        return ok(result.data, meta=result.meta, message=result.message or None)
    return error(result.message, code=result.error or "error", status=RESULT_STATUS.get(result.error or "", 400))
