"""Push API — producers publish here.

Learn: POST /push?token=<routing key> with a form body:
- msg (required, non-blank)
- pusher, type, level, date (optional strings, passed through as-is)

Status codes:
- 200: channel exists, message broadcast (even to zero subscribers)
- 400: blank msg or blank token
- 404: nobody has ever connected with this token
"""

from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Query

from pushall.realtime.registry import get_registry
from pushall.schemas.push import PushResult
from pushall.services.push_service import (
    ChannelNotFoundError,
    EmptyMessageError,
    MissingTokenError,
    PushService,
)

router = APIRouter()


def _get_service() -> PushService:
    return PushService(registry=get_registry())


@router.post("/push", response_model=PushResult)
async def push(
    token: str = Query("", description="Routing key the clients connected with"),
    msg: str = Form(""),
    pusher: Optional[str] = Form(None),
    type_: Optional[str] = Form(None, alias="type"),
    level: Optional[str] = Form(None),
    date: Optional[str] = Form(None),
    svc: PushService = Depends(_get_service),
):
    """Broadcast a notification to every client connected with `token`."""
    try:
        receivers = await svc.push(
            token=token,
            msg=msg,
            pusher=pusher,
            type=type_,
            level=level,
            date=date,
        )
    except (EmptyMessageError, MissingTokenError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ChannelNotFoundError:
        raise HTTPException(status_code=404, detail="No client connected with this token")

    return PushResult(token=token, subscribers=receivers)
