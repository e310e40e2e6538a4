"""
Helper functions shared by routes and services
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Type, TypeVar

from fastapi import Request
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def error_messages(e: PydanticValidationError) -> list:
    """Flatten pydantic errors to field/message pairs the form can show inline"""
    messages = []
    for err in e.errors():
        field = ".".join(str(p) for p in err.get("loc", ()) if p != "body") or "form"
        message = err.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        messages.append({"field": field, "message": message})
    return messages


def parse_form(model: Type[M], data: dict, context: Optional[dict] = None) -> M:
    """Validate form input, raising the tracker's ValidationError on bad input"""
    try:
        return model.model_validate(data, context=context)
    except PydanticValidationError as e:
        errors = error_messages(e)
        raise ValidationError(errors[0]["message"] if errors else "Invalid input", errors) from e


def to_document(model: BaseModel) -> dict:
    """JSON-compatible dict for storage"""
    return model.model_dump(mode="json")


# ============== REQUEST DEPENDENCIES ==============
# Services are created once by create_app() and kept on app.state

def get_store(request: Request):
    return request.app.state.store


def get_scheduler(request: Request):
    return request.app.state.scheduler


def get_capability(request: Request):
    return request.app.state.capability


def get_fetcher(request: Request):
    return request.app.state.fetcher


def get_monitor(request: Request):
    return request.app.state.monitor


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


async def read_json(request: Request) -> dict:
    """Request body as a dict; anything else is a validation error"""
    try:
        body = await request.json()
    except ValueError as e:
        raise ValidationError("Request body must be valid JSON") from e
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body
