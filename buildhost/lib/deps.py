import json
from typing import Awaitable, Callable, Optional, Type, TypeVar

from fastapi import Depends, Query, Request
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from buildhost.lib.database import get_db
from buildhost.lib.errors import MalformedInputError, UnauthenticatedError
from buildhost.lib.security import parse_api_key
from buildhost.models.user import User
from buildhost.services.user_service import UserService

M = TypeVar("M", bound=BaseModel)


async def get_current_user(
    request: Request,
    api_key: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> User:
    key = parse_api_key(request.headers.get("Authorization"), api_key)
    if not key:
        raise UnauthenticatedError("missing api_key")

    user = await UserService(db).authenticate(key)
    if not user:
        raise UnauthenticatedError("invalid api_key")

    return user


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "body"
    return f"invalid {field}: {first.get('msg', 'invalid value')}"


def body_of(model: Type[M]) -> Callable[[Request], Awaitable[M]]:
    """
    Dependency parsing the request body into ``model``.

    Clients send either JSON or urlencoded forms; both end up as the same
    pydantic model so route handlers never look at the content type.
    """
    async def parse(request: Request) -> M:
        content_type = request.headers.get("content-type", "")

        if "application/json" in content_type:
            raw = await request.body()
            try:
                data = json.loads(raw) if raw.strip() else {}
            except ValueError as e:
                raise MalformedInputError(f"invalid request body: {e}") from e
            if not isinstance(data, dict):
                raise MalformedInputError("invalid request body: expected an object")
        else:
            form = await request.form()
            data = {k: v for k, v in form.items() if isinstance(v, str)}

        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise MalformedInputError(_validation_message(e)) from e

    return parse
