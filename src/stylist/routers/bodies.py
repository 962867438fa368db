"""JSON body parsing that reports failures as ``{"error": ...}`` payloads."""

from __future__ import annotations

from typing import TypeVar

from fastapi import Request
from pydantic import BaseModel, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class InvalidRequestBody(ValueError):
    """Raised when a request body is not valid JSON or fails validation."""


def describe_validation_error(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "body"
        problems.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "Invalid request body (" + "; ".join(problems) + ")"


async def parse_body(request: Request, model: type[ModelT]) -> ModelT:
    """Validate the request's JSON body against ``model``.

    Raises `InvalidRequestBody` with a readable message naming each bad field.
    """

    try:
        raw = await request.json()
    except ValueError as exc:
        raise InvalidRequestBody("Request body must be valid JSON") from exc

    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise InvalidRequestBody(describe_validation_error(exc)) from exc


__all__ = ["InvalidRequestBody", "describe_validation_error", "parse_body"]
