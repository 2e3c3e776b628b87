"""LLM response parser utility.

Turns a raw LLM reply into a validated pydantic model. Models rarely return
bare JSON: the reply may be wrapped in a ```json fence or surrounded by
commentary, and list fields sometimes come back as a single string.
"""

import json
import re
from typing import TypeVar

import pydantic
from pydantic import BaseModel

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE = re.compile(r"```(?:json)?\s*")


class LLMParseError(Exception):
    """Raised when an LLM reply cannot be parsed into the expected schema.

    Attributes:
        raw: The original reply, for logging.
    """

    def __init__(self, message: str, raw: str):
        super().__init__(message)
        self.raw = raw


def parse_llm_json(response: str, schema: type[ModelT]) -> ModelT:
    """Parse an LLM reply into a validated instance of schema.

    Strategies, in order:
        1. Strip code fences and parse what remains.
        2. Parse the outermost {...} block (handles leading commentary).

    String values for list-typed fields are wrapped in a one-element list
    before validation.

    Args:
        response: Raw string returned by LLMClient.complete().
        schema: Pydantic model class to validate against.

    Returns:
        A validated instance of schema.

    Raises:
        LLMParseError: If no JSON object is found or it does not match the
            schema. The .raw attribute carries the original reply.
    """
    cleaned = _FENCE.sub("", response).replace("```", "").strip()

    data = _load_object(cleaned)
    if data is None:
        match = re.search(r"\{.*\}", cleaned, re.DOTALL)
        data = _load_object(match.group(0)) if match else None
    if data is None:
        raise LLMParseError(f"No JSON object found in LLM response for {schema.__name__}", raw=response)

    _listify_strings(data, schema)

    try:
        return schema.model_validate(data)
    except pydantic.ValidationError as exc:
        raise LLMParseError(f"LLM response does not match {schema.__name__}: {exc}", raw=response) from exc


# ── Private helpers ────────────────────────────────────────────────────────────

def _load_object(text: str) -> dict | None:
    try:
        result = json.loads(text)
    except json.JSONDecodeError:
        return None
    return result if isinstance(result, dict) else None


def _listify_strings(data: dict, schema: type[BaseModel]) -> None:
    for name, field in schema.model_fields.items():
        is_list = getattr(field.annotation, "__origin__", None) is list
        if is_list and isinstance(data.get(name), str):
            data[name] = [data[name]]
