"""Decoding of the Synology success/error envelope.

Every JSON response from the web API is wrapped the same way::

    {"success": true, "data": {...}}
    {"success": false, "error": {"code": 105}}

The envelope is decoded once per response. On success the ``data`` field is
materialized into the caller's shape; on failure the numeric code is raised
as ApiError, without further interpretation.
"""

import dataclasses
import json
import logging
import typing
from typing import Any, Optional, Union

import httpx

from .exceptions import DecodeError, error_for_code
from .models import Envelope

logger = logging.getLogger(__name__)


def decode_envelope(body: bytes) -> Envelope:
    """Parse a raw response body into an Envelope.

    Args:
        body: Response body bytes

    Returns:
        Envelope with success flag, data and error code

    Raises:
        DecodeError: If the body is not a well-formed envelope
    """
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, ValueError) as e:
        raise DecodeError(f"Response is not valid JSON: {e}") from e

    if not isinstance(payload, dict) or not isinstance(payload.get("success"), bool):
        raise DecodeError("Response is not an API envelope (missing boolean 'success')")

    if payload["success"]:
        return Envelope(success=True, data=payload.get("data"))

    error = payload.get("error")
    code = error.get("code") if isinstance(error, dict) else None
    if not isinstance(code, int) or isinstance(code, bool):
        raise DecodeError("Failure envelope without an integer error code")
    return Envelope(success=False, error_code=code, error_details=error.get("errors"))


def sniff_envelope(response: httpx.Response) -> Optional[Envelope]:
    """Detect an envelope in a response that may also carry raw bytes.

    Binary endpoints answer with raw bytes on success and a JSON envelope on
    failure. The body is treated as an envelope when it parses as one, either
    because the content type says JSON or because it starts like a JSON object.

    Args:
        response: Response whose body has been read

    Returns:
        Envelope, or None when the body is raw data
    """
    content_type = response.headers.get("content-type", "")
    body = response.content
    if "json" not in content_type and not body.lstrip().startswith(b"{"):
        return None
    try:
        return decode_envelope(body)
    except DecodeError:
        logger.debug(f"Body with content type '{content_type}' is not an envelope, keeping raw bytes")
        return None


def raise_for_envelope(envelope: Envelope) -> None:
    """Raise the ApiError for a failure envelope; no-op on success."""
    if envelope.success:
        return
    error = error_for_code(envelope.error_code, envelope.error_details)
    logger.error(str(error))
    raise error


def decode_payload(data: Any, shape: Any, path: str = "data") -> Any:
    """Materialize envelope data into the caller-specified shape.

    Supported shapes: None/Any (returned unchanged), dataclasses (built field
    by field, unknown keys ignored), Optional[X], List[X], Dict[str, X] and
    plain types (isinstance-checked).

    Args:
        data: Decoded JSON value
        shape: Target type
        path: Location used in error messages

    Returns:
        Value of the requested shape

    Raises:
        DecodeError: On missing required fields or type mismatches
    """
    if shape is None or shape is Any:
        return data

    if dataclasses.is_dataclass(shape):
        return _decode_dataclass(data, shape, path)

    origin = typing.get_origin(shape)
    args = typing.get_args(shape)

    if origin is Union:
        if data is None and type(None) in args:
            return None
        candidates = [arg for arg in args if arg is not type(None)]
        last_error = None
        for candidate in candidates:
            try:
                return decode_payload(data, candidate, path)
            except DecodeError as e:
                last_error = e
        raise last_error or DecodeError(f"{path}: no matching type")

    if origin is list:
        if not isinstance(data, list):
            raise DecodeError(f"{path}: expected list, got {type(data).__name__}")
        item_shape = args[0] if args else None
        return [decode_payload(item, item_shape, f"{path}[{i}]") for i, item in enumerate(data)]

    if origin is dict:
        if not isinstance(data, dict):
            raise DecodeError(f"{path}: expected object, got {type(data).__name__}")
        value_shape = args[1] if len(args) == 2 else None
        return {key: decode_payload(value, value_shape, f"{path}.{key}") for key, value in data.items()}

    if shape is float:
        if isinstance(data, (int, float)) and not isinstance(data, bool):
            return float(data)
        raise DecodeError(f"{path}: expected number, got {type(data).__name__}")

    if shape is int:
        if isinstance(data, int) and not isinstance(data, bool):
            return data
        raise DecodeError(f"{path}: expected integer, got {type(data).__name__}")

    if isinstance(shape, type):
        if not isinstance(data, shape):
            raise DecodeError(f"{path}: expected {shape.__name__}, got {type(data).__name__}")
        return data

    return data


def _decode_dataclass(data: Any, shape: type, path: str) -> Any:
    if not isinstance(data, dict):
        raise DecodeError(f"{path}: expected object for {shape.__name__}, got {type(data).__name__}")

    hints = typing.get_type_hints(shape)
    kwargs = {}
    for f in dataclasses.fields(shape):
        if not f.init:
            continue
        # Fields whose JSON key differs from the attribute name carry it as metadata["wire"]
        key = f.metadata.get("wire", f.name)
        if key in data:
            kwargs[f.name] = decode_payload(data[key], hints.get(f.name), f"{path}.{key}")
        elif f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
            raise DecodeError(f"{path}: missing required field '{key}' for {shape.__name__}")
    return shape(**kwargs)
