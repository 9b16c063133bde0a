"""
costing_engines.tracer -- ENGINE_TRACE records for allocation stages.

Responsibility:
    ``@traced_engine`` wraps a pure stage method and emits one ENGINE_TRACE
    record per call: stage engine name and version, a fingerprint of the
    inputs that determine the result, wall time, and whether the call raised.

Architecture position:
    Engines -- support code for the pure calculation layer.  Reads keyword
    arguments and logs; never touches the database or mutates inputs.

Invariants enforced:
    - The fingerprint depends only on input values: mapping keys are sorted,
      sequence order is kept, Decimals are normalized so 1.0 and 1.00 hash
      alike.
    - A failing engine call is still traced (outcome="error") and the
      exception propagates unchanged.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import logging
import time
from collections.abc import Callable, Mapping
from decimal import Decimal
from typing import Any

_logger = logging.getLogger("costing_kernel.engines.tracer")

FINGERPRINT_LENGTH = 16


def _feed(digest: "hashlib._Hash", value: Any) -> None:
    """Write a canonical encoding of *value* into *digest*."""
    if value is None or isinstance(value, bool):
        digest.update(repr(value).encode())
    elif isinstance(value, Decimal):
        digest.update(b"D" + str(value.normalize() if value else Decimal(0)).encode())
    elif isinstance(value, Mapping):
        digest.update(b"{")
        for key in sorted(value, key=str):
            digest.update(str(key).encode() + b":")
            _feed(digest, value[key])
            digest.update(b",")
        digest.update(b"}")
    elif isinstance(value, (set, frozenset)):
        _feed(digest, sorted(value, key=str))
    elif isinstance(value, (list, tuple)):
        digest.update(b"[")
        for item in value:
            _feed(digest, item)
            digest.update(b",")
        digest.update(b"]")
    elif dataclasses.is_dataclass(value) and not isinstance(value, type):
        _feed(digest, {f.name: getattr(value, f.name) for f in dataclasses.fields(value)})
    else:
        digest.update(str(value).encode())


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """SHA-256 prefix over the named keyword arguments (absent ones hash as None)."""
    digest = hashlib.sha256()
    for name in fingerprint_fields:
        digest.update(name.encode() + b"=")
        _feed(digest, kwargs.get(name))
        digest.update(b"|")
    return digest.hexdigest()[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Trace every call of a stage engine method.

    Args:
        engine_name: e.g. "resource_allocation".
        engine_version: bumped whenever the engine's arithmetic changes.
        fingerprint_fields: keyword arguments that feed the input fingerprint.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = (
                compute_input_fingerprint(fingerprint_fields, kwargs)
                if fingerprint_fields
                else ""
            )
            outcome = "error"
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
                outcome = "ok"
                return result
            finally:
                _logger.info(
                    "ENGINE_TRACE",
                    extra={
                        "trace_type": "ENGINE_TRACE",
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": fingerprint,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                        "outcome": outcome,
                        "function": func.__qualname__,
                    },
                )

        return wrapper

    return decorator
