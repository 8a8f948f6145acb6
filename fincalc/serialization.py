"""
Serialization module for fincalc requests and results.

Purpose
-------
Converts calculation requests and results to and from JSON-compatible
dictionaries, and reads/writes batch files.

Supports serialization of:
- CalculationRequest (kind + flat params + envelope fields)
- CalculationResult (payload dataclasses, Decimal amounts, numpy arrays,
  pandas frames)
- Batch outcomes (per-item result or error)

Design Principles
-----------------
- Exact money: Decimal amounts are written as strings, never floats
- Human-readable: indented JSON for batch files
- Reproducible: seeds travel with requests
- Backward compatible: files carry a schema version

Example
-------
>>> from pathlib import Path
>>> from fincalc.serialization import load_requests, save_batch_results
>>> raw = load_requests(Path("requests.json"))
>>> items = service.calculate_batch(raw)
>>> save_batch_results(items, Path("results.json"))
"""

from __future__ import annotations

import dataclasses
import json
import math
import warnings
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Union

import numpy as np
import pandas as pd
import pydantic

from .exceptions import FinCalcError, ValidationError
from .requests import CalculationRequest
from .results import BatchItem, CalculationResult
from .types import BatchFileDict, BatchItemDict, ErrorDict, RequestDict, ResultDict

__all__ = [
    "SCHEMA_VERSION",
    "to_jsonable",
    "request_from_dict",
    "request_to_dict",
    "result_to_dict",
    "error_to_dict",
    "batch_item_to_dict",
    "load_requests",
    "save_requests",
    "save_batch_results",
    "load_batch_results",
]


# ---------------------------------------------------------------------------
# Schema Version
# ---------------------------------------------------------------------------

SCHEMA_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# Generic conversion
# ---------------------------------------------------------------------------

def to_jsonable(obj: Any) -> Any:
    """
    Recursively convert *obj* into JSON-compatible values.

    - Decimal → str (exact)
    - numpy scalars/arrays → float/int/list
    - pandas DataFrame → list of records (index included); Series → dict
    - dataclasses and pydantic models → dict
    - non-finite floats → None
    """
    if obj is None or isinstance(obj, (bool, str, int)):
        return obj
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, np.generic):
        return to_jsonable(obj.item())
    if isinstance(obj, np.ndarray):
        return [to_jsonable(v) for v in obj.tolist()]
    if isinstance(obj, pd.DataFrame):
        frame = obj.reset_index() if obj.index.name is not None else obj
        return [to_jsonable(r) for r in frame.to_dict(orient="records")]
    if isinstance(obj, pd.Series):
        return {str(k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, pydantic.BaseModel):
        return to_jsonable(obj.model_dump(mode="python"))
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_jsonable(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    if isinstance(obj, Mapping):
        return {str(k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in obj]
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

_ENVELOPE = ("caller_id", "seed", "timeout_s", "use_cache")


def request_from_dict(data: Mapping[str, Any]) -> CalculationRequest:
    """
    Parse a RequestDict into a CalculationRequest.

    Raises
    ------
    ValidationError
        Missing kind, unknown kind, unknown fields, or wrongly typed values.
        ``field`` names the offending parameter path.
    """
    if not isinstance(data, Mapping):
        raise ValidationError(f"request must be a mapping, got {type(data).__name__}")
    if "kind" not in data:
        raise ValidationError("request is missing 'kind'", field="kind")
    unknown = set(data) - {"kind", "params", *_ENVELOPE}
    if unknown:
        raise ValidationError(f"unknown request fields: {sorted(unknown)}", field=sorted(unknown)[0])
    params = data.get("params", {})
    if not isinstance(params, Mapping):
        raise ValidationError("'params' must be a mapping", field="params")
    envelope = {k: data[k] for k in _ENVELOPE if k in data}
    try:
        return CalculationRequest.build(data["kind"], params, **envelope)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        if first.get("type") == "union_tag_invalid":
            raise ValidationError(f"unknown calculation kind {data['kind']!r}", field="kind") from None
        loc = [str(p) for p in first.get("loc", ()) if p != "params"]
        # Drop the union tag pydantic inserts into the location.
        if loc and loc[0] == str(data["kind"]):
            loc = loc[1:]
        path = ".".join(loc) or None
        raise ValidationError(f"{path or 'request'}: {first.get('msg')}", field=path) from None


def request_to_dict(request: CalculationRequest) -> RequestDict:
    """Convert a CalculationRequest back to its flat JSON form."""
    params = request.params.model_dump(mode="json", exclude={"kind"})
    return {
        "kind": request.kind,
        "params": params,
        "caller_id": request.caller_id,
        "seed": request.seed,
        "timeout_s": request.timeout_s,
        "use_cache": request.use_cache,
    }


# ---------------------------------------------------------------------------
# Results and errors
# ---------------------------------------------------------------------------

def result_to_dict(result: CalculationResult) -> ResultDict:
    """Convert a CalculationResult to JSON-compatible form."""
    return {
        "kind": result.kind,
        "payload": to_jsonable(result.payload),
        "cache_status": result.cache_status,
        "compute_time_ms": round(result.compute_time_ms, 3),
        "warnings": list(result.warnings),
        "fingerprint": result.fingerprint,
    }


def error_to_dict(error: FinCalcError) -> ErrorDict:
    data: ErrorDict = {"error_kind": error.error_kind, "message": str(error)}
    if getattr(error, "field", None) is not None:
        data["field"] = error.field
    if getattr(error, "retry_after", None) is not None:
        data["retry_after"] = error.retry_after
    return data


def batch_item_to_dict(item: BatchItem) -> BatchItemDict:
    data: BatchItemDict = {"index": item.index}
    if item.error is not None:
        data["error"] = error_to_dict(item.error)
    else:
        data["result"] = result_to_dict(item.result)
    return data


# ---------------------------------------------------------------------------
# Batch files
# ---------------------------------------------------------------------------

def _check_version(data: Mapping[str, Any]) -> None:
    schema_version = data.get("schema_version", "0.0.0")
    if schema_version != SCHEMA_VERSION:
        warnings.warn(
            f"Batch schema version {schema_version} differs from current "
            f"version {SCHEMA_VERSION}. May encounter compatibility issues.",
            UserWarning,
        )


def load_requests(path: Path) -> List[Dict[str, Any]]:
    """
    Load raw request mappings from a batch file.

    The file is either a BatchFileDict (``{"schema_version", "requests"}``)
    or a bare list of RequestDicts. Items are returned unparsed so that an
    invalid item becomes a per-item error in the batch, not a load failure.

    Raises
    ------
    ValidationError
        The file is not valid JSON or has no request list.
    """
    path = Path(path)
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"{path}: invalid JSON ({exc.msg}, line {exc.lineno})") from None

    if isinstance(data, list):
        return data
    if not isinstance(data, dict) or not isinstance(data.get("requests"), list):
        raise ValidationError(f"{path}: expected a list of requests or a 'requests' key", field="requests")
    _check_version(data)
    return data["requests"]


def save_requests(requests: Iterable[Union[CalculationRequest, Mapping[str, Any]]], path: Path) -> None:
    """Write requests to a batch file."""
    payload: BatchFileDict = {
        "schema_version": SCHEMA_VERSION,
        "requests": [
            request_to_dict(r) if isinstance(r, CalculationRequest) else dict(r)
            for r in requests
        ],
    }
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(payload, f, indent=2)


def save_batch_results(items: Iterable[BatchItem], path: Path) -> None:
    """Write batch outcomes (results and errors) to a JSON file."""
    payload: BatchFileDict = {
        "schema_version": SCHEMA_VERSION,
        "results": [batch_item_to_dict(item) for item in items],
    }
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(payload, f, indent=2)


def load_batch_results(path: Path) -> List[BatchItemDict]:
    """Load batch outcomes written by ``save_batch_results`` (as plain dicts)."""
    with open(Path(path), "r") as f:
        data = json.load(f)
    _check_version(data)
    return data.get("results", [])
