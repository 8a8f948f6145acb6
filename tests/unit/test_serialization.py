"""
Unit tests for serialization.py module.

Tests request parsing and its error fields, JSON conversion of results
(Decimal, numpy, pandas), and batch file reading and writing.
"""

import json
from dataclasses import dataclass
from decimal import Decimal

import numpy as np
import pandas as pd
import pytest

from fincalc.exceptions import RateLimitedError, ValidationError
from fincalc.numeric import fire_number
from fincalc.requests import CalculationRequest
from fincalc.results import BatchItem, CalculationResult
from fincalc.serialization import (
    SCHEMA_VERSION,
    batch_item_to_dict,
    error_to_dict,
    load_batch_results,
    load_requests,
    request_from_dict,
    request_to_dict,
    result_to_dict,
    save_batch_results,
    save_requests,
    to_jsonable,
)


# ============================================================================
# REQUESTS
# ============================================================================

class TestRequestFromDict:

    def test_parses_envelope(self, fire_request):
        fire_request.update(seed=7, timeout_s=2.5, use_cache=False)

        request = request_from_dict(fire_request)

        assert request.kind == "fire_number"
        assert request.caller_id == "user-1"
        assert request.seed == 7
        assert request.timeout_s == 2.5
        assert request.use_cache is False

    def test_round_trip(self, fire_request):
        request = request_from_dict(fire_request)

        assert request_from_dict(request_to_dict(request)) == request

    def test_not_a_mapping(self):
        with pytest.raises(ValidationError):
            request_from_dict(["fire_number"])

    def test_missing_kind(self):
        with pytest.raises(ValidationError) as exc:
            request_from_dict({"params": {}})
        assert exc.value.field == "kind"

    def test_unknown_kind(self):
        with pytest.raises(ValidationError) as exc:
            request_from_dict({"kind": "lottery", "params": {}})
        assert exc.value.field == "kind"

    def test_unknown_top_level_field(self, fire_request):
        fire_request["priority"] = "high"

        with pytest.raises(ValidationError) as exc:
            request_from_dict(fire_request)
        assert exc.value.field == "priority"

    def test_params_must_be_mapping(self):
        with pytest.raises(ValidationError) as exc:
            request_from_dict({"kind": "fire_number", "params": [1, 2]})
        assert exc.value.field == "params"

    def test_wrong_type_names_field(self, fire_request):
        fire_request["params"]["annual_expenses"] = "lots"

        with pytest.raises(ValidationError) as exc:
            request_from_dict(fire_request)
        assert exc.value.field == "annual_expenses"

    def test_nested_field_path(self):
        data = {
            "kind": "debt_payoff",
            "params": {"monthly_budget": 500, "debts": [{"id": "a", "balance": 10}]},
        }

        with pytest.raises(ValidationError) as exc:
            request_from_dict(data)
        assert exc.value.field.startswith("debts.0.")

    def test_non_finite_rejected(self, fire_request):
        fire_request["params"]["annual_expenses"] = float("nan")

        with pytest.raises(ValidationError):
            request_from_dict(fire_request)


# ============================================================================
# RESULTS
# ============================================================================

@dataclass
class _Payload:
    amount: Decimal
    values: np.ndarray


class TestToJsonable:

    def test_decimal_is_exact_string(self):
        assert to_jsonable(Decimal("1250000.00")) == "1250000.00"

    def test_numpy(self):
        assert to_jsonable(np.float64(1.5)) == 1.5
        assert to_jsonable(np.array([1, 2])) == [1, 2]

    def test_non_finite_float(self):
        assert to_jsonable(float("inf")) is None

    def test_named_index_frame_keeps_index(self):
        frame = pd.DataFrame({"p50": [1.0, 2.0]}, index=pd.Index([1, 2], name="year"))

        assert to_jsonable(frame) == [{"year": 1, "p50": 1.0}, {"year": 2, "p50": 2.0}]

    def test_dataclass(self):
        data = to_jsonable(_Payload(Decimal("2.50"), np.array([0.5])))

        assert data == {"amount": "2.50", "values": [0.5]}

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            to_jsonable(object())


class TestResultDicts:

    def test_result_to_dict(self):
        result = CalculationResult(
            kind="fire_number",
            payload=fire_number(50_000, 0.04),
            cache_status="hit",
            compute_time_ms=1.23456,
            warnings=("w",),
            fingerprint="abc",
        )

        data = result_to_dict(result)

        assert data["payload"]["fire_number"] == "1250000.00"
        assert data["compute_time_ms"] == 1.235
        assert data["cache_status"] == "hit"
        assert data["warnings"] == ["w"]
        json.dumps(data)

    def test_error_to_dict(self):
        assert error_to_dict(ValidationError("bad", field="years")) == {
            "error_kind": "ValidationError", "message": "bad", "field": "years",
        }
        assert error_to_dict(RateLimitedError("slow down", retry_after=1.5))["retry_after"] == 1.5

    def test_batch_item(self):
        item = BatchItem(3, error=ValidationError("bad"))

        assert batch_item_to_dict(item) == {
            "index": 3, "error": {"error_kind": "ValidationError", "message": "bad"},
        }


# ============================================================================
# BATCH FILES
# ============================================================================

class TestBatchFiles:

    def test_save_and_load_requests(self, tmp_path, fire_request):
        path = tmp_path / "nested" / "requests.json"
        save_requests([CalculationRequest.build("fire_number", {"annual_expenses": 1}), fire_request], path)

        raw = load_requests(path)

        assert len(raw) == 2
        assert raw[0]["kind"] == "fire_number"
        assert raw[1] == fire_request

    def test_load_bare_list(self, tmp_path, fire_request):
        path = tmp_path / "requests.json"
        path.write_text(json.dumps([fire_request]))

        assert load_requests(path) == [fire_request]

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        with pytest.raises(ValidationError):
            load_requests(path)

    def test_missing_requests_key(self, tmp_path):
        path = tmp_path / "empty.json"
        path.write_text(json.dumps({"schema_version": SCHEMA_VERSION}))

        with pytest.raises(ValidationError):
            load_requests(path)

    def test_version_mismatch_warns(self, tmp_path, fire_request):
        path = tmp_path / "old.json"
        path.write_text(json.dumps({"schema_version": "0.1.0", "requests": [fire_request]}))

        with pytest.warns(UserWarning, match="schema version"):
            load_requests(path)

    def test_save_and_load_results(self, tmp_path):
        result = CalculationResult(kind="fire_number", payload=fire_number(40_000, 0.04))
        items = [BatchItem(0, result=result), BatchItem(1, error=ValidationError("bad", field="x"))]
        path = tmp_path / "out" / "results.json"

        save_batch_results(items, path)
        loaded = load_batch_results(path)

        assert loaded[0]["result"]["payload"]["fire_number"] == "1000000.00"
        assert loaded[1]["error"]["field"] == "x"
        assert json.loads(path.read_text())["schema_version"] == SCHEMA_VERSION
