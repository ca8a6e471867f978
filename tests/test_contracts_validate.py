from __future__ import annotations

import json
from pathlib import Path

import pytest

from successmap.contracts import validate


def _examples_dir() -> Path:
    repo_root = Path(__file__).resolve().parents[1]
    return repo_root / "contracts" / "examples"


def _schema_for(p: Path) -> str:
    name = p.name
    if name.startswith("goal_map_save_request"):
        return validate.GOAL_MAP_SAVE_REQUEST_V1
    if name.startswith("goal_map_complete_request"):
        return validate.GOAL_MAP_COMPLETE_REQUEST_V1
    return validate.GOAL_MAP_V1


def test_examples_ok_pass() -> None:
    ok_files = sorted(_examples_dir().glob("*_ok.json"))
    assert ok_files, "no *_ok.json examples found"

    for p in ok_files:
        code, msg = validate.validate_payload(json.loads(p.read_text(encoding="utf-8")), _schema_for(p))
        assert code == validate.EXIT_OK, f"{p.name}: {msg}"


def test_examples_bad_fail() -> None:
    bad_files = sorted(_examples_dir().glob("*_bad.json"))
    assert bad_files, "no *_bad.json examples found"

    for p in bad_files:
        code, msg = validate.validate_payload(json.loads(p.read_text(encoding="utf-8")), _schema_for(p))
        assert code == validate.EXIT_INVALID, f"{p.name}: {msg}"


def test_error_message_contains_schema_and_json_pointer() -> None:
    doc = {"projectId": "p", "nodes": [{"text": "no id"}]}
    code, msg = validate.validate_payload(doc, validate.GOAL_MAP_V1)
    assert code == validate.EXIT_INVALID
    assert "goal_map_schema_v1.json" in msg
    assert "/nodes/0" in msg


def test_save_request_resolves_cross_file_refs() -> None:
    # $ref into goal_map_schema_v1.json#/$defs/node must be resolved via the registry.
    body = {"data": {"goals": [{"text": "missing id"}]}}
    code, msg = validate.validate_payload(body, validate.GOAL_MAP_SAVE_REQUEST_V1)
    assert code == validate.EXIT_INVALID
    assert "/data/goals/0" in msg


def test_unknown_schema_is_usage_error() -> None:
    code, msg = validate.validate_payload({}, "nope_v1")
    assert code == validate.EXIT_USAGE_OR_ERROR
    assert "Unknown schema" in msg


def test_require_valid_raises() -> None:
    with pytest.raises(validate.ContractInvalid, match="INVALID"):
        validate.require_valid({"nodes": "x"}, validate.GOAL_MAP_V1)


def test_cli_main(tmp_path: Path) -> None:
    ok = _examples_dir() / "goal_map_ok.json"
    assert validate.main([str(ok)]) == validate.EXIT_OK

    bad = _examples_dir() / "goal_map_save_request_bad.json"
    assert validate.main(["--schema", validate.GOAL_MAP_SAVE_REQUEST_V1, str(bad)]) == validate.EXIT_INVALID

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    assert validate.main([str(broken)]) == validate.EXIT_USAGE_OR_ERROR
