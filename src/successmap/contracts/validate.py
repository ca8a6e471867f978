from __future__ import annotations

import argparse
import json
import os
import sys
from functools import lru_cache
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

EXIT_OK = 0
EXIT_USAGE_OR_ERROR = 1
EXIT_INVALID = 2

GOAL_MAP_V1 = "goal_map_v1"
GOAL_MAP_SAVE_REQUEST_V1 = "goal_map_save_request_v1"
GOAL_MAP_COMPLETE_REQUEST_V1 = "goal_map_complete_request_v1"

SCHEMA_TO_FILE = {
    GOAL_MAP_V1: "goal_map_schema_v1.json",
    GOAL_MAP_SAVE_REQUEST_V1: "goal_map_save_request_schema_v1.json",
    GOAL_MAP_COMPLETE_REQUEST_V1: "goal_map_complete_request_schema_v1.json",
}


class ContractInvalid(ValueError):
    """Payload does not satisfy its JSON Schema contract."""


def _format_json_pointer(err: ValidationError) -> str:
    # RFC 6901. Root is "" but we print "/" for readability.
    if not err.path:
        return "/"

    def esc(token: str) -> str:
        return token.replace("~", "~0").replace("/", "~1")

    parts: list[str] = []
    for part in err.path:
        parts.append(str(part) if isinstance(part, int) else esc(str(part)))
    return "/" + "/".join(parts)


def _format_reason(err: ValidationError) -> str:
    msg = err.message
    if isinstance(err.instance, (str, int, float, bool)) or err.instance is None:
        msg = f"{msg} (got={err.instance!r})"
    return msg


def _find_repo_root() -> Path:
    candidates: list[Path] = []
    env_root = os.getenv("SMAP_REPO")
    if env_root:
        candidates.append(Path(env_root))
    cwd = Path.cwd()
    candidates.append(cwd)
    candidates.extend(cwd.parents)

    here = Path(__file__).resolve()
    candidates.append(here)
    candidates.extend(here.parents)

    for c in candidates:
        if c.is_dir() and (c / "contracts" / SCHEMA_TO_FILE[GOAL_MAP_V1]).is_file():
            return c

    return cwd


def contracts_dir() -> Path:
    return _find_repo_root() / "contracts"


def _load_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


@lru_cache(maxsize=8)
def _build_registry(contracts_dir_str: str) -> Registry:
    registry = Registry()
    for schema_path in sorted(Path(contracts_dir_str).rglob("*.json")):
        schema = _load_json(schema_path)
        schema_id = schema.get("$id") if isinstance(schema, dict) else None
        if not schema_id:
            continue
        resource = Resource.from_contents(schema, default_specification=DRAFT202012)
        registry = registry.with_resource(schema_id, resource)
    return registry


def schema_path_for(schema: str) -> Path:
    filename = SCHEMA_TO_FILE.get(schema)
    if not filename:
        raise ValueError(f"Unknown schema: {schema!r}")
    p = contracts_dir() / filename
    if not p.is_file():
        raise FileNotFoundError(f"missing schema: {p.as_posix()}")
    return p


def validate_payload(payload: Any, schema: str) -> tuple[int, str]:
    """Validate an in-memory JSON payload and return (exit_code, message)."""
    try:
        resolved = schema_path_for(schema)
    except (ValueError, FileNotFoundError) as e:
        return (EXIT_USAGE_OR_ERROR, f"ERROR: {e}")

    registry = _build_registry(resolved.parent.as_posix())
    validator = Draft202012Validator(_load_json(resolved), registry=registry)
    errors = sorted(validator.iter_errors(payload), key=lambda e: (list(e.path), e.message))
    if errors:
        first = errors[0]
        msg = f"INVALID: {resolved.name} at {_format_json_pointer(first)}: {_format_reason(first)}"
        return (EXIT_INVALID, msg)
    return (EXIT_OK, f"OK: {resolved.name}")


def require_valid(payload: Any, schema: str) -> None:
    code, msg = validate_payload(payload, schema)
    if code != EXIT_OK:
        raise ContractInvalid(msg)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="python -m successmap.contracts.validate")
    parser.add_argument("json_path", help="Path to a JSON file to validate.")
    parser.add_argument("--schema", default=GOAL_MAP_V1, choices=sorted(SCHEMA_TO_FILE))
    args = parser.parse_args(argv)

    try:
        payload = _load_json(Path(args.json_path))
        code, msg = validate_payload(payload, args.schema)
        print(msg, file=sys.stdout if code == EXIT_OK else sys.stderr)
        return code
    except json.JSONDecodeError as e:
        print(f"ERROR: invalid JSON: {e}", file=sys.stderr)
        return EXIT_USAGE_OR_ERROR
    except OSError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_USAGE_OR_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
