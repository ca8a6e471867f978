from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from successmap.cache.local_cache import FileLocalCache
from successmap.core.config import RemoteConfig, load_remote_config
from successmap.graph.errors import CapacityError, GraphValidationError, SyncStateError
from successmap.policies.load import PolicyInvalid, load_sync_policy
from successmap.progress.aggregator import gather_progress
from successmap.remote.client import HttpRemoteStore, RemoteStore
from successmap.sync.reconciler import SyncReconciler

EXIT_OK = 0
EXIT_USAGE_OR_ERROR = 1
EXIT_INVALID = 2

logger = logging.getLogger("successmap.sync.cli")

_MUTATIONS = ("add-node", "update-node", "remove-node", "connect", "disconnect", "reset")


def _print_json(obj) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True))


def _build_remote(args: argparse.Namespace) -> RemoteStore:
    cfg = load_remote_config()
    if args.base_url:
        cfg = RemoteConfig(base_url=str(args.base_url).rstrip("/"), timeout_seconds=cfg.timeout_seconds, api_key=cfg.api_key)
    return HttpRemoteStore(cfg)


def _build_cache(args: argparse.Namespace) -> FileLocalCache:
    return FileLocalCache(root=Path(args.cache_root) if args.cache_root else None)


def _status(rec: SyncReconciler) -> dict[str, Any]:
    gm = rec.goal_map
    decision = rec.last_decision
    return {
        "project_id": rec.project_id,
        "state": rec.state,
        "revision": rec.revision,
        "rule": decision.rule if decision is not None else None,
        "durability_degraded": rec.durability_degraded,
        "warnings": list(rec.warnings),
        "goal_map": gm.to_json_obj() if gm is not None else None,
    }


def _apply_mutation(rec: SyncReconciler, args: argparse.Namespace) -> dict[str, Any]:
    if args.cmd == "add-node":
        node_id = rec.add_node(str(args.text), timeframe=str(args.timeframe or ""), level=int(args.level))
        return {"node_id": node_id}
    if args.cmd == "update-node":
        patch: dict[str, Any] = {}
        if args.text is not None:
            patch["text"] = str(args.text)
        if args.timeframe is not None:
            patch["timeframe"] = str(args.timeframe)
        if args.level is not None:
            patch["level"] = int(args.level)
        rec.update_node(str(args.node_id), **patch)
        return {"node_id": str(args.node_id)}
    if args.cmd == "remove-node":
        rec.remove_node(str(args.node_id))
        return {"node_id": str(args.node_id)}
    if args.cmd == "connect":
        rec.add_connection(str(args.source), str(args.target))
        return {}
    if args.cmd == "disconnect":
        rec.remove_connection(str(args.source), str(args.target))
        return {}
    rec.reset()
    return {}


async def _run(args: argparse.Namespace) -> tuple[int, dict[str, Any]]:
    remote = _build_remote(args)
    policy = load_sync_policy(Path(args.policy) if args.policy else None)
    rec = SyncReconciler(remote, _build_cache(args), policy=policy)
    try:
        if args.cmd == "progress":
            report = await gather_progress(
                remote,
                str(args.project),
                weights=policy.tool_weights,
                started_credit=policy.started_credit,
            )
            return EXIT_OK, report.to_json_obj()

        await rec.load(str(args.project))

        if args.cmd == "status":
            return EXIT_OK, _status(rec)

        out: dict[str, Any] = {}
        code = EXIT_OK
        if args.cmd in _MUTATIONS:
            out.update(_apply_mutation(rec, args))
            if not args.no_save:
                res = await rec.save()
                out["save"] = res.to_json_obj()
                if res.error:
                    code = EXIT_USAGE_OR_ERROR
        elif args.cmd == "save":
            res = await rec.save()
            out["save"] = res.to_json_obj()
            if res.error:
                code = EXIT_USAGE_OR_ERROR
        elif args.cmd == "submit":
            sub = await rec.submit()
            out["submit"] = sub.to_json_obj()
            if sub.error:
                code = EXIT_USAGE_OR_ERROR
        out["status"] = _status(rec)
        return code, out
    finally:
        aclose = getattr(remote, "aclose", None)
        if aclose is not None:
            await aclose()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="python -m successmap.sync.cli")
    parser.add_argument("--project", required=True, help="Project id whose goal map is synced.")
    parser.add_argument("--base-url", default=None, help="Remote API base url (default: env SMAP_REMOTE_BASE_URL).")
    parser.add_argument("--cache-root", default=None, help="Local cache directory (default: env SMAP_CACHE_ROOT).")
    parser.add_argument("--policy", default=None, help="Sync policy yaml (default: env SMAP_POLICY_PATH).")
    parser.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("status", help="Load and reconcile, then print the goal map and sync state.")
    sub.add_parser("save", help="Push pending local edits to the remote store.")
    sub.add_parser("submit", help="Save, then mark goal mapping complete.")
    sub.add_parser("progress", help="Print bearings status and weighted progress for the project.")

    def _mutation(name: str, help_text: str) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--no-save", action="store_true", help="Keep the edit in the local cache only.")
        return p

    p_add = _mutation("add-node", "Add a goal node.")
    p_add.add_argument("--text", required=True)
    p_add.add_argument("--timeframe", default="")
    p_add.add_argument("--level", type=int, default=1)

    p_upd = _mutation("update-node", "Patch text/timeframe/level of a goal node.")
    p_upd.add_argument("--node-id", required=True)
    p_upd.add_argument("--text", default=None)
    p_upd.add_argument("--timeframe", default=None)
    p_upd.add_argument("--level", type=int, default=None)

    p_rm = _mutation("remove-node", "Remove a goal node and its connections.")
    p_rm.add_argument("--node-id", required=True)

    for name, help_text in (("connect", "Connect two goal nodes."), ("disconnect", "Remove a connection.")):
        p = _mutation(name, help_text)
        p.add_argument("--source", required=True)
        p.add_argument("--target", required=True)

    _mutation("reset", "Clear the goal map (persisted on save).")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )

    try:
        code, out = asyncio.run(_run(args))
        _print_json(out)
        return code
    except (CapacityError, GraphValidationError, SyncStateError) as e:
        _print_json({"error": str(e), "kind": getattr(e, "kind", type(e).__name__)})
        return EXIT_INVALID
    except PolicyInvalid as e:
        _print_json({"error": str(e)})
        return EXIT_USAGE_OR_ERROR
    except Exception as e:  # noqa: BLE001
        logger.warning("command %s failed: %s", args.cmd, repr(e))
        _print_json({"error": str(e)})
        return EXIT_USAGE_OR_ERROR


def console_main() -> None:
    raise SystemExit(main(sys.argv[1:]))


if __name__ == "__main__":
    raise SystemExit(main())
