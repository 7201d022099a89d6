"""Waypoint CLI -- memory commands, marathon sessions, and maintenance."""

import argparse
import json
import logging
import sys

from waypoint.errors import WaypointError


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


# ---------------------------------------------------------------------------
# Memory commands
# ---------------------------------------------------------------------------


def cmd_search(args):
    """Search memories (fingerprint ranking + keyword scan)."""
    query_text = " ".join(args.query_text)
    if not query_text.strip():
        print("Usage: waypoint search <search text>", file=sys.stderr)
        sys.exit(1)

    if args.json:
        from waypoint.bridge import search_structured

        _print_json(search_structured(query_text, limit=args.limit, threshold=args.threshold))
        return

    from waypoint.bridge import search

    print(search(query_text, limit=args.limit, threshold=args.threshold))


def cmd_store(args):
    """Store a memory in a category."""
    content = " ".join(args.content)
    if not content.strip():
        print("Usage: waypoint store <text> [-c CATEGORY]", file=sys.stderr)
        sys.exit(1)

    from waypoint.bridge import store

    result = store(content=content, category=args.category, priority=args.priority, tags=args.tag or ())
    print(f"Stored [{args.category}] {result['id']}: {content[:80]}")


def cmd_stats(args):
    """Show per-category counts, footprint and cluster insights."""
    from waypoint.bridge import stats

    result = stats()
    if args.json:
        _print_json(result)
        return
    print(f"Memories:      {result['total_items']}")
    print(f"Graph:         {result['node_count']} nodes, {result['relationship_count']} relationships")
    print(f"Knowledge:     {result['storage_size']} bytes")
    for category, count in sorted(result["categories"].items()):
        print(f"  {category:<14} {count}")
    for insight in result.get("insights", []):
        print(f"- {insight}")


def cmd_cleanup(args):
    """Prune memories past retention (and optionally orphan graph nodes)."""
    from waypoint.bridge import cleanup

    result = cleanup(args.days, prune_orphans=args.orphans)
    print(
        f"Pruned {len(result['pruned'])} memories older than {result['retention_days']} days, "
        f"removed {len(result['orphans_removed'])} orphan nodes"
    )


# ---------------------------------------------------------------------------
# Marathon commands
# ---------------------------------------------------------------------------


def cmd_status(args):
    """Show marathon state and memory counts."""
    from waypoint.bridge import status

    result = status()
    if args.json:
        _print_json(result)
        return
    m = result["marathon"]
    print(f"Data:          {result['data_dir']}")
    print(f"Memories:      {result['memory']['total_items']}")
    if m["status"] == "inactive":
        print("Marathon:      inactive")
        return
    print(f"Marathon:      {m['status']} ({m['session_id']})")
    print(f"Task:          {m['task_description']}")
    print(f"Progress:      {m['progress']['percentage']:.0f}%")
    print(f"Checkpoints:   {m['checkpoint_count']}")
    if m.get("continuation_command"):
        print(f"Continue with: {m['continuation_command']}")


def cmd_start(args):
    from waypoint.bridge import start_session

    result = start_session(" ".join(args.task))
    print(f"Started marathon {result['session_id']}")


def cmd_checkpoint(args):
    from waypoint.bridge import checkpoint

    result = checkpoint(" ".join(args.description), critical=args.critical)
    print(f"Checkpoint {result['checkpoint']['id']} ({result['checkpoint']['type']})")


def cmd_switch(args):
    from waypoint.bridge import save_and_switch

    result = save_and_switch(" ".join(args.task) if args.task else None)
    print(result["instructions"])


def cmd_continue(args):
    from waypoint.bridge import continue_session

    result = continue_session()
    print(f"Continuing as {result['session_id']} (previous: {result['previous_session_id']})")


def cmd_progress(args):
    from waypoint.bridge import update_progress

    p = update_progress(args.completed, args.total)["progress"]
    print(f"Progress: {p['completed']}/{p['total']} ({p['percentage']:.0f}%)")


def cmd_end(args):
    from waypoint.bridge import end_session

    result = end_session(args.reason)
    print(f"Ended marathon {result['session_id']} ({result['reason']}), {result['checkpoint_count']} checkpoints")


def cmd_checkpoints(args):
    """List checkpoint documents, oldest first."""
    from waypoint.bridge import list_checkpoints

    checkpoints = list_checkpoints(args.session)
    if args.json:
        _print_json(checkpoints)
        return
    if not checkpoints:
        print("No checkpoints.")
        return
    for cp in checkpoints:
        print(f"{cp['timestamp'][:19]}  {cp['type']:<14} {cp['id']}  {cp['description'][:60]}")


def cmd_restore(args):
    from waypoint.bridge import restore

    result = restore(args.checkpoint_id)
    print(result["summary"])
    print(f"\nNew session: {result['new_session_id']}")


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="waypoint",
        description="Waypoint: local memory and session continuity",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log to stderr")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- Memory commands ---
    search_parser = subparsers.add_parser("search", help="Search memories")
    search_parser.add_argument("query_text", nargs="+", help="Search text")
    search_parser.add_argument("--limit", type=int, default=10, help="Max results (default: 10)")
    search_parser.add_argument("--threshold", type=float, default=None, help="Minimum relevance (default: 0.1)")
    search_parser.add_argument("--json", action="store_true", help="Output as JSON")

    store_parser = subparsers.add_parser("store", help="Store a memory")
    store_parser.add_argument("content", nargs="+", help="Memory content")
    store_parser.add_argument(
        "-c",
        "--category",
        default="insights",
        choices=["infrastructure", "projects", "interactions", "workflows", "insights"],
        help="Knowledge category (default: insights)",
    )
    store_parser.add_argument(
        "-p", "--priority", default="medium", choices=["low", "medium", "high", "critical"], help="Priority"
    )
    store_parser.add_argument("-t", "--tag", action="append", help="Tag (repeatable)")

    stats_parser = subparsers.add_parser("stats", help="Show memory statistics")
    stats_parser.add_argument("--json", action="store_true", help="Output as JSON")

    cleanup_parser = subparsers.add_parser("cleanup", help="Prune memories past retention")
    cleanup_parser.add_argument("--days", type=int, default=None, help="Retention in days (default: config)")
    cleanup_parser.add_argument("--orphans", action="store_true", help="Also remove graph nodes without edges")

    # --- Marathon commands ---
    status_parser = subparsers.add_parser("status", help="Show marathon state and memory counts")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")

    start_parser = subparsers.add_parser("start", help="Start a marathon session")
    start_parser.add_argument("task", nargs="+", help="Task description")

    checkpoint_parser = subparsers.add_parser("checkpoint", help="Write a manual checkpoint")
    checkpoint_parser.add_argument("description", nargs="+", help="Checkpoint description")
    checkpoint_parser.add_argument("--critical", action="store_true", help="Mark as critical")

    switch_parser = subparsers.add_parser("switch", help="Save and switch to a new session")
    switch_parser.add_argument("task", nargs="*", help="New task description (optional)")

    subparsers.add_parser("continue", help="Continue a switched marathon")

    progress_parser = subparsers.add_parser("progress", help="Report task progress")
    progress_parser.add_argument("completed", type=float, help="Completed steps")
    progress_parser.add_argument("--total", type=float, default=None, help="Total steps")

    end_parser = subparsers.add_parser("end", help="End the marathon")
    end_parser.add_argument("--reason", default="completed", help="Reason (default: completed)")

    checkpoints_parser = subparsers.add_parser("checkpoints", help="List checkpoints")
    checkpoints_parser.add_argument("--session", default=None, help="Only this session id")
    checkpoints_parser.add_argument("--json", action="store_true", help="Output as JSON")

    restore_parser = subparsers.add_parser("restore", help="Restore context from a checkpoint")
    restore_parser.add_argument("checkpoint_id", help="Checkpoint id")

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    commands = {
        "search": cmd_search,
        "store": cmd_store,
        "stats": cmd_stats,
        "cleanup": cmd_cleanup,
        "status": cmd_status,
        "start": cmd_start,
        "checkpoint": cmd_checkpoint,
        "switch": cmd_switch,
        "continue": cmd_continue,
        "progress": cmd_progress,
        "end": cmd_end,
        "checkpoints": cmd_checkpoints,
        "restore": cmd_restore,
    }

    if args.command not in commands:
        parser.print_help()
        return

    try:
        commands[args.command](args)
    except WaypointError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
