"""MCP Memory CLI -- memory commands, status, model setup, and server management."""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from mcp_memory.config import Settings
from mcp_memory.errors import MemoryStoreError, NotFoundError

HF_REPO = "https://huggingface.co/BAAI/bge-small-en-v1.5/resolve/main"


def _namespace(args) -> str:
    namespace = getattr(args, "namespace", None) or Settings.from_env().default_namespace
    if not namespace:
        print("A namespace is required: pass --namespace or set MEMORY_NAMESPACE", file=sys.stderr)
        sys.exit(2)
    return namespace


def _run(coro):
    """Run an engine coroutine, turning engine errors into exit code 1."""
    try:
        return asyncio.run(coro)
    except NotFoundError as e:
        print(f"Not found: {e}", file=sys.stderr)
        sys.exit(1)
    except MemoryStoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _engine():
    from mcp_memory.bridge import get_engine

    return get_engine()


def _format_age(created_at) -> str:
    """Format a datetime as relative age string (e.g. '2d ago', '1w ago')."""
    if not created_at:
        return ""
    seconds = int((datetime.now(timezone.utc) - created_at).total_seconds())
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    days = seconds // 86400
    if days < 7:
        return f"{days}d ago"
    if days < 30:
        return f"{days // 7}w ago"
    return f"{days // 30}mo ago"


# ---------------------------------------------------------------------------
# Memory commands
# ---------------------------------------------------------------------------


def cmd_remember(args):
    """Store a memory."""
    text = " ".join(args.text)
    memory_id = _run(_engine().remember(text, _namespace(args)))
    print(json.dumps({"id": memory_id}) if args.json else memory_id)


def cmd_search(args):
    """Semantic search within a namespace."""
    query_text = " ".join(args.query_text)
    hits = _run(_engine().search(query_text, _namespace(args), top_k=args.limit, min_score=args.min_score))
    if args.json:
        print(json.dumps({"results": [h.to_dict() for h in hits], "count": len(hits)}, indent=2))
        return
    if not hits:
        print("No relevant memories found.")
        return
    for h in hits:
        print(f"  [{h.score:.4f}] {h.content}  ({h.id})")


def cmd_list(args):
    """List every memory in a namespace, newest first."""
    records = _run(_engine().list_all(_namespace(args)))
    if args.json:
        print(json.dumps({"memories": [r.to_dict() for r in records], "count": len(records)}, indent=2))
        return
    if not records:
        print("No memories stored.")
        return
    for r in records:
        age = _format_age(r.created_at)
        print(f"  {r.id}  {age:>9}  {r.content}")


def cmd_update(args):
    """Replace a memory's content."""
    content = " ".join(args.content).strip()
    change = _run(_engine().update(args.memory_id, _namespace(args), content))
    if args.json:
        print(json.dumps(change.to_dict()))
        return
    print(f"Updated {change.id}")
    if not change.vector_synced:
        print(f"  Warning: search index not refreshed: {change.vector_error}", file=sys.stderr)


def cmd_forget(args):
    """Delete a memory."""
    change = _run(_engine().forget(args.memory_id, _namespace(args)))
    if args.json:
        print(json.dumps(change.to_dict()))
        return
    if change.rows_changed:
        print(f"Forgot {change.id}")
    else:
        print(f"No record {change.id} in this namespace (nothing to forget)")
    if not change.vector_synced:
        print(f"  Warning: search index entry not removed: {change.vector_error}", file=sys.stderr)


def cmd_status(args):
    """Show record/vector counts and backend configuration."""
    settings = Settings.from_env()
    stats = _run(_engine().stats(getattr(args, "namespace", None)))
    if args.json:
        print(json.dumps({**stats, "record_db": str(settings.record_db), "vector_db": str(settings.vector_db)}, indent=2))
        return
    scope = stats["namespace"] or "all namespaces"
    print(f"MCP Memory status ({scope})")
    print(f"  Records:   {stats['records']}  ({settings.record_db})")
    print(f"  Vectors:   {stats['vectors']}  ({settings.vector_db})")
    if stats["counts_differ"]:
        print("  Note: record and vector counts differ (orphaned entries from partial writes)")
    emb = stats["embedding"]
    print(f"  Embedding: {emb['backend']} ({emb['dimension']} dims)")
    print(f"  Search:    top_k={stats['top_k']} min_score={stats['min_score']}")


# ---------------------------------------------------------------------------
# Setup / servers
# ---------------------------------------------------------------------------


def _download_file(url: str, target: Path) -> None:
    """Download a file with a progress line showing bytes and percentage."""
    import urllib.request

    req = urllib.request.Request(url, headers={"User-Agent": "mcp-memory/1.0"})
    with urllib.request.urlopen(req, timeout=60) as resp:
        total = int(resp.headers.get("Content-Length", 0))
        downloaded = 0
        tmp = target.with_suffix(target.suffix + ".tmp")
        try:
            with open(tmp, "wb") as f:
                while True:
                    chunk = resp.read(64 * 1024)
                    if not chunk:
                        break
                    f.write(chunk)
                    downloaded += len(chunk)
                    mb_done = downloaded / (1024 * 1024)
                    if total > 0:
                        print(f"\r    {target.name}: {mb_done:.1f}/{total / (1024 * 1024):.1f} MB", end="", flush=True)
                    else:
                        print(f"\r    {target.name}: {mb_done:.1f} MB", end="", flush=True)
            tmp.rename(target)
            print()
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise


def cmd_setup(args):
    """Download the bge-small-en-v1.5 ONNX model used by the default backend."""
    target_dir = Settings.from_env().onnx_model_dir
    target_dir.mkdir(parents=True, exist_ok=True)
    files = {
        "model.onnx": f"{HF_REPO}/onnx/model.onnx",
        "tokenizer.json": f"{HF_REPO}/tokenizer.json",
        "config.json": f"{HF_REPO}/config.json",
    }
    if all((target_dir / f).exists() for f in files):
        print(f"Model already present at {target_dir}")
        return
    print("Downloading bge-small-en-v1.5 ONNX model (~130MB)...")
    try:
        for fname, url in files.items():
            target = target_dir / fname
            if not target.exists():
                _download_file(url, target)
    except OSError as e:
        print(f"ERROR: model download failed: {e}", file=sys.stderr)
        print(f"Manually place model files in {target_dir}", file=sys.stderr)
        sys.exit(1)
    print(f"Model downloaded to {target_dir}")


def cmd_serve(args):
    """Run the MCP server (stdio mode)."""
    from mcp_memory.server.mcp_server import main

    asyncio.run(main())


def cmd_serve_http(args):
    """Run the HTTP server (memory routes + Streamable HTTP MCP)."""
    from mcp_memory.server.http_server import run_http

    api_key = args.api_key or Settings.from_env().api_key
    asyncio.run(run_http(args.host, args.port, api_key))


def main():
    parser = argparse.ArgumentParser(
        prog="mcp-memory",
        description="MCP Memory -- per-user semantic memory for AI agents",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level to stderr")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    def memory_parser(name, help_text):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("-n", "--namespace", help="Namespace (user id); defaults to MEMORY_NAMESPACE")
        p.add_argument("--json", action="store_true", help="Output as JSON")
        return p

    remember_parser = memory_parser("remember", "Store a memory")
    remember_parser.add_argument("text", nargs="+", help="Text to remember")

    search_parser = memory_parser("search", "Search memories by semantic similarity")
    search_parser.add_argument("query_text", nargs="+", help="Search text")
    search_parser.add_argument("--limit", type=int, default=None, help="Top-K matches to consider")
    search_parser.add_argument("--min-score", type=float, default=None, help="Strict lower score bound")

    memory_parser("list", "List all memories, newest first")

    update_parser = memory_parser("update", "Replace a memory's content")
    update_parser.add_argument("memory_id")
    update_parser.add_argument("content", nargs="+")

    forget_parser = memory_parser("forget", "Delete a memory")
    forget_parser.add_argument("memory_id")

    status_parser = subparsers.add_parser("status", help="Show record/vector counts and configuration")
    status_parser.add_argument("-n", "--namespace", help="Restrict counts to one namespace")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")

    subparsers.add_parser("setup", help="Download the ONNX embedding model")
    subparsers.add_parser("serve", help="Run the MCP server over stdio")

    http_parser = subparsers.add_parser("serve-http", help="Run the HTTP server")
    http_parser.add_argument("--host", default="127.0.0.1")
    http_parser.add_argument("--port", type=int, default=8787)
    http_parser.add_argument("--api-key", default=None, help="Require this key (x-api-key header)")

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING, stream=sys.stderr)

    commands = {
        "remember": cmd_remember,
        "search": cmd_search,
        "list": cmd_list,
        "update": cmd_update,
        "forget": cmd_forget,
        "status": cmd_status,
        "setup": cmd_setup,
        "serve": cmd_serve,
        "serve-http": cmd_serve_http,
    }

    if args.command in commands:
        commands[args.command](args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
