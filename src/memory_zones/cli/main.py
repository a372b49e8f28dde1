from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from memory_zones.errors import KnowledgeGraphError
from memory_zones.graph import client as graph_client
from memory_zones.graph.transfer import read_ndjson, write_ndjson
from memory_zones.settings import settings

console = Console()


def _configure_logging() -> None:
    import logging

    level = (settings.log_level or "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _graph() -> graph_client.KnowledgeGraph:
    graph = graph_client.build_knowledge_graph(settings)
    graph.initialize()
    return graph


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str, ensure_ascii=False))


def cmd_version() -> int:
    from memory_zones import __version__

    print(__version__)
    return 0


def cmd_init(args: argparse.Namespace) -> int:
    _configure_logging()
    graph = _graph()
    zones = graph.list_zones()
    print(f"Initialized {len(zones)} zone(s): {', '.join(z['name'] for z in zones)}")
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    _configure_logging()
    graph = _graph()
    result = graph.import_records(read_ndjson(args.file), args.zone)
    print(f"Imported {result.entities_added} entities and {result.relations_added} relations")
    if result.invalid_relations:
        print(
            f"Warning: {len(result.invalid_relations)} relation(s) were not imported due to missing entities.",
            file=sys.stderr,
        )
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    _configure_logging()
    graph = _graph()
    records = graph.export_zone(args.zone)
    write_ndjson(args.file, records)
    entities = sum(1 for r in records if r.get("type") == "entity")
    print(f"Exported {entities} entities and {len(records) - entities} relations")
    return 0


def cmd_backup(args: argparse.Namespace) -> int:
    _configure_logging()
    graph = _graph()
    payload = graph.export_all(args.zones or None)
    with open(args.file, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, ensure_ascii=False)
    print(
        f"Backed up {len(payload['zones'])} zones, {len(payload['entities'])} entities "
        f"and {len(payload['relations'])} relations"
    )
    return 0


def cmd_restore(args: argparse.Namespace) -> int:
    _configure_logging()
    graph = _graph()
    with open(args.file, encoding="utf-8") as fh:
        payload = json.load(fh)
    _print(graph.import_all(payload))
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    _configure_logging()
    graph = _graph()
    stats = graph.zone_stats(args.zone)
    if args.json:
        _print(asdict(stats))
        return 0

    console.print(
        Panel.fit(
            f"[bold cyan]{stats.entity_count:,} entities, {stats.relation_count:,} relations[/bold cyan]",
            title=f"Zone {stats.zone}",
        )
    )
    for title, counts in (("Entities by type", stats.entity_types), ("Relations by type", stats.relation_types)):
        if not counts:
            continue
        table = Table(title=title)
        table.add_column("Type", style="cyan")
        table.add_column("Count", justify="right")
        for name, count in sorted(counts.items(), key=lambda kv: -kv[1]):
            table.add_row(name, f"{count:,}")
        console.print(table)
    return 0


def cmd_search(args: argparse.Namespace) -> int:
    _configure_logging()
    graph = _graph()
    result = graph.search(
        args.query,
        args.zone,
        entity_types=args.entity_type or None,
        sort_by=args.sort,
        limit=args.limit,
        information_needed=args.need,
    )
    _print(
        {
            "total": result.total,
            "entities": [e.summary() for e in result.entities],
            "relations": [r.to_document() for r in result.relations],
        }
    )
    return 0


def cmd_entity(args: argparse.Namespace) -> int:
    _configure_logging()
    graph = _graph()
    entity = graph.get_entity(args.name, args.zone)
    if entity is None:
        print(f'Entity "{args.name}" not found', file=sys.stderr)
        return 1
    relations = graph.relations.list_for_entities([entity.name], entity.zone)
    _print({**entity.summary(), "relations": [r.to_document() for r in relations]})
    return 0


def cmd_zones_list(args: argparse.Namespace) -> int:
    _configure_logging()
    graph = _graph()
    zones = graph.list_zones(args.reason)
    if not zones:
        console.print("[yellow]No zones matched[/yellow]")
        return 0

    table = Table(title="Zones")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Description")
    if args.reason:
        table.add_column("Usefulness", justify="right")
    for zone in zones:
        row = [zone["name"], zone.get("shortDescription") or zone.get("description") or ""]
        if args.reason:
            row.append(str(zone["usefulness"]))
        table.add_row(*row)
    console.print(table)
    return 0


def cmd_zones_add(args: argparse.Namespace) -> int:
    _configure_logging()
    graph = _graph()
    meta = graph.add_zone(args.name, args.description)
    print(f'Zone "{meta.name}" added')
    return 0


def cmd_zones_delete(args: argparse.Namespace) -> int:
    _configure_logging()
    if not args.yes:
        answer = input(f'Delete zone "{args.name}" and everything in it? [y/N] ')
        if answer.strip().lower() not in ("y", "yes"):
            print("Aborted")
            return 1
    graph = _graph()
    if not graph.delete_zone(args.name):
        print(f'Zone "{args.name}" not found', file=sys.stderr)
        return 1
    print(f'Zone "{args.name}" deleted')
    return 0


def cmd_reset(args: argparse.Namespace) -> int:
    _configure_logging()
    if not args.yes:
        answer = input("Delete ALL zones, entities and relations? This cannot be undone. [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Aborted")
            return 1
    graph = _graph()
    dropped = graph.reset()
    print(f"Reset complete: dropped {len(dropped)} index(es)")
    return 0


def cmd_zones_describe(args: argparse.Namespace) -> int:
    _configure_logging()
    graph = _graph()
    meta = graph.describe_zone(args.name, args.hint)
    _print(meta.to_document())
    return 0


def cmd_copy(args: argparse.Namespace) -> int:
    _configure_logging()
    graph = _graph()
    result = graph.copy_entities(
        args.names, args.source, args.target, copy_relations=not args.no_relations, overwrite=args.overwrite
    )
    _print(asdict(result))
    return 0


def cmd_move(args: argparse.Namespace) -> int:
    _configure_logging()
    graph = _graph()
    result = graph.move_entities(
        args.names, args.source, args.target, move_relations=not args.no_relations, overwrite=args.overwrite
    )
    _print(asdict(result))
    return 0


def cmd_merge(args: argparse.Namespace) -> int:
    _configure_logging()
    graph = _graph()
    result = graph.merge_zones(
        args.sources,
        args.target,
        delete_source_zones=args.delete_sources,
        overwrite_conflicts=args.strategy,
    )
    _print(asdict(result))
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    _configure_logging()
    from memory_zones.service.server import main

    main(host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="memory-zones")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("version").set_defaults(func=lambda _a: cmd_version())
    sub.add_parser("init", help="Create indices and the default zone").set_defaults(func=cmd_init)

    imp = sub.add_parser("import", help="Import an NDJSON file into a zone")
    imp.add_argument("file")
    imp.add_argument("--zone", default=None)
    imp.set_defaults(func=cmd_import)

    exp = sub.add_parser("export", help="Export a zone to an NDJSON file")
    exp.add_argument("file")
    exp.add_argument("--zone", default=None)
    exp.set_defaults(func=cmd_export)

    backup = sub.add_parser("backup", help="Write every zone, entity and relation to a JSON file")
    backup.add_argument("file")
    backup.add_argument("--zone", dest="zones", action="append", default=[])
    backup.set_defaults(func=cmd_backup)

    restore = sub.add_parser("restore", help="Restore a JSON backup (additive)")
    restore.add_argument("file")
    restore.set_defaults(func=cmd_restore)

    stats = sub.add_parser("stats", help="Entity and relation counts of a zone")
    stats.add_argument("--zone", default=None)
    stats.add_argument("--json", action="store_true", help="Print raw JSON")
    stats.set_defaults(func=cmd_stats)

    search = sub.add_parser("search")
    search.add_argument("query")
    search.add_argument("--zone", default=None)
    search.add_argument("--entity-type", action="append", default=[])
    search.add_argument("--sort", default="relevance", choices=["relevance", "recent", "importance"])
    search.add_argument("--limit", type=int, default=10)
    search.add_argument("--need", default=None, help="Information needed (enables AI filtering)")
    search.set_defaults(func=cmd_search)

    entity = sub.add_parser("entity", help="Show one entity and its relations")
    entity.add_argument("name")
    entity.add_argument("--zone", default=None)
    entity.set_defaults(func=cmd_entity)

    reset = sub.add_parser("reset", help="Delete every zone, entity and relation")
    reset.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    reset.set_defaults(func=cmd_reset)

    zones = sub.add_parser("zones")
    zones_sub = zones.add_subparsers(dest="zones_cmd", required=True)

    zl = zones_sub.add_parser("list")
    zl.add_argument("--reason", default=None)
    zl.set_defaults(func=cmd_zones_list)

    za = zones_sub.add_parser("add")
    za.add_argument("name")
    za.add_argument("--description", default=None)
    za.set_defaults(func=cmd_zones_add)

    zd = zones_sub.add_parser("delete")
    zd.add_argument("name")
    zd.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    zd.set_defaults(func=cmd_zones_delete)

    zdesc = zones_sub.add_parser("describe", help="(Re)generate a zone description")
    zdesc.add_argument("name")
    zdesc.add_argument("--hint", default=None)
    zdesc.set_defaults(func=cmd_zones_describe)

    for name, func, verb in (("copy", cmd_copy, "Copy"), ("move", cmd_move, "Move")):
        cmd = sub.add_parser(name, help=f"{verb} entities between zones")
        cmd.add_argument("source")
        cmd.add_argument("target")
        cmd.add_argument("names", nargs="+")
        cmd.add_argument("--no-relations", action="store_true")
        cmd.add_argument("--overwrite", action="store_true")
        cmd.set_defaults(func=func)

    merge = sub.add_parser("merge", help="Merge zones into a target zone")
    merge.add_argument("target")
    merge.add_argument("sources", nargs="+")
    merge.add_argument("--strategy", default="skip", choices=["skip", "overwrite", "rename"])
    merge.add_argument("--delete-sources", action="store_true")
    merge.set_defaults(func=cmd_merge)

    serve = sub.add_parser("serve", help="Run the HTTP service")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.set_defaults(func=cmd_serve)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except KnowledgeGraphError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


def app() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    app()
