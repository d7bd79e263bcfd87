"""
CLI -- Command interface for the knowledge engine

    strata layers                      Layers, priorities and load outcomes
    strata resolve <topic-id>          Winning layer and override trail
    strata search <query>              Rank topics for free text
    strata analyze <file|->            Rank topics for a code snippet
    strata suggest <request>           Specialist suggestions
    strata overrides                   Topics present in several layers

Pass --json before the command for machine-readable output.
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import orjson

from .config import ConfigManager, ConfigurationError
from .core.topic import Difficulty
from .services.knowledge import KnowledgeService
from .services.relevance import IndexBuildError, RelevanceMatch
from .services.router import DiscoveryContext, format_suggestions
from . import __version__

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def _emit_json(data: Any) -> None:
    print(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode("utf-8"))


def _print_matches(matches: List[RelevanceMatch]) -> None:
    if not matches:
        print("No relevant topics.")
        return
    for match in matches:
        print(f"{match.relevance_score:.2f}  {match.topic_id}  {match.title}")
        if match.matched_signals:
            print(f"      signals: {', '.join(match.matched_signals)}")


def cmd_layers(service: KnowledgeService, args) -> int:
    results = {result.layer_name: result for result in service.initialize()}
    if args.json:
        _emit_json({
            "layers": [layer.get_statistics().to_dict() for layer in service.layers],
            "load_results": [result.to_dict() for result in results.values()],
        })
        return 0

    for layer in service.layers:
        stats = layer.get_statistics()
        result = results.get(layer.name)
        if not layer.enabled:
            status = "disabled"
        elif result is not None and result.success:
            status = f"{stats.topic_count} topics, {stats.specialist_count} specialists"
        else:
            errors = "; ".join(result.errors) if result else "not loaded"
            status = f"FAILED: {errors}"
        print(f"{layer.priority:>5}  {layer.name:<20} {stats.layer_type:<9} {status}")
    return 0


def cmd_resolve(service: KnowledgeService, args) -> int:
    resolution = service.resolve_topic(args.topic_id)
    if resolution is None:
        print(f"Topic not found: {args.topic_id}", file=sys.stderr)
        return 1

    if args.json:
        data = resolution.to_dict()
        data["topic"] = resolution.topic.to_dict()
        _emit_json(data)
        return 0

    topic = resolution.topic
    print(f"{topic.id}: {topic.title}")
    print(f"  source layer: {resolution.source_layer}")
    if resolution.is_override:
        print(f"  overrides:    {', '.join(resolution.overridden_layers)}")
    if args.content:
        print()
        print(topic.content)
    return 0


def _search_overrides(args) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if args.limit is not None:
        overrides["limit"] = args.limit
    if args.min_score is not None:
        overrides["min_score"] = args.min_score
    if args.object_type:
        overrides["object_type"] = args.object_type
    if args.category:
        overrides["category"] = args.category
    if args.domain:
        overrides["domain"] = args.domain
    if args.tag:
        overrides["tags"] = list(args.tag)
    if args.difficulty:
        overrides["difficulty"] = args.difficulty
    if args.no_legacy:
        overrides["include_legacy_topics"] = False
    return overrides


def cmd_search(service: KnowledgeService, args) -> int:
    matches = service.search_topics(" ".join(args.query), **_search_overrides(args))
    if args.json:
        _emit_json([match.to_dict() for match in matches])
    else:
        _print_matches(matches)
    return 0


def cmd_analyze(service: KnowledgeService, args) -> int:
    if args.file == "-":
        code = sys.stdin.read()
    else:
        try:
            code = Path(args.file).read_text(encoding="utf-8")
        except OSError as e:
            print(f"Cannot read {args.file}: {e}", file=sys.stderr)
            return 1

    characteristics = service.analyze_code(code)
    matches = service.find_relevant_topics(code, **_search_overrides(args))
    if args.json:
        _emit_json({
            "characteristics": characteristics.to_dict(),
            "matches": [match.to_dict() for match in matches],
        })
        return 0

    if characteristics.object_type:
        print(f"Object type: {characteristics.object_type}")
    if characteristics.constructs:
        print(f"Constructs:  {', '.join(characteristics.constructs)}")
    print()
    _print_matches(matches)
    return 0


def cmd_suggest(service: KnowledgeService, args) -> int:
    context = DiscoveryContext(
        query=" ".join(args.request) or None,
        current_domain=args.domain,
        include_topics=args.topics,
    )
    suggestions = service.suggest_specialists(context, args.max)
    if args.json:
        _emit_json([suggestion.to_dict() for suggestion in suggestions])
    else:
        print(format_suggestions(suggestions))
    return 0


def cmd_overrides(service: KnowledgeService, args) -> int:
    overridden = service.get_overridden_topics()
    if args.json:
        _emit_json(overridden)
        return 0
    if not overridden:
        print("No overridden topics.")
        return 0
    for topic_id, layer_names in overridden.items():
        print(f"{topic_id}: {' > '.join(layer_names)}")
    return 0


COMMANDS: Dict[str, Callable[[KnowledgeService, argparse.Namespace], int]] = {
    "layers": cmd_layers,
    "resolve": cmd_resolve,
    "search": cmd_search,
    "analyze": cmd_analyze,
    "suggest": cmd_suggest,
    "overrides": cmd_overrides,
}


def _add_search_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--limit', '-n', type=int, help='Maximum results')
    parser.add_argument('--min-score', type=float, help='Minimum normalized score (0..1)')
    parser.add_argument('--object-type', help='Only topics applicable to this object type')
    parser.add_argument('--category', help='Only topics in this category')
    parser.add_argument('--domain', help='Only topics in this domain')
    parser.add_argument('--tag', action='append', help='Only topics with this tag (repeatable)')
    parser.add_argument('--difficulty', choices=[d.value for d in Difficulty], help='Only topics at this level')
    parser.add_argument('--no-legacy', action='store_true', help='Skip topics without relevance signals')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="strata",
        description="Strata -- Layered knowledge resolution and relevance routing",
    )
    parser.add_argument(
        '--project', '-p',
        default=os.environ.get("STRATA_PROJECT_PATH", "."),
        help='Project directory (default: STRATA_PROJECT_PATH or current)'
    )
    parser.add_argument('--user-dir', help='User config directory (default: ~/.strata)')
    parser.add_argument('--json', action='store_true', help='Machine-readable output')
    parser.add_argument('--version', '-V', action='version', version=f'strata {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    subparsers.add_parser('layers', help='Show layers and load outcomes')

    resolve = subparsers.add_parser('resolve', help='Resolve a topic across layers')
    resolve.add_argument('topic_id', help='Topic ID, e.g. performance/findset-vs-findfirst')
    resolve.add_argument('--content', action='store_true', help='Print the topic body')

    search = subparsers.add_parser('search', help='Search topics by free text')
    search.add_argument('query', nargs='+', help='Query text')
    _add_search_options(search)

    analyze = subparsers.add_parser('analyze', help='Find topics relevant to a code file')
    analyze.add_argument('file', help="Source file, or '-' for stdin")
    _add_search_options(analyze)

    suggest = subparsers.add_parser('suggest', help='Suggest specialists for a request')
    suggest.add_argument('request', nargs='*', help='Request text (empty for defaults)')
    suggest.add_argument('--domain', help='Domain currently being worked in')
    suggest.add_argument('--topics', action='store_true', help='Include related topics')
    suggest.add_argument('--max', type=int, default=3, help='Maximum suggestions (default: 3)')

    subparsers.add_parser('overrides', help='List topics overridden by higher layers')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the strata CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT)

    try:
        manager = ConfigManager(Path(args.project), Path(args.user_dir) if args.user_dir else None)
        config = manager.load()
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    logging.getLogger("strata").setLevel(config.log_level)

    service = KnowledgeService(config)
    try:
        return COMMANDS[args.command](service, args)
    except IndexBuildError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        service.dispose()


if __name__ == '__main__':
    sys.exit(main())
