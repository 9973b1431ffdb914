"""PageSentry command line entry point.

    pagesentry scan URL [--rules PATH] [--allowlist PATH] [--html FILE] [--json]
    pagesentry check-domain DOMAIN [--rules PATH] [--allowlist PATH] [--json]
    pagesentry validate [--rules PATH]

Exit codes: 0 allow, 1 warn, 2 block, 3 configuration or fetch error.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import httpx

from .analyzer.aggregator import OutcomeAggregator
from .analyzer.models import DetectionResult
from .analyzer.squatting import DomainSquattingDetector
from .config import Config, load_config, validate_config
from .errors import RuleStoreUnavailable
from .guard import PageGuard
from .metrics import metrics
from .rules.models import Action
from .scanner.content import HttpContentSource, StaticContentSource
from .telemetry import WebhookTelemetrySink
from .utils.allowlist import read_allowlist_patterns

logger = logging.getLogger(__name__)

EXIT_CODES = {Action.ALLOW: 0, Action.WARN: 1, Action.BLOCK: 2}
EXIT_ERROR = 3


class CollectingVerdictSink:
    """Keeps every delivered result for the final report."""

    def __init__(self):
        self.results: list[DetectionResult] = []

    def deliver(self, result: DetectionResult) -> None:
        self.results.append(result)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stderr),
        ],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pagesentry",
        description="Rule-driven phishing page and lookalike domain detection.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    def _common(cmd: argparse.ArgumentParser) -> None:
        cmd.add_argument("--rules", type=Path, help="Rule document (YAML or JSON).")
        cmd.add_argument("--allowlist", type=Path, help="User allow-list file.")
        cmd.add_argument("--ranking", choices=["first", "best"], help="Squatting ranking mode.")
        cmd.add_argument("--json", action="store_true", help="Print the result as JSON.")

    scan = sub.add_parser("scan", help="Fetch (or read) a page and scan it.")
    scan.add_argument("url")
    scan.add_argument("--html", type=Path, help="Scan a local HTML file instead of fetching URL.")
    _common(scan)

    check = sub.add_parser("check-domain", help="Run only the domain squatting detector.")
    check.add_argument("domain")
    _common(check)

    validate = sub.add_parser("validate", help="Validate configuration and the rule document.")
    validate.add_argument("--rules", type=Path, help="Rule document (YAML or JSON).")
    return parser


def _apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    if getattr(args, "rules", None):
        config.rules_file = args.rules
    if getattr(args, "allowlist", None):
        config.allowlist = read_allowlist_patterns(args.allowlist)
    if getattr(args, "ranking", None):
        config.squatting_ranking = args.ranking
    return config


def _most_severe(results: list[Optional[DetectionResult]]) -> Optional[DetectionResult]:
    candidates = [r for r in results if r is not None]
    if not candidates:
        return None
    return max(candidates, key=lambda r: EXIT_CODES[r.action])


def _print_result(result: DetectionResult, as_json: bool) -> None:
    if as_json:
        print(json.dumps(result.to_dict(), indent=2))
        return
    print(f"URL:      {result.url}")
    print(f"Action:   {result.action.value}")
    print(f"Severity: {result.severity.value if result.severity else '-'}")
    print(f"Coverage: {result.evaluated}/{result.total_indicators} indicators"
          f"{' (partial)' if result.partial else ''}")
    if result.trust and result.trust.decision:
        print(f"Trust:    {result.trust.decision}")
    for reason in result.reasons:
        print(f"  - {reason}")
    for error in result.errors:
        print(f"  ! {error}")


async def run_scan(args: argparse.Namespace, config: Config) -> int:
    if args.html:
        try:
            html = args.html.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.error("Cannot read %s: %s", args.html, exc)
            return EXIT_ERROR
        content = StaticContentSource(args.url, html)
        url = args.url
    else:
        content = HttpContentSource(
            args.url, timeout_seconds=config.http_timeout, user_agent=config.user_agent
        )
        try:
            await content.refresh()
        except httpx.HTTPError as exc:
            logger.error("Failed to fetch %s: %s", args.url, exc)
            await content.close()
            return EXIT_ERROR
        url = content.url
        if content.status_code and content.status_code >= 400:
            logger.warning("%s returned HTTP %s; scanning the error page", url, content.status_code)

    sink = CollectingVerdictSink()
    guard = PageGuard.from_config(config, content, verdict_sink=sink)
    try:
        scheduler = await guard.open(url)
        if scheduler is not None:
            await scheduler.wait_idle()
            logger.debug("Session: %s", scheduler.session.to_dict())
            result = _most_severe([guard.result, scheduler.last_background_result])
        else:
            result = guard.result
    finally:
        guard.close()
        if isinstance(guard.telemetry_sink, WebhookTelemetrySink):
            await guard.telemetry_sink.close()
        if isinstance(content, HttpContentSource):
            await content.close()

    if result is None:
        logger.error("No verdict produced for %s", url)
        return EXIT_ERROR
    _print_result(result, args.json)
    logger.debug("Metrics: %s", metrics.get_summary())
    logger.debug("Top indicators: %s", metrics.top_indicators())
    return EXIT_CODES[result.action]


def run_check_domain(args: argparse.Namespace, config: Config) -> int:
    guard = PageGuard.from_config(config, StaticContentSource(args.domain))
    try:
        store = guard.load_store()
    except RuleStoreUnavailable as exc:
        logger.error("%s", exc)
        return EXIT_ERROR

    detector = DomainSquattingDetector(store.squatting)
    verdict = detector.check(args.domain)
    outcome = OutcomeAggregator().aggregate([], verdict)

    if args.json:
        print(json.dumps({
            "domain": args.domain,
            "action": outcome.action.value,
            "squatting": verdict.to_dict() if verdict else {"detected": False},
        }, indent=2))
    elif verdict is None:
        print(f"{args.domain}: no squatting detected ({len(store.protected_domains)} protected domains)")
    else:
        print(f"{args.domain}: impersonates {verdict.protected_domain} "
              f"[{verdict.severity.value}, confidence {verdict.confidence:.2f}]")
        for technique in verdict.techniques:
            print(f"  - {technique.technique}: {technique.description} ({technique.confidence:.2f})")
    return EXIT_CODES[outcome.action]


def run_validate(args: argparse.Namespace, config: Config) -> int:
    errors = validate_config(config)
    for err in errors:
        logger.error(err)
    if errors:
        return EXIT_ERROR
    guard = PageGuard.from_config(config, StaticContentSource(""))
    try:
        store = guard.load_store()
    except RuleStoreUnavailable as exc:
        logger.error("%s", exc)
        return EXIT_ERROR
    print(json.dumps(store.summary(), indent=2))
    for message in store.config_errors:
        print(f"skipped: {message}")
    for indicator_id, reason in store.risky_patterns:
        print(f"risky pattern in {indicator_id}: {reason}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point."""
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)
    config = _apply_overrides(load_config(), args)

    if args.command == "scan":
        return asyncio.run(run_scan(args, config))
    if args.command == "check-domain":
        return run_check_domain(args, config)
    return run_validate(args, config)


if __name__ == "__main__":
    sys.exit(main())
