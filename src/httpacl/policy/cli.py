#!/usr/bin/env python3
"""Command-line utility to validate and test httpacl policy configs.

Usage:
    httpacl <policy.yml> [--strict]
    httpacl <policy.yml> --check <url> [--method POST] [--ip 10.0.0.1]
    httpacl <policy.yml> --analyze-log <requests.jsonl>
    httpacl <policy.yml> --dump-policy

Exit codes:
    0 - Valid policy (or all requests allowed in check/analyze mode)
    1 - Invalid policy (or some requests denied in check/analyze mode)
    2 - File not found or invalid YAML/JSON
"""

import argparse
import json
import sys
from pathlib import Path

from ..errors import InvalidUrlError, PolicyConfigError
from .classifier import parse_url
from .config import PolicyConfig, load_config
from .enforcer import EgressEnforcer, Verdict
from .parser import validate_policy


def request_key(request: dict) -> tuple:
    """Generate a deduplication key for a logged request."""
    return (
        (request.get("method") or "GET").upper(),
        request.get("url") or "",
        tuple(sorted(request.get("ips") or [])),
    )


def format_request(request: dict) -> str:
    """Format a logged request for human-readable output."""
    method = (request.get("method") or "GET").upper()
    url = request.get("url") or ""
    ips = request.get("ips") or []
    if ips:
        return f"{method} {url} ({', '.join(ips)})"
    return f"{method} {url}"


def format_verdict(verdict: Verdict) -> list[str]:
    """Per-dimension lines for a verdict."""
    lines = []
    for key, decision in verdict.decisions.items():
        status = "allow" if decision.allowed else "deny"
        line = f"  {key:<24} {status:<5} {decision.classification.value}"
        if decision.details:
            line += f" ({decision.details})"
        lines.append(line)
    return lines


def check_request(
    enforcer: EgressEnforcer, url: str, method: str = "GET", ips: list[str] | None = None
) -> tuple[Verdict, Verdict | None]:
    """Run the request check and, if addresses are given, the connection check."""
    request_verdict = enforcer.check_request(url, method)
    connection_verdict = None
    if ips:
        connection_verdict = enforcer.check_connection(parse_url(url).host, ips)
    return request_verdict, connection_verdict


def analyze_requests(enforcer: EgressEnforcer, requests: list[dict]) -> dict:
    """Analyze logged requests against a policy.

    Uses the same EgressEnforcer logic as the client hooks so offline
    analysis matches runtime enforcement.

    Returns dict with 'allowed', 'blocked' and 'errors' lists, each
    containing (request, count, reason) tuples. Requests whose URL can't be
    parsed are reported as errors, not policy decisions.
    """
    counts: dict[tuple, dict] = {}
    for request in requests:
        key = request_key(request)
        if key not in counts:
            counts[key] = {"request": request, "count": 0}
        counts[key]["count"] += 1

    allowed = []
    blocked = []
    errors = []

    for data in counts.values():
        request = data["request"]
        count = data["count"]
        try:
            request_verdict, connection_verdict = check_request(
                enforcer,
                request.get("url") or "",
                request.get("method") or "GET",
                request.get("ips"),
            )
        except InvalidUrlError as e:
            errors.append((request, count, e.reason))
            continue

        for verdict in (request_verdict, connection_verdict):
            if verdict is not None and verdict.blocked:
                blocked.append((request, count, verdict.reason))
                break
        else:
            allowed.append((request, count, request_verdict.reason))

    return {"allowed": allowed, "blocked": blocked, "errors": errors}


def print_analysis_results(results: dict, verbose: bool = False) -> int:
    """Print analysis results in human-readable format.

    Returns exit code (0 if all allowed, 1 if any blocked).
    """
    blocked = results["blocked"]
    allowed = results["allowed"]
    errors = results.get("errors", [])

    # Always show blocked requests (this is what users care about most)
    if blocked:
        print("BLOCKED requests (would fail with this policy):")
        print("-" * 60)
        for request, count, reason in sorted(blocked, key=lambda x: format_request(x[0])):
            count_str = f" (x{count})" if count > 1 else ""
            print(f"  {format_request(request)}{count_str}")
            print(f"    ^ {reason}")
        print()

    # Show allowed requests only in verbose mode
    if verbose and allowed:
        print("ALLOWED requests:")
        print("-" * 60)
        for request, count, _ in sorted(allowed, key=lambda x: format_request(x[0])):
            count_str = f" (x{count})" if count > 1 else ""
            print(f"  {format_request(request)}{count_str}")
        print()

    if errors:
        print("INVALID requests (URL could not be parsed - not policy decisions):")
        print("-" * 60)
        for request, count, reason in sorted(errors, key=lambda x: format_request(x[0])):
            count_str = f" (x{count})" if count > 1 else ""
            print(f"  {format_request(request)}{count_str}  [error={reason}]")
        print()

    # Summary
    total = len(blocked) + len(allowed) + len(errors)
    summary_parts = [f"{len(allowed)} allowed", f"{len(blocked)} blocked"]
    if errors:
        summary_parts.append(f"{len(errors)} invalid")
    print(f"Summary: {', '.join(summary_parts)} (out of {total} unique requests)")

    if blocked:
        print("\nTo allow blocked requests, add rules for them to your policy.")
        return 1
    else:
        print("\nAll requests would be allowed by this policy.")
        return 0


def load_requests_log(log_path: Path) -> list[dict]:
    """Load requests from a JSONL log file.

    Each line is {"url": ..., "method": ..., "ips": [...]}; method and ips
    are optional.
    """
    requests = []
    with open(log_path) as f:
        for line_num, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                request = json.loads(line)
            except json.JSONDecodeError as e:
                print(f"Warning: Invalid JSON on line {line_num}: {e}", file=sys.stderr)
                continue
            if not isinstance(request, dict) or not request.get("url"):
                print(f"Warning: No url on line {line_num}", file=sys.stderr)
                continue
            requests.append(request)
    return requests


def report_validation(config: PolicyConfig, path: Path, args) -> int:
    """Validate the config's policy text, print errors. Returns the error count."""
    errors = validate_policy(config.policy_text, base=config.base_policy())

    for line_num, line, error in errors:
        if line_num:
            print(f"{path}: line {line_num}: {line}")
        else:
            print(f"{path}:")
        # parsimonious errors are verbose, simplify
        if "Rule" in error:
            print("    ^ invalid syntax")
        else:
            print(f"    ^ {error}")
        if args.strict:
            print("\nValidation failed (strict mode)")
            sys.exit(1)

    return len(errors)


def main():
    parser = argparse.ArgumentParser(
        description="Validate and test httpacl egress policy configs.",
        epilog="Exit codes: 0=valid/all-allowed, 1=invalid/some-denied, 2=file error",
    )
    parser.add_argument("config", type=Path, help="Path to policy config YAML file")
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Treat any policy error or warning as fatal (exit 1 on first error)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show per-dimension decisions (check) or allowed requests (analyze)",
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Only output errors, no summary"
    )
    parser.add_argument(
        "--dump-policy",
        action="store_true",
        help="Output the effective policy as JSON to stdout",
    )
    parser.add_argument(
        "--check",
        action="append",
        metavar="URL",
        help="Check a request URL against the policy (repeatable)",
    )
    parser.add_argument(
        "--method",
        default="GET",
        help="HTTP method for --check (default: GET)",
    )
    parser.add_argument(
        "--ip",
        action="append",
        metavar="ADDR",
        help="Resolved address for --check URLs (repeatable)",
    )
    parser.add_argument(
        "--analyze-log",
        type=Path,
        metavar="REQUESTS.jsonl",
        help="Analyze a requests log against the policy (test before deploying)",
    )

    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except PolicyConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    total_errors = report_validation(config, args.config, args)

    # Handle --dump-policy mode
    if args.dump_policy:
        print(json.dumps(config.build_policy().to_dict(), indent=2))
        sys.exit(1 if total_errors else 0)

    enforcer = EgressEnforcer.from_config(config)

    # Handle --check mode
    if args.check:
        any_denied = False
        for url in args.check:
            try:
                verdicts = check_request(enforcer, url, args.method, args.ip)
            except InvalidUrlError as e:
                print(f"Error: {e}", file=sys.stderr)
                sys.exit(2)
            verdicts = [v for v in verdicts if v is not None]
            denied = any(v.blocked for v in verdicts)
            any_denied = any_denied or denied
            print(f"{'DENY ' if denied else 'ALLOW'} {args.method.upper()} {url}")
            for verdict in verdicts:
                if denied and verdict.blocked:
                    print(f"  {verdict.reason}")
                if args.verbose:
                    print("\n".join(format_verdict(verdict)))
        sys.exit(1 if any_denied or total_errors else 0)

    # Handle --analyze-log mode
    if args.analyze_log:
        if not args.analyze_log.exists():
            print(f"Error: Log file not found: {args.analyze_log}", file=sys.stderr)
            sys.exit(2)

        requests = load_requests_log(args.analyze_log)
        if not requests:
            print("No requests found in log file.", file=sys.stderr)
            sys.exit(0)

        results = analyze_requests(enforcer, requests)
        exit_code = print_analysis_results(results, verbose=args.verbose)
        # Exit with error if the policy itself had errors
        sys.exit(1 if total_errors else exit_code)

    # Summary
    if not args.quiet:
        if total_errors > 0:
            print(f"\nValidation failed: {total_errors} error(s)")
        else:
            print(f"\nValidation passed: {args.config}")

    sys.exit(1 if total_errors > 0 else 0)


if __name__ == "__main__":
    main()
