"""CLI entry point for the load scanner."""

import argparse
import asyncio
import logging
import sqlite3
import sys

from pydantic import BaseModel, TypeAdapter

from loadscout.core.config import Settings
from loadscout.core.db import init_db
from loadscout.core.errors import ConfigurationError, LoadScoutError
from loadscout.platforms.cloudtrucks.client import CloudTrucksClient
from loadscout.vault.cipher import CredentialCipher
from loadscout.vault.credentials import CredentialVault


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--export",
        choices=["json"],
        help="Print the result as JSON",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Load scanner - match load-board results against saved searches",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- scan ---
    scan_parser = subparsers.add_parser("scan", help="Scan saved search criteria")
    target = scan_parser.add_mutually_exclusive_group()
    target.add_argument("--user", help="Scan one user (default: all users)")
    target.add_argument("--guest", metavar="TOKEN", help="Scan one guest session")
    scan_parser.add_argument(
        "--criteria-id",
        type=int,
        help="Scan a single criterion (requires --user)",
    )
    scan_parser.add_argument(
        "--scope",
        choices=["fronthaul", "backhaul", "all"],
        help="Which criteria to scan (default: fronthaul, requires --user)",
    )
    _add_common(scan_parser)

    # --- check-interested ---
    check_parser = subparsers.add_parser(
        "check-interested",
        help="Re-verify availability of a user's saved loads",
    )
    check_parser.add_argument("--user", required=True, help="User ID")
    _add_common(check_parser)

    # --- backhauls ---
    backhaul_parser = subparsers.add_parser(
        "backhauls",
        help="Generate backhaul suggestions for saved loads",
    )
    backhaul_parser.add_argument("--user", help="One user (default: all users)")
    _add_common(backhaul_parser)

    # --- cleanup ---
    cleanup_parser = subparsers.add_parser("cleanup", help="Run retention cleanup")
    cleanup_parser.add_argument(
        "--guest",
        action="store_true",
        help="Clean up guest sandbox data instead of backhaul suggestions",
    )
    _add_common(cleanup_parser)

    # --- connect ---
    connect_parser = subparsers.add_parser(
        "connect",
        help="Store a provider session for a user",
    )
    connect_parser.add_argument("--user", required=True, help="User ID")
    connect_parser.add_argument("--session-cookie", help="Session cookie value")
    connect_parser.add_argument("--csrf-token", help="CSRF token value")
    connect_parser.add_argument(
        "--login-timeout",
        type=float,
        default=300.0,
        help="Seconds to wait for a manual browser login (default: 300)",
    )
    _add_common(connect_parser)

    # --- health ---
    health_parser = subparsers.add_parser(
        "health",
        help="Check every stored session against the provider",
    )
    _add_common(health_parser)

    # --- insights ---
    insights_parser = subparsers.add_parser("insights", help="Show market conditions")
    insights_parser.add_argument("--user", required=True, help="User ID")
    insights_parser.add_argument("--equipment", default="DRY_VAN", help="Equipment code")
    insights_parser.add_argument(
        "--distance-type",
        default="Long",
        choices=["Local", "Short", "Long"],
        help="Trip distance bucket (default: Long)",
    )
    _add_common(insights_parser)

    # --- gen-key ---
    key_parser = subparsers.add_parser("gen-key", help="Print a new encryption key")
    key_parser.add_argument("--verbose", "-v", action="store_true", help=argparse.SUPPRESS)

    args = parser.parse_args(argv)
    if args.command == "scan":
        if not args.user and (args.criteria_id is not None or args.scope is not None):
            scan_parser.error("--criteria-id and --scope require --user")
        args.scope = args.scope or "fronthaul"
    return args


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _open_vault(settings: Settings) -> tuple[sqlite3.Connection, CredentialVault]:
    cipher = CredentialCipher(settings.require_encryption_key())
    conn = init_db(settings.database.path)
    return conn, CredentialVault(conn, cipher)


def _emit(result: BaseModel, export_format: str | None) -> None:
    if export_format == "json":
        print(result.model_dump_json(indent=2))


async def cmd_scan(settings: Settings, args: argparse.Namespace) -> None:
    from loadscout.pipeline.orchestrator import ScanOrchestrator

    conn, vault = _open_vault(settings)
    try:
        async with CloudTrucksClient(settings.provider) as client:
            orchestrator = ScanOrchestrator(conn, vault, client, settings)
            if args.guest:
                result = await orchestrator.scan_guest_session(args.guest)
            elif args.user:
                result = await orchestrator.scan_user(args.user, args.criteria_id, args.scope)
            else:
                summary = await orchestrator.scan_all_users()
                print(f"\nScan complete: {summary.total_scanned} users, "
                      f"{summary.total_loads_found} new loads, {len(summary.errors)} errors.")
                for error in summary.errors:
                    print(f"  {error}")
                _emit(summary, args.export)
                return
        status = "OK" if result.success else f"FAILED ({result.error})"
        print(f"\nScan {status}: {result.loads_found} new loads.")
        _emit(result, args.export)
    finally:
        conn.close()


async def cmd_check_interested(settings: Settings, args: argparse.Namespace) -> None:
    from loadscout.core.schemas import AvailabilityResult
    from loadscout.pipeline.availability import AvailabilityVerifier

    conn, vault = _open_vault(settings)
    try:
        async with CloudTrucksClient(settings.provider) as client:
            verifier = AvailabilityVerifier(conn, vault, client, settings)
            results = await verifier.check_interested(args.user)
    finally:
        conn.close()

    counts: dict[str, int] = {}
    for r in results:
        counts[r.status] = counts.get(r.status, 0) + 1
    print(f"\nChecked {len(results)} saved loads: "
          + ", ".join(f"{n} {s}" for s, n in sorted(counts.items())))
    if args.export == "json":
        print(TypeAdapter(list[AvailabilityResult]).dump_json(results, indent=2).decode())


async def cmd_backhauls(settings: Settings, args: argparse.Namespace) -> None:
    from loadscout.pipeline.backhaul import BackhaulSuggester

    conn, vault = _open_vault(settings)
    try:
        async with CloudTrucksClient(settings.provider) as client:
            suggester = BackhaulSuggester(conn, vault, client, settings)
            if args.user:
                result = await suggester.scan_user(args.user)
            else:
                result = await suggester.scan_all_users()
    finally:
        conn.close()

    print(f"\nBackhauls: {result.total_loads_scanned} saved loads scanned, "
          f"{result.total_backhauls_found} options found.")
    for error in result.errors:
        print(f"  {error}")
    _emit(result, args.export)


def cmd_cleanup(settings: Settings, args: argparse.Namespace) -> None:
    from loadscout.pipeline.cleanup import RetentionCleanup

    conn = init_db(settings.database.path)
    try:
        cleanup = RetentionCleanup(conn, settings)
        if args.guest:
            guest = cleanup.purge_guest_data()
            print(f"\nGuest cleanup: {guest.guest_sessions} sessions, "
                  f"{guest.guest_search_criteria} criteria, "
                  f"{guest.guest_interested_loads} saved loads deleted.")
            _emit(guest, args.export)
        else:
            result = cleanup.run()
            print(f"\nCleanup: {result.expired} expired, {result.failed} failed, "
                  f"{result.orphaned} orphaned suggestions deleted.")
            _emit(result, args.export)
    finally:
        conn.close()


async def cmd_connect(settings: Settings, args: argparse.Namespace) -> None:
    if args.session_cookie and args.csrf_token:
        tokens: tuple[str, str] | None = (args.session_cookie, args.csrf_token)
    else:
        from loadscout.browser.session import BrowserSession

        print("A browser window will open. Log in, and the session will be captured.")
        async with BrowserSession(settings.provider.base_url) as session:
            tokens = await session.wait_for_login(timeout_s=args.login_timeout)
    if tokens is None:
        print("Error: login was not detected; nothing stored.", file=sys.stderr)
        sys.exit(1)

    conn, vault = _open_vault(settings)
    try:
        async with CloudTrucksClient(settings.provider) as client:
            check = await client.test_connection(*tokens)
        if not check.success:
            print(f"Error: session rejected by provider ({check.error}).", file=sys.stderr)
            sys.exit(1)
        vault.store(args.user, *tokens)
    finally:
        conn.close()
    print(f"Session stored for user {args.user}.")


async def cmd_health(settings: Settings, args: argparse.Namespace) -> None:
    from loadscout.pipeline.credential_health import check_all_credentials

    conn, vault = _open_vault(settings)
    try:
        async with CloudTrucksClient(settings.provider) as client:
            result = await check_all_credentials(conn, vault, client)
    finally:
        conn.close()
    print(f"\nSessions: {result.valid_count} valid, {result.expired_count} expired.")
    _emit(result, args.export)


async def cmd_insights(settings: Settings, args: argparse.Namespace) -> None:
    from loadscout.pipeline.insights import MarketInsightsService

    conn, vault = _open_vault(settings)
    try:
        async with CloudTrucksClient(settings.provider) as client:
            service = MarketInsightsService(vault, client, config=settings.insights_cache)
            insights = await service.get(args.user, args.equipment, args.distance_type)
    finally:
        conn.close()

    if insights is None:
        print("Market insights are not available from the provider.")
        return
    print(f"\n{insights.equipment_type} / {insights.distance_type}: "
          f"{insights.total_loads} loads, national avg ${insights.national_avg_rpm:.2f}/mi")
    for region in insights.regions:
        print(f"  {region.region_name:<24} {region.load_count:>5} loads  "
              f"${region.avg_rate_per_mile:.2f}/mi  {region.demand_level}  {region.trend}")
    _emit(insights, args.export)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    if args.command == "gen-key":
        print(CredentialCipher.generate_key())
        return

    try:
        settings = Settings.from_yaml(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        if args.command == "scan":
            asyncio.run(cmd_scan(settings, args))
        elif args.command == "check-interested":
            asyncio.run(cmd_check_interested(settings, args))
        elif args.command == "backhauls":
            asyncio.run(cmd_backhauls(settings, args))
        elif args.command == "cleanup":
            cmd_cleanup(settings, args)
        elif args.command == "connect":
            asyncio.run(cmd_connect(settings, args))
        elif args.command == "health":
            asyncio.run(cmd_health(settings, args))
        elif args.command == "insights":
            asyncio.run(cmd_insights(settings, args))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except LoadScoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
