"""Server CLI for controller reconciliation and custom planet operations."""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager

from sqlalchemy.orm import Session

from ztadmin.config import AppSettings, get_settings
from ztadmin.controller.client import (
    ControllerClient,
    ControllerClientError,
    create_controller_client,
)
from ztadmin.controller.reconciliation import find_unlinked_networks, get_controller_stats
from ztadmin.db.session import session_scope
from ztadmin.repositories.audit_events import AuditEventRepository
from ztadmin.repositories.global_options import GlobalOptionsRepository
from ztadmin.repositories.networks import NetworkRepository
from ztadmin.world.config_builder import WorldConfigValidationError, WorldGenerateRequest
from ztadmin.world.lifecycle import (
    WORLD_TARGET_ID,
    WORLD_TARGET_TYPE,
    WorldLifecycleError,
    WorldLifecycleManager,
    create_world_lifecycle_manager,
    run_world_generate,
    run_world_reset,
)

SessionScopeFactory = Callable[[], AbstractContextManager[Session]]
ControllerClientFactory = Callable[[AppSettings], ControllerClient]
WorldManagerFactory = Callable[[AppSettings], WorldLifecycleManager]


class CliValidationError(ValueError):
    """Raised when world CLI input validation fails."""


def main(
    argv: Sequence[str] | None = None,
    *,
    session_scope_factory: SessionScopeFactory | None = None,
    controller_client_factory: ControllerClientFactory | None = None,
    world_manager_factory: WorldManagerFactory | None = None,
) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    scope_factory = session_scope_factory or session_scope
    build_controller = controller_client_factory or create_controller_client
    build_manager = world_manager_factory or create_world_lifecycle_manager

    try:
        settings = get_settings()

        if args.command == "stats":
            stats = asyncio.run(get_controller_stats(controller=build_controller(settings)))
            status = stats.controller_status
            print(
                f"controller address={status.address} online={status.online} "
                f"version={status.version} networks={stats.network_count} "
                f"members={stats.total_members}"
            )
            return 0

        with scope_factory() as db_session:
            if args.command == "unlinked":
                result = asyncio.run(
                    find_unlinked_networks(
                        controller=build_controller(settings),
                        load_persisted_network_ids=NetworkRepository(db_session).list_ids,
                    )
                )
                for network in result.networks:
                    print(
                        f"{network.network_id} name={network.name!r} "
                        f"members={network.member_count}"
                    )
                for failure in result.failures:
                    print(
                        f"warning: {failure.network_id} detail unavailable: {failure.message}",
                        file=sys.stderr,
                    )
                print(
                    f"unlinked networks={len(result.networks)} failures={result.failure_count}"
                )
                return 0

            manager = build_manager(settings)

            if args.command == "status":
                root_server = GlobalOptionsRepository(db_session).get_root_server_config()
                disk_status = manager.describe_world_state()
                print(
                    f"world state={root_server.world_state.value} plID={root_server.pl_id} "
                    f"plBirth={root_server.pl_birth} endpoints={','.join(root_server.endpoints)}"
                )
                print(
                    f"planet present={disk_status.planet_present} "
                    f"backups={len(disk_status.backup_entries)} "
                    f"staging present={disk_status.staging_present}"
                )
                last_event = AuditEventRepository(db_session).latest_for_target(
                    target_type=WORLD_TARGET_TYPE,
                    target_id=WORLD_TARGET_ID,
                )
                print(f"last operation={last_event.action if last_event else 'none'}")
                return 0

            if args.command == "generate":
                generate_result = run_world_generate(
                    manager=manager,
                    db_session=db_session,
                    request=_generate_request_from_args(args),
                    trigger="cli_generate",
                )
                print(
                    f"custom planet installed plID={generate_result.config.pl_id} "
                    f"plBirth={generate_result.config.pl_birth} "
                    f"backup={generate_result.backup_path or 'unchanged'}"
                )
                return 0

            if args.command == "reset":
                reset_result = run_world_reset(
                    manager=manager,
                    db_session=db_session,
                    trigger="cli_reset",
                )
                print(f"planet restored from={reset_result.restored_from}")
                return 0

            raise CliValidationError(f"unsupported command: {args.command}")
    except WorldConfigValidationError as exc:
        print(f"error: {exc.field}: {exc.reason}", file=sys.stderr)
        return 2
    except (
        CliValidationError,
        ControllerClientError,
        WorldLifecycleError,
        ValueError,
    ) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


def _generate_request_from_args(args: argparse.Namespace) -> WorldGenerateRequest:
    endpoints = tuple(
        endpoint for raw_value in args.endpoint for endpoint in raw_value.split(",")
    )
    return WorldGenerateRequest(
        endpoints=endpoints,
        pl_id=args.pl_id,
        pl_birth=args.pl_birth,
        recommend=not args.custom,
        comment=args.comment,
        identity=args.identity,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m ztadmin.cli.world")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("stats", help="show controller status and network/member totals")
    subparsers.add_parser("unlinked", help="list controller networks not adopted locally")
    subparsers.add_parser("status", help="show persisted and on-disk custom planet state")

    generate_parser = subparsers.add_parser("generate", help="generate and install a custom planet")
    generate_parser.add_argument(
        "--endpoint",
        action="append",
        default=[],
        required=True,
        help="root node endpoint as <ip>/<port>; repeat or comma-separate for several",
    )
    generate_parser.add_argument(
        "--custom",
        action="store_true",
        help="use explicit --pl-id/--pl-birth instead of the recommended values",
    )
    generate_parser.add_argument("--pl-id", type=int)
    generate_parser.add_argument("--pl-birth", type=int)
    generate_parser.add_argument("--comment")
    generate_parser.add_argument("--identity")

    subparsers.add_parser("reset", help="restore the original planet from backup")

    return parser


if __name__ == "__main__":
    raise SystemExit(main())
