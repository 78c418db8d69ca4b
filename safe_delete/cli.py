#!/usr/bin/env python3
"""CLI tool for safe deletion of marketplace users and products.

This module provides operational commands around the deletion engine: a
read-only diagnostic of what still references a user, the deletions
themselves, and a view of the phase plan the engine will follow.

Usage:
    # Show which records still reference a user
    python -m safe_delete.cli scan <user-id>

    # Delete a user and everything that depends on it
    python -m safe_delete.cli delete-user <user-id>

    # Delete a product with its reviews, cart lines and order items
    python -m safe_delete.cli delete-product <product-id>

    # Print the phase plan for a root entity
    python -m safe_delete.cli show-plan user
"""

import argparse
import asyncio
import sys

from safe_delete.core.config import settings
from safe_delete.core.database import dispose_engine, get_engine
from safe_delete.core.logging import configure_logging
from safe_delete.deletion.errors import (
    CascadeStepError,
    FinalizationError,
    PlanError,
    ProtectedEntityError,
)
from safe_delete.deletion.planner import build_plan
from safe_delete.deletion.registry import EntityKind
from safe_delete.deletion.scanner import BlockingReferenceReport
from safe_delete.deletion.service import DeletionResult, DeletionService


def _print_result(result: DeletionResult) -> None:
    if result.already_gone:
        print(f"✅ {result.entity.capitalize()} {result.entity_id} was already gone")
    else:
        print(f"✅ Deleted {result.entity} {result.entity_id} ({result.outcome.value})")
    for label, count in result.removed.items():
        print(f"   {label:<45} {count} removed")
    for label, count in result.nullified.items():
        print(f"   {label:<45} {count} unassigned")
    if result.absent:
        print(f"   Not deployed (skipped): {', '.join(result.absent)}")


def _print_report(report: BlockingReferenceReport) -> None:
    for label, count in report.counts.items():
        print(f"   {label:<45} {count}")
    for label, cause in report.errors.items():
        print(f"   {label:<45} could not count: {cause}", file=sys.stderr)


async def cmd_scan(args: argparse.Namespace, service: DeletionService) -> int:
    """
    Print records that still reference a user.

    Args:
        args: Parsed command-line arguments
        service: Deletion service

    Returns:
        Exit code (0 if nothing blocks deletion, 1 otherwise)
    """
    report = await service.scan_blocking_references(args.principal_id)
    if not report.blocking and not report.errors:
        print(f"✅ No references to user {args.principal_id}")
        return 0

    print(f"Found {report.total} reference(s) to user {args.principal_id}:\n")
    _print_report(report)
    return 1


async def cmd_delete_user(args: argparse.Namespace, service: DeletionService) -> int:
    """
    Delete a user and every dependent record.

    Args:
        args: Parsed command-line arguments
        service: Deletion service

    Returns:
        Exit code (0 for success, 1 for error)
    """
    try:
        result = await service.delete_principal_safely(args.principal_id)
    except ProtectedEntityError as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1
    except CascadeStepError as e:
        print(f"❌ Error: could not clean {e.table}: {e.cause}", file=sys.stderr)
        print("💡 Re-run the command once the cause is fixed; completed steps are not repeated")
        return 1
    except FinalizationError as e:
        print(f"❌ Error: {e.cause}", file=sys.stderr)
        print("Still referenced by:")
        _print_report(e.report)
        return 1

    _print_result(result)
    return 0


async def cmd_delete_product(args: argparse.Namespace, service: DeletionService) -> int:
    """
    Delete a product and every dependent record.

    Args:
        args: Parsed command-line arguments
        service: Deletion service

    Returns:
        Exit code (0 for success, 1 for error)
    """
    try:
        result = await service.delete_product_safely(args.product_id)
    except CascadeStepError as e:
        print(f"❌ Error: could not clean {e.table}: {e.cause}", file=sys.stderr)
        return 1
    except FinalizationError as e:
        print(f"❌ Error: {e.cause}", file=sys.stderr)
        print("Still referenced by:")
        _print_report(e.report)
        return 1

    _print_result(result)
    return 0


async def cmd_show_plan(args: argparse.Namespace, service: DeletionService) -> int:
    """
    Print the deletion plan for a root entity.

    Args:
        args: Parsed command-line arguments
        service: Deletion service (unused; plans do not touch the database)

    Returns:
        Exit code (0 for success, 1 for error)
    """
    try:
        plan = build_plan(EntityKind(args.entity))
    except PlanError as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1

    print(f"Deletion plan for {plan.root.entity} ({len(plan.phases)} phases):\n")
    for line in plan.describe():
        print(f"   {line}")
    return 0


def main() -> int:
    """
    Main entry point for the CLI tool.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    parser = argparse.ArgumentParser(
        description="Safe deletion CLI tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Check what still references a user
  python -m safe_delete.cli scan 550e8400-e29b-41d4-a716-446655440000

  # Delete a user
  python -m safe_delete.cli delete-user 550e8400-e29b-41d4-a716-446655440000

  # Delete a product
  python -m safe_delete.cli delete-product 7c9e6679-7425-40de-944b-e07fc1f90ae7

  # Show the phase plan for user deletion
  python -m safe_delete.cli show-plan user
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # scan command
    scan_parser = subparsers.add_parser(
        "scan",
        help="List records that still reference a user (read-only)",
        description="Count rows referencing a user or anything it owns, per table and column.",
    )
    scan_parser.add_argument("principal_id", type=str, help="User id")

    # delete-user command
    delete_user_parser = subparsers.add_parser(
        "delete-user",
        help="Delete a user and every dependent record",
        description="Run the dependency-ordered cascade for a user. Safe to re-run.",
    )
    delete_user_parser.add_argument("principal_id", type=str, help="User id")

    # delete-product command
    delete_product_parser = subparsers.add_parser(
        "delete-product",
        help="Delete a product and every dependent record",
        description="Remove a product's reviews, cart lines and order items, then the product.",
    )
    delete_product_parser.add_argument("product_id", type=str, help="Product id")

    # show-plan command
    show_plan_parser = subparsers.add_parser(
        "show-plan",
        help="Print the phase plan for a root entity",
        description="Print the ordered phases the engine runs for a user or product deletion.",
    )
    show_plan_parser.add_argument("entity", choices=[kind.value for kind in EntityKind], help="Root entity")

    # Parse arguments
    args = parser.parse_args()

    # Show help if no command provided
    if not args.command:
        parser.print_help()
        return 1

    configure_logging(log_level=settings.LOG_LEVEL)

    # Dispatch to command handler
    command_handlers = {
        "scan": cmd_scan,
        "delete-user": cmd_delete_user,
        "delete-product": cmd_delete_product,
        "show-plan": cmd_show_plan,
    }

    if handler := command_handlers.get(args.command):

        async def run_with_service() -> int:
            try:
                return await handler(args, DeletionService(get_engine()))
            except Exception as e:
                print(f"❌ Unexpected error: {e}", file=sys.stderr)
                return 1
            finally:
                await dispose_engine()

        return asyncio.run(run_with_service())

    print(f"❌ Unknown command: {args.command}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
