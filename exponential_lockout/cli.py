"""CLI entry point: inspect and clear lockouts, validate policy configuration."""

from __future__ import annotations

import argparse
import logging
import sys

from .config import settings
from .engine import LockoutEngine, build_engine
from .errors import LockoutError
from .scheduler import lockout_schedule


def _confirm(question: str) -> bool:
    try:
        answer = input(f"{question} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def _print_status(engine: LockoutEngine, context: str, identity: str) -> bool:
    """Print the current state; returns False when there is nothing recorded."""
    info = engine.get_lockout_info(context, identity)
    if not info.is_locked_out and info.attempts == 0:
        print(f"No lockout found for context '{context}' and key '{identity}'.")
        return False

    print(f"Current status for '{context}' / '{identity}':")
    print(f"- Locked out: {'Yes' if info.is_locked_out else 'No'}")
    print(f"- Attempts: {info.attempts}")
    if info.is_locked_out:
        print(f"- Remaining time: {info.remaining_time} seconds")
    return True


def _cmd_status(engine: LockoutEngine, args: argparse.Namespace) -> int:
    _print_status(engine, args.context, args.identity)
    return 0


def _cmd_clear(engine: LockoutEngine, args: argparse.Namespace) -> int:
    context = args.context
    # Raises for unknown or disabled contexts before anything is touched
    engine.policy(context)

    if args.all or not args.identity:
        print(f"This will clear ALL lockouts for context '{context}'.")
        if not args.force and not _confirm("Are you sure you want to proceed?"):
            print("Operation cancelled.")
            return 0
        removed = engine.clear_context(context)
        print(f"Successfully cleared {removed} lockout(s) for context '{context}'.")
        return 0

    identity = args.identity
    if not args.force:
        if not _print_status(engine, context, identity):
            return 0
        if not _confirm(f"Do you want to clear the lockout for '{context}' / '{identity}'?"):
            print("Operation cancelled.")
            return 0
    engine.clear(context, identity)
    print(f"Successfully cleared lockout for context '{context}' and key '{identity}'.")
    return 0


def _cmd_check_config(engine: LockoutEngine, args: argparse.Namespace) -> int:
    policies = engine.resolver.policies()
    contexts = sorted(policies)
    if not contexts:
        print("No lockout contexts configured.")
        return 0

    col_context = max(len("Context"), *(len(c) for c in contexts))
    header = f"{'Context':<{col_context}}  {'On':<3}  {'Min':>3}  {'Mode':<8}  {'Key':<10}  Delays"
    print(header)
    print("-" * len(header))
    for name in contexts:
        policy = policies[name]
        schedule = lockout_schedule(policy, max(policy.min_attempts, 1) + len(policy.delays) - 1)
        delays = ", ".join(f"{d}s" for d in schedule if d is not None)
        print(
            f"{name:<{col_context}}  "
            f"{'yes' if policy.enabled else 'no':<3}  "
            f"{policy.min_attempts:>3}  "
            f"{policy.response_mode.value:<8}  "
            f"{policy.identity_extractor.name:<10}  "
            f"{delays}"
        )
    return 0


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(level=logging.ERROR)

    parser = argparse.ArgumentParser(
        prog="exponential-lockout",
        description="Inspect and clear exponential lockouts",
    )
    sub = parser.add_subparsers(dest="command")

    # status
    status_parser = sub.add_parser("status", help="Show lockout status for a key")
    status_parser.add_argument("context", help="Lockout context (e.g. login, otp)")
    status_parser.add_argument("identity", help="Tracked key (email, phone, IP, ...)")

    # clear
    clear_parser = sub.add_parser("clear", help="Clear lockouts for a context or a single key")
    clear_parser.add_argument("context", help="Lockout context to clear")
    clear_parser.add_argument(
        "identity",
        nargs="?",
        default=None,
        help="Specific key to clear (clears the whole context if omitted)",
    )
    clear_parser.add_argument(
        "--all",
        action="store_true",
        default=False,
        help="Clear all lockouts for the context",
    )
    clear_parser.add_argument(
        "--force",
        action="store_true",
        default=False,
        help="Clear without showing status or asking for confirmation",
    )

    # check-config
    sub.add_parser("check-config", help="Resolve every context and print its policy")

    args = parser.parse_args(argv)

    commands = {
        "status": _cmd_status,
        "clear": _cmd_clear,
        "check-config": _cmd_check_config,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    try:
        engine = build_engine(settings)
        code = handler(engine, args)
    except LockoutError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
