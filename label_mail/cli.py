"""Console entry points: ``label-mail``, ``label-message`` and ``forward-file``."""

from __future__ import annotations

import argparse
import logging
import signal
import smtplib
import sys
import threading
from datetime import datetime, timedelta, timezone

from label_mail import __version__
from label_mail.addresses import Address, parse_forward_address
from label_mail.config import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_ENVIRONMENT_FILE,
    DEFAULT_LOCAL_RULES_FILE,
    DEFAULT_MAILDIR,
    DEFAULT_RULES_FILE,
    AppConfig,
    CredentialProvider,
    EnvironmentCredentialProvider,
    expand_path,
    load_app_config,
    resolve_sender_email,
)
from label_mail.forward import Forwarder
from label_mail.mail_filter import MailFilter
from label_mail.message import Message
from label_mail.rules import CompiledRule, describe_rule, load_rules, read_environment
from label_mail.summary import ActionsSummary
from label_mail.vacuum import vacuum


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(levelname)s: %(message)s"


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--maildir",
        default=DEFAULT_MAILDIR,
        help=f"Root directory of the local maildir (default: {DEFAULT_MAILDIR}).",
    )
    parser.add_argument(
        "--rules",
        default=DEFAULT_RULES_FILE,
        help=f"Primary rules YAML file (default: {DEFAULT_RULES_FILE}).",
    )
    parser.add_argument(
        "--local-rules",
        default=DEFAULT_LOCAL_RULES_FILE,
        help=f"Local rules YAML file (default: {DEFAULT_LOCAL_RULES_FILE}).",
    )
    parser.add_argument(
        "--config-file",
        default=DEFAULT_CONFIG_FILE,
        help=f"Path to app config JSON file (default: {DEFAULT_CONFIG_FILE}). File is optional.",
    )
    parser.add_argument(
        "-d",
        "--dry-run",
        action="store_true",
        help="Do not modify, move or forward any message. Print what would have happened.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase logging; repeat for passing rules (-vv) and every rule failure (-vvv).",
    )
    parser.add_argument(
        "-e",
        "--allow-forwarding",
        action="store_true",
        help="Actually send mail for forwarding rules instead of only reporting them.",
    )


def build_label_mail_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="label-mail",
        description="Sort mail in the local maildir by applying labeling rules.",
    )
    add_common_arguments(parser)
    parser.add_argument(
        "-a",
        "--all",
        action="store_true",
        help="Run against mail from all time instead of only recently modified messages.",
    )
    parser.add_argument(
        "-f",
        "--folder",
        action="append",
        default=[],
        help="Only filter this folder (repeatable).",
    )
    parser.add_argument(
        "--vacuum-first",
        action="store_true",
        help="Vacuum the maildir before filtering.",
    )
    parser.add_argument(
        "--vacuum-only",
        action="store_true",
        help="Vacuum the maildir without filtering.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s v{__version__}",
    )
    return parser


def build_label_message_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="label-message",
        description="Apply labeling rules to a single message in the local maildir.",
    )
    add_common_arguments(parser)
    parser.add_argument("folder", help="Maildir folder holding the message (e.g. INBOX).")
    parser.add_argument("filename", help="File name of the message inside new/ or cur/.")
    return parser


def build_forward_file_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="forward-file",
        description="Forward a message stored in a plain file.",
    )
    parser.add_argument("--to", required=True, help="Address (or comma-separated addresses) to forward to.")
    parser.add_argument("--file", required=True, help="Path of the message file to forward.")
    parser.add_argument(
        "--config-file",
        default=DEFAULT_CONFIG_FILE,
        help=f"Path to app config JSON file (default: {DEFAULT_CONFIG_FILE}). File is optional.",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase logging.")
    return parser


def configure_logging(verbose: int) -> None:
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def build_forwarder(app_config: AppConfig, provider: CredentialProvider) -> Forwarder:
    sender = Address(
        name=app_config.smtp.from_name,
        address=resolve_sender_email(app_config.smtp, provider),
    )
    return Forwarder(app_config.smtp, provider.credentials(), sender)


def load_compiled_rules(args: argparse.Namespace) -> list[CompiledRule]:
    environment = read_environment(expand_path(DEFAULT_ENVIRONMENT_FILE))
    return load_rules(expand_path(args.rules), expand_path(args.local_rules), environment)


def build_mail_filter(
    args: argparse.Namespace,
    app_config: AppConfig,
    rules: list[CompiledRule],
    cancel: threading.Event,
    limit_recent: timedelta | None = None,
) -> MailFilter:
    forwarder = None
    needs_forwarder = any(rule.is_forwarding for rule in rules)
    if args.allow_forwarding and not args.dry_run and needs_forwarder:
        forwarder = build_forwarder(app_config, EnvironmentCredentialProvider())

    return MailFilter(
        expand_path(args.maildir),
        rules,
        limit_recent=limit_recent,
        verbose=args.verbose,
        dry_run=args.dry_run,
        allow_forwarding=args.allow_forwarding,
        forwarder=forwarder,
        cancel=cancel,
    )


def install_interrupt_handler(cancel: threading.Event):
    def request_cancel(signum, frame) -> None:
        logger.warning("Interrupted; finishing the current message before stopping.")
        cancel.set()

    return signal.signal(signal.SIGINT, request_cancel)


def report_folder_errors(mail_filter: MailFilter) -> int:
    if not mail_filter.folder_errors:
        return 0
    print(
        "One or more folders failed: " + "; ".join(mail_filter.folder_errors),
        file=sys.stderr,
    )
    return 1


def label_mail_main(argv: list[str] | None = None) -> int:
    args = build_label_mail_parser().parse_args(argv)
    configure_logging(args.verbose)
    cancel = threading.Event()

    try:
        app_config = load_app_config(expand_path(args.config_file))
        rules = load_compiled_rules(args)
        limit_recent = None if args.all else timedelta(hours=app_config.recent_hours)
        mail_filter = build_mail_filter(args, app_config, rules, cancel, limit_recent)
        # label_messages validates on its own; check before vacuum mutates anything.
        if args.vacuum_first:
            mail_filter.validate_move_targets()
    except ValueError as error:
        print(error, file=sys.stderr)
        return 2

    if args.vacuum_first or args.vacuum_only:
        try:
            report = vacuum(mail_filter.mail_root, dry_run=args.dry_run)
        except OSError as error:
            print(f"Could not vacuum {mail_filter.mail_root}: {error}", file=sys.stderr)
            return 1
        logger.info(
            "Vacuum dropped %d folder(s), moved %d message(s), repaired %d message(s).",
            len(report.dropped_folders),
            report.moved_messages,
            report.repaired_messages,
        )

    actions = ActionsSummary()
    if not args.vacuum_only:
        previous_handler = install_interrupt_handler(cancel)
        try:
            actions = mail_filter.label_messages(args.folder)
        except ValueError as error:
            print(error, file=sys.stderr)
            return 2
        except OSError as error:
            print(f"Could not read maildir {mail_filter.mail_root}: {error}", file=sys.stderr)
            return 1
        finally:
            signal.signal(signal.SIGINT, previous_handler)

    print(actions, end="")
    return report_folder_errors(mail_filter)


def label_message_main(argv: list[str] | None = None) -> int:
    args = build_label_message_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        app_config = load_app_config(expand_path(args.config_file))
        rules = load_compiled_rules(args)
        mail_filter = build_mail_filter(args, app_config, rules, threading.Event())
    except ValueError as error:
        print(error, file=sys.stderr)
        return 2

    if args.verbose > 3:
        for rule in mail_filter.folder_rules.for_folder(args.folder):
            logger.debug("RULE: %s", describe_rule(rule))

    try:
        actions = mail_filter.label_message(args.folder, args.filename)
    except ValueError as error:
        print(error, file=sys.stderr)
        return 2
    except OSError as error:
        print(f"Could not label {args.folder}/{args.filename}: {error}", file=sys.stderr)
        return 1

    print(actions, end="")
    return 0


def forward_file_main(argv: list[str] | None = None) -> int:
    args = build_forward_file_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        app_config = load_app_config(expand_path(args.config_file))
        recipients = parse_forward_address(args.to, "--to")
        forwarder = build_forwarder(app_config, EnvironmentCredentialProvider())
    except ValueError as error:
        print(error, file=sys.stderr)
        return 2

    message = Message.from_file(expand_path(args.file))
    try:
        sent = forwarder.forward(message, recipients, datetime.now(timezone.utc))
    except (smtplib.SMTPException, OSError, ValueError) as error:
        print(f"Could not forward {args.file}: {error}", file=sys.stderr)
        return 1

    print(f"Forwarded {args.file} to {', '.join(sent)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(label_mail_main())
