"""The labeling pass: walk maildir folders and apply matching rules.

For each message, rules run in list order. A rule that applies performs its
actions in a fixed order (label, clear, forward, save, move), so that header
changes are persisted before the file is renamed into another folder.
"""

from __future__ import annotations

import logging
import os
import smtplib
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable

from label_mail.addresses import address_list_strings
from label_mail.forward import Forwarder
from label_mail.maildir import MailDirFolder
from label_mail.message import Message, ParseError
from label_mail.predicates import evaluate_rule
from label_mail.rules import (
    TRASH_LABEL,
    CompiledFolderRules,
    CompiledRule,
    RuleConfigError,
    folder_rules,
)
from label_mail.summary import ActionsSummary


logger = logging.getLogger(__name__)

SKIP_FOLDERS = frozenset({"gmail.Spam", "gmail.Drafts", "gmail.Trash", "gmail.Sent_Mail"})


class MailFilter:
    def __init__(
        self,
        mail_root: str | os.PathLike[str],
        rules: list[CompiledRule],
        *,
        now: datetime | None = None,
        limit_recent: timedelta | None = None,
        verbose: int = 0,
        dry_run: bool = False,
        allow_forwarding: bool = False,
        forwarder: Forwarder | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.mail_root = Path(mail_root)
        self.rules = rules
        self.now = now or datetime.now(timezone.utc)
        self.folder_rules: CompiledFolderRules = folder_rules(rules, self.now)
        self.limit_recent = limit_recent
        self.verbose = verbose
        self.dry_run = dry_run
        self.allow_forwarding = allow_forwarding
        self.forwarder = forwarder
        self.cancel = cancel or threading.Event()
        self.folder_errors: list[str] = []

        if self.allow_forwarding and not self.dry_run and self.forwarder is None:
            if any(rule.is_forwarding for rule in rules):
                raise RuleConfigError("Forwarding is allowed but no forwarder is configured.")

    def folder(self, name: str) -> MailDirFolder:
        return MailDirFolder(self.mail_root, name)

    def all_folders(self) -> list[str]:
        with os.scandir(self.mail_root) as entries:
            return sorted(entry.name for entry in entries if entry.is_dir())

    def limit_since(self) -> datetime | None:
        if not self.limit_recent:
            return None
        return self.now - self.limit_recent

    def messages(self, folder: str) -> list[Message]:
        since = self.limit_since()
        messages: list[Message] = []
        for source in self.folder(folder).messages():
            if since is not None:
                modified = datetime.fromtimestamp(source.stat().st_mtime, timezone.utc)
                if modified < since:
                    continue
            messages.append(Message(source))
        return messages

    def message(self, folder: str, filename: str) -> Message:
        return Message(self.folder(folder).message(filename))

    def validate_move_targets(self) -> None:
        missing = sorted(
            {
                rule.move
                for rule in self.rules
                if rule.is_moving and not self.folder(rule.move).exists()
            }
        )
        if missing:
            raise RuleConfigError(
                f"Rules move mail into folders that do not exist under {self.mail_root}: "
                + ", ".join(missing)
            )

    def label_messages(self, only_folders: Iterable[str] = ()) -> ActionsSummary:
        """Run every applicable rule over the chosen folders (all by default).

        A folder that cannot be read is logged and recorded in
        ``folder_errors``; the remaining folders are still processed.
        """
        self.validate_move_targets()
        actions = ActionsSummary()

        folders = list(only_folders) or self.all_folders()
        for folder in folders:
            if self.cancel.is_set():
                logger.warning("Cancelled; skipping remaining folders.")
                break
            if folder in SKIP_FOLDERS:
                continue
            if not self.folder_rules.has_rules_for(folder):
                continue

            try:
                self.label_folder_messages(actions, folder, self.folder_rules.for_folder(folder))
            except OSError as error:
                logger.error("Unable to process folder %s: %s", folder, error)
                self.folder_errors.append(f"{folder}: {error}")

        return actions

    def label_folder_messages(
        self,
        actions: ActionsSummary,
        folder: str,
        rules: list[CompiledRule],
    ) -> None:
        for message in self.messages(folder):
            if self.cancel.is_set():
                logger.warning("Cancelled; skipping remaining messages in %s.", folder)
                return
            self.label_one(actions, message, rules)

    def label_message(self, folder: str, filename: str) -> ActionsSummary:
        self.validate_move_targets()
        actions = ActionsSummary()
        if folder in SKIP_FOLDERS:
            return actions
        self.label_one(actions, self.message(folder, filename), self.folder_rules.for_folder(folder))
        return actions

    def label_one(self, actions: ActionsSummary, message: Message, rules: list[CompiledRule]) -> None:
        if self.verbose > 2:
            logger.debug("Reading %s", message.path)

        try:
            if message.has_keyword(TRASH_LABEL):
                return
            for rule in rules:
                actions.record(self.apply_rule(message, rule))
        except ParseError as error:
            logger.warning("Skipping unreadable message %s: %s", message.path, error)

    def log_operation(self, operation: str, message: Message, targets: Iterable[str]) -> None:
        logger.info("%s %s : %s", operation, message.path, ", ".join(targets))

    def apply_rule(self, message: Message, rule: CompiledRule) -> list[str]:
        evaluation = evaluate_rule(message, rule)

        if self.verbose > 2 and evaluation.failure:
            logger.debug("FAILED: %s.", evaluation.failure)
        if self.verbose > 2 or (self.verbose > 1 and evaluation.applies and evaluation.passes):
            logger.debug("PASSES: %s.", ", ".join(evaluation.passes))

        if not evaluation.applies:
            return []

        actions: list[str] = []

        if rule.is_labeling:
            if not self.dry_run:
                message.add_keyword(*rule.label)
            self.log_operation("LABELING", message, rule.label)
            actions.append("Labeled " + ", ".join(rule.label))

        if rule.is_clearing:
            if not self.dry_run:
                message.remove_keyword(*rule.clear)
            self.log_operation("CLEARING", message, rule.clear)
            actions.append("Cleared " + ", ".join(rule.clear))

        if rule.is_forwarding:
            actions.extend(self.forward(message, rule))

        if actions and not self.dry_run:
            message.save()

        if rule.is_moving:
            if not self.dry_run:
                message.move_to(rule.move)
            self.log_operation("MOVING", message, [rule.move])
            actions.append("Moved " + rule.move)

        return actions

    def forward(self, message: Message, rule: CompiledRule) -> list[str]:
        addresses = address_list_strings(rule.forward)
        if not self.allow_forwarding:
            self.log_operation("FORWARDING", message, addresses)
            return ["NOT Forwarded " + ", ".join(addresses)]

        if not self.dry_run and self.forwarder is not None:
            try:
                self.forwarder.forward(message, rule.forward, self.now)
            except (smtplib.SMTPException, OSError) as error:
                logger.warning("Unable to forward %s to %s: %s", message.path, ", ".join(addresses), error)
                return []

        self.log_operation("FORWARDING", message, addresses)
        return ["Forwarded " + ", ".join(addresses)]
