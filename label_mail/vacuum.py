"""Maintenance sweep over every folder under the maildir root.

Unwanted folders are drained into a better home for each message and then
removed. Messages in the remaining folders have their keywords repaired.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from label_mail.labels import label_to_folder
from label_mail.maildir import FOLDER_SUBDIRS, MailDirFolder
from label_mail.message import Message, ParseError


logger = logging.getLogger(__name__)

UNWANTED_FOLDER_SUFFIXES = (",",)
UNWANTED_FOLDER_PREFIXES = ("+", "\\")
UNWANTED_FOLDERS = frozenset(
    {
        "[",
        "]",
        "Drafts",
        "Home_School",
        "Network",
        "Pseudo-Junk.Social",
        "Pseudo-Junk.Social_Network",
        "Social Network",
        "OtherJunk",
    }
)
DEPRECATED_KEYWORDS = {
    "JunkSocial": (
        "Network",
        "Pseudo-Junk.Social",
        "Pseudo-Junk/Social",
        "Psuedo-Junk/Social_Network",
        "Pseudo-Junk.Social_Network",
    ),
    "Teamwork": ("Discussion",),
    "JunkOther": ("OtherJunk",),
}
SOCIAL_FOLDER = "JunkSocial"
FALLBACK_FOLDER = "gmail.All_Mail"


@dataclass
class VacuumReport:
    dropped_folders: list[str] = field(default_factory=list)
    kept_folders: list[str] = field(default_factory=list)
    moved_messages: int = 0
    repaired_messages: int = 0
    warnings: list[str] = field(default_factory=list)


def is_unwanted(folder: str) -> bool:
    if folder.endswith(UNWANTED_FOLDER_SUFFIXES):
        return True
    if folder.startswith(UNWANTED_FOLDER_PREFIXES):
        return True
    return folder in UNWANTED_FOLDERS


def replacement_keyword(keyword: str) -> str | None:
    for replacement, deprecated in DEPRECATED_KEYWORDS.items():
        if keyword in deprecated:
            return replacement
    return None


def alternate_for(keyword: str) -> str:
    target = replacement_keyword(keyword) or keyword
    return label_to_folder(target).replace("/", ".")


def best_alternate_folder(keywords: list[str], source_folder: str = "") -> tuple[str, str | None]:
    """Pick the folder a message from an unwanted folder should move into.

    Keywords naming ``source_folder`` or another unwanted folder are passed
    over. Returns the folder name and the keyword that selected it, if any.
    """
    for keyword in keywords:
        if "Social" in keyword:
            return SOCIAL_FOLDER, keyword
    for keyword in keywords:
        target = alternate_for(keyword)
        if target == source_folder or is_unwanted(target):
            continue
        return target, keyword
    return FALLBACK_FOLDER, None


def repair_keywords(message: Message) -> list[str]:
    """Canonicalize and de-deprecate keywords in memory; return what changed."""
    changes: list[str] = []
    if message.has_nonconforming_keywords():
        message.cleanup_keywords()
    if message.dirty:
        changes.append("non-conforming keywords")

    for replacement, deprecated in DEPRECATED_KEYWORDS.items():
        if any(message.has_keyword(keyword) for keyword in deprecated):
            message.remove_keyword(*deprecated)
            message.add_keyword(replacement)
            changes.append(f"({', '.join(deprecated)}) to {replacement}")
    return changes


def remove_folder(folder: MailDirFolder, report: VacuumReport) -> None:
    for subdir in FOLDER_SUBDIRS:
        path = folder.path / subdir
        try:
            os.rmdir(path)
        except OSError as error:
            logger.warning("Cannot delete %s: %s", path, error)
            report.warnings.append(f"{path}: {error}")
    try:
        os.rmdir(folder.path)
    except OSError as error:
        logger.warning("Cannot delete %s: %s", folder.path, error)
        report.warnings.append(f"{folder.path}: {error}")
        report.kept_folders.append(folder.basename)
        return
    report.dropped_folders.append(folder.basename)


def drain_folder(mail_root: Path, folder: MailDirFolder, dry_run: bool, report: VacuumReport) -> bool:
    drained = True
    for source in folder.messages():
        message = Message(source)
        try:
            target, selected = best_alternate_folder(message.keywords(), folder.basename)
        except ParseError as error:
            logger.warning("Cannot choose a folder for %s: %s", message.path, error)
            report.warnings.append(f"{message.path}: {error}")
            drained = False
            continue

        logger.info(" -> Moving %s from %s to %s", source.filename, folder.basename, target)
        if dry_run:
            continue

        if selected is not None:
            message.remove_keyword(selected)
            replacement = replacement_keyword(selected)
            if replacement:
                message.add_keyword(replacement)

        original_path = message.path
        destination = MailDirFolder(mail_root, target)
        try:
            destination.ensure_exists()
            message.save()
            message.move_to(target)
        except OSError as error:
            logger.warning("Cannot move %s to %s: %s", message.path, target, error)
            report.warnings.append(f"{message.path}: {error}")
            drained = False
            continue
        if message.path == original_path:
            logger.warning("Cannot move %s out of %s.", message.path, folder.basename)
            report.warnings.append(f"{message.path}: not moved")
            drained = False
            continue
        report.moved_messages += 1
    return drained


def sweep_folder(folder: MailDirFolder, dry_run: bool, report: VacuumReport) -> None:
    logger.info("Searching %s for broken Keywords.", folder.basename)
    for source in folder.messages():
        message = Message(source)
        try:
            changes = repair_keywords(message)
        except ParseError as error:
            logger.warning("Skipping unreadable message %s: %s", message.path, error)
            continue
        if not changes:
            continue

        logger.info("Fixing %s in %s.", "; ".join(changes), source.filename)
        report.repaired_messages += 1
        if not dry_run:
            message.save()


def vacuum(mail_root: str | os.PathLike[str], dry_run: bool = False) -> VacuumReport:
    root = Path(mail_root)
    report = VacuumReport()

    with os.scandir(root) as entries:
        names = sorted(entry.name for entry in entries if entry.is_dir())

    for name in names:
        folder = MailDirFolder(root, name)
        if not is_unwanted(name):
            report.kept_folders.append(name)
            try:
                sweep_folder(folder, dry_run, report)
            except OSError as error:
                logger.warning("Cannot sweep %s: %s", name, error)
                report.warnings.append(f"{name}: {error}")
            continue

        logger.info("Dropping %s", name)
        try:
            drained = drain_folder(root, folder, dry_run, report)
        except OSError as error:
            logger.warning("Cannot drain %s: %s", name, error)
            report.warnings.append(f"{name}: {error}")
            drained = False

        if dry_run:
            continue
        if drained:
            remove_folder(folder, report)
        else:
            logger.warning("Keeping %s; not every message could be moved.", name)
            report.kept_folders.append(name)

    return report
