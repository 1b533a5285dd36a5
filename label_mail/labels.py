"""Translation between IMAP-style pseudo-labels and Maildir folder names."""

from __future__ import annotations


LABEL_FOLDERS = {
    "\\Inbox": "INBOX",
    "\\Trash": "gmail.Trash",
    "\\Important": "gmail.Important",
    "\\Sent": "gmail.Sent_Mail",
    "\\Starred": "gmail.Starred",
    "\\Draft": "gmail.Drafts",
}
FOLDER_LABELS = {folder: label for label, folder in LABEL_FOLDERS.items()}


def label_to_folder(name: str) -> str:
    return LABEL_FOLDERS.get(name, name)


def folder_to_label(name: str) -> str:
    return FOLDER_LABELS.get(name, name)
