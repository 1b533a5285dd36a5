"""Maildir folders and the message files stored in them.

A folder is ``<root>/<basename>`` holding ``new``, ``cur`` and ``tmp``.
Message files live in ``new`` or ``cur`` and are named ``<key>[:<flags>]``.

Rewrites go to ``tmp`` first and are renamed over the original path, and
moves are a single rename, so a reader never sees a half-written message.
Nothing is fsynced: a crash can lose the most recent rewrite, but never
leaves a message missing, because the old file keeps its name until the
rename succeeds.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import BinaryIO, Protocol


READ_STATES = ("new", "cur")
FOLDER_SUBDIRS = ("new", "cur", "tmp")


class MissingFolderError(OSError):
    pass


class MessageSource(Protocol):
    @property
    def path(self) -> Path: ...

    @property
    def folder_name(self) -> str: ...

    def stat(self) -> os.stat_result: ...

    def open(self) -> BinaryIO: ...

    def read_bytes(self) -> bytes: ...

    def replace(self) -> ReplacementWriter: ...


def split_filename(filename: str) -> tuple[str, str]:
    key, _separator, flags = filename.partition(":")
    return key, flags


class MailDirFolder:
    def __init__(self, root: str | os.PathLike[str], basename: str) -> None:
        self._root = Path(root)
        self._basename = basename

    def __repr__(self) -> str:
        return f"MailDirFolder({str(self._root)!r}, {self._basename!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MailDirFolder):
            return NotImplemented
        return (self._root, self._basename) == (other._root, other._basename)

    def __hash__(self) -> int:
        return hash((self._root, self._basename))

    @property
    def root(self) -> Path:
        return self._root

    @property
    def basename(self) -> str:
        return self._basename

    @property
    def path(self) -> Path:
        return self._root / self._basename

    def temp_dir_path(self) -> Path:
        return self.path / "tmp"

    def exists(self) -> bool:
        return all((self.path / subdir).is_dir() for subdir in FOLDER_SUBDIRS)

    def ensure_exists(self) -> None:
        for subdir in FOLDER_SUBDIRS:
            (self.path / subdir).mkdir(mode=0o700, parents=True, exist_ok=True)

    def messages(self) -> list[MailDirMessage]:
        """List the messages in ``new`` followed by those in ``cur``.

        Both directories are read up front, so an unreadable folder raises
        ``OSError`` here rather than part way through the iteration.
        """
        listings: list[tuple[str, list[os.DirEntry[str]]]] = []
        for read_state in READ_STATES:
            directory = self.path / read_state
            try:
                with os.scandir(directory) as entries:
                    listings.append((read_state, list(entries)))
            except OSError as error:
                raise OSError(
                    f"Could not read maildir {self._basename!r} ({directory}): {error}"
                ) from error

        messages: list[MailDirMessage] = []
        for read_state, entries in listings:
            for entry in sorted(entries, key=lambda item: item.name):
                if entry.name.startswith("."):
                    continue
                messages.append(
                    MailDirMessage.from_filename(self, read_state, entry.name)
                )
        return messages

    def message(self, filename: str) -> MailDirMessage:
        for read_state in READ_STATES:
            if (self.path / read_state / filename).is_file():
                return MailDirMessage.from_filename(self, read_state, filename)
        raise FileNotFoundError(f"No message named {filename!r} in folder {self.path}.")


class ReplacementWriter:
    """Binary writer whose output replaces a message file when closed."""

    def __init__(self, temp_path: Path, final_path: Path) -> None:
        self.temp_path = temp_path
        self.final_path = final_path
        self._file: BinaryIO | None = temp_path.open("wb")

    def __enter__(self) -> ReplacementWriter:
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()

    def write(self, data: bytes) -> int:
        if self._file is None:
            raise ValueError(f"Replacement for {self.final_path} is already closed.")
        return self._file.write(data)

    def close(self) -> None:
        if self._file is None:
            return
        self._file.close()
        self._file = None
        os.replace(self.temp_path, self.final_path)

    def abort(self) -> None:
        if self._file is None:
            return
        self._file.close()
        self._file = None
        self.temp_path.unlink(missing_ok=True)


class MailDirMessage:
    def __init__(
        self,
        folder: MailDirFolder,
        key: str,
        flags: str,
        read_state: str,
        stat_result: os.stat_result | None = None,
    ) -> None:
        if read_state not in READ_STATES:
            raise ValueError(f"Unknown maildir read state {read_state!r}.")
        self.folder = folder
        self.key = key
        self.flags = flags
        self.read_state = read_state
        self._stat = stat_result

    @classmethod
    def from_filename(cls, folder: MailDirFolder, read_state: str, filename: str) -> MailDirMessage:
        key, flags = split_filename(filename)
        return cls(folder, key, flags, read_state)

    def __repr__(self) -> str:
        return f"MailDirMessage({self.folder.basename!r}, {self.filename!r})"

    @property
    def flag_suffix(self) -> str:
        if not self.flags:
            return ""
        return f":{self.flags}"

    @property
    def filename(self) -> str:
        return f"{self.key}{self.flag_suffix}"

    @property
    def path(self) -> Path:
        return self.folder.path / self.read_state / self.filename

    @property
    def folder_name(self) -> str:
        return self.folder.basename

    def stat(self) -> os.stat_result:
        if self._stat is None:
            self._stat = os.stat(self.path)
        return self._stat

    def open(self) -> BinaryIO:
        return self.path.open("rb")

    def read_bytes(self) -> bytes:
        with self.open() as file:
            return file.read()

    def move_to(self, destination: MailDirFolder) -> None:
        target_dir = destination.path / self.read_state
        if not target_dir.is_dir():
            raise MissingFolderError(
                f"Cannot move {self.filename} to {destination.basename!r}: "
                f"{target_dir} is not a maildir directory."
            )
        os.rename(self.path, target_dir / self.filename)
        self.folder = destination

    def replace(self) -> ReplacementWriter:
        temp_path = self.folder.temp_dir_path() / self.filename
        writer = ReplacementWriter(temp_path, self.path)
        self._stat = None
        return writer

    def remove(self) -> None:
        os.remove(self.path)
        self._stat = None


class MessageFile:
    """A message stored in an ordinary file outside of any maildir."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._stat: os.stat_result | None = None

    def __repr__(self) -> str:
        return f"MessageFile({str(self._path)!r})"

    @property
    def path(self) -> Path:
        return self._path

    @property
    def folder_name(self) -> str:
        parent = self._path.parent
        if parent.name in READ_STATES:
            parent = parent.parent
        return parent.name

    def stat(self) -> os.stat_result:
        if self._stat is None:
            self._stat = os.stat(self._path)
        return self._stat

    def open(self) -> BinaryIO:
        return self._path.open("rb")

    def read_bytes(self) -> bytes:
        with self.open() as file:
            return file.read()

    def replace(self) -> ReplacementWriter:
        temp_path = self._path.with_name(f".{self._path.name}.tmp")
        self._stat = None
        return ReplacementWriter(temp_path, self._path)
