"""Loading and compiling labeling rules.

Rules come from two YAML files. The primary file maps environment names to
rule lists, with ``"*"`` applying everywhere; the local file is a bare rule
list. Rules are assembled as ``"*"``, then the active environment, then
local, and compiled into :class:`CompiledRule` records grouped by folder.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta
from pathlib import Path

import yaml

from label_mail.addresses import Address, parse_forward_address
from label_mail.labels import folder_to_label, label_to_folder


logger = logging.getLogger(__name__)

ALL_ENVIRONMENTS = "*"
DEFAULT_OKAY_DAYS = 90
TRASH_LABEL = "\\Trash"
TRASH_FOLDER = "gmail.Trash"
INBOX_LABEL = "\\Inbox"
MATCH_FIELDS = (
    "folder",
    "from",
    "from_domain",
    "to",
    "to_domain",
    "sender",
    "delivered_to",
    "subject",
    "isubject",
    "subject_contains",
    "subject_icontains",
    "contains",
    "icontains",
)
ACTION_FIELDS = ("clear", "label", "move", "forward")
RULE_FIELDS = (*MATCH_FIELDS, "days", *ACTION_FIELDS)


class RuleConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Match:
    folder: str = ""
    from_: str = ""
    from_domain: str = ""
    to: str = ""
    to_domain: str = ""
    sender: str = ""
    delivered_to: str = ""
    subject: str = ""
    isubject: str = ""
    subject_contains: str = ""
    subject_icontains: str = ""
    contains: str = ""
    icontains: str = ""
    days: int = 0


@dataclass(frozen=True)
class RawRule:
    match: Match
    clear: object = None
    label: object = None
    move: str = ""
    forward: object = None
    source: str = ""


@dataclass(frozen=True)
class CompiledRule:
    match: Match
    okay_date: datetime | None = None
    clear: tuple[str, ...] = ()
    label: tuple[str, ...] = ()
    move: str = ""
    forward: tuple[Address, ...] = ()
    source: str = ""

    @property
    def folder(self) -> str:
        return self.match.folder

    @property
    def days(self) -> int:
        return self.match.days

    @property
    def is_clearing(self) -> bool:
        return bool(self.clear)

    @property
    def is_labeling(self) -> bool:
        return bool(self.label)

    @property
    def is_moving(self) -> bool:
        return bool(self.move)

    @property
    def is_forwarding(self) -> bool:
        return bool(self.forward)

    @property
    def has_okay_date(self) -> bool:
        return self.okay_date is not None

    def needs_okay_date(self) -> bool:
        if self.days != 0:
            return True
        if TRASH_LABEL in self.label:
            return True
        return self.move == TRASH_FOLDER


@dataclass
class CompiledFolderRules:
    """Compiled rules keyed by folder basename; ``""`` applies to every folder."""

    by_folder: dict[str, list[CompiledRule]] = field(default_factory=dict)

    def add(self, folder: str, rule: CompiledRule) -> None:
        self.by_folder.setdefault(folder, []).append(rule)

    def get(self, folder: str) -> list[CompiledRule]:
        return list(self.by_folder.get(folder, []))

    def for_folder(self, folder: str) -> list[CompiledRule]:
        return [*self.get(folder), *self.get("")]

    def has_rules_for(self, folder: str) -> bool:
        return bool(self.by_folder.get(folder)) or bool(self.by_folder.get(""))


def read_environment(path: Path) -> str:
    """Return the first non-empty line of the environment file, or ``""``."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return ""
    except OSError as error:
        raise RuleConfigError(f"Could not read environment file {path}: {error}") from error

    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


def load_yaml_file(path: Path) -> object:
    try:
        with path.open("r", encoding="utf-8") as file:
            return yaml.safe_load(file)
    except (OSError, yaml.YAMLError) as error:
        raise RuleConfigError(f"Could not read rules file {path}: {error}") from error


def parse_match_string(raw_value: object, source: str) -> str:
    if raw_value is None:
        return ""
    if isinstance(raw_value, bool) or not isinstance(raw_value, (str, int, float)):
        raise RuleConfigError(f"{source} must be a string.")
    return str(raw_value)


def parse_days(raw_value: object, source: str) -> int:
    if raw_value is None:
        return 0
    if isinstance(raw_value, bool) or not isinstance(raw_value, int):
        raise RuleConfigError(f"{source} must be an integer day count.")
    return raw_value


def parse_raw_rule(raw: object, source: str) -> RawRule:
    if not isinstance(raw, dict):
        raise RuleConfigError(f"{source} must be a mapping of rule fields.")

    unknown = sorted(str(key) for key in raw if key not in RULE_FIELDS)
    if unknown:
        logger.warning("%s has unknown rule fields: %s", source, ", ".join(unknown))

    match_values = {
        ("from_" if name == "from" else name): parse_match_string(raw.get(name), f"{source}.{name}")
        for name in MATCH_FIELDS
    }
    match_values["folder"] = match_values["folder"].strip()
    return RawRule(
        match=Match(days=parse_days(raw.get("days"), f"{source}.days"), **match_values),
        clear=raw.get("clear"),
        label=raw.get("label"),
        move=parse_match_string(raw.get("move"), f"{source}.move"),
        forward=raw.get("forward"),
        source=source,
    )


def parse_raw_rules(raw: object, source: str) -> list[RawRule]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise RuleConfigError(f"{source} must be a list of rules.")
    return [parse_raw_rule(item, f"{source}[{index}]") for index, item in enumerate(raw)]


def load_raw_rules(primary_path: Path, local_path: Path, environment: str) -> list[RawRule]:
    primary = load_yaml_file(primary_path)
    if primary is None:
        primary = {}
    if not isinstance(primary, dict):
        raise RuleConfigError(
            f"Rules file {primary_path} must map environment names to rule lists."
        )

    local = load_yaml_file(local_path)

    rules: list[RawRule] = []
    rules.extend(parse_raw_rules(primary.get(ALL_ENVIRONMENTS), f"{primary_path}[{ALL_ENVIRONMENTS}]"))
    if environment and environment != ALL_ENVIRONMENTS:
        rules.extend(parse_raw_rules(primary.get(environment), f"{primary_path}[{environment}]"))
    rules.extend(parse_raw_rules(local, str(local_path)))
    return rules


def normalize_string_list(raw_value: object, source: str) -> list[str]:
    if raw_value is None:
        return []
    if isinstance(raw_value, (str, int, float)) and not isinstance(raw_value, bool):
        return [str(raw_value)]
    if isinstance(raw_value, list):
        values: list[str] = []
        for index, item in enumerate(raw_value):
            if isinstance(item, (str, int, float)) and not isinstance(item, bool):
                values.append(str(item))
            else:
                logger.warning("Rule has incorrect %s[%d]: %r", source, index, item)
                values.append("")
        return values

    logger.warning("Rule has incorrect %s: %r", source, raw_value)
    return []


def compile_label(raw_value: object, source: str) -> tuple[str, ...]:
    labels: list[str] = []
    for value in normalize_string_list(raw_value, source):
        value = value.strip()
        if not value:
            continue
        label = folder_to_label(value)
        if label == value:
            label = folder_to_label(value.replace(".", "/"))
        labels.append(label)
    return tuple(labels)


def compile_move(raw_value: str) -> str:
    move = raw_value.strip()
    if not move:
        return ""
    return label_to_folder(move).replace("/", ".")


def compile_forward(raw_value: object, source: str) -> tuple[Address, ...]:
    addresses: list[Address] = []
    for index, value in enumerate(normalize_string_list(raw_value, source)):
        if not value.strip():
            continue
        try:
            addresses.extend(parse_forward_address(value, f"{source}[{index}]"))
        except ValueError as error:
            raise RuleConfigError(str(error)) from error
    return tuple(addresses)


def compile_rule(raw: RawRule) -> CompiledRule | None:
    label = compile_label(raw.label, f"{raw.source}.label")
    clear = compile_label(raw.clear, f"{raw.source}.clear")
    move = compile_move(raw.move)
    forward = compile_forward(raw.forward, f"{raw.source}.forward")

    if not (label or clear or move or forward):
        logger.warning("Rule missing action: %s", raw.source)
        return None

    return CompiledRule(
        match=raw.match,
        clear=clear,
        label=label,
        move=move,
        forward=forward,
        source=raw.source,
    )


def compile_rules(raw_rules: list[RawRule]) -> list[CompiledRule]:
    compiled: list[CompiledRule] = []
    for raw in raw_rules:
        rule = compile_rule(raw)
        if rule is not None:
            compiled.append(rule)
    return compiled


def load_rules(primary_path: Path, local_path: Path, environment: str) -> list[CompiledRule]:
    return compile_rules(load_raw_rules(primary_path, local_path, environment))


def folder_rules(rules: list[CompiledRule], now: datetime) -> CompiledFolderRules:
    """Group rules by source folder, stamping OkayDates relative to ``now``.

    A rule that moves mail out of a named folder also gets a companion rule
    in the destination folder that clears ``\\Inbox`` from the same messages.
    """
    grouped = CompiledFolderRules()
    for rule in rules:
        if rule.needs_okay_date():
            days = rule.days or DEFAULT_OKAY_DAYS
            try:
                okay_date = now - timedelta(days=days)
            except OverflowError as error:
                raise RuleConfigError(f"{rule.source}.days is out of range: {days}") from error
            rule = replace(rule, okay_date=okay_date)

        grouped.add(rule.folder, rule)

        if rule.is_moving and rule.folder:
            companion = replace(
                rule,
                match=replace(rule.match, folder=rule.move),
                clear=(INBOX_LABEL,),
                label=(),
                move="",
                forward=(),
                source=f"{rule.source} (clear {INBOX_LABEL} in {rule.move})",
            )
            grouped.add(rule.move, companion)
    return grouped


def describe_rule(rule: CompiledRule) -> dict[str, object]:
    description: dict[str, object] = {"source": rule.source}
    for match_field in fields(Match):
        value = getattr(rule.match, match_field.name)
        if value:
            description[match_field.name.rstrip("_")] = value
    for name in ("label", "clear", "move"):
        value = getattr(rule, name)
        if value:
            description[name] = value
    if rule.forward:
        description["forward"] = [address.address for address in rule.forward]
    if rule.okay_date is not None:
        description["okay_date"] = rule.okay_date.isoformat()
    return description
