"""Evaluation of a compiled rule against a message.

Evaluation has two ordered phases. A skip test that fires turns the rule
into a no-op for the message. Every active predicate test must pass for the
rule to match, and a rule with no active predicate never matches.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from label_mail.addresses import Address, extract_domain
from label_mail.message import Message, ParseError
from label_mail.rules import CompiledRule


STARRED_LABEL = "\\Starred"


@dataclass(frozen=True)
class RuleTest:
    name: str
    is_active: Callable[[CompiledRule], bool]
    evaluate: Callable[[Message, CompiledRule], tuple[bool, str]]


@dataclass(frozen=True)
class Evaluation:
    skipped: bool
    matched: bool
    active_tests: int
    passes: tuple[str, ...]
    failure: str

    @property
    def applies(self) -> bool:
        return not self.skipped and self.matched and self.active_tests > 0


def skip_already_labeled(message: Message, rule: CompiledRule) -> tuple[bool, str]:
    labels = ", ".join(rule.label)
    if not rule.is_labeling:
        return False, "not labeling"
    if message.has_keyword(*rule.label):
        return True, f"already labeled [{labels}]"
    return False, f"needs labels [{labels}]"


def skip_already_cleared(message: Message, rule: CompiledRule) -> tuple[bool, str]:
    labels = ", ".join(rule.clear)
    if not rule.is_clearing:
        return False, "not clearing"
    if message.missing_keyword(*rule.clear):
        return True, f"already lost labels [{labels}]"
    return False, f"needs to lose labels [{labels}]"


def skip_already_moved(message: Message, rule: CompiledRule) -> tuple[bool, str]:
    if not rule.is_moving:
        return False, "not moving"
    if message.folder() == rule.move:
        return True, f"already in folder [{rule.move}]"
    return False, f"not yet in folder [{rule.move}]"


def skip_starred(message: Message, rule: CompiledRule) -> tuple[bool, str]:
    if message.has_keyword(STARRED_LABEL):
        return True, "do not modify \\Starred"
    return False, "not \\Starred"


SKIP_TESTS: tuple[Callable[[Message, CompiledRule], tuple[bool, str]], ...] = (
    skip_already_labeled,
    skip_already_cleared,
    skip_already_moved,
    skip_starred,
)


def check_okay_date(message: Message, rule: CompiledRule) -> tuple[bool, str]:
    okay_date = rule.okay_date.isoformat()
    if rule.days < 0:
        return False, f"okay date is in the future [{okay_date}]"
    try:
        date = message.date()
    except ParseError as error:
        return False, f"message date is unknown ({error})"
    if date < rule.okay_date:
        return True, f"message is older than okay date [{okay_date}]"
    return False, f"message is newer than okay date [{okay_date}]"


def match_address(header: str, test_name: str, expected: str, addresses: list[Address]) -> tuple[bool, str]:
    if not addresses:
        return False, f"message is missing [{header}] header"
    wanted = expected.strip().casefold()
    for address in addresses:
        if address.address.casefold() == wanted:
            return True, f"message header [{header}] matches [{test_name}] test: [{expected}]"
    return False, f"message header [{header}] does not match [{test_name}] test: [{expected}]"


def match_domain(header: str, test_name: str, expected: str, addresses: list[Address]) -> tuple[bool, str]:
    if not addresses:
        return False, f"message is missing [{header}] header"
    wanted = expected.strip().lstrip("@").casefold()
    for address in addresses:
        if extract_domain(address.address).casefold() == wanted:
            return True, f"message header [{header}] matches [{test_name}] domain test: [{expected}]"
    return False, f"message header [{header}] does not match [{test_name}] domain test: [{expected}]"


def address_test(header: str, test_name: str, attribute: str, domain: bool = False) -> RuleTest:
    matcher = match_domain if domain else match_address

    def evaluate(message: Message, rule: CompiledRule) -> tuple[bool, str]:
        expected = getattr(rule.match, attribute)
        return matcher(header, test_name, expected, message.address_list(header))

    return RuleTest(
        name=f"{test_name}_domain" if domain else test_name,
        is_active=lambda rule: bool(getattr(rule.match, attribute)),
        evaluate=evaluate,
    )


def check_subject(message: Message, rule: CompiledRule) -> tuple[bool, str]:
    expected = rule.match.subject
    if message.subject() == expected:
        return True, f"message header [Subject] exactly matches subject test: [{expected}]"
    return False, f"message header [Subject] does not exactly match subject test: [{expected}]"


def check_isubject(message: Message, rule: CompiledRule) -> tuple[bool, str]:
    expected = rule.match.isubject
    if message.subject().casefold() == expected.casefold():
        return True, f"message header [Subject] matches folded case of subject test: [{expected}]"
    return False, f"message header [Subject] does not match folded case of subject test: [{expected}]"


def check_subject_contains(message: Message, rule: CompiledRule) -> tuple[bool, str]:
    expected = rule.match.subject_contains
    if expected in message.subject():
        return True, f"message header [Subject] passes contains subject test: [{expected}]"
    return False, f"message header [Subject] fails contains subject test: [{expected}]"


def check_subject_icontains(message: Message, rule: CompiledRule) -> tuple[bool, str]:
    expected = rule.match.subject_icontains
    if expected.casefold() in message.subject().casefold():
        return True, f"message header [Subject] passes contains subject folded case test: [{expected}]"
    return False, f"message header [Subject] fails contains subject folded case test: [{expected}]"


def check_contains(message: Message, rule: CompiledRule) -> tuple[bool, str]:
    expected = rule.match.contains
    if expected.encode("utf-8") in message.raw():
        return True, f"message passes contains anywhere test: [{expected}]"
    return False, f"message fails contains anywhere test: [{expected}]"


def check_icontains(message: Message, rule: CompiledRule) -> tuple[bool, str]:
    expected = rule.match.icontains
    text = message.raw().decode("utf-8", errors="replace")
    if expected.casefold() in text.casefold():
        return True, f"message passes contains anywhere folded case test: [{expected}]"
    return False, f"message fails contains anywhere folded case test: [{expected}]"


RULE_TESTS: tuple[RuleTest, ...] = (
    RuleTest("days", lambda rule: rule.has_okay_date, check_okay_date),
    address_test("From", "from", "from_"),
    address_test("From", "from", "from_domain", domain=True),
    address_test("To", "to", "to"),
    address_test("To", "to", "to_domain", domain=True),
    address_test("Sender", "sender", "sender"),
    address_test("Delivered-To", "delivered_to", "delivered_to"),
    RuleTest("subject", lambda rule: bool(rule.match.subject), check_subject),
    RuleTest("isubject", lambda rule: bool(rule.match.isubject), check_isubject),
    RuleTest("subject_contains", lambda rule: bool(rule.match.subject_contains), check_subject_contains),
    RuleTest("subject_icontains", lambda rule: bool(rule.match.subject_icontains), check_subject_icontains),
    RuleTest("contains", lambda rule: bool(rule.match.contains), check_contains),
    RuleTest("icontains", lambda rule: bool(rule.match.icontains), check_icontains),
)


def evaluate_rule(message: Message, rule: CompiledRule) -> Evaluation:
    """Run the skip battery and then the predicate battery.

    Raises :class:`ParseError` when the message itself cannot be read.
    """
    passes: list[str] = []
    for skip_test in SKIP_TESTS:
        skip, reason = skip_test(message, rule)
        if skip:
            return Evaluation(
                skipped=True,
                matched=False,
                active_tests=0,
                passes=tuple(passes),
                failure=reason,
            )
        passes.append(reason)

    active_tests = 0
    for rule_test in RULE_TESTS:
        if not rule_test.is_active(rule):
            continue
        active_tests += 1
        passed, reason = rule_test.evaluate(message, rule)
        if not passed:
            return Evaluation(
                skipped=False,
                matched=False,
                active_tests=active_tests,
                passes=tuple(passes),
                failure=reason,
            )
        passes.append(reason)

    return Evaluation(
        skipped=False,
        matched=active_tests > 0,
        active_tests=active_tests,
        passes=tuple(passes),
        failure="" if active_tests else "no active tests",
    )
