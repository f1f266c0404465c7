"""
Guardrail pipeline for agent input and output.

Guardrails inspect text and either pass it or trip a wire. The pipeline runs
agent-level guardrails first, then run-level ones, each in declared order,
and raises on the first tripwire.

Usage:
    @guardrail
    def no_secrets(value, context):
        return "password" not in value.lower()

    agent = Agent(name="support", input_guardrails=[no_secrets])

    pipeline = GuardrailPipeline.for_run(agent, run_config)
    await pipeline.check_input(user_text, context)
"""

from __future__ import annotations

import inspect
import re
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from re import Pattern
from typing import TYPE_CHECKING, Any, Union

import structlog

from conductor.errors import (
    GuardrailTripwireTriggered,
    InputGuardrailTripwireTriggered,
    OutputGuardrailTripwireTriggered,
)

if TYPE_CHECKING:
    from conductor.agent import Agent
    from conductor.run_config import RunConfig

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GuardrailResult:
    """Result of a guardrail check."""

    passed: bool
    reason: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls) -> GuardrailResult:
        return cls(passed=True)

    @classmethod
    def tripwire(cls, reason: str, **data: Any) -> GuardrailResult:
        return cls(passed=False, reason=reason, data=data)

    @property
    def tripwire_triggered(self) -> bool:
        return not self.passed


class Guardrail(ABC):
    """
    Base class for guardrails.

    ``check`` may be a plain or an async method.
    """

    name: str = "guardrail"

    @abstractmethod
    def check(
        self,
        value: str,
        context: Any = None,
    ) -> GuardrailResult | Awaitable[GuardrailResult]:
        """Inspect ``value`` and return a GuardrailResult."""
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"


GuardrailFunction = Callable[[str, Any], Union[bool, GuardrailResult, Awaitable[Any]]]


class FunctionGuardrail(Guardrail):
    """
    Guardrail backed by a function ``fn(value, context)``.

    The function returns a bool (True passes) or a GuardrailResult, and may
    be async.
    """

    def __init__(self, fn: GuardrailFunction, name: str | None = None) -> None:
        self.fn = fn
        self.name = name or getattr(fn, "__name__", "guardrail")

    async def check(self, value: str, context: Any = None) -> GuardrailResult:
        outcome = self.fn(value, context)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return _coerce_result(outcome, self.name)


def guardrail(
    fn: GuardrailFunction | None = None,
    *,
    name: str | None = None,
) -> Any:
    """
    Decorator turning ``fn(value, context)`` into a FunctionGuardrail.

    Usable bare or as ``@guardrail(name="...")``.
    """

    def decorator(func: GuardrailFunction) -> FunctionGuardrail:
        return FunctionGuardrail(func, name=name)

    if fn is not None:
        return decorator(fn)
    return decorator


def _coerce_result(outcome: Any, name: str) -> GuardrailResult:
    if isinstance(outcome, GuardrailResult):
        return outcome
    if isinstance(outcome, bool):
        return GuardrailResult.ok() if outcome else GuardrailResult.tripwire(f"Blocked by {name}")
    raise TypeError(
        f"Guardrail '{name}' returned {type(outcome).__name__}; expected bool or GuardrailResult"
    )


def as_guardrail(item: Guardrail | GuardrailFunction) -> Guardrail:
    """Accept a Guardrail instance or a ``(value, context)`` callable."""
    if isinstance(item, Guardrail):
        return item
    if callable(item):
        return FunctionGuardrail(item)
    raise TypeError(f"Not a guardrail: {item!r}")


# =============================================================================
# BUILT-IN GUARDRAILS
# =============================================================================

class KeywordGuardrail(Guardrail):
    """Trips when any blocked term appears in the text (case-insensitive)."""

    def __init__(self, blocked: Iterable[str], name: str = "keyword") -> None:
        self.blocked = tuple(term.lower() for term in blocked)
        self.name = name

    def check(self, value: str, context: Any = None) -> GuardrailResult:
        lowered = value.lower()
        for term in self.blocked:
            if term in lowered:
                return GuardrailResult.tripwire(f"Blocked term detected: {term}", term=term)
        return GuardrailResult.ok()


class RegexGuardrail(Guardrail):
    """Trips when the pattern matches anywhere in the text."""

    def __init__(
        self,
        pattern: str | Pattern[str],
        name: str = "regex",
        reason: str | None = None,
    ) -> None:
        self.pattern = re.compile(pattern, re.IGNORECASE) if isinstance(pattern, str) else pattern
        self.name = name
        self.reason = reason or f"Content matched {self.pattern.pattern!r}"

    def check(self, value: str, context: Any = None) -> GuardrailResult:
        match = self.pattern.search(value)
        if match:
            return GuardrailResult.tripwire(self.reason, match=match.group(0))
        return GuardrailResult.ok()


class MaxLengthGuardrail(Guardrail):
    """Trips when the text is longer than ``max_length`` characters."""

    def __init__(self, max_length: int, name: str = "max_length") -> None:
        if max_length < 0:
            raise ValueError("max_length must be non-negative")
        self.max_length = max_length
        self.name = name

    def check(self, value: str, context: Any = None) -> GuardrailResult:
        if len(value) > self.max_length:
            return GuardrailResult.tripwire(
                f"Content length {len(value)} exceeds limit of {self.max_length}",
                length=len(value),
            )
        return GuardrailResult.ok()


# Instruction overrides, hidden instructions, role manipulation, jailbreaks
INJECTION_PATTERNS = [
    r"(ignore|disregard|forget|bypass|override)\s+(all\s+)?(previous|prior|above|system)\s+(instructions?|rules?|prompts?)",
    r"forget\s+everything\s+(you\s+)?know",
    r"reset\s+(your|all)\s+(instructions?|memory|context)",
    r"(note|important|attention)\s+to\s+(system|ai|assistant|model|agent|llm)",
    r"<(system|admin|instruction|hidden)[^>]*>",
    r"\[SYSTEM\s*(PROMPT|MESSAGE|INSTRUCTION)\]",
    r"your\s+new\s+(role|identity|persona)",
    r"you\s+have\s+been\s+(reprogrammed|updated)",
    r"developer\s+mode\s+(enabled|on|activated)",
    r"DAN\s+(mode|prompt)",
    r"do\s+anything\s+now",
    r"actual\s+(instructions?|prompt)\s+(follow|below)",
]

_COMPILED_INJECTION_PATTERNS: list[Pattern[str]] = [
    re.compile(pattern, re.IGNORECASE) for pattern in INJECTION_PATTERNS
]


class PromptInjectionGuardrail(Guardrail):
    """Trips on common prompt-injection phrasings."""

    def __init__(
        self,
        patterns: Sequence[str | Pattern[str]] | None = None,
        name: str = "prompt_injection",
    ) -> None:
        if patterns is None:
            self.patterns = list(_COMPILED_INJECTION_PATTERNS)
        else:
            self.patterns = [
                re.compile(p, re.IGNORECASE) if isinstance(p, str) else p for p in patterns
            ]
        self.name = name

    def check(self, value: str, context: Any = None) -> GuardrailResult:
        matched = [p.pattern for p in self.patterns if p.search(value)]
        if matched:
            return GuardrailResult.tripwire("Possible prompt injection detected", patterns=matched)
        return GuardrailResult.ok()


_EMAIL = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_PHONE = re.compile(r"(?<!\d)(?:\+?1[\s.-]?)?\(?\d{3}\)?[\s.-]\d{3}[\s.-]\d{4}(?!\d)")
_SSN = re.compile(r"\b\d{3}-\d{2}-\d{4}\b")
_CARD = re.compile(r"\b(?:\d[ -]?){13,19}\b")


def _luhn_valid(number: str) -> bool:
    digits = [int(ch) for ch in number if ch.isdigit()]
    if not 13 <= len(digits) <= 19:
        return False
    total = 0
    for index, digit in enumerate(reversed(digits)):
        if index % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


class PIIGuardrail(Guardrail):
    """Trips when the text contains emails, phone numbers, SSNs or card numbers."""

    KINDS = ("email", "phone", "ssn", "credit_card")

    def __init__(self, kinds: Iterable[str] | None = None, name: str = "pii") -> None:
        self.kinds = tuple(kinds) if kinds is not None else self.KINDS
        unknown = set(self.kinds) - set(self.KINDS)
        if unknown:
            raise ValueError(f"Unknown PII kinds: {sorted(unknown)}")
        self.name = name

    def detect(self, value: str) -> list[str]:
        """Return the PII kinds present in ``value``."""
        found = []
        if "email" in self.kinds and _EMAIL.search(value):
            found.append("email")
        if "ssn" in self.kinds and _SSN.search(value):
            found.append("ssn")
        if "phone" in self.kinds and _PHONE.search(value):
            found.append("phone")
        if "credit_card" in self.kinds and any(
            _luhn_valid(m.group(0)) for m in _CARD.finditer(value)
        ):
            found.append("credit_card")
        return found

    def check(self, value: str, context: Any = None) -> GuardrailResult:
        found = self.detect(value)
        if found:
            return GuardrailResult.tripwire(f"PII detected: {', '.join(found)}", kinds=found)
        return GuardrailResult.ok()


# =============================================================================
# PIPELINE
# =============================================================================

class GuardrailPipeline:
    """Ordered input and output guardrail lists."""

    def __init__(
        self,
        input_guardrails: Iterable[Guardrail | GuardrailFunction] = (),
        output_guardrails: Iterable[Guardrail | GuardrailFunction] = (),
    ) -> None:
        self.input_guardrails = [as_guardrail(g) for g in input_guardrails]
        self.output_guardrails = [as_guardrail(g) for g in output_guardrails]

    @classmethod
    def for_run(cls, agent: Agent, config: RunConfig | None = None) -> GuardrailPipeline:
        """Agent-level guardrails followed by run-level guardrails."""
        run_inputs = config.input_guardrails if config else ()
        run_outputs = config.output_guardrails if config else ()
        return cls(
            input_guardrails=[*agent.input_guardrails, *run_inputs],
            output_guardrails=[*agent.output_guardrails, *run_outputs],
        )

    async def check_input(self, value: str, context: Any = None) -> None:
        """Raise InputGuardrailTripwireTriggered on the first failing input guardrail."""
        await self._run(self.input_guardrails, value, context, InputGuardrailTripwireTriggered)

    async def check_output(self, value: str, context: Any = None) -> None:
        """Raise OutputGuardrailTripwireTriggered on the first failing output guardrail."""
        await self._run(self.output_guardrails, value, context, OutputGuardrailTripwireTriggered)

    async def _run(
        self,
        guardrails: list[Guardrail],
        value: str,
        context: Any,
        error_type: type[GuardrailTripwireTriggered],
    ) -> None:
        for item in guardrails:
            outcome = item.check(value, context)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            result = _coerce_result(outcome, item.name)
            if result.passed:
                continue

            reason = result.reason or f"Blocked by {item.name}"
            logger.warning(
                "guardrail_tripwire_triggered",
                stage=error_type.stage,
                guardrail=item.name,
                reason=reason,
            )
            raise error_type(reason, guardrail_name=item.name, data=result.data)

    def __len__(self) -> int:
        return len(self.input_guardrails) + len(self.output_guardrails)
