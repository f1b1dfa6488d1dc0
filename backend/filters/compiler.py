from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from filters.expression import Expression, get_prop, to_text
from filters.types import FilterSpec, normalize_platform

Props = Mapping[str, Any]

PLATFORM_PROPERTY = "platform"
DATE_PROPERTY = "acquisition_end"
LICENSE_PROPERTY = "license"

END_OF_DAY_SUFFIX = "T23:59:59.999Z"

_ALNUM_RUN = re.compile(r"[^\W_]+")


# --- Clauses -------------------------------------------------------------------------
#
# Each clause knows both of its renderings. Rules below only ever build clauses, so a
# rule change lands in the engine predicate and in the evaluator at the same time.


def _lower_text(prop: str) -> Expression:
    return ["downcase", ["to-string", get_prop(prop)]]


@dataclass(frozen=True)
class TextEquals:
    """Lowercased property text equals `value` (already lowercase)."""

    prop: str
    value: str

    def expression(self) -> Expression:
        return ["==", _lower_text(self.prop), self.value]

    def evaluate(self, props: Props) -> bool:
        return to_text(props.get(self.prop)).lower() == self.value


@dataclass(frozen=True)
class TextContains:
    """Lowercased property text contains `needle` (already lowercase)."""

    prop: str
    needle: str

    def expression(self) -> Expression:
        return ["in", self.needle, _lower_text(self.prop)]

    def evaluate(self, props: Props) -> bool:
        return self.needle in to_text(props.get(self.prop)).lower()


@dataclass(frozen=True)
class TextBound:
    """
    Lexical bound on a present property: `>=` (lower) or `<=` (upper).

    A missing property never satisfies a bound.
    """

    prop: str
    op: str
    value: str

    def expression(self) -> Expression:
        return [
            "all",
            ["has", self.prop],
            [self.op, ["to-string", get_prop(self.prop)], self.value],
        ]

    def evaluate(self, props: Props) -> bool:
        raw = props.get(self.prop)
        if raw is None:
            return False
        text = to_text(raw)
        if self.op == ">=":
            return text >= self.value
        return text <= self.value


@dataclass(frozen=True)
class AllOf:
    clauses: tuple["Clause", ...]

    def expression(self) -> Expression:
        return ["all", *(c.expression() for c in self.clauses)]

    def evaluate(self, props: Props) -> bool:
        return all(c.evaluate(props) for c in self.clauses)


@dataclass(frozen=True)
class AnyOf:
    clauses: tuple["Clause", ...]

    def expression(self) -> Expression:
        return ["any", *(c.expression() for c in self.clauses)]

    def evaluate(self, props: Props) -> bool:
        return any(c.evaluate(props) for c in self.clauses)


@dataclass(frozen=True)
class Not:
    clause: "Clause"

    def expression(self) -> Expression:
        return ["!", self.clause.expression()]

    def evaluate(self, props: Props) -> bool:
        return not self.clause.evaluate(props)


Clause = TextEquals | TextContains | TextBound | AllOf | AnyOf | Not


# --- Rule table ----------------------------------------------------------------------

_UAV_VALUES = ("uav", "drone")
_KNOWN_PLATFORMS = ("satellite", *_UAV_VALUES)


def _platform_is(*values: str) -> Clause:
    if len(values) == 1:
        return TextEquals(PLATFORM_PROPERTY, values[0])
    return AnyOf(tuple(TextEquals(PLATFORM_PROPERTY, v) for v in values))


_PLATFORM_RULES: dict[str, Callable[[], Clause]] = {
    "satellite": lambda: _platform_is("satellite"),
    "uav": lambda: _platform_is(*_UAV_VALUES),
    # "Other" is the complement of every named class.
    "other": lambda: AllOf(
        tuple(Not(TextEquals(PLATFORM_PROPERTY, v)) for v in _KNOWN_PLATFORMS)
    ),
}


def _license_contains(needle: str) -> Clause:
    return TextContains(LICENSE_PROPERTY, needle)


# Checked in order; the first bucket whose key appears in the requested license wins.
_LICENSE_BUCKETS: tuple[tuple[str, Callable[[], Clause]], ...] = (
    ("nc", lambda: _license_contains("nc")),
    ("sa", lambda: _license_contains("sa")),
    (
        "by",
        lambda: AllOf(
            (
                _license_contains("by"),
                Not(_license_contains("nc")),
                Not(_license_contains("sa")),
            )
        ),
    ),
)


def normalize_license_text(raw: str) -> str:
    return "".join(ch for ch in (raw or "").lower() if ch.isalnum() or ch == ".")


def _license_rule(raw: str) -> Clause | None:
    target = normalize_license_text(raw)
    if not target:
        return None
    for key, build in _LICENSE_BUCKETS:
        if key in target:
            return build()
    # Free text outside the CC families: every alphanumeric run must appear, so case,
    # spacing and punctuation do not matter.
    runs = _ALNUM_RUN.findall(raw.lower())
    if not runs:
        return None
    if len(runs) == 1:
        return _license_contains(runs[0])
    return AllOf(tuple(_license_contains(r) for r in runs))


def build_clauses(spec: FilterSpec) -> list[Clause]:
    n = spec.normalized()
    clauses: list[Clause] = []

    platform_rule = _PLATFORM_RULES.get(normalize_platform(n.platform))
    if platform_rule is not None:
        clauses.append(platform_rule())

    if n.date_start:
        clauses.append(TextBound(DATE_PROPERTY, ">=", n.date_start))
    if n.date_end:
        clauses.append(TextBound(DATE_PROPERTY, "<=", n.date_end + END_OF_DAY_SUFFIX))

    license_rule = _license_rule(n.license)
    if license_rule is not None:
        clauses.append(license_rule)

    return clauses


# --- Compiled output -----------------------------------------------------------------


def _accept_all(_props: Props) -> bool:
    return True


@dataclass(frozen=True)
class CompiledFilter:
    """
    Both renderings of one FilterSpec.

    - predicate: engine filter expression, or None for "show everything"
    - evaluate: plain function over a feature's raw properties
    """

    spec: FilterSpec
    predicate: Expression | None
    evaluate: Callable[[Props], bool]

    @property
    def is_empty(self) -> bool:
        return self.predicate is None


def compile_filter(spec: FilterSpec | None) -> CompiledFilter:
    spec = spec or FilterSpec()
    clauses = build_clauses(spec)
    if not clauses:
        return CompiledFilter(spec=spec, predicate=None, evaluate=_accept_all)
    root = AllOf(tuple(clauses))
    return CompiledFilter(spec=spec, predicate=root.expression(), evaluate=root.evaluate)


def combine(*predicates: Expression | None) -> Expression | None:
    """
    Conjunction of engine predicates, skipping the "no filter" ones.
    """
    parts = [p for p in predicates if p is not None]
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return ["all", *parts]
