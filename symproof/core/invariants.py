"""Load-time checks on protocol models.

Every check returns a list of violation messages; an empty list means the
construct is well formed. ``ProtocolModel.validated`` collects them and
raises ModelError when any is found. The checks guard the assumptions the
search relies on:
- every term is built from declared symbols at their declared arity
- rule conclusions only use variables bound by premises or lets
- equations are convergent and free of AC symbols on the left
- quantifiers are guarded by action atoms
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Iterable

from symproof.core.facts import FRESH, IN, KNOWS, OUT, Fact
from symproof.core.formulas import (
    Action,
    And,
    Exists,
    Forall,
    Formula,
    Implies,
    Not,
    Or,
    TermEq,
    free_vars,
    guard_violations,
)
from symproof.core.rules import Rule, RuleKind
from symproof.core.signature import AC_THEORIES, DH, Signature
from symproof.core.terms import App, Sort, Term, Var, rename, replace_at, subterms, term_vars

if TYPE_CHECKING:
    from symproof.core.model import ProtocolModel

_THEORY_SYMBOLS = AC_THEORIES | {DH}

# Facts with a fixed meaning and arity.
_RESERVED_ARITY = {FRESH: 1, IN: 1, OUT: 1, KNOWS: 1}


class ModelError(Exception):
    """Raised when a model fails its load-time checks."""

    def __init__(self, construct: str, violations: list[str]) -> None:
        self.construct = construct
        self.violations = violations
        msg = f"Invalid {construct}:\n" + "\n".join(violations)
        super().__init__(msg)


def check_term(term: Term, signature: Signature, where: str) -> list[str]:
    """Unknown symbols and arity mismatches inside one term."""
    violations: list[str] = []
    for _, sub in subterms(term):
        if not isinstance(sub, App):
            continue
        sym = signature.symbols.get(sub.symbol)
        if sym is None:
            violations.append(f"{where}: unknown function symbol '{sub.symbol}'")
            continue
        if sym.theory in AC_THEORIES and sym.arity == 2 and len(sub.args) >= 2:
            continue
        if len(sub.args) != sym.arity:
            violations.append(
                f"{where}: '{sub.symbol}' expects {sym.arity} argument(s), got {len(sub.args)}"
            )
    return violations


def check_equations(signature: Signature) -> list[str]:
    """Convergence preconditions for the user equations."""
    violations: list[str] = []
    for eq in signature.equations:
        where = f"equation {eq.label()}"
        violations.extend(check_term(eq.lhs, signature, where))
        violations.extend(check_term(eq.rhs, signature, where))
        if not isinstance(eq.lhs, App):
            violations.append(f"{where}: left-hand side must be a function application")
            continue
        if not signature.equation_vars_ok(eq):
            violations.append(f"{where}: right-hand side introduces new variables")
        for _, sub in subterms(eq.lhs):
            if isinstance(sub, App) and signature.theory_of(sub.symbol) in _THEORY_SYMBOLS:
                violations.append(f"{where}: builtin theory symbol '{sub.symbol}' on the left-hand side")
                break
        if not eq.convergent and not eq.is_subterm_convergent():
            violations.append(f"{where}: not subterm-convergent and not declared convergent")
    return violations


def check_confluence(signature: Signature) -> list[str]:
    """Best-effort local confluence: every critical pair must join."""
    from symproof.theories.oracle import EquationalOracle
    from symproof.theories.rewriting import unify_syntactic

    violations: list[str] = []
    eqs = [e for e in signature.equations if isinstance(e.lhs, App)]
    if not eqs:
        return violations
    oracle = EquationalOracle(signature, narrowing_depth=0)
    for i, outer in enumerate(eqs):
        for j, inner in enumerate(eqs):
            lhs2, rhs2 = rename(inner.lhs, "cp"), rename(inner.rhs, "cp")
            for path, sub in subterms(outer.lhs):
                if not isinstance(sub, App) or (i == j and not path):
                    continue
                sigma = unify_syntactic(sub, lhs2)
                if sigma is None:
                    continue
                left = oracle.normalize(sigma.apply(outer.rhs))
                right = oracle.normalize(sigma.apply(replace_at(outer.lhs, path, rhs2)))
                if left != right:
                    violations.append(
                        f"critical pair of {outer.label()} and {inner.label()} does not join: "
                        f"{left} vs {right}"
                    )
    return violations


def _bound_vars(rule: Rule) -> set[Var]:
    bound = set(rule.premise_vars())
    for binding in rule.lets:
        bound.add(binding.var)
    return bound


def check_rule(rule: Rule, signature: Signature) -> list[str]:
    """Well-formedness of a single rule."""
    violations: list[str] = []
    where = f"rule {rule.name}"
    facts: list[Fact] = list(rule.all_facts())
    for f in facts:
        for a in f.args:
            violations.extend(check_term(a, signature, where))
        expected = _RESERVED_ARITY.get(f.name)
        if expected is not None and f.arity != expected:
            violations.append(f"{where}: fact {f.name} expects {expected} argument(s), got {f.arity}")
    for binding in rule.lets:
        violations.extend(check_term(binding.term, signature, where))
    for f in rule.premises:
        if f.name == FRESH and f.arity == 1 and not (isinstance(f.args[0], Var) and f.args[0].sort == Sort.FRESH):
            violations.append(f"{where}: Fr premise must bind a fresh variable, got {f}")
        if f.name in (OUT, KNOWS):
            violations.append(f"{where}: {f.name} cannot be a premise")
    for f in rule.conclusions:
        if f.name in (FRESH, IN, KNOWS) and rule.kind != RuleKind.FRESH:
            violations.append(f"{where}: {f.name} cannot be a conclusion")

    bound = _bound_vars(rule)
    for binding in rule.lets:
        free = {v for v in term_vars(binding.term) if v.sort != Sort.PUB} - bound
        if free:
            violations.append(f"{where}: let {binding.var} uses unbound {_names(free)}")
    for label, group in (("conclusion", rule.conclusions), ("action", rule.actions)):
        used: set[Var] = set()
        for f in group:
            for a in f.args:
                used |= term_vars(a)
        unbound = {v for v in used if v.sort != Sort.PUB} - bound
        if unbound:
            violations.append(f"{where}: unbound {label} variable(s) {_names(unbound)}")
    for r in rule.restrict:
        violations.extend(guard_violations(r, where))
        unbound = {v for v in free_vars(r) if v.sort not in (Sort.PUB, Sort.TEMPORAL)} - bound
        if unbound:
            violations.append(f"{where}: restriction uses unbound {_names(unbound)}")
    return violations


def check_fact_arities(rules: Iterable[Rule]) -> list[str]:
    """A fact name is used with one arity across the model."""
    violations: list[str] = []
    seen: dict[str, tuple[int, str]] = {}
    for rule in rules:
        for f in rule.all_facts():
            known = seen.get(f.name)
            if known is None:
                seen[f.name] = (f.arity, rule.name)
            elif known[0] != f.arity:
                violations.append(
                    f"rule {rule.name}: fact {f.name} used with arity {f.arity}, "
                    f"rule {known[1]} uses {known[0]}"
                )
    return violations


def check_closed_formula(formula: Formula, signature: Signature, where: str) -> list[str]:
    violations = guard_violations(formula, where)
    free = free_vars(formula)
    if free:
        violations.append(f"{where}: free variable(s) {_names(free)}")
    for t in _formula_terms(formula):
        violations.extend(check_term(t, signature, where))
    return violations


def _formula_terms(formula: Formula) -> Iterable[Term]:
    if isinstance(formula, Action):
        yield from formula.fact.args
    elif isinstance(formula, TermEq):
        yield formula.left
        yield formula.right
    elif isinstance(formula, (Not, Exists, Forall)):
        yield from _formula_terms(formula.body)
    elif isinstance(formula, Implies):
        yield from _formula_terms(formula.left)
        yield from _formula_terms(formula.right)
    elif isinstance(formula, (And, Or)):
        for child in formula.items:
            yield from _formula_terms(child)


def check_model(model: "ProtocolModel") -> list[str]:
    """All load-time checks for a model."""
    violations: list[str] = []
    names: set[str] = set()
    for rule in model.rules:
        if rule.name in names:
            violations.append(f"duplicate rule name '{rule.name}'")
        names.add(rule.name)
    violations.extend(check_equations(model.signature))
    if not violations:
        violations.extend(check_confluence(model.signature))
    for rule in model.rules:
        violations.extend(check_rule(rule, model.signature))
    violations.extend(check_fact_arities(model.rules))
    for r in model.restrictions:
        violations.extend(check_closed_formula(r.formula, model.signature, f"restriction {r.name}"))
    tactic_names = {t.name for t in model.tactics} | {"default"}
    for t in model.tactics:
        for pattern in t.prio + t.deprio:
            try:
                re.compile(pattern)
            except re.error as exc:
                violations.append(f"tactic {t.name}: bad pattern {pattern!r}: {exc}")
    for lemma in model.lemmas:
        violations.extend(check_closed_formula(lemma.formula, model.signature, f"lemma {lemma.name}"))
        if lemma.tactic and lemma.tactic not in tactic_names:
            violations.append(f"lemma {lemma.name}: unknown tactic '{lemma.tactic}'")
    return violations


def _names(variables: Iterable[Var]) -> str:
    return ", ".join(sorted(str(v) for v in variables))
