"""Fluent construction of protocol models in Python."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from symproof.core.facts import Fact
from symproof.core.formulas import Formula
from symproof.core.model import Lemma, LemmaKind, ProtocolModel, Restriction, Tactic
from symproof.core.rules import LetBinding, Rule, RuleKind
from symproof.core.signature import Equation, Signature
from symproof.core.terms import as_term, var


class ModelBuilder:
    """Collects declarations and builds a validated ProtocolModel.

    Terms accept the builder shorthand of ``symproof.core.terms.as_term``:
    ``"x"``, ``"~x"``, ``"$x"`` are variables, ``"'c'"`` is a public name
    and tuples are pairs.
    """

    def __init__(self, name: str, builtins: Iterable[str] = ()) -> None:
        self.name = name
        self._signature = Signature.with_builtins(*builtins)
        self._rules: list[Rule] = []
        self._restrictions: list[Restriction] = []
        self._lemmas: list[Lemma] = []
        self._tactics: list[Tactic] = []
        self._flags: list[str] = []

    def function(self, name: str, arity: int, private: bool = False) -> "ModelBuilder":
        self._signature = self._signature.add_function(name, arity, private)
        return self

    def equation(self, lhs: Any, rhs: Any, name: str = "", convergent: bool = False) -> "ModelBuilder":
        self._signature = self._signature.add_equation(
            Equation(lhs=as_term(lhs), rhs=as_term(rhs), name=name, convergent=convergent)
        )
        return self

    def rule(
        self,
        name: str,
        premises: Iterable[Fact] = (),
        actions: Iterable[Fact] = (),
        conclusions: Iterable[Fact] = (),
        lets: Mapping[str, Any] | None = None,
        restrict: Iterable[Formula] = (),
        kind: RuleKind = RuleKind.PROTOCOL,
        flag: str = "",
        unless_flag: str = "",
    ) -> "ModelBuilder":
        bindings = tuple(LetBinding(var=var(k), term=as_term(v)) for k, v in (lets or {}).items())
        self._rules.append(Rule(
            name=name,
            premises=tuple(premises),
            actions=tuple(actions),
            conclusions=tuple(conclusions),
            lets=bindings,
            restrict=tuple(restrict),
            kind=kind,
            flag=flag,
            unless_flag=unless_flag,
        ))
        return self

    def add_rules(self, rules: Iterable[Rule]) -> "ModelBuilder":
        self._rules.extend(rules)
        return self

    def restriction(self, name: str, formula: Formula, flag: str = "", unless_flag: str = "") -> "ModelBuilder":
        self._restrictions.append(Restriction(name=name, formula=formula, flag=flag, unless_flag=unless_flag))
        return self

    def lemma(
        self,
        name: str,
        formula: Formula,
        kind: LemmaKind | str = LemmaKind.ALL_TRACES,
        tactic: str = "",
        flag: str = "",
        unless_flag: str = "",
    ) -> "ModelBuilder":
        self._lemmas.append(Lemma(
            name=name,
            kind=LemmaKind(kind),
            formula=formula,
            tactic=tactic,
            flag=flag,
            unless_flag=unless_flag,
        ))
        return self

    def tactic(self, name: str, prio: Iterable[str] = (), deprio: Iterable[str] = ()) -> "ModelBuilder":
        self._tactics.append(Tactic(name=name, prio=tuple(prio), deprio=tuple(deprio)))
        return self

    def default_flags(self, *flags: str) -> "ModelBuilder":
        self._flags.extend(flags)
        return self

    def build(self, validate: bool = True) -> ProtocolModel:
        model = ProtocolModel(
            name=self.name,
            signature=self._signature,
            rules=tuple(self._rules),
            restrictions=tuple(self._restrictions),
            lemmas=tuple(self._lemmas),
            tactics=tuple(self._tactics),
            flags=tuple(self._flags),
        )
        return model.validated() if validate else model
