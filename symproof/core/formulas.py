"""Guarded first-order trace formulas.

Grammar:
  atom    := Action(fact @ #i) | Less(#i < #j) | TimeEq(#i = #j)
           | TermEq(t = u) | Top | Bottom
  formula := atom | Not | And | Or | Implies | Exists | Forall

Formulas are frozen Pydantic models with a ``tag`` discriminator so lemmas
and restrictions round-trip through JSON.

Quantifiers are guarded: every variable bound by ``Exists`` must occur in
an action atom of the body's top-level conjunction, and every variable
bound by ``Forall`` in an action atom of the implication's premise. The
negation normal form keeps universals in the shape
``Forall(vars, Implies(guard, body))`` so the search can instantiate them
by matching the guard against trace actions.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Discriminator, Tag

from symproof.core.facts import Fact
from symproof.core.subst import Subst
from symproof.core.terms import Sort, Term, Var, as_term, iter_vars, var


class Action(BaseModel):
    model_config = {"frozen": True}
    tag: Literal["action"] = "action"
    fact: Fact
    time: Var

    def __str__(self) -> str:
        return f"{self.fact} @ {self.time}"


class Less(BaseModel):
    model_config = {"frozen": True}
    tag: Literal["less"] = "less"
    left: Var
    right: Var

    def __str__(self) -> str:
        return f"{self.left} < {self.right}"


class TimeEq(BaseModel):
    model_config = {"frozen": True}
    tag: Literal["teq"] = "teq"
    left: Var
    right: Var

    def __str__(self) -> str:
        return f"{self.left} = {self.right}"


class TermEq(BaseModel):
    model_config = {"frozen": True}
    tag: Literal["eq"] = "eq"
    left: Term
    right: Term

    def __str__(self) -> str:
        return f"{self.left} = {self.right}"


class Top(BaseModel):
    model_config = {"frozen": True}
    tag: Literal["top"] = "top"

    def __str__(self) -> str:
        return "T"


class Bottom(BaseModel):
    model_config = {"frozen": True}
    tag: Literal["bottom"] = "bottom"

    def __str__(self) -> str:
        return "F"


class Not(BaseModel):
    model_config = {"frozen": True}
    tag: Literal["not"] = "not"
    body: Formula

    def __str__(self) -> str:
        return f"not({self.body})"


class And(BaseModel):
    model_config = {"frozen": True}
    tag: Literal["and"] = "and"
    items: tuple[Formula, ...]

    def __str__(self) -> str:
        return "(" + " & ".join(str(i) for i in self.items) + ")"


class Or(BaseModel):
    model_config = {"frozen": True}
    tag: Literal["or"] = "or"
    items: tuple[Formula, ...]

    def __str__(self) -> str:
        return "(" + " | ".join(str(i) for i in self.items) + ")"


class Implies(BaseModel):
    model_config = {"frozen": True}
    tag: Literal["implies"] = "implies"
    left: Formula
    right: Formula

    def __str__(self) -> str:
        return f"({self.left} ==> {self.right})"


class Exists(BaseModel):
    model_config = {"frozen": True}
    tag: Literal["exists"] = "exists"
    vars: tuple[Var, ...]
    body: Formula

    def __str__(self) -> str:
        return "Ex " + " ".join(str(v) for v in self.vars) + f". {self.body}"


class Forall(BaseModel):
    model_config = {"frozen": True}
    tag: Literal["forall"] = "forall"
    vars: tuple[Var, ...]
    body: Formula

    def __str__(self) -> str:
        return "All " + " ".join(str(v) for v in self.vars) + f". {self.body}"


Formula = Annotated[
    Union[
        Annotated[Action, Tag("action")],
        Annotated[Less, Tag("less")],
        Annotated[TimeEq, Tag("teq")],
        Annotated[TermEq, Tag("eq")],
        Annotated[Top, Tag("top")],
        Annotated[Bottom, Tag("bottom")],
        Annotated[Not, Tag("not")],
        Annotated[And, Tag("and")],
        Annotated[Or, Tag("or")],
        Annotated[Implies, Tag("implies")],
        Annotated[Exists, Tag("exists")],
        Annotated[Forall, Tag("forall")],
    ],
    Discriminator("tag"),
]

for _cls in (Not, And, Or, Implies, Exists, Forall):
    _cls.model_rebuild()

ATOMS = (Action, Less, TimeEq, TermEq, Top, Bottom)
TRUE = Top()
FALSE = Bottom()


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def _vars(names: Any) -> tuple[Var, ...]:
    if isinstance(names, str):
        names = names.split()
    return tuple(v if isinstance(v, Var) else var(v) for v in names)


def _tvar(v: Any) -> Var:
    result = v if isinstance(v, Var) else var(v)
    if result.sort != Sort.TEMPORAL:
        raise ValueError(f"{result} is not a temporal variable")
    return result


def at(f: Fact, time: Any) -> Action:
    return Action(fact=f, time=_tvar(time))


def lt(left: Any, right: Any) -> Less:
    return Less(left=_tvar(left), right=_tvar(right))


def teq(left: Any, right: Any) -> TimeEq:
    return TimeEq(left=_tvar(left), right=_tvar(right))


def eq(left: Any, right: Any) -> TermEq:
    return TermEq(left=as_term(left), right=as_term(right))


def neg(body: Formula) -> Not:
    return Not(body=body)


def conj(*items: Formula) -> Formula:
    flat = flatten_and(And(items=items)) if items else []
    if not flat:
        return TRUE
    if len(flat) == 1:
        return flat[0]
    return And(items=tuple(flat))


def disj(*items: Formula) -> Formula:
    if len(items) == 1:
        return items[0]
    return Or(items=tuple(items))


def implies(left: Formula, right: Formula) -> Implies:
    return Implies(left=left, right=right)


def ex(variables: Any, body: Formula) -> Exists:
    return Exists(vars=_vars(variables), body=body)


def fa(variables: Any, guard: Formula, body: Formula) -> Forall:
    """``All vars. guard ==> body``."""
    return Forall(vars=_vars(variables), body=Implies(left=guard, right=body))


# ---------------------------------------------------------------------------
# Structure
# ---------------------------------------------------------------------------

def flatten_and(f: Formula) -> list[Formula]:
    if isinstance(f, And):
        out: list[Formula] = []
        for i in f.items:
            out.extend(flatten_and(i))
        return out
    if isinstance(f, Top):
        return []
    return [f]


def is_atom(f: Formula) -> bool:
    return isinstance(f, ATOMS)


def free_vars(f: Formula) -> set[Var]:
    if isinstance(f, Action):
        result = set()
        for a in f.fact.args:
            result |= set(iter_vars(a))
        return result | {f.time}
    if isinstance(f, (Less, TimeEq)):
        return {f.left, f.right}
    if isinstance(f, TermEq):
        return set(iter_vars(f.left)) | set(iter_vars(f.right))
    if isinstance(f, (Top, Bottom)):
        return set()
    if isinstance(f, Not):
        return free_vars(f.body)
    if isinstance(f, (And, Or)):
        result = set()
        for i in f.items:
            result |= free_vars(i)
        return result
    if isinstance(f, Implies):
        return free_vars(f.left) | free_vars(f.right)
    return free_vars(f.body) - set(f.vars)


def substitute(f: Formula, subst: Subst) -> Formula:
    """Apply ``subst`` to the free variables of ``f``."""
    if not len(subst):
        return f
    if isinstance(f, Action):
        time = subst.apply(f.time)
        return Action(fact=f.fact.apply(subst), time=time)
    if isinstance(f, Less):
        return Less(left=subst.apply(f.left), right=subst.apply(f.right))
    if isinstance(f, TimeEq):
        return TimeEq(left=subst.apply(f.left), right=subst.apply(f.right))
    if isinstance(f, TermEq):
        return TermEq(left=subst.apply(f.left), right=subst.apply(f.right))
    if isinstance(f, (Top, Bottom)):
        return f
    if isinstance(f, Not):
        return Not(body=substitute(f.body, subst))
    if isinstance(f, And):
        return And(items=tuple(substitute(i, subst) for i in f.items))
    if isinstance(f, Or):
        return Or(items=tuple(substitute(i, subst) for i in f.items))
    if isinstance(f, Implies):
        return Implies(left=substitute(f.left, subst), right=substitute(f.right, subst))
    inner = Subst({k: v for k, v in subst.items() if k not in f.vars})
    return type(f)(vars=f.vars, body=substitute(f.body, inner))


def rename_bound(f: Exists | Forall, suffix: str) -> tuple[tuple[Var, ...], Formula]:
    """Fresh copies of the bound variables and the body using them."""
    fresh = tuple(Var(name=f"{v.name}.{suffix}", sort=v.sort) for v in f.vars)
    body = substitute(f.body, Subst(dict(zip(f.vars, fresh))))
    return fresh, body


def split_guard(f: Forall) -> tuple[list[Formula], Formula]:
    """Guard atoms and body of a universal in normal form."""
    if isinstance(f.body, Implies):
        return flatten_and(f.body.left), f.body.right
    return [], f.body


# ---------------------------------------------------------------------------
# Negation normal form
# ---------------------------------------------------------------------------

def nnf(f: Formula) -> Formula:
    """Negation normal form with universals kept as guarded implications."""
    if is_atom(f):
        return f
    if isinstance(f, Not):
        return _negate(f.body)
    if isinstance(f, And):
        return conj(*(nnf(i) for i in f.items))
    if isinstance(f, Or):
        return disj(*(nnf(i) for i in f.items))
    if isinstance(f, Implies):
        return disj(_negate(f.left), nnf(f.right))
    if isinstance(f, Exists):
        return Exists(vars=f.vars, body=nnf(f.body))
    guard, body = split_guard(f)
    return Forall(vars=f.vars, body=Implies(left=conj(*guard), right=nnf(body)))


def _negate(f: Formula) -> Formula:
    if isinstance(f, Top):
        return FALSE
    if isinstance(f, Bottom):
        return TRUE
    if isinstance(f, Action):
        return Forall(vars=(), body=Implies(left=f, right=FALSE))
    if isinstance(f, Less):
        return Or(items=(Less(left=f.right, right=f.left), TimeEq(left=f.left, right=f.right)))
    if isinstance(f, (TimeEq, TermEq)):
        return Not(body=f)
    if isinstance(f, Not):
        return nnf(f.body)
    if isinstance(f, And):
        return disj(*(_negate(i) for i in f.items))
    if isinstance(f, Or):
        return conj(*(_negate(i) for i in f.items))
    if isinstance(f, Implies):
        return conj(nnf(f.left), _negate(f.right))
    if isinstance(f, Exists):
        parts = flatten_and(f.body)
        guard = [p for p in parts if is_atom(p)]
        rest = [p for p in parts if not is_atom(p)]
        body = _negate(conj(*rest)) if rest else FALSE
        return Forall(vars=f.vars, body=Implies(left=conj(*guard), right=body))
    guard, body = split_guard(f)
    return Exists(vars=f.vars, body=conj(*guard, _negate(body)))


def negate(f: Formula) -> Formula:
    return _negate(f)


# ---------------------------------------------------------------------------
# Guardedness
# ---------------------------------------------------------------------------

def _action_vars(atoms: list[Formula]) -> set[Var]:
    result: set[Var] = set()
    for a in atoms:
        if isinstance(a, Action):
            result |= free_vars(a)
    return result


def guard_violations(f: Formula, where: str = "") -> list[str]:
    """Quantified variables not bound by an action atom of their guard."""
    violations: list[str] = []
    if isinstance(f, (Exists, Forall)):
        if isinstance(f, Exists):
            guard = flatten_and(f.body)
            inner = [f.body]
        else:
            if not isinstance(f.body, Implies):
                violations.append(f"{where}: universal without implication: {f}")
                return violations
            guard = flatten_and(f.body.left)
            inner = [f.body.left, f.body.right]
        unguarded = set(f.vars) - _action_vars(guard)
        if unguarded:
            names = ", ".join(sorted(str(v) for v in unguarded))
            violations.append(f"{where}: unguarded quantified variable(s) {names}")
        for i in inner:
            violations.extend(guard_violations(i, where))
    elif isinstance(f, Not):
        violations.extend(guard_violations(f.body, where))
    elif isinstance(f, (And, Or)):
        for i in f.items:
            violations.extend(guard_violations(i, where))
    elif isinstance(f, Implies):
        violations.extend(guard_violations(f.left, where))
        violations.extend(guard_violations(f.right, where))
    return violations
