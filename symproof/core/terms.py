"""Symbolic message terms.

Grammar:
  term := Var(name, sort) | Name(value, kind) | App(symbol, args)

Variables carry a sort: msg (any term), fresh (``~x``, nonces),
pub (``$x``, public values) and temporal (``#i``, timepoints).
Names are ground constants, fresh (``~'n'``) or public (``'c'``).

All nodes are frozen Pydantic models so they hash, compare structurally
and round-trip through JSON via the ``tag`` discriminator. Equality is
syntactic; equality modulo the equational theory is decided by comparing
normal forms (see symproof.theories.oracle).
"""

from __future__ import annotations

import enum
from typing import Annotated, Any, Callable, Iterator, Literal, Union

from pydantic import BaseModel, Discriminator, Tag

PAIR = "pair"


class Sort(str, enum.Enum):
    MSG = "msg"
    FRESH = "fresh"
    PUB = "pub"
    TEMPORAL = "temporal"


class NameKind(str, enum.Enum):
    FRESH = "fresh"
    PUB = "pub"


_SORT_PREFIX = {Sort.MSG: "", Sort.FRESH: "~", Sort.PUB: "$", Sort.TEMPORAL: "#"}


class Var(BaseModel):
    """A variable of a given sort."""

    model_config = {"frozen": True}
    tag: Literal["var"] = "var"
    name: str
    sort: Sort = Sort.MSG

    def __str__(self) -> str:
        return f"{_SORT_PREFIX[self.sort]}{self.name}"


class Name(BaseModel):
    """A ground name constant."""

    model_config = {"frozen": True}
    tag: Literal["name"] = "name"
    value: str
    kind: NameKind = NameKind.PUB

    @property
    def is_fresh(self) -> bool:
        return self.kind == NameKind.FRESH

    def __str__(self) -> str:
        if self.kind == NameKind.FRESH:
            return f"~'{self.value}'"
        return f"'{self.value}'"


class App(BaseModel):
    """Function application. Nullary applications are constants like ``true``."""

    model_config = {"frozen": True}
    tag: Literal["app"] = "app"
    symbol: str
    args: tuple[Term, ...] = ()

    def __str__(self) -> str:
        if self.symbol == PAIR and len(self.args) == 2:
            return "<" + ", ".join(str(a) for a in flatten_pair(self)) + ">"
        if not self.args:
            return self.symbol
        return f"{self.symbol}(" + ", ".join(str(a) for a in self.args) + ")"


Term = Annotated[
    Union[
        Annotated[Var, Tag("var")],
        Annotated[Name, Tag("name")],
        Annotated[App, Tag("app")],
    ],
    Discriminator("tag"),
]

App.model_rebuild()


# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------

def var(text: str) -> Var:
    """Build a variable from its surface syntax: ``x``, ``~x``, ``$x``, ``#i``."""
    if not text:
        raise ValueError("Empty variable name")
    for sort, prefix in _SORT_PREFIX.items():
        if prefix and text.startswith(prefix):
            return Var(name=text[1:], sort=sort)
    return Var(name=text)


def pub(value: str) -> Name:
    return Name(value=value, kind=NameKind.PUB)


def fresh(value: str) -> Name:
    return Name(value=value, kind=NameKind.FRESH)


def app(symbol: str, *args: Any) -> App:
    return App(symbol=symbol, args=tuple(as_term(a) for a in args))


def const(symbol: str) -> App:
    return App(symbol=symbol, args=())


def pair(*items: Any) -> Any:
    """Right-nested tuple ``<a, b, c> = pair(a, pair(b, c))``."""
    if not items:
        raise ValueError("pair() needs at least one component")
    terms = [as_term(i) for i in items]
    result = terms[-1]
    for t in reversed(terms[:-1]):
        result = App(symbol=PAIR, args=(t, result))
    return result


def as_term(obj: Any) -> Any:
    """Coerce builder shorthand to a term.

    Strings are read with the surface syntax of ``var``; a quoted string
    ``"'c'"`` is a public name. Tuples become pairs.
    """
    if isinstance(obj, (Var, Name, App)):
        return obj
    if isinstance(obj, str):
        if len(obj) >= 2 and obj[0] == "'" and obj[-1] == "'":
            return pub(obj[1:-1])
        return var(obj)
    if isinstance(obj, tuple):
        return pair(*obj)
    raise TypeError(f"Cannot interpret {obj!r} as a term")


def flatten_pair(term: Term) -> list[Any]:
    items = []
    while isinstance(term, App) and term.symbol == PAIR and len(term.args) == 2:
        items.append(term.args[0])
        term = term.args[1]
    items.append(term)
    return items


# ---------------------------------------------------------------------------
# Structural helpers
# ---------------------------------------------------------------------------

def iter_vars(term: Term) -> Iterator[Var]:
    """Variables in depth-first, left-to-right order (with repeats)."""
    if isinstance(term, Var):
        yield term
    elif isinstance(term, App):
        for a in term.args:
            yield from iter_vars(a)


def term_vars(term: Term) -> set[Var]:
    return set(iter_vars(term))


def ordered_vars(terms: Any) -> list[Var]:
    """Distinct variables of several terms in order of first occurrence."""
    seen: dict[Var, None] = {}
    for t in terms:
        for v in iter_vars(t):
            seen.setdefault(v, None)
    return list(seen)


def is_ground(term: Term) -> bool:
    return next(iter_vars(term), None) is None


def occurs(v: Var, term: Any) -> bool:
    if isinstance(term, Var):
        return term == v
    if isinstance(term, App):
        return any(occurs(v, a) for a in term.args)
    return False


def symbols(term: Term) -> set[str]:
    if isinstance(term, App):
        result = {term.symbol}
        for a in term.args:
            result |= symbols(a)
        return result
    return set()


def subterms(term: Term, path: tuple[int, ...] = ()) -> Iterator[tuple[tuple[int, ...], Any]]:
    """All (position, subterm) pairs, root first."""
    yield path, term
    if isinstance(term, App):
        for i, a in enumerate(term.args):
            yield from subterms(a, path + (i,))


def replace_at(term: Term, path: tuple[int, ...], new: Term) -> Term:
    if not path:
        return new
    if not isinstance(term, App):
        raise ValueError(f"No position {path} in {term}")
    i = path[0]
    args = list(term.args)
    args[i] = replace_at(args[i], path[1:], new)
    return App(symbol=term.symbol, args=tuple(args))


def map_vars(term: Term, fn: Callable[[Var], Term]) -> Term:
    if isinstance(term, Var):
        return fn(term)
    if isinstance(term, App):
        if not term.args:
            return term
        return App(symbol=term.symbol, args=tuple(map_vars(a, fn) for a in term.args))
    return term


def rename(term: Term, suffix: str) -> Term:
    """Rename every variable apart by appending a suffix."""
    return map_vars(term, lambda v: Var(name=f"{v.name}.{suffix}", sort=v.sort))


def sort_key(term: Term) -> tuple:
    """Total order on terms, used to sort AC arguments canonically."""
    if isinstance(term, Name):
        return (0, term.kind.value, term.value)
    if isinstance(term, Var):
        return (1, term.sort.value, term.name)
    return (2, term.symbol, len(term.args), tuple(sort_key(a) for a in term.args))


def size(term: Term) -> int:
    if isinstance(term, App):
        return 1 + sum(size(a) for a in term.args)
    return 1
