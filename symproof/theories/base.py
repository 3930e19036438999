"""Theory protocol: normalize(), unify(), decompose().

Each builtin equational theory is a plug-in owning a set of head symbols.
The EquationalOracle composes the active theories: it normalizes bottom-up
by dispatching on the head symbol, and hands unification problems whose
head belongs to a theory to that theory, which answers with alternative
lists of simpler equations for the oracle to solve.
"""

from __future__ import annotations

from typing import Callable, Iterable, Protocol, runtime_checkable

from symproof.core.signature import Destructor
from symproof.core.terms import App, Term, Var

# One alternative of a theory unification step: equations still to solve.
Alternative = list[tuple[Term, Term]]


class Solutions(list):
    """A list of unifiers or alternatives that knows whether it is complete.

    ``complete`` is False when a bound cut the enumeration short, so callers
    must not treat an exhausted list as a proof that nothing else exists.
    """

    def __init__(self, items: Iterable = (), complete: bool = True) -> None:
        super().__init__(items)
        self.complete = complete


@runtime_checkable
class Theory(Protocol):
    """Protocol for builtin equational theories."""

    name: str
    symbols: frozenset[str]

    def normalize(self, term: App) -> Term:
        """Normalize the root of ``term``; its arguments are already normal."""
        ...

    def unify(self, s: Term, t: Term, fresh_var: Callable[[], Var]) -> list[Alternative]:
        """Alternatives for ``s = t`` where one side is headed by this theory.

        An empty list means no unifier. ``[[]]`` means already equal. A
        theory that cannot enumerate every alternative returns a
        ``Solutions`` with ``complete=False``.
        """
        ...

    def decompose(self, term: Term) -> list[Destructor]:
        """Extraction steps available to the adversary on ``term``."""
        ...
