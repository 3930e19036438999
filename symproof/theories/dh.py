"""Diffie-Hellman theory: ``exp``, ``mult``, ``inv``, ``one``.

Exponents form an abelian group. Products are normalized by mapping every
atomic factor to a commuting SymPy symbol and letting SymPy collect the
powers; the result is read back as a sorted ``mult`` of atoms and
``inv(atom)`` factors. Exponentiation folds nested powers:

  exp(exp(b, x), y) = exp(b, x * y)
  exp(b, one)       = b

This is the only module allowed to import sympy.

Unification of exponents computes the quotient ``s * t^-1`` and either
eliminates a variable occurring with power +-1 or pairs two atoms of
opposite sign. A message variable base may absorb the other side:

  exp(X, e) = exp(b, f)   gives  X = exp(b, f * e^-1)
  exp(X, e) = t           gives  X = exp(t, e^-1)

When a message variable only occurs with a higher power the alternatives
are reported as incomplete.
"""

from __future__ import annotations

from typing import Callable

import sympy

from symproof.core.signature import DH, Destructor
from symproof.core.terms import App, Sort, Term, Var, const, occurs, sort_key
from symproof.theories.base import Alternative, Solutions

EXP, MULT, INV, ONE = "exp", "mult", "inv", "one"


def _pairable(atom: Term) -> bool:
    return not (isinstance(atom, Var) and atom.sort == Sort.MSG)


class DHTheory:
    name = DH

    def __init__(self) -> None:
        self.symbols = frozenset({EXP, MULT, INV, ONE})

    # -- group arithmetic -------------------------------------------------

    def _factors(self, term: Term, sign: int, out: list[tuple[Term, int]]) -> None:
        if isinstance(term, App) and term.symbol == MULT:
            for a in term.args:
                self._factors(a, sign, out)
        elif isinstance(term, App) and term.symbol == INV and len(term.args) == 1:
            self._factors(term.args[0], -sign, out)
        elif isinstance(term, App) and term.symbol == ONE and not term.args:
            return
        else:
            out.append((term, sign))

    def powers(self, term: Term) -> dict[Term, int]:
        """Exponent of every atom in the group element ``term``."""
        factors: list[tuple[Term, int]] = []
        self._factors(term, 1, factors)
        atoms: dict[Term, sympy.Symbol] = {}
        expr = sympy.Integer(1)
        for atom, sign in factors:
            sym = atoms.setdefault(atom, sympy.Symbol(f"a{len(atoms)}", commutative=True))
            expr = expr * sym**sign
        by_symbol = {s: a for a, s in atoms.items()}
        result: dict[Term, int] = {}
        for base, power in expr.as_powers_dict().items():
            if base in by_symbol and int(power) != 0:
                result[by_symbol[base]] = int(power)
        return result

    def build(self, powers: dict[Term, int]) -> Term:
        factors: list[Term] = []
        for atom in sorted(powers, key=sort_key):
            k = powers[atom]
            item = atom if k > 0 else App(symbol=INV, args=(atom,))
            factors.extend([item] * abs(k))
        if not factors:
            return const(ONE)
        if len(factors) == 1:
            return factors[0]
        return App(symbol=MULT, args=tuple(sorted(factors, key=sort_key)))

    # -- Theory protocol --------------------------------------------------

    def normalize(self, term: App) -> Term:
        if term.symbol in (MULT, INV):
            return self.build(self.powers(term))
        if term.symbol == EXP and len(term.args) == 2:
            base, exponent = term.args
            if isinstance(base, App) and base.symbol == EXP and len(base.args) == 2:
                exponent = App(symbol=MULT, args=(base.args[1], exponent))
                base = base.args[0]
            exponent = self.build(self.powers(exponent))
            if isinstance(exponent, App) and exponent.symbol == ONE:
                return base
            return App(symbol=EXP, args=(base, exponent))
        return term

    def unify(self, s: Term, t: Term, fresh_var: Callable[[], Var]) -> list[Alternative]:
        s_exp = isinstance(s, App) and s.symbol == EXP
        t_exp = isinstance(t, App) and t.symbol == EXP
        if s_exp and t_exp:
            alternatives: list[Alternative] = [[(s.args[0], t.args[0]), (s.args[1], t.args[1])]]
            for (base, e), other in ((s.args, t), (t.args, s)):
                if self._absorbs(base, other):
                    quotient = App(symbol=MULT, args=(other.args[1], App(symbol=INV, args=(e,))))
                    alternatives.append([(base, App(symbol=EXP, args=(other.args[0], quotient)))])
            return alternatives
        if s_exp or t_exp:
            (base, e), other = (s.args, t) if s_exp else (t.args, s)
            alternatives = []
            if self._absorbs(base, other):
                alternatives.append([(base, App(symbol=EXP, args=(other, App(symbol=INV, args=(e,)))))])
            if any(isinstance(a, Var) for a in self.powers(e)):
                alternatives.append([(e, const(ONE)), (base, other)])
            return alternatives
        return self._unify_exponents(s, t)

    def _absorbs(self, base: Term, other: Term) -> bool:
        """A message variable base can take the whole other power."""
        return isinstance(base, Var) and base.sort == Sort.MSG and not occurs(base, other)

    def _unify_exponents(self, s: Term, t: Term) -> list[Alternative]:
        quotient = self.powers(s)
        for atom, k in self.powers(t).items():
            quotient[atom] = quotient.get(atom, 0) - k
        quotient = {a: k for a, k in quotient.items() if k != 0}
        if not quotient:
            return [[]]
        alternatives: list[Alternative] = []
        for atom, k in quotient.items():
            if not isinstance(atom, Var) or atom.sort != Sort.MSG or abs(k) != 1:
                continue
            rest = {a: -k * p for a, p in quotient.items() if a != atom}
            if any(occurs(atom, a) for a in rest):
                continue
            alternatives.append([(atom, self.build(rest))])
        eliminated = bool(alternatives)
        positive = [a for a, k in quotient.items() if k > 0 and _pairable(a)]
        negative = [a for a, k in quotient.items() if k < 0 and _pairable(a)]
        for a in positive:
            for b in negative:
                alternatives.append([(a, b), (s, t)])
        stuck = [a for a, k in quotient.items() if not _pairable(a) and abs(k) != 1]
        if stuck and not eliminated:
            # Message variables with higher powers have no elimination rule.
            return Solutions(alternatives, complete=False)
        return alternatives

    def decompose(self, term: Term) -> list[Destructor]:
        return []
