"""Function signature, equations and builtin theories.

A Signature is the symbol table of a model: every function symbol with
its arity, whether the adversary may apply it, and the equational theory
that owns it. Builtin theories contribute symbols and equations by name,
the way protocol models declare ``builtins: signing, xor``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from symproof.core.frozen_collections import DeepFreezeModel
from symproof.core.terms import App, Term, Var, app, const, is_ground, subterms, term_vars, var

# Owning theories for symbols handled outside plain rewriting.
FREE = "free"
MULTISET = "multiset"
XOR = "xor"
DH = "diffie-hellman"

AC_THEORIES = {MULTISET, XOR}


class FunctionSymbol(BaseModel):
    """A function symbol. AC symbols are variadic after normalization."""

    model_config = {"frozen": True}

    name: str
    arity: int
    private: bool = False
    theory: str = FREE


class Equation(BaseModel):
    """An oriented rewrite axiom ``lhs = rhs``.

    ``convergent`` declares a rule that is convergent although it is not
    subterm-convergent (e.g. key-combination equations).
    """

    model_config = {"frozen": True}

    lhs: Term
    rhs: Term
    name: str = ""
    convergent: bool = False

    def is_subterm_convergent(self) -> bool:
        if is_ground(self.rhs):
            return True
        return any(sub == self.rhs for path, sub in subterms(self.lhs) if path)

    def label(self) -> str:
        return self.name or f"{self.lhs} = {self.rhs}"


class Destructor(BaseModel):
    """Adversary extraction derived from an equation ``d(c(..x_i..), side..) = x_i``."""

    model_config = {"frozen": True}

    destructor: str
    constructor: str
    index: int
    pattern: Term
    side: tuple[Term, ...] = ()


def _eq(lhs: Any, rhs: Any, name: str = "") -> Equation:
    return Equation(lhs=lhs, rhs=rhs, name=name)


_x, _y, _m, _k, _sk = var("x"), var("y"), var("m"), var("k"), var("sk")

BUILTINS: dict[str, tuple[list[FunctionSymbol], list[Equation]]] = {
    "pairing": (
        [
            FunctionSymbol(name="pair", arity=2),
            FunctionSymbol(name="fst", arity=1),
            FunctionSymbol(name="snd", arity=1),
        ],
        [
            _eq(app("fst", app("pair", _x, _y)), _x, "fst"),
            _eq(app("snd", app("pair", _x, _y)), _y, "snd"),
        ],
    ),
    "hashing": ([FunctionSymbol(name="h", arity=1)], []),
    "signing": (
        [
            FunctionSymbol(name="sign", arity=2),
            FunctionSymbol(name="verify", arity=3),
            FunctionSymbol(name="pk", arity=1),
            FunctionSymbol(name="getMessage", arity=1),
            FunctionSymbol(name="true", arity=0),
        ],
        [
            _eq(app("verify", app("sign", _m, _sk), _m, app("pk", _sk)), const("true"), "verify"),
            _eq(app("getMessage", app("sign", _m, _sk)), _m, "getMessage"),
        ],
    ),
    "symmetric-encryption": (
        [
            FunctionSymbol(name="senc", arity=2),
            FunctionSymbol(name="sdec", arity=2),
        ],
        [_eq(app("sdec", app("senc", _m, _k), _k), _m, "sdec")],
    ),
    "asymmetric-encryption": (
        [
            FunctionSymbol(name="aenc", arity=2),
            FunctionSymbol(name="adec", arity=2),
            FunctionSymbol(name="pk", arity=1),
        ],
        [_eq(app("adec", app("aenc", _m, app("pk", _k)), _k), _m, "adec")],
    ),
    "diffie-hellman": (
        [
            FunctionSymbol(name="exp", arity=2, theory=DH),
            FunctionSymbol(name="mult", arity=2, theory=DH),
            FunctionSymbol(name="inv", arity=1, theory=DH),
            FunctionSymbol(name="one", arity=0, theory=DH),
        ],
        [],
    ),
    "xor": (
        [
            FunctionSymbol(name="xor", arity=2, theory=XOR),
            FunctionSymbol(name="zero", arity=0, theory=XOR),
        ],
        [],
    ),
    "multiset": (
        [
            FunctionSymbol(name="union", arity=2, theory=MULTISET),
            FunctionSymbol(name="empty", arity=0, theory=MULTISET),
        ],
        [],
    ),
}


class Signature(DeepFreezeModel):
    """Symbol table plus user and builtin equations."""

    model_config = {"frozen": True}

    symbols: dict[str, FunctionSymbol] = Field(default_factory=dict)
    equations: tuple[Equation, ...] = ()
    builtins: tuple[str, ...] = ()

    @classmethod
    def with_builtins(cls, *names: str) -> "Signature":
        sig = cls()
        for n in ("pairing",) + tuple(names):
            sig = sig.add_builtin(n)
        return sig

    def add_builtin(self, name: str) -> "Signature":
        if name not in BUILTINS:
            raise KeyError(f"Unknown builtin theory '{name}'")
        if name in self.builtins:
            return self
        syms, eqs = BUILTINS[name]
        symbols = dict(self.symbols)
        for s in syms:
            symbols[s.name] = s
        return Signature(
            symbols=symbols,
            equations=self.equations + tuple(eqs),
            builtins=self.builtins + (name,),
        )

    def add_function(self, name: str, arity: int, private: bool = False) -> "Signature":
        symbols = dict(self.symbols)
        symbols[name] = FunctionSymbol(name=name, arity=arity, private=private)
        return Signature(symbols=symbols, equations=self.equations, builtins=self.builtins)

    def add_equation(self, equation: Equation) -> "Signature":
        return Signature(
            symbols=self.symbols, equations=self.equations + (equation,), builtins=self.builtins,
        )

    def symbol(self, name: str) -> FunctionSymbol:
        return self.symbols[name]

    def is_private(self, name: str) -> bool:
        sym = self.symbols.get(name)
        return sym is not None and sym.private

    def theory_of(self, name: str) -> str:
        sym = self.symbols.get(name)
        return sym.theory if sym is not None else FREE

    def defined_symbols(self) -> set[str]:
        """Symbols heading some equation left-hand side."""
        return {e.lhs.symbol for e in self.equations if isinstance(e.lhs, App)}

    def destructors(self) -> list[Destructor]:
        """Extraction steps the adversary can perform, derived from equations."""
        result: list[Destructor] = []
        for eq in self.equations:
            lhs = eq.lhs
            if not isinstance(lhs, App) or not lhs.args or not isinstance(eq.rhs, Var):
                continue
            inner = lhs.args[0]
            if not isinstance(inner, App):
                continue
            for i, a in enumerate(inner.args):
                if a == eq.rhs:
                    result.append(Destructor(
                        destructor=lhs.symbol,
                        constructor=inner.symbol,
                        index=i,
                        pattern=inner,
                        side=lhs.args[1:],
                    ))
                    break
        return result

    def equation_vars_ok(self, eq: Equation) -> bool:
        return term_vars(eq.rhs) <= term_vars(eq.lhs)
