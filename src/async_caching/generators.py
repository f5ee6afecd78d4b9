"""
Reproducible generators.

A worker in another process cannot receive a Python closure, so a generator is
shipped as its source text and rebuilt there. ReproducibleGenerator wraps a
plain function or a lambda, fingerprints its source for cache keying, and
converts it to and from a JSON representation.

Only self-contained code qualifies: no free (closure) variables, no bound
methods, partials, builtins or coroutine functions. Names the source refers to
are resolved against the defining module's globals when the worker can import
that module.

Representations are executed with exec/eval when decoded. Only consume job
payloads from queues you control.
"""

from __future__ import annotations

import ast
import builtins
import functools
import importlib
import inspect
import json
import logging
import textwrap
from types import CodeType, FunctionType
from typing import Any, Callable, Sequence

from .errors import GeneratorRepresentationError
from .keys import digest

logger = logging.getLogger(__name__)

KIND_FUNCTION = "function"
KIND_LAMBDA = "lambda"


def _segment(source: str, node: ast.AST, padded: bool = True) -> str:
    text = ast.get_source_segment(source, node, padded=padded)
    if text is None:
        raise GeneratorRepresentationError("could not slice generator source")
    return textwrap.dedent(text).strip()


def _lambda_matches(node: ast.Lambda, code: CodeType) -> bool:
    names = [a.arg for a in node.args.posonlyargs + node.args.args]
    return names == list(code.co_varnames[: code.co_argcount])


@functools.lru_cache(maxsize=1024)
def _source_for_code(code: CodeType, name: str) -> tuple[str, str]:
    """Return (kind, source) for a function's code object."""
    try:
        lines, _ = inspect.findsource(code)
    except (OSError, TypeError) as exc:
        raise GeneratorRepresentationError(
            f"source of {name!r} is not available: {exc}"
        ) from exc

    file_source = "".join(lines)
    try:
        tree = ast.parse(file_source)
    except SyntaxError as exc:
        raise GeneratorRepresentationError(
            f"could not parse the source defining {name!r}"
        ) from exc

    firstlineno = code.co_firstlineno

    if name == "<lambda>":
        candidates = [
            node
            for node in ast.walk(tree)
            if isinstance(node, ast.Lambda)
            and node.lineno == firstlineno
            and _lambda_matches(node, code)
        ]
        if len(candidates) != 1:
            raise GeneratorRepresentationError(
                f"expected one lambda on line {firstlineno}, found {len(candidates)}"
            )
        return KIND_LAMBDA, _segment(file_source, candidates[0], padded=False)

    for node in ast.walk(tree):
        if not isinstance(node, ast.FunctionDef) or node.name != name:
            continue
        # co_firstlineno points at the first decorator when there is one
        starts = {node.lineno}
        if node.decorator_list:
            starts.add(node.decorator_list[0].lineno)
        if firstlineno in starts:
            return KIND_FUNCTION, _segment(file_source, node)

    raise GeneratorRepresentationError(
        f"could not locate the definition of {name!r} on line {firstlineno}"
    )


def ensure_replayable(value: Any, what: str) -> Any:
    """
    Return value if a JSON round trip gives back an equal value.

    Tuples (which come back as lists), int-keyed dicts (string keys) and
    non-JSON types such as Decimal or date are rejected.
    """
    try:
        decoded = json.loads(json.dumps(value))
    except (TypeError, ValueError) as exc:
        raise GeneratorRepresentationError(
            f"{what} is not JSON-serializable: {exc}"
        ) from exc
    if decoded != value:
        raise GeneratorRepresentationError(
            f"{what} does not survive a JSON round trip: {value!r} != {decoded!r}"
        )
    return value


def ensure_serializable_arguments(arguments: Sequence[Any]) -> list[Any]:
    """Return arguments as a list, or raise if a worker would receive different values."""
    return ensure_replayable(list(arguments), "generator arguments")


class ReproducibleGenerator:
    """
    A callable that can be rebuilt in another process.

    Wrapping never fails for an ordinary callable: when the function cannot be
    represented the wrapper still works locally, `is_reproducible` is False
    and `to_representation()` raises the recorded
    GeneratorRepresentationError.

    Example:
        def double(x):
            return x * 2

        gen = ReproducibleGenerator(double)
        text = gen.to_representation()
        ReproducibleGenerator.from_representation(text)(21)  # 42
    """

    def __init__(self, func: Callable[..., Any]):
        if isinstance(func, ReproducibleGenerator):
            self.__dict__.update(func.__dict__)
            return
        if not callable(func):
            raise TypeError(f"generator must be callable, got {type(func).__name__}")

        self.func = func
        self.name = getattr(func, "__name__", type(func).__name__)
        self.module = getattr(func, "__module__", None)
        self.kind: str | None = None
        self.source: str | None = None
        self.error: GeneratorRepresentationError | None = None

        try:
            self.kind, self.source = self._describe(func)
        except GeneratorRepresentationError as exc:
            self.error = exc
            logger.debug(f"Generator {self.name!r} is not reproducible: {exc}")
            return

        if func.__code__.co_freevars:
            self.error = GeneratorRepresentationError(
                f"{self.name!r} closes over {', '.join(func.__code__.co_freevars)}"
            )
            return

        # Workers rebuild these in bare builtins, where module globals are missing
        if self.module in (None, "__main__"):
            missing = _module_globals_used(func)
            if missing:
                self.error = GeneratorRepresentationError(
                    f"{self.name!r} defined in {self.module} uses module "
                    f"globals {', '.join(missing)}"
                )

    @staticmethod
    def _describe(func: Callable[..., Any]) -> tuple[str, str]:
        if isinstance(func, functools.partial):
            raise GeneratorRepresentationError("functools.partial is not supported")
        if inspect.ismethod(func):
            raise GeneratorRepresentationError(
                f"bound method {func.__qualname__!r} is not supported"
            )
        if not isinstance(func, FunctionType):
            raise GeneratorRepresentationError(
                f"{type(func).__name__} objects have no Python source"
            )
        if inspect.iscoroutinefunction(func):
            raise GeneratorRepresentationError(
                f"coroutine function {func.__name__!r} cannot be used as a generator"
            )
        return _source_for_code(func.__code__, func.__name__)

    @classmethod
    def _restored(
        cls, func: Callable[..., Any], kind: str, source: str, module: str | None
    ) -> ReproducibleGenerator:
        generator = cls.__new__(cls)
        generator.func = func
        generator.name = func.__name__
        generator.module = module
        generator.kind = kind
        generator.source = source
        generator.error = None
        return generator

    @property
    def is_reproducible(self) -> bool:
        return self.error is None

    @property
    def fingerprint(self) -> str:
        """
        Stable digest of the generator's definition.

        Falls back to the qualified name when no source is available. Closure
        cell values are folded in so closures over different values do not
        share cache entries.
        """
        if self.source is None:
            qualname = getattr(self.func, "__qualname__", self.name)
            return digest(f"{self.module}.{qualname}")

        text = self.source
        closure = getattr(self.func, "__closure__", None)
        if closure:
            text += "\n#" + repr([cell.cell_contents for cell in closure])
        return digest(text)

    def to_representation(self) -> str:
        if self.error is not None:
            raise self.error
        return json.dumps(
            {
                "kind": self.kind,
                "module": self.module,
                "name": self.name,
                "source": self.source,
            },
            sort_keys=True,
        )

    @classmethod
    def from_representation(cls, text: str) -> ReproducibleGenerator:
        try:
            data = json.loads(text)
            kind, name, source = data["kind"], data["name"], data["source"]
        except (TypeError, ValueError, KeyError) as exc:
            raise GeneratorRepresentationError(
                f"malformed generator representation: {exc}"
            ) from exc
        module = data.get("module")

        namespace = _namespace_for(module)
        filename = f"<async_caching:{module}.{name}>"
        try:
            if kind == KIND_LAMBDA:
                func = eval(compile(source, filename, "eval"), namespace)
            elif kind == KIND_FUNCTION:
                exec(compile(source, filename, "exec"), namespace)
                func = namespace[name]
            else:
                raise GeneratorRepresentationError(f"unknown generator kind {kind!r}")
        except (SyntaxError, NameError, KeyError) as exc:
            raise GeneratorRepresentationError(
                f"could not rebuild generator {name!r}: {exc}"
            ) from exc

        return cls._restored(func, kind, source, module)

    def __call__(self, *arguments: Any) -> Any:
        return self.func(*arguments)

    def __repr__(self) -> str:
        state = "reproducible" if self.is_reproducible else "local-only"
        return f"<ReproducibleGenerator {self.module}.{self.name} ({state})>"


def _names_in(code: CodeType) -> set[str]:
    names = set(code.co_names)
    for const in code.co_consts:
        if isinstance(const, CodeType):
            names |= _names_in(const)
    return names


def _module_globals_used(func: FunctionType) -> list[str]:
    """Non-builtin globals of func's module that its code (or nested code) names."""
    module_globals = func.__globals__
    return sorted(
        name
        for name in _names_in(func.__code__)
        if name in module_globals
        and name != func.__name__
        and not name.startswith("__")
        and not hasattr(builtins, name)
    )


def _namespace_for(module: str | None) -> dict[str, Any]:
    """Globals to rebuild a generator in: a copy of its module's, if importable."""
    if module and module != "__main__":
        try:
            return dict(vars(importlib.import_module(module)))
        except ImportError:
            logger.debug(f"Module {module!r} not importable, using bare namespace")
    return {"__builtins__": builtins}
