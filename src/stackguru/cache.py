"""Memoized method and type name resolution.

Resolving a frame to "which method of which type is this" means splitting
the code object's qualified name, walking the module globals to find the
function behind it, and reading its annotations.  :class:`FrameInfoCache`
does that once per code object and serves every later lookup from memory.

Resolution never raises: a frame that cannot be resolved maps to
:data:`INVALID_METHOD_INFO`, and callers treat it as "no frame info".
"""

from __future__ import annotations

import inspect
import threading
import typing
from collections.abc import Mapping
from dataclasses import dataclass
from types import CodeType
from typing import Any

from stackguru.frames import StackFrame

EMPTY: Any = inspect.Parameter.empty

#: Code objects the compiler generates on behalf of an enclosing function.
GENERATED_CODE_NAMES: frozenset[str] = frozenset(
    {"<genexpr>", "<listcomp>", "<setcomp>", "<dictcomp>"}
)

ASYNC_CODE_FLAGS: int = (
    inspect.CO_COROUTINE | inspect.CO_ITERABLE_COROUTINE | inspect.CO_ASYNC_GENERATOR
)

_LOCALS = "<locals>"
_BOUND_NAMES = ("self", "cls")


def short_type_name(name: str) -> str:
    """Return the part of a dotted *name* after the last ``.``."""
    if not name:
        return name
    return name.rpartition(".")[2]


@dataclass(frozen=True)
class ParameterInfo:
    """A single parameter of a resolved method."""

    name: str
    annotation: Any = EMPTY
    kind: str = ""  # "", "*" or "**"

    @property
    def is_annotated(self) -> bool:
        return self.annotation is not EMPTY


@dataclass(frozen=True)
class ResolvedMethodInfo:
    """Cached view of the method executing in a frame."""

    method_name: str = ""
    type_name: str = ""
    type_full_name: str = ""
    full_name: str = ""
    module: str = ""
    qualname: str = ""
    parameters: tuple[ParameterInfo, ...] = ()
    return_annotation: Any = EMPTY
    has_async_marker: bool = False
    is_generated: bool = False
    is_valid: bool = False


INVALID_METHOD_INFO = ResolvedMethodInfo()


@dataclass(frozen=True)
class CacheStats:
    method_entries: int
    type_entries: int


def _candidate_functions(obj: Any) -> list[Any]:
    if isinstance(obj, (staticmethod, classmethod)):
        return [obj.__func__]
    if isinstance(obj, property):
        return [f for f in (obj.fget, obj.fset, obj.fdel) if f is not None]
    return [obj]


def _lookup_function(code: CodeType, namespace: Mapping[str, Any] | None) -> Any:
    """Find the function object whose ``__code__`` is *code*, if reachable."""
    if namespace is None:
        return None
    parts = code.co_qualname.split(".")
    if _LOCALS in parts or parts[-1].startswith("<"):
        return None

    obj = namespace.get(parts[0])
    for part in parts[1:]:
        if obj is None:
            return None
        obj = inspect.getattr_static(obj, part, None)

    for candidate in _candidate_functions(obj):
        try:
            func = inspect.unwrap(candidate)
        except ValueError:
            continue
        if getattr(func, "__code__", None) is code:
            return func
    return None


def _read_annotations(func: Any) -> dict[str, Any]:
    if func is None:
        return {}
    try:
        return dict(inspect.get_annotations(func))
    except Exception:
        # Unresolvable forward references and the like.
        return {}


def _parameters(
    code: CodeType,
    annotations: Mapping[str, Any],
    *,
    is_member: bool,
) -> tuple[ParameterInfo, ...]:
    varnames = code.co_varnames
    positional = varnames[: code.co_argcount]
    keyword_only = varnames[code.co_argcount : code.co_argcount + code.co_kwonlyargcount]
    index = code.co_argcount + code.co_kwonlyargcount

    params = [ParameterInfo(n, annotations.get(n, EMPTY)) for n in positional]
    if code.co_flags & inspect.CO_VARARGS:
        name = varnames[index]
        params.append(ParameterInfo(name, annotations.get(name, EMPTY), "*"))
        index += 1
    params.extend(ParameterInfo(n, annotations.get(n, EMPTY)) for n in keyword_only)
    if code.co_flags & inspect.CO_VARKEYWORDS:
        name = varnames[index]
        params.append(ParameterInfo(name, annotations.get(name, EMPTY), "**"))

    if is_member and params and params[0].name in _BOUND_NAMES and not params[0].kind:
        del params[0]
    return tuple(params)


def resolve_method_info(
    code: CodeType | None,
    module: str | None,
    namespace: Mapping[str, Any] | None = None,
) -> ResolvedMethodInfo:
    """Resolve *code* running in *module* without caching."""
    if code is None or not module:
        return INVALID_METHOD_INFO
    try:
        qualname = code.co_qualname
        *owner, method_name = qualname.split(".")
        is_member = bool(owner) and owner[-1] != _LOCALS
        type_full_name = ".".join([module, *(p for p in owner if p != _LOCALS)])

        annotations = _read_annotations(_lookup_function(code, namespace))
        return ResolvedMethodInfo(
            method_name=method_name,
            type_name=short_type_name(type_full_name),
            type_full_name=type_full_name,
            full_name=f"{type_full_name}.{method_name}",
            module=module,
            qualname=qualname,
            parameters=_parameters(code, annotations, is_member=is_member),
            return_annotation=annotations.get("return", EMPTY),
            has_async_marker=bool(code.co_flags & ASYNC_CODE_FLAGS),
            is_generated=method_name in GENERATED_CODE_NAMES,
            is_valid=True,
        )
    except Exception:
        return INVALID_METHOD_INFO


def resolve_type_name(tp: Any) -> str:
    """Return the fully qualified name of a type or annotation, uncached."""
    if isinstance(tp, str):
        return tp
    if tp is None or tp is type(None):
        return "None"
    if isinstance(tp, type) and typing.get_origin(tp) is None:
        module = getattr(tp, "__module__", "")
        qualname = getattr(tp, "__qualname__", tp.__name__)
        if not module or module == "builtins":
            return qualname
        return f"{module}.{qualname}"
    try:
        return repr(tp)
    except Exception:
        return type(tp).__name__


class FrameInfoCache:
    """Thread-safe memoizing map of code objects to :class:`ResolvedMethodInfo`.

    Concurrent first lookups of the same method may both compute it; the
    first stored result wins and every caller gets that instance.  The cache
    only grows; call :meth:`clear` to reclaim memory.
    """

    def __init__(self) -> None:
        self._methods: dict[tuple[Any, ...], ResolvedMethodInfo] = {}
        self._types: dict[Any, str] = {}
        self._lock = threading.Lock()

    def get(self, frame: StackFrame) -> ResolvedMethodInfo:
        """Return the resolved method info for *frame*."""
        code = frame.code
        if code is None or not frame.module:
            return INVALID_METHOD_INFO

        # Code objects compare by content, so identical bodies in different
        # places would collide without the qualname, file and module.
        key = (code, code.co_qualname, code.co_filename, frame.module)
        info = self._methods.get(key)
        if info is None:
            info = resolve_method_info(code, frame.module, frame.namespace)
            with self._lock:
                info = self._methods.setdefault(key, info)
        return info

    def get_type_name(self, tp: Any) -> str:
        """Return the fully qualified name of *tp*, memoized."""
        if isinstance(tp, str):
            return tp
        try:
            name = self._types.get(tp)
        except TypeError:  # unhashable annotation
            return resolve_type_name(tp)
        if name is None:
            name = resolve_type_name(tp)
            with self._lock:
                name = self._types.setdefault(tp, name)
        return name

    def clear(self) -> None:
        with self._lock:
            self._methods.clear()
            self._types.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(method_entries=len(self._methods), type_entries=len(self._types))


default_cache = FrameInfoCache()
