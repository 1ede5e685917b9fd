"""Call-stack enricher configuration.

:class:`CallStackConfig` is an immutable value object.  The fluent builder
methods return a *new* configuration, mirroring ``Logger.bind``::

    config = (
        CallStackConfig()
        .with_call_stack_format(use_chained=True, max_frames=5)
        .skip_namespace("myapp.db.")
        .with_method_parameters()
    )
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, fields, replace
from typing import Any

ExceptionCallback = Callable[[Exception], object]

_PROPERTY_NAME_FIELDS: tuple[str, ...] = (
    "method_name_property_name",
    "type_name_property_name",
    "file_name_property_name",
    "line_number_property_name",
    "column_number_property_name",
    "assembly_name_property_name",
    "call_stack_property_name",
)


def _as_name_set(values: Iterable[str], label: str) -> frozenset[str]:
    if isinstance(values, str):
        msg = f"{label} must be a collection of strings, got a single string {values!r}"
        raise TypeError(msg)
    names = frozenset(values)
    for name in names:
        if not isinstance(name, str):
            msg = f"{label} entries must be strings, got {type(name)!r}"
            raise TypeError(msg)
    return names


@dataclass(frozen=True)
class CallStackConfig:
    """Which call-stack fields to attach to log events, and how.

    Parameters
    ----------
    include_method_name, include_type_name, include_file_name,
    include_line_number, include_column_number, include_assembly_name:
        Field toggles for the discrete-property (legacy) output.
    include_method_parameters:
        Append a ``(Type, Type)`` parameter list to method names.
    use_full_parameter_types, use_full_type_name, use_full_file_name:
        Render module-qualified names / full paths instead of short ones.
    use_chained_format:
        ``True`` renders one ``Type.method:line --> ...`` string under
        *call_stack_property_name*; ``False`` renders discrete properties
        for a single frame.
    max_frames:
        Maximum number of frames in the chained output; ``<= 0`` means
        unlimited.
    frame_offset:
        Index into the relevant frames selecting the starting frame.
    filter_async_noise:
        Drop compiler-generated frames that are not asynchronous from the
        chained output.
    suppress_exceptions:
        Swallow failures raised while enriching (after notifying
        *on_exception*).  ``False`` lets them propagate to the caller.
    skip_namespaces:
        Module/type name prefixes whose frames are never selected.
    skip_types:
        Fully qualified type names whose frames are never selected.
    """

    include_method_name: bool = True
    include_method_parameters: bool = False
    use_full_parameter_types: bool = False
    include_type_name: bool = True
    use_full_type_name: bool = False
    include_file_name: bool = True
    use_full_file_name: bool = False
    include_line_number: bool = True
    include_column_number: bool = False
    include_assembly_name: bool = False

    method_name_property_name: str = "MethodName"
    type_name_property_name: str = "TypeName"
    file_name_property_name: str = "FileName"
    line_number_property_name: str = "LineNumber"
    column_number_property_name: str = "ColumnNumber"
    assembly_name_property_name: str = "AssemblyName"
    call_stack_property_name: str = "CallStack"

    use_chained_format: bool = True
    max_frames: int = 10
    frame_offset: int = 0
    filter_async_noise: bool = True

    suppress_exceptions: bool = True
    on_exception: ExceptionCallback | None = field(default=None, compare=False)

    skip_namespaces: frozenset[str] = frozenset()
    skip_types: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "skip_namespaces", _as_name_set(self.skip_namespaces, "skip_namespaces")
        )
        object.__setattr__(self, "skip_types", _as_name_set(self.skip_types, "skip_types"))

        if self.frame_offset < 0:
            msg = f"frame_offset must be >= 0, got {self.frame_offset}"
            raise ValueError(msg)
        if self.on_exception is not None and not callable(self.on_exception):
            msg = f"on_exception must be callable, got {type(self.on_exception)!r}"
            raise TypeError(msg)
        for name in _PROPERTY_NAME_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                msg = f"{name} must be a non-empty string, got {value!r}"
                raise ValueError(msg)

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> CallStackConfig:
        """Build a configuration from a mapping of recognised option names."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            msg = f"Unknown call-stack option(s): {', '.join(unknown)}"
            raise ValueError(msg)
        return cls(**options)

    # -- builders -----------------------------------------------------------

    def skip_namespace(self, namespace: str) -> CallStackConfig:
        """Never select frames whose type name starts with *namespace*."""
        if not isinstance(namespace, str):
            msg = f"namespace must be a string, got {type(namespace)!r}"
            raise TypeError(msg)
        return replace(self, skip_namespaces=self.skip_namespaces | {namespace})

    def skip_type(self, type_name: str) -> CallStackConfig:
        """Never select frames whose fully qualified type name is *type_name*."""
        if not isinstance(type_name, str):
            msg = f"type_name must be a string, got {type(type_name)!r}"
            raise TypeError(msg)
        return replace(self, skip_types=self.skip_types | {type_name})

    def with_frame_offset(self, offset: int) -> CallStackConfig:
        return replace(self, frame_offset=max(0, offset))

    def with_exception_handling(
        self,
        suppress: bool,
        on_exception: ExceptionCallback | None = None,
    ) -> CallStackConfig:
        return replace(self, suppress_exceptions=suppress, on_exception=on_exception)

    def with_includes(
        self,
        *,
        method_name: bool = True,
        type_name: bool = True,
        file_name: bool = True,
        line_number: bool = True,
        column_number: bool = False,
        assembly_name: bool = False,
    ) -> CallStackConfig:
        return replace(
            self,
            include_method_name=method_name,
            include_type_name=type_name,
            include_file_name=file_name,
            include_line_number=line_number,
            include_column_number=column_number,
            include_assembly_name=assembly_name,
        )

    def with_property_names(
        self,
        *,
        method_name: str | None = None,
        type_name: str | None = None,
        file_name: str | None = None,
        line_number: str | None = None,
        column_number: str | None = None,
        assembly_name: str | None = None,
    ) -> CallStackConfig:
        """Rename output properties; ``None`` or empty names are left unchanged."""
        renames = {
            "method_name_property_name": method_name,
            "type_name_property_name": type_name,
            "file_name_property_name": file_name,
            "line_number_property_name": line_number,
            "column_number_property_name": column_number,
            "assembly_name_property_name": assembly_name,
        }
        return replace(self, **{k: v for k, v in renames.items() if v})

    def with_full_names(
        self,
        *,
        type_name: bool = False,
        file_name: bool = False,
        parameter_types: bool = False,
    ) -> CallStackConfig:
        return replace(
            self,
            use_full_type_name=type_name,
            use_full_file_name=file_name,
            use_full_parameter_types=parameter_types,
        )

    def with_method_parameters(
        self,
        include: bool = True,
        *,
        use_full_types: bool = False,
    ) -> CallStackConfig:
        return replace(
            self,
            include_method_parameters=include,
            use_full_parameter_types=use_full_types,
        )

    def with_call_stack_format(
        self,
        use_chained: bool = True,
        *,
        max_frames: int | None = None,
        property_name: str | None = None,
    ) -> CallStackConfig:
        """Switch between the chained string and discrete-property output."""
        changes: dict[str, Any] = {"use_chained_format": use_chained}
        if max_frames is not None:
            changes["max_frames"] = max_frames
        if property_name:
            changes["call_stack_property_name"] = property_name
        return replace(self, **changes)
