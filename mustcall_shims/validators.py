"""
mustcall_shims.validators
=========================

Declaration-level checks of the collection-ownership annotations.

These do not depend on the dataflow: an ``@OwningCollection`` field must
be final, non-static and of a collection or one-dimensional array type,
and plain ``@Owning`` is not allowed on collections.  Local variables and
parameters are held to the same type constraints.
"""

from __future__ import annotations

import logging
from typing import Optional

from .declarations import ClassDecl, Ownership, Program, TypeTable
from .diagnostics import DiagnosticSink, SourceLocation
from .tac import VarDeclNode

logger = logging.getLogger(__name__)


def _collection_type_ok(types: TypeTable, type_name: str) -> bool:
    decl = types.get(type_name)
    return decl.is_collection_like and decl.dimensions == 1


def check_class_fields(
    class_decl: ClassDecl,
    types: TypeTable,
    sink: DiagnosticSink,
    file: str = "",
) -> None:
    for field in class_decl.fields.values():
        location = SourceLocation(class_decl.file or file, field.line)
        if field.is_owning_collection:
            if not field.final:
                sink.report("owningcollection.field.not.final", location, field.name)
            if field.static:
                sink.report("owningcollection.field.static", location, field.name)
            if not _collection_type_ok(types, field.type_name):
                sink.report(
                    "owningcollection.noncollection", location,
                    field.name, field.type_name,
                )
        elif field.is_owning and types.get(field.type_name).is_collection_like:
            sink.report("owning.collection", location, field.name)


def check_parameters(routine, sink: DiagnosticSink) -> None:
    types = routine.types
    location = SourceLocation(routine.file, routine.line)
    for param in routine.sig.params:
        if param.ownership is Ownership.OWNING_COLLECTION:
            if not _collection_type_ok(types, param.type_name):
                sink.report(
                    "owningcollection.noncollection", location,
                    param.name, param.type_name, routine=routine.name,
                )
        elif param.ownership is Ownership.OWNING and types.get(param.type_name).is_collection_like:
            sink.report("owning.collection", location, param.name, routine=routine.name)


def check_local_declaration(ctx, node: VarDeclNode) -> None:
    """Type constraints of the annotations on a local declaration."""
    decl = ctx.routine.locals.get(node.name)
    if decl is None:
        return
    types = ctx.types
    if decl.ownership is Ownership.OWNING_COLLECTION:
        if not _collection_type_ok(types, decl.type_name):
            ctx.report("owningcollection.noncollection", node, decl.name, decl.type_name)
    elif decl.ownership is Ownership.OWNING and types.get(decl.type_name).is_collection_like:
        ctx.report("owning.collection", node, decl.name)


def validate_program(program: Program, sink: Optional[DiagnosticSink] = None) -> DiagnosticSink:
    """Check every class and routine signature of *program*."""
    sink = sink if sink is not None else DiagnosticSink("declarations")
    for class_decl in program.classes.values():
        check_class_fields(class_decl, program.types, sink, program.file)
    for routine in program.routines:
        check_parameters(routine, sink)
    logger.debug("%s: %d declaration finding(s)", program.file or "<program>", len(sink))
    return sink


__all__ = [
    "check_class_fields",
    "check_parameters",
    "check_local_declaration",
    "validate_program",
]
