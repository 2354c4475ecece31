"""
mustcall_shims.genkill
======================

Transfer rules of the must-call consistency analysis.

Each rule takes the mutable set of obligations holding *before* a node and
updates it in place to the set holding *after* the node, reporting
ownership violations through the :class:`AnalysisContext` on the way.
The worklist engine replays the nodes of a block once per successor edge,
so every rule is idempotent for a repeated node.

Rules
-----
    initial_tracked_obligations   - obligations of parameters at entry
    update_for_assignment         - aliasing, owning fields, collections
    update_for_invocation         - ownership transfer, CreatesMustCallFor,
                                    tracked results, collection/iterator calls
    update_for_owning_return      - a returned value leaves the fact
    verify_return_statement       - collection-ownership of return values
    apply_loop_exits              - allocating/fulfilling loop effects
"""

from __future__ import annotations

import enum
import logging
from typing import FrozenSet, List, Optional, Set

from .consistency import AnalysisContext, ConsistencyChecker, format_missing_methods
from .declarations import MethodSig, Ownership, TypeKind
from .loops import LoopKind
from .obligations import (
    ALL_EXITS,
    NORMAL_RETURN_ONLY,
    CollectionObligation,
    IteratorElementObligation,
    IteratorObligation,
    Obligation,
    PlainObligation,
    ResourceAlias,
    obligation_for,
    obligations_for,
    remove_obligations_containing,
    replace_obligation,
)
from .oracles import Known
from .tac import (
    THIS,
    AssignmentNode,
    ConstRef,
    ElementRef,
    FieldRef,
    InvocationNode,
    LocalRef,
    Node,
    ObjectCreationNode,
    Reference,
    ReturnNode,
    ThisRef,
    parse_reference,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Method classification
# ---------------------------------------------------------------------------


class CollectionMethodKind(enum.Enum):
    """How a call on a resource collection affects its elements."""

    SAFE = "safe"
    UNSAFE = "unsafe"
    CLEAR = "clear"
    ADD_E = "add(E)"
    ADD_INT_E = "add(int, E)"
    SET = "set(int, E)"
    ITERATOR = "iterator"
    ITER_NEXT = "next"
    ITER_REMOVE = "remove"


SAFE_COLLECTION_METHODS = frozenset({
    "isEmpty", "size", "get", "contains", "containsAll", "equals",
    "hashCode", "indexOf", "lastIndexOf", "sort", "toString",
})


def collection_method_kind(sig: MethodSig) -> CollectionMethodKind:
    name, params = sig.name, sig.params
    if name == "clear" and not params:
        return CollectionMethodKind.CLEAR
    if name == "add" and len(params) == 1:
        return CollectionMethodKind.ADD_E
    if name == "add" and len(params) == 2 and params[0].type_name == "int":
        return CollectionMethodKind.ADD_INT_E
    if name == "set" and len(params) == 2:
        return CollectionMethodKind.SET
    if name == "iterator" and not params:
        return CollectionMethodKind.ITERATOR
    if name == "remove" and len(params) == 1 and params[0].type_name == "int":
        return CollectionMethodKind.SAFE
    if name in SAFE_COLLECTION_METHODS:
        return CollectionMethodKind.SAFE
    return CollectionMethodKind.UNSAFE


def iterator_method_kind(sig: MethodSig) -> CollectionMethodKind:
    if sig.name == "next" and not sig.params:
        return CollectionMethodKind.ITER_NEXT
    if sig.name == "remove" and not sig.params:
        return CollectionMethodKind.ITER_REMOVE
    if sig.name == "hasNext":
        return CollectionMethodKind.SAFE
    return CollectionMethodKind.UNSAFE


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


class GenKillRules:
    """The transfer rules, bound to one :class:`AnalysisContext`."""

    def __init__(self, ctx: AnalysisContext, checker: ConsistencyChecker) -> None:
        self.ctx = ctx
        self.checker = checker

    @property
    def routine(self):
        return self.ctx.routine

    @property
    def types(self):
        return self.ctx.types

    # ═════════════════════════════════════════════════════════════════════
    #  PART 1 — ENTRY
    # ═════════════════════════════════════════════════════════════════════

    def initial_tracked_obligations(self) -> Set[Obligation]:
        """Obligations of the parameters on entry to the routine.

        Owning parameters with must-call obligations and
        ``@MustCallAlias`` parameters are discharged by the callee on
        normal return only; on exceptional exit the caller keeps them.
        """
        result: Set[Obligation] = set()
        no_lightweight = self.ctx.config.no_lightweight_ownership
        for index, param in enumerate(self.routine.sig.params):
            ref = LocalRef(param.name)
            decl = self.types.get(param.type_name)
            if param.is_must_call_alias:
                alias = ResourceAlias(ref, param, None, derived_from_must_call_alias=True)
                result.add(PlainObligation(frozenset({alias}), NORMAL_RETURN_ONLY))
            elif param.ownership is Ownership.OWNING_COLLECTION and decl.is_collection_like:
                alias = ResourceAlias(ref, param, None)
                requirement = self.types.element_must_call(param.type_name) or frozenset()
                result.add(CollectionObligation(
                    frozenset({alias}), NORMAL_RETURN_ONLY, requirement
                ))
            elif decl.is_iterator:
                if self.types.element_must_call(param.type_name):
                    alias = ResourceAlias(ref, param, None)
                    result.add(IteratorObligation(
                        frozenset({alias}), ALL_EXITS, iterator_id=-(index + 1)
                    ))
            elif param.ownership is Ownership.OWNING and not no_lightweight:
                if self._has_must_call(param.type_name):
                    alias = ResourceAlias(ref, param, None)
                    result.add(PlainObligation(frozenset({alias}), NORMAL_RETURN_ONLY))

        class_decl = self.routine.class_decl
        if class_decl is not None:
            for index, field in enumerate(class_decl.fields.values()):
                decl = self.types.get(field.type_name)
                if decl.is_iterator and self.types.element_must_call(field.type_name):
                    alias = ResourceAlias(FieldRef(THIS, field.name), field, None)
                    result.add(IteratorObligation(
                        frozenset({alias}), ALL_EXITS, iterator_id=-(1000 + index)
                    ))
        logger.debug(
            "%s: %d initial obligation(s)", self.routine.name, len(result)
        )
        return result

    def _has_must_call(self, type_name: Optional[str]) -> bool:
        decl = self.types.get(type_name)
        if decl.is_void_or_primitive:
            return False
        methods = decl.must_call
        return methods is None or bool(methods)

    def _must_call_set(self, ref: Reference, mc_store) -> FrozenSet[str]:
        """Must-call methods of *ref*; unknown or untracked count as none."""
        fact = self.checker.must_call_of(ResourceAlias(ref), mc_store)
        if isinstance(fact, Known):
            return fact.methods
        return frozenset()

    # ═════════════════════════════════════════════════════════════════════
    #  PART 2 — ASSIGNMENTS
    # ═════════════════════════════════════════════════════════════════════

    def update_for_assignment(self, obligations: Set[Obligation], node: AssignmentNode, edge) -> None:
        lhs, rhs = node.target, node.value
        if not self.ctx.in_loop_body:
            self._update_for_collection_assignment(obligations, node)

            field = self.routine.field_for(lhs)
            if field is not None and field.is_owning:
                self._update_for_owning_field_assignment(obligations, node, field)
                return

        if isinstance(lhs, LocalRef):
            if self.ctx.in_loop_body or not self.routine.is_owning_collection(lhs):
                self._pseudo_assign(obligations, node, lhs, rhs)
            if self.ctx.in_loop_body:
                self._alias_loop_element(obligations, node, lhs, rhs)

    # ----- plain aliasing ---------------------------------------------------

    def _pseudo_assign(self, obligations: Set[Obligation], node: Node, lhs: LocalRef, rhs: Reference) -> None:
        """``lhs = rhs`` for a local *lhs*: *lhs* stops aliasing whatever it
        held and starts aliasing *rhs*'s obligation."""
        if lhs == rhs:
            return
        for ob in obligations_for(obligations, lhs):
            remaining = frozenset(a for a in ob.aliases if a.reference != lhs)
            obligations.discard(ob)
            if remaining:
                obligations.add(ob.with_new_aliases(remaining))
            elif not ob.can_be_satisfied_through(rhs):
                self.checker.check_must_call(
                    ob,
                    self.ctx.stores.called_before(node),
                    self.ctx.stores.must_call_before(node),
                    f"variable overwritten by assignment {node.text()}",
                )

        rhs_ob = obligation_for(obligations, rhs)
        if rhs_ob is None:
            return
        rhs_alias = rhs_ob.alias_for(rhs)
        site = rhs_alias.site if lhs.is_temp else node
        new_alias = ResourceAlias(
            lhs,
            self.routine.element_for(lhs),
            site,
            rhs_ob.derived_from_must_call_alias(),
        )
        aliases = set(rhs_ob.aliases)
        if rhs.is_temp:
            aliases = {a for a in aliases if a.reference != rhs}
        aliases.add(new_alias)
        replace_obligation(obligations, rhs_ob, rhs_ob.with_new_aliases(aliases))

    def _alias_loop_element(self, obligations: Set[Obligation], node: Node, lhs: LocalRef, rhs: Reference) -> None:
        """In a loop body, a local copied from the loop element becomes
        another alias of the element."""
        if obligation_for(obligations, lhs) is not None:
            return
        descriptor = self.ctx.loop_body
        for ob in list(obligations):
            for alias in ob.aliases:
                if alias.reference.text == rhs.text and alias.site is descriptor.element_site:
                    new_alias = ResourceAlias(
                        lhs, self.routine.element_for(lhs), node,
                        alias.derived_from_must_call_alias,
                    )
                    replace_obligation(
                        obligations, ob, ob.with_new_aliases(ob.aliases | {new_alias})
                    )
                    return

    # ----- owning fields ----------------------------------------------------

    def _update_for_owning_field_assignment(self, obligations, node: AssignmentNode, field) -> None:
        lhs, rhs = node.target, node.value
        if not field.final:
            self.check_reassignment_to_field(obligations, node)
        if not isinstance(rhs, LocalRef):
            return

        if self.routine.is_constructor and isinstance(lhs, FieldRef) and lhs.on_this:
            to_clear = NORMAL_RETURN_ONLY
        else:
            to_clear = ALL_EXITS
        class_decl = self.routine.class_decl
        retain_mca = class_decl is not None and len(class_decl.owning_fields()) > 1

        for ob in obligations_for(obligations, rhs):
            if retain_mca and ob.derived_from_must_call_alias():
                continue
            remaining = ob.when_to_enforce - to_clear
            if not remaining:
                obligations.discard(ob)
                continue
            aliases = set(ob.aliases)
            if field.final:
                aliases.add(ResourceAlias(lhs, field, node))
            replace_obligation(obligations, ob, ob.with_new_aliases(aliases, remaining))

    def check_reassignment_to_field(self, obligations: Set[Obligation], node: AssignmentNode) -> None:
        """A non-final owning field may only be overwritten once its old
        value has been discharged, and only in a routine that declares it
        creates new obligations for the field's owner."""
        ctx = self.ctx
        lhs, rhs = node.target, node.value
        field = self.routine.field_for(lhs)
        if field is None or not isinstance(lhs, FieldRef):
            return
        if field.static and ctx.config.permit_static_owning:
            return

        receiver = lhs.receiver
        in_constructor_init = self.routine.is_constructor and lhs.on_this
        if not in_constructor_init:
            tracked_receiver = (
                isinstance(receiver, LocalRef)
                and obligation_for(obligations, receiver) is not None
            )
            if not tracked_receiver:
                self._check_enclosing_creates_must_call_for(node, receiver)

        origin = self.routine.temp_origin(rhs)
        if isinstance(origin, InvocationNode):
            for param, arg in zip(origin.method.params, origin.args):
                if param.ownership is Ownership.OWNING and arg == lhs:
                    return

        if in_constructor_init:
            if ctx.config.permit_initialization_leak:
                return
            if self._is_first_assignment_to_field(node, lhs):
                return

        mc_store = ctx.stores.must_call_before(node)
        fact = self.checker.must_call_of(ResourceAlias(lhs, field, node), mc_store)
        if not isinstance(fact, Known) or not fact.methods:
            return
        called = ctx.stores.called_before(node).called_methods(lhs)
        if fact.methods <= called:
            return
        ctx.report(
            "required.method.not.called", node,
            format_missing_methods(fact.methods), lhs.text, field.type_name,
            "Non-final owning field might be overwritten",
        )

    def _is_first_assignment_to_field(self, node: AssignmentNode, lhs: FieldRef) -> bool:
        for other in self.routine.cfg.nodes():
            if isinstance(other, AssignmentNode) and other.target == lhs:
                return other is node
        return True

    def _check_enclosing_creates_must_call_for(self, node: Node, receiver: Reference) -> None:
        routine = self.routine
        if isinstance(receiver, ThisRef) and routine.is_constructor:
            return
        target = receiver.text
        declared = routine.sig.creates_must_call_for
        if not declared:
            self.ctx.report("missing.creates.mustcall.for", node, routine.name, target)
        elif target not in declared:
            self.ctx.report(
                "incompatible.creates.mustcall.for", node,
                routine.name, target, ", ".join(declared),
            )

    # ----- owning collections -----------------------------------------------

    def _update_for_collection_assignment(self, obligations: Set[Obligation], node: AssignmentNode) -> None:
        ctx, routine = self.ctx, self.routine
        lhs, rhs = node.target, node.value

        rhs_field = routine.field_for(rhs)
        if (
            routine.is_owning_collection(lhs)
            and rhs_field is not None
            and rhs_field.is_owning_collection
        ):
            ctx.report("illegal.ownership.transfer", node, rhs.text)
            return

        element_write = isinstance(lhs, ElementRef)
        target = lhs.collection if element_write else lhs
        field = routine.field_for(target)

        if field is not None and field.is_owning_collection:
            self._update_for_collection_field_assignment(obligations, node, field, element_write)
            return

        if element_write:
            self._update_for_element_write(obligations, node, target)
            return

        if isinstance(lhs, LocalRef) and routine.is_owning_collection(lhs):
            if not node.is_declaration:
                old = obligation_for(obligations, lhs)
                if isinstance(old, CollectionObligation):
                    obligations.discard(old)
                    self.checker.check_must_call_on_elements(
                        old,
                        ctx.stores.called_before(node),
                        ctx.stores.must_call_before(node),
                        is_exit=True,
                        reason=f"owning collection reassigned at {node.text()}",
                    )
                elif old is not None:
                    obligations.discard(old)
            removed = remove_obligations_containing(obligations, rhs) if isinstance(rhs, LocalRef) else []
            requirement: Set[str] = set()
            for ob in removed:
                if isinstance(ob, CollectionObligation):
                    requirement |= ob.requirement
            on_elements = ctx.stores.must_call_after(node).required_methods_on_elements(lhs)
            if on_elements:
                requirement |= on_elements
            alias = ResourceAlias(lhs, routine.element_for(lhs), node)
            obligations.add(CollectionObligation(frozenset({alias}), ALL_EXITS, frozenset(requirement)))

    def _update_for_collection_field_assignment(self, obligations, node: AssignmentNode, field, element_write: bool) -> None:
        ctx, routine = self.ctx, self.routine
        rhs = node.value
        if not routine.is_constructor:
            if element_write:
                self._check_collection_write(
                    node, node.target.collection,
                    self._must_call_set(rhs, ctx.stores.must_call_before(node)),
                )
                self._drop_local(obligations, rhs)
            else:
                ctx.report("owningcollection.field.assigned.outside.constructor", node, field.name)
            return

        if element_write:
            loop = ctx.loops.allocating_loop_for(node)
            if loop is None:
                ctx.report("illegal.owningcollection.field.elements.assignment", node, field.name)
                return
            self._drop_local(obligations, rhs)
            first = ctx.already_allocated.setdefault(field.name, node.id)
            if first != node.id:
                ctx.report(
                    "owningcollection.field.elements.assigned.multiple.times",
                    node, field.name,
                )
            return

        if isinstance(rhs, ConstRef):
            return
        if not routine.is_owning_collection(rhs):
            ctx.report("illegal.owningcollection.field.assignment", node, field.name, rhs.text)
            return
        self._drop_local(obligations, rhs)

    def _update_for_element_write(self, obligations, node: AssignmentNode, collection: Reference) -> None:
        ctx, routine = self.ctx, self.routine
        rhs = node.value
        if not routine.is_owning_collection(collection):
            if routine.is_read_only_view(collection):
                ctx.report("modification.without.ownership", node, collection.text)
            return

        mc_before = ctx.stores.must_call_before(node)
        if mc_before.required_methods_on_elements(collection) is None:
            ctx.report("modification.without.ownership", node, collection.text)
            return
        element_methods = self._must_call_set(rhs, mc_before)
        self._drop_local(obligations, rhs)
        if ctx.loops.allocating_loop_for(node) is not None:
            return
        coll_ob = obligation_for(obligations, collection)
        if isinstance(coll_ob, CollectionObligation):
            self.checker.check_must_call_on_elements(
                coll_ob, ctx.stores.called_before(node), mc_before,
                is_exit=False, occurrence=node,
            )
            replace_obligation(
                obligations, coll_ob,
                coll_ob.with_requirement(coll_ob.requirement | element_methods),
            )

    def _drop_local(self, obligations: Set[Obligation], ref: Reference) -> List[Obligation]:
        if isinstance(ref, LocalRef):
            return remove_obligations_containing(obligations, ref)
        return []

    def _check_collection_write(self, node: Node, collection: Reference, element_methods: FrozenSet[str]) -> bool:
        """May *node* store an element requiring *element_methods* into
        *collection*?  Reports and returns ``False`` when it may not."""
        ctx, routine = self.ctx, self.routine
        if routine.is_read_only_view(collection):
            ctx.report("modification.without.ownership", node, collection.text)
            return False
        on_elements = ctx.stores.must_call_before(node).required_methods_on_elements(collection)
        field = routine.field_for(collection)
        if field is not None and field.is_owning_collection:
            if on_elements is None:
                ctx.report("modification.without.ownership", node, collection.text)
                return False
            missing = element_methods - on_elements
            if missing and not routine.creates_must_call_for("this"):
                ctx.report(
                    "unsafe.owningcollection.field.modification", node,
                    collection.text, format_missing_methods(missing),
                )
                return False
            return True
        if on_elements is None and routine.is_owning_collection(collection):
            ctx.report("modification.without.ownership", node, collection.text)
            return False
        return True

    # ═════════════════════════════════════════════════════════════════════
    #  PART 3 — INVOCATIONS
    # ═════════════════════════════════════════════════════════════════════

    def update_for_invocation(self, obligations: Set[Obligation], node: Node, edge) -> None:
        """Calls and object creations.

        Ownership passes to ``@Owning``/``@OwningCollection`` parameters
        only if the call returns normally.
        """
        exceptional = edge is not None and edge.is_exceptional
        self._check_argument_ownership(node)
        self._check_creates_must_call_for(obligations, node)
        if not exceptional and not self.ctx.config.no_lightweight_ownership:
            self._transfer_ownership_to_parameters(obligations, node)
        if self._should_track_invocation_result(obligations, node):
            self._track_invocation_result(obligations, node)
        self._update_for_collection_call(obligations, node, exceptional)

    # ----- parameters -------------------------------------------------------

    def _transfer_ownership_to_parameters(self, obligations: Set[Obligation], node: Node) -> None:
        params = node.method.params
        if len(params) != len(node.args):
            return
        for param, arg in zip(params, node.args):
            if not isinstance(arg, LocalRef):
                continue
            if param.ownership is Ownership.OWNING:
                for ob in obligations_for(obligations, arg):
                    if not ob.derived_from_must_call_alias():
                        obligations.discard(ob)
            elif param.ownership is Ownership.OWNING_COLLECTION:
                remove_obligations_containing(obligations, arg)

    def _check_argument_ownership(self, node: Node) -> None:
        ctx, routine = self.ctx, self.routine
        sig = node.method
        for param, arg in zip(sig.params, node.args):
            if isinstance(arg, ConstRef):
                continue
            if param.ownership is Ownership.OWNING_COLLECTION:
                field = routine.field_for(arg)
                if field is not None and field.is_owning_collection:
                    ctx.report("illegal.ownership.transfer", node, arg.text)
                elif not self._owns_elements(arg):
                    ctx.report(
                        "missing.argument.ownership", node,
                        arg.text, param.name, sig.qualified_name,
                    )
            elif param.ownership is Ownership.COLLECTION_ALIAS:
                if routine.type_of(arg).is_collection_like and not routine.is_resource_collection(arg):
                    ctx.report(
                        "unnecessary.collectionalias.annotation", node,
                        param.name, sig.qualified_name, arg.text,
                    )
            elif param.ownership is Ownership.NONE and routine.is_resource_collection(arg):
                ctx.report(
                    "missing.collection.ownership.annotation", node,
                    arg.text, param.name, sig.qualified_name,
                )

    def _owns_elements(self, ref: Reference) -> bool:
        if self.routine.is_owning_collection(ref):
            return True
        origin = self.routine.temp_origin(ref)
        return isinstance(origin, ObjectCreationNode) and self.types.get(origin.type_name).is_collection_like

    # ----- CreatesMustCallFor -----------------------------------------------

    def _check_creates_must_call_for(self, obligations: Set[Obligation], node: Node) -> None:
        """A call to a ``@CreatesMustCallFor`` method resets the obligation
        of each target: a tracked or owning local gets a fresh obligation,
        anything else must be owned by the enclosing routine."""
        ctx, routine = self.ctx, self.routine
        sig = node.method
        for target_text in sig.creates_must_call_for:
            target = self._resolve_creates_target(node, target_text)
            if target is None:
                continue
            if isinstance(target, LocalRef):
                element = routine.element_for(target)
                owned = getattr(element, "ownership", None) is Ownership.OWNING
                existing = obligations_for(obligations, target)
                if existing or owned or target.is_temp:
                    for ob in existing:
                        obligations.discard(ob)
                    alias = ResourceAlias(target, element, node)
                    obligations.add(PlainObligation(frozenset({alias}), ALL_EXITS))
                    continue
            field = routine.field_for(target)
            if field is not None and field.is_owning:
                continue
            if routine.creates_must_call_for(target.text):
                continue
            if isinstance(target, ThisRef) and routine.is_constructor:
                continue
            ctx.report("reset.not.owning", node, target.text, sig.qualified_name)

    def _resolve_creates_target(self, node: Node, target_text: str) -> Optional[Reference]:
        if target_text == "this":
            if isinstance(node, ObjectCreationNode):
                return None
            return node.receiver if node.receiver is not None else THIS
        for param, arg in zip(node.method.params, node.args):
            if param.name == target_text:
                return arg
        return parse_reference(target_text)

    # ----- results ----------------------------------------------------------

    def _must_call_alias_arguments(self, node: Node) -> List[Reference]:
        sig = node.method
        refs: List[Reference] = []
        if sig.returns_must_call_alias:
            refs.extend(
                arg for param, arg in zip(sig.params, node.args)
                if param.is_must_call_alias
            )
        if sig.returns_this and node.receiver is not None:
            refs.append(node.receiver)
        return refs

    def _should_track_invocation_result(self, obligations: Set[Obligation], node: Node) -> bool:
        if node.result is None:
            return False
        if isinstance(node, ObjectCreationNode):
            return self._has_must_call(node.type_name)
        if node.is_constructor_call:
            # super(...)/this(...) hands @MustCallAlias arguments to the object
            for param, arg in zip(node.method.params, node.args):
                if param.is_must_call_alias and isinstance(arg, LocalRef):
                    remove_obligations_containing(obligations, arg)
            return False
        if (
            node.receiver is not None
            and iterator_method_kind(node.method) is CollectionMethodKind.ITER_NEXT
            and isinstance(obligation_for(obligations, node.receiver), IteratorObligation)
        ):
            # the element obligation is created by the iterator rules
            return False
        mca_args = self._must_call_alias_arguments(node)
        if mca_args and all(isinstance(a, (FieldRef, ThisRef)) for a in mca_args):
            return False
        return self._should_track_return_type(node.method)

    def _should_track_return_type(self, sig: MethodSig) -> bool:
        if sig.returns_must_call_alias or sig.returns_this:
            return True
        decl = self.types.get(sig.return_type)
        if decl.is_void_or_primitive:
            return False
        if sig.return_ownership is Ownership.OWNING_COLLECTION:
            return decl.is_collection_like
        if not self._has_must_call(sig.return_type):
            return False
        if self.ctx.config.no_lightweight_ownership:
            return True
        return sig.return_ownership is not Ownership.NOT_OWNING

    def _track_invocation_result(self, obligations: Set[Obligation], node: Node) -> None:
        ctx = self.ctx
        tmp = node.result
        mca_args = self._must_call_alias_arguments(node)
        if not mca_args:
            alias = ResourceAlias(tmp, None, node)
            sig = node.method
            if (
                isinstance(node, InvocationNode)
                and sig.return_ownership is Ownership.OWNING_COLLECTION
            ):
                requirement = self.types.element_must_call(sig.return_type) or frozenset()
                obligations.add(CollectionObligation(frozenset({alias}), ALL_EXITS, requirement))
            else:
                obligations.add(PlainObligation(frozenset({alias}), ALL_EXITS))
                type_name = self.routine.type_name_of(tmp) or ""
                if ctx.config.count_must_call and type_name.startswith("java"):
                    ctx.must_call_count += 1
            return

        for arg in mca_args:
            if not isinstance(arg, LocalRef):
                continue
            ob = obligation_for(obligations, arg)
            if ob is None:
                continue
            alias = ResourceAlias(tmp, None, node, ob.derived_from_must_call_alias())
            replace_obligation(obligations, ob, ob.with_new_aliases(ob.aliases | {alias}))

    # ----- collections and iterators ----------------------------------------

    def _update_for_collection_call(self, obligations: Set[Obligation], node: Node, exceptional: bool) -> None:
        receiver = node.receiver
        if receiver is not None and not isinstance(node, ObjectCreationNode):
            iterator_ob = obligation_for(obligations, receiver)
            if isinstance(iterator_ob, IteratorObligation):
                self._update_for_iterator_call(obligations, node, iterator_ob)
                return
            decl = self.routine.type_of(receiver)
            if decl.kind is TypeKind.COLLECTION and self.routine.is_resource_collection(receiver):
                self._update_for_collection_method(obligations, node, receiver, exceptional)
                return
        self._track_returned_iterator(obligations, node)

    def _update_for_collection_method(self, obligations, node: InvocationNode, receiver: Reference, exceptional: bool) -> None:
        ctx = self.ctx
        sig = node.method
        kind = collection_method_kind(sig)
        if kind is CollectionMethodKind.SAFE or kind is CollectionMethodKind.CLEAR:
            # TODO: clear() discards the elements without discharging them;
            # report it once called-methods-on-elements is tracked across it.
            return
        if kind is CollectionMethodKind.UNSAFE:
            ctx.report("unsafe.method", node, sig.name, receiver.text)
            return
        if kind is CollectionMethodKind.ITERATOR:
            self._create_iterator(obligations, node, receiver)
            return

        element = node.args[-1] if node.args else None
        if element is None:
            return
        mc_before = ctx.stores.must_call_before(node)
        element_methods = self._must_call_set(element, mc_before)
        coll_ob = obligation_for(obligations, receiver)

        if kind is CollectionMethodKind.SET and isinstance(coll_ob, CollectionObligation):
            self.checker.check_must_call_on_elements(
                coll_ob, ctx.stores.called_before(node), mc_before,
                is_exit=False, occurrence=node,
            )
        if not self._check_collection_write(node, receiver, element_methods):
            return
        if exceptional:
            return
        self._drop_local(obligations, element)
        coll_ob = obligation_for(obligations, receiver)
        if isinstance(coll_ob, CollectionObligation):
            replace_obligation(
                obligations, coll_ob,
                coll_ob.with_requirement(coll_ob.requirement | element_methods),
            )

    def _create_iterator(self, obligations, node: InvocationNode, receiver: Reference) -> None:
        ctx = self.ctx
        if node.result is None:
            return
        read_only = self.routine.is_read_only_view(receiver)
        open_requirement: Set[str] = set()
        coll_ob = obligation_for(obligations, receiver)
        if isinstance(coll_ob, CollectionObligation):
            open_requirement |= coll_ob.requirement
        on_elements = ctx.stores.must_call_after(node).required_methods_on_elements(receiver)
        if on_elements:
            open_requirement |= on_elements
        if not read_only and not open_requirement:
            return
        ctx.arena.state(node.id)
        alias = ResourceAlias(node.result, None, node)
        obligations.add(IteratorObligation(
            frozenset({alias}), ALL_EXITS,
            iterator_id=node.id, read_only_source=read_only,
        ))

    def _track_returned_iterator(self, obligations, node: Node) -> None:
        if node.result is None or isinstance(node, ObjectCreationNode):
            return
        return_type = node.method.return_type
        if not self.types.get(return_type).is_iterator:
            return
        if not self.types.element_must_call(return_type):
            return
        if obligation_for(obligations, node.result) is not None:
            return
        self.ctx.arena.state(node.id)
        alias = ResourceAlias(node.result, None, node)
        obligations.add(IteratorObligation(frozenset({alias}), ALL_EXITS, iterator_id=node.id))

    def _update_for_iterator_call(self, obligations, node: InvocationNode, iterator_ob: IteratorObligation) -> None:
        ctx = self.ctx
        sig = node.method
        receiver = node.receiver
        kind = iterator_method_kind(sig)
        state = ctx.arena.state(iterator_ob.iterator_id)

        if kind is CollectionMethodKind.SAFE:
            return
        if kind is CollectionMethodKind.UNSAFE:
            ctx.report("unsafe.method", node, sig.name, receiver.text)
            return
        if kind is CollectionMethodKind.ITER_NEXT:
            if node.result is None:
                return
            state.next_element(node.id)
            replace_obligation(obligations, iterator_ob, iterator_ob.with_current(node.id))
            alias = ResourceAlias(node.result, None, node)
            obligations.add(IteratorElementObligation(
                frozenset({alias}), NORMAL_RETURN_ONLY,
                iterator_id=iterator_ob.iterator_id, element_id=node.id,
            ))
            return

        # remove()
        if iterator_ob.current is None:
            ctx.report("unsafe.iterator.remove", node, receiver.text)
            return
        if iterator_ob.read_only_source:
            ctx.report("modification.without.ownership", node, receiver.text)
        replace_obligation(obligations, iterator_ob, iterator_ob.with_current(None))
        cached = state.remove_element(iterator_ob.current)
        if cached is not None:
            element_ob, cm_store, mc_store = cached
            self.checker.check_must_call(
                element_ob, cm_store, mc_store,
                "removed from collection by iterator remove",
            )

    # ═════════════════════════════════════════════════════════════════════
    #  PART 4 — RETURNS
    # ═════════════════════════════════════════════════════════════════════

    def update_for_owning_return(self, obligations: Set[Obligation], node: ReturnNode, edge) -> None:
        """Returning a local hands its obligations to the caller unless the
        return type is ``@NotOwning``."""
        value = node.value
        if not isinstance(value, LocalRef):
            return
        if (
            self.ctx.config.no_lightweight_ownership
            or self.routine.sig.return_ownership is not Ownership.NOT_OWNING
        ):
            remove_obligations_containing(obligations, value)

    def verify_return_statement(self, node: ReturnNode) -> None:
        ctx, routine = self.ctx, self.routine
        value = node.value
        if value is None or isinstance(value, ConstRef):
            return
        ownership = routine.sig.return_ownership
        field = routine.field_for(value)
        field_collection = field is not None and field.is_owning_collection

        if ownership is Ownership.OWNING_COLLECTION:
            if field_collection:
                ctx.report("owningcollection.field.returned", node, value.text)
            elif routine.is_read_only_view(value):
                ctx.report("return.without.ownership", node, value.text)
            elif not self._owns_elements(value) and routine.type_of(value).is_collection_like:
                ctx.report("non.owningcollection.return.value", node, value.text)
        elif ownership is Ownership.COLLECTION_ALIAS:
            if routine.is_owning_collection(value) and not field_collection:
                ctx.report("illegal.ownership.transfer", node, value.text)
            elif not routine.is_resource_collection(value):
                ctx.report("unnecessary.collectionalias.return.type", node, routine.name)
        elif routine.is_read_only_view(value):
            ctx.report("returning.unannotated.owningcollection.alias", node, value.text)
        elif routine.is_owning_collection(value):
            ctx.report("owningcollection.return.value", node, value.text)

    # ═════════════════════════════════════════════════════════════════════
    #  PART 5 — LOOPS
    # ═════════════════════════════════════════════════════════════════════

    def apply_loop_exits(self, obligations: Set[Obligation], edge) -> None:
        """Leaving an allocating loop adds its methods to the collection's
        requirement; leaving a summarized fulfilling loop removes them."""
        for loop in self.ctx.loops.loops_exiting(edge):
            ob = obligation_for(obligations, loop.collection)
            if not isinstance(ob, CollectionObligation):
                continue
            if loop.kind is LoopKind.ALLOCATING:
                requirement = ob.requirement | loop.methods
            else:
                requirement = ob.requirement - loop.methods
            logger.debug(
                "%s: loop exit %s -> %s, requirement %s",
                self.routine.name, edge.src.label, edge.dst.label, sorted(requirement),
            )
            replace_obligation(obligations, ob, ob.with_requirement(requirement))


__all__ = [
    "CollectionMethodKind",
    "SAFE_COLLECTION_METHODS",
    "collection_method_kind",
    "iterator_method_kind",
    "GenKillRules",
]
