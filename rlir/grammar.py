"""
rlir/grammar.py — PEG grammar of the textual resource IR
========================================================

An ``.rlir`` file describes one compilation unit: type facts, class
fields, method signatures and routines.  A routine is written as its
control-flow graph in three-address form, followed by the loop
descriptors and oracle facts the analysis consumes::

    program "Demo.java";

    type Socket mustcall(close);
    type SocketList collection of Socket;
    method Socket.close();

    routine Demo.leak(s: Socket owning) @3 {
        block entry {
            n1: $t0 = new Socket() @4;
            decl x : Socket = $t0;
            call Socket.close() on s @5;
            goto exit;
        }
        mustcall $t0 (close);
    }

Comments run from ``//`` to the end of the line.  The predeclared
blocks ``entry``, ``exit`` and ``exceptional`` exist in every routine.
"""

from __future__ import annotations

from parsimonious.grammar import Grammar


RLIR_GRAMMAR_SOURCE = r'''
    # ─────────────────────────────────────────────────────────────
    # Top-Level Structure
    # ─────────────────────────────────────────────────────────────

    program             = _ file_decl? top_decl*
    file_decl           = kw_program string _ ";" _
    top_decl            = type_decl / field_decl / method_decl / routine_decl

    # ─────────────────────────────────────────────────────────────
    # Types, Fields and Signatures
    # ─────────────────────────────────────────────────────────────

    type_decl           = kw_type type_name _ type_shape? mustcall_clause? ";" _
    type_shape          = shape_kind kw_of type_name _ dims?
    shape_kind          = ~r"(collection|iterator|array)\b" _
    dims                = kw_dims integer _
    mustcall_clause     = kw_mustcall method_set

    method_set          = unknown_set / name_list
    unknown_set         = "?" _
    name_list           = "(" _ names? ")" _
    names               = name _ ("," _ name _)*

    field_decl          = kw_field qualified _ ":" _ type_name _ field_modifier* line_tag? ";" _
    field_modifier      = ownership / kw_final / kw_static

    method_decl         = kw_method signature ";" _
    signature           = kw_constructor? qualified _ "(" _ params? ")" _ return_clause? sig_flag*
    params              = param ("," _ param)*
    param               = name _ ":" _ type_name _ ownership?
    return_clause       = ":" _ type_name _ ownership?
    sig_flag            = kw_returns_this / creates_clause
    creates_clause      = kw_creates "(" _ names? ")" _

    # ─────────────────────────────────────────────────────────────
    # Routines
    # ─────────────────────────────────────────────────────────────

    routine_decl        = kw_routine signature line_tag? "{" _ routine_item* "}" _
    routine_item        = suppress_decl / local_decl / block_decl / edge_decl
                        / loop_decl / fact_decl

    suppress_decl       = kw_suppress "(" _ error_id _ ("," _ error_id _)* ")" _ ";" _
    local_decl          = kw_local name _ ":" _ type_name _ ownership? line_tag? ";" _

    block_decl          = kw_block name _ block_option* "{" _ statement* "}" _
    block_option        = scope_option / kw_conditional
    scope_option        = kw_scope "(" _ names? ")" _

    edge_decl           = kw_edge name _ "->" _ name _ edge_kind? ";" _
    edge_kind           = exception_kind / plain_edge_kind
    plain_edge_kind     = ~r"(normal|then|else)\b" _
    exception_kind      = kw_exception type_name _

    loop_decl           = kw_loop loop_kind kw_over ref _ kw_as ref _
                          kw_cond name _ kw_body name _ kw_update name _
                          loop_option* ";" _
    loop_kind           = ~r"(allocating|fulfilling)\b" _
    loop_option         = site_option / methods_option / name_option
    site_option         = kw_site name _
    methods_option      = kw_methods name_list
    name_option         = kw_name string _

    fact_decl           = fact_kind ref _ fact_value point? ";" _
    fact_kind           = ~r"(mustcall_elements|mustcall|called_elements|called)\b" _
    fact_value          = method_set / kw_none
    point               = kw_at point_spec
    point_spec          = edge_point / node_point
    edge_point          = kw_edge name _ "->" _ name _
    node_point          = ~r"(after|before)\b" _ name _

    # ─────────────────────────────────────────────────────────────
    # Statements
    # ─────────────────────────────────────────────────────────────

    statement           = node_label? statement_body
    node_label          = name _ ":" _
    statement_body      = decl_stmt / return_stmt / goto_stmt / branch_stmt
                        / throws_stmt / new_stmt / call_stmt / assign_stmt

    decl_stmt           = kw_decl name _ decl_type? decl_init? line_tag? ";" _
    decl_type           = ":" _ type_name _ ownership?
    decl_init           = "=" _ ref _
    return_stmt         = kw_return return_value? line_tag? ";" _
    return_value        = ref _
    goto_stmt           = kw_goto name _ ";" _
    branch_stmt         = kw_branch name _ kw_else name _ ";" _
    throws_stmt         = kw_throws type_name _ throws_target? ";" _
    throws_target       = "->" _ name _
    new_stmt            = result_to? kw_new type_name _ "(" _ args? ")" _ line_tag? ";" _
    call_stmt           = result_to? call_kind qualified _ "(" _ args? ")" _ receiver? line_tag? ";" _
    call_kind           = ~r"(call|super)\b" _
    receiver            = kw_on ref _
    result_to           = ref _ "=" _
    assign_stmt         = ref _ "=" _ ref _ line_tag? ";" _
    args                = ref _ ("," _ ref _)*

    # ─────────────────────────────────────────────────────────────
    # Keywords
    # ─────────────────────────────────────────────────────────────

    kw_program          = ~r"program\b" _
    kw_type             = ~r"type\b" _
    kw_of               = ~r"of\b" _
    kw_dims             = ~r"dims\b" _
    kw_mustcall         = ~r"mustcall\b" _
    kw_field            = ~r"field\b" _
    kw_final            = ~r"final\b" _
    kw_static           = ~r"static\b" _
    kw_method           = ~r"method\b" _
    kw_constructor      = ~r"constructor\b" _
    kw_returns_this     = ~r"returns_this\b" _
    kw_creates          = ~r"creates\b" _
    kw_routine          = ~r"routine\b" _
    kw_suppress         = ~r"suppress\b" _
    kw_local            = ~r"local\b" _
    kw_block            = ~r"block\b" _
    kw_scope            = ~r"scope\b" _
    kw_conditional      = ~r"conditional\b" _
    kw_edge             = ~r"edge\b" _
    kw_exception        = ~r"exception\b" _
    kw_loop             = ~r"loop\b" _
    kw_over             = ~r"over\b" _
    kw_as               = ~r"as\b" _
    kw_cond             = ~r"cond\b" _
    kw_body             = ~r"body\b" _
    kw_update           = ~r"update\b" _
    kw_site             = ~r"site\b" _
    kw_methods          = ~r"methods\b" _
    kw_name             = ~r"name\b" _
    kw_none             = ~r"none\b" _
    kw_at               = ~r"at\b" _
    kw_decl             = ~r"decl\b" _
    kw_return           = ~r"return\b" _
    kw_goto             = ~r"goto\b" _
    kw_branch           = ~r"branch\b" _
    kw_else             = ~r"else\b" _
    kw_throws           = ~r"throws\b" _
    kw_new              = ~r"new\b" _
    kw_on               = ~r"on\b" _

    # ─────────────────────────────────────────────────────────────
    # Lexical Elements
    # ─────────────────────────────────────────────────────────────

    ownership           = ~r"(owningcollection|owning|notowning|collectionalias|mustcallalias)\b" _
    qualified           = ~r"[A-Za-z_$][\w$.]*(?:<[^>(;]*>)?\.(?:<init>|[A-Za-z_$][\w$]*)"
    type_name           = ~r"[A-Za-z_$][\w$.]*(?:<[^>(;]*>)?(?:\[\])*"
    ref                 = ~r"(?:-?\d+|[A-Za-z_$][\w$]*(?:\.[A-Za-z_$][\w$]*|\[[^\]\n]*\])*)"
    name                = ~r"[A-Za-z_$][\w$]*"
    error_id            = ~r"[A-Za-z_*][\w.*-]*"
    line_tag            = "@" _ integer _
    integer             = ~r"\d+"
    string              = ~r'"(?:[^"\\]|\\.)*"'
    _                   = ~r"(?:\s|//[^\n]*)*"
'''

RLIR_GRAMMAR = Grammar(RLIR_GRAMMAR_SOURCE)


__all__ = ["RLIR_GRAMMAR", "RLIR_GRAMMAR_SOURCE"]
