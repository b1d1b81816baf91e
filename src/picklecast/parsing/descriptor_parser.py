"""Parser for the destination descriptor DSL.

Example::

    define Score as int32
    Point { x: float64, y: float64 }
    Shape {
        name: string,
        points: Point[],
        corners: Point[4],
        tags: {string: any},
        parent: Shape?,
    }
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import ply.yacc as yacc

from picklecast.descriptors import (
    AliasDescriptor,
    Descriptor,
    DescriptorRegistry,
    FieldDescriptor,
)
from picklecast.parsing.descriptor_lexer import DescriptorLexer


@dataclass
class NamedRef:
    """Reference to a descriptor by name."""

    name: str


@dataclass
class SequenceRef:
    element: Any
    length: int | None = None


@dataclass
class MapRef:
    key: Any
    value: Any


@dataclass
class OptionalRef:
    inner: Any


@dataclass
class FieldSpec:
    """A parsed field before resolution."""

    name: str
    type_ref: Any


@dataclass
class StructSpec:
    """A parsed struct before resolution."""

    name: str
    fields: list[FieldSpec]


@dataclass
class AliasSpec:
    """A parsed alias before resolution."""

    name: str
    base_ref: Any


class DescriptorParser:
    """Parser for the descriptor DSL."""

    tokens = DescriptorLexer.tokens

    def __init__(self) -> None:
        self.lexer = DescriptorLexer()
        self.lexer.build()
        self.parser: yacc.LRParser = None  # type: ignore
        self.registry: DescriptorRegistry = DescriptorRegistry()
        self._specs: list[AliasSpec | StructSpec] = []

    def p_schema(self, p: yacc.YaccProduction) -> None:
        """schema : statement_list"""
        p[0] = p[1]

    def p_schema_empty(self, p: yacc.YaccProduction) -> None:
        """schema : empty"""
        p[0] = []

    def p_empty(self, p: yacc.YaccProduction) -> None:
        """empty :"""
        pass

    def p_statement_list_single(self, p: yacc.YaccProduction) -> None:
        """statement_list : statement"""
        p[0] = [p[1]]

    def p_statement_list_multiple(self, p: yacc.YaccProduction) -> None:
        """statement_list : statement_list statement"""
        p[0] = p[1]
        p[0].append(p[2])

    def p_statement(self, p: yacc.YaccProduction) -> None:
        """statement : alias_def
                     | struct_def"""
        p[0] = p[1]

    def p_alias_def(self, p: yacc.YaccProduction) -> None:
        """alias_def : DEFINE IDENTIFIER AS type_ref"""
        p[0] = AliasSpec(name=p[2], base_ref=p[4])

    def p_struct_def(self, p: yacc.YaccProduction) -> None:
        """struct_def : IDENTIFIER LBRACE field_list RBRACE
                      | IDENTIFIER LBRACE field_list COMMA RBRACE"""
        p[0] = StructSpec(name=p[1], fields=p[3])

    def p_struct_def_empty(self, p: yacc.YaccProduction) -> None:
        """struct_def : IDENTIFIER LBRACE RBRACE"""
        p[0] = StructSpec(name=p[1], fields=[])

    def p_field_list_single(self, p: yacc.YaccProduction) -> None:
        """field_list : field"""
        p[0] = [p[1]]

    def p_field_list_multiple(self, p: yacc.YaccProduction) -> None:
        """field_list : field_list COMMA field"""
        p[0] = p[1] + [p[3]]

    def p_field(self, p: yacc.YaccProduction) -> None:
        """field : IDENTIFIER COLON type_ref"""
        p[0] = FieldSpec(name=p[1], type_ref=p[3])

    def p_type_ref_named(self, p: yacc.YaccProduction) -> None:
        """type_ref : IDENTIFIER"""
        p[0] = NamedRef(name=p[1])

    def p_type_ref_sequence(self, p: yacc.YaccProduction) -> None:
        """type_ref : type_ref LBRACKET RBRACKET"""
        p[0] = SequenceRef(element=p[1])

    def p_type_ref_array(self, p: yacc.YaccProduction) -> None:
        """type_ref : type_ref LBRACKET INTEGER RBRACKET"""
        p[0] = SequenceRef(element=p[1], length=p[3])

    def p_type_ref_optional(self, p: yacc.YaccProduction) -> None:
        """type_ref : type_ref QUESTION"""
        p[0] = OptionalRef(inner=p[1])

    def p_type_ref_map(self, p: yacc.YaccProduction) -> None:
        """type_ref : LBRACE type_ref COLON type_ref RBRACE"""
        p[0] = MapRef(key=p[2], value=p[4])

    def p_error(self, p: yacc.YaccProduction) -> None:
        if p:
            raise SyntaxError(f"Syntax error at '{p.value}' (line {p.lineno})")
        else:
            raise SyntaxError("Syntax error at end of input")

    def build(self, **kwargs: Any) -> None:
        """Build the parser."""
        self.parser = yacc.yacc(module=self, **kwargs)

    def parse(self, data: str, registry: DescriptorRegistry | None = None) -> DescriptorRegistry:
        """Parse descriptor definitions and return the populated registry.

        Args:
            data: DSL text.
            registry: Registry to add definitions to. A fresh one is
                created when omitted.

        Raises:
            SyntaxError: The text is not valid DSL.
            ValueError: A definition names an unknown or duplicate descriptor.
        """
        if self.parser is None:
            self.build(debug=False, write_tables=False)

        self.registry = registry if registry is not None else DescriptorRegistry()
        self.lexer.lexer.lineno = 1

        specs = self.parser.parse(data, lexer=self.lexer.lexer)
        self._specs = specs or []

        self._resolve_specs()

        return self.registry

    def _resolve_ref(self, ref: Any) -> Descriptor:
        """Resolve a type reference to a descriptor."""
        if isinstance(ref, NamedRef):
            return self.registry.get_or_raise(ref.name)
        if isinstance(ref, SequenceRef):
            return self.registry.sequence_of(self._resolve_ref(ref.element), ref.length)
        if isinstance(ref, MapRef):
            return self.registry.map_of(self._resolve_ref(ref.key), self._resolve_ref(ref.value))
        if isinstance(ref, OptionalRef):
            return self.registry.pointer_to(self._resolve_ref(ref.inner))
        raise TypeError(f"Unknown type reference: {ref!r}")

    def _resolve_specs(self) -> None:
        """Resolve all specs into descriptors using two-phase resolution.

        Phase 1: Pre-register stubs for all structs so that self-referential
        and mutually referential structs can resolve.
        Phase 2: Iteratively resolve aliases and populate struct stubs.
        """
        for spec in self._specs:
            if isinstance(spec, StructSpec):
                self.registry.register_stub(spec.name)

        unresolved = list(self._specs)
        max_iterations = len(unresolved) + 1
        for _ in range(max_iterations):
            if not unresolved:
                break

            still_unresolved: list[AliasSpec | StructSpec] = []
            progress = False

            for spec in unresolved:
                try:
                    if isinstance(spec, AliasSpec):
                        base = self._resolve_ref(spec.base_ref)
                        self.registry.register(AliasDescriptor(name=spec.name, base=base))
                    else:
                        fields = [
                            FieldDescriptor(name=f.name, descriptor=self._resolve_ref(f.type_ref))
                            for f in spec.fields
                        ]
                        # Mutate the existing stub in-place
                        stub = self.registry.get(spec.name)
                        stub.fields = fields  # type: ignore[union-attr]
                    progress = True
                except KeyError:
                    # Dependency not yet resolved
                    still_unresolved.append(spec)

            unresolved = still_unresolved

            if not progress and unresolved:
                remaining = [s.name for s in unresolved]
                raise ValueError(f"Cannot resolve descriptors: {remaining}")


def parse_descriptors(data: str, registry: DescriptorRegistry | None = None) -> DescriptorRegistry:
    """Parse descriptor DSL text into a registry."""
    return DescriptorParser().parse(data, registry)
