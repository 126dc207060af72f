"""
Test suite for the Program Graph arena.

Tests cover:
  - Instance creation and entry-point bookkeeping
  - Statement chains: slot heads, splicing, disconnect
  - Socket binding: literals, value blocks, type checks
  - Cycle rejection for both edge families
  - Removal and replacement of nested content
  - Serialization, deserialization and validation of persisted graphs
  - Property tests for round-trip, type safety and acyclicity
"""

import json

import pytest
from hypothesis import given, settings, strategies as st

from game_editor_core.block_registry import get_default_registry
from game_editor_core.exceptions import AddressNotFound, StructureError, TypeMismatch, UnknownKind
from game_editor_core.p5_blocks import builtin_kinds
from game_editor_core.program_graph import ProgramGraph, SocketBinding, check_reachable


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def graph():
    """Empty graph on the built-in catalog."""
    return ProgramGraph()


@pytest.fixture
def setup_graph():
    """setup() holding background, then circle(10, 10, 5)."""
    g = ProgramGraph()
    setup = g.create_instance('p5_setup', block_id='setup')
    bg = g.create_instance('p5_background', {'COLOR': '#336699'}, block_id='bg')
    circle = g.create_instance('p5_circle', block_id='circle')
    g.bind_socket('circle', 'X', 10)
    g.bind_socket('circle', 'Y', 10)
    g.bind_socket('circle', 'D', 5)
    g.connect_statement(circle.block_id, setup.block_id, slot='STATEMENTS')
    g.connect_statement(bg.block_id, setup.block_id, slot='STATEMENTS')
    return g


# =============================================================================
# CONSTRUCTION
# =============================================================================

class TestCreateInstance:
    """Test creating detached instances."""

    def test_entry_point_registered(self, graph):
        """Test that entry-point kinds are appended to entry_points."""
        setup = graph.create_instance('p5_setup')
        graph.create_instance('p5_circle')
        assert graph.entry_points == [setup.block_id]

    def test_fields_default(self, graph):
        inst = graph.create_instance('p5_background')
        assert inst.fields == {'COLOR': '#000000'}

    def test_unknown_kind(self, graph):
        with pytest.raises(UnknownKind):
            graph.create_instance('p5_spiral')

    def test_duplicate_id(self, graph):
        graph.create_instance('p5_circle', block_id='c1')
        with pytest.raises(StructureError):
            graph.create_instance('p5_rect', block_id='c1')

    def test_slots_start_empty(self, graph):
        inst = graph.create_instance('controls_if')
        assert inst.slots == {'DO0': None, 'ELSE': None}

    def test_set_field_validates(self, graph):
        """Test that dropdown fields only take listed options."""
        inst = graph.create_instance('math_arithmetic')
        graph.set_field(inst.block_id, 'OP', 'MULTIPLY')
        assert inst.fields['OP'] == 'MULTIPLY'
        with pytest.raises(TypeMismatch):
            graph.set_field(inst.block_id, 'OP', 'MODULO')


class TestStatementChains:
    """Test statement edges."""

    def test_slot_connect_prepends(self, setup_graph):
        """Test that connecting into a filled slot pushes the old body after the new chain."""
        assert setup_graph.chain(setup_graph.get('setup').slots['STATEMENTS']) == ['bg', 'circle']

    def test_splice_after(self, setup_graph):
        """Test inserting a statement directly after another."""
        stroke = setup_graph.create_instance('p5_no_stroke', block_id='ns')
        setup_graph.connect_statement(stroke.block_id, 'bg')
        assert setup_graph.chain('bg') == ['bg', 'ns', 'circle']
        assert setup_graph.get('circle').parent.parent_id == 'ns'

    def test_connect_attached_block_rejected(self, setup_graph):
        with pytest.raises(StructureError):
            setup_graph.connect_statement('circle', 'setup', slot='STATEMENTS')

    def test_connect_value_into_chain_rejected(self, setup_graph):
        """Test that a value kind cannot sit in a statement chain."""
        width = setup_graph.create_instance('p5_width')
        with pytest.raises(StructureError):
            setup_graph.connect_statement(width.block_id, 'setup', slot='STATEMENTS')

    def test_unknown_slot(self, setup_graph):
        rect = setup_graph.create_instance('p5_rect')
        with pytest.raises(StructureError):
            setup_graph.connect_statement(rect.block_id, 'setup', slot='BODY')

    def test_entry_has_no_next(self, graph):
        setup = graph.create_instance('p5_setup')
        rect = graph.create_instance('p5_rect')
        with pytest.raises(StructureError):
            graph.connect_statement(rect.block_id, setup.block_id)

    def test_disconnect_relinks(self, setup_graph):
        """Test that lifting the slot head leaves the follower in the slot."""
        setup_graph.disconnect_statement('bg')
        assert setup_graph.get('setup').slots['STATEMENTS'] == 'circle'
        assert setup_graph.get('bg').is_detached
        assert setup_graph.detached_roots() == ['bg']

    def test_cycle_through_slot_rejected(self, graph):
        """Test that a loop cannot be placed inside its own body."""
        outer = graph.create_instance('controls_repeat_ext')
        inner = graph.create_instance('controls_repeat_ext')
        graph.connect_statement(inner.block_id, outer.block_id, slot='DO')
        with pytest.raises(StructureError):
            graph.connect_statement(outer.block_id, outer.block_id, slot='DO')
        graph.disconnect_statement(inner.block_id)
        graph.connect_statement(outer.block_id, inner.block_id, slot='DO')
        with pytest.raises(StructureError):
            graph.connect_statement(inner.block_id, outer.block_id, slot='DO')


class TestSockets:
    """Test socket bindings."""

    def test_literal_binding(self, setup_graph):
        assert setup_graph.get('circle').sockets['D'] == SocketBinding.of_literal(5)

    def test_literal_type_checked(self, setup_graph):
        with pytest.raises(TypeMismatch):
            setup_graph.bind_socket('circle', 'D', 'big')

    def test_value_block_binding(self, graph):
        circle = graph.create_instance('p5_circle')
        width = graph.create_instance('p5_width')
        graph.bind_socket(circle.block_id, 'X', width)
        assert circle.sockets['X'].block_id == width.block_id
        assert width.parent.parent_id == circle.block_id

    def test_type_mismatch(self, graph):
        """Test that a String value cannot fill a Number socket."""
        circle = graph.create_instance('p5_circle')
        label = graph.create_instance('text')
        with pytest.raises(TypeMismatch) as exc:
            graph.bind_socket(circle.block_id, 'X', label)
        assert exc.value.expected == 'Number'
        assert exc.value.actual == 'String'
        assert 'X' not in circle.sockets

    def test_untyped_value_fits(self, graph):
        """Test that an untyped variable read fills a typed socket."""
        circle = graph.create_instance('p5_circle')
        var = graph.create_instance('variables_get', {'VAR': 'size'})
        graph.bind_socket(circle.block_id, 'D', var)
        assert circle.sockets['D'].block_id == var.block_id

    def test_statement_cannot_fill_socket(self, graph):
        circle = graph.create_instance('p5_circle')
        rect = graph.create_instance('p5_rect')
        with pytest.raises(StructureError):
            graph.bind_socket(circle.block_id, 'X', rect)

    def test_unknown_socket(self, graph):
        circle = graph.create_instance('p5_circle')
        with pytest.raises(StructureError):
            graph.bind_socket(circle.block_id, 'R', 3)

    def test_rebind_detaches_previous(self, graph):
        """Test that replacing a bound value block leaves it detached."""
        circle = graph.create_instance('p5_circle')
        width = graph.create_instance('p5_width')
        graph.bind_socket(circle.block_id, 'X', width)
        graph.bind_socket(circle.block_id, 'X', 7)
        assert width.is_detached
        assert circle.sockets['X'].literal == 7

    def test_unbind(self, setup_graph):
        setup_graph.unbind_socket('circle', 'D')
        assert 'D' not in setup_graph.get('circle').sockets

    def test_socket_cycle_rejected(self, graph):
        """Test that add(a) cannot be bound into a block nested inside it."""
        outer = graph.create_instance('add')
        inner = graph.create_instance('add')
        graph.bind_socket(outer.block_id, 'A', inner)
        with pytest.raises(StructureError):
            graph.bind_socket(inner.block_id, 'B', outer)

    def test_self_binding_rejected(self, graph):
        total = graph.create_instance('add')
        with pytest.raises(StructureError):
            graph.bind_socket(total.block_id, 'A', total)


class TestRemoval:
    """Test removal and replacement."""

    def test_remove_statement_with_values(self, graph):
        setup = graph.create_instance('p5_setup')
        circle = graph.create_instance('p5_circle')
        width = graph.create_instance('p5_width')
        graph.bind_socket(circle.block_id, 'X', width)
        graph.connect_statement(circle.block_id, setup.block_id, slot='STATEMENTS')
        graph.remove_instance(circle.block_id)
        assert len(graph) == 1
        assert setup.slots['STATEMENTS'] is None

    def test_remove_bound_value(self, graph):
        circle = graph.create_instance('p5_circle')
        width = graph.create_instance('p5_width')
        graph.bind_socket(circle.block_id, 'X', width)
        graph.remove_instance(width.block_id)
        assert 'X' not in circle.sockets
        assert width.block_id not in graph

    def test_remove_entry_point(self, setup_graph):
        setup_graph.remove_instance('setup')
        assert setup_graph.entry_points == []
        assert setup_graph.is_empty()

    def test_clear_slot_unknown(self, setup_graph):
        with pytest.raises(AddressNotFound):
            setup_graph.clear_slot('setup', 'ELSE')

    def test_replace_socket_deletes_old_value(self, graph):
        circle = graph.create_instance('p5_circle')
        width = graph.create_instance('p5_width')
        graph.bind_socket(circle.block_id, 'X', width)
        graph.replace_socket(circle.block_id, 'X', 12)
        assert width.block_id not in graph

    def test_get_missing(self, graph):
        with pytest.raises(AddressNotFound):
            graph.get('nope')


class TestGraft:
    """Test loading serialized fragments into a live graph."""

    def test_graft_renames_collisions(self, setup_graph):
        """Test that fragment ids already in use are replaced."""
        head = setup_graph.graft({'circle': {'kind': 'p5_rect', 'fields': {}}}, 'circle')
        assert head != 'circle'
        assert setup_graph.get(head).kind_id == 'p5_rect'
        assert setup_graph.get(head).is_detached

    def test_graft_rejects_stray_blocks(self, graph):
        with pytest.raises(StructureError):
            graph.graft({'a': {'kind': 'p5_rect'}, 'b': {'kind': 'p5_circle'}}, 'a')

    def test_graft_rejects_entry_points(self, graph):
        with pytest.raises(StructureError):
            graph.graft({'s': {'kind': 'p5_draw'}}, 's')


# =============================================================================
# SERIALIZATION
# =============================================================================

class TestSerialization:
    """Test the persisted format."""

    def test_serialize_shape(self, setup_graph):
        data = setup_graph.serialize()
        assert data['version'] == 1
        assert data['entry_points'] == ['setup']
        assert list(data['blocks']) == ['setup', 'bg', 'circle']
        assert data['blocks']['setup']['slots'] == {'STATEMENTS': 'bg'}
        assert data['blocks']['bg']['next'] == 'circle'
        assert data['blocks']['circle']['sockets']['X'] == {'literal': 10}

    def test_round_trip_json(self, setup_graph):
        twin = ProgramGraph.from_json(setup_graph.to_json())
        assert twin.serialize() == setup_graph.serialize()

    def test_missing_version_accepted(self, setup_graph):
        data = setup_graph.serialize()
        del data['version']
        assert ProgramGraph.deserialize(data).serialize() == setup_graph.serialize()

    def test_future_version_rejected(self, setup_graph):
        data = setup_graph.serialize()
        data['version'] = 2
        with pytest.raises(StructureError):
            ProgramGraph.deserialize(data)

    def test_invalid_json(self):
        with pytest.raises(StructureError):
            ProgramGraph.deserialize('{"blocks": ')

    def test_unknown_kind(self):
        with pytest.raises(UnknownKind):
            ProgramGraph.deserialize({'blocks': {'a': {'kind': 'p5_teapot'}}})

    def test_missing_reference(self):
        data = {'blocks': {'a': {'kind': 'p5_rect', 'next': 'ghost'}}}
        with pytest.raises(StructureError):
            ProgramGraph.deserialize(data)

    def test_next_cycle(self):
        """Test that a chain looping back on itself is rejected."""
        data = {'blocks': {
            'a': {'kind': 'p5_rect', 'next': 'b'},
            'b': {'kind': 'p5_rect', 'next': 'a'},
        }}
        with pytest.raises(StructureError):
            ProgramGraph.deserialize(data)

    def test_two_parents(self):
        data = {'blocks': {
            'a': {'kind': 'p5_rect', 'next': 'c'},
            'b': {'kind': 'p5_rect', 'next': 'c'},
            'c': {'kind': 'p5_rect'},
        }}
        with pytest.raises(StructureError):
            ProgramGraph.deserialize(data)

    def test_persisted_type_mismatch(self):
        """Test that socket types are re-checked on load."""
        data = {'blocks': {
            'c': {'kind': 'p5_circle', 'sockets': {'X': {'block': 't'}}},
            't': {'kind': 'text', 'fields': {'TEXT': 'ten'}},
        }}
        with pytest.raises(TypeMismatch):
            ProgramGraph.deserialize(data)

    def test_malformed_socket(self):
        data = {'blocks': {'c': {'kind': 'p5_circle', 'sockets': {'X': 10}}}}
        with pytest.raises(StructureError):
            ProgramGraph.deserialize(data)

    def test_entry_point_listed_but_not_entry_kind(self):
        data = {'entry_points': ['a'], 'blocks': {'a': {'kind': 'p5_rect'}}}
        with pytest.raises(StructureError):
            ProgramGraph.deserialize(data)

    def test_unlisted_entry_point_added(self):
        graph = ProgramGraph.deserialize({'blocks': {'d': {'kind': 'p5_draw'}}})
        assert graph.entry_points == ['d']

    def test_clone_is_independent(self, setup_graph):
        twin = setup_graph.clone()
        twin.bind_socket('circle', 'D', 99)
        assert setup_graph.get('circle').sockets['D'].literal == 5


# =============================================================================
# PROPERTY TESTS
# =============================================================================

STATEMENT_POOL = ['p5_circle', 'p5_rect', 'p5_point', 'controls_repeat_ext', 'variables_set']
CONTAINER_SLOTS = {'p5_setup': 'STATEMENTS', 'controls_repeat_ext': 'DO'}

_KINDS = builtin_kinds()
TYPED_SOCKETS = [(k.kind_id, s.name) for k in _KINDS
                 if k.has_previous_next and not k.fields for s in k.sockets]
VALUE_KINDS = [k.kind_id for k in _KINDS if k.is_value]

statement_ops = st.lists(
    st.tuples(
        st.sampled_from(STATEMENT_POOL),
        st.integers(min_value=0, max_value=50),             # container choice
        st.lists(st.integers(min_value=-100, max_value=100), max_size=3),
        st.booleans(),                                       # nest an add() block
    ),
    max_size=12,
)


def build_graph(ops):
    graph = ProgramGraph()
    setup = graph.create_instance('p5_setup')
    containers = [(setup.block_id, 'STATEMENTS')]
    for kind_id, where, literals, nest in ops:
        inst = graph.create_instance(kind_id)
        kind = graph.kind_of(inst)
        for socket, literal in zip(kind.sockets, literals):
            if nest and socket.value_type.accepts(graph.registry.get_kind('add').output_type):
                total = graph.create_instance('add')
                graph.bind_socket(total.block_id, 'A', literal)
                graph.bind_socket(inst.block_id, socket.name, total)
            elif socket.value_type.accepts(graph.registry.get_kind('math_number').output_type):
                graph.bind_socket(inst.block_id, socket.name, literal)
        parent, slot = containers[where % len(containers)]
        graph.connect_statement(inst.block_id, parent, slot=slot)
        if kind_id in CONTAINER_SLOTS:
            containers.append((inst.block_id, CONTAINER_SLOTS[kind_id]))
    return graph


@given(statement_ops)
@settings(max_examples=60)
def test_round_trip_is_isomorphic(ops):
    """Property test: deserialize(serialize(G)) has the same kinds, fields and topology."""
    graph = build_graph(ops)
    restored = ProgramGraph.deserialize(json.loads(graph.to_json()))
    assert restored.canonical() == graph.canonical()


@given(st.sampled_from(TYPED_SOCKETS), st.sampled_from(VALUE_KINDS))
@settings(max_examples=150)
def test_bind_socket_respects_types(target, value_kind):
    """Property test: a binding succeeds exactly when the two type tags are compatible."""
    kind_id, socket_name = target
    registry = get_default_registry()
    graph = ProgramGraph(registry)
    owner = graph.create_instance(kind_id)
    value = graph.create_instance(value_kind)
    socket_type = registry.get_kind(kind_id).get_socket(socket_name).value_type
    output_type = registry.get_kind(value_kind).output_type
    if socket_type.accepts(output_type):
        graph.bind_socket(owner.block_id, socket_name, value)
        assert owner.sockets[socket_name].block_id == value.block_id
    else:
        with pytest.raises(TypeMismatch):
            graph.bind_socket(owner.block_id, socket_name, value)
        assert socket_name not in owner.sockets
        assert value.is_detached


edit_ops = st.lists(
    st.tuples(st.sampled_from(['connect', 'nest', 'bind']),
              st.integers(min_value=0, max_value=7),
              st.integers(min_value=0, max_value=7)),
    max_size=30,
)


@given(edit_ops)
@settings(max_examples=80)
def test_edits_never_create_cycles(ops):
    """Property test: any sequence of connect/bind calls keeps the graph acyclic."""
    graph = ProgramGraph()
    loops = [graph.create_instance('controls_repeat_ext').block_id for _ in range(4)]
    sums = [graph.create_instance('add').block_id for _ in range(4)]
    for op, a, b in ops:
        try:
            if op == 'connect':
                graph.connect_statement(loops[a % 4], loops[b % 4])
            elif op == 'nest':
                graph.connect_statement(loops[a % 4], loops[b % 4], slot='DO')
            else:
                graph.bind_socket(sums[b % 4], 'A', graph.get(sums[a % 4]))
        except StructureError:
            pass
        instances = {inst.block_id: inst for inst in graph.instances()}
        check_reachable(instances, [bid for bid, inst in instances.items() if inst.parent is None])
