"""
Program Graph: the arena of block instances a workspace is built from.

Instances are addressed by opaque string ids and every edge is set through a
validating method on ``ProgramGraph``; nothing outside this module writes the
link attributes directly. Three edge types exist:

    next    statement → following statement in the same chain
    slot    block     → head of a nested statement chain
    socket  block     → nested value block

Each instance has at most one incoming edge (its ``parent`` link), which makes
every chain a simple singly linked list and every socket binding exclusive.
Acyclicity is checked centrally before an edge is added.

Serialized form (version 1)::

    {
      "version": 1,
      "entry_points": ["a1", ...],
      "blocks": {
        "a1": {"kind": "p5_setup", "fields": {}, "slots": {"STATEMENTS": "b2"}},
        "b2": {"kind": "p5_circle", "fields": {}, "next": null,
               "sockets": {"X": {"literal": 10}, "D": {"block": "c3"}}},
        ...
      }
    }
"""

import copy
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple, Union

from .block_registry import BlockRegistry, get_default_registry
from .block_schema import BlockKind
from .exceptions import AddressNotFound, StructureError, TypeMismatch

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

EDGE_NEXT = 'next'
EDGE_SLOT = 'slot'
EDGE_SOCKET = 'socket'


@dataclass
class SocketBinding:
    """What a socket holds: a nested value block or a literal."""
    block_id: Optional[str] = None
    literal: Any = None

    @property
    def is_block(self) -> bool:
        return self.block_id is not None

    @classmethod
    def of_block(cls, block_id: str) -> 'SocketBinding':
        return cls(block_id=block_id)

    @classmethod
    def of_literal(cls, value: Any) -> 'SocketBinding':
        return cls(literal=value)

    def to_dict(self) -> Dict[str, Any]:
        if self.is_block:
            return {'block': self.block_id}
        return {'literal': copy.deepcopy(self.literal)}


@dataclass
class ParentLink:
    """The single incoming edge of an attached instance."""
    parent_id: str
    edge: str
    name: Optional[str] = None


@dataclass
class BlockInstance:
    """One placed block: its kind, field values and outgoing edges."""
    block_id: str
    kind_id: str
    fields: Dict[str, Any] = field(default_factory=dict)
    sockets: Dict[str, SocketBinding] = field(default_factory=dict)
    slots: Dict[str, Optional[str]] = field(default_factory=dict)
    next_id: Optional[str] = None
    parent: Optional[ParentLink] = None

    @property
    def is_detached(self) -> bool:
        return self.parent is None

    def child_ids(self) -> List[str]:
        """Outgoing edge targets: socket blocks, slot heads, then next."""
        children = [b.block_id for b in self.sockets.values() if b.is_block]
        children.extend(head for head in self.slots.values() if head)
        if self.next_id:
            children.append(self.next_id)
        return children

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'kind': self.kind_id, 'fields': copy.deepcopy(self.fields)}
        if self.next_id:
            data['next'] = self.next_id
        if self.slots:
            data['slots'] = dict(self.slots)
        if self.sockets:
            data['sockets'] = {name: b.to_dict() for name, b in self.sockets.items()}
        return data


SocketValue = Union[BlockInstance, SocketBinding, str, int, float, bool, list, None]


def new_block_id() -> str:
    return uuid.uuid4().hex[:12]


class ProgramGraph:
    """Typed, acyclic graph of block instances rooted at entry points."""

    def __init__(self, registry: Optional[BlockRegistry] = None):
        self.registry = registry or get_default_registry()
        self._blocks: Dict[str, BlockInstance] = {}
        self.entry_points: List[str] = []

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def __len__(self) -> int:
        return len(self._blocks)

    def __contains__(self, block_id: str) -> bool:
        return block_id in self._blocks

    def is_empty(self) -> bool:
        return not self._blocks

    def get(self, block_id: str) -> BlockInstance:
        try:
            return self._blocks[block_id]
        except KeyError:
            raise AddressNotFound(f"No block with id {block_id!r}", address=block_id) from None

    def kind_of(self, instance: BlockInstance) -> BlockKind:
        return self.registry.get_kind(instance.kind_id)

    def instances(self) -> List[BlockInstance]:
        """Every instance in insertion order, attached or not."""
        return list(self._blocks.values())

    def chain(self, head_id: Optional[str]) -> List[str]:
        """Ids of a statement chain, following next links from ``head_id``."""
        ids = []
        while head_id:
            ids.append(head_id)
            head_id = self._blocks[head_id].next_id
        return ids

    def descendants(self, block_id: str, include_next: bool = True) -> Set[str]:
        """All ids reachable from ``block_id`` (itself included)."""
        seen: Set[str] = set()
        stack = [block_id]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            inst = self._blocks[current]
            children = inst.child_ids()
            if not include_next and current == block_id and inst.next_id:
                children.remove(inst.next_id)
            stack.extend(children)
        return seen

    def detached_roots(self) -> List[str]:
        """Top-level instances that are not entry points, in insertion order."""
        entries = set(self.entry_points)
        return [bid for bid, inst in self._blocks.items()
                if inst.parent is None and bid not in entries]

    # =========================================================================
    # CONSTRUCTION
    # =========================================================================

    def create_instance(self, kind_id: str, fields: Optional[Dict[str, Any]] = None,
                        block_id: Optional[str] = None) -> BlockInstance:
        """Create a detached instance; entry-point kinds are appended to ``entry_points``."""
        kind = self.registry.get_kind(kind_id)
        resolved = kind.resolve_fields(fields)
        if block_id is None:
            block_id = new_block_id()
            while block_id in self._blocks:
                block_id = new_block_id()
        elif block_id in self._blocks:
            raise StructureError(f"Block id {block_id!r} already exists", {'block_id': block_id})

        instance = BlockInstance(
            block_id=block_id,
            kind_id=kind_id,
            fields=resolved,
            slots={slot.name: None for slot in kind.slots},
        )
        self._blocks[block_id] = instance
        if kind.is_entry_point:
            self.entry_points.append(block_id)
        return instance

    def set_field(self, block_id: str, name: str, value: Any) -> None:
        instance = self.get(block_id)
        kind = self.kind_of(instance)
        literal = kind.get_field(name)
        if literal is None:
            raise StructureError(f"Kind {kind.kind_id!r} has no field {name!r}")
        instance.fields[name] = literal.coerce(value)

    # =========================================================================
    # STATEMENT EDGES
    # =========================================================================

    def connect_statement(self, child_id: str, parent_id: str, slot: Optional[str] = None) -> None:
        """
        Attach the detached chain starting at ``child_id``.

        With ``slot`` the chain becomes the head of that slot on ``parent_id``
        (any existing body follows it). Without ``slot`` the chain is spliced in
        directly after ``parent_id``.
        """
        child = self.get(child_id)
        parent = self.get(parent_id)
        child_kind = self.kind_of(child)
        parent_kind = self.kind_of(parent)

        if not child_kind.has_previous_next:
            raise StructureError(
                f"{child.kind_id!r} cannot be connected into a statement chain",
                {'block_id': child_id},
            )
        if not child.is_detached:
            raise StructureError(
                f"Block {child_id!r} is already connected; disconnect it first",
                {'block_id': child_id},
            )
        if slot is not None:
            if parent_kind.get_slot(slot) is None:
                raise StructureError(
                    f"Kind {parent.kind_id!r} has no statement slot {slot!r}",
                    {'block_id': parent_id, 'slot': slot},
                )
        elif not parent_kind.has_previous_next:
            raise StructureError(
                f"{parent.kind_id!r} has no next connection",
                {'block_id': parent_id},
            )
        if parent_id in self.descendants(child_id):
            raise StructureError(
                f"Connecting {child_id!r} under {parent_id!r} would create a cycle",
                {'child': child_id, 'parent': parent_id},
            )

        tail = self._blocks[self.chain(child_id)[-1]]
        if slot is not None:
            follower = parent.slots.get(slot)
            parent.slots[slot] = child_id
            child.parent = ParentLink(parent_id, EDGE_SLOT, slot)
        else:
            follower = parent.next_id
            parent.next_id = child_id
            child.parent = ParentLink(parent_id, EDGE_NEXT)
        if follower:
            tail.next_id = follower
            self._blocks[follower].parent = ParentLink(tail.block_id, EDGE_NEXT)

    def disconnect_statement(self, block_id: str) -> None:
        """Lift one statement out of its chain; the blocks around it are re-linked."""
        instance = self.get(block_id)
        if not self.kind_of(instance).has_previous_next:
            raise StructureError(f"{instance.kind_id!r} is not a chained statement",
                                 {'block_id': block_id})
        follower = instance.next_id
        link = instance.parent
        instance.next_id = None
        instance.parent = None

        if link is None:
            if follower:
                self._blocks[follower].parent = None
            return
        owner = self._blocks[link.parent_id]
        if link.edge == EDGE_NEXT:
            owner.next_id = follower
        else:
            owner.slots[link.name] = follower
        if follower:
            self._blocks[follower].parent = link

    # =========================================================================
    # SOCKET EDGES
    # =========================================================================

    def bind_socket(self, block_id: str, socket_name: str, value: SocketValue) -> None:
        """
        Bind ``socket_name`` on ``block_id`` to a value block, a literal, or nothing.

        ``value`` may be a BlockInstance (or ``SocketBinding.of_block``) for a
        nested value block, ``None`` to unbind, or any other value as a literal.
        A previously bound value block becomes detached.
        """
        instance = self.get(block_id)
        kind = self.kind_of(instance)
        socket = kind.get_socket(socket_name)
        if socket is None:
            raise StructureError(
                f"Kind {kind.kind_id!r} has no socket {socket_name!r}",
                {'block_id': block_id, 'socket': socket_name},
            )

        if isinstance(value, BlockInstance):
            value = SocketBinding.of_block(value.block_id)
        elif value is not None and not isinstance(value, SocketBinding):
            value = SocketBinding.of_literal(value)

        binding = None
        if value is not None and value.is_block:
            child = self.get(value.block_id)
            child_kind = self.kind_of(child)
            if not child_kind.is_value:
                raise StructureError(
                    f"{child.kind_id!r} produces no value and cannot fill socket {socket_name!r}",
                    {'block_id': child.block_id},
                )
            if not socket.value_type.accepts(child_kind.output_type):
                raise TypeMismatch(
                    f"Socket {socket_name!r} on {kind.kind_id!r} expects "
                    f"{socket.value_type.value}, got {child_kind.output_type.value} "
                    f"from {child.kind_id!r}",
                    expected=socket.value_type.value,
                    actual=child_kind.output_type.value,
                )
            if not child.is_detached:
                raise StructureError(
                    f"Block {child.block_id!r} is already bound elsewhere",
                    {'block_id': child.block_id},
                )
            if block_id in self.descendants(child.block_id):
                raise StructureError(
                    f"Binding {child.block_id!r} into {block_id!r} would create a cycle",
                    {'child': child.block_id, 'parent': block_id},
                )
            binding = SocketBinding.of_block(child.block_id)
        elif value is not None:
            binding = SocketBinding.of_literal(socket.validate_literal(value.literal))

        previous = instance.sockets.pop(socket_name, None)
        if previous is not None and previous.is_block:
            self._blocks[previous.block_id].parent = None
        if binding is not None:
            instance.sockets[socket_name] = binding
            if binding.is_block:
                self._blocks[binding.block_id].parent = ParentLink(block_id, EDGE_SOCKET, socket_name)

    def unbind_socket(self, block_id: str, socket_name: str) -> None:
        self.bind_socket(block_id, socket_name, None)

    # =========================================================================
    # REMOVAL / REPLACEMENT
    # =========================================================================

    def remove_instance(self, block_id: str) -> None:
        """Delete one instance together with everything nested in its sockets and slots."""
        instance = self.get(block_id)
        link = instance.parent
        if link is not None and link.edge == EDGE_SOCKET:
            self._blocks[link.parent_id].sockets.pop(link.name, None)
            instance.parent = None
        elif self.kind_of(instance).has_previous_next:
            self.disconnect_statement(block_id)
        elif instance.next_id:
            raise StructureError(f"Block {block_id!r} has an unexpected next link")

        for doomed in self.descendants(block_id):
            self._blocks.pop(doomed, None)
        if block_id in self.entry_points:
            self.entry_points.remove(block_id)

    def clear_slot(self, block_id: str, slot: str) -> None:
        """Delete the whole chain held in ``slot``."""
        instance = self.get(block_id)
        if self.kind_of(instance).get_slot(slot) is None:
            raise AddressNotFound(f"Block {block_id!r} has no slot {slot!r}",
                                  address={'block': block_id, 'slot': slot})
        head = instance.slots.get(slot)
        for doomed in self.chain(head):
            for nested in self.descendants(doomed, include_next=False):
                self._blocks.pop(nested, None)
        instance.slots[slot] = None

    def replace_slot(self, block_id: str, slot: str, new_head: Optional[str]) -> None:
        """Swap the chain in ``slot`` for the detached chain starting at ``new_head``."""
        self.clear_slot(block_id, slot)
        if new_head is not None:
            self.connect_statement(new_head, block_id, slot=slot)

    def replace_socket(self, block_id: str, socket_name: str, value: SocketValue) -> None:
        """Bind a new value, deleting whatever value block the socket held before."""
        instance = self.get(block_id)
        if self.kind_of(instance).get_socket(socket_name) is None:
            raise AddressNotFound(f"Block {block_id!r} has no socket {socket_name!r}",
                                  address={'block': block_id, 'socket': socket_name})
        previous = instance.sockets.get(socket_name)
        self.bind_socket(block_id, socket_name, value)
        if previous is not None and previous.is_block:
            for doomed in self.descendants(previous.block_id):
                self._blocks.pop(doomed, None)

    def graft(self, blocks: Dict[str, Any], head: Optional[str]) -> Optional[str]:
        """
        Load a serialized fragment into this graph as a detached subtree.

        Every block in ``blocks`` must be reachable from ``head``. Ids already
        used in this graph are replaced with fresh ones; the (possibly renamed)
        head id is returned.
        """
        if head is None:
            if blocks:
                raise StructureError("Fragment has blocks but no head")
            return None
        if not isinstance(blocks, dict):
            raise StructureError("Fragment 'blocks' must be an object")
        head = _as_id(head, "Fragment head")
        loaded = load_instances(blocks, self.registry)
        if head not in loaded:
            raise StructureError(f"Fragment head {head!r} is not among its blocks",
                                 {'head': head})
        for inst in loaded.values():
            if self.registry.get_kind(inst.kind_id).is_entry_point:
                raise StructureError(f"Entry point {inst.block_id!r} cannot be nested",
                                     {'block_id': inst.block_id})
        if loaded[head].parent is not None:
            raise StructureError(f"Fragment head {head!r} is referenced inside the fragment")
        check_reachable(loaded, [head])

        renames = {}
        for old in loaded:
            if old in self._blocks:
                fresh = new_block_id()
                while fresh in self._blocks or fresh in loaded or fresh in renames.values():
                    fresh = new_block_id()
                renames[old] = fresh
        for inst in rename_instances(loaded, renames).values():
            self._blocks[inst.block_id] = inst
        return renames.get(head, head)

    # =========================================================================
    # TRAVERSAL
    # =========================================================================

    def walk(self, block_id: str) -> Iterator[BlockInstance]:
        """Depth-first: the block, its socket values, its slot chains, then its next."""
        stack = [block_id]
        while stack:
            instance = self._blocks[stack.pop()]
            yield instance
            kind = self.registry.find_kind(instance.kind_id)
            if kind is not None:
                socket_order = kind.socket_names() + [n for n in instance.sockets if kind.get_socket(n) is None]
                slot_order = kind.slot_names() + [n for n in instance.slots if kind.get_slot(n) is None]
            else:
                socket_order = list(instance.sockets)
                slot_order = list(instance.slots)
            pending = []
            for name in socket_order:
                binding = instance.sockets.get(name)
                if binding is not None and binding.is_block:
                    pending.append(binding.block_id)
            for name in slot_order:
                head = instance.slots.get(name)
                if head:
                    pending.append(head)
            if instance.next_id:
                pending.append(instance.next_id)
            stack.extend(reversed(pending))

    def all_blocks(self) -> List[BlockInstance]:
        """Every instance reachable from the entry points, in deterministic order."""
        ordered = []
        for entry_id in self.entry_points:
            ordered.extend(self.walk(entry_id))
        return ordered

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def serialize(self) -> Dict[str, Any]:
        """Persisted form: entry points, then detached subtrees, in traversal order."""
        ordered = self.all_blocks()
        for root in self.detached_roots():
            ordered.extend(self.walk(root))
        return {
            'version': FORMAT_VERSION,
            'entry_points': list(self.entry_points),
            'blocks': {inst.block_id: inst.to_dict() for inst in ordered},
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.serialize(), indent=indent)

    @classmethod
    def deserialize(cls, data: Union[str, Dict[str, Any]],
                    registry: Optional[BlockRegistry] = None) -> 'ProgramGraph':
        """Rebuild a graph, validating everything before any instance is kept."""
        registry = registry or get_default_registry()
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except ValueError as e:
                raise StructureError(f"Graph is not valid JSON: {e}") from None
        if not isinstance(data, dict):
            raise StructureError("Serialized graph must be an object")

        version = data.get('version', FORMAT_VERSION)
        if version != FORMAT_VERSION:
            raise StructureError(f"Unsupported graph format version {version!r}",
                                 {'version': version})
        raw_blocks = data.get('blocks', {})
        raw_entries = data.get('entry_points', [])
        if not isinstance(raw_blocks, dict):
            raise StructureError("'blocks' must be an object keyed by block id")
        if not isinstance(raw_entries, list):
            raise StructureError("'entry_points' must be a list of block ids")

        instances = load_instances(raw_blocks, registry)

        entries = []
        for entry_id in raw_entries:
            _as_id(entry_id, "Entry point")
            if entry_id not in instances:
                raise StructureError(f"Entry point {entry_id!r} is not among the blocks",
                                     {'block_id': entry_id})
            if entry_id in entries:
                raise StructureError(f"Entry point {entry_id!r} is listed twice")
            if not registry.get_kind(instances[entry_id].kind_id).is_entry_point:
                raise StructureError(f"Block {entry_id!r} is not an entry-point kind",
                                     {'block_id': entry_id})
            entries.append(entry_id)
        for inst in instances.values():
            if inst.block_id not in entries and registry.get_kind(inst.kind_id).is_entry_point:
                entries.append(inst.block_id)

        check_reachable(instances, [bid for bid, inst in instances.items() if inst.parent is None])

        graph = cls(registry)
        graph._blocks = instances
        graph.entry_points = entries
        logger.debug("Deserialized graph: %d blocks, %d entry points", len(instances), len(entries))
        return graph

    @classmethod
    def from_json(cls, text: str, registry: Optional[BlockRegistry] = None) -> 'ProgramGraph':
        return cls.deserialize(text, registry)

    def clone(self) -> 'ProgramGraph':
        """Independent working copy with the same ids."""
        twin = ProgramGraph(self.registry)
        twin._blocks = copy.deepcopy(self._blocks)
        twin.entry_points = list(self.entry_points)
        return twin

    def canonical(self) -> Dict[str, Any]:
        """Serialized form with ids renumbered in traversal order, for isomorphism checks."""
        data = self.serialize()
        renames = {old: f"b{n}" for n, old in enumerate(data['blocks'])}
        blocks = rename_instances(
            {bid: self._blocks[bid] for bid in data['blocks']}, renames,
        )
        return {
            'version': FORMAT_VERSION,
            'entry_points': [renames[e] for e in data['entry_points']],
            'blocks': {inst.block_id: inst.to_dict() for inst in blocks.values()},
        }


# =============================================================================
# Loading helpers (shared by deserialize and graft)
# =============================================================================

def _as_id(value: Any, where: str) -> str:
    if not isinstance(value, str) or not value:
        raise StructureError(f"{where} must be a block id string, got {value!r}")
    return value


def load_instances(raw_blocks: Dict[str, Any], registry: BlockRegistry) -> Dict[str, BlockInstance]:
    """
    Build unlinked instances from serialized records and attach parent links.

    Raises UnknownKind, TypeMismatch or StructureError; never returns a
    partially validated result.
    """
    instances: Dict[str, BlockInstance] = {}
    references: List[Tuple[str, str, Optional[str], str]] = []

    for block_id, raw in raw_blocks.items():
        _as_id(block_id, "Block key")
        if not isinstance(raw, dict):
            raise StructureError(f"Block {block_id!r} must be an object")
        kind_id = raw.get('kind')
        if not isinstance(kind_id, str):
            raise StructureError(f"Block {block_id!r} has no kind", {'block_id': block_id})
        kind = registry.get_kind(kind_id)
        raw_fields = raw.get('fields') or {}
        if not isinstance(raw_fields, dict):
            raise StructureError(f"Block {block_id!r} fields must be an object")
        instance = BlockInstance(
            block_id=block_id,
            kind_id=kind_id,
            fields=kind.resolve_fields(raw_fields),
            slots={slot.name: None for slot in kind.slots},
        )

        next_id = raw.get('next')
        if next_id is not None:
            if not kind.has_previous_next:
                raise StructureError(f"Block {block_id!r} ({kind_id}) cannot have a next block")
            instance.next_id = _as_id(next_id, f"{block_id}.next")
            references.append((block_id, EDGE_NEXT, None, instance.next_id))

        raw_slots = raw.get('slots') or {}
        if not isinstance(raw_slots, dict):
            raise StructureError(f"Block {block_id!r} slots must be an object")
        for name, head in raw_slots.items():
            if kind.get_slot(name) is None:
                raise StructureError(f"Kind {kind_id!r} has no statement slot {name!r}",
                                     {'block_id': block_id, 'slot': name})
            if head is not None:
                instance.slots[name] = _as_id(head, f"{block_id}.slots.{name}")
                references.append((block_id, EDGE_SLOT, name, head))

        raw_sockets = raw.get('sockets') or {}
        if not isinstance(raw_sockets, dict):
            raise StructureError(f"Block {block_id!r} sockets must be an object")
        for name, raw_binding in raw_sockets.items():
            socket = kind.get_socket(name)
            if socket is None:
                raise StructureError(f"Kind {kind_id!r} has no socket {name!r}",
                                     {'block_id': block_id, 'socket': name})
            if raw_binding is None:
                continue
            if not isinstance(raw_binding, dict) or len(raw_binding) != 1 \
                    or not ({'block', 'literal'} & set(raw_binding)):
                raise StructureError(
                    f"Socket {block_id}.{name} must be {{'block': id}} or {{'literal': value}}")
            if 'block' in raw_binding:
                target = _as_id(raw_binding['block'], f"{block_id}.sockets.{name}")
                instance.sockets[name] = SocketBinding.of_block(target)
                references.append((block_id, EDGE_SOCKET, name, target))
            else:
                instance.sockets[name] = SocketBinding.of_literal(
                    socket.validate_literal(raw_binding['literal']))

        instances[block_id] = instance

    for owner_id, edge, name, target in references:
        child = instances.get(target)
        if child is None:
            raise StructureError(f"Block {owner_id!r} references missing block {target!r}",
                                 {'block_id': owner_id, 'missing': target})
        if child.parent is not None:
            raise StructureError(f"Block {target!r} has more than one parent",
                                 {'block_id': target})
        child_kind = registry.get_kind(child.kind_id)
        if edge == EDGE_SOCKET:
            if not child_kind.is_value:
                raise StructureError(f"Block {target!r} ({child.kind_id}) is not a value block")
            socket = registry.get_kind(instances[owner_id].kind_id).get_socket(name)
            if not socket.value_type.accepts(child_kind.output_type):
                raise TypeMismatch(
                    f"Socket {owner_id}.{name} expects {socket.value_type.value}, "
                    f"got {child_kind.output_type.value} from {child.kind_id!r}",
                    expected=socket.value_type.value,
                    actual=child_kind.output_type.value,
                )
        elif not child_kind.has_previous_next:
            raise StructureError(
                f"Block {target!r} ({child.kind_id}) cannot sit in a statement chain")
        child.parent = ParentLink(owner_id, edge, name)

    return instances


def check_reachable(instances: Dict[str, BlockInstance], roots: List[str]) -> None:
    """With single parents enforced, any instance unreachable from a root lies on a cycle."""
    seen: Set[str] = set()
    stack = list(roots)
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        stack.extend(instances[current].child_ids())
    stranded = [bid for bid in instances if bid not in seen]
    if stranded:
        raise StructureError("Graph contains a cycle", {'blocks': sorted(stranded)})


def rename_instances(instances: Dict[str, BlockInstance],
                     renames: Dict[str, str]) -> Dict[str, BlockInstance]:
    """Deep-copy ``instances`` with ids rewritten through ``renames``."""
    def mapped(block_id):
        return renames.get(block_id, block_id) if block_id else block_id

    result = {}
    for inst in instances.values():
        twin = copy.deepcopy(inst)
        twin.block_id = mapped(inst.block_id)
        twin.next_id = mapped(inst.next_id)
        twin.slots = {name: mapped(head) for name, head in inst.slots.items()}
        twin.sockets = {
            name: SocketBinding.of_block(mapped(b.block_id)) if b.is_block else copy.deepcopy(b)
            for name, b in inst.sockets.items()
        }
        if inst.parent is not None:
            twin.parent = ParentLink(mapped(inst.parent.parent_id), inst.parent.edge, inst.parent.name)
        result[twin.block_id] = twin
    return result
