"""
Conversion between Blockly workspace JSON and ProgramGraph.

The rendering surface and the agent exchange workspaces in Blockly's nested
serialization::

    {
      "blocks": {
        "languageVersion": 0,
        "blocks": [
          {"type": "p5_setup", "id": "s1", "x": 20, "y": 20,
           "inputs": {"STATEMENTS": {"block": {"type": "p5_circle", ...,
                                              "next": {"block": {...}}}}}}
        ]
      },
      "variables": [{"name": "score", "id": "v1"}]
    }

Import flattens this into the serialized graph format and hands it to
``ProgramGraph.deserialize`` so all shape and type validation happens in one
place. Shadow blocks are imported as ordinary bound blocks. On export, socket
literals become shadow blocks of the matching standard kind.
"""

import logging
from typing import Any, Dict, List, Optional

from .block_registry import BlockRegistry, get_default_registry
from .block_schema import FieldType
from .exceptions import StructureError
from .program_graph import FORMAT_VERSION, ProgramGraph, new_block_id

logger = logging.getLogger(__name__)

TOP_LEVEL_X = 20
TOP_LEVEL_Y_STEP = 200


def is_blockly_workspace(data: Any) -> bool:
    """True for Blockly's nested shape, False for the flat serialized graph."""
    if not isinstance(data, dict):
        return False
    blocks = data.get('blocks')
    return isinstance(blocks, dict) and (
        'languageVersion' in blocks or isinstance(blocks.get('blocks'), list)
    )


class _Flattener:
    def __init__(self, registry: BlockRegistry, variables: Dict[str, str]):
        self.registry = registry
        self.variables = variables
        self.blocks: Dict[str, Dict[str, Any]] = {}

    def _block_id(self, raw: Dict[str, Any]) -> str:
        block_id = raw.get('id') or new_block_id()
        if not isinstance(block_id, str):
            raise StructureError(f"Blockly block id must be a string, got {block_id!r}")
        if block_id in self.blocks:
            raise StructureError(f"Duplicate Blockly block id {block_id!r}", {'block_id': block_id})
        return block_id

    def _field_value(self, kind_id: str, name: str, value: Any) -> Any:
        literal = self.registry.get_kind(kind_id).get_field(name)
        if literal is None or literal.field_type is not FieldType.VARIABLE:
            return value
        if isinstance(value, dict):
            if 'id' in value:
                if not isinstance(value['id'], str):
                    raise StructureError(f"Variable id must be a string, got {value['id']!r}")
                try:
                    return self.variables[value['id']]
                except KeyError:
                    raise StructureError(f"Unknown variable id {value['id']!r}",
                                         {'variable_id': value['id']}) from None
            if 'name' in value:
                return value['name']
            raise StructureError(f"Variable field {name!r} needs an id or a name")
        return value

    @staticmethod
    def _input_block(name: str, raw_input: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(raw_input, dict):
            raise StructureError(f"Blockly input {name!r} must be an object")
        block = raw_input.get('block') or raw_input.get('shadow')
        if block is not None and not isinstance(block, dict):
            raise StructureError(f"Blockly input {name!r} holds a malformed block")
        return block

    def chain(self, raw: Optional[Dict[str, Any]]) -> Optional[str]:
        """Flatten ``raw`` and everything chained after it; return the head id."""
        head_id = None
        previous = None
        while raw is not None:
            block_id = self.block(raw)
            if previous is None:
                head_id = block_id
            else:
                self.blocks[previous]['next'] = block_id
            previous = block_id
            nxt = raw.get('next')
            raw = self._input_block('next', nxt) if nxt is not None else None
        return head_id

    def block(self, raw: Dict[str, Any]) -> str:
        if not isinstance(raw, dict) or not isinstance(raw.get('type'), str):
            raise StructureError("Every Blockly block needs a string 'type'")
        kind_id = raw['type']
        kind = self.registry.get_kind(kind_id)
        block_id = self._block_id(raw)
        record: Dict[str, Any] = {'kind': kind_id, 'fields': {}}
        self.blocks[block_id] = record

        raw_fields = raw.get('fields') or {}
        raw_inputs = raw.get('inputs') or {}
        if not isinstance(raw_fields, dict) or not isinstance(raw_inputs, dict):
            raise StructureError(f"Blockly block {block_id!r} fields and inputs must be objects",
                                 {'block_id': block_id})

        for name, value in raw_fields.items():
            record['fields'][name] = self._field_value(kind_id, name, value)

        for name, raw_input in raw_inputs.items():
            nested = self._input_block(name, raw_input)
            if kind.get_slot(name) is not None:
                record.setdefault('slots', {})[name] = self.chain(nested) if nested else None
            elif kind.get_socket(name) is not None:
                if nested is not None:
                    record.setdefault('sockets', {})[name] = {'block': self.block(nested)}
            else:
                raise StructureError(f"Kind {kind_id!r} has no input {name!r}",
                                     {'block_id': block_id, 'input': name})
        return block_id


def from_blockly_json(data: Dict[str, Any], registry: Optional[BlockRegistry] = None) -> ProgramGraph:
    """Build a ProgramGraph from a Blockly workspace serialization."""
    registry = registry or get_default_registry()
    if not is_blockly_workspace(data):
        raise StructureError("Not a Blockly workspace: expected {'blocks': {'blocks': [...]}}")

    raw_variables = data.get('variables') or []
    top_level = data['blocks'].get('blocks') or []
    if not isinstance(raw_variables, list) or not isinstance(top_level, list):
        raise StructureError("Blockly 'variables' and 'blocks.blocks' must be lists")

    variables = {}
    for var in raw_variables:
        if not (isinstance(var, dict) and isinstance(var.get('id'), str)
                and isinstance(var.get('name'), str)):
            raise StructureError(f"Malformed Blockly variable entry {var!r}")
        variables[var['id']] = var['name']

    flattener = _Flattener(registry, variables)
    entry_points = []
    for raw in top_level:
        head = flattener.chain(raw)
        if registry.get_kind(flattener.blocks[head]['kind']).is_entry_point:
            entry_points.append(head)

    graph = ProgramGraph.deserialize({
        'version': FORMAT_VERSION,
        'entry_points': entry_points,
        'blocks': flattener.blocks,
    }, registry)
    logger.debug("Imported Blockly workspace: %d blocks", len(graph))
    return graph


# =============================================================================
# Export
# =============================================================================

def _variable_id(name: str) -> str:
    return f"var-{name}"


def _literal_shadow(value: Any) -> Dict[str, Any]:
    if isinstance(value, bool):
        return {'type': 'logic_boolean', 'fields': {'BOOL': 'TRUE' if value else 'FALSE'}}
    if isinstance(value, (int, float)):
        return {'type': 'math_number', 'fields': {'NUM': value}}
    if isinstance(value, list):
        inputs = {axis: {'shadow': _literal_shadow(v)} for axis, v in zip('XYZ', value)}
        return {'type': 'p5_create_vector', 'inputs': inputs}
    return {'type': 'text', 'fields': {'TEXT': str(value)}}


class _Expander:
    def __init__(self, graph: ProgramGraph):
        self.graph = graph
        self.variable_names: List[str] = []

    def chain(self, head_id: Optional[str]) -> Optional[Dict[str, Any]]:
        ids = self.graph.chain(head_id)
        result = None
        for block_id in reversed(ids):
            block = self.block(block_id)
            if result is not None:
                block['next'] = {'block': result}
            result = block
        return result

    def block(self, block_id: str) -> Dict[str, Any]:
        instance = self.graph.get(block_id)
        kind = self.graph.kind_of(instance)
        raw: Dict[str, Any] = {'type': instance.kind_id, 'id': block_id}

        fields = {}
        for literal in kind.fields:
            value = instance.fields.get(literal.name, literal.default)
            if literal.field_type is FieldType.VARIABLE:
                if value not in self.variable_names:
                    self.variable_names.append(value)
                value = {'id': _variable_id(value)}
            fields[literal.name] = value
        if fields:
            raw['fields'] = fields

        inputs = {}
        for socket in kind.sockets:
            binding = instance.sockets.get(socket.name)
            if binding is None:
                continue
            if binding.is_block:
                inputs[socket.name] = {'block': self.block(binding.block_id)}
            else:
                inputs[socket.name] = {'shadow': _literal_shadow(binding.literal)}
        for slot in kind.slots:
            head = instance.slots.get(slot.name)
            if head:
                inputs[slot.name] = {'block': self.chain(head)}
        if inputs:
            raw['inputs'] = inputs
        return raw


def to_blockly_json(graph: ProgramGraph) -> Dict[str, Any]:
    """Nested Blockly serialization of ``graph``; top-level stacks are laid out in a column."""
    expander = _Expander(graph)
    top_level = []
    for index, root in enumerate(graph.entry_points + graph.detached_roots()):
        raw = expander.chain(root)
        raw['x'] = TOP_LEVEL_X
        raw['y'] = TOP_LEVEL_X + index * TOP_LEVEL_Y_STEP
        top_level.append(raw)
    workspace: Dict[str, Any] = {'blocks': {'languageVersion': 0, 'blocks': top_level}}
    if expander.variable_names:
        workspace['variables'] = [
            {'name': name, 'id': _variable_id(name)} for name in expander.variable_names
        ]
    return workspace
