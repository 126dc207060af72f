"""
Built-in block catalog.

Every kind the editor toolbox offers: the p5 drawing/input surface plus the
standard logic, loop, math, text, variable and procedure kinds. Socket
defaults are the literal text emitted when a socket is left unbound.
"""

from typing import Iterable, List, Optional, Sequence

from .block_schema import (
    BlockKind, BlockShape, FieldType, LiteralField, StatementSlot, ValueSocket,
    ValueType, dropdown, number_socket,
)


# Category colours (Blockly hue values)
HUE_STRUCTURE = 210
HUE_ENVIRONMENT = 230
HUE_SHAPE = 160
HUE_COLOUR = 20
HUE_INPUT = 30
HUE_VECTOR = 260
HUE_LOGIC = 210
HUE_LOOP = 120
HUE_MATH = 230
HUE_TEXT = 160
HUE_VARIABLE = 330
HUE_PROCEDURE = 290

# kind id → generated callback name
ENTRY_POINT_CALLBACKS = {
    'p5_setup':                'setup',
    'p5_draw':                 'draw',
    'p5_mouse_pressed_event':  'mousePressed',
    'p5_mouse_released_event': 'mouseReleased',
    'p5_mouse_clicked_event':  'mouseClicked',
    'p5_mouse_moved_event':    'mouseMoved',
    'p5_mouse_dragged_event':  'mouseDragged',
    'p5_key_pressed_event':    'keyPressed',
    'p5_key_released_event':   'keyReleased',
    'p5_key_typed_event':      'keyTyped',
}


def numbers(spec: str) -> List[ValueSocket]:
    """Build number sockets from ``"X=0 Y=0 D=50"``; ``Y=`` makes an optional socket."""
    sockets = []
    for item in spec.split():
        name, _, default = item.partition('=')
        sockets.append(number_socket(name, default or None))
    return sockets


def socket(name: str, value_type: ValueType = ValueType.ANY,
           default: Optional[str] = None) -> ValueSocket:
    return ValueSocket(name, value_type, default, name.lower())


def entry(kind_id: str, category: str, colour: int, tooltip: str = "") -> BlockKind:
    return BlockKind(
        kind_id, BlockShape.ENTRY,
        slots=[StatementSlot('STATEMENTS')],
        category=category, colour=colour, tooltip=tooltip,
        callback=ENTRY_POINT_CALLBACKS[kind_id],
    )


def statement(kind_id: str, category: str, colour: int,
              sockets: Iterable[ValueSocket] = (),
              fields: Iterable[LiteralField] = (),
              slots: Sequence[str] = (),
              tooltip: str = "") -> BlockKind:
    return BlockKind(
        kind_id, BlockShape.STATEMENT,
        sockets=list(sockets), fields=list(fields),
        slots=[StatementSlot(name) for name in slots],
        category=category, colour=colour, tooltip=tooltip,
    )


def value(kind_id: str, output: ValueType, category: str, colour: int,
          sockets: Iterable[ValueSocket] = (),
          fields: Iterable[LiteralField] = (),
          tooltip: str = "") -> BlockKind:
    return BlockKind(
        kind_id, BlockShape.VALUE,
        sockets=list(sockets), fields=list(fields), output_type=output,
        category=category, colour=colour, tooltip=tooltip,
    )


def colour_field(default: str) -> LiteralField:
    return LiteralField('COLOR', FieldType.COLOR, default)


def variable_field(default: str = 'item') -> LiteralField:
    return LiteralField('VAR', FieldType.VARIABLE, default)


N = ValueType.NUMBER


def p5_kinds() -> List[BlockKind]:
    """The p5 drawing, input and math kinds."""
    kinds = [
        # --- structure -------------------------------------------------------
        entry('p5_setup', 'Structure', HUE_STRUCTURE,
              "Called once when the program starts."),
        entry('p5_draw', 'Structure', HUE_STRUCTURE,
              "Called continuously until the program is stopped."),

        # --- canvas / environment -------------------------------------------
        statement('p5_create_canvas', 'Canvas', HUE_ENVIRONMENT, numbers("WIDTH=400 HEIGHT=400")),
        statement('p5_frame_rate_set', 'Canvas', HUE_ENVIRONMENT, numbers("RATE=60")),
        statement('p5_no_loop', 'Canvas', HUE_ENVIRONMENT, fields=[dropdown('MODE', ['noLoop', 'loop'])]),
        statement('p5_redraw', 'Canvas', HUE_ENVIRONMENT),
        value('p5_width', N, 'Canvas', HUE_ENVIRONMENT),
        value('p5_height', N, 'Canvas', HUE_ENVIRONMENT),
        value('p5_frame_count', N, 'Canvas', HUE_ENVIRONMENT),
        value('p5_delta_time', N, 'Canvas', HUE_ENVIRONMENT),
        value('p5_frame_rate_get', N, 'Canvas', HUE_ENVIRONMENT),

        # --- shapes ----------------------------------------------------------
        statement('p5_point', 'Shapes', HUE_SHAPE, numbers("X=0 Y=0")),
        statement('p5_line', 'Shapes', HUE_SHAPE, numbers("X1=0 Y1=0 X2=0 Y2=0")),
        statement('p5_rect', 'Shapes', HUE_SHAPE, numbers("X=0 Y=0 W=50 H=50")),
        statement('p5_square', 'Shapes', HUE_SHAPE, numbers("X=0 Y=0 S=50")),
        statement('p5_ellipse', 'Shapes', HUE_SHAPE, numbers("X=0 Y=0 W=50 H=50")),
        statement('p5_circle', 'Shapes', HUE_SHAPE, numbers("X=0 Y=0 D=50")),
        statement('p5_triangle', 'Shapes', HUE_SHAPE, numbers("X1=0 Y1=0 X2=0 Y2=0 X3=0 Y3=0")),
        statement('p5_quad', 'Shapes', HUE_SHAPE, numbers("X1=0 Y1=0 X2=0 Y2=0 X3=0 Y3=0 X4=0 Y4=0")),
        statement('p5_arc', 'Shapes', HUE_SHAPE, numbers("X=0 Y=0 W=50 H=50 START=0 STOP=PI"),
                  fields=[dropdown('MODE', ['CHORD', 'PIE', 'OPEN'])]),
        statement('p5_bezier', 'Shapes', HUE_SHAPE, numbers("X1=0 Y1=0 X2=0 Y2=0 X3=0 Y3=0 X4=0 Y4=0")),
        statement('p5_curve', 'Shapes', HUE_SHAPE, numbers("X1=0 Y1=0 X2=0 Y2=0 X3=0 Y3=0 X4=0 Y4=0")),
        statement('p5_begin_shape', 'Shapes', HUE_SHAPE, fields=[dropdown('MODE', [
            'null', 'POINTS', 'LINES', 'TRIANGLES', 'TRIANGLE_FAN',
            'TRIANGLE_STRIP', 'QUADS', 'QUAD_STRIP'])]),
        statement('p5_end_shape', 'Shapes', HUE_SHAPE, fields=[dropdown('MODE', ['CLOSE', 'null'])]),
        statement('p5_vertex', 'Shapes', HUE_SHAPE, numbers("X=0 Y=0")),
        statement('p5_curve_vertex', 'Shapes', HUE_SHAPE, numbers("X=0 Y=0")),

        # --- colour ----------------------------------------------------------
        statement('p5_background', 'Color', HUE_COLOUR, fields=[colour_field('#000000')]),
        statement('p5_background_value', 'Color', HUE_COLOUR, [socket('COLOR', default="'#000000'")]),
        statement('p5_fill', 'Color', HUE_COLOUR, fields=[colour_field('#ffffff')]),
        statement('p5_fill_value', 'Color', HUE_COLOUR, [socket('COLOR', default="'#ffffff'")]),
        statement('p5_stroke', 'Color', HUE_COLOUR, fields=[colour_field('#ffffff')]),
        statement('p5_stroke_value', 'Color', HUE_COLOUR, [socket('COLOR', default="'#ffffff'")]),
        statement('p5_no_fill', 'Color', HUE_COLOUR),
        statement('p5_no_stroke', 'Color', HUE_COLOUR),
        statement('p5_clear', 'Color', HUE_COLOUR),
        statement('p5_color_mode', 'Color', HUE_COLOUR, numbers("MAX=255"),
                  fields=[dropdown('MODE', ['RGB', 'HSB', 'HSL'])]),
        value('p5_color', ValueType.COLOR, 'Color', HUE_COLOUR, numbers("R=255 G=255 B=255 A=255")),
        value('p5_lerp_color', ValueType.COLOR, 'Color', HUE_COLOUR, [
            socket('C1', default='color(0)'),
            socket('C2', default='color(255)'),
            number_socket('AMT', '0.5'),
        ]),
    ]
    for channel in ('red', 'green', 'blue', 'alpha', 'hue', 'saturation', 'brightness', 'lightness'):
        kinds.append(value(f'p5_{channel}', N, 'Color', HUE_COLOUR, [socket('COLOR', default='color(0)')]))

    kinds += [
        # --- attributes ------------------------------------------------------
        statement('p5_stroke_weight', 'Attributes', HUE_COLOUR, numbers("WEIGHT=1")),
        statement('p5_stroke_cap', 'Attributes', HUE_COLOUR,
                  fields=[dropdown('CAP', ['ROUND', 'SQUARE', 'PROJECT'])]),
        statement('p5_stroke_join', 'Attributes', HUE_COLOUR,
                  fields=[dropdown('JOIN', ['MITER', 'BEVEL', 'ROUND'])]),
        statement('p5_rect_mode', 'Attributes', HUE_SHAPE,
                  fields=[dropdown('MODE', ['CORNER', 'CORNERS', 'CENTER', 'RADIUS'])]),
        statement('p5_ellipse_mode', 'Attributes', HUE_SHAPE,
                  fields=[dropdown('MODE', ['CENTER', 'RADIUS', 'CORNER', 'CORNERS'])]),
        statement('p5_smooth', 'Attributes', HUE_SHAPE, fields=[dropdown('MODE', ['smooth', 'noSmooth'])]),
        statement('p5_blend_mode', 'Attributes', HUE_COLOUR, fields=[dropdown('MODE', [
            'ADD', 'DARKEST', 'LIGHTEST', 'DIFFERENCE', 'MULTIPLY', 'SCREEN', 'REPLACE', 'OVERLAY'])]),

        # --- transform -------------------------------------------------------
        statement('p5_translate', 'Transform', HUE_ENVIRONMENT, numbers("X=0 Y=0")),
        statement('p5_rotate', 'Transform', HUE_ENVIRONMENT, numbers("ANGLE=0")),
        statement('p5_scale', 'Transform', HUE_ENVIRONMENT, numbers("S=1 Y=")),
        statement('p5_shear_x', 'Transform', HUE_ENVIRONMENT, numbers("ANGLE=0")),
        statement('p5_shear_y', 'Transform', HUE_ENVIRONMENT, numbers("ANGLE=0")),
        statement('p5_push', 'Transform', HUE_ENVIRONMENT),
        statement('p5_pop', 'Transform', HUE_ENVIRONMENT),
        statement('p5_reset_matrix', 'Transform', HUE_ENVIRONMENT),

        # --- mouse -----------------------------------------------------------
        value('p5_mouse_x', N, 'Input', HUE_INPUT),
        value('p5_mouse_y', N, 'Input', HUE_INPUT),
        value('p5_pmouse_x', N, 'Input', HUE_INPUT),
        value('p5_pmouse_y', N, 'Input', HUE_INPUT),
        value('p5_mouse_is_pressed', ValueType.BOOLEAN, 'Input', HUE_INPUT),
        value('p5_mouse_button', ValueType.STRING, 'Input', HUE_INPUT),
        entry('p5_mouse_pressed_event', 'Events', HUE_INPUT),
        entry('p5_mouse_released_event', 'Events', HUE_INPUT),
        entry('p5_mouse_clicked_event', 'Events', HUE_INPUT),
        entry('p5_mouse_moved_event', 'Events', HUE_INPUT),
        entry('p5_mouse_dragged_event', 'Events', HUE_INPUT),

        # --- keyboard --------------------------------------------------------
        value('p5_key', ValueType.STRING, 'Input', HUE_INPUT),
        value('p5_key_code', N, 'Input', HUE_INPUT),
        value('p5_key_is_pressed', ValueType.BOOLEAN, 'Input', HUE_INPUT),
        value('p5_key_is_down', ValueType.BOOLEAN, 'Input', HUE_INPUT, numbers("CODE=0")),
        entry('p5_key_pressed_event', 'Events', HUE_INPUT),
        entry('p5_key_released_event', 'Events', HUE_INPUT),
        entry('p5_key_typed_event', 'Events', HUE_INPUT),

        # --- text ------------------------------------------------------------
        statement('p5_text', 'Typography', HUE_SHAPE,
                  [socket('STR', ValueType.STRING, "''")] + numbers("X=0 Y=0")),
        statement('p5_text_size', 'Typography', HUE_SHAPE, numbers("SIZE=12")),
        statement('p5_text_align', 'Typography', HUE_SHAPE, fields=[
            dropdown('HORIZ', ['LEFT', 'CENTER', 'RIGHT']),
            dropdown('VERT', ['TOP', 'BOTTOM', 'CENTER', 'BASELINE']),
        ]),
        statement('p5_text_style', 'Typography', HUE_SHAPE,
                  fields=[dropdown('STYLE', ['NORMAL', 'ITALIC', 'BOLD', 'BOLDITALIC'])]),
        statement('p5_text_leading', 'Typography', HUE_SHAPE, numbers("LEADING=15")),
        value('p5_text_width', N, 'Typography', HUE_SHAPE, [socket('STR', ValueType.STRING, "''")]),

        # --- p5 math ---------------------------------------------------------
        value('p5_dist', N, 'Calculation', HUE_MATH, numbers("X1=0 Y1=0 X2=0 Y2=0")),
        value('p5_lerp', N, 'Calculation', HUE_MATH, numbers("START=0 STOP=1 AMT=0.5")),
        value('p5_constrain', N, 'Calculation', HUE_MATH, numbers("N=0 LOW=0 HIGH=100")),
        value('p5_map', N, 'Calculation', HUE_MATH, numbers("VALUE=0 START1=0 STOP1=1 START2=0 STOP2=100")),
        value('p5_mag', N, 'Calculation', HUE_MATH, numbers("A=0 B=0")),
        value('p5_random', N, 'Calculation', HUE_MATH, numbers("MIN=0 MAX=1")),
        value('p5_noise', N, 'Calculation', HUE_MATH, numbers("X=0 Y=")),
        value('p5_radians', N, 'Calculation', HUE_MATH, numbers("DEG=0")),
        value('p5_degrees', N, 'Calculation', HUE_MATH, numbers("RAD=0")),
        value('p5_sin', N, 'Calculation', HUE_MATH, numbers("ANGLE=0")),
        value('p5_cos', N, 'Calculation', HUE_MATH, numbers("ANGLE=0")),
        value('p5_tan', N, 'Calculation', HUE_MATH, numbers("ANGLE=0")),
        value('p5_atan2', N, 'Calculation', HUE_MATH, numbers("Y=0 X=1")),
        value('p5_constant', N, 'Calculation', HUE_MATH,
              fields=[dropdown('CONST', ['PI', 'TWO_PI', 'HALF_PI', 'QUARTER_PI', 'TAU'])]),

        # --- vectors ---------------------------------------------------------
        value('p5_create_vector', ValueType.VECTOR, 'Vectors', HUE_VECTOR, numbers("X=0 Y=0 Z=0")),
        value('p5_vector_get', N, 'Vectors', HUE_VECTOR,
              [socket('VEC', ValueType.VECTOR, 'createVector()')],
              fields=[dropdown('PROP', ['x', 'y', 'z'])]),
    ]
    return kinds


def standard_kinds() -> List[BlockKind]:
    """Logic, loops, math, text, variables and procedures."""
    b = ValueType.BOOLEAN
    return [
        # --- logic -----------------------------------------------------------
        statement('controls_if', 'Logic', HUE_LOGIC,
                  [socket('IF0', b, 'false')], slots=['DO0', 'ELSE']),
        value('logic_compare', b, 'Logic', HUE_LOGIC,
              [socket('A', default='0'), socket('B', default='0')],
              fields=[dropdown('OP', ['EQ', 'NEQ', 'LT', 'LTE', 'GT', 'GTE'])]),
        value('logic_operation', b, 'Logic', HUE_LOGIC,
              [socket('A', b, 'false'), socket('B', b, 'false')],
              fields=[dropdown('OP', ['AND', 'OR'])]),
        value('logic_negate', b, 'Logic', HUE_LOGIC, [socket('BOOL', b, 'true')]),
        value('logic_boolean', b, 'Logic', HUE_LOGIC, fields=[dropdown('BOOL', ['TRUE', 'FALSE'])]),

        # --- loops -----------------------------------------------------------
        statement('controls_repeat_ext', 'Loops', HUE_LOOP, numbers("TIMES=10"), slots=['DO']),
        statement('controls_whileUntil', 'Loops', HUE_LOOP, [socket('BOOL', b, 'false')],
                  fields=[dropdown('MODE', ['WHILE', 'UNTIL'])], slots=['DO']),
        statement('controls_for', 'Loops', HUE_LOOP, numbers("FROM=1 TO=10 BY=1"),
                  fields=[variable_field('i')], slots=['DO']),
        statement('controls_flow_statements', 'Loops', HUE_LOOP,
                  fields=[dropdown('FLOW', ['BREAK', 'CONTINUE'])]),

        # --- math ------------------------------------------------------------
        value('math_number', N, 'Math', HUE_MATH,
              fields=[LiteralField('NUM', FieldType.NUMBER, 0)]),
        value('math_arithmetic', N, 'Math', HUE_MATH, numbers("A=0 B=0"),
              fields=[dropdown('OP', ['ADD', 'MINUS', 'MULTIPLY', 'DIVIDE', 'POWER'])]),
        value('add', N, 'Math', HUE_MATH, numbers("A=0 B=0"), tooltip="a + b"),
        value('subtract', N, 'Math', HUE_MATH, numbers("A=0 B=0"), tooltip="a - b"),
        value('math_modulo', N, 'Math', HUE_MATH, numbers("DIVIDEND=0 DIVISOR=0")),
        value('math_single', N, 'Math', HUE_MATH, numbers("NUM=0"),
              fields=[dropdown('OP', ['ROOT', 'ABS', 'NEG', 'LN', 'LOG10', 'EXP', 'POW10'])]),
        value('math_random_int', N, 'Math', HUE_MATH, numbers("FROM=0 TO=0")),
        statement('math_change', 'Variables', HUE_VARIABLE, numbers("DELTA=1"),
                  fields=[variable_field()]),

        # --- text ------------------------------------------------------------
        value('text', ValueType.STRING, 'Text', HUE_TEXT,
              fields=[LiteralField('TEXT', FieldType.TEXT, '')]),
        value('text_join', ValueType.STRING, 'Text', HUE_TEXT,
              [socket('ADD0', default="''"), socket('ADD1', default="''")]),
        value('text_length', N, 'Text', HUE_TEXT, [socket('VALUE', ValueType.STRING, "''")]),

        # --- variables -------------------------------------------------------
        value('variables_get', ValueType.ANY, 'Variables', HUE_VARIABLE, fields=[variable_field()]),
        statement('variables_set', 'Variables', HUE_VARIABLE, [socket('VALUE', default='0')],
                  fields=[variable_field()]),

        # --- procedures ------------------------------------------------------
        BlockKind(
            'procedures_defnoreturn', BlockShape.ENTRY,
            slots=[StatementSlot('STACK')],
            fields=[LiteralField('NAME', FieldType.TEXT, 'do_something')],
            category='Functions', colour=HUE_PROCEDURE, callback_field='NAME',
        ),
        BlockKind(
            'procedures_defreturn', BlockShape.ENTRY,
            sockets=[socket('RETURN')],
            slots=[StatementSlot('STACK')],
            fields=[LiteralField('NAME', FieldType.TEXT, 'do_something')],
            category='Functions', colour=HUE_PROCEDURE, callback_field='NAME',
        ),
        statement('procedures_callnoreturn', 'Functions', HUE_PROCEDURE,
                  fields=[LiteralField('NAME', FieldType.TEXT, 'do_something')]),
        value('procedures_callreturn', ValueType.ANY, 'Functions', HUE_PROCEDURE,
              fields=[LiteralField('NAME', FieldType.TEXT, 'do_something')]),
    ]


def builtin_kinds() -> List[BlockKind]:
    return p5_kinds() + standard_kinds()


def register_builtin_kinds(registry) -> None:
    registry.register_many(builtin_kinds())
