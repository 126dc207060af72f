"""
Generator table: block kind id → generator function.

Every kind in ``p5_blocks`` has exactly one entry here; the test suite checks
the two stay in step. Statement generators return newline-terminated text,
value generators return a ``GeneratedFragment``.
"""

from typing import Dict

from .code_generator import (
    BlockContext, GeneratedFragment, GeneratorFn, Precedence, literal_fragment, quote_string,
)

P = Precedence


# =============================================================================
# Generator factories
# =============================================================================

def call_statement(function: str, *sockets: str) -> GeneratorFn:
    def generate(ctx: BlockContext) -> str:
        args = ', '.join(ctx.value(name) for name in sockets)
        return f"{function}({args});\n"
    return generate


def call_value(function: str, *sockets: str) -> GeneratorFn:
    def generate(ctx: BlockContext) -> GeneratedFragment:
        args = ', '.join(ctx.value(name) for name in sockets)
        return GeneratedFragment(f"{function}({args})", P.CALL)
    return generate


def field_statement(function: str, *fields: str) -> GeneratorFn:
    """``function(FIELD, ...)`` with field values emitted as bare constants."""
    def generate(ctx: BlockContext) -> str:
        args = ', '.join(str(ctx.field(name)) for name in fields)
        return f"{function}({args});\n"
    return generate


def colour_statement(function: str) -> GeneratorFn:
    def generate(ctx: BlockContext) -> str:
        return f"{function}({quote_string(ctx.field('COLOR'))});\n"
    return generate


def atom(code: str) -> GeneratorFn:
    fragment = GeneratedFragment(code, P.ATOMIC)
    return lambda ctx: fragment


def callback(ctx: BlockContext) -> str:
    return f"function {ctx.kind.callback}() {{\n{ctx.statements('STATEMENTS')}}}\n"


def optional_mode(function: str) -> GeneratorFn:
    """Dropdown whose ``null`` choice means "call without an argument"."""
    def generate(ctx: BlockContext) -> str:
        mode = ctx.field('MODE')
        return f"{function}();\n" if mode == 'null' else f"{function}({mode});\n"
    return generate


def binary(operator: str, precedence: Precedence, left: str = 'A', right: str = 'B') -> GeneratorFn:
    """Left operand may share the operator's rank; the right operand must bind tighter."""
    def generate(ctx: BlockContext) -> GeneratedFragment:
        a = ctx.value(left, precedence)
        b = ctx.value(right, precedence.tighter())
        return GeneratedFragment(f"{a} {operator} {b}", precedence)
    return generate


# =============================================================================
# p5 kinds with bespoke text
# =============================================================================

def _mode_call(ctx: BlockContext) -> str:
    return f"{ctx.field('MODE')}();\n"


def _arc(ctx: BlockContext) -> str:
    args = ', '.join(ctx.value(n) for n in ('X', 'Y', 'W', 'H', 'START', 'STOP'))
    return f"arc({args}, {ctx.field('MODE')});\n"


def _color_mode(ctx: BlockContext) -> str:
    return f"colorMode({ctx.field('MODE')}, {ctx.value('MAX')});\n"


def _scale(ctx: BlockContext) -> str:
    if ctx.has_value('Y'):
        return f"scale({ctx.value('S')}, {ctx.value('Y')});\n"
    return f"scale({ctx.value('S')});\n"


def _noise(ctx: BlockContext) -> GeneratedFragment:
    if ctx.has_value('Y'):
        return GeneratedFragment(f"noise({ctx.value('X')}, {ctx.value('Y')})", P.CALL)
    return GeneratedFragment(f"noise({ctx.value('X')})", P.CALL)


def _constant(ctx: BlockContext) -> GeneratedFragment:
    return GeneratedFragment(ctx.field('CONST'), P.ATOMIC)


def _vector_get(ctx: BlockContext) -> GeneratedFragment:
    return GeneratedFragment(f"{ctx.value('VEC', P.CALL)}.{ctx.field('PROP')}", P.CALL)


# =============================================================================
# Standard kinds
# =============================================================================

ARITHMETIC = {
    'ADD':      ('+', P.ADDITIVE),
    'MINUS':    ('-', P.ADDITIVE),
    'MULTIPLY': ('*', P.MULTIPLICATIVE),
    'DIVIDE':   ('/', P.MULTIPLICATIVE),
}

COMPARISON = {
    'EQ':  ('==', P.EQUALITY),
    'NEQ': ('!=', P.EQUALITY),
    'LT':  ('<',  P.RELATIONAL),
    'LTE': ('<=', P.RELATIONAL),
    'GT':  ('>',  P.RELATIONAL),
    'GTE': ('>=', P.RELATIONAL),
}

SINGLE_FUNCTIONS = {
    'ROOT':  'Math.sqrt',
    'ABS':   'Math.abs',
    'LN':    'Math.log',
    'LOG10': 'Math.log10',
    'EXP':   'Math.exp',
}

MATH_RANDOM_INT = """function mathRandomInt(a, b) {
  if (a > b) {
    var c = a;
    a = b;
    b = c;
  }
  return Math.floor(Math.random() * (b - a + 1) + a);
}
"""


def _math_number(ctx: BlockContext) -> GeneratedFragment:
    return literal_fragment(ctx.field('NUM'))


def _math_arithmetic(ctx: BlockContext) -> GeneratedFragment:
    op = ctx.field('OP')
    if op == 'POWER':
        return GeneratedFragment(f"Math.pow({ctx.value('A')}, {ctx.value('B')})", P.CALL)
    operator, precedence = ARITHMETIC[op]
    return binary(operator, precedence)(ctx)


def _math_single(ctx: BlockContext) -> GeneratedFragment:
    op = ctx.field('OP')
    if op == 'NEG':
        operand = ctx.value('NUM', P.UNARY)
        # "--x" would read as a decrement
        if operand.startswith('-'):
            operand = ' ' + operand
        return GeneratedFragment(f"-{operand}", P.UNARY)
    if op == 'POW10':
        return GeneratedFragment(f"Math.pow(10, {ctx.value('NUM')})", P.CALL)
    return GeneratedFragment(f"{SINGLE_FUNCTIONS[op]}({ctx.value('NUM')})", P.CALL)


def _math_random_int(ctx: BlockContext) -> GeneratedFragment:
    helper = ctx.run.provide_helper('mathRandomInt', MATH_RANDOM_INT)
    return GeneratedFragment(f"{helper}({ctx.value('FROM')}, {ctx.value('TO')})", P.CALL)


def _math_change(ctx: BlockContext) -> str:
    return f"{ctx.variable()} += {ctx.value('DELTA', P.ASSIGNMENT)};\n"


def _text(ctx: BlockContext) -> GeneratedFragment:
    return GeneratedFragment(quote_string(str(ctx.field('TEXT'))), P.ATOMIC)


def _text_join(ctx: BlockContext) -> GeneratedFragment:
    return GeneratedFragment(f"String({ctx.value('ADD0')}) + String({ctx.value('ADD1')})", P.ADDITIVE)


def _text_length(ctx: BlockContext) -> GeneratedFragment:
    return GeneratedFragment(f"String({ctx.value('VALUE')}).length", P.CALL)


def _logic_boolean(ctx: BlockContext) -> GeneratedFragment:
    return GeneratedFragment('true' if ctx.field('BOOL') == 'TRUE' else 'false', P.ATOMIC)


def _logic_compare(ctx: BlockContext) -> GeneratedFragment:
    operator, precedence = COMPARISON[ctx.field('OP')]
    return binary(operator, precedence)(ctx)


def _logic_operation(ctx: BlockContext) -> GeneratedFragment:
    if ctx.field('OP') == 'AND':
        return binary('&&', P.LOGICAL_AND)(ctx)
    return binary('||', P.LOGICAL_OR)(ctx)


def _logic_negate(ctx: BlockContext) -> GeneratedFragment:
    return GeneratedFragment(f"!{ctx.value('BOOL', P.UNARY)}", P.UNARY)


def _controls_if(ctx: BlockContext) -> str:
    code = f"if ({ctx.value('IF0')}) {{\n{ctx.statements('DO0')}}}"
    if ctx.instance.slots.get('ELSE'):
        code += f" else {{\n{ctx.statements('ELSE')}}}"
    return code + '\n'


def _controls_repeat(ctx: BlockContext) -> str:
    counter = ctx.run.unique_name('count')
    times = ctx.value('TIMES', P.ADDITIVE)
    return (f"for (var {counter} = 0; {counter} < {times}; {counter}++) {{\n"
            f"{ctx.statements('DO')}}}\n")


def _controls_while_until(ctx: BlockContext) -> str:
    if ctx.field('MODE') == 'UNTIL':
        condition = f"!{ctx.value('BOOL', P.UNARY)}"
    else:
        condition = ctx.value('BOOL')
    return f"while ({condition}) {{\n{ctx.statements('DO')}}}\n"


def _controls_for(ctx: BlockContext) -> str:
    var = ctx.variable()
    start = ctx.value('FROM', P.ASSIGNMENT)
    end = ctx.value('TO', P.ADDITIVE)
    step = ctx.value('BY', P.ASSIGNMENT)
    return (f"for ({var} = {start}; {var} <= {end}; {var} += {step}) {{\n"
            f"{ctx.statements('DO')}}}\n")


def _controls_flow(ctx: BlockContext) -> str:
    return 'break;\n' if ctx.field('FLOW') == 'BREAK' else 'continue;\n'


def _variables_get(ctx: BlockContext) -> GeneratedFragment:
    return GeneratedFragment(ctx.variable(), P.ATOMIC)


def _variables_set(ctx: BlockContext) -> str:
    return f"{ctx.variable()} = {ctx.value('VALUE', P.ASSIGNMENT)};\n"


def _procedure_definition(ctx: BlockContext) -> str:
    body = ctx.statements('STACK')
    if ctx.kind.get_socket('RETURN') is not None and ctx.has_value('RETURN'):
        body += f"{ctx.run.indent}return {ctx.value('RETURN')};\n"
    return f"function {ctx.identifier('NAME')}() {{\n{body}}}\n"


def _procedure_call_statement(ctx: BlockContext) -> str:
    return f"{ctx.identifier('NAME')}();\n"


def _procedure_call_value(ctx: BlockContext) -> GeneratedFragment:
    return GeneratedFragment(f"{ctx.identifier('NAME')}()", P.CALL)


# =============================================================================
# The table
# =============================================================================

P5_GENERATORS: Dict[str, GeneratorFn] = {
    # structure and events
    'p5_setup':                callback,
    'p5_draw':                 callback,
    'p5_mouse_pressed_event':  callback,
    'p5_mouse_released_event': callback,
    'p5_mouse_clicked_event':  callback,
    'p5_mouse_moved_event':    callback,
    'p5_mouse_dragged_event':  callback,
    'p5_key_pressed_event':    callback,
    'p5_key_released_event':   callback,
    'p5_key_typed_event':      callback,

    # canvas / environment
    'p5_create_canvas':  call_statement('createCanvas', 'WIDTH', 'HEIGHT'),
    'p5_frame_rate_set': call_statement('frameRate', 'RATE'),
    'p5_no_loop':        _mode_call,
    'p5_redraw':         call_statement('redraw'),
    'p5_width':          atom('width'),
    'p5_height':         atom('height'),
    'p5_frame_count':    atom('frameCount'),
    'p5_delta_time':     atom('deltaTime'),
    'p5_frame_rate_get': call_value('frameRate'),

    # shapes
    'p5_point':        call_statement('point', 'X', 'Y'),
    'p5_line':         call_statement('line', 'X1', 'Y1', 'X2', 'Y2'),
    'p5_rect':         call_statement('rect', 'X', 'Y', 'W', 'H'),
    'p5_square':       call_statement('square', 'X', 'Y', 'S'),
    'p5_ellipse':      call_statement('ellipse', 'X', 'Y', 'W', 'H'),
    'p5_circle':       call_statement('circle', 'X', 'Y', 'D'),
    'p5_triangle':     call_statement('triangle', 'X1', 'Y1', 'X2', 'Y2', 'X3', 'Y3'),
    'p5_quad':         call_statement('quad', 'X1', 'Y1', 'X2', 'Y2', 'X3', 'Y3', 'X4', 'Y4'),
    'p5_arc':          _arc,
    'p5_bezier':       call_statement('bezier', 'X1', 'Y1', 'X2', 'Y2', 'X3', 'Y3', 'X4', 'Y4'),
    'p5_curve':        call_statement('curve', 'X1', 'Y1', 'X2', 'Y2', 'X3', 'Y3', 'X4', 'Y4'),
    'p5_begin_shape':  optional_mode('beginShape'),
    'p5_end_shape':    optional_mode('endShape'),
    'p5_vertex':       call_statement('vertex', 'X', 'Y'),
    'p5_curve_vertex': call_statement('curveVertex', 'X', 'Y'),

    # colour
    'p5_background':       colour_statement('background'),
    'p5_background_value': call_statement('background', 'COLOR'),
    'p5_fill':             colour_statement('fill'),
    'p5_fill_value':       call_statement('fill', 'COLOR'),
    'p5_stroke':           colour_statement('stroke'),
    'p5_stroke_value':     call_statement('stroke', 'COLOR'),
    'p5_no_fill':          call_statement('noFill'),
    'p5_no_stroke':        call_statement('noStroke'),
    'p5_clear':            call_statement('clear'),
    'p5_color_mode':       _color_mode,
    'p5_color':            call_value('color', 'R', 'G', 'B', 'A'),
    'p5_lerp_color':       call_value('lerpColor', 'C1', 'C2', 'AMT'),
    'p5_red':              call_value('red', 'COLOR'),
    'p5_green':            call_value('green', 'COLOR'),
    'p5_blue':             call_value('blue', 'COLOR'),
    'p5_alpha':            call_value('alpha', 'COLOR'),
    'p5_hue':              call_value('hue', 'COLOR'),
    'p5_saturation':       call_value('saturation', 'COLOR'),
    'p5_brightness':       call_value('brightness', 'COLOR'),
    'p5_lightness':        call_value('lightness', 'COLOR'),

    # attributes
    'p5_stroke_weight': call_statement('strokeWeight', 'WEIGHT'),
    'p5_stroke_cap':    field_statement('strokeCap', 'CAP'),
    'p5_stroke_join':   field_statement('strokeJoin', 'JOIN'),
    'p5_rect_mode':     field_statement('rectMode', 'MODE'),
    'p5_ellipse_mode':  field_statement('ellipseMode', 'MODE'),
    'p5_smooth':        _mode_call,
    'p5_blend_mode':    field_statement('blendMode', 'MODE'),

    # transform
    'p5_translate':    call_statement('translate', 'X', 'Y'),
    'p5_rotate':       call_statement('rotate', 'ANGLE'),
    'p5_scale':        _scale,
    'p5_shear_x':      call_statement('shearX', 'ANGLE'),
    'p5_shear_y':      call_statement('shearY', 'ANGLE'),
    'p5_push':         call_statement('push'),
    'p5_pop':          call_statement('pop'),
    'p5_reset_matrix': call_statement('resetMatrix'),

    # input
    'p5_mouse_x':          atom('mouseX'),
    'p5_mouse_y':          atom('mouseY'),
    'p5_pmouse_x':         atom('pmouseX'),
    'p5_pmouse_y':         atom('pmouseY'),
    'p5_mouse_is_pressed': atom('mouseIsPressed'),
    'p5_mouse_button':     atom('mouseButton'),
    'p5_key':              atom('key'),
    'p5_key_code':         atom('keyCode'),
    'p5_key_is_pressed':   atom('keyIsPressed'),
    'p5_key_is_down':      call_value('keyIsDown', 'CODE'),

    # typography
    'p5_text':         call_statement('text', 'STR', 'X', 'Y'),
    'p5_text_size':    call_statement('textSize', 'SIZE'),
    'p5_text_align':   field_statement('textAlign', 'HORIZ', 'VERT'),
    'p5_text_style':   field_statement('textStyle', 'STYLE'),
    'p5_text_leading': call_statement('textLeading', 'LEADING'),
    'p5_text_width':   call_value('textWidth', 'STR'),

    # calculation
    'p5_dist':      call_value('dist', 'X1', 'Y1', 'X2', 'Y2'),
    'p5_lerp':      call_value('lerp', 'START', 'STOP', 'AMT'),
    'p5_constrain': call_value('constrain', 'N', 'LOW', 'HIGH'),
    'p5_map':       call_value('map', 'VALUE', 'START1', 'STOP1', 'START2', 'STOP2'),
    'p5_mag':       call_value('mag', 'A', 'B'),
    'p5_random':    call_value('random', 'MIN', 'MAX'),
    'p5_noise':     _noise,
    'p5_radians':   call_value('radians', 'DEG'),
    'p5_degrees':   call_value('degrees', 'RAD'),
    'p5_sin':       call_value('sin', 'ANGLE'),
    'p5_cos':       call_value('cos', 'ANGLE'),
    'p5_tan':       call_value('tan', 'ANGLE'),
    'p5_atan2':     call_value('atan2', 'Y', 'X'),
    'p5_constant':  _constant,

    # vectors
    'p5_create_vector': call_value('createVector', 'X', 'Y', 'Z'),
    'p5_vector_get':    _vector_get,

    # logic
    'controls_if':     _controls_if,
    'logic_compare':   _logic_compare,
    'logic_operation': _logic_operation,
    'logic_negate':    _logic_negate,
    'logic_boolean':   _logic_boolean,

    # loops
    'controls_repeat_ext':      _controls_repeat,
    'controls_whileUntil':      _controls_while_until,
    'controls_for':             _controls_for,
    'controls_flow_statements': _controls_flow,

    # math
    'math_number':     _math_number,
    'math_arithmetic': _math_arithmetic,
    'add':             binary('+', P.ADDITIVE),
    'subtract':        binary('-', P.ADDITIVE),
    'math_modulo':     binary('%', P.MULTIPLICATIVE, 'DIVIDEND', 'DIVISOR'),
    'math_single':     _math_single,
    'math_random_int': _math_random_int,
    'math_change':     _math_change,

    # text
    'text':        _text,
    'text_join':   _text_join,
    'text_length': _text_length,

    # variables and procedures
    'variables_get':           _variables_get,
    'variables_set':           _variables_set,
    'procedures_defnoreturn':  _procedure_definition,
    'procedures_defreturn':    _procedure_definition,
    'procedures_callnoreturn': _procedure_call_statement,
    'procedures_callreturn':   _procedure_call_value,
}
