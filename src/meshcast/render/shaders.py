"""
shaders.py

GLSL 330 program text for the scalar mesh layer.

Two variants share the projection and color-mapping code:

- ``single``: colors each vertex by its field value; depth exaggeration
  replaces the projected elevation with ``value * depthScale``.
- ``split``: draws a white divider at the pointer and colors the left and
  right halves with fields A and B. Both fields are currently taken from the
  vertex elevation; no second value buffer is bound. Depth exaggeration here
  scales the projected elevation (``z * depthScale``) instead of using the
  value.

The band count is compiled into the fragment shader as the size of the
``colorBands`` uniform array, so a program is only valid for one band count.
"""
from meshcast.config import ENCODING, RENDER

SINGLE = 'single'
SPLIT = 'split'
MODES = (SINGLE, SPLIT)

_PROJECTION = """
uniform mat4 projection;
uniform vec3 origin;
uniform float unitsPerMeter;

const float PI = 3.141592653589793;
const float TILE_SIZE = 512.0;

// lon/lat/elevation -> web mercator common space, relative to origin
vec3 project_position(vec3 lonLatZ) {
    float x = (lonLatZ.x + 180.0) / 360.0 * TILE_SIZE;
    float latRad = radians(clamp(lonLatZ.y, -85.051129, 85.051129));
    float y = (PI + log(tan(PI * 0.25 + latRad * 0.5))) / (2.0 * PI) * TILE_SIZE;
    return vec3(x, y, lonLatZ.z * unitsPerMeter) - origin;
}
"""

_SINGLE_VS = """#version 330
{projection}
in vec3 positions;
in float dfs_values;

uniform bool showDepth;
uniform float depthScale;

out float dfs_value;

void main() {{
    dfs_value = dfs_values;
    vec3 center = project_position(positions);
    if (showDepth) {{
        center.z = dfs_value * depthScale;
    }}
    gl_Position = projection * vec4(center, 1.0);
}}
"""

_SPLIT_VS = """#version 330
{projection}
in vec3 positions;

uniform bool showDepth;
uniform float depthScale;

out float dfs_value_a;
out float dfs_value_b;

void main() {{
    dfs_value_a = positions.z;
    dfs_value_b = positions.z;
    vec3 center = project_position(positions);
    if (showDepth) {{
        center.z = center.z * depthScale;
    }}
    gl_Position = projection * vec4(center, 1.0);
}}
"""

_VALUE_TO_COLOR = """
struct ColorBand {{
    float value;
    vec4 color;
}};

uniform ColorBand colorBands[{num_bands}];

const float missingValue = {sentinel};
const vec4 neutralColor = vec4({neutral});

vec4 valueToColor(float value) {{
    if (value == missingValue) {{
        return neutralColor;
    }}
    if (value <= colorBands[0].value) {{
        return colorBands[0].color;
    }}
    vec4 outColor = vec4(0.0);
    for (int i = 0; i < {last_pair}; ++i) {{
        float t = (value - colorBands[i].value) / (colorBands[i + 1].value - colorBands[i].value);
        outColor = mix(colorBands[i].color, colorBands[i + 1].color, t);
        if (value <= colorBands[i + 1].value) {{
            break;
        }}
    }}
    return outColor;
}}
"""

_SINGLE_FS = """#version 330
{value_to_color}
in float dfs_value;
out vec4 fragColor;

void main() {{
    fragColor = valueToColor(dfs_value);
}}
"""

_SPLIT_FS = """#version 330
{value_to_color}
in float dfs_value_a;
in float dfs_value_b;
out vec4 fragColor;

uniform float screenWidth;
uniform float mouseX;
const float lineWidth = {line_width};

void main() {{
    float mousePosX = clamp(mouseX, 0.0, screenWidth);
    if (gl_FragCoord.x >= mousePosX - lineWidth && gl_FragCoord.x <= mousePosX + lineWidth) {{
        fragColor = vec4(1.0, 1.0, 1.0, 1.0);
    }} else if (gl_FragCoord.x < mousePosX) {{
        fragColor = valueToColor(dfs_value_a);
    }} else {{
        fragColor = valueToColor(dfs_value_b);
    }}
}}
"""


def _glsl_float(x: float) -> str:
    s = repr(float(x))
    return s if ('.' in s or 'e' in s) else s + '.0'


def value_to_color_glsl(num_bands: int) -> str:
    if num_bands < 2:
        raise ValueError('at least two color bands are required')
    return _VALUE_TO_COLOR.format(
        num_bands=num_bands,
        last_pair=num_bands - 1,
        sentinel=_glsl_float(ENCODING['sentinel']),
        neutral=', '.join(_glsl_float(c) for c in ENCODING['neutral_color']),
    )


def vertex_shader(mode: str = SINGLE) -> str:
    if mode == SINGLE:
        return _SINGLE_VS.format(projection=_PROJECTION)
    if mode == SPLIT:
        return _SPLIT_VS.format(projection=_PROJECTION)
    raise ValueError(f'unknown layer mode {mode!r}; expected one of {MODES}')


def fragment_shader(num_bands: int, mode: str = SINGLE, line_width: float = RENDER['line_width']) -> str:
    body = value_to_color_glsl(num_bands)
    if mode == SINGLE:
        return _SINGLE_FS.format(value_to_color=body)
    if mode == SPLIT:
        return _SPLIT_FS.format(value_to_color=body, line_width=_glsl_float(line_width))
    raise ValueError(f'unknown layer mode {mode!r}; expected one of {MODES}')
