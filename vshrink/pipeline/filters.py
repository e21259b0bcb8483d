"""ffmpeg filter graph composition.

Input 0 is the source video, input 1 the watermark image. The graph optionally
blurs the timestamp rectangle in place, scales to the fixed output size, applies
the colour transform and finally composites the watermark at the origin.
"""

from vshrink.domain.models import ColorMode, CropGeometry

BLUR_RADIUS = 15
CHANNEL_MIX = "colorchannelmixer=.3:.4:.3:0:.3:.4:.3:0:.3:.4:.3"
DESATURATE = "hue=s=0"


def color_filter(mode: ColorMode) -> str:
    if ColorMode(mode) == ColorMode.GRAY:
        return DESATURATE
    return CHANNEL_MIX


def blur_region(geometry: CropGeometry, output_label: str = "redacted") -> str:
    g = geometry
    return (
        f"[0:v]crop={g.width}:{g.height}:{g.x}:{g.y},avgblur={BLUR_RADIUS}[fg];"
        f"[0:v][fg]overlay={g.x}:{g.y}[{output_label}]"
    )


def build_filter_chain(
    geometry: CropGeometry,
    blur_enabled: bool,
    width: int,
    height: int,
    color_mode: ColorMode = ColorMode.MIX,
) -> str:
    """Compose the -filter_complex expression. Pure function of its inputs."""
    tail = f"scale={width}:{height},{color_filter(color_mode)}[processed];[processed][1:v]overlay=0:0"
    if blur_enabled:
        return f"{blur_region(geometry)};[redacted]{tail}"
    return f"[0:v]{tail}"
