import io
import re

import numpy as np
import pytest
from PIL import Image

from buddhabrot.color import colorize, map_density, to_hex
from buddhabrot.errors import ExportFailure, InvalidParameters
from buddhabrot.export.raster import encode_pixels, export_raster
from buddhabrot.export.vector import export_vector
from buddhabrot.params import ColorScheme
from buddhabrot.renderers.accumulation import AccumulationBuffer

RECT = re.compile(r'<rect x="(\d+)" y="(\d+)" width="(\d+)" height="(\d+)" fill="(#[0-9a-f]{6})" opacity="([0-9.]+)"/>')


@pytest.fixture
def buffer():
    buf = AccumulationBuffer(12, 8)
    buf.density[0, 0] = 10
    buf.density[4, 4] = 5
    buf.density[3, 3] = 7  # off the step-4 grid
    buf.max_density = 10.0
    return buf


def test_png_decodes_to_colorized_pixels(buffer):
    data = export_raster(buffer, ColorScheme.FIRE)
    img = Image.open(io.BytesIO(data))
    assert img.format == "PNG"
    assert img.size == (12, 8)
    expected = colorize(buffer.density, buffer.max_density, ColorScheme.FIRE)
    np.testing.assert_array_equal(np.asarray(img.convert("RGB")), expected)


@pytest.mark.parametrize("name", ["JPEG", "jpg"])
def test_jpeg_export(buffer, name):
    data = export_raster(buffer, "classic", image_format=name, quality=0.5)
    assert data[:2] == b"\xff\xd8"
    assert Image.open(io.BytesIO(data)).size == (12, 8)


def test_unknown_container_is_an_export_failure(buffer):
    with pytest.raises(ExportFailure):
        export_raster(buffer, ColorScheme.CLASSIC, image_format="NOPE")


def test_raster_rejects_bad_quality():
    with pytest.raises(InvalidParameters):
        encode_pixels(np.zeros((2, 2, 3), dtype=np.uint8), quality=-0.1)


def test_export_without_buffer_fails():
    with pytest.raises(ExportFailure):
        export_raster(None, ColorScheme.CLASSIC)
    with pytest.raises(ExportFailure):
        export_vector(None, ColorScheme.CLASSIC, 2)


def test_vector_cells_follow_the_grid(buffer):
    svg = export_vector(buffer, ColorScheme.CLASSIC, 4).decode("utf-8")
    assert svg.startswith('<?xml version="1.0" encoding="UTF-8"?>')
    assert 'width="12" height="8"' in svg
    assert '<rect width="100%" height="100%" fill="black"/>' in svg
    assert svg.rstrip().endswith("</svg>")

    cells = RECT.findall(svg)
    assert [(c[0], c[1], c[2], c[3]) for c in cells] == [("0", "0", "4", "4"), ("4", "4", "4", "4")]
    assert {c[4] for c in cells} == {"#ff4c4c"}
    assert [c[5] for c in cells] == ["1.0000", "0.5000"]


def test_vector_cells_are_clipped_at_the_edge():
    buf = AccumulationBuffer(7, 5)
    buf.density[3, 6] = 2
    buf.max_density = 2.0
    cells = RECT.findall(export_vector(buf, ColorScheme.OCEAN, 3).decode("utf-8"))
    assert cells == [("6", "3", "1", "2", "#00b2ff", "1.0000")]


def test_vector_empty_buffer_has_only_the_background():
    svg = export_vector(AccumulationBuffer(6, 6), ColorScheme.CLASSIC, 2).decode("utf-8")
    assert svg.count("<rect") == 1
    assert RECT.findall(svg) == []


def test_vector_spectral_colors_each_cell(buffer):
    cells = RECT.findall(export_vector(buffer, ColorScheme.SPECTRAL, 4).decode("utf-8"))
    fills = [c[4] for c in cells]
    assert fills == [to_hex(map_density(10, 10, "spectral")), to_hex(map_density(5, 10, "spectral"))]
    assert fills[0] != fills[1]


@pytest.mark.parametrize("step", [0, -1, 2.5, True])
def test_vector_rejects_bad_step(buffer, step):
    with pytest.raises(InvalidParameters):
        export_vector(buffer, ColorScheme.CLASSIC, step)
