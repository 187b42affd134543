import json

import pytest

from buddhabrot.config import default_config, load_config, normalise_config
from buddhabrot.errors import InvalidParameters
from buddhabrot.params import ColorScheme, RenderParameters, get_preset, get_presets


def test_defaults():
    p = RenderParameters().validate()
    assert (p.iterations, p.samples, p.zoom, p.center_x, p.center_y) == (5000, 10_000_000, 1.0, -0.7, 0.0)
    assert p.color_scheme is ColorScheme.CLASSIC


def test_from_dict_accepts_host_aliases_and_json_numbers():
    p = RenderParameters.from_dict({"iterations": 1e3, "samples": 1e7, "zoom": 2, "centerX": -1,
                                    "centerY": 0.25, "colorScheme": "Spectral"})
    assert p.iterations == 1000 and isinstance(p.iterations, int)
    assert p.samples == 10_000_000 and isinstance(p.samples, int)
    assert p.zoom == 2.0 and isinstance(p.zoom, float)
    assert (p.center_x, p.center_y) == (-1.0, 0.25)
    assert p.color_scheme is ColorScheme.SPECTRAL


@pytest.mark.parametrize(
    "data",
    [
        {"iterations": 0},
        {"iterations": -5},
        {"iterations": 10.5},
        {"iterations": True},
        {"samples": 0},
        {"samples": "100"},
        {"zoom": 0},
        {"zoom": -1.0},
        {"zoom": float("inf")},
        {"center_x": float("nan")},
        {"center_y": None},
        {"color_scheme": "neon"},
        {"brightness": 3},
    ],
)
def test_invalid_parameters_are_rejected(data):
    with pytest.raises(InvalidParameters):
        RenderParameters.from_dict(data)


def test_invalid_parameters_is_a_value_error():
    assert issubclass(InvalidParameters, ValueError)


def test_to_dict_round_trips_through_json():
    p = RenderParameters(iterations=42, samples=99, zoom=3.5, center_x=0.1, center_y=-0.2,
                         color_scheme=ColorScheme.OCEAN)
    assert RenderParameters.from_dict(json.loads(json.dumps(p.to_dict()))) == p


def test_merged_keeps_other_fields():
    p = RenderParameters(iterations=10, samples=20)
    q = p.merged({"zoom": 4})
    assert (q.iterations, q.samples, q.zoom) == (10, 20, 4.0)
    assert p.zoom == 1.0


def test_presets_table():
    presets = {preset.name: preset.parameters for preset in get_presets()}
    assert list(presets) == ["default", "detailed", "quick", "artistic"]
    assert presets["default"] == RenderParameters()
    assert (presets["detailed"].iterations, presets["detailed"].samples) == (8000, 50_000_000)
    assert presets["detailed"].color_scheme is ColorScheme.SPECTRAL
    assert (presets["quick"].iterations, presets["quick"].samples) == (1000, 1_000_000)
    assert presets["quick"].color_scheme is ColorScheme.MONOCHROME
    assert get_preset("artistic").parameters.zoom == 1.5
    with pytest.raises(InvalidParameters):
        get_preset("missing")


def test_normalise_defaults():
    cfg = normalise_config({})
    assert cfg["width"] == 800 and cfg["height"] == 600
    assert cfg["batch_size"] == 10000
    assert cfg["seed"] is None
    assert cfg["parameters"] == RenderParameters().to_dict()
    assert cfg["manifest"] == "artifacts/run.json"


def test_normalise_merges_parameters_over_preset():
    cfg = normalise_config({"preset": "quick", "parameters": {"samples": 5000}, "seed": "7"})
    assert cfg["parameters"]["samples"] == 5000
    assert cfg["parameters"]["iterations"] == 1000
    assert cfg["parameters"]["color_scheme"] == "monochrome"
    assert cfg["seed"] == 7


@pytest.mark.parametrize(
    "cfg, error",
    [
        ({"colour": "red"}, ValueError),
        ({"width": 0}, ValueError),
        ({"height": "tall"}, ValueError),
        ({"batch_size": -1}, ValueError),
        ({"preset": "missing"}, InvalidParameters),
        ({"parameters": {"iterations": 0}}, InvalidParameters),
        ({"parameters": [1, 2]}, InvalidParameters),
    ],
)
def test_normalise_rejects_bad_config(cfg, error):
    with pytest.raises(error):
        normalise_config(cfg)


def test_empty_manifest_disables_it():
    assert normalise_config({"manifest": ""})["manifest"] is None


def test_load_config(tmp_path):
    assert load_config(None) == default_config()

    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"width": 32, "parameters": {"centerX": 0.3}}), encoding="utf-8")
    cfg = normalise_config(load_config(str(path)))
    assert cfg["width"] == 32
    assert cfg["parameters"]["center_x"] == 0.3

    path.write_text("[1, 2, 3]", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(str(path))
