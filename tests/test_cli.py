import json

import pytest
from PIL import Image

from buddhabrot.cli import build_arg_parser, main
from buddhabrot.controller import RenderJobController

SMALL = ["--width", "32", "--height", "24", "--iterations", "100", "--samples", "2000",
         "--seed", "3", "--batch-size", "500", "--no-progress"]


def test_presets_command(capsys):
    assert main(["--log-file", "", "presets"]) == 0
    out = capsys.readouterr().out
    for name in ("default", "detailed", "quick", "artistic"):
        assert name in out


def test_render_writes_image_and_manifest(tmp_path):
    image = tmp_path / "out" / "b.png"
    manifest = tmp_path / "run.json"
    code = main(["--log-file", "", "render", *SMALL, "--color-scheme", "fire",
                 "--output", str(image), "--manifest", str(manifest)])
    assert code == 0

    img = Image.open(image)
    assert img.format == "PNG"
    assert img.size == (32, 24)

    data = json.loads(manifest.read_text(encoding="utf-8"))
    assert data["parameters"]["color_scheme"] == "fire"
    assert data["parameters"]["samples"] == 2000
    assert data["metrics"]["total_samples"] == 2000
    assert data["export"]["path"] == str(image)
    assert "numpy" in data["packages"]


def test_render_vector_with_log_file(tmp_path):
    svg = tmp_path / "b.svg"
    log_file = tmp_path / "render.log"
    code = main(["--log-file", str(log_file), "render", *SMALL, "--format", "vector",
                 "--output", str(svg), "--manifest", ""])
    assert code == 0
    assert svg.read_bytes().startswith(b"<?xml")
    assert "Vector export" in log_file.read_text(encoding="utf-8")


def test_invalid_parameters_exit_code(tmp_path):
    code = main(["--log-file", "", "render", *SMALL, "--iterations", "0",
                 "--output", str(tmp_path / "x.png"), "--manifest", ""])
    assert code == 2
    assert not (tmp_path / "x.png").exists()


def test_bad_config_exit_code(tmp_path):
    cfg = tmp_path / "cfg.json"
    cfg.write_text(json.dumps({"resolution": 3}), encoding="utf-8")
    assert main(["--log-file", "", "--config", str(cfg), "render", "--no-progress"]) == 2


def test_preset_flag_is_applied():
    args = build_arg_parser().parse_args(["render", "--preset", "artistic", "--zoom", "3"])
    assert args.preset == "artistic"
    assert args.zoom == 3.0
    assert args.format == "raster"


@pytest.fixture
def started(monkeypatch):
    calls = []
    original = RenderJobController.start

    def spy(self, *args, **kwargs):
        calls.append(args)
        return original(self, *args, **kwargs)

    monkeypatch.setattr(RenderJobController, "start", spy)
    return calls


@pytest.mark.parametrize("flags", [["--quality", "5"], ["--quality", "-0.5"], ["--scale", "0"], ["--scale", "1.5"]])
def test_bad_export_arguments_are_rejected_before_rendering(tmp_path, started, flags):
    with pytest.raises(SystemExit) as exc:
        main(["--log-file", "", "render", *SMALL, *flags,
              "--output", str(tmp_path / "x.png"), "--manifest", ""])
    assert exc.value.code == 2
    assert started == []
    assert not (tmp_path / "x.png").exists()


def test_vector_output_rejects_scale_before_rendering(tmp_path, started):
    code = main(["--log-file", "", "render", *SMALL, "--format", "vector", "--scale", "2",
                 "--output", str(tmp_path / "x.svg"), "--manifest", ""])
    assert code == 2
    assert started == []
    assert not (tmp_path / "x.svg").exists()
