import numpy as np
import pytest
from PIL import Image

import run
from utils import TargetImageError


@pytest.fixture
def dirs(tmp_path, monkeypatch, rng):
    input_dir = tmp_path / 'inputs'
    output_dir = tmp_path / 'outputs'
    input_dir.mkdir()
    Image.fromarray(rng.integers(0, 256, size=(16, 16, 3), dtype=np.uint8)).save(input_dir / 'target.png')

    monkeypatch.setattr(run, 'INPUT_DIR', str(input_dir))
    monkeypatch.setattr(run, 'OUTPUT_DIR', str(output_dir))
    monkeypatch.setattr(run, 'CANVAS_SIZE', (16, 16))
    monkeypatch.setattr(run, 'TASK_PARAMS', {'n_triangles': 5, 'opacity': 0.15})
    monkeypatch.setattr(run, 'GA_PARAMS', {**run.GA_PARAMS, 'population_size': 4})
    monkeypatch.setattr(run, 'ANIMATION_IMAGE_WIDTH', 16)
    return input_dir, output_dir


def test_parse_args_defaults():
    args = run.parse_args(['-i', 'target.png'])

    assert args.image_filename == 'target.png'
    assert args.n_iter is None
    assert args.renderer == 'pillow'
    assert args.animation


@pytest.mark.parametrize('renderer', ['pillow', 'opencv'])
def test_main_saves_outputs(renderer, dirs):
    _, output_dir = dirs
    run.main(['-i', 'target.png', '--n_iter', '3', '--img_history_step', '1', '--seed', '0',
              '--renderer', renderer])

    assert len(list(output_dir.glob('target_evolved_*.png'))) == 1
    assert len(list(output_dir.glob('target_evolution_progress_*.gif'))) == 1


def test_main_without_animation(dirs):
    _, output_dir = dirs
    run.main(['-i', 'target.png', '--n_iter', '2', '--no_animation'])

    assert list(output_dir.glob('*.gif')) == []


def test_main_fails_on_size_mismatch(dirs, monkeypatch):
    monkeypatch.setattr(run, 'CANVAS_SIZE', (32, 32))

    with pytest.raises(TargetImageError):
        run.main(['-i', 'target.png', '--n_iter', '1'])

    run.main(['-i', 'target.png', '--n_iter', '1', '--resize', '--no_animation'])
