import numpy as np
import pytest

from render import Renderer, PillowRenderer, OpenCVRenderer, get_renderer
from utils import generate_genome

RENDERERS = [PillowRenderer(), OpenCVRenderer()]


def full_canvas_triangle(r, g, b, a=1.):
    return [0., 0., 2., 0., 0., 2., r, g, b, a]


@pytest.mark.parametrize('renderer', RENDERERS)
def test_render_shape_and_dtype(renderer, rng):
    img = renderer.render(generate_genome(20, 0.15, rng), 16, 12)

    assert img.shape == (12, 16, 3)
    assert img.dtype == np.uint8
    assert img.nbytes == 16 * 12 * 3


@pytest.mark.parametrize('renderer', RENDERERS)
def test_render_is_deterministic(renderer, rng):
    genome = generate_genome(20, 0.15, rng)
    np.testing.assert_array_equal(renderer.render(genome, 16, 16), renderer.render(genome, 16, 16))


@pytest.mark.parametrize('renderer', RENDERERS)
def test_background_is_black(renderer, rng):
    img = renderer.render(generate_genome(20, 0., rng), 8, 8)
    assert not img.any()


@pytest.mark.parametrize('renderer', RENDERERS)
def test_opaque_triangle_covers_canvas(renderer):
    img = renderer.render(np.array([full_canvas_triangle(1., 0., 0.)]), 4, 4)

    assert np.all(img[..., 0] == 255)
    assert not img[..., 1:].any()


@pytest.mark.parametrize('renderer', RENDERERS)
def test_later_triangles_are_painted_over_earlier_ones(renderer):
    genome = np.array([full_canvas_triangle(1., 0., 0.), full_canvas_triangle(0., 0., 1.)])
    img = renderer.render(genome, 4, 4)

    assert np.all(img == (0, 0, 255))


@pytest.mark.parametrize('renderer', RENDERERS)
def test_alpha_blending(renderer):
    img = renderer.render(np.array([full_canvas_triangle(1., 1., 1., 0.5)]), 4, 4)
    assert np.all((img >= 120) & (img <= 135))

    genome = np.array([full_canvas_triangle(1., 0., 0.), full_canvas_triangle(0., 0., 1., 0.5)])
    img = renderer.render(genome, 4, 4)
    assert np.all((img[..., 0] >= 120) & (img[..., 0] <= 135))
    assert np.all((img[..., 2] >= 120) & (img[..., 2] <= 135))


@pytest.mark.parametrize('renderer', RENDERERS)
def test_triangle_covers_only_its_area(renderer):
    # lower-left half of the canvas
    genome = np.array([[0., 0., 0., 1., 1., 1., 1., 1., 1., 1.]])
    img = renderer.render(genome, 10, 10)

    assert np.all(img[9, 0] == 255)
    assert not img[0, 9].any()


def test_pixel_vertices_map_linearly():
    gene = np.array([0., 0., 1., 0.5, 0.25, 1., 0., 0., 0., 0.15])
    assert Renderer.pixel_vertices(gene, 100, 50) == [(0, 0), (100, 25), (25, 50)]


def test_get_renderer():
    assert isinstance(get_renderer('pillow'), PillowRenderer)
    assert isinstance(get_renderer('opencv'), OpenCVRenderer)

    with pytest.raises(ValueError):
        get_renderer('opengl')
