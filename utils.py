import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

# Layout of a single gene (triangle) row: x1, y1, x2, y2, x3, y3, r, g, b, a
VERTICES = slice(0, 6)
COLOR = slice(6, 9)
ALPHA = 9
GENE_SIZE = 10


class TargetImageError(ValueError):
    """Raised when the target image cannot be used for evolution."""


def resize_image(image: np.ndarray, width: int = None, height: int = None) -> np.ndarray:
    """Resize an image. If only one dimension is given, the aspect ratio is maintained."""

    (h, w) = image.shape[:2]

    if width is None and height is None:
        return image

    if width is None:
        r = height / float(h)
        dim = (int(w * r), height)

    elif height is None:
        r = width / float(w)
        dim = (width, int(h * r))

    else:
        dim = (width, height)

    return cv2.resize(image, dim, interpolation=cv2.INTER_AREA)


def load_target_image(path: str, canvas_size: tuple[int, int], resize: bool = False) -> np.ndarray:
    """
    Load the target image as a read-only RGB array of shape (height, width, 3).

    Parameters
    ----------
    path : str
        Image file path.
    canvas_size : tuple[int, int]
        Expected (width, height) of the image.
    resize : bool, optional
        Resize the image to `canvas_size` instead of failing on a size mismatch.
    """
    try:
        with Image.open(path) as img:
            img_array = np.array(img.convert('RGB'))
    except (OSError, UnidentifiedImageError) as e:
        raise TargetImageError(f'Cannot read target image {path!r}: {e}') from e

    width, height = canvas_size
    if img_array.shape[:2] != (height, width):
        if not resize:
            raise TargetImageError(
                f'Target image {path!r} is {img_array.shape[1]}x{img_array.shape[0]}, expected {width}x{height}')
        img_array = resize_image(img_array, width=width, height=height)

    img_array = np.ascontiguousarray(img_array, dtype=np.uint8)
    img_array.setflags(write=False)
    return img_array


def generate_genome(n_triangles: int, opacity: float, rng: np.random.Generator) -> np.ndarray:
    """Generate a random genome: uniform vertices and colors, fixed opacity."""
    genome = np.empty((n_triangles, GENE_SIZE))
    genome[:, VERTICES] = rng.random((n_triangles, 6))
    genome[:, COLOR] = rng.random((n_triangles, 3))
    genome[:, ALPHA] = opacity
    return genome


def one_point_crossover(
        genome_a: np.ndarray,
        genome_b: np.ndarray,
        rng: np.random.Generator,
        point: int = None
) -> np.ndarray:
    """Genes before the cut point come from the first parent, the rest from the second one."""
    n_triangles = len(genome_a)
    if point is None:
        point = int(np.ceil(rng.random() * n_triangles))

    mask = np.arange(n_triangles) < point
    return np.where(mask.reshape((-1, 1)), genome_a, genome_b)


def uniform_crossover(genome_a: np.ndarray, genome_b: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Every gene is copied whole from a parent chosen by a fair coin flip."""
    mask = rng.random(len(genome_a)) < 0.5
    return np.where(mask.reshape((-1, 1)), genome_a, genome_b)


def _rerandomize_out_of_range(values: np.ndarray, rng: np.random.Generator) -> None:
    # Out-of-range components are redrawn, not clamped.
    out_of_range = (values < 0) | (values > 1)
    values[out_of_range] = rng.random(np.count_nonzero(out_of_range))


def disturb_mutation(genome: np.ndarray, intensity: float, rng: np.random.Generator) -> None:
    """
    Slightly move vertices and shift colors of a genome in place.

    Each vertex is moved with probability 0.25 by `uniform(-1, 1) / intensity` on both axes.
    The color of each triangle is shifted with probability 0.5 by `10 * uniform(-1, 1) / intensity`
    per channel. Alpha is left untouched.
    """
    n_triangles = len(genome)

    vertices = genome[:, VERTICES].reshape((n_triangles, 3, 2))
    moved = rng.random((n_triangles, 3)) < 0.25
    vertices += np.where(moved[..., np.newaxis], rng.uniform(-1, 1, (n_triangles, 3, 2)) / intensity, 0)
    _rerandomize_out_of_range(vertices, rng)
    genome[:, VERTICES] = vertices.reshape((n_triangles, 6))

    colors = genome[:, COLOR]
    shifted = rng.random(n_triangles) < 0.5
    colors += np.where(shifted[:, np.newaxis], 10 * rng.uniform(-1, 1, (n_triangles, 3)) / intensity, 0)
    _rerandomize_out_of_range(colors, rng)
    genome[:, COLOR] = colors


def reset_mutation(genome: np.ndarray, rng: np.random.Generator) -> None:
    """Replace random vertex coordinates and whole triangle colors of a genome in place."""
    n_triangles = len(genome)

    vertices = genome[:, VERTICES]
    reset = rng.random((n_triangles, 6)) < 0.5
    genome[:, VERTICES] = np.where(reset, rng.random((n_triangles, 6)), vertices)

    colors = genome[:, COLOR]
    reset = rng.random(n_triangles) < 0.5
    genome[:, COLOR] = np.where(reset[:, np.newaxis], rng.random((n_triangles, 3)), colors)


def save_evolution_progress_as_gif(
        img_history: list[tuple[int, np.ndarray]],
        original_img: np.ndarray,
        duration: float,
        output_path: str
):
    """Save the evolution progress as a GIF animation."""
    text_position = (10, 10)
    text_color = (255, 255, 255)
    try:
        font = ImageFont.truetype('arial.ttf', 16)
    except OSError:
        font = ImageFont.load_default()
    frames = []

    for iteration, img_array in img_history:
        if original_img.shape[0] != img_array.shape[0]:
            img_array = resize_image(img_array, height=original_img.shape[0])

        img = Image.fromarray(img_array)
        draw = ImageDraw.Draw(img)
        draw.text(text_position, f'iteration: {iteration}', fill=text_color, font=font)
        frames.append(Image.fromarray(np.hstack((original_img, np.array(img)))))

    frames[0].save(output_path, format='GIF', append_images=frames[1:], save_all=True, duration=duration, loop=0)
