from abc import ABC, abstractmethod

import cv2
import numpy as np
from PIL import Image, ImageDraw

from utils import VERTICES, COLOR, ALPHA


class Renderer(ABC):
    """
    Rasterizes a genome into an RGB image.

    Vertex coordinates are mapped linearly from [0, 1] onto the pixel grid, triangles are composited
    in genome order over a black background using alpha blending.
    """

    @abstractmethod
    def render(self, genome: np.ndarray, width: int, height: int) -> np.ndarray:
        """Render a genome into a uint8 array of shape (height, width, 3)."""

    @staticmethod
    def pixel_vertices(gene: np.ndarray, width: int, height: int) -> list[tuple[int, int]]:
        """Get the pixel coordinates of a triangle's vertices."""
        v = gene[VERTICES]
        return [
            (int(v[0] * width), int(v[1] * height)),
            (int(v[2] * width), int(v[3] * height)),
            (int(v[4] * width), int(v[5] * height)),
        ]

    @staticmethod
    def rgba(gene: np.ndarray) -> tuple[int, int, int, int]:
        """Get the 8-bit RGBA color of a triangle."""
        r, g, b = gene[COLOR]
        return int(r * 255), int(g * 255), int(b * 255), int(gene[ALPHA] * 255)


class PillowRenderer(Renderer):
    """Software renderer backed by PIL.ImageDraw."""

    def render(self, genome: np.ndarray, width: int, height: int) -> np.ndarray:
        img = Image.new('RGB', (width, height))
        draw = ImageDraw.Draw(img, 'RGBA')

        for gene in genome:
            draw.polygon(self.pixel_vertices(gene, width, height), fill=self.rgba(gene))

        return np.array(img)


class OpenCVRenderer(Renderer):
    """Software renderer backed by cv2.fillPoly with explicit alpha-over blending."""

    def render(self, genome: np.ndarray, width: int, height: int) -> np.ndarray:
        img = np.zeros((height, width, 3), dtype=np.uint8)
        mask = np.zeros((height, width), dtype=np.uint8)

        for gene in genome:
            mask[:] = 0
            cv2.fillPoly(mask, [np.array(self.pixel_vertices(gene, width, height), dtype=np.int32)], 1)
            covered = mask.astype(bool)
            if not covered.any():
                continue

            r, g, b, a = self.rgba(gene)
            alpha = a / 255
            src = np.array((r, g, b), dtype=np.float64)
            dst = img[covered].astype(np.float64)
            img[covered] = np.rint(alpha * src + (1 - alpha) * dst).astype(np.uint8)

        return img


RENDERERS = {
    'pillow': PillowRenderer,
    'opencv': OpenCVRenderer,
}


def get_renderer(name: str) -> Renderer:
    """Create a renderer by its name."""
    try:
        return RENDERERS[name]()
    except KeyError:
        raise ValueError(f'Unknown renderer {name!r}, expected one of: {", ".join(RENDERERS)}') from None
