"""Wireframe shape renderer driven by the interaction layer and the audio level."""

from __future__ import annotations

import colorsys
import math
from dataclasses import dataclass
from typing import Any, List, Tuple

import numpy as np

from .state import DEFAULT_SCALE, SCALE_RANGE, Shape
from .utils import clamp

ROTATION_SMOOTHING = 0.1
SCALE_SMOOTHING = 0.2
AUDIO_SCALE_DEPTH = 0.3
CAMERA_DISTANCE = 5.0
FIELD_OF_VIEW = math.radians(75.0)

Edge = Tuple[int, int]


@dataclass(slots=True)
class Geometry:
    kind: Shape
    vertices: np.ndarray
    edges: List[Edge]


def _nearest_neighbour_edges(vertices: np.ndarray) -> List[Edge]:
    """Edges of a regular polyhedron: every vertex pair at the shortest distance."""

    diff = vertices[:, None, :] - vertices[None, :, :]
    dist = np.sqrt(np.sum(diff * diff, axis=2))
    shortest = np.min(dist[dist > 1e-9])
    rows, cols = np.nonzero(np.abs(dist - shortest) < shortest * 1e-6)
    return [(int(i), int(j)) for i, j in zip(rows, cols) if i < j]


def _cyclic(points: List[Tuple[float, float, float]]) -> List[Tuple[float, float, float]]:
    out = []
    for x, y, z in points:
        out.extend([(x, y, z), (z, x, y), (y, z, x)])
    return out


def _signs(*values: float) -> List[Tuple[float, ...]]:
    combos: List[Tuple[float, ...]] = [()]
    for value in values:
        options = (value,) if value == 0.0 else (value, -value)
        combos = [combo + (option,) for combo in combos for option in options]
    return combos


def _polyhedron(kind: Shape, radius: float) -> Geometry:
    phi = (1.0 + math.sqrt(5.0)) / 2.0
    if kind is Shape.ICOSAHEDRON:
        points = _cyclic(_signs(0.0, 1.0, phi))
    elif kind is Shape.OCTAHEDRON:
        points = _cyclic(_signs(1.0, 0.0, 0.0))
    else:
        points = _signs(1.0, 1.0, 1.0) + _cyclic(_signs(0.0, 1.0 / phi, phi))
    vertices = np.unique(np.round(np.asarray(points, dtype=np.float64), 12), axis=0)
    vertices *= radius / np.linalg.norm(vertices[0])
    return Geometry(kind, vertices, _nearest_neighbour_edges(vertices))


def _torus(radius: float = 1.2, tube: float = 0.4, rings: int = 24, sides: int = 8) -> Geometry:
    u = np.linspace(0.0, 2.0 * math.pi, rings, endpoint=False)
    v = np.linspace(0.0, 2.0 * math.pi, sides, endpoint=False)
    uu, vv = np.meshgrid(u, v, indexing="ij")
    x = (radius + tube * np.cos(vv)) * np.cos(uu)
    y = (radius + tube * np.cos(vv)) * np.sin(uu)
    z = tube * np.sin(vv)
    vertices = np.stack([x, y, z], axis=-1).reshape(-1, 3)
    edges: List[Edge] = []
    for i in range(rings):
        for j in range(sides):
            here = i * sides + j
            edges.append((here, i * sides + (j + 1) % sides))
            edges.append((here, ((i + 1) % rings) * sides + j))
    return Geometry(Shape.TORUS, vertices, edges)


def build_geometry(kind: Shape | str) -> Geometry:
    try:
        shape = Shape(kind)
    except ValueError:
        shape = Shape.ICOSAHEDRON
    if shape is Shape.TORUS:
        return _torus()
    return _polyhedron(shape, 1.5)


def _rotation_matrix(rx: float, ry: float) -> np.ndarray:
    cx, sx = math.cos(rx), math.sin(rx)
    cy, sy = math.cos(ry), math.sin(ry)
    rot_x = np.array([[1.0, 0.0, 0.0], [0.0, cx, -sx], [0.0, sx, cx]])
    rot_y = np.array([[cy, 0.0, sy], [0.0, 1.0, 0.0], [-sy, 0.0, cy]])
    return rot_x @ rot_y


class ShapeScene:
    """Rotating, audio-reactive wireframe of one :class:`Shape`.

    ``current_scale`` is the user-chosen base scale; the drawn scale eases
    towards ``current_scale * (1 + level * 0.3)`` each frame and the rotation
    eases towards the pointer-derived target.
    """

    def __init__(self, shape: Shape | str = Shape.ICOSAHEDRON) -> None:
        self.geometry = build_geometry(shape)
        self.current_scale = DEFAULT_SCALE
        self.audio_level = 0.0
        self.target_rotation = (0.0, 0.0)
        self.rotation = (0.0, 0.0)
        self.mesh_scale = DEFAULT_SCALE
        self.position = (0.0, 0.0)
        self.spin = 0.0

    @property
    def shape(self) -> Shape:
        return self.geometry.kind

    def set_audio_level(self, level: float) -> None:
        self.audio_level = float(level)

    def set_rotation(self, x: float, y: float) -> None:
        self.target_rotation = (float(x), float(y))

    def set_scale(self, scale: float) -> None:
        self.current_scale = clamp(float(scale), *SCALE_RANGE)

    def set_position(self, x: float, y: float) -> None:
        self.position = (float(x), float(y))

    def create_geometry(self, kind: Shape | str) -> None:
        self.geometry = build_geometry(kind)

    def update(self, dt: float) -> None:
        rx, ry = self.rotation
        tx, ty = self.target_rotation
        self.rotation = (
            rx + (tx - rx) * ROTATION_SMOOTHING,
            ry + (ty - ry) * ROTATION_SMOOTHING,
        )
        target_scale = self.current_scale * (1.0 + self.audio_level * AUDIO_SCALE_DEPTH)
        self.mesh_scale += (target_scale - self.mesh_scale) * SCALE_SMOOTHING
        self.spin = (self.spin + dt * 0.05) % (2.0 * math.pi)

    def colour(self) -> Tuple[int, int, int]:
        hue = (self.audio_level * 0.3) % 1.0
        lightness = 0.5 + 0.2 * clamp(self.audio_level, 0.0, 1.0)
        r, g, b = colorsys.hls_to_rgb(hue, lightness, 1.0)
        return int(r * 255), int(g * 255), int(b * 255)

    def project(self, width: int, height: int) -> np.ndarray:
        """Screen coordinates ``(N, 2)`` of every vertex."""

        rotated = self.geometry.vertices @ _rotation_matrix(*self.rotation).T
        world = rotated * self.mesh_scale
        world[:, 0] += self.position[0]
        world[:, 1] += self.position[1]
        depth = np.maximum(CAMERA_DISTANCE - world[:, 2], 1e-3)
        focal = 0.5 * height / math.tan(FIELD_OF_VIEW / 2.0)
        sx = width / 2.0 + focal * world[:, 0] / depth
        sy = height / 2.0 - focal * world[:, 1] / depth
        return np.stack([sx, sy], axis=1)

    def draw(self, surface: Any) -> None:
        import pygame

        width, height = surface.get_size()
        points = self.project(width, height)
        colour = self.colour()
        alpha = clamp(0.3 + self.audio_level * 0.4, 0.0, 1.0)
        wire = tuple(int(c * alpha + 10 * (1.0 - alpha)) for c in (0, 212, 255))
        for i, j in self.geometry.edges:
            start = (int(points[i, 0]), int(points[i, 1]))
            end = (int(points[j, 0]), int(points[j, 1]))
            pygame.draw.line(surface, colour, start, end, 2)
            pygame.draw.line(surface, wire, start, end, 1)


__all__ = ["Geometry", "ShapeScene", "build_geometry"]
