from __future__ import annotations

import cv2
import numpy as np
import pytest


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.t = start

    def __call__(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


def make_image(width: int = 64, height: int = 48, value: int = 0) -> np.ndarray:
    return np.full((height, width, 3), value, dtype=np.uint8)


def jpeg_bytes(width: int = 64, height: int = 48, value: int = 90) -> bytes:
    ok, buf = cv2.imencode(".jpg", make_image(width, height, value))
    assert ok
    return buf.tobytes()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
