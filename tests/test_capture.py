from __future__ import annotations

import re

import cv2

from bboxviewer.pipeline.capture import make_capture_name, save_snapshot
from conftest import make_image

NAME = re.compile(r"^(?P<label>[^/]+)\.[0-9a-f]{8}\.(?P<ext>\w+)$")


def test_capture_name_shape() -> None:
    m = NAME.match(make_capture_name("porch", "jpg"))
    assert m and m.group("label") == "porch" and m.group("ext") == "jpg"


def test_capture_names_differ() -> None:
    assert make_capture_name("a", "jpg") != make_capture_name("a", "jpg")


def test_empty_label_falls_back() -> None:
    assert make_capture_name("  ", ".webm").startswith("frame.")
    assert make_capture_name("", "webm").endswith(".webm")


def test_label_cannot_escape_directory() -> None:
    name = make_capture_name("../../etc/front door", "jpg")
    assert "/" not in name
    assert not name.startswith(".")
    assert NAME.match(name)


def test_save_snapshot_writes_jpeg(tmp_path) -> None:
    img = make_image(120, 80, value=200)
    path = save_snapshot(img, tmp_path / "shots", "door")
    assert path.parent == tmp_path / "shots"
    assert path.suffix == ".jpg"
    assert NAME.match(path.name).group("label") == "door"
    back = cv2.imread(str(path))
    assert back.shape == (80, 120, 3)
