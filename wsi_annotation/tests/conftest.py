"""
Test fixtures for the annotation engine tests.

Provides reusable annotation sets, sessions and sample files.
"""

import numpy as np
import pytest
from easydict import EasyDict as edict

from wsi_annotation.core.annotation import (
    Annotation,
    AnnotationSet,
    AnnotationType,
    EditSession,
)
from wsi_annotation.utils.config import DEFAULTS


@pytest.fixture
def config():
    """Default configuration, unaffected by the environment."""
    cfg = edict(DEFAULTS)
    cfg.save_poll_interval = 0.001
    return cfg


@pytest.fixture
def annotation_set(config):
    return AnnotationSet(config=config)


@pytest.fixture
def session(annotation_set):
    return EditSession(annotation_set)


@pytest.fixture
def square_coords():
    """Counter-clockwise 10x10 square at the origin."""
    return np.array([[0.0, 0.0], [10.0, 0.0], [10.0, 10.0], [0.0, 10.0]])


@pytest.fixture
def hexagon_coords():
    angles = np.linspace(0.0, 2.0 * np.pi, 6, endpoint=False)
    return np.stack([50.0 + 20.0 * np.cos(angles), 50.0 + 20.0 * np.sin(angles)], axis=1)


def _add_polygon(annotation_set, coords, group_id=0, selected=False, name=""):
    annotation = Annotation(
        type=AnnotationType.POLYGON,
        coordinates=coords,
        group_id=group_id,
        selected=selected,
        name=name,
    )
    return annotation_set.append_annotation(annotation)


@pytest.fixture
def add_polygon():
    """Append a polygon annotation to a set and return its active index."""
    return _add_polygon


@pytest.fixture
def populated_set(annotation_set, square_coords):
    """
    Set with two groups and three annotations.

    Annotation 0: square in "Tumor", annotation 1: shifted square in
    "Stroma", annotation 2: point in "None".
    """
    tumor = annotation_set.active_group_indices[annotation_set.add_group("Tumor", (255, 0, 0))]
    stroma = annotation_set.active_group_indices[annotation_set.add_group("Stroma", (0, 255, 0))]
    _add_polygon(annotation_set, square_coords, group_id=tumor, name="first")
    _add_polygon(annotation_set, square_coords + [100.0, 0.0], group_id=stroma)
    annotation_set.append_annotation(
        Annotation(type=AnnotationType.POINT, coordinates=[[50.0, 50.0]])
    )
    annotation_set.modified = False
    return annotation_set


DOT_XML = (
    '<ASAP_Annotations><AnnotationGroups></AnnotationGroups><Annotations>'
    '<Annotation Color="#ff0000" Name="A1" PartOfGroup="None" Type="Dot">'
    '<Coordinates><Coordinate Order="0" X="10" Y="20"/></Coordinates>'
    "</Annotation></Annotations></ASAP_Annotations>"
)

ASAP_XML = """<?xml version="1.0"?>
<ASAP_Annotations>
  <Annotations>
    <Annotation Name="Annotation 0" Type="Polygon" PartOfGroup="Tumor" Color="#F4FA58">
      <Coordinates>
        <Coordinate Order="0" X="0" Y="0" />
        <Coordinate Order="1" X="100" Y="0" />
        <Coordinate Order="2" X="100" Y="50" />
      </Coordinates>
    </Annotation>
    <Annotation Name="Annotation 1" Type="Rectangle" PartOfGroup="Stroma" Color="#00ff00">
      <Coordinates>
        <Coordinate Order="0" X="0" Y="0" />
        <Coordinate Order="1" X="10" Y="0" />
        <Coordinate Order="2" X="10" Y="10" />
        <Coordinate Order="3" X="0" Y="10" />
      </Coordinates>
    </Annotation>
    <Annotation Name="Annotation 2" Type="PointSet" PartOfGroup="Tumor" Color="#0000ff">
      <Coordinates>
        <Coordinate Order="0" X="5" Y="5" />
        <Coordinate Order="1" X="6" Y="5" />
        <Coordinate Order="2" X="6" Y="6" />
      </Coordinates>
    </Annotation>
  </Annotations>
  <AnnotationGroups>
    <Group Name="Stroma" PartOfGroup="None" Color="#00ff00"><Attributes /></Group>
    <Group Name="Tumor" PartOfGroup="None" Color="#ff0000"><Attributes /></Group>
  </AnnotationGroups>
</ASAP_Annotations>
"""


@pytest.fixture
def dot_xml_file(tmp_path):
    path = tmp_path / "dot.xml"
    path.write_text(DOT_XML)
    return path


@pytest.fixture
def asap_xml_file(tmp_path):
    path = tmp_path / "slide.xml"
    path.write_text(ASAP_XML)
    return path
