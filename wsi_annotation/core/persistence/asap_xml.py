"""
ASAP XML annotation files.

Layout::

    <ASAP_Annotations>
      <AnnotationGroups>
        <Group Color="#rrggbb" Name="..." PartOfGroup="None"><Attributes/></Group>
      </AnnotationGroups>
      <Annotations>
        <Annotation Color="#rrggbb" Name="..." PartOfGroup="..." Type="Polygon">
          <Coordinates><Coordinate Order="0" X="..." Y="..."/></Coordinates>
        </Annotation>
      </Annotations>
    </ASAP_Annotations>

Coordinates on disk are in pixels; in memory they are multiplied by the
set's microns-per-pixel.

ASAP itself writes the groups after the annotations. To keep the declared
group order the file is streamed twice: first for the groups, then for the
annotations.
"""

import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np

from ..annotation.events import AnnotationEvent, EventType
from ..annotation.session import infer_type
from ..annotation.state import (
    RESERVED_GROUP_INDEX,
    RESERVED_GROUP_NAME,
    Annotation,
    AnnotationSet,
    AnnotationType,
)

logger = logging.getLogger(__name__)

ROOT_ELEMENT = "ASAP_Annotations"

TYPE_BY_NAME = {
    "Rectangle": AnnotationType.RECTANGLE,
    "Polygon": AnnotationType.POLYGON,
    "Spline": AnnotationType.SPLINE,
    "Dot": AnnotationType.POINT,
}

NAME_BY_TYPE = {value: key for key, value in TYPE_BY_NAME.items()}

PathLike = Union[str, Path]


class AsapFormatError(ValueError):
    """The file is not a well-formed ASAP annotation document."""


def parse_color(value: str) -> Tuple[int, int, int]:
    """
    Parse a ``#rrggbb`` color.

    Malformed values are logged and read as black.
    """
    if len(value) != 7 or not value.startswith("#"):
        logger.warning(f'Color attribute "{value}" not in form #rrggbb')
        return (0, 0, 0)
    try:
        return (int(value[1:3], 16), int(value[3:5], 16), int(value[5:7], 16))
    except ValueError:
        logger.warning(f'Color attribute "{value}" not in form #rrggbb')
        return (0, 0, 0)


def format_color(color) -> str:
    r, g, b = (int(c) for c in color[:3])
    return f"#{r:02x}{g:02x}{b:02x}"


def _parse_number(value: str, attribute: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise AsapFormatError(f'Invalid number "{value}" in attribute {attribute}')


def _iter_elements(path: PathLike, max_attribute_length: int):
    """Stream (event, element) pairs, validating the root and attribute sizes."""
    seen_root = False
    for event, elem in ET.iterparse(str(path), events=("start", "end")):
        if event == "start":
            if not seen_root:
                if elem.tag != ROOT_ELEMENT:
                    raise AsapFormatError(
                        f"Root element is <{elem.tag}>, expected <{ROOT_ELEMENT}>"
                    )
                seen_root = True
            for key, value in elem.attrib.items():
                if len(value) > max_attribute_length:
                    raise AsapFormatError(
                        f"Attribute {key} of <{elem.tag}> exceeds "
                        f"{max_attribute_length} characters"
                    )
        yield event, elem


def _read_groups(scratch: AnnotationSet, path: PathLike, max_attribute_length: int):
    for event, elem in _iter_elements(path, max_attribute_length):
        if event != "end" or elem.tag != "Group":
            continue
        name = elem.get("Name")
        if name is not None:
            group = scratch.stored_groups[scratch.find_or_add_group(name)]
            color = elem.get("Color")
            if color is not None:
                group.color = parse_color(color)
            group.is_explicitly_defined = True
        elem.clear()


def _start_annotation(scratch: AnnotationSet, elem) -> Annotation:
    annotation = Annotation()
    name = elem.get("Name")
    if name is not None:
        annotation.name = name
    color = elem.get("Color")
    if color is not None:
        annotation.color = parse_color(color)
    group_name = elem.get("PartOfGroup")
    if group_name is not None:
        annotation.group_id = scratch.find_or_add_group(group_name)
    type_name = elem.get("Type")
    if type_name is not None:
        if type_name in TYPE_BY_NAME:
            annotation.type = TYPE_BY_NAME[type_name]
        else:
            logger.warning(
                f"Annotation '{annotation.display_name}' has unrecognized type "
                f"'{type_name}', defaulting to 'Polygon'"
            )
            annotation.type = AnnotationType.POLYGON
    return annotation


def _read_annotations(
    scratch: AnnotationSet, path: PathLike, max_attribute_length: int
):
    annotation: Optional[Annotation] = None
    coordinates = []
    for event, elem in _iter_elements(path, max_attribute_length):
        if event == "start" and elem.tag == "Annotation":
            annotation = _start_annotation(scratch, elem)
            coordinates = []
        elif event == "end" and elem.tag == "Coordinate" and annotation is not None:
            x = elem.get("X")
            y = elem.get("Y")
            coordinates.append(
                (
                    0.0 if x is None else _parse_number(x, "X"),
                    0.0 if y is None else _parse_number(y, "Y"),
                )
            )
        elif event == "end" and elem.tag == "Annotation" and annotation is not None:
            annotation.set_coordinates(scratch.to_world_units(coordinates))
            if (
                annotation.type in (AnnotationType.POLYGON, AnnotationType.SPLINE)
                and annotation.coordinate_count < 3
            ):
                infer_type(annotation)
            scratch.append_annotation(annotation)
            annotation = None
            elem.clear()


def load_asap_xml(annotation_set: AnnotationSet, path: PathLike) -> bool:
    """
    Load annotations from an ASAP XML file, replacing the set's contents.

    The file is parsed into a scratch set that only replaces the live one
    once parsing succeeded, so a failed load leaves the set untouched.

    Args:
        annotation_set: Set to load into
        path: File to read

    Returns:
        True on success, False if the file could not be read or parsed
    """
    config = annotation_set.config
    scratch = AnnotationSet(mpp=annotation_set.mpp, config=config)
    try:
        _read_groups(scratch, path, config.max_attribute_length)
        _read_annotations(scratch, path, config.max_attribute_length)
    except (ET.ParseError, AsapFormatError, OSError) as e:
        logger.error(f"Failed to load annotations from {path}: {e}")
        annotation_set.events.emit(
            AnnotationEvent(EventType.LOAD_FAILED, {"path": str(path), "error": str(e)})
        )
        return False

    scratch.filename = str(path)
    scratch.loaded_filename = str(path)
    scratch.modified = False
    annotation_set.replace_contents(scratch)
    logger.info(
        f"Loaded {annotation_set.active_annotation_count} annotations in "
        f"{annotation_set.active_group_count} groups from {path}"
    )
    annotation_set.events.emit(
        AnnotationEvent(
            EventType.ANNOTATIONS_LOADED,
            {"path": str(path), "count": annotation_set.active_annotation_count},
        )
    )
    return True


def file_coordinates(annotation: Annotation) -> np.ndarray:
    """Coordinates written to files; ellipses become their outline."""
    if annotation.type == AnnotationType.ELLIPSE:
        return annotation.outline()
    return annotation.coordinates


def build_asap_xml(annotation_set: AnnotationSet) -> ET.ElementTree:
    """Build the XML document for a set."""
    root = ET.Element(ROOT_ELEMENT)

    groups_elem = ET.SubElement(root, "AnnotationGroups")
    for stored_index, group in enumerate(annotation_set.stored_groups):
        if stored_index == RESERVED_GROUP_INDEX or group.deleted:
            continue
        group_elem = ET.SubElement(
            groups_elem,
            "Group",
            Color=format_color(group.color),
            Name=group.name,
            PartOfGroup=RESERVED_GROUP_NAME,
        )
        ET.SubElement(group_elem, "Attributes")

    annotations_elem = ET.SubElement(root, "Annotations")
    for _, annotation in annotation_set.iter_active():
        annotation_elem = ET.SubElement(
            annotations_elem,
            "Annotation",
            Color=format_color(annotation.color),
            Name=annotation.name,
            PartOfGroup=annotation_set.group_for(annotation).name,
            Type=NAME_BY_TYPE.get(annotation.type, "Polygon"),
        )
        coords = annotation_set.to_file_units(file_coordinates(annotation))
        if len(coords) == 0:
            continue
        coordinates_elem = ET.SubElement(annotation_elem, "Coordinates")
        for order, (x, y) in enumerate(coords.tolist()):
            ET.SubElement(
                coordinates_elem,
                "Coordinate",
                Order=str(order),
                X=repr(x),
                Y=repr(y),
            )

    tree = ET.ElementTree(root)
    ET.indent(tree, space="  ", level=0)
    return tree


def save_asap_xml(annotation_set: AnnotationSet, path: PathLike):
    """
    Write a set to an ASAP XML file.

    Args:
        annotation_set: Set to write (typically a private copy)
        path: Destination file
    """
    tree = build_asap_xml(annotation_set)
    tree.write(str(path), encoding="utf-8", xml_declaration=True)
    logger.debug(
        f"Wrote {annotation_set.active_annotation_count} annotations to {path}"
    )
