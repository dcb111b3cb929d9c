"""
COCO JSON annotation files.

Unlike ASAP XML, COCO files carry the feature store: a top-level
``features`` list declares each feature (``category_id`` present when it is
restricted to one group) and every annotation lists its values as a flat
``[id, value, id, value, ...]`` array. Groups are written as categories,
the category id being the group's active index, so "None" is category 0.

Segmentations are single polygons ``[[x0, y0, x1, y1, ...]]`` in pixels.
"""

import json
import logging
import time
from typing import Any, Dict, List

import numpy as np

from ...utils.misc import incrf
from ..annotation.events import AnnotationEvent, EventType
from ..annotation.geometry import polygon_area, polygon_bounds
from ..annotation.session import infer_type
from ..annotation.state import (
    RESERVED_GROUP_INDEX,
    Annotation,
    AnnotationSet,
    AnnotationType,
    Feature,
)
from .asap_xml import PathLike, file_coordinates

logger = logging.getLogger(__name__)

IMAGE_ID = 1
SECTIONS = ("licenses", "images", "annotations", "categories", "features")


class CocoFormatError(ValueError):
    """The file is not a usable COCO annotation document."""


def _require(condition: bool, message: str):
    if not condition:
        raise CocoFormatError(message)


def _number(value, what: str) -> float:
    _require(
        isinstance(value, (int, float)) and not isinstance(value, bool),
        f"{what} must be a number, got {value!r}",
    )
    return float(value)


def _validate(data) -> Dict[str, Any]:
    _require(isinstance(data, dict), "Root of a COCO file must be an object")
    for section in SECTIONS:
        if section in data:
            _require(
                isinstance(data[section], list), f'"{section}" must be an array'
            )
            for entry in data[section]:
                _require(
                    isinstance(entry, dict),
                    f'Entries of "{section}" must be objects',
                )
    return data


def _read_categories(scratch: AnnotationSet, data) -> Dict[int, int]:
    """Create groups for the categories; returns category id -> stored index."""
    group_by_category = {}
    for category in data.get("categories", []):
        category_id = int(_number(category.get("id", 0), "Category id"))
        name = str(category.get("name", ""))
        stored_index = scratch.find_or_add_group(name)
        group = scratch.stored_groups[stored_index]
        color = category.get("color")
        if isinstance(color, list) and len(color) >= 3:
            group.color = tuple(int(_number(c, "Category color")) for c in color[:3])
        group.is_explicitly_defined = True
        group_by_category[category_id] = stored_index
    return group_by_category


def _group_for_category(group_by_category: Dict[int, int], category_id) -> int:
    if category_id is None:
        return RESERVED_GROUP_INDEX
    category_id = int(_number(category_id, "category_id"))
    if category_id not in group_by_category:
        logger.warning(f"Unknown category id {category_id}, using group 0")
        return RESERVED_GROUP_INDEX
    return group_by_category[category_id]


def _read_features(
    scratch: AnnotationSet, data, group_by_category: Dict[int, int]
) -> Dict[int, int]:
    """Create features; returns feature id in the file -> feature vector slot."""
    slot_by_id = {}
    for entry in data.get("features", []):
        file_id = int(_number(entry.get("id", 0), "Feature id"))
        active_index = scratch.add_feature(str(entry.get("name", "")))
        feature = scratch.get_active_feature(active_index)
        if "category_id" in entry:
            feature.restrict_to_group = True
            feature.group_id = _group_for_category(
                group_by_category, entry["category_id"]
            )
        slot_by_id[file_id] = feature.id
    return slot_by_id


def _read_segmentation(segmentation) -> np.ndarray:
    _require(isinstance(segmentation, list), "segmentation must be an array")
    if not segmentation:
        return np.zeros((0, 2))
    polygon = segmentation[0]
    _require(
        isinstance(polygon, list) and len(polygon) % 2 == 0,
        "segmentation polygons must be arrays of x, y pairs",
    )
    values = [_number(v, "Segmentation coordinate") for v in polygon]
    if len(segmentation) > 1:
        logger.warning("Only the first polygon of a segmentation is read")
    return np.asarray(values, dtype=np.float64).reshape(-1, 2)


def _read_feature_values(annotation: Annotation, values, slot_by_id: Dict[int, int]):
    _require(
        isinstance(values, list) and len(values) % 2 == 0,
        "Annotation features must be an array of id, value pairs",
    )
    for i in range(0, len(values), 2):
        file_id = int(_number(values[i], "Feature id"))
        value = _number(values[i + 1], "Feature value")
        slot = slot_by_id.get(file_id)
        if slot is None:
            logger.warning(f"Value for undeclared feature id {file_id} ignored")
            continue
        annotation.features[slot] = value


def _read_annotations(
    scratch: AnnotationSet,
    data,
    group_by_category: Dict[int, int],
    slot_by_id: Dict[int, int],
):
    for entry in data.get("annotations", []):
        coordinates = _read_segmentation(entry.get("segmentation", []))
        group_id = _group_for_category(group_by_category, entry.get("category_id"))
        annotation = Annotation(
            type=AnnotationType.POLYGON,
            coordinates=scratch.to_world_units(coordinates),
            group_id=group_id,
            color=scratch.stored_groups[group_id].color,
        )
        if "features" in entry:
            _read_feature_values(annotation, entry["features"], slot_by_id)
        infer_type(annotation)
        scratch.append_annotation(annotation)


def load_coco(annotation_set: AnnotationSet, path: PathLike) -> bool:
    """
    Load annotations, groups and features from a COCO JSON file.

    The whole document is validated into a scratch set first; the live set
    is only replaced when everything was read.

    Returns:
        True on success, False if the file could not be read or parsed
    """
    scratch = AnnotationSet(mpp=annotation_set.mpp, config=annotation_set.config)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = _validate(json.load(f))
        group_by_category = _read_categories(scratch, data)
        slot_by_id = _read_features(scratch, data, group_by_category)
        _read_annotations(scratch, data, group_by_category, slot_by_id)
    except (ValueError, OSError) as e:
        # decoding errors and a full feature vector raise ValueError as well
        logger.error(f"Failed to load COCO annotations from {path}: {e}")
        annotation_set.events.emit(
            AnnotationEvent(EventType.LOAD_FAILED, {"path": str(path), "error": str(e)})
        )
        return False

    scratch.filename = str(path)
    scratch.loaded_filename = str(path)
    scratch.modified = False
    annotation_set.replace_contents(scratch)
    logger.info(
        f"Loaded {annotation_set.active_annotation_count} annotations and "
        f"{annotation_set.active_feature_count} features from {path}"
    )
    annotation_set.events.emit(
        AnnotationEvent(
            EventType.ANNOTATIONS_LOADED,
            {"path": str(path), "count": annotation_set.active_annotation_count},
        )
    )
    return True


def _feature_applies(feature: Feature, annotation: Annotation) -> bool:
    return not feature.restrict_to_group or feature.group_id == annotation.group_id


def build_coco(
    annotation_set: AnnotationSet,
    description: str = "Created with wsi_annotation",
    image_filename: str = "",
) -> Dict[str, Any]:
    """Build the COCO document for a set."""
    category_by_group = {
        stored_index: active_index
        for active_index, stored_index in enumerate(annotation_set.active_group_indices)
    }
    features: List[Feature] = [
        annotation_set.get_active_feature(i)
        for i in range(annotation_set.active_feature_count)
    ]

    data = dict(
        info=dict(
            description=description,
            version="1.0",
            contributor="Created with wsi_annotation",
            year=int(time.strftime("%Y")),
            date_created=time.strftime("%Y/%m/%d"),
        ),
        licenses=[],
        images=[dict(id=IMAGE_ID, file_name=image_filename)],
        annotations=[],
        categories=[],
        features=[],
    )

    for active_index, stored_index in enumerate(annotation_set.active_group_indices):
        group = annotation_set.stored_groups[stored_index]
        data["categories"].append(
            dict(
                supercategory="",
                id=active_index,
                name=group.name,
                color=[int(c) for c in group.color[:3]],
            )
        )

    for feature in features:
        entry = dict(id=feature.id, name=feature.name)
        if feature.restrict_to_group and feature.group_id in category_by_group:
            entry["category_id"] = category_by_group[feature.group_id]
        data["features"].append(entry)

    annotation_ids = incrf(0)
    for _, annotation in annotation_set.iter_active():
        coords = annotation_set.to_file_units(file_coordinates(annotation))
        values = []
        for feature in features:
            if _feature_applies(feature, annotation):
                values.extend([feature.id, float(annotation.features[feature.id])])
        bounds = polygon_bounds(coords)
        bbox = (
            [0.0, 0.0, 0.0, 0.0]
            if bounds.is_empty
            else [bounds.min_x, bounds.min_y, bounds.width, bounds.height]
        )
        data["annotations"].append(
            dict(
                id=next(annotation_ids),
                category_id=category_by_group.get(annotation.group_id, 0),
                iscrowd=0,
                segmentation=[coords.reshape(-1).tolist()],
                features=values,
                image_id=IMAGE_ID,
                area=float(polygon_area(coords)),
                bbox=[float(v) for v in bbox],
            )
        )
    return data


def save_coco(annotation_set: AnnotationSet, path: PathLike, **kwargs):
    """
    Write a set to a COCO JSON file.

    Args:
        annotation_set: Set to write (typically a private copy)
        path: Destination file
        **kwargs: Passed to build_coco()
    """
    data = build_coco(annotation_set, **kwargs)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f)
    logger.debug(f"Wrote {len(data['annotations'])} COCO annotations to {path}")
