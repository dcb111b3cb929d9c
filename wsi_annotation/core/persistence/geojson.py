"""
GeoJSON export.

Writes a FeatureCollection with one feature per active annotation, in
pixel units, for use in GIS-style tools such as QuPath.
"""

import json
import logging
from typing import Any, Dict, Optional

from ..annotation.state import Annotation, AnnotationSet, AnnotationType
from .asap_xml import PathLike, format_color

logger = logging.getLogger(__name__)


def annotation_geometry(
    annotation_set: AnnotationSet, annotation: Annotation
) -> Optional[Dict[str, Any]]:
    """GeoJSON geometry of an annotation, or None if it has no shape."""
    coords = annotation_set.to_file_units(annotation.outline()).tolist()
    if not coords:
        return None
    if annotation.type == AnnotationType.POINT or len(coords) == 1:
        return {"type": "Point", "coordinates": coords[0]}
    if not annotation.is_closed_shape or len(coords) == 2:
        return {"type": "LineString", "coordinates": coords}
    return {"type": "Polygon", "coordinates": [coords + [coords[0]]]}


def build_feature_collection(annotation_set: AnnotationSet) -> Dict[str, Any]:
    features = []
    for _, annotation in annotation_set.iter_active():
        geometry = annotation_geometry(annotation_set, annotation)
        if geometry is None:
            logger.debug(f"Skipping annotation '{annotation.display_name}' without coordinates")
            continue
        group = annotation_set.group_for(annotation)
        features.append(
            {
                "type": "Feature",
                "geometry": geometry,
                "properties": {
                    "name": annotation.name,
                    "group": group.name,
                    "color": format_color(annotation.color),
                    "type": annotation.type.name.lower(),
                },
            }
        )
    return {"type": "FeatureCollection", "features": features}


def export_geojson(annotation_set: AnnotationSet, path: PathLike) -> int:
    """
    Write the active annotations as a GeoJSON FeatureCollection.

    Returns:
        Number of exported features
    """
    collection = build_feature_collection(annotation_set)
    with open(path, "w") as f:
        json.dump(collection, f)
    logger.info(f"Exported {len(collection['features'])} features to {path}")
    return len(collection["features"])
