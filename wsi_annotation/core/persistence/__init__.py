"""
Reading and writing annotation sets.
"""

from .asap_xml import (
    AsapFormatError,
    build_asap_xml,
    format_color,
    load_asap_xml,
    parse_color,
    save_asap_xml,
)
from .coco import CocoFormatError, build_coco, load_coco, save_coco
from .geojson import build_feature_collection, export_geojson
from .save_manager import SaveManager, backup_once, backup_path

__all__ = [
    "AsapFormatError",
    "build_asap_xml",
    "format_color",
    "load_asap_xml",
    "parse_color",
    "save_asap_xml",
    "CocoFormatError",
    "build_coco",
    "load_coco",
    "save_coco",
    "build_feature_collection",
    "export_geojson",
    "SaveManager",
    "backup_once",
    "backup_path",
]
