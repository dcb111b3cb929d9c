"""
Default configuration for the annotation engine.

Distances are in screen points unless noted otherwise; the caller converts
them to world units with the current zoom level before handing them to
the hit-test engine.
"""

import os
from typing import Optional, Mapping

from easydict import EasyDict as edict

from .env import load_cfg_from_env

DEFAULTS = {
    # a node is "grabbed" when the cursor is closer than this
    "hover_distance": 8.0,
    # maximum distance to an edge for inserting a coordinate on it
    "insert_hover_distance": 32.0,
    # freeform drawing: minimum travelled distance between two samples
    "freeform_spacing": 5.0,
    # subtracted from the edge distance of already selected annotations
    "selection_bias": 5.0,
    # margin around annotation bounds before the exact edge test is done
    "bounds_tolerance": 300.0,
    # seconds without edits before an autosave is allowed
    "autosave_delay": 2.0,
    # attributes longer than this make the ASAP XML loader bail out
    "max_attribute_length": 1024,
    # AnnotationSet.close() polls the save lock at this interval (seconds)
    "save_poll_interval": 0.01,
    # newly selected annotations receive the last assigned group
    "auto_assign_last_group": False,
}


def get_default_config(env: Optional[Mapping[str, str]] = None) -> edict:
    """
    Build the engine configuration.

    Args:
        env: Environment mapping to read ``WSI_*`` overrides from
            (defaults to ``os.environ``)

    Returns:
        EasyDict with all configuration entries
    """
    cfg = edict(DEFAULTS)
    return load_cfg_from_env(cfg, dict(os.environ if env is None else env))
