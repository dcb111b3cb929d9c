import wsi_annotation.utils.i18n  # noqa:F401

from easydict import EasyDict as edict

from .config import get_default_config
from .env import load_cfg_from_env


def test_load_cfg_from_env():
    input_dict = {"WSI_a": 2, "WSI_nested__value": 3, "OTHER_b": 4}
    loaded = load_cfg_from_env(edict(), input_dict)
    assert loaded.a == 2
    assert loaded.nested.value == 3
    assert "b" not in loaded


def test_env_strings_follow_default_types():
    cfg = edict(hover_distance=8.0, max_attribute_length=1024, flag=False, label="x")
    env = {
        "WSI_hover_distance": "12.5",
        "WSI_max_attribute_length": "10",
        "WSI_flag": "true",
        "WSI_label": "y",
    }
    loaded = load_cfg_from_env(cfg, env)
    assert loaded.hover_distance == 12.5
    assert loaded.max_attribute_length == 10
    assert loaded.flag is True
    assert loaded.label == "y"


def test_default_config_reads_overrides():
    cfg = get_default_config(env={"WSI_autosave_delay": "0.5"})
    assert cfg.autosave_delay == 0.5
    assert cfg.hover_distance == 8.0
    assert cfg.auto_assign_last_group is False
