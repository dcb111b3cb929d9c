import logging
from gettext import gettext as _
from typing import Dict

from easydict import EasyDict as edict

logger = logging.getLogger(__name__)

ENV_PREFIX = "WSI_"


def _coerce(raw, current):
    # environment values are strings; follow the type of the default if any
    if not isinstance(raw, str) or current is None:
        return raw
    if isinstance(current, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw


def load_cfg_from_env(cfg: edict, env: Dict[str, str]):
    for k, v in env.items():
        if k.startswith(ENV_PREFIX):
            cfgkey = k[len(ENV_PREFIX):].replace("__", ".")
            logger.warning(
                _(
                    "Changing configuration entry from environment variable: {k}={v}"
                ).format(
                    k=cfgkey, v=v
                )  # noqa:E501
            )  # noqa: E501
            *parts, last = cfgkey.split(".")
            this_cfg = cfg
            for part in parts:
                if this_cfg.get(part) is None:
                    this_cfg[part] = edict()
                this_cfg = this_cfg[part]
            this_cfg[last] = _coerce(v, this_cfg.get(last))
    return cfg
