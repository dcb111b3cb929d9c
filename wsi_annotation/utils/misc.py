import importlib.util
import itertools
import sys
from pathlib import Path
from typing import Iterable, Optional

from tqdm import tqdm


def incrf(start: int = 1):
    """Infinite counter starting at ``start``; use ``next()`` to get ids."""
    return itertools.count(start)


def progress(iterable: Iterable, **kwargs):
    """Progress bar over an iterable; hidden when stderr is not a terminal."""
    kwargs.setdefault("disable", None)
    return tqdm(iterable, **kwargs)


def load_module(path: Path, module_name: Optional[str] = None):
    path = Path(path)
    if module_name is None:
        module_name = path.stem
    search_locations = None
    if path.name == "__init__.py":
        search_locations = [str(path.parent)]
    spec = importlib.util.spec_from_file_location(
        module_name, str(path), submodule_search_locations=search_locations
    )
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load module from {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module
