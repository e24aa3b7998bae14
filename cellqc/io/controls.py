"""Resolve control-set configuration into row/column indices."""

import json
import logging
import re
from pathlib import Path
from typing import Dict, List, Mapping, Sequence, Union

import pandas as pd

logger = logging.getLogger(__name__)

ControlSpec = Union[str, Sequence[Union[str, int]]]


def resolve_control_sets(
    names: Sequence[str], config: Mapping[str, ControlSpec]
) -> Dict[str, List[int]]:
    """
    Translate control-set definitions into 0-based indices.

    Parameters
    ----------
    names : sequence of str
        Feature or cell names, in matrix order.
    config : mapping
        Set name to definition. A string is a regular expression searched
        in each name (e.g. ``'^ERCC-'``). A list holds exact names or
        integer indices.

    Returns
    -------
    dict
        Set name to sorted list of indices. Indices given as integers are
        passed through unchecked; range checks happen in the metric
        computation.

    Raises
    ------
    ValueError
        If a pattern is not a valid regular expression, or a list holds a
        boolean.
    """
    names = pd.Index(names).astype(str)
    positions = {name: i for i, name in enumerate(names)}
    resolved = {}

    for set_name, definition in config.items():
        if isinstance(definition, str):
            try:
                pattern = re.compile(definition)
            except re.error as e:
                raise ValueError(
                    f"Control set '{set_name}' has an invalid pattern '{definition}': {e}"
                ) from e
            indices = [i for i, name in enumerate(names) if pattern.search(name)]
        else:
            indices = []
            missing = []
            for item in definition:
                if isinstance(item, bool):
                    raise ValueError(f"Control set '{set_name}' contains a boolean: {item}")
                if isinstance(item, int):
                    indices.append(item)
                elif str(item) in positions:
                    indices.append(positions[str(item)])
                else:
                    missing.append(item)
            if missing:
                logger.warning(
                    f"Control set '{set_name}': {len(missing)} names not found "
                    f"(e.g. {missing[:3]}). Skipping them."
                )

        if not indices:
            logger.warning(f"Control set '{set_name}' matched no entries")
        else:
            logger.info(f"Control set '{set_name}': {len(indices)} entries")

        resolved[str(set_name)] = sorted(set(indices))

    return resolved


def load_control_config(file_path: str) -> Dict[str, Dict[str, ControlSpec]]:
    """
    Load control-set definitions from JSON.

    The file holds an object with optional ``feature_controls`` and
    ``cell_controls`` keys, each mapping set names to a regular expression
    or a list of names/indices::

        {"feature_controls": {"ERCC": "^ERCC-", "MT": ["MT-CO1", "MT-ND1"]},
         "cell_controls": {"empty_wells": [0, 5]}}

    Returns
    -------
    dict
        ``{'feature_controls': {...}, 'cell_controls': {...}}``.
    """
    logger.info(f"Loading control-set configuration from {file_path}")
    with open(Path(file_path)) as f:
        config = json.load(f)

    if not isinstance(config, dict):
        raise ValueError("Control configuration must be a JSON object")

    unknown = set(config) - {"feature_controls", "cell_controls"}
    if unknown:
        raise ValueError(f"Unknown keys in control configuration: {sorted(unknown)}")

    result = {}
    for key in ("feature_controls", "cell_controls"):
        sets = config.get(key) or {}
        if not isinstance(sets, dict):
            raise ValueError(f"'{key}' must map set names to definitions")
        result[key] = sets
    return result
