# zapzap/model_io.py
"""
Saving and loading of trained models.

Two formats:
- weight artifact: the flat float32 vector as `<path>` (.npy) plus a JSON
  sidecar `<path>.json` describing the network it belongs to. This is what
  inference consumers load into a FlatQNetwork.
- torch checkpoint: `torch.save({"state_dict": ..., ...})` of the trainer,
  for resuming training.
"""
from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict, Optional, Tuple

import numpy as np
import torch

from zapzap.network import ACTION_DIMS, flat_weight_count

logger = logging.getLogger(__name__)

ARTIFACT_VERSION = 1

METADATA_KEYS = (
    "version", "input_dim", "hidden_dim", "value_hidden", "advantage_hidden",
    "action_dims", "param_count", "training_steps", "games_played",
    "final_epsilon", "avg_loss", "win_rate", "timestamp",
)


def metadata_path(path: str) -> str:
    return path + ".json"


def build_metadata(dims: Dict[str, int], training_steps: int = 0, games_played: int = 0,
                   final_epsilon: float = 0.0, avg_loss: float = 0.0,
                   win_rate: float = 0.0) -> Dict[str, Any]:
    return {
        "version": ARTIFACT_VERSION,
        "input_dim": dims["input_dim"],
        "hidden_dim": dims["hidden_dim"],
        "value_hidden": dims["value_hidden"],
        "advantage_hidden": dims["advantage_hidden"],
        "action_dims": list(ACTION_DIMS),
        "param_count": flat_weight_count(**dims),
        "training_steps": int(training_steps),
        "games_played": int(games_played),
        "final_epsilon": float(final_epsilon),
        "avg_loss": float(avg_loss),
        "win_rate": float(win_rate),
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S"),
    }


def save_weights(path: str, weights: np.ndarray, metadata: Dict[str, Any]):
    """Write the flat vector and its JSON sidecar. Missing metadata keys raise ValueError."""
    missing = [k for k in METADATA_KEYS if k not in metadata]
    if missing:
        raise ValueError(f"Weight metadata is missing {missing}")
    vec = np.asarray(weights, dtype=np.float32).ravel()
    if vec.size != metadata["param_count"]:
        raise ValueError(f"{vec.size} weights do not match param_count {metadata['param_count']}")

    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    # np.save appends .npy to bare names; write through a handle to keep `path` exact
    with open(path, "wb") as f:
        np.save(f, vec)
    with open(metadata_path(path), "w") as f:
        json.dump(metadata, f, indent=2)
    logger.info("Saved %d weights to %s", vec.size, path)


def load_metadata(path: str) -> Dict[str, Any]:
    try:
        with open(metadata_path(path)) as f:
            meta = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Corrupt weight metadata {metadata_path(path)}: {e}") from e
    if not isinstance(meta, dict):
        raise ValueError(f"Weight metadata {metadata_path(path)} is not an object")
    missing = [k for k in METADATA_KEYS if k not in meta]
    if missing:
        raise ValueError(f"Weight metadata {metadata_path(path)} is missing {missing}")
    return meta


def load_weights(path: str) -> Tuple[np.ndarray, Dict[str, Any]]:
    """Read a weight artifact. A vector that disagrees with its metadata raises ValueError."""
    meta = load_metadata(path)
    try:
        with open(path, "rb") as f:
            vec = np.load(f, allow_pickle=False)
    except (ValueError, OSError) as e:
        raise ValueError(f"Corrupt weight file {path}: {e}") from e
    vec = np.asarray(vec, dtype=np.float32).ravel()
    if vec.size != meta["param_count"]:
        raise ValueError(f"{path} holds {vec.size} weights, metadata says {meta['param_count']}")
    return vec, meta


def network_dims(meta: Dict[str, Any]) -> Dict[str, int]:
    return {k: int(meta[k]) for k in ("input_dim", "hidden_dim", "value_hidden", "advantage_hidden")}


def save_checkpoint(path: str, state_dict: Dict[str, Any], **extra):
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    payload = {"state_dict": state_dict}
    payload.update(extra)
    torch.save(payload, path)


def load_checkpoint(path: str, map_location: Optional[str] = "cpu") -> Dict[str, Any]:
    ckpt = torch.load(path, map_location=map_location, weights_only=False)
    # Plain state_dicts are accepted too
    if "state_dict" not in ckpt:
        ckpt = {"state_dict": ckpt}
    return ckpt
