"""
QC reportlets: a mid-slice overlay of the final labels on the subject image.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, cast

import nibabel as nib
import numpy as np
from PIL import Image

OVERLAY_WIDTH = 1200


def _scale_to_rgb(slice2d: np.ndarray) -> np.ndarray:
    """Scale a 2D slice to uint8 RGB using robust percentiles."""
    vmin, vmax = np.percentile(slice2d, [1, 99])
    if vmax <= vmin:
        vmin, vmax = float(slice2d.min()), float(slice2d.max())
    if vmax <= vmin:
        vmax = vmin + 1.0
    normalized = np.clip((slice2d - vmin) / (vmax - vmin), 0, 1)
    base = (normalized * 255).astype(np.uint8)
    return np.repeat(base[..., np.newaxis], 3, axis=2)


def _label_colors(labels: np.ndarray) -> np.ndarray:
    """Deterministic RGB colour per label id; background stays black."""
    ids = labels.astype(np.int64)
    colors = np.zeros(ids.shape + (3,), dtype=np.uint8)
    colors[..., 0] = (ids * 97) % 256
    colors[..., 1] = (ids * 57 + 80) % 256
    colors[..., 2] = (ids * 151 + 160) % 256
    colors[ids == 0] = 0
    return colors


def render_label_overlay_png(
    image: Path,
    labels: Path,
    dest: Path,
    axis: int = 2,
    alpha: float = 0.5,
) -> Optional[Path]:
    """
    Write a PNG of the middle slice along `axis` with labels blended on top.

    Returns None, without raising, when the volumes cannot be rendered
    (unreadable file, mismatched shapes, non-2D slice).
    """
    try:
        img = cast(Any, nib.load(image))
        seg_img = cast(Any, nib.load(labels))
    except Exception:  # noqa: BLE001
        return None
    img_data = img.get_fdata()
    seg_data = np.asanyarray(seg_img.dataobj)
    if img_data.ndim > 3:
        img_data = img_data[..., 0]
    if seg_data.ndim > 3:
        seg_data = seg_data[..., 0]
    if img_data.shape != seg_data.shape:
        return None

    index = img_data.shape[axis] // 2
    img_slice = np.take(img_data, index, axis=axis)
    seg_slice = np.take(seg_data, index, axis=axis)
    if img_slice.ndim != 2:
        return None

    overlay = _scale_to_rgb(img_slice)
    mask = seg_slice > 0
    colors = _label_colors(seg_slice)
    overlay[mask] = (overlay[mask] * (1 - alpha) + colors[mask] * alpha).astype(np.uint8)

    # First array axis left to right, second axis bottom to top.
    overlay = np.ascontiguousarray(np.rot90(overlay))
    rendered = Image.fromarray(overlay)
    height = max(1, int(round(rendered.height * OVERLAY_WIDTH / max(rendered.width, 1))))
    rendered = rendered.resize((OVERLAY_WIDTH, height), resample=0)  # 0 == NEAREST

    dest.parent.mkdir(parents=True, exist_ok=True)
    rendered.save(dest)
    return dest
