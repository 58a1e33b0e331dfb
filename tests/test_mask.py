from __future__ import annotations

import numpy as np
import pytest

from conftest import SHAPE
from helpers.fake_ants import load_volume, save_volume
from pgjlf.errors import NoAtlasesError
from pgjlf.mask import derive_union_mask, resolve_mask
from pgjlf.warp import SubjectSpaceAtlas


def _atlas(workspace, atlas_id: str, labels: np.ndarray) -> SubjectSpaceAtlas:
    seg = save_volume(workspace.seg_deformed(atlas_id), labels)
    gray = save_volume(workspace.gray_deformed(atlas_id), labels * 10.0)
    return SubjectSpaceAtlas(atlas_id=atlas_id, gray=gray, labels=seg)


def test_derived_mask_is_union_of_foregrounds(fake_ants, tools, workspace):
    a = np.zeros(SHAPE)
    a[0:2, 0:2, 0:2] = 1
    b = np.zeros(SHAPE)
    b[4:6, 4:6, 4:6] = 3
    atlases = [_atlas(workspace, "a", a), _atlas(workspace, "b", b)]

    mask_path = derive_union_mask(atlases, tools, workspace)

    mask = load_volume(mask_path) > 0
    np.testing.assert_array_equal(mask, (a > 0) | (b > 0))
    assert mask_path == workspace.reference_mask


def test_derived_mask_averages_once(fake_ants, tools, workspace):
    labels = np.zeros(SHAPE)
    labels[2, 2, 2] = 1
    atlases = [_atlas(workspace, f"s{i}", labels) for i in range(3)]

    derive_union_mask(atlases, tools, workspace)

    assert len(fake_ants.tool_calls("ThresholdImage")) == 4
    average_calls = fake_ants.tool_calls("AverageImages")
    assert len(average_calls) == 1
    assert average_calls[0][3] == "0"
    assert len(average_calls[0][4:]) == 3
    assert fake_ants.tool_calls("ThresholdImage")[0][4:] == ["1", "Inf"]
    assert fake_ants.tool_calls("ThresholdImage")[-1][4:] == ["1E-6", "Inf"]


def test_staged_mask_is_used_as_is(fake_ants, tools, workspace):
    save_volume(workspace.reference_mask, np.ones(SHAPE))
    atlases = [_atlas(workspace, "a", np.ones(SHAPE))]

    assert resolve_mask(atlases, tools, workspace) == workspace.reference_mask
    assert fake_ants.calls == []


def test_mask_without_atlases_fails(tools, workspace):
    with pytest.raises(NoAtlasesError):
        derive_union_mask([], tools, workspace)
