"""
End-to-end integration tests.

Tests complete editing workflows from start to finish.
"""

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from wsi_annotation.core.annotation import AnnotationSet, AnnotationType, EditSession
from wsi_annotation.core.persistence import SaveManager, load_asap_xml


class TestAnnotationWorkflow:
    """Test complete annotation workflow."""

    def test_draw_edit_save_and_reload(self, config, tmp_path):
        annotation_set = AnnotationSet(mpp=(0.25, 0.25), config=config)
        session = EditSession(annotation_set)
        tumor = annotation_set.find_or_add_group("Tumor")
        annotation_set.stored_groups[tumor].color = (200, 0, 0)

        # freeform polygon
        session.create_freeform([0.0, 0.0])
        for position in ([40.0, 0.0], [40.0, 40.0], [0.0, 40.0]):
            session.freeform_click(position)
        assert session.freeform_click([1.0, 1.0])
        session.set_group(0, tumor)

        # rectangle
        session.create_rectangle([100.0, 100.0])
        session.drag_rectangle([120.0, 130.0])
        session.finish_shape()

        # split the polygon along its diagonal
        new_index = session.split_annotation(0, 0, 2)
        assert new_index == 2
        assert annotation_set.active_annotation_count == 3

        path = tmp_path / "slide.xml"
        with ThreadPoolExecutor(max_workers=1) as executor:
            manager = SaveManager(executor=executor)
            assert manager.request_save(annotation_set, path).result(timeout=5)
        assert not annotation_set.modified

        reloaded = AnnotationSet(mpp=(0.25, 0.25), config=config)
        assert load_asap_xml(reloaded, path)
        assert reloaded.active_annotation_count == 3
        types = [a.type for _, a in reloaded.iter_active()]
        assert types == [
            AnnotationType.POLYGON,
            AnnotationType.RECTANGLE,
            AnnotationType.POLYGON,
        ]
        assert reloaded.group_for(reloaded.get_active(2)).name == "Tumor"
        total_area = sum(a.area for _, a in reloaded.iter_active())
        assert total_area == pytest.approx(1600.0 + 600.0)
        np.testing.assert_allclose(
            reloaded.get_active(1).coordinates,
            annotation_set.get_active(1).coordinates,
            atol=1e-4,
        )
        annotation_set.close()
