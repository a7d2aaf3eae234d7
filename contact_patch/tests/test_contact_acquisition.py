import dataclasses
import math
import unittest

import numpy as np

from contact_patch.nodes.contact_acquisition import (
    ContactAcquisitionPipeline,
    ContactCandidate,
    ContactParams,
    ContactState,
    augment_contacts_with_kdop8,
    get_real_contacts,
    get_synthetic_contacts,
    mesh_kdop8_corners,
    separate_contacts,
)
from contact_patch.nodes.physics_snapshot import (
    BodySnapshot,
    ContactManifold,
    ContactPlaneDescriptor,
    FrameContext,
    ManifoldPoint,
    SoftNode,
    manifolds_from_points,
)
from contact_patch.nodes.utils.plane import Plane

# Footprint of a 20cm x 10cm block resting on y = 0
BLOCK_VERTICES = np.array([
    [x, y, z]
    for x in (-0.1, 0.1)
    for y in (0.0, 0.2)
    for z in (-0.05, 0.05)
])


def spread_points(n, y=0.0, spacing=0.01, x0=0.0):
    """n points on a line along x, one grid cell apart or more."""
    return [(x0 + i * spacing, y, 0.0) for i in range(n)]


def rigid_frame(points, timestamp, normal=(0.0, 1.0, 0.0), velocity=(0.0, 0.0, 0.0),
                vertices=None, angular_velocity=None, contact_plane=None):
    body = BodySnapshot(
        body_id="block",
        linear_velocity=np.asarray(velocity, dtype=np.float64),
        angular_velocity=(np.asarray(angular_velocity, dtype=np.float64)
                          if angular_velocity is not None else None),
        surface_vertices=vertices,
    )
    return FrameContext(
        manifolds=manifolds_from_points(points, normal=normal, body_a="ground", body_b="block"),
        body=body,
        contact_plane=contact_plane,
        timestamp=timestamp,
    )


def soft_frame(node_positions, timestamp, velocities=None):
    velocities = velocities or [None] * len(node_positions)
    nodes = tuple(
        SoftNode(
            position=np.asarray(p, dtype=np.float64),
            normal=np.array([0.0, -1.0, 0.0]),
            velocity=np.asarray(v, dtype=np.float64) if v is not None else None,
        )
        for p, v in zip(node_positions, velocities)
    )
    body = BodySnapshot(body_id="jelly", is_soft_body=True, nodes=nodes)
    return FrameContext(body=body, timestamp=timestamp)


class TestContactParams(unittest.TestCase):
    def test_defaults(self):
        p = ContactParams.rigid_default()
        self.assertEqual(p.d_enter, 0.004)
        self.assertEqual(p.d_exit, 0.010)
        self.assertEqual(p.n_hold, 2)
        self.assertEqual(p.n_target, 48)
        self.assertEqual(p.ground_normal, (0.0, 1.0, 0.0))
        self.assertTrue(p.enable_iqr_outlier)

    def test_soft_preset(self):
        p = ContactParams.soft_body()
        self.assertEqual(p.d_enter, 0.05)
        self.assertEqual(p.k, 1)
        self.assertEqual(p.n_target, 128)
        self.assertEqual(p.max_manifolds, 64)
        self.assertFalse(p.enable_neighbor_support)
        self.assertFalse(p.enable_hysteresis)
        self.assertFalse(p.enable_quality_gates)
        self.assertTrue(p.enable_ema_smoothing)
        self.assertTrue(p.enable_hold_last)

    def test_invalid_values_replaced(self):
        p = ContactParams(d_enter=-1.0, d_exit=float("nan"), grid_cell_xz=0.0,
                          tau_centroid=float("inf"), k=-3, n_target="many",
                          ground_normal=(0.0, 0.0, 0.0))
        self.assertEqual(p.d_enter, 0.004)
        self.assertEqual(p.d_exit, 0.010)
        self.assertEqual(p.grid_cell_xz, 0.004)
        self.assertEqual(p.tau_centroid, 0.05)
        self.assertEqual(p.k, 2)
        self.assertEqual(p.n_target, 48)
        self.assertEqual(p.ground_normal, (0.0, 1.0, 0.0))

    def test_non_finite_counts_use_defaults(self):
        p = ContactParams(n_hold=float("inf"), k=float("nan"), n_target=float("-inf"),
                          max_manifolds=10 ** 400)
        self.assertEqual(p.n_hold, 2)
        self.assertEqual(p.k, 2)
        self.assertEqual(p.n_target, 48)
        self.assertEqual(p.max_manifolds, 32)
        self.assertEqual(ContactParams(n_hold=3.0).n_hold, 3)

    def test_switches_accept_only_bools(self):
        p = ContactParams(enable_hold_last="false", enable_iqr_outlier=0, enable_synthetic=False)
        self.assertIs(p.enable_hold_last, True)
        self.assertIs(p.enable_iqr_outlier, True)
        self.assertIs(p.enable_synthetic, False)
        self.assertIs(ContactParams(enable_synthetic=np.bool_(False)).enable_synthetic, False)

    def test_negative_ground_offset_allowed(self):
        self.assertEqual(ContactParams(ground_offset=-0.5).ground_offset, -0.5)

    def test_ground_normal_normalized(self):
        p = ContactParams(ground_normal=(0.0, 3.0, 0.0))
        self.assertEqual(p.ground_normal, (0.0, 1.0, 0.0))

    def test_with_overrides_validates(self):
        base = ContactParams.rigid_default()
        p = base.with_overrides(n_hold=5, y_max=-2.0)
        self.assertEqual(p.n_hold, 5)
        self.assertEqual(p.y_max, 0.008)
        self.assertEqual(base.n_hold, 2)

    def test_frozen(self):
        with self.assertRaises(dataclasses.FrozenInstanceError):
            ContactParams().d_enter = 1.0


class TestRigidAcquisition(unittest.TestCase):
    def setUp(self):
        self.params = ContactParams.rigid_default()
        self.pipeline = ContactAcquisitionPipeline(self.params)
        self.state = ContactState()

    def test_grid_dedupe_same_cell(self):
        frame = rigid_frame([(0.0010, 0.0, 0.0010), (0.0015, 0.0, 0.0012)], 0.0)
        result = self.pipeline.process(frame, self.state)
        self.assertEqual(result.raw_count, 2)
        self.assertEqual(result.filtered_count, 1)

    def test_grid_dedupe_disabled(self):
        pipeline = ContactAcquisitionPipeline(self.params.with_overrides(enable_grid_dedupe=False))
        frame = rigid_frame([(0.0010, 0.0, 0.0010), (0.0015, 0.0, 0.0012)], 0.0)
        self.assertEqual(pipeline.process(frame, ContactState()).filtered_count, 2)

    def test_min_pair_distance_across_cells(self):
        close = rigid_frame([(0.0039, 0.0, 0.001), (0.0041, 0.0, 0.001)], 0.0)
        self.assertEqual(self.pipeline.process(close, ContactState()).filtered_count, 1)

        apart = rigid_frame([(0.0039, 0.0, 0.001), (0.0069, 0.0, 0.001)], 0.0)
        self.assertEqual(self.pipeline.process(apart, ContactState()).filtered_count, 2)

    def test_iqr_rejects_outlier(self):
        points = spread_points(7) + [(0.2, 0.5, 0.0)]
        result = self.pipeline.process(rigid_frame(points, 0.0), self.state)

        self.assertEqual(result.raw_count, 8)
        self.assertEqual(result.filtered_count, 7)
        self.assertTrue(all(c.y == 0.0 for c in result.contact_samples))
        self.assertFalse(result.flags.rejected)

    def test_iqr_needs_eight_points(self):
        points = spread_points(6) + [(0.2, 0.5, 0.0)]
        result = self.pipeline.process(rigid_frame(points, 0.0), self.state)
        self.assertEqual(result.filtered_count, 7)
        self.assertTrue(result.flags.rejected)
        self.assertIn("vertical_spread", result.flags.reasons)

    def test_distance_filter(self):
        n = np.array([0.0, 1.0, 0.0])
        manifold = ContactManifold(points=(
            ManifoldPoint(np.array([0.0, 0.0, 0.0]), n, distance=-0.001),
            ManifoldPoint(np.array([0.05, 0.0, 0.0]), n, distance=0.02),
        ), body_a="ground", body_b="block")
        frame = FrameContext(manifolds=[manifold], body=BodySnapshot(body_id="block"), timestamp=0.0)

        self.assertEqual(self.pipeline.process(frame, ContactState()).raw_count, 1)

        loose = ContactAcquisitionPipeline(self.params.with_overrides(enable_distance_filter=False))
        self.assertEqual(loose.process(frame, ContactState()).raw_count, 2)

    def test_candidate_cap(self):
        pipeline = ContactAcquisitionPipeline(self.params.with_overrides(n_target=3))
        result = pipeline.process(rigid_frame(spread_points(10), 0.0), self.state)
        self.assertEqual(result.raw_count, 3)

    def test_manifold_cap(self):
        pipeline = ContactAcquisitionPipeline(self.params.with_overrides(max_manifolds=1))
        manifolds = (manifolds_from_points(spread_points(2))
                     + manifolds_from_points(spread_points(2, x0=0.5)))
        frame = FrameContext(manifolds=manifolds, body=BodySnapshot(), timestamp=0.0)
        self.assertEqual(pipeline.process(frame, self.state).raw_count, 2)

    def test_sparse_is_degraded(self):
        result = self.pipeline.process(rigid_frame(spread_points(2), 0.0), self.state)
        self.assertTrue(result.flags.degraded)
        self.assertIn("sparse", result.flags.reasons)
        self.assertFalse(result.flags.rejected)
        self.assertTrue(result.has_footprint)

    def test_average_normal_flipped_to_ground_side(self):
        result = self.pipeline.process(
            rigid_frame(spread_points(4), 0.0, normal=(0.0, -1.0, 0.0)), self.state)
        np.testing.assert_allclose(result.avg_contact_normal, [0.0, 1.0, 0.0])
        np.testing.assert_allclose(result.avg_contact_point, [0.015, 0.0, 0.0])

    def test_no_contacts(self):
        result = self.pipeline.process(rigid_frame([], 0.0), self.state)
        self.assertFalse(result.has_footprint)
        self.assertTrue(result.flags.rejected)
        self.assertIn("no_contacts", result.flags.reasons)
        self.assertIsNone(result.geometric_center)
        np.testing.assert_allclose(result.avg_contact_normal, [0.0, 1.0, 0.0])

    def test_degenerate_plane_skips_plane_filters(self):
        plane = ContactPlaneDescriptor(normal=np.zeros(3), offset=0.0)
        points = spread_points(7) + [(0.2, 0.5, 0.0)]
        result = self.pipeline.process(rigid_frame(points, 0.0, contact_plane=plane), self.state)

        self.assertFalse(result.diagnostics["plane_available"])
        self.assertEqual(result.filtered_count, 8)
        self.assertFalse(result.flags.rejected)

    def test_result_to_dict(self):
        result = self.pipeline.process(rigid_frame(spread_points(5), 0.0), self.state)
        d = result.to_dict()
        for key in ("contact_samples", "count", "filtered_count", "raw_count", "real_contact_count",
                    "synthetic_count", "avg_contact_normal", "avg_contact_point",
                    "geometric_center", "flags", "diagnostics"):
            self.assertIn(key, d)
        self.assertEqual(set(d["flags"]), {"degraded", "rejected", "held", "reasons"})
        self.assertEqual(d["contact_samples"][0], {"x": 0.0, "y": 0.0, "z": 0.0, "is_synthetic": False})


class TestTemporalBehaviour(unittest.TestCase):
    def setUp(self):
        self.pipeline = ContactAcquisitionPipeline(ContactParams.rigid_default())
        self.state = ContactState()

    def test_first_frame_uses_default_dt(self):
        result = self.pipeline.process(rigid_frame(spread_points(5), 3.0), self.state)
        self.assertAlmostEqual(result.diagnostics["dt"], 1.0 / 60.0)
        self.assertIsNone(result.diagnostics["ema_alpha"])

    def test_ema_uses_elapsed_time(self):
        first = self.pipeline.process(rigid_frame(spread_points(5), 0.0), self.state)
        second = self.pipeline.process(rigid_frame(spread_points(5, x0=0.1), 0.05), self.state)

        alpha = math.exp(-1.0)
        raw_x = 0.1 + 0.02
        expected = alpha * first.geometric_center[0] + (1.0 - alpha) * raw_x
        self.assertAlmostEqual(second.diagnostics["ema_alpha"], alpha)
        self.assertAlmostEqual(second.geometric_center[0], expected)

    def test_explicit_now_overrides_timestamp(self):
        self.pipeline.process(rigid_frame(spread_points(5), 0.0), self.state, now=10.0)
        result = self.pipeline.process(rigid_frame(spread_points(5), 0.0), self.state, now=10.2)
        self.assertAlmostEqual(result.diagnostics["dt"], 0.2)

    def test_ema_disabled(self):
        pipeline = ContactAcquisitionPipeline(ContactParams(enable_ema_smoothing=False))
        pipeline.process(rigid_frame(spread_points(5), 0.0), self.state)
        result = pipeline.process(rigid_frame(spread_points(5, x0=0.1), 0.05), self.state)
        self.assertAlmostEqual(result.geometric_center[0], 0.12)

    def test_hold_last(self):
        good = self.pipeline.process(rigid_frame(spread_points(5), 0.0), self.state)
        center = good.geometric_center
        self.assertFalse(good.flags.rejected)

        for i in range(2):
            held = self.pipeline.process(rigid_frame([], 0.016 * (i + 1)), self.state)
            self.assertTrue(held.flags.rejected)
            self.assertTrue(held.flags.held)
            np.testing.assert_allclose(held.geometric_center, center)
            self.assertEqual(held.filtered_count, 0)
            self.assertEqual(held.diagnostics["held_count"], 5)
            self.assertEqual(len(held.contact_samples), 5)

        dropped = self.pipeline.process(rigid_frame([], 0.048), self.state)
        self.assertTrue(dropped.flags.rejected)
        self.assertFalse(dropped.flags.held)
        self.assertFalse(dropped.has_footprint)

    def test_hold_last_disabled(self):
        pipeline = ContactAcquisitionPipeline(ContactParams(enable_hold_last=False))
        pipeline.process(rigid_frame(spread_points(5), 0.0), self.state)
        result = pipeline.process(rigid_frame([], 0.016), self.state)
        self.assertFalse(result.flags.held)
        self.assertFalse(result.has_footprint)

    def test_good_frame_resets_hold_budget(self):
        self.pipeline.process(rigid_frame(spread_points(5), 0.0), self.state)
        self.pipeline.process(rigid_frame([], 0.016), self.state)
        self.assertEqual(self.state.hold_frames, 1)
        self.pipeline.process(rigid_frame(spread_points(5), 0.032), self.state)
        self.assertEqual(self.state.hold_frames, 0)

    def test_state_reset(self):
        self.pipeline.process(rigid_frame(spread_points(5), 0.0), self.state)
        self.state.reset()
        self.assertIsNone(self.state.prev_centroid)
        self.assertIsNone(self.state.last_update_time)
        self.assertFalse(self.state.has_good_state)


class TestSoftAcquisition(unittest.TestCase):
    def setUp(self):
        self.params = ContactParams.soft_body().with_overrides(
            enable_hysteresis=True, d_enter=0.004, d_exit=0.010, enable_velocity_gate=False)
        self.pipeline = ContactAcquisitionPipeline(self.params)

    def test_entering_transition_kept(self):
        state = ContactState()
        self.assertEqual(self.pipeline.process(soft_frame([(0.0, 0.012, 0.0)], 0.0), state).raw_count, 0)
        result = self.pipeline.process(soft_frame([(0.0, 0.003, 0.0)], 0.016), state)
        self.assertEqual(result.raw_count, 1)
        self.assertEqual(result.diagnostics["node_contacts"], 1)

    def test_inside_band_rejected(self):
        state = ContactState()
        self.pipeline.process(soft_frame([(0.0, 0.012, 0.0)], 0.0), state)
        result = self.pipeline.process(soft_frame([(0.0, 0.006, 0.0)], 0.016), state)
        self.assertEqual(result.raw_count, 0)

    def test_previous_distance_tracked_for_every_node(self):
        state = ContactState()
        self.pipeline.process(soft_frame([(0.0, 0.002, 0.0), (0.1, 0.5, 0.0)], 0.0), state)
        np.testing.assert_allclose(state.prev_sd, [0.002, 0.5])

        # Node count change restarts the memory
        self.pipeline.process(soft_frame([(0.0, 0.002, 0.0)], 0.016), state)
        self.assertEqual(state.prev_sd.shape, (1,))

    def test_velocity_gate(self):
        pipeline = ContactAcquisitionPipeline(
            self.params.with_overrides(enable_velocity_gate=True, v_min=0.02))
        fast = pipeline.process(soft_frame([(0.0, 0.006, 0.0)], 0.0, velocities=[(0.0, -0.5, 0.0)]),
                                ContactState())
        self.assertEqual(fast.raw_count, 1)
        self.assertEqual(fast.diagnostics["fast_approach_nodes"], 1)

        slow = pipeline.process(soft_frame([(0.0, 0.006, 0.0)], 0.0, velocities=[(0.0, -0.01, 0.0)]),
                                ContactState())
        self.assertEqual(slow.raw_count, 0)

        unknown = pipeline.process(soft_frame([(0.0, 0.006, 0.0)], 0.0), ContactState())
        self.assertEqual(unknown.raw_count, 0)

    def test_contact_plane_descriptor(self):
        frame = FrameContext(
            body=soft_frame([(0.0, 1.002, 0.0)], 0.0).body,
            contact_plane=ContactPlaneDescriptor(normal=np.array([0.0, 1.0, 0.0]), offset=1.0),
            timestamp=0.0,
        )
        self.assertEqual(self.pipeline.process(frame, ContactState()).raw_count, 1)

    def test_manifolds_must_involve_body(self):
        params = ContactParams.soft_body()
        pipeline = ContactAcquisitionPipeline(params)
        body = soft_frame([], 0.0).body
        frame = FrameContext(
            manifolds=(manifolds_from_points(spread_points(2), body_a="ground", body_b="jelly")
                       + manifolds_from_points(spread_points(3, x0=1.0), body_a="ground", body_b="other")),
            body=body,
            timestamp=0.0,
        )
        result = pipeline.process(frame, ContactState())
        self.assertEqual(result.raw_count, 2)
        self.assertEqual(result.diagnostics["manifold_contacts"], 2)

    def test_neighbor_support(self):
        params = ContactParams.soft_body().with_overrides(enable_neighbor_support=True, k=1, r_n=0.05)
        pipeline = ContactAcquisitionPipeline(params)
        nodes = [(0.0, 0.0, 0.0), (0.01, 0.0, 0.0), (0.02, 0.0, 0.0), (0.5, 0.0, 0.5)]
        result = pipeline.process(soft_frame(nodes, 0.0), ContactState())
        self.assertEqual(result.raw_count, 4)
        self.assertEqual(result.filtered_count, 3)

    def test_auto_preset_follows_body(self):
        pipeline = ContactAcquisitionPipeline()
        self.assertEqual(pipeline.params_for(soft_frame([], 0.0)), ContactParams.soft_body())
        self.assertEqual(pipeline.params_for(rigid_frame([], 0.0)), ContactParams.rigid_default())


class TestSyntheticAugmentation(unittest.TestCase):
    def setUp(self):
        self.pipeline = ContactAcquisitionPipeline(ContactParams.rigid_default())
        self.plane = Plane((0.0, 1.0, 0.0), (0.0, 0.0, 0.0))

    def test_mesh_corners(self):
        corners = mesh_kdop8_corners(BLOCK_VERTICES, self.plane, tolerance=0.10)
        self.assertEqual(corners.shape, (4, 3))
        np.testing.assert_allclose(np.sort(np.abs(corners[:, 0])), [0.1] * 4)
        np.testing.assert_allclose(np.sort(np.abs(corners[:, 2])), [0.05] * 4)
        np.testing.assert_allclose(corners[:, 1], 0.0, atol=1e-12)
        self.assertEqual(len({(np.sign(c[0]), np.sign(c[2])) for c in corners}), 4)

    def test_mesh_far_from_plane(self):
        self.assertIsNone(mesh_kdop8_corners(BLOCK_VERTICES + np.array([0.0, 1.0, 0.0]), self.plane))

    def test_sparse_contacts_augmented(self):
        frame = rigid_frame(spread_points(2), 0.0, vertices=BLOCK_VERTICES)
        result = self.pipeline.process(frame, ContactState())

        self.assertEqual(result.real_contact_count, 2)
        self.assertEqual(result.synthetic_count, 4)
        self.assertEqual(len(result.contact_samples), 6)
        self.assertFalse(any(c.is_synthetic for c in result.contact_samples[:2]))
        self.assertTrue(all(c.is_synthetic for c in result.contact_samples[2:]))
        self.assertEqual(result.diagnostics["augmentation_used"], "kdop8")

    def test_fast_spin_adds_midpoints(self):
        frame = rigid_frame(spread_points(2), 0.0, vertices=BLOCK_VERTICES,
                            angular_velocity=(0.0, 10.0, 0.0))
        result = self.pipeline.process(frame, ContactState())
        self.assertEqual(result.synthetic_count, 8)

    def test_dense_contacts_not_augmented(self):
        frame = rigid_frame(spread_points(5), 0.0, vertices=BLOCK_VERTICES)
        result = self.pipeline.process(frame, ContactState())
        self.assertEqual(result.synthetic_count, 0)

    def test_augmentation_disabled(self):
        pipeline = ContactAcquisitionPipeline(ContactParams(enable_synthetic=False))
        frame = rigid_frame(spread_points(2), 0.0, vertices=BLOCK_VERTICES)
        self.assertEqual(pipeline.process(frame, ContactState()).synthetic_count, 0)

    def test_empty_contacts_stay_empty(self):
        self.assertEqual(augment_contacts_with_kdop8([], BLOCK_VERTICES, self.plane), [])

    def test_separation_helpers(self):
        samples = [ContactCandidate(0.0, 0.0, 0.0), ContactCandidate(1.0, 0.0, 0.0, is_synthetic=True)]
        self.assertEqual(len(get_real_contacts(samples)), 1)
        self.assertEqual(len(get_synthetic_contacts(samples)), 1)
        groups = separate_contacts(samples)
        self.assertEqual(len(groups["all"]), 2)
        self.assertIs(groups["synthetic"][0], samples[1])


if __name__ == "__main__":
    unittest.main(verbosity=2)
