"""
Tests for the incremental registration engine.

A scripted stub aligner stands in for ICP so that every property of the
state machine can be checked exactly: seeding on the first frame,
composition order, rollback on non-convergence, reset and aligner swaps.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from pointcloud_odometry.registration.aligner import PairwiseAligner
from pointcloud_odometry.registration.incremental import (
    AlignerNotSetError,
    IncrementalRegistration,
    RegistrationState,
)
from pointcloud_odometry.registration.transform import (
    apply_transform,
    compose,
    identity,
    rigid_transform,
    rotation_about_axis,
)


class ScriptedAligner:
    """Returns pre-programmed (transform, converged) results in order."""

    def __init__(self, results):
        self.results = list(results)
        self.calls = []
        self._source = None
        self._target = None
        self._current = None

    def set_input_source(self, cloud):
        self._source = cloud

    def set_input_target(self, cloud):
        self._target = cloud

    def align(self, initial_guess):
        self.calls.append((self._source, self._target, np.array(initial_guess)))
        self._current = self.results.pop(0)
        return apply_transform(self._source, self._current[0])

    def has_converged(self):
        return self._current[1]

    def get_final_transformation(self):
        return self._current[0]


class ConstantAligner(ScriptedAligner):
    def __init__(self, transform, converged=True):
        super().__init__([])
        self.transform = transform
        self.converged = converged

    def align(self, initial_guess):
        self.calls.append((self._source, self._target, np.array(initial_guess)))
        self._current = (self.transform, self.converged)
        return apply_transform(self._source, self.transform)


class ExplodingAligner(ScriptedAligner):
    def align(self, initial_guess):
        raise RuntimeError("optimizer crashed")


def _frame(seed: int, n: int = 50) -> np.ndarray:
    return np.random.default_rng(seed).normal(size=(n, 3))


def _rot_z(deg: float) -> np.ndarray:
    return rigid_transform(rotation_about_axis([0.0, 0.0, 1.0], np.deg2rad(deg)))


def _trans(x: float, y: float = 0.0, z: float = 0.0) -> np.ndarray:
    return rigid_transform(translation=[x, y, z])


def test_stub_aligners_satisfy_protocol():
    assert isinstance(ScriptedAligner([]), PairwiseAligner)


def test_fresh_engine_state():
    engine = IncrementalRegistration()

    assert engine.state is RegistrationState.UNINITIALIZED
    assert engine.is_initialized is False
    assert engine.retained_frame is None
    assert engine.aligner is None
    np.testing.assert_array_equal(engine.get_delta_transform(), np.eye(4))
    np.testing.assert_array_equal(engine.get_absolute_transform(), np.eye(4))


def test_register_without_aligner_raises():
    engine = IncrementalRegistration()

    with pytest.raises(AlignerNotSetError):
        engine.register_cloud(_frame(0))

    # Nothing was adopted
    assert engine.retained_frame is None


def test_missing_aligner_error_is_runtime_error():
    assert issubclass(AlignerNotSetError, RuntimeError)


def test_first_call_adopts_seed_as_delta_and_absolute():
    """First frame: success, both transforms equal the seed, aligner untouched."""
    aligner = ConstantAligner(_rot_z(10.0))
    engine = IncrementalRegistration(aligner)
    seed = compose(_trans(1.0, 2.0, 3.0), _rot_z(30.0))
    frame = _frame(0)

    assert engine.register_cloud(frame, seed) is True

    np.testing.assert_allclose(engine.get_absolute_transform(), seed)
    np.testing.assert_allclose(engine.get_delta_transform(), seed)
    assert engine.retained_frame is frame
    assert engine.state is RegistrationState.TRACKING
    assert aligner.calls == []


def test_first_call_without_seed_uses_identity():
    engine = IncrementalRegistration(ConstantAligner(_rot_z(10.0)))

    assert engine.register_cloud(_frame(0)) is True
    np.testing.assert_array_equal(engine.get_absolute_transform(), np.eye(4))


def test_aligner_receives_new_frame_as_source_and_retained_as_target():
    aligner = ConstantAligner(_trans(0.5))
    engine = IncrementalRegistration(aligner)
    f0, f1 = _frame(0), _frame(1)
    guess = _trans(0.4)

    engine.register_cloud(f0)
    engine.register_cloud(f1, guess)

    source, target, passed_guess = aligner.calls[0]
    assert source is f1
    assert target is f0
    np.testing.assert_allclose(passed_guess, guess)


def test_composition_is_right_multiplied_in_temporal_order():
    """absolute == G @ T1 @ T2, checked with non-commuting transforms."""
    R = _rot_z(90.0)
    t = _trans(1.0)
    G = _trans(0.0, 0.0, 5.0)
    engine = IncrementalRegistration(ScriptedAligner([(R, True), (t, True)]))

    engine.register_cloud(_frame(0), G)
    engine.register_cloud(_frame(1))
    engine.register_cloud(_frame(2))

    expected = G @ R @ t
    wrong_order = G @ t @ R
    assert not np.allclose(expected, wrong_order)
    np.testing.assert_allclose(engine.get_absolute_transform(), expected)
    np.testing.assert_allclose(engine.get_delta_transform(), t)


def test_failed_registration_is_a_no_op():
    aligner = ScriptedAligner([(_trans(1.0), True), (_trans(99.0), False)])
    engine = IncrementalRegistration(aligner)
    f0, f1, f2 = _frame(0), _frame(1), _frame(2)

    engine.register_cloud(f0)
    engine.register_cloud(f1)
    before_abs = engine.get_absolute_transform()
    before_delta = engine.get_delta_transform()

    assert engine.register_cloud(f2) is False

    assert engine.get_absolute_transform().tobytes() == before_abs.tobytes()
    assert engine.get_delta_transform().tobytes() == before_delta.tobytes()
    assert engine.retained_frame is f1


def test_retry_after_failure_aligns_against_same_reference():
    aligner = ScriptedAligner([(_trans(5.0), False), (_trans(1.0), True)])
    engine = IncrementalRegistration(aligner)
    f0, f1 = _frame(0), _frame(1)

    engine.register_cloud(f0)
    assert engine.register_cloud(f1, _trans(0.0)) is False
    assert engine.register_cloud(f1, _trans(0.9)) is True

    assert aligner.calls[0][1] is f0
    assert aligner.calls[1][1] is f0
    np.testing.assert_allclose(engine.get_absolute_transform(), _trans(1.0))
    assert engine.retained_frame is f1


def test_chain_of_failures_never_advances_trajectory():
    engine = IncrementalRegistration(ConstantAligner(_trans(1.0), converged=False))
    f0 = _frame(0)
    engine.register_cloud(f0, _trans(2.0))

    for seed in range(1, 6):
        assert engine.register_cloud(_frame(seed)) is False

    np.testing.assert_allclose(engine.get_absolute_transform(), _trans(2.0))
    assert engine.retained_frame is f0


def test_aligner_exception_propagates_and_leaves_state():
    engine = IncrementalRegistration(ConstantAligner(_trans(1.0)))
    f0 = _frame(0)
    engine.register_cloud(f0)
    engine.register_cloud(_frame(1))
    before = engine.get_absolute_transform()
    retained = engine.retained_frame

    engine.set_aligner(ExplodingAligner([]))
    with pytest.raises(RuntimeError, match="optimizer crashed"):
        engine.register_cloud(_frame(2))

    np.testing.assert_array_equal(engine.get_absolute_transform(), before)
    assert engine.retained_frame is retained


def test_reset_on_fresh_engine_is_a_no_op():
    engine = IncrementalRegistration(ConstantAligner(_trans(1.0)))
    engine.reset()

    assert engine.state is RegistrationState.UNINITIALIZED
    np.testing.assert_array_equal(engine.get_delta_transform(), np.eye(4))
    np.testing.assert_array_equal(engine.get_absolute_transform(), np.eye(4))


def test_reset_restores_fresh_state_and_keeps_aligner():
    aligner = ConstantAligner(_trans(1.0))
    engine = IncrementalRegistration(aligner)
    engine.register_cloud(_frame(0), _rot_z(45.0))
    engine.register_cloud(_frame(1))

    engine.reset()

    assert engine.retained_frame is None
    assert engine.aligner is aligner
    np.testing.assert_array_equal(engine.get_delta_transform(), np.eye(4))
    np.testing.assert_array_equal(engine.get_absolute_transform(), np.eye(4))

    # Next call behaves as a first call
    n_calls = len(aligner.calls)
    seed = _trans(0.0, 3.0)
    assert engine.register_cloud(_frame(2), seed) is True
    assert len(aligner.calls) == n_calls
    np.testing.assert_allclose(engine.get_absolute_transform(), seed)
    np.testing.assert_allclose(engine.get_delta_transform(), seed)


def test_swapping_aligner_only_affects_future_deltas():
    first = ConstantAligner(_rot_z(90.0))
    second = ConstantAligner(_trans(2.0))
    engine = IncrementalRegistration(first)

    engine.register_cloud(_frame(0))
    engine.register_cloud(_frame(1))
    accumulated = engine.get_absolute_transform()

    engine.set_aligner(second)
    np.testing.assert_array_equal(engine.get_absolute_transform(), accumulated)

    engine.register_cloud(_frame(2))

    assert len(first.calls) == 1
    assert len(second.calls) == 1
    np.testing.assert_allclose(engine.get_absolute_transform(), _rot_z(90.0) @ _trans(2.0))


def test_set_aligner_before_first_call():
    engine = IncrementalRegistration()
    engine.set_aligner(ConstantAligner(_trans(1.0)))

    assert engine.register_cloud(_frame(0)) is True
    assert engine.register_cloud(_frame(1)) is True
    np.testing.assert_allclose(engine.get_absolute_transform(), _trans(1.0))


def test_three_quarter_turns_compose_to_270_degrees():
    """Three converged 90° deltas rotate (1, 0, 0) to (0, -1, 0)."""
    R = _rot_z(90.0)
    engine = IncrementalRegistration(ConstantAligner(R))

    for seed in range(4):
        assert engine.register_cloud(_frame(seed), identity()) is True

    absolute = engine.get_absolute_transform()
    np.testing.assert_allclose(absolute, R @ R @ R, atol=1e-12)

    point = np.array([[1.0, 0.0, 0.0]])
    np.testing.assert_allclose(apply_transform(point, absolute), [[0.0, -1.0, 0.0]], atol=1e-12)


def test_accessors_return_copies():
    engine = IncrementalRegistration(ConstantAligner(_trans(1.0)))
    engine.register_cloud(_frame(0))
    engine.register_cloud(_frame(1))

    leaked = engine.get_absolute_transform()
    leaked[:] = 0.0
    engine.get_delta_transform()[:] = 0.0

    np.testing.assert_allclose(engine.get_absolute_transform(), _trans(1.0))
    np.testing.assert_allclose(engine.get_delta_transform(), _trans(1.0))


def test_seed_is_copied_not_aliased():
    engine = IncrementalRegistration(ConstantAligner(_trans(1.0)))
    seed = _trans(4.0)
    engine.register_cloud(_frame(0), seed)

    seed[0, 3] = -100.0

    np.testing.assert_allclose(engine.get_absolute_transform(), _trans(4.0))


def test_engine_does_not_modify_frames():
    engine = IncrementalRegistration(ConstantAligner(_trans(1.0)))
    f0, f1 = _frame(0), _frame(1)
    f0_before, f1_before = f0.copy(), f1.copy()

    engine.register_cloud(f0)
    engine.register_cloud(f1)

    np.testing.assert_array_equal(f0, f0_before)
    np.testing.assert_array_equal(f1, f1_before)


def test_invalid_initial_guess_rejected_before_state_change():
    engine = IncrementalRegistration(ConstantAligner(_trans(1.0)))

    with pytest.raises(ValueError):
        engine.register_cloud(_frame(0), np.eye(3))
    with pytest.raises(ValueError):
        engine.register_cloud(_frame(0), np.full((4, 4), np.nan))

    assert engine.state is RegistrationState.UNINITIALIZED


def test_float32_engine_keeps_scalar_type():
    engine = IncrementalRegistration(ConstantAligner(_trans(1.0)), dtype=np.float32)
    engine.register_cloud(_frame(0))
    engine.register_cloud(_frame(1))

    assert engine.get_absolute_transform().dtype == np.float32
    assert engine.get_delta_transform().dtype == np.float32


def test_non_float_dtype_rejected():
    with pytest.raises(ValueError):
        IncrementalRegistration(dtype=np.int32)
