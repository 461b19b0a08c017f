import math

import pytest

from spzformat.types import (
    CoordinateConverter,
    CoordinateSystem,
    GaussianCloud,
    SpzError,
    axes_match,
    axis_angle_quat,
    coordinate_converter,
    degree_for_dim,
    dim_for_degree,
    dot,
    float_to_half,
    half_to_float,
    norm,
    normalized,
    quat_times,
    rotate_vector,
    squared_norm,
)


def _approx(expected, tol=1e-6):
    return pytest.approx(tuple(expected), abs=tol)


def _sample_cloud(sh_degree=1):
    n = 2
    dim = dim_for_degree(sh_degree)
    return GaussianCloud(
        num_points=n,
        sh_degree=sh_degree,
        positions=[1.0, 2.0, 3.0, -4.0, 5.0, -6.0],
        scales=[0.1, 0.2, 0.3, -0.5, -0.6, -0.7],
        rotations=[0.1, 0.2, 0.3, 0.9, -0.4, 0.5, -0.6, 0.7],
        alphas=[0.5, -0.5],
        colors=[0.1, 0.2, 0.3, 0.4, 0.5, 0.6],
        sh=[0.01 * (k + 1) for k in range(n * dim * 3)],
    )


# --- coordinate systems ---------------------------------------------------


def test_coordinate_system_values():
    assert CoordinateSystem(0) is CoordinateSystem.UNSPECIFIED
    assert CoordinateSystem(4) is CoordinateSystem.RUB
    assert CoordinateSystem(6) is CoordinateSystem.RDF
    assert CoordinateSystem(8) is CoordinateSystem.RUF
    assert axes_match(CoordinateSystem.RUB, CoordinateSystem.RUF) == (True, True, False)


def test_axes_match_unspecified_matches_everything():
    for system in CoordinateSystem:
        assert axes_match(CoordinateSystem.UNSPECIFIED, system) == (True, True, True)
        assert axes_match(system, CoordinateSystem.UNSPECIFIED) == (True, True, True)


@pytest.mark.parametrize("system", list(CoordinateSystem))
def test_converter_identity(system):
    assert coordinate_converter(system, system) == CoordinateConverter()


def test_converter_is_symmetric():
    for a in CoordinateSystem:
        for b in CoordinateSystem:
            assert coordinate_converter(a, b) == coordinate_converter(b, a)


def test_rub_to_rdf_flips_y_and_z():
    c = coordinate_converter(CoordinateSystem.RUB, CoordinateSystem.RDF)
    assert c.flip_p == (1.0, -1.0, -1.0)
    assert axes_match(CoordinateSystem.RUB, CoordinateSystem.RDF) == (True, False, False)


def test_converter_flips_are_unit_signs():
    for a in CoordinateSystem:
        for b in CoordinateSystem:
            c = coordinate_converter(a, b)
            assert len(c.flip_sh) == 15
            assert all(abs(v) == 1.0 for v in c.flip_p + c.flip_q + c.flip_sh)


# --- spherical harmonics dims ---------------------------------------------


@pytest.mark.parametrize("degree,dim", [(0, 0), (1, 3), (2, 8), (3, 15)])
def test_dim_for_degree(degree, dim):
    assert dim_for_degree(degree) == dim
    assert degree_for_dim(dim) == degree


def test_degree_for_dim_intermediate_values():
    assert degree_for_dim(2) == 0
    assert degree_for_dim(7) == 1
    assert degree_for_dim(14) == 2
    assert degree_for_dim(45) == 3


def test_dim_for_degree_rejects_unsupported():
    with pytest.raises(SpzError):
        dim_for_degree(4)
    with pytest.raises(SpzError):
        dim_for_degree(-1)


# --- half precision -------------------------------------------------------


def test_half_round_trip_all_finite_and_infinite():
    for h in range(0x10000):
        exponent = (h >> 10) & 0x1F
        mantissa = h & 0x3FF
        if exponent == 31 and mantissa != 0:
            continue
        assert float_to_half(half_to_float(h)) == h


def test_half_nan():
    assert math.isnan(half_to_float(0x7C01))
    assert float_to_half(math.nan) == 0x7C01


def test_half_infinity():
    assert half_to_float(0x7C00) == math.inf
    assert float_to_half(math.inf) == 0x7C00
    assert float_to_half(1e6) == 0x7C00
    assert float_to_half(-1e300) == 0xFC00


def test_half_to_float_rejects_out_of_range():
    with pytest.raises(ValueError):
        half_to_float(0x10000)


# --- vector helpers -------------------------------------------------------


def test_dot_and_norms():
    v = (3.0, 4.0, 12.0)
    assert dot(v, v) == squared_norm(v)
    assert math.isclose(norm(v) ** 2, squared_norm(v))


def test_normalized_has_unit_length():
    for v in [(3.0, -4.0, 5.0), (0.2, 0.4, -0.1, 0.9)]:
        n = normalized(v)
        assert math.isclose(norm(n), 1.0)
        assert len(n) == len(v)


def test_quat_identity_product():
    identity = (1.0, 0.0, 0.0, 0.0)
    q = (0.3, -0.2, 0.5, 0.7)
    expected = normalized(q)
    assert tuple(quat_times(identity, q)) == _approx(expected)
    assert tuple(quat_times(q, identity)) == _approx(expected)


def test_rotate_vector_identity():
    p = (1.5, -2.5, 3.5)
    assert tuple(rotate_vector((1.0, 0.0, 0.0, 0.0), p)) == _approx(p)


def test_axis_angle_zero_is_identity():
    assert axis_angle_quat((0.0, 0.0, 0.0)) == (1.0, 0.0, 0.0, 0.0)


def test_axis_angle_half_turn_about_x():
    q = axis_angle_quat((math.pi, 0.0, 0.0))
    assert tuple(rotate_vector(q, (0.0, 1.0, 0.0))) == _approx((0.0, -1.0, 0.0))
    assert tuple(rotate_vector(q, (1.0, 0.0, 0.0))) == _approx((1.0, 0.0, 0.0))


def test_rotation_preserves_length():
    q = axis_angle_quat((0.3, -1.2, 0.7))
    p = (2.0, -1.0, 0.5)
    assert math.isclose(norm(rotate_vector(q, p)), norm(p))


def test_quat_product_composes_rotations():
    a = axis_angle_quat((0.4, 0.1, -0.3))
    b = axis_angle_quat((-0.2, 0.8, 0.5))
    p = (0.3, -0.7, 1.1)
    composed = rotate_vector(quat_times(a, b), p)
    sequential = rotate_vector(a, rotate_vector(b, p))
    assert tuple(composed) == _approx(sequential)


# --- GaussianCloud --------------------------------------------------------


def test_check_sizes_accepts_consistent_cloud():
    cloud = _sample_cloud()
    cloud.check_sizes()
    assert len(cloud.sh) == cloud.num_points * 9


@pytest.mark.parametrize("attr", ["positions", "scales", "rotations", "alphas", "colors", "sh"])
def test_check_sizes_rejects_wrong_length(attr):
    cloud = _sample_cloud()
    getattr(cloud, attr).append(0.0)
    with pytest.raises(SpzError):
        cloud.check_sizes()


def test_check_sizes_rejects_bad_degree():
    cloud = _sample_cloud()
    cloud.sh_degree = 4
    with pytest.raises(SpzError):
        cloud.check_sizes()


def test_convert_coordinates_twice_is_identity():
    for degree in (0, 1, 2, 3):
        original = _sample_cloud(degree)
        cloud = _sample_cloud(degree)
        cloud.convert_coordinates(CoordinateSystem.RUB, CoordinateSystem.LDF)
        cloud.convert_coordinates(CoordinateSystem.LDF, CoordinateSystem.RUB)
        assert cloud == original


def test_rotate_180_flips_positions_and_keeps_w():
    original = _sample_cloud()
    cloud = _sample_cloud()
    cloud.rotate_180_deg_about_x()
    assert cloud.positions[0::3] == original.positions[0::3]
    assert cloud.positions[1::3] == [-v for v in original.positions[1::3]]
    assert cloud.positions[2::3] == [-v for v in original.positions[2::3]]
    assert cloud.rotations[3::4] == original.rotations[3::4]
    assert cloud.scales == original.scales


def test_convert_coordinates_sh_follows_converter():
    original = _sample_cloud(3)
    cloud = _sample_cloud(3)
    cloud.convert_coordinates(CoordinateSystem.RUB, CoordinateSystem.RDF)
    c = coordinate_converter(CoordinateSystem.RUB, CoordinateSystem.RDF)
    per_point = 15 * 3
    for point in range(cloud.num_points):
        for coeff, flip in enumerate(c.flip_sh):
            start = point * per_point + coeff * 3
            got = cloud.sh[start : start + 3]
            want = original.sh[start : start + 3]
            assert got == [flip * v for v in want]


def test_convert_unspecified_is_noop():
    original = _sample_cloud(2)
    cloud = _sample_cloud(2)
    cloud.convert_coordinates(CoordinateSystem.UNSPECIFIED, CoordinateSystem.RDF)
    assert cloud == original


def test_median_volume_empty():
    assert GaussianCloud().median_volume() == 0.01


def test_median_volume_unit_scales():
    cloud = GaussianCloud(num_points=3, scales=[0.0] * 9)
    assert math.isclose(cloud.median_volume(), math.pi * 4 / 3)


def test_median_volume_picks_middle():
    cloud = GaussianCloud(
        num_points=3,
        scales=[5.0, 5.0, 5.0, -1.0, 0.0, 0.0, 0.0, 0.0, 0.0],
    )
    reference = GaussianCloud(num_points=1, scales=[0.0, 0.0, 0.0])
    assert math.isclose(cloud.median_volume(), reference.median_volume())