"""Unit tests for the binviz decoding pipeline."""

import math

import numpy as np
import pytest

from binviz import (
    Point,
    PointCloud,
    decode,
    decode_bytes,
    extract_keys,
    key_to_position,
    keys_to_positions,
    map_points,
    pack_key,
    read_bytes,
    unpack_key,
)


# ------------------ key extraction ------------------ #

def test_extract_empty():
    keys = extract_keys(b"")
    assert keys.size == 0


def test_extract_single_triple():
    keys = extract_keys(bytes([1, 2, 3]))
    assert keys.tolist() == [0x030201]


@pytest.mark.parametrize("length", [0, 1, 2, 3, 4, 5, 6, 7, 100])
def test_extract_key_count(length):
    data = bytes(range(length))
    assert extract_keys(data).size == length // 3


def test_extract_drops_remainder():
    keys = extract_keys(bytes([10, 20, 30, 40]))
    assert keys.tolist() == [pack_key(10, 20, 30)]


def test_extract_preserves_file_order():
    data = bytes([9, 9, 9, 1, 1, 1, 5, 5, 5])
    keys = extract_keys(data)
    assert keys.tolist() == [0x090909, 0x010101, 0x050505]


def test_extract_byte_positions():
    rng = np.random.default_rng(7)
    data = rng.integers(0, 256, size=300, dtype=np.uint8).tobytes()
    keys = extract_keys(data)
    for i, key in enumerate(keys.tolist()):
        assert unpack_key(key) == (data[3 * i], data[3 * i + 1], data[3 * i + 2])


def test_high_bytes_not_sign_extended():
    keys = extract_keys(bytes([0x80, 0xFF, 0x90]))
    assert keys.tolist() == [0x90FF80]


def test_int8_input_reinterpreted_as_unsigned():
    signed = np.array([-128, -1, -112], dtype=np.int8)
    assert extract_keys(signed).tolist() == [0x90FF80]


def test_extract_accepts_bytearray_and_list():
    assert extract_keys(bytearray([1, 2, 3])).tolist() == [0x030201]
    assert extract_keys([1, 2, 3]).tolist() == [0x030201]


def test_extract_rejects_out_of_range_values():
    with pytest.raises(ValueError):
        extract_keys([1, 2, 300])


def test_extract_rejects_non_integer_dtype():
    with pytest.raises(ValueError):
        extract_keys(np.array([1.0, 2.0, 3.0]))


def test_extract_range_checks_wide_integers():
    assert extract_keys(np.array([1, 2, 3], dtype=np.int16)).tolist() == [0x030201]
    with pytest.raises(ValueError):
        extract_keys(np.array([-1, -1, -1], dtype=np.int16))


def test_pack_key_rejects_out_of_range():
    with pytest.raises(ValueError):
        pack_key(0, 256, 0)


def test_pack_unpack_inverse():
    assert unpack_key(pack_key(0x12, 0x34, 0x56)) == (0x12, 0x34, 0x56)


# ------------------ point mapping ------------------ #

def test_map_empty():
    cloud = map_points(np.empty(0, dtype=np.uint32))
    assert len(cloud) == 0
    assert not cloud
    assert cloud.positions.shape == (0, 3)


def test_map_single_point():
    cloud = map_points(extract_keys(bytes([1, 2, 3])))
    assert len(cloud) == 1
    assert cloud[0].count == 1
    assert cloud[0].key == 0x030201


def test_map_two_identical_triples():
    cloud = map_points(extract_keys(bytes([1, 2, 3, 1, 2, 3])))
    assert len(cloud) == 1
    assert cloud[0].count == 2


def test_map_extremes():
    cloud = decode_bytes(bytes([0, 0, 0, 255, 255, 255]))
    assert cloud.keys.tolist() == [0x000000, 0xFFFFFF]
    assert cloud[0].position == (0.0, 0.0, 0.0)

    # nx = ny = nz = 1: theta = phi = 2pi, r = 1
    p = cloud[1]
    assert p.x == pytest.approx(0.0, abs=1e-12)
    assert p.y == pytest.approx(0.0, abs=1e-12)
    assert p.z == pytest.approx(1.0)


def test_map_all_identical():
    keys = np.full(1000, 0x123456)
    cloud = map_points(keys)
    assert len(cloud) == 1
    assert cloud[0].count == 1000


def test_map_does_not_mutate_input():
    keys = np.array([5, 3, 5, 1], dtype=np.uint32)
    map_points(keys)
    assert keys.tolist() == [5, 3, 5, 1]


def test_map_properties_on_random_input():
    rng = np.random.default_rng(11)
    data = rng.integers(0, 3, size=9000, dtype=np.uint8)
    keys = extract_keys(data)
    cloud = map_points(keys)

    # ascending and therefore unique
    assert np.all(np.diff(cloud.keys.astype(np.int64)) > 0)
    # no two points share a key
    assert len({p.key for p in cloud}) == len(cloud)
    # count conservation
    assert int(cloud.counts.sum()) == keys.size == cloud.total_keys
    # matches a hash-based reference count
    ref = {}
    for k in keys.tolist():
        ref[k] = ref.get(k, 0) + 1
    assert {p.key: p.count for p in cloud} == ref


def test_distinct_keys_can_share_a_position():
    # r = 0 puts every key with b0 == 0 at the origin
    cloud = map_points([pack_key(0, 1, 2), pack_key(0, 3, 4)])
    assert len(cloud) == 2
    assert cloud[0].key != cloud[1].key
    np.testing.assert_allclose(cloud.positions, np.zeros((2, 3)), atol=0.0)

    # sin(theta) == 0 when b2 is 0: every azimuth lands on the z axis
    a = key_to_position(pack_key(128, 10, 0))
    b = key_to_position(pack_key(128, 200, 0))
    assert a == pytest.approx(b)


def test_map_bounded_by_unit_sphere():
    rng = np.random.default_rng(5)
    cloud = map_points(rng.integers(0, 1 << 24, size=5000))
    radii_sq = np.sum(cloud.positions ** 2, axis=1)
    assert np.all(radii_sq <= 1.0 + 1e-12)


def test_map_is_deterministic():
    rng = np.random.default_rng(2)
    keys = rng.integers(0, 1 << 24, size=2000)
    a = map_points(keys)
    b = map_points(keys)
    assert np.array_equal(a.keys, b.keys)
    assert np.array_equal(a.positions, b.positions)
    assert np.array_equal(a.counts, b.counts)


def test_map_rejects_wide_keys():
    with pytest.raises(ValueError):
        map_points([1 << 24])


def test_map_rejects_2d_input():
    with pytest.raises(ValueError):
        map_points(np.zeros((2, 2), dtype=np.uint32))


def test_first_index_is_output_position():
    cloud = map_points([30, 10, 20, 10])
    assert [p.first_index for p in cloud] == [0, 1, 2]
    assert [p.key for p in cloud] == [10, 20, 30]
    assert [p.count for p in cloud] == [2, 1, 1]


def test_scalar_mapping_formula():
    key = pack_key(51, 102, 204)  # r = 0.2, phi = 0.4 * 2pi, theta = 0.8 * 2pi
    theta = 0.8 * 2 * math.pi
    phi = 0.4 * 2 * math.pi
    x, y, z = key_to_position(key)
    assert x == pytest.approx(0.2 * math.sin(theta) * math.cos(phi))
    assert y == pytest.approx(0.2 * math.sin(theta) * math.sin(phi))
    assert z == pytest.approx(0.2 * math.cos(theta))


def test_vectorized_matches_scalar():
    keys = np.array([0, 1, 0x00FF00, 0xABCDEF, 0xFFFFFF], dtype=np.uint32)
    positions = keys_to_positions(keys)
    for key, row in zip(keys.tolist(), positions):
        assert tuple(row) == pytest.approx(key_to_position(key), abs=1e-12)


# ------------------ point cloud container ------------------ #

def test_cloud_indexing():
    cloud = map_points([7, 3])
    assert isinstance(cloud[0], Point)
    assert cloud[-1].key == 7
    with pytest.raises(IndexError):
        cloud[2]


def test_cloud_slicing():
    cloud = map_points([40, 10, 30, 20])
    tail = cloud[2:]
    assert [p.key for p in tail] == [30, 40]
    assert [p.first_index for p in tail] == [2, 3]
    assert cloud[::-1][0].key == 40
    assert cloud[10:] == []


def test_cloud_rejects_non_integer_index():
    with pytest.raises(TypeError):
        map_points([1])["0"]


def test_cloud_duplicates():
    cloud = map_points([1, 1, 1, 2])
    assert cloud.duplicates == 2


def test_empty_cloud_factory():
    cloud = PointCloud.empty()
    assert list(cloud) == []
    assert cloud.total_keys == 0


# ------------------ file decoding ------------------ #

def test_decode_file(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(bytes([1, 2, 3, 1, 2, 3, 0xFF, 0x80, 0x00, 0x42]))
    cloud = decode(path)
    assert cloud.keys.tolist() == [0x0080FF, 0x030201]
    assert [p.count for p in cloud] == [1, 2]


def test_decode_empty_file(tmp_path):
    path = tmp_path / "empty.bin"
    path.write_bytes(b"")
    cloud = decode(path)
    assert len(cloud) == 0


def test_decode_short_file(tmp_path):
    path = tmp_path / "short.bin"
    path.write_bytes(b"ab")
    assert not decode(path)


def test_decode_missing_file_raises(tmp_path):
    with pytest.raises(OSError):
        decode(tmp_path / "does-not-exist.bin")


def test_read_bytes_is_unsigned(tmp_path):
    path = tmp_path / "high.bin"
    path.write_bytes(bytes([0x80, 0xFF]))
    data = read_bytes(path)
    assert data.dtype == np.uint8
    assert data.tolist() == [0x80, 0xFF]
