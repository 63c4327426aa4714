#!/usr/bin/env python3
# Copyright (c) 2025
# Author: Nenad Micic <nenad@micic.be>
# License: MIT License
"""
viewer3d.py

3D viewer for binviz point clouds.

Decodes a binary file with binviz and shows the unique points as a
matplotlib 3D scatter on a black background. Color encodes two signals:
    - red/blue ramp: position of the point in the sorted output
    - green fade: how often the point's key repeats in the file

The camera (rotation + zoom) lives in an explicit ViewState value that the
plot reads from; scrolling the mouse wheel zooms (hold shift to zoom fast).

Usage:
    python3 viewer3d.py FILE                   # Decode and show
    python3 viewer3d.py FILE --save out.png    # Render to an image file
    python3 viewer3d.py FILE --csv points.csv  # Export unique points
    python3 viewer3d.py FILE --no-plot         # Summary only
    python3 viewer3d.py --test                 # Run validation tests

Exit codes:
    0  success
    1  file missing or unreadable (or a --test failure)
    2  usage error
    3  file decoded to zero points (empty or shorter than 3 bytes)
"""

__version__ = "1.0.0"
__author__ = "Nenad Micic"

import argparse
import csv
import sys
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from binviz import (
    PointCloud,
    decode_bytes,
    extract_keys,
    key_to_position,
    map_points,
    read_bytes,
    unpack_key,
)


# ============================================================
# SETTINGS
# ============================================================

EXIT_OK = 0
EXIT_IO_ERROR = 1
EXIT_EMPTY = 3

MIN_ZOOM = 0.1
ZOOM_STEP_DIVISOR = 25.0     # normal scroll is 25x finer than shift-scroll
DRAG_SCALE = 100.0           # degrees per full window width/height
VIEW_TILT = -45.0            # fixed azimuth offset, degrees
COUNT_COLOR_SCALE = 10.0     # count at which the green channel bottoms out

FIGURE_SIZE = (6.4, 4.8)
POINT_SIZE = 1.0

CSV_COLUMNS = ['index', 'key', 'b0', 'b1', 'b2', 'x', 'y', 'z', 'count']


# ============================================================
# VIEW STATE
# ============================================================

@dataclass
class ViewState:
    """
    Camera rotation and zoom for the viewer.

    Current values chase their targets; input only moves the targets.
    Rotations are in degrees.
    """
    zoom_level: float = 1.0
    zoom_target: float = 1.0
    rot_x: float = 0.0
    rot_y: float = 0.0
    target_rot_x: float = 0.0
    target_rot_y: float = 0.0

    def __post_init__(self):
        self.zoom_level = max(MIN_ZOOM, self.zoom_level)
        self.zoom_target = max(MIN_ZOOM, self.zoom_target)

    def drag(self, dx: float, dy: float, width: float, height: float) -> None:
        """Turn a pointer drag of (dx, dy) pixels into a rotation target."""
        if width <= 0 or height <= 0:
            raise ValueError(f"viewport must be positive, got {width}x{height}")
        self.target_rot_x -= dx / width * DRAG_SCALE
        self.target_rot_y -= dy / height * DRAG_SCALE

    def scroll(self, offset: float, fast: bool = False) -> None:
        """Move the zoom target; never lets it drop below MIN_ZOOM."""
        if fast:
            self.zoom_target += offset
        else:
            self.zoom_target += offset / ZOOM_STEP_DIVISOR
        self.zoom_target = max(MIN_ZOOM, self.zoom_target)

    def step(self, dt: float) -> None:
        """Advance current values toward targets by a fraction dt of the gap."""
        dt = min(max(dt, 0.0), 1.0)
        self.zoom_level += (self.zoom_target - self.zoom_level) * dt
        self.rot_x += (self.target_rot_x - self.rot_x) * dt
        self.rot_y += (self.target_rot_y - self.rot_y) * dt

    def settle(self) -> None:
        self.step(1.0)

    def apply(self, ax) -> None:
        """Point a matplotlib 3D axes according to this state."""
        ax.view_init(elev=self.rot_y, azim=self.rot_x + VIEW_TILT)
        half = 1.0 / self.zoom_level
        ax.set_xlim(-half, half)
        ax.set_ylim(-half, half)
        ax.set_zlim(-half, half)


# ============================================================
# COLORS, EXPORT, SUMMARY
# ============================================================

def point_colors(cloud: PointCloud) -> np.ndarray:
    """
    RGB color per point, shape (N, 3), values in [0, 1].

    c = i / N (index in sorted output), k = count / 10
    rgb = (c, 1 - k, 1 - k * c)
    """
    n = len(cloud)
    if n == 0:
        return np.empty((0, 3), dtype=np.float64)
    c = np.arange(n, dtype=np.float64) / n
    k = cloud.counts.astype(np.float64) / COUNT_COLOR_SCALE
    rgb = np.stack([c, 1.0 - k, 1.0 - k * c], axis=1)
    return np.clip(rgb, 0.0, 1.0)


def write_csv(cloud: PointCloud, path: str) -> int:
    """Write one row per unique point; returns the number of rows."""
    rows = []
    for p in cloud:
        b0, b1, b2 = unpack_key(p.key)
        rows.append({
            'index': p.first_index,
            'key': f"{p.key:06x}",
            'b0': b0,
            'b1': b1,
            'b2': b2,
            'x': f"{p.x:.6f}",
            'y': f"{p.y:.6f}",
            'z': f"{p.z:.6f}",
            'count': p.count,
        })

    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        writer.writerows(rows)
    return len(rows)


def summarize(cloud: PointCloud, n_bytes: int) -> dict:
    """Aggregate statistics for a decoded cloud."""
    summary = {
        'bytes': int(n_bytes),
        'dropped_bytes': int(n_bytes) % 3,
        'total_keys': cloud.total_keys,
        'unique_points': len(cloud),
        'duplicates': cloud.duplicates,
        'max_count': 0,
        'most_common_key': None,
    }
    if cloud:
        top = int(np.argmax(cloud.counts))
        summary['max_count'] = int(cloud.counts[top])
        summary['most_common_key'] = int(cloud.keys[top])
    return summary


def print_summary(summary: dict) -> None:
    print("=" * 60)
    print("BINVIZ SUMMARY")
    print("=" * 60)
    print(f"  Bytes read:      {summary['bytes']:,d}")
    if summary['dropped_bytes']:
        print(f"  Trailing bytes:  {summary['dropped_bytes']} (ignored)")
    print(f"  Keys:            {summary['total_keys']:,d}")
    print(f"  Unique points:   {summary['unique_points']:,d}")
    print(f"  Duplicates:      {summary['duplicates']:,d}")
    if summary['most_common_key'] is not None:
        print(f"  Most common key: {summary['most_common_key']:06x} "
              f"(x{summary['max_count']})")
    print("=" * 60)


# ============================================================
# VISUALIZATION (requires matplotlib)
# ============================================================

def plot_points(cloud: PointCloud,
                view: Optional[ViewState] = None,
                save_path: Optional[str] = None,
                show: bool = True,
                title: Optional[str] = None):
    """
    Create a 3D scatter plot of a decoded cloud.

    Args:
        cloud: Non-empty PointCloud
        view: Camera state; a default ViewState is used if omitted
        save_path: Optional path to save figure
        show: Open an interactive window
        title: Optional figure title

    Returns:
        The matplotlib Figure
    """
    import matplotlib.pyplot as plt

    if not cloud:
        raise ValueError("cannot plot an empty point cloud")

    if view is None:
        view = ViewState()

    fig = plt.figure(figsize=FIGURE_SIZE, facecolor='black')
    ax = fig.add_subplot(111, projection='3d')
    ax.set_facecolor('black')

    xs, ys, zs = cloud.positions.T
    ax.scatter(xs, ys, zs, c=point_colors(cloud), s=POINT_SIZE,
               marker='.', linewidths=0, depthshade=False)

    ax.set_box_aspect((1, 1, 1))
    ax.set_axis_off()
    ax.set_title(title or f"{len(cloud):,d} unique points", color='white')
    view.apply(ax)

    def on_scroll(event):
        view.scroll(event.step, fast=(event.key == 'shift'))
        view.settle()
        view.apply(ax)
        fig.canvas.draw_idle()

    fig.canvas.mpl_connect('scroll_event', on_scroll)

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight',
                    facecolor=fig.get_facecolor())
        print(f"Saved to {save_path}")

    if show:
        plt.show()

    return fig


# ============================================================
# VALIDATION TESTS
# ============================================================

def _random_bytes(n: int, seed: int = 0) -> bytes:
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=n, dtype=np.uint8).tobytes()


def test_key_extraction(max_len: int = 64) -> bool:
    """
    Verify floor(L/3) keys and byte placement for every length up to max_len.
    """
    print(f"Testing key extraction for lengths 0..{max_len}...")

    failures = 0
    for length in range(max_len + 1):
        data = _random_bytes(length, seed=length)
        keys = extract_keys(data)
        if keys.size != length // 3:
            failures += 1
            continue
        for i, key in enumerate(keys.tolist()):
            if unpack_key(key) != tuple(data[3 * i:3 * i + 3]):
                if failures < 5:
                    print(f"  FAIL at length={length}, key {i}: {key:06x}")
                failures += 1

    if failures == 0:
        print(f"  ✓ All {max_len + 1} lengths passed!")
        return True
    print(f"  ✗ {failures} failures")
    return False


def test_dedup_properties(n_bytes: int = 30000) -> bool:
    """
    Verify uniqueness, ascending order and count conservation.

    Uses a small byte alphabet so many keys repeat.
    """
    print(f"Testing dedup on {n_bytes} bytes...")

    rng = np.random.default_rng(1)
    data = rng.integers(0, 4, size=n_bytes, dtype=np.uint8)
    keys = extract_keys(data)
    cloud = map_points(keys)

    checks = [
        ("strictly ascending", bool(np.all(np.diff(cloud.keys.astype(np.int64)) > 0))),
        ("count conservation", int(cloud.counts.sum()) == keys.size),
        ("counts >= 1", bool(np.all(cloud.counts >= 1))),
        ("matches reference", cloud.keys.tolist() == sorted(set(keys.tolist()))),
    ]

    ok = True
    for name, passed in checks:
        if not passed:
            print(f"  FAIL: {name}")
            ok = False

    if ok:
        print(f"  ✓ {len(cloud)} unique points from {keys.size} keys")
    return ok


def test_unit_sphere(n_bytes: int = 30000) -> bool:
    """Verify every point lies within the unit sphere."""
    print("Testing boundedness x² + y² + z² <= 1...")

    tolerance = 1e-12
    cloud = decode_bytes(_random_bytes(n_bytes, seed=2))
    radii_sq = np.sum(cloud.positions ** 2, axis=1)
    worst = float(radii_sq.max()) if cloud else 0.0

    if worst <= 1.0 + tolerance:
        print(f"  ✓ Max radius² = {worst:.12f}")
        return True
    print(f"  ✗ Max radius² = {worst}")
    return False


def test_scalar_mapping(samples: int = 2000) -> bool:
    """Verify the vectorized mapping agrees with key_to_position."""
    print(f"Testing scalar vs vectorized mapping on {samples} keys...")

    tolerance = 1e-12
    rng = np.random.default_rng(3)
    keys = rng.integers(0, 1 << 24, size=samples)
    cloud = map_points(keys)

    failures = 0
    for p in cloud:
        ex, ey, ez = key_to_position(p.key)
        if abs(p.x - ex) > tolerance or abs(p.y - ey) > tolerance or abs(p.z - ez) > tolerance:
            if failures < 5:
                print(f"  FAIL at key={p.key:06x}")
            failures += 1

    if failures == 0:
        print(f"  ✓ All {len(cloud)} keys agree")
        return True
    print(f"  ✗ {failures} mismatches")
    return False


def run_all_tests() -> bool:
    """Run every self-check, then print a one-line verdict per check."""
    checks = {
        "Key extraction": test_key_extraction,
        "Dedup properties": test_dedup_properties,
        "Unit sphere": test_unit_sphere,
        "Scalar mapping": test_scalar_mapping,
    }
    results = {name: check() for name, check in checks.items()}

    print("\nTEST SUMMARY")
    for name, passed in results.items():
        print(f"  {'✓ PASS' if passed else '✗ FAIL'}  {name}")
    return all(results.values())


# ============================================================
# MAIN
# ============================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="binviz",
        description=f"binviz v{__version__}: view a binary file as a 3D point cloud",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  binviz /bin/ls                        # Decode and show
  binviz /bin/ls --save ls.png          # Render to file
  binviz /bin/ls --csv ls.csv --no-plot # Export points only
  binviz --test                         # Run validation tests
        """
    )

    parser.add_argument('file', nargs='?',
                        help='Binary file to visualize')
    parser.add_argument('--save', type=str, default=None,
                        help='Save plot to file instead of opening a window')
    parser.add_argument('--csv', type=str, default=None,
                        help='Write unique points to a CSV file')
    parser.add_argument('--no-plot', action='store_true',
                        help='Skip plotting (summary and export only)')
    parser.add_argument('--zoom', type=float, default=1.0,
                        help=f'Initial zoom level, >= {MIN_ZOOM} (default: 1.0)')
    parser.add_argument('--rot-x', type=float, default=0.0,
                        help='Initial rotation around the vertical axis, degrees')
    parser.add_argument('--rot-y', type=float, default=0.0,
                        help='Initial elevation, degrees')
    parser.add_argument('--test', action='store_true',
                        help='Run validation tests')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.test:
        return EXIT_OK if run_all_tests() else 1

    if args.file is None:
        parser.error("the following arguments are required: file")
    if args.zoom < MIN_ZOOM:
        parser.error(f"--zoom must be >= {MIN_ZOOM}")

    try:
        data = read_bytes(args.file)
    except OSError as e:
        print(f"Error: cannot read {args.file}: {e.strerror or e}", file=sys.stderr)
        return EXIT_IO_ERROR

    print(f"Reading {data.size} bytes")
    cloud = decode_bytes(data)
    print(f"{len(cloud)} unique points")

    if not cloud:
        print("Nothing to visualize: file is empty or shorter than 3 bytes.",
              file=sys.stderr)
        return EXIT_EMPTY

    print_summary(summarize(cloud, data.size))

    if args.csv:
        print(f"[+] Writing to {args.csv}")
        n = write_csv(cloud, args.csv)
        print(f"[+] Wrote {n} rows")

    if not args.no_plot:
        view = ViewState(zoom_target=args.zoom,
                         target_rot_x=args.rot_x,
                         target_rot_y=args.rot_y)
        view.settle()
        plot_points(cloud, view=view, save_path=args.save,
                    show=args.save is None)

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
