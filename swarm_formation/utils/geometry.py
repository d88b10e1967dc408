"""
Geometry utilities

Poses, quaternions and rigid transforms used by the formation planner,
the frame tree and the trajectory sampler.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Tuple


@dataclass(frozen=True)
class Point:
    """3D point / vector in metres"""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def __add__(self, other: 'Point') -> 'Point':
        return Point(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: 'Point') -> 'Point':
        return Point(self.x - other.x, self.y - other.y, self.z - other.z)

    def scale(self, factor: float) -> 'Point':
        return Point(self.x * factor, self.y * factor, self.z * factor)

    def norm(self) -> float:
        return math.sqrt(self.x**2 + self.y**2 + self.z**2)

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "z": self.z}


@dataclass(frozen=True)
class Quaternion:
    """Unit quaternion (x, y, z, w)"""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    w: float = 1.0

    def __mul__(self, other: 'Quaternion') -> 'Quaternion':
        """Hamilton product self * other"""
        return Quaternion(
            x=self.w * other.x + self.x * other.w + self.y * other.z - self.z * other.y,
            y=self.w * other.y - self.x * other.z + self.y * other.w + self.z * other.x,
            z=self.w * other.z + self.x * other.y - self.y * other.x + self.z * other.w,
            w=self.w * other.w - self.x * other.x - self.y * other.y - self.z * other.z,
        )

    def conjugate(self) -> 'Quaternion':
        return Quaternion(-self.x, -self.y, -self.z, self.w)

    def normalized(self) -> 'Quaternion':
        n = math.sqrt(self.x**2 + self.y**2 + self.z**2 + self.w**2)
        if n < 1e-12:
            return Quaternion()
        return Quaternion(self.x / n, self.y / n, self.z / n, self.w / n)

    def rotate(self, v: Point) -> Point:
        """Rotate vector v by this quaternion"""
        p = Quaternion(v.x, v.y, v.z, 0.0)
        r = self * p * self.conjugate()
        return Point(r.x, r.y, r.z)

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "z": self.z, "w": self.w}


@dataclass(frozen=True)
class Pose:
    """Position + orientation"""
    position: Point = field(default_factory=Point)
    orientation: Quaternion = field(default_factory=Quaternion)

    @property
    def yaw(self) -> float:
        return quaternion_to_yaw(self.orientation)

    def with_position(self, position: Point) -> 'Pose':
        return Pose(position=position, orientation=self.orientation)

    def to_dict(self) -> dict:
        return {
            "position": self.position.to_dict(),
            "orientation": self.orientation.to_dict(),
        }

    @classmethod
    def from_xyz(cls, x: float, y: float, z: float, yaw: float = 0.0) -> 'Pose':
        return cls(Point(float(x), float(y), float(z)), yaw_to_quaternion(yaw))

    @classmethod
    def from_value(cls, data: Any) -> 'Pose':
        """
        Build a pose from a loosely structured value

        Accepts:
        - {"position": {x, y, z}, "orientation": {x, y, z, w}}
        - {"x": .., "y": .., "z": .., "yaw": ..}
        - [x, y, z] or [x, y, z, yaw]

        Raises:
            ValueError: If the value cannot be interpreted as a pose
        """
        if isinstance(data, Pose):
            return data

        if isinstance(data, (list, tuple)):
            if len(data) not in (3, 4):
                raise ValueError(f"pose list must have 3 or 4 elements, got {len(data)}")
            yaw = float(data[3]) if len(data) == 4 else 0.0
            return cls.from_xyz(float(data[0]), float(data[1]), float(data[2]), yaw)

        if isinstance(data, dict):
            if "position" in data:
                pos = data["position"] or {}
                position = Point(
                    float(pos.get("x", 0.0)),
                    float(pos.get("y", 0.0)),
                    float(pos.get("z", 0.0)),
                )
                ori = data.get("orientation")
                if ori is None:
                    orientation = Quaternion()
                else:
                    orientation = Quaternion(
                        float(ori.get("x", 0.0)),
                        float(ori.get("y", 0.0)),
                        float(ori.get("z", 0.0)),
                        float(ori.get("w", 1.0)),
                    ).normalized()
                return cls(position, orientation)
            if "x" in data or "y" in data or "z" in data:
                return cls.from_xyz(
                    float(data.get("x", 0.0)),
                    float(data.get("y", 0.0)),
                    float(data.get("z", 0.0)),
                    float(data.get("yaw", 0.0)),
                )

        raise ValueError(f"cannot interpret {data!r} as a pose")


@dataclass(frozen=True)
class Transform:
    """
    Rigid transform mapping coordinates of a child frame into its parent

    p_parent = rotation * p_child + translation
    """
    translation: Point = field(default_factory=Point)
    rotation: Quaternion = field(default_factory=Quaternion)

    @classmethod
    def from_pose(cls, pose: Pose) -> 'Transform':
        return cls(pose.position, pose.orientation)

    def inverse(self) -> 'Transform':
        inv_rot = self.rotation.conjugate()
        return Transform(inv_rot.rotate(self.translation.scale(-1.0)), inv_rot)

    def compose(self, other: 'Transform') -> 'Transform':
        """self * other: apply other first, then self"""
        return Transform(
            self.rotation.rotate(other.translation) + self.translation,
            (self.rotation * other.rotation).normalized(),
        )

    def apply(self, pose: Pose) -> Pose:
        return Pose(
            self.rotation.rotate(pose.position) + self.translation,
            (self.rotation * pose.orientation).normalized(),
        )


def yaw_to_quaternion(yaw: float) -> Quaternion:
    """Quaternion for a rotation of yaw radians about +Z"""
    half = yaw / 2.0
    return Quaternion(0.0, 0.0, math.sin(half), math.cos(half))


def quaternion_to_yaw(q: Quaternion) -> float:
    """Extract yaw (rotation about Z) in radians, [-pi, pi]"""
    siny_cosp = 2.0 * (q.w * q.z + q.x * q.y)
    cosy_cosp = 1.0 - 2.0 * (q.y * q.y + q.z * q.z)
    return math.atan2(siny_cosp, cosy_cosp)


def wrap_angle(angle: float) -> float:
    """Wrap angle to [-pi, pi]; raises ValueError for inf"""
    return math.atan2(math.sin(angle), math.cos(angle))


def distance(a: Point, b: Point) -> float:
    """Euclidean distance between two points"""
    return (a - b).norm()


def mean_position(poses: Iterable[Pose]) -> Point:
    """Arithmetic mean of pose positions"""
    poses = list(poses)
    if not poses:
        raise ValueError("mean of an empty pose list")
    n = float(len(poses))
    return Point(
        sum(p.position.x for p in poses) / n,
        sum(p.position.y for p in poses) / n,
        sum(p.position.z for p in poses) / n,
    )


def lerp(a: Point, b: Point, fraction: float) -> Point:
    """Linear interpolation between a and b"""
    return a + (b - a).scale(fraction)
