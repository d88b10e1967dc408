"""
Frame hierarchy

FrameTree stores the transforms of the swarm frame hierarchy:

    world (reference) -> formation   dynamic, refreshed every tick
    formation -> <formation>/<agent>_ref   static, one per agent

FrameBroadcaster owns the swarm frames and republishes them into the tree
and any external sinks.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..errors import FrameLookupError
from ..utils.geometry import Pose, Transform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StampedTransform:
    """Transform of child frame into parent frame"""
    parent: str
    child: str
    transform: Transform
    stamp: float
    static: bool = False


class FrameTree:
    """
    Thread-safe in-memory transform store

    Each frame has at most one parent. Lookups walk both frames up to a
    common ancestor.
    """

    MAX_DEPTH = 64

    def __init__(self):
        self._edges: Dict[str, StampedTransform] = {}
        self._lock = threading.Lock()

    def set_transform(self, parent: str, child: str, transform: Transform,
                      static: bool = False, stamp: Optional[float] = None):
        """Insert or replace the transform of child into parent"""
        if not parent or not child or parent == child:
            raise ValueError(f"invalid frame pair '{parent}' -> '{child}'")
        edge = StampedTransform(
            parent=parent,
            child=child,
            transform=transform,
            stamp=time.monotonic() if stamp is None else stamp,
            static=static,
        )
        with self._lock:
            self._edges[child] = edge

    def get_edge(self, child: str) -> Optional[StampedTransform]:
        with self._lock:
            return self._edges.get(child)

    def frames(self) -> List[str]:
        """All known frame ids"""
        with self._lock:
            names = set(self._edges)
            names.update(e.parent for e in self._edges.values())
        return sorted(names)

    def lookup(self, target: str, source: str) -> Transform:
        """
        Transform mapping coordinates in source into target

        Raises:
            FrameLookupError: If the frames are not connected
        """
        if target == source:
            return Transform()

        with self._lock:
            source_chain = self._chain_to_root(source)
            target_chain = self._chain_to_root(target)

        # Find the first common frame
        target_index = {frame: i for i, (frame, _) in enumerate(target_chain)}
        for frame, root_from_source in source_chain:
            if frame in target_index:
                _, common_from_target = target_chain[target_index[frame]]
                return common_from_target.inverse().compose(root_from_source)

        raise FrameLookupError(f"no transform chain between '{source}' and '{target}'")

    def can_transform(self, target: str, source: str) -> bool:
        try:
            self.lookup(target, source)
            return True
        except FrameLookupError:
            return False

    def transform_pose(self, pose: Pose, source: str, target: str) -> Pose:
        """Express a pose given in source in target"""
        return self.lookup(target, source).apply(pose)

    def _chain_to_root(self, frame: str) -> List[tuple]:
        """[(ancestor, transform ancestor<-frame)] starting with frame itself"""
        chain = [(frame, Transform())]
        current = frame
        accumulated = Transform()
        for _ in range(self.MAX_DEPTH):
            edge = self._edges.get(current)
            if edge is None:
                return chain
            accumulated = edge.transform.compose(accumulated)
            current = edge.parent
            chain.append((current, accumulated))
        raise FrameLookupError(f"frame chain from '{frame}' is too deep or cyclic")


FrameSink = Callable[[StampedTransform], None]


class FrameBroadcaster:
    """
    Publishes the swarm frames

    Publishing is fire-and-forget: sink errors are logged and dropped.
    """

    def __init__(self, tree: FrameTree, world_frame: str = "earth",
                 formation_frame: str = "Swarm"):
        self.tree = tree
        self.world_frame = world_frame
        self.formation_frame = formation_frame
        self._sinks: List[FrameSink] = []
        self._static_frames: Dict[str, str] = {}

    def add_sink(self, sink: FrameSink):
        """Forward every published transform to sink (e.g. a middleware bridge)"""
        self._sinks.append(sink)

    def agent_frame_id(self, agent_id: str) -> str:
        """Static offset frame of an agent"""
        return f"{self.formation_frame}/{agent_id}_ref"

    @property
    def static_frames(self) -> Dict[str, str]:
        """agent id -> offset frame id for every published static frame"""
        return dict(self._static_frames)

    def publish_static(self, agent_id: str, offset_pose: Pose) -> str:
        """
        Publish formation -> agent offset frame

        Returns:
            The agent offset frame id
        """
        frame_id = self.agent_frame_id(agent_id)
        self._publish(self.formation_frame, frame_id, Transform.from_pose(offset_pose), True)
        self._static_frames[agent_id] = frame_id
        logger.debug(
            f"Static frame {frame_id}: ({offset_pose.position.x:.2f}, "
            f"{offset_pose.position.y:.2f}, {offset_pose.position.z:.2f})"
        )
        return frame_id

    def publish_dynamic(self, centroid_pose: Pose):
        """Publish world -> formation from the latest centroid"""
        self._publish(self.world_frame, self.formation_frame,
                      Transform.from_pose(centroid_pose), False)

    def _publish(self, parent: str, child: str, transform: Transform, static: bool):
        self.tree.set_transform(parent, child, transform, static=static)
        if not self._sinks:
            return
        edge = self.tree.get_edge(child)
        for sink in self._sinks:
            try:
                sink(edge)
            except Exception as e:
                logger.error(f"Frame sink error for {parent} -> {child}: {e}")
