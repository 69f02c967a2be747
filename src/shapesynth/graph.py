"""Directed audio graph with a single permitted feedback loop."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Deque, Dict, Iterable, List, Mapping, Sequence, Tuple

import numpy as np

from .nodes import NODE_TYPES, Node as AudioNode
from .utils import RAW_DTYPE, assert_BCF, match_channels


@dataclass(slots=True)
class GraphEdge:
    source: str
    target: str
    feedback: bool = False


@dataclass(slots=True)
class NodeSpec:
    name: str
    type: str
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ConnectionSpec:
    source: str
    target: str
    feedback: bool = False


@dataclass(slots=True)
class _NodeExecutionPlan:
    name: str
    audio_inputs: Tuple[str, ...]


class AudioGraph:
    """Directed audio processing graph.

    Forward edges must form a DAG.  Exactly one additional edge may be flagged
    ``feedback=True``; it has to close a cycle and end on a node that declares
    ``breaks_cycles`` (a delay line).  The rule is checked whenever the
    execution plan is rebuilt, so a bad topology fails before the first block.

    Rendering and structural edits share ``lock``; callers swapping nodes while
    the audio thread runs should hold it across the whole edit.
    """

    MAX_FEEDBACK_EDGES = 1

    def __init__(self, sample_rate: int, output_channels: int | None = None) -> None:
        self.sample_rate = int(sample_rate)
        self.output_channels = int(output_channels) if output_channels is not None else None
        self._nodes: Dict[str, AudioNode] = {}
        self._audio_inputs: Dict[str, List[str]] = {}
        self._audio_successors: Dict[str, List[str]] = {}
        self._feedback: List[GraphEdge] = []
        self.sink: str | None = None
        self.lock = RLock()
        self._plan_dirty = True
        self._execution_plan: Tuple[_NodeExecutionPlan, ...] = ()
        self._frames_rendered = 0
        self._last_node_levels: Dict[str, float] = {}

    @classmethod
    def from_layout(
        cls,
        nodes: Iterable[NodeSpec],
        connections: Iterable[ConnectionSpec],
        sink: str,
        sample_rate: int,
        output_channels: int | None = None,
    ) -> "AudioGraph":
        graph = cls(sample_rate=sample_rate, output_channels=output_channels)
        for spec in nodes:
            try:
                node_cls = NODE_TYPES[spec.type.lower()]
            except KeyError as exc:
                raise KeyError(f"Unknown node type '{spec.type}'") from exc
            graph.add_node(node_cls(spec.name, spec.params))
        for connection in connections:
            graph.connect_audio(connection.source, connection.target, feedback=connection.feedback)
        graph.set_sink(sink)
        graph.validate()
        return graph

    # ------------------------------------------------------------------
    # Topology
    def add_node(self, node: AudioNode) -> None:
        with self.lock:
            if node.name in self._nodes:
                raise ValueError(f"Node '{node.name}' already exists")
            self._nodes[node.name] = node
            self._audio_inputs.setdefault(node.name, [])
            self._audio_successors.setdefault(node.name, [])
            self._invalidate_plan()

    def remove_node(self, name: str) -> AudioNode:
        """Detach ``name`` and every edge touching it."""

        with self.lock:
            node = self.node(name)
            del self._nodes[name]
            self._audio_inputs.pop(name, None)
            self._audio_successors.pop(name, None)
            for inputs in self._audio_inputs.values():
                inputs[:] = [src for src in inputs if src != name]
            for successors in self._audio_successors.values():
                successors[:] = [dst for dst in successors if dst != name]
            self._feedback = [e for e in self._feedback if name not in (e.source, e.target)]
            if self.sink == name:
                self.sink = None
            self._invalidate_plan()
            return node

    def replace_node(self, node: AudioNode) -> AudioNode:
        """Swap in ``node`` under an existing name; every edge is kept."""

        with self.lock:
            previous = self.node(node.name)
            self._nodes[node.name] = node
            self._invalidate_plan()
            return previous

    def disconnect(self, source: str) -> None:
        """Drop every outgoing edge of ``source``, feedback included."""

        with self.lock:
            self.node(source)
            for target in self._audio_successors.get(source, []):
                inputs = self._audio_inputs.get(target, [])
                inputs[:] = [src for src in inputs if src != source]
            self._audio_successors[source] = []
            self._feedback = [e for e in self._feedback if e.source != source]
            self._invalidate_plan()

    def connect_audio(self, source: str, target: str, *, feedback: bool = False) -> None:
        with self.lock:
            if source not in self._nodes or target not in self._nodes:
                raise ValueError("Audio connections must reference defined nodes")
            if feedback:
                self._feedback.append(GraphEdge(source, target, feedback=True))
            else:
                self._audio_inputs.setdefault(target, []).append(source)
                self._audio_successors.setdefault(source, []).append(target)
            self._invalidate_plan()

    def set_sink(self, name: str) -> None:
        if name not in self._nodes:
            raise ValueError(f"Unknown sink node '{name}'")
        self.sink = name

    def node(self, name: str) -> AudioNode:
        try:
            return self._nodes[name]
        except KeyError as exc:
            raise KeyError(f"Unknown node '{name}'") from exc

    def nodes_of_type(self, node_type: type) -> List[AudioNode]:
        return [node for node in self._nodes.values() if isinstance(node, node_type)]

    @property
    def edges(self) -> Tuple[GraphEdge, ...]:
        forward = [
            GraphEdge(source, target)
            for target, sources in self._audio_inputs.items()
            for source in sources
        ]
        return tuple(forward + list(self._feedback))

    @property
    def feedback_edges(self) -> Tuple[GraphEdge, ...]:
        return tuple(self._feedback)

    @property
    def ordered_nodes(self) -> Sequence[AudioNode]:
        plan = self._ensure_execution_plan()
        return [self._nodes[entry.name] for entry in plan]

    def _invalidate_plan(self) -> None:
        self._plan_dirty = True

    def validate(self) -> None:
        self._ensure_execution_plan()

    def _ensure_execution_plan(self) -> Tuple[_NodeExecutionPlan, ...]:
        if not self._plan_dirty:
            return self._execution_plan
        plan = self._build_execution_plan()
        self._check_feedback()
        self._execution_plan = plan
        self._plan_dirty = False
        return plan

    def _build_execution_plan(self) -> Tuple[_NodeExecutionPlan, ...]:
        if not self._nodes:
            return ()
        incoming = {name: len(self._audio_inputs.get(name, [])) for name in self._nodes}
        queue: Deque[str] = deque(name for name, count in incoming.items() if count == 0)
        order: List[str] = []
        while queue:
            name = queue.popleft()
            order.append(name)
            for successor in self._audio_successors.get(name, []):
                incoming[successor] -= 1
                if incoming[successor] == 0:
                    queue.append(successor)
        if len(order) != len(self._nodes):
            raise ValueError(
                "Graph contains a cycle outside the feedback edge; "
                "connect the loop-closing edge with feedback=True"
            )
        return tuple(
            _NodeExecutionPlan(name, tuple(self._audio_inputs.get(name, ()))) for name in order
        )

    def _reaches(self, start: str, goal: str) -> bool:
        seen = {start}
        queue: Deque[str] = deque([start])
        while queue:
            name = queue.popleft()
            if name == goal:
                return True
            for successor in self._audio_successors.get(name, []):
                if successor not in seen:
                    seen.add(successor)
                    queue.append(successor)
        return False

    def _check_feedback(self) -> None:
        if len(self._feedback) > self.MAX_FEEDBACK_EDGES:
            raise ValueError(
                f"Graph permits {self.MAX_FEEDBACK_EDGES} feedback edge, found {len(self._feedback)}"
            )
        for node in self._nodes.values():
            if hasattr(node, "in_cycle"):
                node.in_cycle = False
        for edge in self._feedback:
            target = self._nodes[edge.target]
            if not target.breaks_cycles:
                raise ValueError(
                    f"Feedback edge {edge.source}->{edge.target} must end on a delay node"
                )
            if not self._reaches(edge.target, edge.source):
                raise ValueError(
                    f"Feedback edge {edge.source}->{edge.target} does not close a cycle"
                )
            target.in_cycle = True

    # ------------------------------------------------------------------
    # Rendering
    @property
    def current_time(self) -> float:
        """Seconds of audio rendered so far; the timeline ramps are scheduled on."""

        return self._frames_rendered / float(self.sample_rate)

    @staticmethod
    def _sum_inputs(blocks: List[np.ndarray], frames: int) -> np.ndarray | None:
        if not blocks:
            return None
        if len(blocks) == 1:
            return blocks[0]
        channels = max(block.shape[1] for block in blocks)
        batches = max(block.shape[0] for block in blocks)
        total = np.zeros((batches, channels, frames), dtype=RAW_DTYPE)
        for block in blocks:
            total += match_channels(block, channels)
        return total

    def render_block(self, frames: int) -> np.ndarray:
        """Render one ``(B, C, F)`` block from the sink and advance the timeline."""

        if frames <= 0:
            raise ValueError("frames must be positive")
        with self.lock:
            if not self.sink:
                raise RuntimeError("Sink node has not been configured")
            plan = self._ensure_execution_plan()
            sr = self.sample_rate
            start_time = self.current_time
            outputs: Dict[str, np.ndarray] = {}
            levels: Dict[str, float] = {}
            for entry in plan:
                node = self._nodes[entry.name]
                audio_in = self._sum_inputs([outputs[src] for src in entry.audio_inputs], frames)
                params = {
                    key: param.curve(start_time, frames, sr)
                    for key, param in node.audio_params.items()
                }
                block = assert_BCF(node.process(frames, sr, audio_in, params), name=entry.name)
                outputs[entry.name] = block
                levels[entry.name] = float(np.max(np.abs(block))) if block.size else 0.0
            for edge in self._feedback:
                self._nodes[edge.target].receive_feedback(outputs[edge.source])
            self._frames_rendered += frames
            self._last_node_levels = levels
            return outputs[self.sink]

    def render(self, frames: int) -> np.ndarray:
        """Render ``frames`` samples shaped ``(C, F)`` for the output device."""

        block = self.render_block(frames)
        data = block[0]
        if self.output_channels is not None and data.shape[0] != self.output_channels:
            data = match_channels(block, self.output_channels)[0]
        return data

    @property
    def last_node_levels(self) -> Dict[str, float]:
        return dict(self._last_node_levels)


__all__ = ["AudioGraph", "ConnectionSpec", "GraphEdge", "NodeSpec"]
