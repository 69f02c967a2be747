"""Signal graph engine: owns the live graph, its lifecycle and its automation."""

from __future__ import annotations

import threading
from typing import Dict, Optional, Tuple

import numpy as np

from .config import AppConfig, SynthConfig
from .diagnostics import log_event
from .graph import AudioGraph, ConnectionSpec, NodeSpec
from .nodes import AnalyserNode, OscillatorNode, generate_reverb_impulse
from .output import AudioOutput, OutputFactory, SoundDeviceOutput
from .params import ParameterStore
from .state import (
    NORMALIZED_MAX_FREQUENCY,
    NORMALIZED_MIN_FREQUENCY,
    PlaybackState,
    Waveform,
)
from .utils import RAW_DTYPE, clamp, expo_map

OSCILLATOR = "osc"
ENVELOPE = "envelope"
FILTER = "filter"
DELAY = "delay"
DELAY_FEEDBACK = "delay_feedback"
DELAY_MIX = "delay_mix"
DRY = "dry"
REVERB = "reverb"
REVERB_WET = "reverb_wet"
FINAL_MIX = "final_mix"
ANALYSER = "analyser"
MASTER = "master"
OUTPUT = "out"

# Parameter store name -> (node, AudioParam) that renders it.
PARAMETER_BINDINGS: Dict[str, Tuple[str, str]] = {
    "frequency": (OSCILLATOR, "frequency"),
    "filter_frequency": (FILTER, "frequency"),
    "filter_q": (FILTER, "q"),
    "reverb_mix": (REVERB_WET, "gain"),
    "delay_time": (DELAY, "delay_time"),
}


def build_synth_graph(
    sample_rate: int,
    parameters: ParameterStore,
    synth: SynthConfig,
    *,
    waveform: Waveform = Waveform.SINE,
    output_channels: int = 2,
    impulse: np.ndarray | None = None,
    rng: np.random.Generator | None = None,
) -> AudioGraph:
    """Build the fixed synth topology seeded from ``parameters``.

    osc -> envelope -> filter; filter -> delay with a feedback gain back into
    the delay and a delay-mix tap; filter + delay-mix -> dry; dry -> reverb ->
    reverb_wet; dry + reverb_wet -> final_mix -> analyser -> master -> out.
    """

    if impulse is None:
        impulse = generate_reverb_impulse(sample_rate, synth.impulse_seconds, channels=2, rng=rng)
    reverb_mix = parameters.value("reverb_mix")
    nodes = [
        NodeSpec(OSCILLATOR, "oscillator", {"wave": Waveform(waveform).value, "frequency": parameters.value("frequency")}),
        NodeSpec(ENVELOPE, "gain", {"gain": 0.0}),
        NodeSpec(
            FILTER,
            "biquad",
            {"type": "lowpass", "frequency": parameters.value("filter_frequency"), "q": parameters.value("filter_q")},
        ),
        NodeSpec(
            DELAY,
            "delay",
            {"delay_time": parameters.value("delay_time"), "max_delay_seconds": synth.max_delay_seconds},
        ),
        NodeSpec(DELAY_FEEDBACK, "gain", {"gain": synth.delay_feedback}),
        NodeSpec(DELAY_MIX, "gain", {"gain": synth.delay_mix}),
        # The dry level is fixed when the graph is built; only the wet level follows reverb_mix.
        NodeSpec(DRY, "gain", {"gain": 1.0 - reverb_mix}),
        NodeSpec(REVERB, "convolver", {"impulse": impulse, "normalize": True}),
        NodeSpec(REVERB_WET, "gain", {"gain": reverb_mix}),
        NodeSpec(FINAL_MIX, "mix", {}),
        NodeSpec(ANALYSER, "analyser", {"fft_size": synth.fft_size}),
        NodeSpec(MASTER, "gain", {"gain": synth.master_gain}),
        NodeSpec(OUTPUT, "destination", {"channels": output_channels}),
    ]
    connections = [
        ConnectionSpec(OSCILLATOR, ENVELOPE),
        ConnectionSpec(ENVELOPE, FILTER),
        ConnectionSpec(FILTER, DELAY),
        ConnectionSpec(DELAY, DELAY_FEEDBACK),
        ConnectionSpec(DELAY_FEEDBACK, DELAY, feedback=True),
        ConnectionSpec(DELAY, DELAY_MIX),
        ConnectionSpec(FILTER, DRY),
        ConnectionSpec(DELAY_MIX, DRY),
        ConnectionSpec(DRY, REVERB),
        ConnectionSpec(REVERB, REVERB_WET),
        ConnectionSpec(DRY, FINAL_MIX),
        ConnectionSpec(REVERB_WET, FINAL_MIX),
        ConnectionSpec(FINAL_MIX, ANALYSER),
        ConnectionSpec(ANALYSER, MASTER),
        ConnectionSpec(MASTER, OUTPUT),
    ]
    return AudioGraph.from_layout(nodes, connections, OUTPUT, sample_rate, output_channels)


class SynthEngine:
    """Owns the synth graph and exposes ramped, clamped control over it.

    Nothing touches the graph until :meth:`initialize` succeeds; every setter
    before that is a silent no-op apart from :meth:`set_waveform`, which still
    records the preference.  Control calls only schedule ramps on
    :class:`~shapesynth.params.AudioParam` objects, so they are safe to issue
    while the output callback is rendering.
    """

    def __init__(
        self,
        sample_rate: int = 44100,
        *,
        synth: SynthConfig | None = None,
        output_channels: int = 2,
        frames_per_chunk: int = 256,
        output_factory: OutputFactory | None = None,
        parameters: ParameterStore | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.sample_rate = int(sample_rate)
        self.synth = synth or SynthConfig()
        self.output_channels = int(output_channels)
        self.frames_per_chunk = int(frames_per_chunk)
        self.parameters = parameters or ParameterStore()
        self.waveform = Waveform.SINE
        self.graph: Optional[AudioGraph] = None
        self.output: Optional[AudioOutput] = None
        self._output_factory = output_factory or SoundDeviceOutput.create
        self._rng = rng
        self._state = PlaybackState.UNINITIALIZED
        self._init_lock = threading.Lock()
        self._initializing = False

    @classmethod
    def from_config(cls, config: AppConfig, **kwargs) -> "SynthEngine":
        return cls(
            config.sample_rate,
            synth=config.synth,
            output_channels=config.runtime.output_channels,
            frames_per_chunk=config.runtime.frames_per_chunk,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def initialized(self) -> bool:
        return self._state is not PlaybackState.UNINITIALIZED

    @property
    def is_playing(self) -> bool:
        return self._state is PlaybackState.PLAYING

    @property
    def initializing(self) -> bool:
        return self._initializing

    @property
    def current_time(self) -> float:
        graph = self.graph
        return graph.current_time if graph is not None else 0.0

    @property
    def analyser(self) -> Optional[AnalyserNode]:
        graph = self.graph
        if graph is None or not self.initialized:
            return None
        return graph.node(ANALYSER)

    def initialize(self) -> None:
        """Build the graph and open the output; safe to call repeatedly.

        A call made while another initialisation is in flight returns
        immediately.  If the output cannot be opened the engine stays
        uninitialised and the error propagates, so the next call retries.
        """

        with self._init_lock:
            if self.initialized or self._initializing:
                return
            self._initializing = True
        output: Optional[AudioOutput] = None
        try:
            graph = build_synth_graph(
                self.sample_rate,
                self.parameters,
                self.synth,
                waveform=self.waveform,
                output_channels=self.output_channels,
                rng=self._rng,
            )
            graph.node(OSCILLATOR).start()
            # The output callback renders from self.graph, so publish it first.
            self.graph = graph
            output = self._output_factory(self)
            output.start()
        except Exception as exc:
            self.graph = None
            log_event(f"engine.initialize failed: {exc}")
            if output is not None:
                # A stream that opened but would not start still holds the device.
                try:
                    output.close()
                except Exception as close_exc:
                    log_event(f"engine.initialize close failed: {close_exc}")
            raise
        finally:
            with self._init_lock:
                self._initializing = False
        self.output = output
        self._state = PlaybackState.STOPPED
        log_event(
            f"engine.initialize sr={self.sample_rate} channels={self.output_channels} "
            f"wave={self.waveform.value}"
        )

    def _ramp_envelope(self, value: float) -> None:
        envelope = self.graph.node(ENVELOPE).audio_params["gain"]
        envelope.linear_ramp_to(value, self.current_time, self.synth.envelope_seconds)

    def start(self) -> None:
        if not self.initialized:
            return
        self._ramp_envelope(self.synth.play_gain)
        self._state = PlaybackState.PLAYING
        log_event("engine.start")

    def stop(self) -> None:
        if not self.initialized:
            return
        self._ramp_envelope(0.0)
        self._state = PlaybackState.STOPPED
        log_event("engine.stop")

    def toggle(self) -> PlaybackState:
        if self.is_playing:
            self.stop()
        else:
            self.start()
        return self._state

    def close(self) -> None:
        output, self.output = self.output, None
        if output is not None:
            output.close()
            log_event("engine.close")

    # ------------------------------------------------------------------
    # Parameters
    def set_parameter(self, name: str, value: float) -> Optional[float]:
        """Clamp ``value`` and ramp the bound node towards it.

        Returns the accepted value, or ``None`` before initialisation.
        Unknown names raise ``KeyError`` in either state.
        """

        self.parameters.get(name)
        if not self.initialized:
            return None
        accepted = self.parameters.request(name, value)
        node_name, param_name = PARAMETER_BINDINGS[name]
        graph = self.graph
        with graph.lock:
            param = graph.node(node_name).audio_params[param_name]
            param.linear_ramp_to(accepted, graph.current_time, self.synth.ramp_seconds)
        return accepted

    def set_frequency(self, value: float) -> Optional[float]:
        return self.set_parameter("frequency", value)

    def set_filter_frequency(self, value: float) -> Optional[float]:
        return self.set_parameter("filter_frequency", value)

    def set_filter_q(self, value: float) -> Optional[float]:
        return self.set_parameter("filter_q", value)

    def set_reverb_mix(self, value: float) -> Optional[float]:
        return self.set_parameter("reverb_mix", value)

    def set_delay_time(self, value: float) -> Optional[float]:
        return self.set_parameter("delay_time", value)

    def set_frequency_normalized(self, value: float) -> Optional[float]:
        """Map ``value`` in [0, 1] onto 110..1760 Hz exponentially."""

        norm = clamp(float(value), 0.0, 1.0)
        return self.set_frequency(expo_map(norm, NORMALIZED_MIN_FREQUENCY, NORMALIZED_MAX_FREQUENCY))

    def parameter_value(self, name: str) -> float:
        """Last accepted value of ``name`` (what the HUD shows)."""

        return self.parameters.get(name).target

    def rendered_value(self, name: str) -> float:
        """Instantaneous value of ``name`` on the live node, or the stored one."""

        graph = self.graph
        if graph is None:
            return self.parameters.value(name)
        node_name, param_name = PARAMETER_BINDINGS[name]
        with graph.lock:
            return graph.node(node_name).audio_params[param_name].value_at(graph.current_time)

    def set_waveform(self, kind: Waveform | str) -> None:
        """Record ``kind`` and, once running, hot-swap the oscillator node.

        Only the oscillator is replaced: the new node inherits the frequency
        ramp and phase of the old one and keeps its connections.
        """

        self.waveform = Waveform(kind)
        if not self.initialized:
            return
        graph = self.graph
        with graph.lock:
            previous = graph.node(OSCILLATOR)
            replacement = OscillatorNode(
                OSCILLATOR, {"wave": self.waveform.value, "phase": previous.phase}
            )
            replacement.frequency.copy_from(previous.frequency)
            previous.stop()
            graph.replace_node(replacement)
            replacement.start()
        log_event(f"engine.set_waveform {self.waveform.value}")

    # ------------------------------------------------------------------
    # Rendering
    def render(self, frames: int) -> np.ndarray:
        """Render ``frames`` samples shaped ``(C, F)``; silence before initialisation."""

        graph = self.graph
        if graph is None:
            return np.zeros((self.output_channels, int(frames)), dtype=RAW_DTYPE)
        with graph.lock:
            data = graph.render(int(frames))
            now = graph.current_time
            for name, (node_name, param_name) in PARAMETER_BINDINGS.items():
                value = graph.node(node_name).audio_params[param_name].value_at(now)
                self.parameters.settle(name, value)
        return data


__all__ = [
    "ANALYSER",
    "OSCILLATOR",
    "PARAMETER_BINDINGS",
    "SynthEngine",
    "build_synth_graph",
]
