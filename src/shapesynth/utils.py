# utils.py
import numpy as np

# =========================
# Settings / fidelity
# =========================
RAW_DTYPE = np.float64


def clamp(value, lo, hi):
    return max(lo, min(hi, value))


def expo_map(norm, lo, hi):
    base = hi / lo
    return lo * (base ** norm)


def assert_BCF(x, *, name="tensor"):
    a = np.asarray(x)
    if a.ndim != 3:
        raise ValueError(f"{name}: expected (B,C,F), got rank {a.ndim}, shape={a.shape}")
    return a


def match_channels(data: np.ndarray, channels: int) -> np.ndarray:
    """Up/down-mix a (B,C,F) block to ``channels``.

    Mono is copied to every output channel; stereo folded to mono is averaged.
    """
    if data.shape[1] == channels:
        return data
    if data.shape[1] == 1:
        return np.repeat(data, channels, axis=1)
    if channels == 1:
        return np.mean(data, axis=1, keepdims=True)
    if data.shape[1] > channels:
        return data[:, :channels, :]
    pad = np.zeros((data.shape[0], channels - data.shape[1], data.shape[2]), dtype=data.dtype)
    return np.concatenate([data, pad], axis=1)


# =========================
# Oscillator (polyBLEP)
# =========================
def _polyblep_arr(t, dt):
    out = np.zeros_like(t)
    m = t < dt
    if np.any(m):
        x = t[m] / np.maximum(dt[m], 1e-20)
        out[m] = x + x - x * x - 1.0
    m = t > (1.0 - dt)
    if np.any(m):
        x = (t[m] - 1.0) / np.maximum(dt[m], 1e-20)
        out[m] = x * x + x + x + 1.0
    return out


def osc_sine(ph): return np.sin(2 * np.pi * ph, dtype=RAW_DTYPE)


def osc_saw_blep(ph, dphi):
    t = ph; y = 2.0 * t - 1.0; return y - _polyblep_arr(t, dphi)


def osc_square_blep(ph, dphi, pw=0.5):
    t = ph; y = np.where(t < pw, 1.0, -1.0)
    # rising edge at t=0, falling edge at t=pw
    y += _polyblep_arr(t, dphi)
    t2 = (t + (1.0 - pw)) % 1.0
    y -= _polyblep_arr(t2, dphi)
    return y


def osc_triangle(ph):
    # harmonics already fall off at 1/n^2, no BLEP correction needed
    return (2.0 * np.abs(2.0 * ph - 1.0) - 1.0).astype(RAW_DTYPE)


def make_wave_hq(name, phase, dphi):
    if name == "sine": return osc_sine(phase)
    if name == "sawtooth": return osc_saw_blep(phase, dphi)
    if name == "square": return osc_square_blep(phase, dphi)
    if name == "triangle": return osc_triangle(phase)
    raise ValueError(f"Unknown waveform '{name}'")


def linear_segment(y0, y1, t0, t1, times):
    """Evaluate a linear ramp from (t0, y0) to (t1, y1) at ``times``.

    Values before ``t0`` hold ``y0``; values after ``t1`` hold ``y1``.
    """
    times = np.asarray(times, dtype=RAW_DTYPE)
    if t1 <= t0:
        return np.where(times < t0, y0, y1).astype(RAW_DTYPE)
    frac = np.clip((times - t0) / (t1 - t0), 0.0, 1.0)
    return y0 + (y1 - y0) * frac


def db_to_byte(db, min_db=-100.0, max_db=-30.0):
    scaled = 255.0 * (np.asarray(db, dtype=RAW_DTYPE) - min_db) / (max_db - min_db)
    return np.clip(np.floor(scaled), 0, 255).astype(np.uint8)

