import numpy as np

MIN_LEVEL_DB = 0.0
MAX_LEVEL_DB = 120.0


def compute_level(block, count: int | None = None) -> float:
    """Convert a block of 16-bit PCM samples into a dB-like level (0..120).

    ``count`` limits the computation to the first ``count`` valid samples,
    mirroring a device read that filled only part of the buffer. An empty
    block or pure silence yields 0.
    """
    samples = np.asarray(block, dtype=np.float64).reshape(-1)
    if count is not None:
        samples = samples[:max(0, int(count))]
    if samples.size == 0:
        return MIN_LEVEL_DB

    rms = float(np.sqrt(np.mean(samples * samples)))
    if rms <= 0.0:
        return MIN_LEVEL_DB
    return float(np.clip(20.0 * np.log10(rms), MIN_LEVEL_DB, MAX_LEVEL_DB))
