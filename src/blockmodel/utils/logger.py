"""
blockmodel.utils.logger
=======================
CSV logger for sweep traces of long-running samplers (plain Metropolis
sweeps and multicanonical runs).

Row schema
----------
```
iteration, elapsed_seconds, entropy,
mod_factor, flatness, n_moves, refine
```
Fields that do not apply to a sampler (e.g. ``flatness`` for a plain
Metropolis chain) may be passed as ``None`` and are left empty.
"""

import csv
import time
from pathlib import Path
from typing import Union, TextIO, Optional

__all__ = ["CSVLogger"]

class CSVLogger:
    """Light-weight CSV logger for sampling runs.

    Parameters
    ----------
    file
        Path to a CSV file *or* an already opened file handle.  If a path
        is given and the file exists it will be **overwritten** so that
        every run starts with a clean log.
    log_every
        Only every ``log_every``-th iteration results in a new row.
    """

    header = [
        "iteration",
        "elapsed_seconds",
        "entropy",
        "mod_factor",   # current Wang-Landau modification factor f
        "flatness",     # min(hist) / mean(hist) over the allowed bins
        "n_moves",
        "refine",
    ]

    # ---------------------------------------------------------------------
    def __init__(
        self,
        file: Union[str, Path, TextIO],
        *,
        log_every: int = 1,
    ):
        self.log_every = int(log_every)
        self._start = time.time()

        if isinstance(file, (str, Path)):
            path = Path(file)
            if path.exists():
                path.unlink()  # start from scratch every run
            path.parent.mkdir(parents=True, exist_ok=True)
            self._own_handle = True
            self._fh: TextIO = path.open("a", newline="")
            self._writer = csv.writer(self._fh)
            self._writer.writerow(self.header)
        else:  # already a file-like object
            self._own_handle = False
            self._fh = file
            self._writer = csv.writer(self._fh)
            # assume caller has written the header

        self._iteration_since_flush = 0

    # ------------------------------------------------------------------
    def log(
        self,
        iteration: int,
        entropy: float,
        n_moves: int,
        *,
        mod_factor: Optional[float] = None,
        flatness: Optional[float] = None,
        refine: Optional[bool] = None,
    ) -> None:
        """Append one new row if ``iteration`` meets the cadence."""
        if iteration % self.log_every:
            return

        elapsed = time.time() - self._start
        self._writer.writerow([
            iteration,
            f"{elapsed:.3f}",
            f"{entropy:.6f}",
            f"{mod_factor:.6g}" if mod_factor is not None else "",
            f"{flatness:.4f}" if flatness is not None else "",
            int(n_moves),
            int(refine) if refine is not None else "",
        ])
        # Flush every ~10 rows to amortise disk writes.
        self._iteration_since_flush += 1
        if self._iteration_since_flush >= 10:
            self._fh.flush()
            self._iteration_since_flush = 0

    # ------------------------------------------------------------------
    def close(self):
        if self._own_handle:
            self._fh.close()

    # Context-manager sugar ------------------------------------------------
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
