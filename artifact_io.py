"""

Author: Sailaja Kuruvada
Date: 2026

Artifact Output Helpers

Small helpers shared by the analysis scripts for writing result files. Every
artifact (processed CSV, figures, summary tables, cached model fits) is first
written to a temporary file next to its final location and then moved into
place, so an interrupted run never leaves a half-written file behind.

Required Libraries and Versions:
- os: Standard library for directory creation (os.makedirs), atomic rename (os.replace) and cleanup (os.remove)
- tempfile: Standard library for creating the temporary file in the destination directory (tempfile.mkstemp)
- contextlib: Standard library for the context manager decorator (contextmanager)

"""

import os                             # Used for directory creation (os.makedirs), atomic rename (os.replace) and cleanup of partial files (os.remove)
import tempfile                       # Used for creating temporary files inside the destination folder (tempfile.mkstemp)
from contextlib import contextmanager  # Used to expose atomic_output as a `with` block


@contextmanager
def atomic_output(output_path):
    """
    Yield a temporary path that replaces `output_path` once the block succeeds.

    Args:
        output_path (str): Final location of the artifact

    Yields:
        str: Temporary path to write to (same directory, same extension)
    """
    output_dir = os.path.dirname(os.path.abspath(output_path))
    os.makedirs(output_dir, exist_ok=True)

    # Keep the extension so writers that infer the format from it still work
    suffix = os.path.splitext(output_path)[1]
    fd, tmp_path = tempfile.mkstemp(prefix=".tmp_", suffix=suffix, dir=output_dir)
    os.close(fd)
    try:
        yield tmp_path
        os.replace(tmp_path, output_path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def write_text(output_path, text):
    """Atomically write a UTF-8 text file."""
    with atomic_output(output_path) as tmp_path:
        with open(tmp_path, "w", encoding="utf-8") as handle:
            handle.write(text)
    return output_path


def save_figure(fig, output_path, dpi=300):
    """Atomically save a matplotlib figure (300 DPI, tight bounding box)."""
    with atomic_output(output_path) as tmp_path:
        fig.savefig(tmp_path, dpi=dpi, bbox_inches="tight")
    return output_path
