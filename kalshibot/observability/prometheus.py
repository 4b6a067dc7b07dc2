from __future__ import annotations

from pathlib import Path
from typing import List

from .metrics import list_counters, list_counters_labelled


PREFIX = "kalshibot_"


def _escape_label_value(val: str) -> str:
    return val.replace("\\", "\\\\").replace("\"", "\\\"").replace("\n", "\\n")


def export_text(prefix: str = PREFIX) -> str:
    """Render in-process counters in Prometheus text exposition format.

    Zero-valued counters are omitted; each metric gets a single `# TYPE` line.
    """
    lines: List[str] = []
    emitted_type: set[str] = set()

    def _type(name: str) -> None:
        if name not in emitted_type:
            lines.append(f"# TYPE {name} counter")
            emitted_type.add(name)

    for name, val in list_counters():
        if val == 0:
            continue
        full = prefix + name
        _type(full)
        lines.append(f"{full} {val}")

    for name, labels, val in list_counters_labelled():
        if val == 0:
            continue
        full = prefix + name
        _type(full)
        label_str = ",".join(f"{k}=\"{_escape_label_value(v)}\"" for k, v in labels)
        lines.append(f"{full}{{{label_str}}} {val}")

    return "\n".join(lines) + ("\n" if lines else "")


def write_textfile(path: str | Path, prefix: str = PREFIX) -> Path:
    """Write the exposition atomically, for node_exporter's textfile collector."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_name(p.name + ".tmp")
    tmp.write_text(export_text(prefix), encoding="utf-8")
    tmp.replace(p)
    return p
