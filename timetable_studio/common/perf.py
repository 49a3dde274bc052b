import time


class PhaseTimer:
    """Lightweight context manager for phase timing (non-invasive)."""
    def __init__(self, name: str, collector: list, silent: bool = False):
        self.name = name
        self.collector = collector
        self.silent = silent

    def __enter__(self):
        self.start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        dur = time.perf_counter() - self.start
        self.collector.append({'phase': self.name, 'seconds': dur})
        if not self.silent:
            print(f"[TIMER] {self.name}: {dur:.2f}s")
