"""
Deterministic clock and memory probe for performance tests.
"""
import os
import tempfile

MIB = 1024 * 1024


class FakeClock:
    """Manually advanced time source"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeMemoryProbe:
    """Memory probe returning a settable reading"""

    def __init__(self, usage: int = 100 * MIB):
        self.usage = usage
        self._peak = usage

    def current(self) -> int:
        self._peak = max(self._peak, self.usage)
        return self.usage

    def peak(self) -> int:
        return max(self._peak, self.usage)


def write_csv(rows, header=('sku', 'name', 'price')) -> str:
    """Write a CSV file with a header row and return its path"""
    handle = tempfile.NamedTemporaryFile('w', suffix='.csv', delete=False, newline='', encoding='utf-8')
    with handle:
        handle.write(','.join(header) + '\n')
        for row in rows:
            handle.write(','.join(row) + '\n')
    return handle.name


def write_text(content: str) -> str:
    """Write raw CSV text and return its path"""
    handle = tempfile.NamedTemporaryFile('w', suffix='.csv', delete=False, newline='', encoding='utf-8')
    with handle:
        handle.write(content)
    return handle.name


def product_rows(count: int):
    return [(f"SKU{i:05d}", f"Product {i}", f"{i}.99") for i in range(1, count + 1)]


def remove_file(path: str) -> None:
    if os.path.exists(path):
        os.remove(path)
