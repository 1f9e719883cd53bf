import shutil
import unittest
from pathlib import Path
from uuid import uuid4

from model_combiner.storage import KeyValueStore, StateStore

PROJECT_ROOT = Path(__file__).resolve().parents[2]


class StepClock:
    """Strictly increasing ISO timestamps, one second apart."""

    def __init__(self) -> None:
        self._tick = 0

    def __call__(self) -> str:
        self._tick += 1
        return f"2026-01-01T00:{self._tick // 60:02d}:{self._tick % 60:02d}.000000+00:00"


class StateStoreTestCase(unittest.TestCase):
    max_conversations = 100

    def setUp(self) -> None:
        self._tmp_dir = PROJECT_ROOT / ".test-artifacts" / f"{self.__class__.__name__.lower()}-{uuid4().hex}"
        self._tmp_dir.mkdir(parents=True, exist_ok=True)
        self._kv = KeyValueStore(str(self._tmp_dir / "state.db"))
        self._clock = StepClock()
        self._store = StateStore(self._kv, max_conversations=self.max_conversations, clock=self._clock)

    def tearDown(self) -> None:
        self._kv.close()
        shutil.rmtree(self._tmp_dir, ignore_errors=True)

    def new_store(self, name: str) -> tuple[KeyValueStore, StateStore]:
        kv = KeyValueStore(str(self._tmp_dir / f"{name}.db"))
        self.addCleanup(kv.close)
        return kv, StateStore(kv, clock=self._clock)
