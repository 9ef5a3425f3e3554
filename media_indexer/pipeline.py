"""
Stage graph with bounded queues and a cascading close-then-drain shutdown.

Each stage owns a queue and a pool of workers. A handler receives one item and
an ``emit(stage_name, item)`` callable for passing results to the stages it
declared as downstream. Enqueueing blocks while the target queue is full, so a
slow stage holds back its producers instead of dropping work.
"""
import logging
import queue
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Optional

from . import config
from . import stats as counters
from .stats import RunStats

Emit = Callable[[str, Any], None]
Handler = Callable[[Any, Emit], None]

# One per worker; a worker stops at the first one it takes
_CLOSED = object()


class Stage:
    def __init__(self,
                 name: str,
                 handler: Handler,
                 workers: int = 1,
                 capacity: int = config.QUEUE_CAPACITY,
                 stats: Optional[RunStats] = None):
        if workers < 1:
            raise ValueError(f"Stage '{name}' needs at least one worker")
        self.name = name
        self.handler = handler
        self.workers = workers
        self.stats = stats
        self.queue: queue.Queue = queue.Queue(maxsize=capacity)
        self.downstream: List["Stage"] = []
        self.upstream: List["Stage"] = []
        self._executor: Optional[ThreadPoolExecutor] = None
        self._targets: Dict[str, "Stage"] = {}
        self._input_closed = False
        self._drained = False

    @property
    def drained(self) -> bool:
        """True once every worker has exhausted the closed input queue."""
        return self._drained

    def start(self):
        self._targets = {s.name: s for s in self.downstream}
        self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix=self.name)
        for _ in range(self.workers):
            self._executor.submit(self._work)

    def put(self, item: Any):
        if self._input_closed:
            raise RuntimeError(f"Stage '{self.name}' no longer accepts input")
        self.queue.put(item)

    def emit(self, target: str, item: Any):
        stage = self._targets.get(target)
        if stage is None:
            raise KeyError(f"Stage '{self.name}' does not feed '{target}'")
        stage.put(item)

    def close(self):
        """No more input will arrive; workers stop once the queue is empty."""
        if self._input_closed:
            return
        self._input_closed = True
        for _ in range(self.workers):
            self.queue.put(_CLOSED)

    def wait(self):
        """
        Joins this stage's workers, then closes and waits on every downstream
        stage whose upstreams have all drained. Returns bottom-up.
        """
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        self._drained = True
        logging.debug(f"Stage '{self.name}' drained")

        for stage in self.downstream:
            if not stage._input_closed and all(u.drained for u in stage.upstream):
                stage.close()
                stage.wait()

    def _work(self):
        while True:
            item = self.queue.get()
            if item is _CLOSED:
                return
            try:
                self.handler(item, self.emit)
            except Exception:
                logging.exception(f"Unhandled error in stage '{self.name}'")
                if self.stats:
                    self.stats.increment(counters.STAGE_ERRORS)


class Pipeline:
    """
    Stages are added with the names of the stages they feed. ``start`` checks
    the graph, ``submit`` feeds a source stage, and ``wait`` closes the sources
    and cascades the shutdown down the graph.
    """

    def __init__(self, stats: Optional[RunStats] = None, capacity: int = config.QUEUE_CAPACITY):
        self.stats = stats
        self.capacity = capacity
        self.stages: Dict[str, Stage] = {}
        self._links: Dict[str, List[str]] = {}
        self._started = False

    def add_stage(self, name: str, handler: Handler, workers: int = 1,
                  downstream: Iterable[str] = (), capacity: Optional[int] = None) -> Stage:
        if name in self.stages:
            raise ValueError(f"Duplicate stage name '{name}'")
        stage = Stage(name, handler, workers, capacity or self.capacity, self.stats)
        self.stages[name] = stage
        self._links[name] = list(downstream)
        return stage

    @property
    def sources(self) -> List[Stage]:
        return [s for s in self.stages.values() if not s.upstream]

    def start(self):
        for name, targets in self._links.items():
            for target in targets:
                if target not in self.stages:
                    raise ValueError(f"Stage '{name}' feeds unknown stage '{target}'")
                self.stages[name].downstream.append(self.stages[target])
                self.stages[target].upstream.append(self.stages[name])

        # Downstream first, so nothing is emitted into a stage without workers
        for stage in reversed(self.topological_order()):
            stage.start()
        self._started = True

    def topological_order(self) -> List[Stage]:
        order: List[Stage] = []
        remaining = {name: len(s.upstream) for name, s in self.stages.items()}
        ready = [s for s in self.stages.values() if not s.upstream]
        while ready:
            stage = ready.pop(0)
            order.append(stage)
            for child in stage.downstream:
                remaining[child.name] -= 1
                if remaining[child.name] == 0:
                    ready.append(child)
        if len(order) != len(self.stages):
            raise ValueError("Pipeline stages form a cycle")
        return order

    def submit(self, name: str, item: Any):
        stage = self.stages[name]
        if stage.upstream:
            raise ValueError(f"'{name}' is not a source stage")
        stage.put(item)

    def wait(self):
        if not self._started:
            raise RuntimeError("Pipeline was never started")
        for stage in self.sources:
            stage.close()
        for stage in self.sources:
            stage.wait()
