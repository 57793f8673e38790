from __future__ import annotations
from time import sleep, monotonic
import threading
import itertools
import logging
import random
import typing
import heapq

from ScratchObjects import (
    ScratchActor,
    ScratchProject,
    ScratchScript,
    ScratchThread,
    ScratchTrigger,
)
from ScratchInterpreter import ScratchInterpreter
from ScratchEvents import ScratchBroadcastBus, ScratchCloneManager

logger = logging.getLogger(__name__)

TICK_MS = 10 # an active thread asks to be resumed again after this long
WAIT_POLL_MS = 50 # a suspended thread re-checks its wake time at most this often
GLIDE_STEP_MS = 16
MAX_CLONES = 300

class ScratchTimerQueue:
    """
    The only scheduling primitive: "call this back later".
    Time is in milliseconds and only moves forward through advance() (simulated)
    or runRealtime() (wall clock), so tests can drive it deterministically.
    Callbacks due at the same time run in the order they were armed,
    except that `first=True` callbacks (animation steps) run before the others.
    """

    def __init__(self, now: float = 0.0) -> None:
        self.now = now
        self._heap: list[tuple[float, int, int, typing.Callable, tuple]] = []
        self._seq = itertools.count()

    def callAt(self, due: float, callback: typing.Callable, *args, first: bool = False):
        heapq.heappush(self._heap, (max(due, self.now), 0 if first else 1, next(self._seq), callback, args))

    def callLater(self, delay: float, callback: typing.Callable, *args, first: bool = False):
        self.callAt(self.now + delay, callback, *args, first=first)

    def nextDue(self) -> float|None:
        return self._heap[0][0] if self._heap else None

    def advance(self, ms: float):
        target = self.now + ms
        while self._heap and self._heap[0][0] <= target:
            due, _, _, callback, args = heapq.heappop(self._heap)
            self.now = max(self.now, due)
            callback(*args)
        self.now = target

    def runRealtime(self, ms: float, step: float = TICK_MS, lock: threading.RLock|None = None):
        "Follows the wall clock. With `lock`, each step runs holding it, never the sleep."
        deadline = monotonic() + ms / 1000
        while True:
            remaining = (deadline - monotonic()) * 1000
            if remaining <= 0:
                break
            wait = min(step, remaining)
            sleep(wait / 1000)
            if lock is None:
                self.advance(wait)
            else:
                with lock:
                    self.advance(wait)

    def clear(self):
        self._heap.clear()

    def __len__(self):
        return len(self._heap)

class ScratchScheduler:
    def __init__(
        self,
        project: ScratchProject,
        tick: float = TICK_MS,
        waitPoll: float = WAIT_POLL_MS,
        glideStep: float = GLIDE_STEP_MS,
        maxClones: int = MAX_CLONES,
        seed: int|None = None,
        fenceStage: bool = True,
        timers: ScratchTimerQueue|None = None
    ) -> None:
        self.project = project
        self.tick = tick
        self.waitPoll = waitPoll
        self.glideStep = glideStep
        self.maxClones = maxClones
        self.fenceStage = fenceStage
        self.random = random.Random(seed)
        self.timers = timers if timers is not None else ScratchTimerQueue()
        self.lock = threading.RLock() # serializes every resume/dispatch
        self.running = False
        self.epoch = 0 # run counter, bumped by stop()
        self.threads: list[ScratchThread] = []
        self.threadsCreated = 0
        self.timerStart = 0.0
        self.keyStates: dict[str, bool] = {}

        self.interpreter = ScratchInterpreter(self)
        self.broadcasts = ScratchBroadcastBus(self)
        self.clones = ScratchCloneManager(self)

    @property
    def now(self) -> float:
        return self.timers.now

    def start(self):
        with self.lock:
            if self.running:
                self.stop()
            self.running = True
            self.threadsCreated = 0
            self.timerStart = self.now
            for actor in list(self.project.actors):
                self.startScripts(actor, ScratchTrigger.START)
            logger.info("Interpreter started, %d threads.", len(self.threads))

    def stop(self):
        with self.lock:
            self.running = False
            self.epoch += 1
            for thread in self.threads:
                thread.active = False
            stopped = len(self.threads)
            self.threads.clear()
            self.clones.clear()
            logger.info("Interpreter stopped, %d active threads cleaned up.", stopped)

    def spawn(self, actor: ScratchActor, script: ScratchScript, immediate: bool = True) -> ScratchThread:
        """
        Registers a new thread at the top of the script body.
        With `immediate` the first instruction runs inside this call,
        otherwise on the timer queue at the current time.
        """
        with self.lock:
            thread = ScratchThread(
                actor = actor,
                script = script,
                variables = dict(actor.variables)
            )
            self.threads.append(thread)
            self.threadsCreated += 1
            if immediate:
                self.resume(thread)
            else:
                self.timers.callLater(0, self.resume, thread)
            return thread

    def startScripts(
        self,
        actor: ScratchActor,
        trigger: ScratchTrigger,
        argument: str|None = None,
        immediate: bool = True
    ) -> list[ScratchThread]:
        if not self.running or not actor.active:
            return []
        return [self.spawn(actor, script, immediate) for script in actor.getScripts(trigger, argument)]

    def resume(self, thread: ScratchThread):
        with self.lock:
            if not thread.active or not self.running:
                self.retire(thread)
                return None

            if self.now < thread.wakeTime:
                remaining = thread.wakeTime - self.now
                if remaining <= self.waitPoll:
                    self.timers.callAt(thread.wakeTime, self.resume, thread)
                else:
                    self.timers.callLater(self.waitPoll, self.resume, thread)
                return None

            if thread.cursor >= len(thread.body):
                frame = thread.loops.top()
                if frame is None:
                    self.retire(thread)
                    return None
                self.interpreter.closeLoop(thread, frame)

            if thread.cursor < len(thread.body):
                code = thread.body[thread.cursor]
                thread.cursor += 1
                delay = self.interpreter.execute(code, thread)
                if delay > 0:
                    thread.wakeTime = self.now + delay

            if thread.active and self.running:
                self.timers.callLater(self.tick, self.resume, thread)
            else:
                self.retire(thread)

    def retire(self, thread: ScratchThread):
        thread.active = False
        try:
            self.threads.remove(thread)
        except ValueError:
            return None
        logger.debug("Thread %d on %s retired.", thread.id, thread.actor.name)

    def getThreads(self, actor: ScratchActor) -> list[ScratchThread]:
        return [i for i in self.threads if i.actor is actor]

    def stopActorThreads(self, actor: ScratchActor, exclude: ScratchThread|None = None):
        with self.lock:
            for thread in self.getThreads(actor):
                if thread is exclude:
                    continue
                self.retire(thread)

    def keyPress(self, key: str) -> list[ScratchThread]:
        with self.lock:
            self.keyStates[key] = True
            threads = []
            for actor in list(self.project.actors):
                for script in actor.getScripts(ScratchTrigger.KEY):
                    if script.argument in (key, "any") and self.running and actor.active:
                        threads.append(self.spawn(actor, script))
            return threads

    def keyUp(self, key: str):
        with self.lock:
            self.keyStates[key] = False

    def clickActor(self, name: str) -> list[ScratchThread]:
        with self.lock:
            actor = self.project.getActor(name)
            if actor is None:
                return []
            return self.startScripts(actor, ScratchTrigger.CLICKED)

    def advance(self, ms: float):
        with self.lock:
            self.timers.advance(ms)

    def runRealtime(self, ms: float):
        self.timers.runRealtime(ms, self.tick, self.lock)

    def getExecutionStats(self) -> dict[str, typing.Any]:
        return {
            "activeThreads": len([i for i in self.threads if i.active]),
            "totalThreads": self.threadsCreated,
            "actors": len(self.project.actors),
            "clones": len(self.project.getClones()),
            "running": self.running
        }
