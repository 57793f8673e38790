from __future__ import annotations
import dataclasses
import itertools
import logging
import typing
import copy

from ScratchObjects import ScratchActor, ScratchScript, ScratchThread, ScratchTrigger

if typing.TYPE_CHECKING:
    from ScratchScheduler import ScratchScheduler

logger = logging.getLogger(__name__)

class ScratchBroadcastBus:
    def __init__(self, scheduler: ScratchScheduler) -> None:
        self.scheduler = scheduler

    def listeners(self, message: str) -> list[tuple[ScratchActor, ScratchScript]]:
        return [
            (actor, script)
            for actor in self.scheduler.project.actors if actor.active
            for script in actor.getScripts(ScratchTrigger.RECEIVE, message)
        ]

    def broadcast(self, message: str) -> list[ScratchThread]:
        """
        Starts one thread per matching "when I receive" script, on every actor.
        All listeners are collected before any of them is started, and the
        new threads take their first step from the timer queue, so a receiver
        that broadcasts again cannot recurse into this call.
        """
        message = str(message)
        with self.scheduler.lock:
            if not self.scheduler.running:
                return []
            matches = self.listeners(message)
            logger.debug("Broadcasting: %s, %d receivers.", message, len(matches))
            return [self.scheduler.spawn(actor, script, immediate=False) for actor, script in matches]

class ScratchCloneManager:
    def __init__(self, scheduler: ScratchScheduler) -> None:
        self.scheduler = scheduler
        self._counter = itertools.count(1)

    def createClone(self, origin: ScratchActor) -> ScratchActor|None:
        scheduler = self.scheduler
        with scheduler.lock:
            if not origin.active or not scheduler.running:
                return None
            if len(scheduler.project.getClones()) >= scheduler.maxClones:
                logger.warning("Clone limit %d reached, %s is not cloned.", scheduler.maxClones, origin.name)
                return None

            root = origin.cloneOf or origin.name
            clone = dataclasses.replace(
                origin,
                name = f"{root}#clone{next(self._counter)}",
                variables = copy.deepcopy(origin.variables),
                isClone = True,
                cloneOf = root
            ) # scripts, costumes and sounds stay shared with the origin
            scheduler.project.actors.append(clone)
            logger.debug("Clone %s created from %s.", clone.name, origin.name)
            scheduler.startScripts(clone, ScratchTrigger.CLONE_START, immediate=False)
            return clone

    def deleteClone(self, actor: ScratchActor) -> bool:
        if not actor.isClone:
            logger.debug("%s is not a clone, delete ignored.", actor.name)
            return False
        with self.scheduler.lock:
            actor.active = False
            try:
                self.scheduler.project.actors.remove(actor)
            except ValueError:
                pass # already deleted
            self.scheduler.stopActorThreads(actor)
            logger.debug("Clone %s deleted.", actor.name)
            return True

    def clear(self):
        for clone in self.scheduler.project.getClones():
            self.deleteClone(clone)
