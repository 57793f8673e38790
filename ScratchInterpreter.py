from __future__ import annotations
import logging
import typing
import math

from ScratchObjects import (
    DEFAULT_SOUND_MS,
    ScratchActor,
    ScratchInstruction,
    ScratchLiteral,
    ScratchLoopFrame,
    ScratchThread,
    ScratchVariableRef,
)
from ScratchCompiler import Opcode, LOOP_OPENERS, OPENERS, slotDefault
import ToolFuncs

if typing.TYPE_CHECKING:
    from ScratchScheduler import ScratchScheduler

logger = logging.getLogger(__name__)

_MISSING = object()

class ScratchInterpreter:
    """
    Executes one instruction for one thread and reports how long, in ms,
    the thread must stay suspended afterwards (0 for "do not suspend").
    The scheduler has already moved the cursor past `code` when execute()
    is called, so control instructions jump by assigning `thread.cursor`.
    """

    def __init__(self, scheduler: ScratchScheduler) -> None:
        self.scheduler = scheduler

    @property
    def project(self):
        return self.scheduler.project

    @property
    def now(self) -> float:
        return self.scheduler.now

    # ---- inputs and variables ----

    def resolveVariable(self, thread: ScratchThread|None, name: str, default = 0):
        if thread is not None:
            if name in thread.variables:
                return thread.variables[name]
            if name in thread.actor.variables:
                return thread.actor.variables[name]
        if name in self.project.variables:
            return self.project.variables[name]
        return default

    def committedVariable(self, thread: ScratchThread, name: str, default = 0):
        "Value in the persistent store, skipping the thread snapshot."
        if name in thread.actor.variables:
            return thread.actor.variables[name]
        if name in self.project.variables:
            return self.project.variables[name]
        return thread.variables.get(name, default)

    def setVariable(self, thread: ScratchThread, name: str, value):
        """
        Commits to the persistent store and, in the same step, to every live
        snapshot that can see the name: all threads of the actor for an actor
        variable, every thread holding the name for a global.
        """
        actor = thread.actor
        thread.variables[name] = value
        if name not in actor.variables and name in self.project.variables:
            self.project.variables[name] = value
            for other in self.scheduler.threads:
                if name in other.variables and name not in other.actor.variables:
                    other.variables[name] = value
        else:
            actor.variables[name] = value
            for other in self.scheduler.getThreads(actor):
                other.variables[name] = value

    def getInputValue(self, code: ScratchInstruction, slot: str, thread: ScratchThread|None, default = _MISSING):
        if default is _MISSING:
            default = slotDefault(code.opcode, slot)
        value = code.inputs.get(slot)
        match value:
            case None:
                return default
            case ScratchLiteral(value=v):
                return v
            case ScratchVariableRef(name=n):
                return self.resolveVariable(thread, n, default)
            case ScratchInstruction():
                r = self.evaluate(value, thread)
                return default if r is None else r
        return default

    def getNumber(self, code: ScratchInstruction, slot: str, thread: ScratchThread|None) -> float:
        default = slotDefault(code.opcode, slot)
        return ToolFuncs.toNumber(self.getInputValue(code, slot, thread, default), ToolFuncs.toNumber(default))

    def getBool(self, code: ScratchInstruction, slot: str, thread: ScratchThread|None) -> bool:
        return ToolFuncs.toBool(self.getInputValue(code, slot, thread))

    # ---- reporters ----

    def evaluate(self, code: ScratchInstruction, thread: ScratchThread|None):
        "Reporter sub-protocol, runs a nested expression to completion."
        actor = thread.actor if thread is not None else None
        num = lambda slot: self.getNumber(code, slot, thread)
        value = lambda slot: self.getInputValue(code, slot, thread)

        match code.opcode:
            case Opcode.MOTION_XPOSITION:
                return actor.x
            case Opcode.MOTION_YPOSITION:
                return actor.y
            case Opcode.MOTION_DIRECTION:
                return actor.direction
            case Opcode.LOOKS_SIZE:
                return actor.size
            case Opcode.LOOKS_COSTUMENUMBERNAME:
                if code.fields.get("NUMBER_NAME", "number") == "number" or not actor.costumes:
                    return actor.currentCostume + 1
                return actor.costumes[actor.currentCostume % len(actor.costumes)].name
            case Opcode.SOUND_VOLUME:
                return actor.volume
            case Opcode.DATA_VARIABLE:
                return self.resolveVariable(thread, code.fields.get("VARIABLE", ""), 0)
            case Opcode.SENSING_TIMER:
                return (self.now - self.scheduler.timerStart) / 1000
            case Opcode.SENSING_KEYPRESSED:
                key = str(value("KEY_OPTION"))
                if key == "any":
                    return any(self.scheduler.keyStates.values())
                return self.scheduler.keyStates.get(key, False)
            case Opcode.SENSING_DISTANCETO:
                other = self.project.getActor(str(value("DISTANCETOMENU")))
                if other is None:
                    return 10000.0
                return math.sqrt((actor.x - other.x) ** 2 + (actor.y - other.y) ** 2)
            case Opcode.OPERATOR_ADD:
                return num("NUM1") + num("NUM2")
            case Opcode.OPERATOR_SUBTRACT:
                return num("NUM1") - num("NUM2")
            case Opcode.OPERATOR_MULTIPLY:
                return num("NUM1") * num("NUM2")
            case Opcode.OPERATOR_DIVIDE:
                try:
                    return num("NUM1") / num("NUM2")
                except ZeroDivisionError:
                    n1 = num("NUM1")
                    return math.copysign(math.inf, n1) if n1 else math.nan
            case Opcode.OPERATOR_MOD:
                n1, n2 = num("NUM1"), num("NUM2")
                try:
                    return n1 % n2
                except ZeroDivisionError:
                    return n1
            case Opcode.OPERATOR_RANDOM:
                f, t = num("FROM"), num("TO")
                if f > t:
                    f, t = t, f
                if f.is_integer() and t.is_integer():
                    return self.scheduler.random.randint(int(f), int(t))
                return f + (t - f) * self.scheduler.random.random()
            case Opcode.OPERATOR_GT | Opcode.OPERATOR_LT | Opcode.OPERATOR_EQUALS:
                n1, n2 = value("OPERAND1"), value("OPERAND2")
                try:
                    a, b = float(n1), float(n2)
                except (TypeError, ValueError):
                    a, b = str(n1).lower(), str(n2).lower()
                match code.opcode:
                    case Opcode.OPERATOR_GT:
                        return a > b
                    case Opcode.OPERATOR_LT:
                        return a < b
                    case _:
                        return a == b
            case Opcode.OPERATOR_AND:
                return self.getBool(code, "OPERAND1", thread) and self.getBool(code, "OPERAND2", thread)
            case Opcode.OPERATOR_OR:
                return self.getBool(code, "OPERAND1", thread) or self.getBool(code, "OPERAND2", thread)
            case Opcode.OPERATOR_NOT:
                return not self.getBool(code, "OPERAND", thread)
            case Opcode.OPERATOR_JOIN:
                return str(value("STRING1")) + str(value("STRING2"))
            case Opcode.OPERATOR_LENGTH:
                return len(str(value("STRING")))
            case Opcode.OPERATOR_LETTER_OF:
                s = str(value("STRING"))
                n = num("LETTER")
                if not math.isfinite(n):
                    return ""
                i = int(n)
                return s[i - 1] if 1 <= i <= len(s) else ""
            case Opcode.OPERATOR_CONTAINS:
                return str(value("STRING2")).lower() in str(value("STRING1")).lower()
            case Opcode.OPERATOR_ROUND:
                n = num("NUM")
                return math.floor(n + 0.5) if math.isfinite(n) else n
            case Opcode.OPERATOR_MATHOP:
                return self._mathop(code.fields.get("OPERATOR", "abs"), num("NUM"))
            case _:
                logger.warning("Unrecognized reporter: %s", code.name)
                return None

    def _mathop(self, op: str, n: float):
        try:
            match op:
                case "abs":
                    return abs(n)
                case "floor":
                    return math.floor(n) if math.isfinite(n) else n
                case "ceiling":
                    return math.ceil(n) if math.isfinite(n) else n
                case "sqrt":
                    return math.sqrt(n)
                case "sin":
                    return round(math.sin(math.radians(n)), 10)
                case "cos":
                    return round(math.cos(math.radians(n)), 10)
                case "tan":
                    return math.tan(math.radians(n))
                case "asin":
                    return math.degrees(math.asin(n))
                case "acos":
                    return math.degrees(math.acos(n))
                case "atan":
                    return math.degrees(math.atan(n))
                case "ln":
                    return math.log(n)
                case "log":
                    return math.log10(n)
                case "e ^":
                    return math.exp(n)
                case "10 ^":
                    return math.pow(10, n)
        except (ValueError, OverflowError):
            return 0.0
        return 0.0

    # ---- commands ----

    def execute(self, code: ScratchInstruction, thread: ScratchThread) -> float:
        logger.debug("Executing on %s: %s", thread.actor.name, code.name)
        try:
            delay = self._execute(code, thread, thread.actor)
        except Exception:
            logger.exception("Error in instruction %s on %s", code.name, thread.actor.name)
            if code.opcode in OPENERS:
                thread.cursor = self._after(code.end, thread) # a failed opener skips its body
            return 0.0
        return max(delay, 0.0)

    def _execute(self, code: ScratchInstruction, thread: ScratchThread, actor: ScratchActor) -> float:
        num = lambda slot: self.getNumber(code, slot, thread)
        value = lambda slot: self.getInputValue(code, slot, thread)

        match code.opcode:
            case Opcode.MOTION_MOVESTEPS:
                self.moveTo(actor, *ToolFuncs.rotate_point(actor.x, actor.y, actor.direction, num("STEPS")))

            case Opcode.MOTION_TURNRIGHT:
                actor.direction = self._wrapDirection(actor.direction + num("DEGREES"))

            case Opcode.MOTION_TURNLEFT:
                actor.direction = self._wrapDirection(actor.direction - num("DEGREES"))

            case Opcode.MOTION_GOTOXY:
                self.moveTo(actor, num("X"), num("Y"))

            case Opcode.MOTION_GOTO:
                pos = self._menuPosition(str(value("TO")))
                if pos is not None:
                    self.moveTo(actor, *pos)

            case Opcode.MOTION_GLIDESECSTOXY:
                duration = num("SECS") * 1000
                tx, ty = num("X"), num("Y")
                if duration <= 0:
                    self.moveTo(actor, tx, ty)
                    return 0.0
                self.glide(actor, tx, ty, duration)
                return duration

            case Opcode.MOTION_POINTINDIRECTION:
                actor.direction = self._wrapDirection(num("DIRECTION"))

            case Opcode.MOTION_POINTTOWARDS:
                other = self.project.getActor(str(value("TOWARDS")))
                if other is not None and (other.x, other.y) != (actor.x, actor.y):
                    dx, dy = other.x - actor.x, other.y - actor.y
                    actor.direction = self._wrapDirection(90 - math.degrees(math.atan2(dy, dx)))

            case Opcode.MOTION_CHANGEXBY:
                self.moveTo(actor, actor.x + num("DX"), actor.y)

            case Opcode.MOTION_SETX:
                self.moveTo(actor, num("X"), actor.y)

            case Opcode.MOTION_CHANGEYBY:
                self.moveTo(actor, actor.x, actor.y + num("DY"))

            case Opcode.MOTION_SETY:
                self.moveTo(actor, actor.x, num("Y"))

            case Opcode.MOTION_IFONEDGEBOUNCE:
                self._bounce(actor)

            case Opcode.MOTION_SETROTATIONSTYLE:
                style = code.fields.get("STYLE", "all around")
                if style in ("all around", "left-right", "don't rotate"):
                    actor.rotationStyle = style

            case Opcode.LOOKS_SAY | Opcode.LOOKS_THINK:
                self.say(actor, str(value("MESSAGE")), "say" if code.opcode == Opcode.LOOKS_SAY else "think")

            case Opcode.LOOKS_SAYFORSECS | Opcode.LOOKS_THINKFORSECS:
                duration = max(num("SECS"), 0.0) * 1000
                self.say(actor, str(value("MESSAGE")), "say" if code.opcode == Opcode.LOOKS_SAYFORSECS else "think", duration)
                return duration

            case Opcode.LOOKS_SHOW:
                actor.visible = True

            case Opcode.LOOKS_HIDE:
                actor.visible = False

            case Opcode.LOOKS_CHANGESIZEBY:
                actor.size = max(0.0, actor.size + num("CHANGE"))

            case Opcode.LOOKS_SETSIZETO:
                actor.size = max(0.0, num("SIZE"))

            case Opcode.LOOKS_SWITCHCOSTUMETO:
                self._switchCostume(actor, value("COSTUME"))

            case Opcode.LOOKS_NEXTCOSTUME:
                if actor.costumes:
                    actor.currentCostume = (actor.currentCostume + 1) % len(actor.costumes)

            case Opcode.SOUND_PLAY | Opcode.SOUND_PLAYUNTILDONE:
                name = str(value("SOUND_MENU"))
                sound = actor.getSound(name)
                logger.info("%s plays sound: %s", actor.name, name)
                if code.opcode == Opcode.SOUND_PLAYUNTILDONE:
                    return sound.durationMs if sound is not None else DEFAULT_SOUND_MS

            case Opcode.SOUND_CHANGEVOLUMEBY:
                actor.volume = min(max(actor.volume + num("VOLUME"), 0.0), 100.0)

            case Opcode.SOUND_SETVOLUMETO:
                actor.volume = min(max(num("VOLUME"), 0.0), 100.0)

            case Opcode.EVENT_BROADCAST:
                self.scheduler.broadcasts.broadcast(str(value("BROADCAST_INPUT")))

            case Opcode.EVENT_BROADCASTANDWAIT:
                if thread.waitingOn is None:
                    thread.waitingOn = self.scheduler.broadcasts.broadcast(str(value("BROADCAST_INPUT")))
                if any(i.active for i in thread.waitingOn):
                    thread.cursor -= 1 # run this instruction again next tick
                else:
                    thread.waitingOn = None

            case Opcode.CONTROL_WAIT:
                return max(num("DURATION"), 0.0) * 1000

            case Opcode.CONTROL_REPEAT:
                times = num("TIMES")
                if times == math.inf:
                    thread.loops.push(self._frame("forever", code, thread))
                    return 0.0
                times = math.floor(times + 0.5) if math.isfinite(times) else 0
                if times < 1:
                    thread.cursor = self._after(code.end, thread)
                else:
                    thread.loops.push(self._frame("repeat", code, thread, remaining=times - 1))

            case Opcode.CONTROL_FOREVER:
                thread.loops.push(self._frame("forever", code, thread))

            case Opcode.CONTROL_REPEAT_UNTIL:
                if self.getBool(code, "CONDITION", thread):
                    thread.cursor = self._after(code.end, thread)
                else:
                    thread.loops.push(self._frame("until", code, thread))

            case Opcode.CONTROL_IF:
                if not self.getBool(code, "CONDITION", thread):
                    thread.cursor = self._after(code.end, thread)

            case Opcode.CONTROL_IF_ELSE:
                if not self.getBool(code, "CONDITION", thread):
                    thread.cursor = self._after(code.else_, thread)

            case Opcode.CONTROL_ELSE:
                # reached only at the end of the true branch
                thread.cursor = self._after(thread.body[code.opener].end, thread)

            case Opcode.CONTROL_END:
                frame = thread.loops.top()
                if thread.body[code.opener].opcode in LOOP_OPENERS and frame is not None and frame.opener == code.opener:
                    self.closeLoop(thread, frame)

            case Opcode.CONTROL_WAIT_UNTIL:
                if not self.getBool(code, "CONDITION", thread):
                    thread.cursor -= 1

            case Opcode.CONTROL_STOP:
                match code.fields.get("STOP_OPTION", "all"):
                    case "all":
                        self.scheduler.stop()
                    case "this script":
                        thread.active = False
                    case "other scripts in sprite" | "other scripts in stage":
                        self.scheduler.stopActorThreads(actor, exclude=thread)

            case Opcode.CONTROL_CREATE_CLONE_OF:
                menuv = str(value("CLONE_OPTION"))
                origin = actor if menuv == "_myself_" else self.project.getActor(menuv)
                if origin is None:
                    logger.debug("Clone target %s not found, skipped.", menuv)
                else:
                    self.scheduler.clones.createClone(origin)

            case Opcode.CONTROL_DELETE_THIS_CLONE:
                if actor.isClone:
                    self.scheduler.clones.deleteClone(actor)

            case Opcode.DATA_SETVARIABLETO:
                self.setVariable(thread, code.fields.get("VARIABLE", "my variable"), value("VALUE"))

            case Opcode.DATA_CHANGEVARIABLEBY:
                name = code.fields.get("VARIABLE", "my variable")
                current = ToolFuncs.toNumber(self.committedVariable(thread, name, 0))
                self.setVariable(thread, name, current + num("VALUE"))

            case Opcode.SENSING_RESETTIMER:
                self.scheduler.timerStart = self.now

            case _:
                logger.warning("Unrecognized instruction ignored on %s: %s", actor.name, code.name)

        return 0.0

    # ---- loops ----

    def _after(self, end: int|None, thread: ScratchThread) -> int:
        "Index following a closer. An opener never matched by the compiler spans the rest of the body."
        if end is None:
            return len(thread.body)
        return min(end + 1, len(thread.body))

    def _frame(self, kind, code: ScratchInstruction, thread: ScratchThread, remaining: int = 0) -> ScratchLoopFrame:
        return ScratchLoopFrame(
            kind = kind,
            resume = thread.cursor,
            exit = self._after(code.end, thread),
            opener = thread.cursor - 1,
            remaining = remaining
        )

    def closeLoop(self, thread: ScratchThread, frame: ScratchLoopFrame):
        "Called when the cursor reaches the end of the top loop's body."
        match frame.kind:
            case "forever":
                thread.cursor = frame.resume
            case "repeat":
                if frame.remaining > 0:
                    frame.remaining -= 1
                    thread.cursor = frame.resume
                else:
                    thread.loops.pop()
                    thread.cursor = frame.exit
            case "until":
                if self.getBool(thread.body[frame.opener], "CONDITION", thread):
                    thread.loops.pop()
                    thread.cursor = frame.exit
                else:
                    thread.cursor = frame.resume

    # ---- actor state helpers ----

    def moveTo(self, actor: ScratchActor, x: float, y: float):
        if self.scheduler.fenceStage:
            x, y = ToolFuncs.fixPosOutStage(x, y)
        actor.x, actor.y = x, y

    def glide(self, actor: ScratchActor, tx: float, ty: float, duration: float):
        """
        Moves the actor towards (tx, ty) on its own timer, independent of the
        thread tick. The last step lands exactly when the thread wakes up, and
        animation steps run before threads due at the same time.
        """
        timers = self.scheduler.timers
        sx, sy = actor.x, actor.y
        start = self.now
        end = start + duration
        epoch = self.scheduler.epoch

        def step():
            if not actor.active or self.scheduler.epoch != epoch: # stopped since the glide began
                return None
            if self.now >= end:
                self.moveTo(actor, tx, ty)
                return None
            p = (self.now - start) / duration
            self.moveTo(actor, sx + (tx - sx) * p, sy + (ty - sy) * p)
            if end - self.now <= self.scheduler.glideStep:
                timers.callAt(end, step, first=True)
            else:
                timers.callLater(self.scheduler.glideStep, step, first=True)

        step()

    def say(self, actor: ScratchActor, message: str, style: str, duration: float|None = None):
        actor.saying = message if message else None
        actor.sayStyle = style
        actor.sayCount += 1
        if duration is None:
            return None
        count = actor.sayCount

        def clear():
            if actor.sayCount == count: # not replaced by a later bubble
                actor.saying = None

        self.scheduler.timers.callLater(duration, clear, first=True)

    def _wrapDirection(self, deg: float) -> float:
        deg = deg % 360 # keep in (-180, 180]
        if deg > 180:
            deg -= 360
        return float(deg)

    def _menuPosition(self, menuv: str) -> tuple[float, float]|None:
        if menuv == "_random_":
            rnd = self.scheduler.random
            return (
                float(rnd.randint(int(ToolFuncs.stage_mleft), int(ToolFuncs.stage_mright))),
                float(rnd.randint(int(ToolFuncs.stage_mbottom), int(ToolFuncs.stage_mtop)))
            )
        other = self.project.getActor(menuv)
        if other is None:
            return None
        return other.x, other.y

    def _switchCostume(self, actor: ScratchActor, costume):
        if not actor.costumes:
            return None
        names = [i.name for i in actor.costumes]
        if str(costume) in names:
            actor.currentCostume = names.index(str(costume))
            return None
        n = ToolFuncs.toNumber(costume, math.nan)
        if not math.isnan(n):
            actor.currentCostume = (math.floor(n + 0.5) - 1) % len(actor.costumes)

    def _bounce(self, actor: ScratchActor):
        w, h = actor.costumeSize()
        left = actor.x - w / 2
        top = actor.y + h / 2
        right = actor.x + w / 2
        bottom = actor.y - h / 2

        if left < ToolFuncs.stage_mleft:
            actor.direction = self._wrapDirection(-actor.direction)
            actor.x = ToolFuncs.stage_mleft + w / 2
        elif right > ToolFuncs.stage_mright:
            actor.direction = self._wrapDirection(-actor.direction)
            actor.x = ToolFuncs.stage_mright - w / 2

        if top > ToolFuncs.stage_mtop:
            actor.direction = self._wrapDirection(180 - actor.direction)
            actor.y = ToolFuncs.stage_mtop - h / 2
        elif bottom < ToolFuncs.stage_mbottom:
            actor.direction = self._wrapDirection(180 - actor.direction)
            actor.y = ToolFuncs.stage_mbottom + h / 2
