from __future__ import annotations
from dataclasses import dataclass, field
from io import BytesIO
import itertools
import logging
import typing
import enum

from pydub import AudioSegment
from PIL import UnidentifiedImageError, Image
import cairosvg

logger = logging.getLogger(__name__)

DEFAULT_COSTUME_SIZE = (40.0, 40.0) # an actor without costumes is a 40x40 circle.
DEFAULT_SOUND_MS = 1000.0

class ScratchError(Exception):
    pass

class ScratchCompileError(ScratchError):
    pass

class ScratchProjectError(ScratchError):
    pass

@dataclass(frozen=True)
class ScratchLiteral:
    value: int|float|str|bool

@dataclass(frozen=True)
class ScratchVariableRef:
    name: str

@dataclass(frozen=True)
class ScratchInstruction:
    opcode: str # an Opcode member, or the raw string of an unrecognized opcode
    inputs: dict[str, ScratchInput] = field(default_factory=dict)
    fields: dict[str, str] = field(default_factory=dict)

    # filled by the compiler's bracket matching, indices into the script body
    end: int|None = None
    else_: int|None = None
    opener: int|None = None

    @property
    def name(self) -> str:
        return getattr(self.opcode, "value", self.opcode)

ScratchInput = typing.Union[ScratchLiteral, ScratchVariableRef, ScratchInstruction]

class ScratchTrigger(enum.Enum):
    START = "start"
    KEY = "key"
    CLICKED = "clicked"
    RECEIVE = "receive"
    CLONE_START = "clone_start"
    NONE = "none"

@dataclass(frozen=True)
class ScratchScript:
    trigger: ScratchTrigger
    body: tuple[ScratchInstruction, ...]
    argument: str|None = None # key name or message name
    hat: ScratchInstruction|None = None
    name: str = ""

@dataclass
class ScratchAsset:
    name: str
    path: str|None = None # absolute, or relative to the working directory.

    def __post_init__(self):
        if self.path is not None:
            try:
                self.load()
            except Exception as e:
                logger.warning("Asset cannot be loaded, %s, %s: %s", e.__class__.__name__, self.path, e)

    def load(self):
        raise NotImplementedError

@dataclass
class ScratchCostume(ScratchAsset):
    w: float = DEFAULT_COSTUME_SIZE[0]
    h: float = DEFAULT_COSTUME_SIZE[1]

    def load(self):
        try:
            with Image.open(self.path) as im:
                self.w, self.h = im.size
        except UnidentifiedImageError:
            png = cairosvg.svg2png(url=self.path)
            with Image.open(BytesIO(png)) as im:
                self.w, self.h = im.size

@dataclass
class ScratchSound(ScratchAsset):
    durationMs: float = DEFAULT_SOUND_MS

    def load(self):
        self.durationMs = float(len(AudioSegment.from_file(self.path)))

@dataclass(eq=False)
class ScratchActor:
    name: str
    x: float = 0.0
    y: float = 0.0
    direction: float = 90.0
    size: float = 100.0
    visible: bool = True
    volume: float = 100.0
    rotationStyle: typing.Literal["all around", "left-right", "don't rotate"] = "all around"
    currentCostume: int = 0
    variables: dict[str, int|float|str|bool] = field(default_factory=dict)
    scripts: list[ScratchScript] = field(default_factory=list)
    costumes: list[ScratchCostume] = field(default_factory=list)
    sounds: list[ScratchSound] = field(default_factory=list)
    isClone: bool = False
    cloneOf: str|None = None

    def __post_init__(self):
        self.active = True
        self.saying: str|None = None
        self.sayStyle: typing.Literal["say", "think"] = "say"
        self.sayCount = 0

    def costumeSize(self) -> tuple[float, float]:
        if self.costumes:
            costume = self.costumes[self.currentCostume % len(self.costumes)]
            w, h = costume.w, costume.h
        else:
            w, h = DEFAULT_COSTUME_SIZE
        return w * self.size / 100, h * self.size / 100

    def getSound(self, name: str) -> ScratchSound|None:
        for sound in self.sounds:
            if sound.name == name:
                return sound
        return None

    def getScripts(self, trigger: ScratchTrigger, argument: str|None = None) -> list[ScratchScript]:
        return [
            script for script in self.scripts
            if script.trigger is trigger and (argument is None or script.argument == argument)
        ]

@dataclass
class ScratchLoopFrame:
    kind: typing.Literal["repeat", "forever", "until"]
    resume: int # first instruction of the loop body
    exit: int # first instruction after the loop body
    opener: int
    remaining: int = 0 # repeat only

class ScratchLoopStack:
    def __init__(self) -> None:
        self.frames: list[ScratchLoopFrame] = []

    def push(self, frame: ScratchLoopFrame):
        self.frames.append(frame)

    def pop(self) -> ScratchLoopFrame:
        return self.frames.pop()

    def top(self) -> ScratchLoopFrame|None:
        return self.frames[-1] if self.frames else None

    def clear(self):
        self.frames.clear()

    def __len__(self):
        return len(self.frames)

    def __iter__(self):
        return iter(self.frames)

_thread_ids = itertools.count(1)

@dataclass(eq=False)
class ScratchThread:
    actor: ScratchActor
    script: ScratchScript
    cursor: int = 0
    variables: dict[str, int|float|str|bool] = field(default_factory=dict)
    loops: ScratchLoopStack = field(default_factory=ScratchLoopStack)
    wakeTime: float = 0.0
    active: bool = True

    def __post_init__(self):
        self.id = next(_thread_ids)
        self.waitingOn: list[ScratchThread]|None = None # threads started by "broadcast and wait"

    @property
    def body(self) -> tuple[ScratchInstruction, ...]:
        return self.script.body

    def __repr__(self):
        return f"ScratchThread(id={self.id}, actor={self.actor.name!r}, cursor={self.cursor}/{len(self.body)}, active={self.active})"

@dataclass
class ScratchProject:
    actors: list[ScratchActor]
    variables: dict[str, int|float|str|bool] = field(default_factory=dict) # globals

    def getActor(self, name: str) -> ScratchActor|None:
        for actor in self.actors:
            if actor.name == name:
                return actor
        return None

    def getClones(self) -> list[ScratchActor]:
        return [i for i in self.actors if i.isClone]
