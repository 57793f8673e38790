from __future__ import annotations
import dataclasses
import typing
import enum

from ScratchObjects import (
    ScratchCompileError,
    ScratchInput,
    ScratchInstruction,
    ScratchLiteral,
    ScratchScript,
    ScratchTrigger,
    ScratchVariableRef,
)

class Opcode(str, enum.Enum):
    # hats
    EVENT_WHENFLAGCLICKED = "event_whenflagclicked"
    EVENT_WHENKEYPRESSED = "event_whenkeypressed"
    EVENT_WHENTHISSPRITECLICKED = "event_whenthisspriteclicked"
    EVENT_WHENBROADCASTRECEIVED = "event_whenbroadcastreceived"
    CONTROL_START_AS_CLONE = "control_start_as_clone"

    # motion
    MOTION_MOVESTEPS = "motion_movesteps"
    MOTION_TURNRIGHT = "motion_turnright"
    MOTION_TURNLEFT = "motion_turnleft"
    MOTION_GOTO = "motion_goto"
    MOTION_GOTOXY = "motion_gotoxy"
    MOTION_GLIDESECSTOXY = "motion_glidesecstoxy"
    MOTION_POINTINDIRECTION = "motion_pointindirection"
    MOTION_POINTTOWARDS = "motion_pointtowards"
    MOTION_CHANGEXBY = "motion_changexby"
    MOTION_SETX = "motion_setx"
    MOTION_CHANGEYBY = "motion_changeyby"
    MOTION_SETY = "motion_sety"
    MOTION_IFONEDGEBOUNCE = "motion_ifonedgebounce"
    MOTION_SETROTATIONSTYLE = "motion_setrotationstyle"

    # looks
    LOOKS_SAY = "looks_say"
    LOOKS_SAYFORSECS = "looks_sayforsecs"
    LOOKS_THINK = "looks_think"
    LOOKS_THINKFORSECS = "looks_thinkforsecs"
    LOOKS_SHOW = "looks_show"
    LOOKS_HIDE = "looks_hide"
    LOOKS_CHANGESIZEBY = "looks_changesizeby"
    LOOKS_SETSIZETO = "looks_setsizeto"
    LOOKS_SWITCHCOSTUMETO = "looks_switchcostumeto"
    LOOKS_NEXTCOSTUME = "looks_nextcostume"

    # sound
    SOUND_PLAY = "sound_play"
    SOUND_PLAYUNTILDONE = "sound_playuntildone"
    SOUND_CHANGEVOLUMEBY = "sound_changevolumeby"
    SOUND_SETVOLUMETO = "sound_setvolumeto"

    # events
    EVENT_BROADCAST = "event_broadcast"
    EVENT_BROADCASTANDWAIT = "event_broadcastandwait"

    # control
    CONTROL_WAIT = "control_wait"
    CONTROL_REPEAT = "control_repeat"
    CONTROL_FOREVER = "control_forever"
    CONTROL_IF = "control_if"
    CONTROL_IF_ELSE = "control_if_else"
    CONTROL_ELSE = "control_else"
    CONTROL_END = "control_end"
    CONTROL_REPEAT_UNTIL = "control_repeat_until"
    CONTROL_WAIT_UNTIL = "control_wait_until"
    CONTROL_STOP = "control_stop"
    CONTROL_CREATE_CLONE_OF = "control_create_clone_of"
    CONTROL_DELETE_THIS_CLONE = "control_delete_this_clone"

    # data
    DATA_SETVARIABLETO = "data_setvariableto"
    DATA_CHANGEVARIABLEBY = "data_changevariableby"
    DATA_VARIABLE = "data_variable"

    # sensing
    SENSING_RESETTIMER = "sensing_resettimer"
    SENSING_TIMER = "sensing_timer"
    SENSING_KEYPRESSED = "sensing_keypressed"
    SENSING_DISTANCETO = "sensing_distanceto"

    # reporters
    MOTION_XPOSITION = "motion_xposition"
    MOTION_YPOSITION = "motion_yposition"
    MOTION_DIRECTION = "motion_direction"
    LOOKS_SIZE = "looks_size"
    LOOKS_COSTUMENUMBERNAME = "looks_costumenumbername"
    SOUND_VOLUME = "sound_volume"
    OPERATOR_ADD = "operator_add"
    OPERATOR_SUBTRACT = "operator_subtract"
    OPERATOR_MULTIPLY = "operator_multiply"
    OPERATOR_DIVIDE = "operator_divide"
    OPERATOR_MOD = "operator_mod"
    OPERATOR_RANDOM = "operator_random"
    OPERATOR_GT = "operator_gt"
    OPERATOR_LT = "operator_lt"
    OPERATOR_EQUALS = "operator_equals"
    OPERATOR_AND = "operator_and"
    OPERATOR_OR = "operator_or"
    OPERATOR_NOT = "operator_not"
    OPERATOR_JOIN = "operator_join"
    OPERATOR_LENGTH = "operator_length"
    OPERATOR_LETTER_OF = "operator_letter_of"
    OPERATOR_CONTAINS = "operator_contains"
    OPERATOR_ROUND = "operator_round"
    OPERATOR_MATHOP = "operator_mathop"

HATS: dict[Opcode, ScratchTrigger] = {
    Opcode.EVENT_WHENFLAGCLICKED: ScratchTrigger.START,
    Opcode.EVENT_WHENKEYPRESSED: ScratchTrigger.KEY,
    Opcode.EVENT_WHENTHISSPRITECLICKED: ScratchTrigger.CLICKED,
    Opcode.EVENT_WHENBROADCASTRECEIVED: ScratchTrigger.RECEIVE,
    Opcode.CONTROL_START_AS_CLONE: ScratchTrigger.CLONE_START,
}

# hat field carrying the trigger argument
HAT_ARGUMENT_FIELDS = {
    Opcode.EVENT_WHENKEYPRESSED: "KEY_OPTION",
    Opcode.EVENT_WHENBROADCASTRECEIVED: "BROADCAST_OPTION",
}

LOOP_OPENERS = frozenset({
    Opcode.CONTROL_REPEAT,
    Opcode.CONTROL_FOREVER,
    Opcode.CONTROL_REPEAT_UNTIL,
})

OPENERS = LOOP_OPENERS | {Opcode.CONTROL_IF, Opcode.CONTROL_IF_ELSE}

# value used when an input slot is missing or cannot be resolved
SLOT_DEFAULTS: dict[Opcode, dict[str, typing.Any]] = {
    Opcode.MOTION_MOVESTEPS: {"STEPS": 10},
    Opcode.MOTION_TURNRIGHT: {"DEGREES": 15},
    Opcode.MOTION_TURNLEFT: {"DEGREES": 15},
    Opcode.MOTION_GOTO: {"TO": "_random_"},
    Opcode.MOTION_GOTOXY: {"X": 0, "Y": 0},
    Opcode.MOTION_GLIDESECSTOXY: {"SECS": 1, "X": 0, "Y": 0},
    Opcode.MOTION_POINTINDIRECTION: {"DIRECTION": 90},
    Opcode.MOTION_POINTTOWARDS: {"TOWARDS": ""},
    Opcode.MOTION_CHANGEXBY: {"DX": 10},
    Opcode.MOTION_SETX: {"X": 0},
    Opcode.MOTION_CHANGEYBY: {"DY": 10},
    Opcode.MOTION_SETY: {"Y": 0},
    Opcode.LOOKS_SAY: {"MESSAGE": "Hello!"},
    Opcode.LOOKS_SAYFORSECS: {"MESSAGE": "Hello!", "SECS": 2},
    Opcode.LOOKS_THINK: {"MESSAGE": "Hmm..."},
    Opcode.LOOKS_THINKFORSECS: {"MESSAGE": "Hmm...", "SECS": 2},
    Opcode.LOOKS_CHANGESIZEBY: {"CHANGE": 10},
    Opcode.LOOKS_SETSIZETO: {"SIZE": 100},
    Opcode.LOOKS_SWITCHCOSTUMETO: {"COSTUME": 1},
    Opcode.SOUND_PLAY: {"SOUND_MENU": "pop"},
    Opcode.SOUND_PLAYUNTILDONE: {"SOUND_MENU": "pop"},
    Opcode.SOUND_CHANGEVOLUMEBY: {"VOLUME": -10},
    Opcode.SOUND_SETVOLUMETO: {"VOLUME": 100},
    Opcode.EVENT_BROADCAST: {"BROADCAST_INPUT": "message1"},
    Opcode.EVENT_BROADCASTANDWAIT: {"BROADCAST_INPUT": "message1"},
    Opcode.CONTROL_WAIT: {"DURATION": 1},
    Opcode.CONTROL_REPEAT: {"TIMES": 10},
    Opcode.CONTROL_IF: {"CONDITION": False},
    Opcode.CONTROL_IF_ELSE: {"CONDITION": False},
    Opcode.CONTROL_REPEAT_UNTIL: {"CONDITION": False},
    Opcode.CONTROL_WAIT_UNTIL: {"CONDITION": False},
    Opcode.CONTROL_CREATE_CLONE_OF: {"CLONE_OPTION": "_myself_"},
    Opcode.DATA_SETVARIABLETO: {"VALUE": 0},
    Opcode.DATA_CHANGEVARIABLEBY: {"VALUE": 1},
    Opcode.SENSING_KEYPRESSED: {"KEY_OPTION": "space"},
    Opcode.SENSING_DISTANCETO: {"DISTANCETOMENU": ""},
    Opcode.OPERATOR_ADD: {"NUM1": 0, "NUM2": 0},
    Opcode.OPERATOR_SUBTRACT: {"NUM1": 0, "NUM2": 0},
    Opcode.OPERATOR_MULTIPLY: {"NUM1": 0, "NUM2": 0},
    Opcode.OPERATOR_DIVIDE: {"NUM1": 0, "NUM2": 0},
    Opcode.OPERATOR_MOD: {"NUM1": 0, "NUM2": 0},
    Opcode.OPERATOR_RANDOM: {"FROM": 1, "TO": 10},
    Opcode.OPERATOR_GT: {"OPERAND1": "", "OPERAND2": ""},
    Opcode.OPERATOR_LT: {"OPERAND1": "", "OPERAND2": ""},
    Opcode.OPERATOR_EQUALS: {"OPERAND1": "", "OPERAND2": ""},
    Opcode.OPERATOR_AND: {"OPERAND1": False, "OPERAND2": False},
    Opcode.OPERATOR_OR: {"OPERAND1": False, "OPERAND2": False},
    Opcode.OPERATOR_NOT: {"OPERAND": False},
    Opcode.OPERATOR_JOIN: {"STRING1": "", "STRING2": ""},
    Opcode.OPERATOR_LENGTH: {"STRING": ""},
    Opcode.OPERATOR_LETTER_OF: {"STRING": "", "LETTER": 1},
    Opcode.OPERATOR_CONTAINS: {"STRING1": "", "STRING2": ""},
    Opcode.OPERATOR_ROUND: {"NUM": 0},
    Opcode.OPERATOR_MATHOP: {"NUM": 0},
}

def slotDefault(opcode: str, slot: str):
    return SLOT_DEFAULTS.get(opcode, {}).get(slot, 0)

def toOpcode(name: str) -> str:
    "Unknown opcodes are kept as plain strings, the dispatcher treats them as no-ops."
    try:
        return Opcode(name)
    except ValueError:
        return name

def compileInput(value) -> ScratchInput:
    """
    Builds the tagged input variant from its JSON form:
        literal                 -> ScratchLiteral
        {"variable": name}      -> ScratchVariableRef
        {"block": {...}}        -> nested reporter ScratchInstruction
    """
    if isinstance(value, (ScratchLiteral, ScratchVariableRef, ScratchInstruction)):
        return value
    if isinstance(value, dict):
        if "variable" in value:
            return ScratchVariableRef(str(value["variable"]))
        if "block" in value:
            return compileBlock(value["block"])
        raise ScratchCompileError(f"Invalid input value: {value!r}")
    if isinstance(value, (list, tuple)):
        raise ScratchCompileError(f"Invalid input value: {value!r}")
    return ScratchLiteral(value)

def compileBlock(block: dict|ScratchInstruction) -> ScratchInstruction:
    if isinstance(block, ScratchInstruction):
        return block
    if not isinstance(block, dict) or "opcode" not in block:
        raise ScratchCompileError(f"Invalid block: {block!r}")
    return ScratchInstruction(
        opcode = toOpcode(str(block["opcode"])),
        inputs = {k: compileInput(v) for k, v in block.get("inputs", {}).items()},
        fields = {k: str(v) for k, v in block.get("fields", {}).items()},
    )

def matchBrackets(body: typing.Sequence[ScratchInstruction], name: str = "") -> tuple[ScratchInstruction, ...]:
    """
    Resolves every opener to its closer once, before the script can run.
    Openers get `end` (and `else_` for if/else), closers and else markers get `opener`.
    """
    resolved = list(body)
    stack: list[int] = []
    for i, code in enumerate(body):
        if code.opcode in OPENERS:
            stack.append(i)
        elif code.opcode == Opcode.CONTROL_ELSE:
            if not stack or body[stack[-1]].opcode != Opcode.CONTROL_IF_ELSE:
                raise ScratchCompileError(f"Script {name!r}: else at {i} is not inside an if/else")
            opener = stack[-1]
            if resolved[opener].else_ is not None:
                raise ScratchCompileError(f"Script {name!r}: second else at {i} for the if/else at {opener}")
            resolved[opener] = dataclasses.replace(resolved[opener], else_=i)
            resolved[i] = dataclasses.replace(code, opener=opener)
        elif code.opcode == Opcode.CONTROL_END:
            if not stack:
                raise ScratchCompileError(f"Script {name!r}: end at {i} has no matching opener")
            opener = stack.pop()
            if resolved[opener].opcode == Opcode.CONTROL_IF_ELSE and resolved[opener].else_ is None:
                raise ScratchCompileError(f"Script {name!r}: if/else at {opener} has no else")
            resolved[opener] = dataclasses.replace(resolved[opener], end=i)
            resolved[i] = dataclasses.replace(code, opener=opener)
    if stack:
        raise ScratchCompileError(f"Script {name!r}: {body[stack[-1]].name} at {stack[-1]} is never closed")
    return tuple(resolved)

def classifyTrigger(hat: ScratchInstruction) -> tuple[ScratchTrigger, str|None]:
    trigger = HATS[hat.opcode]
    argfield = HAT_ARGUMENT_FIELDS.get(hat.opcode)
    if argfield is None:
        return trigger, None
    if argfield in hat.fields:
        return trigger, hat.fields[argfield]
    value = hat.inputs.get(argfield)
    if isinstance(value, ScratchLiteral):
        return trigger, str(value.value)
    return trigger, "space" if trigger is ScratchTrigger.KEY else "message1"

def compileScript(blocks: typing.Sequence[dict|ScratchInstruction], name: str = "") -> ScratchScript:
    codes = [compileBlock(i) for i in blocks]
    if codes and codes[0].opcode in HATS:
        hat, codes = codes[0], codes[1:]
        trigger, argument = classifyTrigger(hat)
    else:
        hat, trigger, argument = None, ScratchTrigger.NONE, None

    for i, code in enumerate(codes):
        if code.opcode in HATS:
            raise ScratchCompileError(f"Script {name!r}: hat block {code.name} at {i} is not at the top")

    return ScratchScript(
        trigger = trigger,
        body = matchBrackets(codes, name),
        argument = argument,
        hat = hat,
        name = name
    )
