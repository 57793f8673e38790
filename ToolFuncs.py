from os.path import exists, isfile, dirname, join, isabs
from json import load, dump, JSONDecodeError
from math import radians, sin, cos
import typing

import ScratchObjects
import ScratchCompiler

STAGE_W, STAGE_H = 480, 360
stage_mleft = -STAGE_W / 2
stage_mright = STAGE_W / 2
stage_mtop = STAGE_H / 2
stage_mbottom = -STAGE_H / 2
PROJECT_VERSION = "1.0"

Number = int|float

def isInvalidFile(fp:str):
    return exists(fp) and isfile(fp)

def toNumber(value, default: Number = 0.0) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    try:
        n = float(value)
    except (TypeError, ValueError):
        return float(default)
    if n != n: # nan
        return float(default)
    return n

def toBool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "0", "false")
    return bool(value)

def rotate_point(x, y, deg, r):
    rad = radians(deg)
    xo = r * sin(rad)
    yo = r * cos(rad)
    return x + xo, y + yo

def fixPosOutStage(x: Number, y: Number) -> tuple[Number, Number]:
    x = x if stage_mleft <= x <= stage_mright else (stage_mleft if x < stage_mleft else stage_mright)
    y = y if stage_mbottom <= y <= stage_mtop else (stage_mbottom if y < stage_mbottom else stage_mtop)
    return x, y

def _loadProject_loadAssets(assets: list, cls: type, basedir: str):
    r = []
    for i in assets:
        path = i.get("path", None)
        if path is not None and not isabs(path):
            path = join(basedir, path)
        r.append(cls(name = i.get("name", ""), path = path))
    return r

def _loadProject_loadScripts(scripts: list, spritename: str):
    return [
        ScratchCompiler.compileScript(blocks, f"{spritename}#{i}")
        for i, blocks in enumerate(scripts)
    ]

def _loadProject_loadSprite(sprite_jsonitem: dict, defaultname: str, basedir: str):
    name = str(sprite_jsonitem.get("spriteName", defaultname))
    return ScratchObjects.ScratchActor(
        name = name,
        x = float(sprite_jsonitem.get("x", 0.0)),
        y = float(sprite_jsonitem.get("y", 0.0)),
        direction = float(sprite_jsonitem.get("direction", 90)),
        size = float(sprite_jsonitem.get("size", 100)),
        visible = sprite_jsonitem.get("visible", True) is not False,
        volume = float(sprite_jsonitem.get("volume", 100)),
        rotationStyle = sprite_jsonitem.get("rotationStyle", "all around"),
        currentCostume = int(sprite_jsonitem.get("currentCostume", 0)),
        variables = dict(sprite_jsonitem.get("variables", {})),
        scripts = _loadProject_loadScripts(sprite_jsonitem.get("scripts", []), name),
        costumes = _loadProject_loadAssets(sprite_jsonitem.get("costumes", []), ScratchObjects.ScratchCostume, basedir),
        sounds = _loadProject_loadAssets(sprite_jsonitem.get("sounds", []), ScratchObjects.ScratchSound, basedir)
    )

def projectFromDict(data: dict, basedir: str = ".") -> ScratchObjects.ScratchProject:
    if not isinstance(data, dict) or not isinstance(data.get("sprites", []), list):
        raise ScratchObjects.ScratchProjectError("Project data must be an object with a sprites list.")

    actors = []
    for i, sprite_jsonitem in enumerate(data.get("sprites", [])):
        try:
            actors.append(_loadProject_loadSprite(sprite_jsonitem, f"Sprite{i + 1}", basedir))
        except (AttributeError, TypeError, ValueError) as e:
            raise ScratchObjects.ScratchProjectError(f"Invalid sprite at {i}: {e.__class__.__name__}, {e}") from e

    names = [i.name for i in actors]
    if len(set(names)) != len(names):
        raise ScratchObjects.ScratchProjectError(f"Duplicate sprite names: {names}")

    try:
        variables = dict(data.get("variables", {}))
    except (TypeError, ValueError) as e:
        raise ScratchObjects.ScratchProjectError(f"Invalid global variables: {e}") from e

    return ScratchObjects.ScratchProject(
        actors = actors,
        variables = variables
    )

def loadProject(fp: str) -> ScratchObjects.ScratchProject:
    if not isInvalidFile(fp):
        raise ScratchObjects.ScratchProjectError(f"Project file not found: {fp}")
    try:
        with open(fp, "r", encoding="utf-8") as f:
            data = load(f)
    except JSONDecodeError as e:
        raise ScratchObjects.ScratchProjectError(f"Invalid project json: {e}") from e
    return projectFromDict(data, dirname(fp))

def inputToDict(value: ScratchObjects.ScratchInput):
    match value:
        case ScratchObjects.ScratchLiteral(value=v):
            return v
        case ScratchObjects.ScratchVariableRef(name=n):
            return {"variable": n}
        case ScratchObjects.ScratchInstruction():
            return {"block": instructionToDict(value)}

def instructionToDict(code: ScratchObjects.ScratchInstruction) -> dict:
    r: dict[str, typing.Any] = {"opcode": code.name}
    if code.inputs:
        r["inputs"] = {k: inputToDict(v) for k, v in code.inputs.items()}
    if code.fields:
        r["fields"] = dict(code.fields)
    return r

def scriptToList(script: ScratchObjects.ScratchScript) -> list[dict]:
    blocks = [instructionToDict(i) for i in script.body]
    if script.hat is not None:
        blocks.insert(0, instructionToDict(script.hat))
    return blocks

def projectToDict(project: ScratchObjects.ScratchProject) -> dict:
    "Clones and thread state are not part of a saved project, it always restarts cold."
    return {
        "version": PROJECT_VERSION,
        "variables": dict(project.variables),
        "sprites": [
            {
                "spriteName": actor.name,
                "x": actor.x,
                "y": actor.y,
                "direction": actor.direction,
                "size": actor.size,
                "visible": actor.visible,
                "volume": actor.volume,
                "rotationStyle": actor.rotationStyle,
                "currentCostume": actor.currentCostume,
                "variables": dict(actor.variables),
                "costumes": [{"name": i.name, "path": i.path} for i in actor.costumes],
                "sounds": [{"name": i.name, "path": i.path} for i in actor.sounds],
                "scripts": [scriptToList(i) for i in actor.scripts]
            }
            for actor in project.actors if not actor.isClone
        ]
    }

def dumpProject(project: ScratchObjects.ScratchProject, fp: str):
    with open(fp, "w", encoding="utf-8") as f:
        dump(projectToDict(project), f, indent=2, ensure_ascii=False)
