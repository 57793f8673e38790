from sys import argv
from json import dumps
import logging

import ClineHelp
import ScratchObjects
import ScratchScheduler
import ToolFuncs

logger = logging.getLogger("Main")

def getOption(args: list[str], name: str, default: str|None = None) -> str|None:
    if name not in args:
        return default
    i = args.index(name)
    if i + 1 >= len(args):
        raise ValueError(f"{name} needs a value.")
    return args[i + 1]

def actorState(actor: ScratchObjects.ScratchActor) -> dict:
    return {
        "name": actor.name,
        "x": round(actor.x, 6),
        "y": round(actor.y, 6),
        "direction": actor.direction,
        "size": actor.size,
        "visible": actor.visible,
        "saying": actor.saying,
        "isClone": actor.isClone,
        "variables": actor.variables
    }

def main(args: list[str]|None = None) -> int:
    args = argv[1:] if args is None else args
    if not args or args[0] in ("-h", "--help"):
        print(ClineHelp.HELP)
        return 0

    logging.basicConfig(
        level = logging.DEBUG if "--debug" in args else logging.INFO,
        format = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    try:
        seconds = float(getOption(args, "--seconds", "5"))
        seed = getOption(args, "--seed")
        seed = int(seed) if seed is not None else None
    except ValueError as e:
        print(f"Invalid option: {e}")
        return 2

    try:
        project = ToolFuncs.loadProject(args[0])
    except ScratchObjects.ScratchError as e:
        print(f"Load project failed. err: {e.__class__.__name__}, {e}")
        return 1

    scheduler = ScratchScheduler.ScratchScheduler(project, seed=seed)
    scheduler.start()
    if "--realtime" in args:
        scheduler.runRealtime(seconds * 1000)
    else:
        scheduler.advance(seconds * 1000)
    stats = scheduler.getExecutionStats()
    actors = [actorState(i) for i in project.actors]
    scheduler.stop()

    print(dumps({"stats": stats, "actors": actors, "variables": project.variables}, indent=2, default=str))
    return 0

if __name__ == "__main__":
    raise SystemExit(main())
