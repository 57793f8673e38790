from contextlib import redirect_stdout
from os.path import join
import tempfile
import unittest
import json
import io

from PIL import Image
from pydub import AudioSegment

import Main
import ScratchScheduler
import ToolFuncs
from ScratchObjects import DEFAULT_COSTUME_SIZE, ScratchProjectError
from scratchtest import block, cloneStart, end, flag, reporter, sprite, var


class ConversionTests(unittest.TestCase):
    def test_to_number(self) -> None:
        self.assertEqual(ToolFuncs.toNumber("3.5"), 3.5)
        self.assertEqual(ToolFuncs.toNumber(True), 1.0)
        self.assertEqual(ToolFuncs.toNumber("abc"), 0.0)
        self.assertEqual(ToolFuncs.toNumber(None, 7), 7.0)
        self.assertEqual(ToolFuncs.toNumber("nan", 2), 2.0)

    def test_to_bool(self) -> None:
        for falsy in ("", "0", "false", " FALSE ", 0, False, None):
            self.assertFalse(ToolFuncs.toBool(falsy), falsy)
        for truthy in ("true", "1", "no", 1, -0.5, True):
            self.assertTrue(ToolFuncs.toBool(truthy), truthy)

    def test_fix_pos_out_stage(self) -> None:
        self.assertEqual(ToolFuncs.fixPosOutStage(500, -400), (240, -180))
        self.assertEqual(ToolFuncs.fixPosOutStage(1, 2), (1, 2))


class ProjectFileTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmpdir = self._tmp.name

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def writeProject(self, data, name="project.json") -> str:
        path = join(self.tmpdir, name)
        with open(path, "w", encoding="utf-8") as f:
            if isinstance(data, str):
                f.write(data)
            else:
                json.dump(data, f)
        return path

    def test_missing_file(self) -> None:
        with self.assertRaises(ScratchProjectError):
            ToolFuncs.loadProject(join(self.tmpdir, "nothing.json"))

    def test_invalid_json(self) -> None:
        with self.assertRaises(ScratchProjectError):
            ToolFuncs.loadProject(self.writeProject("{not json"))

    def test_duplicate_sprite_names(self) -> None:
        with self.assertRaises(ScratchProjectError):
            ToolFuncs.loadProject(self.writeProject({"sprites": [sprite("A"), sprite("A")]}))

    def test_sprites_must_be_a_list(self) -> None:
        with self.assertRaises(ScratchProjectError):
            ToolFuncs.projectFromDict({"sprites": {"A": {}}})

    def test_malformed_sprite_entries(self) -> None:
        for sprites in (["oops"], [{"spriteName": "A", "x": "left"}], [{"variables": [1, 2, 3]}], [{"costumes": [3]}]):
            with self.assertRaises(ScratchProjectError):
                ToolFuncs.projectFromDict({"sprites": sprites})
        with self.assertRaises(ScratchProjectError):
            ToolFuncs.projectFromDict({"sprites": [], "variables": 5})

    def test_save_and_load(self) -> None:
        data = {
            "variables": {"score": 2},
            "sprites": [
                sprite(
                    "A",
                    flag(
                        block("control_repeat", TIMES=reporter("operator_add", NUM1=1, NUM2=var("score"))),
                        block("motion_changexby", DX=5),
                        end(),
                    ),
                    cloneStart(block("looks_hide")),
                    x=12, direction=-90, variables={"hp": 3}
                )
            ]
        }
        project = ToolFuncs.projectFromDict(data)
        scheduler = ScratchScheduler.ScratchScheduler(project)
        scheduler.start()
        scheduler.clones.createClone(project.getActor("A"))
        self.assertEqual(len(project.actors), 2)

        path = join(self.tmpdir, "saved.json")
        ToolFuncs.dumpProject(project, path)
        with open(path, encoding="utf-8") as f:
            saved = json.load(f)
        self.assertEqual(saved["version"], ToolFuncs.PROJECT_VERSION)
        self.assertEqual([i["spriteName"] for i in saved["sprites"]], ["A"])
        self.assertEqual(saved["sprites"][0]["scripts"], data["sprites"][0]["scripts"])

        loaded = ToolFuncs.loadProject(path)
        actor = loaded.getActor("A")
        self.assertEqual(len(loaded.actors), 1)
        self.assertEqual(loaded.variables, {"score": 2})
        self.assertEqual(actor.variables, {"hp": 3})
        self.assertEqual(actor.direction, -90)
        self.assertEqual(actor.scripts, project.getActor("A").scripts)

    def test_costume_size_from_image(self) -> None:
        Image.new("RGB", (30, 20)).save(join(self.tmpdir, "ball.png"))
        path = self.writeProject({"sprites": [
            sprite("A", costumes=[{"name": "ball", "path": "ball.png"}], size=200),
        ]})
        actor = ToolFuncs.loadProject(path).getActor("A")
        self.assertEqual((actor.costumes[0].w, actor.costumes[0].h), (30, 20))
        self.assertEqual(actor.costumeSize(), (60, 40))

    def test_unreadable_costume_keeps_default_size(self) -> None:
        with self.assertLogs("ScratchObjects", level="WARNING"):
            project = ToolFuncs.projectFromDict({"sprites": [
                sprite("A", costumes=[{"name": "gone", "path": join(self.tmpdir, "gone.png")}]),
            ]})
        costume = project.getActor("A").costumes[0]
        self.assertEqual((costume.w, costume.h), DEFAULT_COSTUME_SIZE)

    def test_sound_length(self) -> None:
        AudioSegment.silent(duration=250).export(join(self.tmpdir, "pop.wav"), format="wav").close()
        path = self.writeProject({"sprites": [
            sprite(
                "A",
                flag(
                    block("sound_playuntildone", SOUND_MENU="pop"),
                    block("data_setvariableto", {"VARIABLE": "done"}, VALUE=1),
                ),
                sounds=[{"name": "pop", "path": "pop.wav"}],
            ),
        ]})
        project = ToolFuncs.loadProject(path)
        self.assertEqual(project.getActor("A").getSound("pop").durationMs, 250)

        scheduler = ScratchScheduler.ScratchScheduler(project)
        scheduler.start()
        scheduler.advance(200)
        self.assertNotIn("done", project.getActor("A").variables)
        scheduler.advance(100)
        self.assertEqual(project.getActor("A").variables["done"], 1)


class MainTests(unittest.TestCase):
    def run_main(self, *args):
        out = io.StringIO()
        with redirect_stdout(out):
            code = Main.main(list(args))
        return code, out.getvalue()

    def test_help(self) -> None:
        code, out = self.run_main("--help")
        self.assertEqual(code, 0)
        self.assertIn("Usage", out)

    def test_run_project(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = join(tmpdir, "project.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"sprites": [sprite("A", flag(
                    block("control_repeat", TIMES=4),
                    block("motion_changexby", DX=10),
                    end(),
                ))]}, f)
            code, out = self.run_main(path, "--seconds", "1", "--seed", "3")

        self.assertEqual(code, 0)
        result = json.loads(out)
        self.assertEqual(result["actors"][0]["name"], "A")
        self.assertEqual(result["actors"][0]["x"], 40)
        self.assertEqual(result["stats"]["totalThreads"], 1)
        self.assertEqual(result["stats"]["activeThreads"], 0)

    def test_bad_input(self) -> None:
        code, out = self.run_main("missing.json", "--seconds", "1")
        self.assertEqual(code, 1)
        self.assertIn("ScratchProjectError", out)
        code, out = self.run_main("missing.json", "--seconds", "soon")
        self.assertEqual(code, 2)

    def test_malformed_sprite_reports_load_failure(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = join(tmpdir, "project.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"sprites": [{"spriteName": "A", "x": "left"}]}, f)
            code, out = self.run_main(path)
        self.assertEqual(code, 1)
        self.assertIn("Load project failed", out)


if __name__ == "__main__":
    unittest.main()
