#!/usr/bin/env python3
"""
Tests for the MainActivity.java preprocessor.

Run with: python3 -m pytest quadapk/build_scripts/test_preprocessor.py
"""

import os
import tempfile
import unittest

from quadapk.build_scripts.preprocessor import (
    GlueInject,
    InjectParser,
    Section,
    merge_injects,
    parse_inject_template,
    preprocess_main_activity,
    read_injects,
)
from quadapk.utils.errors import GlueTemplateError

VIBRATOR_INJECT = """
//% IMPORTS
import android.os.Vibrator;
//% END

//% MAIN_ACTIVITY_BODY
private Vibrator vibrator;
//% END

//% MAIN_ACTIVITY_ON_CREATE
vibrator = (Vibrator) getSystemService(VIBRATOR_SERVICE);
//% END
"""

CAMERA_INJECT = """
//% IMPORTS
import android.hardware.Camera;
//% END
ignored outside of a section
//% MAIN_ACTIVITY_ON_PAUSE
camera.release();
//% END
"""

MAIN_ACTIVITY = """package TARGET_PACKAGE_NAME;

//% IMPORTS

public class MainActivity extends Activity {
    //% MAIN_ACTIVITY_BODY

    static {
        System.loadLibrary("LIBRARY_NAME");
    }

    protected void onCreate(Bundle savedInstanceState) {
        //% MAIN_ACTIVITY_ON_CREATE
    }

    protected void onResume() {
        //% MAIN_ACTIVITY_ON_RESUME
    }

    protected void onPause() {
        //% MAIN_ACTIVITY_ON_PAUSE
    }
}
"""


class TestInjectParser(unittest.TestCase):
    """Test the section state machine."""

    def test_sections(self):
        inject = parse_inject_template(VIBRATOR_INJECT)

        self.assertEqual(inject.imports, "import android.os.Vibrator;\n")
        self.assertEqual(inject.body, "private Vibrator vibrator;\n")
        self.assertEqual(inject.on_create, "vibrator = (Vibrator) getSystemService(VIBRATOR_SERVICE);\n")
        self.assertEqual(inject.on_resume, "")
        self.assertEqual(inject.on_pause, "")

    def test_lines_outside_sections_ignored(self):
        inject = parse_inject_template(CAMERA_INJECT)

        self.assertNotIn("ignored", inject.imports + inject.on_pause)
        self.assertEqual(inject.on_pause, "camera.release();\n")

    def test_state_transitions(self):
        parser = InjectParser()
        self.assertIsNone(parser.section)
        parser.feed("//% MAIN_ACTIVITY_ON_RESUME")
        self.assertEqual(parser.section, Section.MAIN_ACTIVITY_ON_RESUME)
        parser.feed("resume();")
        parser.feed("//% END")
        self.assertIsNone(parser.section)
        self.assertEqual(parser.finish().on_resume, "resume();\n")

    def test_nested_open_is_error(self):
        with self.assertRaises(GlueTemplateError):
            parse_inject_template("//% IMPORTS\n//% MAIN_ACTIVITY_BODY\n//% END\n")

    def test_unmatched_end_is_error(self):
        with self.assertRaises(GlueTemplateError):
            parse_inject_template("//% END\n")


class TestMerge(unittest.TestCase):
    """Test that injects accumulate."""

    def test_add_never_overwrites(self):
        a = GlueInject(imports="a\n")
        a.add(GlueInject(imports="b\n", on_pause="p\n"))

        self.assertEqual(a.imports, "a\nb\n")
        self.assertEqual(a.on_pause, "p\n")

    def test_merge_associative(self):
        a, b, c = VIBRATOR_INJECT, CAMERA_INJECT, "//% MAIN_ACTIVITY_ON_RESUME\nresume();\n//% END\n"

        left = merge_injects([a, b])
        left.add(parse_inject_template(c))
        right = parse_inject_template(a)
        right.add(merge_injects([b, c]))

        self.assertEqual(left, right)
        self.assertEqual(left, merge_injects([a, b, c]))

    def test_read_injects(self):
        with tempfile.TemporaryDirectory() as tmp:
            paths = []
            for i, text in enumerate([VIBRATOR_INJECT, CAMERA_INJECT]):
                path = os.path.join(tmp, f"inject{i}.java")
                with open(path, "w") as f:
                    f.write(text)
                paths.append(path)

            inject = read_injects(paths)

        self.assertEqual(inject.imports, "import android.os.Vibrator;\nimport android.hardware.Camera;\n")


class TestPreprocessMainActivity(unittest.TestCase):
    """Test the MainActivity substitution."""

    def test_substitution(self):
        inject = merge_injects([VIBRATOR_INJECT, CAMERA_INJECT])
        res = preprocess_main_activity(MAIN_ACTIVITY, "rust.my_game", "my_game", inject)

        self.assertTrue(res.startswith("package rust.my_game;"))
        self.assertIn('System.loadLibrary("my_game");', res)
        self.assertIn("import android.os.Vibrator;\nimport android.hardware.Camera;\n", res)
        self.assertIn("private Vibrator vibrator;", res)
        self.assertIn("camera.release();", res)
        self.assertNotIn("//%", res)

    def test_no_injects(self):
        res = preprocess_main_activity(MAIN_ACTIVITY, "rust.quad", "quad", GlueInject())

        self.assertNotIn("//%", res)
        self.assertNotIn("TARGET_PACKAGE_NAME", res)


if __name__ == "__main__":
    unittest.main()
