#!/usr/bin/env python3
# -- coding: utf-8 --
#
# preprocessor.py
# quadapk
#
# Copyright 2024 quadapk Project Authors. All rights reserved.
# Use of this source code is governed by a MIT-style
# license that can be found at
#
# https://opensource.org/license/MIT
#
# The above copyright notice and this permission
# notice shall be included in all copies or
# substantial portions of the Software.

"""
MainActivity.java preprocessor.

Dependency packages may inject Java code into the generated MainActivity. An
inject file marks its sections with `//%` lines:

    //% IMPORTS
    import android.os.Vibrator;
    //% END

    //% MAIN_ACTIVITY_ON_CREATE
    vibrator = (Vibrator) getSystemService(VIBRATOR_SERVICE);
    //% END

The same markers act as placeholders inside MainActivity.java.
"""

from dataclasses import dataclass, fields
from enum import Enum
from typing import Optional

from quadapk.utils.errors import GlueTemplateError

SIGIL = "//%"
END_MARKER = "END"

PACKAGE_NAME_TOKEN = "TARGET_PACKAGE_NAME"
LIBRARY_NAME_TOKEN = "LIBRARY_NAME"


class Section(Enum):
    # checked in this order, MAIN_ACTIVITY_BODY before the ON_* names
    IMPORTS = "imports"
    MAIN_ACTIVITY_BODY = "body"
    MAIN_ACTIVITY_ON_CREATE = "on_create"
    MAIN_ACTIVITY_ON_RESUME = "on_resume"
    MAIN_ACTIVITY_ON_PAUSE = "on_pause"

    @property
    def placeholder(self) -> str:
        return f"{SIGIL} {self.name}"

    @classmethod
    def from_marker(cls, line: str) -> Optional["Section"]:
        for section in cls:
            if section.name in line:
                return section
        return None


@dataclass
class GlueInject:
    imports: str = ""
    body: str = ""
    on_create: str = ""
    on_resume: str = ""
    on_pause: str = ""

    def add(self, other: "GlueInject"):
        """Append every section of `other`, never overwriting"""
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))

    def get(self, section: Section) -> str:
        return getattr(self, section.value)

    def append(self, section: Section, text: str):
        setattr(self, section.value, self.get(section) + text)


class InjectParser:
    """
    Two state machine: Scanning (section is None) or InSection(section).

    - Scanning + open marker     -> InSection
    - Scanning + END marker      -> error
    - InSection + open marker    -> error
    - InSection + END marker     -> Scanning
    - InSection + other line     -> appended to the section
    """

    def __init__(self):
        self.inject = GlueInject()
        self.section: Optional[Section] = None
        self.line_number = 0

    def feed(self, line: str):
        self.line_number += 1
        if not line:
            return

        if line.startswith(SIGIL):
            opened = Section.from_marker(line)
            if opened is not None:
                if self.section is not None:
                    raise GlueTemplateError(
                        f"line {self.line_number}: section {opened.name} opened "
                        f"while {self.section.name} is still open"
                    )
                self.section = opened
                return
            if END_MARKER in line:
                if self.section is None:
                    raise GlueTemplateError(f"line {self.line_number}: {END_MARKER} without an open section")
                self.section = None
                return

        if self.section is not None:
            self.inject.append(self.section, line + "\n")

    def finish(self) -> GlueInject:
        return self.inject


def parse_inject_template(text: str) -> GlueInject:
    parser = InjectParser()
    for line in text.splitlines():
        parser.feed(line)
    return parser.finish()


def merge_injects(texts) -> GlueInject:
    """Merge inject templates in the given order"""
    inject = GlueInject()
    for text in texts:
        inject.add(parse_inject_template(text))
    return inject


def preprocess_main_activity(java_src: str, package_name: str, library_name: str, inject: GlueInject) -> str:
    res = java_src.replace(PACKAGE_NAME_TOKEN, package_name)
    res = res.replace(LIBRARY_NAME_TOKEN, library_name)
    for section in Section:
        res = res.replace(section.placeholder, inject.get(section))
    return res


def read_injects(inject_files) -> GlueInject:
    texts = []
    for path in inject_files:
        with open(path, "r", encoding="utf-8") as f:
            texts.append(f.read())
    return merge_injects(texts)
