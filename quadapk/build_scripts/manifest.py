#!/usr/bin/env python3
# -- coding: utf-8 --
#
# manifest.py
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
AndroidManifest.xml and layout generation.
"""

import os
from typing import Iterable

from quadapk.build_scripts.config import AndroidConfig, TargetSettings
from quadapk.build_scripts.targets import CompilationUnit

FULLSCREEN_THEME = "@android:style/Theme.DeviceDefault.NoActionBar.Fullscreen"

MAIN_LAYOUT = """<?xml version="1.0" encoding="utf-8"?>
        <LinearLayout xmlns:android="http://schemas.android.com/apk/res/android"
            android:orientation="vertical"
            android:layout_width="fill_parent"
            android:layout_height="fill_parent"
            >
        </LinearLayout>

"""


def _bool(value: bool) -> str:
    return "true" if value else "false"


def _application_attributes(settings: TargetSettings) -> str:
    attrs = f'\n            android:hasCode="true" android:label="{settings.package_label}"'
    if settings.package_icon is not None:
        attrs += f'\n            android:icon="{settings.package_icon}"'
    if settings.fullscreen:
        attrs += f'\n            android:theme="{FULLSCREEN_THEME}"'
    if settings.application_attributes is not None:
        attrs += settings.application_attributes.replace("\n", "\n            ")
    return attrs


def _activity_attributes(settings: TargetSettings) -> str:
    attrs = (
        '\n                android:name=".MainActivity"'
        f'\n                android:label="{settings.package_label}"'
        '\n                android:configChanges="orientation|keyboardHidden|screenSize" '
    )
    if settings.activity_attributes is not None:
        attrs += settings.activity_attributes.replace("\n", "\n                ")
    return attrs


def _uses_features(settings: TargetSettings) -> str:
    features = []
    for f in settings.features:
        version = "" if f.version is None else f'android:version="{f.version}"'
        features.append(
            f'\n\t<uses-feature android:name="{f.name}" android:required="{_bool(f.required)}" {version}/>'
        )
    return ", ".join(features)


def _uses_permissions(settings: TargetSettings) -> str:
    permissions = []
    for p in settings.permissions:
        max_sdk_version = "" if p.max_sdk_version is None else f'android:maxSdkVersion="{p.max_sdk_version}"'
        permissions.append(f'\n\t<uses-permission android:name="{p.name}" {max_sdk_version}/>')
    return ", ".join(permissions)


def _services(services: Iterable[str]) -> str:
    return ", ".join(
        f'\n\t<service android:name="{service}" android:enabled="true"></service>'
        for service in services
    )


def gl_es_version(settings: TargetSettings) -> str:
    return f"0x{settings.opengles_version_major:04}{settings.opengles_version_minor:04}"


def build_manifest(config: AndroidConfig, settings: TargetSettings, unit: CompilationUnit, services=()) -> str:
    """
    Render the AndroidManifest.xml of one unit.

    The output only depends on the arguments, the same inputs always render
    the same document.
    """
    return f"""<?xml version="1.0" encoding="utf-8"?>
<manifest xmlns:android="http://schemas.android.com/apk/res/android"
        package="{settings.manifest_package_name}"
        android:versionCode="{settings.version_code}"
        android:versionName="{settings.version_name}">
    <uses-sdk android:targetSdkVersion="{config.target_sdk_version}" android:minSdkVersion="{config.min_sdk_version}" />
    <uses-feature android:glEsVersion="{gl_es_version(settings)}" android:required="true"></uses-feature>{_uses_features(settings)}{_uses_permissions(settings)}
    <application {_application_attributes(settings)} >
        {_services(services)}
        <activity {_activity_attributes(settings)} >
            <meta-data android:name="android.app.lib_name" android:value="{unit.name}" />
            <intent-filter>
                <action android:name="android.intent.action.MAIN" />
                <category android:name="android.intent.category.LAUNCHER" />
            </intent-filter>
        </activity>
    </application>
</manifest>
"""


def write_manifest(target_directory, config, settings, unit, services=()) -> str:
    path = os.path.join(target_directory, "AndroidManifest.xml")
    with open(path, "w", encoding="utf-8") as f:
        f.write(build_manifest(config, settings, unit, services))
    return path


def write_main_layout(target_directory) -> str:
    res_dir = os.path.join(target_directory, "res", "layout")
    os.makedirs(res_dir, exist_ok=True)
    path = os.path.join(res_dir, "main.xml")
    with open(path, "w", encoding="utf-8") as f:
        f.write(MAIN_LAYOUT)
    return path
