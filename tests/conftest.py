# SPDX-License-Identifier: GPL-3.0-or-later
#
# Copyright (C) 2022  Povilas Kanapickas <povilas@radix.lt>
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""Shared test fixtures."""

import os

import pytest

from sysroot_deps import build


class CommandRecorder:
    """Stands in for subprocess.call and remembers every command."""

    def __init__(self):
        self.calls = []
        self.failures = {}

    def fail(self, predicate, code):
        self.failures[predicate] = code

    def __call__(self, cmd, shell=False, cwd=None, env=None):
        self.calls.append((cmd, cwd, env))
        for predicate, code in self.failures.items():
            if predicate(cmd):
                return code
        if 'install' in cmd:
            destdir = [arg for arg in cmd if arg.startswith('DESTDIR=')][0][len('DESTDIR='):]
            libdir = os.path.join(destdir, 'usr', 'lib')
            os.makedirs(libdir, exist_ok=True)
            name = os.path.basename(cwd)
            with open(os.path.join(libdir, f'lib{name}.a'), 'w') as f:
                f.write(name)
            with open(os.path.join(libdir, f'lib{name}.la'), 'w') as f:
                f.write(name)
        return 0

    @property
    def commands(self):
        return [cmd for cmd, _, _ in self.calls]

    def commands_in(self, name):
        return [cmd for cmd, cwd, _ in self.calls if os.path.basename(cwd) == name]

    def env_of(self, predicate):
        for cmd, _, env in self.calls:
            if predicate(cmd):
                return env
        raise AssertionError('no matching command was run')


@pytest.fixture
def recorder(monkeypatch):
    rec = CommandRecorder()
    monkeypatch.setattr(build.subprocess, 'call', rec)
    return rec


@pytest.fixture
def sources(tmp_path):
    """Creates an empty source directory for each dependency."""
    root = tmp_path / 'src'
    environ = {}
    for name, _ in build.known_dependencies:
        srcdir = root / name
        srcdir.mkdir(parents=True)
        environ[f'{name.upper()}_SRC'] = str(srcdir)
    return environ
